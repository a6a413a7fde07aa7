"""
Filter expressions for narrowing down analyses, e.g. 'analysisType=SNV' or 'sampleId>LB24-0001'.
"""

import operator
import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

FILTER_PATTERN = re.compile(r'^(\w+)(!=|>=|<=|=|>|<)(.+)$')

OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    '=': operator.eq,
    '!=': operator.ne,
    '>': operator.gt,
    '<': operator.lt,
    '>=': operator.ge,
    '<=': operator.le,
}


@dataclass(frozen=True)
class FilterExpression:
    field: str
    operator: str
    value: str


def parse_filter_expression(expression: str) -> FilterExpression:
    match = FILTER_PATTERN.match(expression.strip())
    if not match:
        raise ValueError(f'Invalid filter expression: {expression}')
    return FilterExpression(field=match.group(1), operator=match.group(2), value=match.group(3).strip())


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _matches(analysis: dict[str, Any], expression: FilterExpression) -> bool:
    analysis_value = analysis.get(expression.field)
    if analysis_value is None:
        return expression.operator == '!='
    compare = OPERATORS[expression.operator]

    # Compare numerically when both sides are numbers, otherwise as strings
    left, right = _as_number(analysis_value), _as_number(expression.value)
    if left is not None and right is not None:
        return compare(left, right)
    return compare(str(analysis_value), expression.value)


def apply_filters(analyses: list[dict[str, Any]], expressions: list[str]) -> list[dict[str, Any]]:
    """Applies every expression in turn; an analysis is kept only if it matches all of them."""
    parsed = [parse_filter_expression(expression) for expression in expressions]
    return [analysis for analysis in analyses if all(_matches(analysis, expression) for expression in parsed)]
