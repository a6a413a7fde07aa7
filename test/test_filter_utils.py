"""
Tests for analysis filter expressions.
"""

import pytest

from varvis_download.filter_utils import FilterExpression, apply_filters, parse_filter_expression

ANALYSES = [
    {'id': 1, 'analysisType': 'SNV', 'sampleId': 'LB24-0001', 'coverage': 30},
    {'id': 2, 'analysisType': 'SV', 'sampleId': 'LB24-0002', 'coverage': 120},
    {'id': 3, 'analysisType': 'SNV', 'sampleId': 'LB24-0003'},
]


@pytest.mark.parametrize(
    ('expression', 'expected'),
    [
        ('analysisType=SNV', FilterExpression('analysisType', '=', 'SNV')),
        ('analysisType!=SNV', FilterExpression('analysisType', '!=', 'SNV')),
        ('coverage>=100', FilterExpression('coverage', '>=', '100')),
        (' coverage<50 ', FilterExpression('coverage', '<', '50')),
    ],
)
def test_parse_filter_expression(expression, expected):
    assert parse_filter_expression(expression) == expected


@pytest.mark.parametrize('expression', ['analysisType', '=SNV', 'analysis Type=SNV', 'coverage>'])
def test_parse_filter_expression_rejects_invalid(expression):
    with pytest.raises(ValueError, match='Invalid filter expression'):
        parse_filter_expression(expression)


@pytest.mark.parametrize(
    ('expressions', 'expected_ids'),
    [
        (['analysisType=SNV'], [1, 3]),
        (['analysisType!=SNV'], [2]),
        (['coverage>100'], [2]),
        # numeric, not lexicographic: '30' > '120' as strings
        (['coverage<100'], [1]),
        (['coverage!=30'], [2, 3]),
        (['sampleId>LB24-0001'], [2, 3]),
        (['analysisType=SNV', 'coverage>=30'], [1]),
        ([], [1, 2, 3]),
    ],
)
def test_apply_filters(expressions, expected_ids):
    assert [a['id'] for a in apply_filters(ANALYSES, expressions)] == expected_ids
