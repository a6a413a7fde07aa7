"""
Availability and minimum-version checks for the external htslib tools used by ranged downloads.
"""

import re
import subprocess

from loguru import logger

from varvis_download.config import ToolPaths
from varvis_download.errors import PreconditionError
from varvis_download.utils import run_subprocess_with_log

_NUMERIC_PREFIX = re.compile(r'^\d+')


def parse_version_parts(version: str) -> list[int] | None:
    """'1.18-rc1' -> [1, 18]. None if any dot-separated part has no numeric prefix."""
    parts: list[int] = []
    for part in version.split('.'):
        match = _NUMERIC_PREFIX.match(part)
        if not match:
            return None
        parts.append(int(match.group(0)))
    return parts


def compare_versions(version: str, min_version: str) -> bool:
    """True if `version` >= `min_version`. Unparsable versions never satisfy the minimum."""
    version_parts = parse_version_parts(version)
    min_parts = parse_version_parts(min_version)
    if version_parts is None or min_parts is None:
        return False
    length = max(len(version_parts), len(min_parts))
    version_parts += [0] * (length - len(version_parts))
    min_parts += [0] * (length - len(min_parts))
    return version_parts >= min_parts


def parse_tool_version(output: str) -> str:
    """
    Extracts the version from the first line of `<tool> --version`.

    samtools prints 'samtools 1.17', tabix and bgzip print 'tabix (htslib) 1.17',
    so the version is the third word when the second is parenthesised.
    """
    parts = output.split()
    if len(parts) < 2:  # noqa: PLR2004
        raise ValueError(f'Could not parse version from output: "{output.strip()}"')
    if parts[1].startswith('('):
        if len(parts) < 3:  # noqa: PLR2004
            raise ValueError(f'Could not parse version from output: "{output.strip()}"')
        return parts[2]
    return parts[1]


def check_tool_availability(tool: str, executable: str, min_version: str) -> bool:
    try:
        process = run_subprocess_with_log([executable, '--version'], f'{tool} version check')
        tool_version = parse_tool_version(process.stdout)
    except (OSError, subprocess.CalledProcessError, ValueError) as e:
        logger.error(f'Error checking {tool} version: {e}')
        return False

    if compare_versions(tool_version, min_version):
        logger.info(f'{tool} version {tool_version} is available.')
        return True
    logger.error(f'{tool} version {tool_version} is less than the required version {min_version}.')
    return False


def ensure_tools_available(tools: ToolPaths) -> None:
    """Raises PreconditionError unless samtools, tabix and bgzip all meet their minimum versions."""
    results = [
        check_tool_availability('samtools', tools.samtools, tools.samtools_min_version),
        check_tool_availability('tabix', tools.tabix, tools.tabix_min_version),
        check_tool_availability('bgzip', tools.bgzip, tools.bgzip_min_version),
    ]
    if not all(results):
        raise PreconditionError(
            'One or more required external tools (samtools, tabix, bgzip) are missing or outdated. '
            'Please install/update them and try again.',
        )
