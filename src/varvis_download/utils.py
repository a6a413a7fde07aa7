import re
import subprocess
import sys
from typing import Any

from loguru import logger

LOG_FORMAT = '{time:YYYY-MM-DDTHH:mm:ss.SSSZ} [{level}]: {message}'
LOG_LEVEL_ALIASES = {'warn': 'WARNING'}


def configure_logging(level: str = 'info', logfile: str | None = None) -> None:
    """
    Replaces loguru's default sink with a stderr sink at the requested level
    and optionally adds a file sink with the same format.
    """
    loguru_level = LOG_LEVEL_ALIASES.get(level.lower(), level.upper())
    logger.remove()
    logger.add(sink=sys.stderr, format=LOG_FORMAT, level=loguru_level)
    if logfile:
        logger.add(sink=logfile, format=LOG_FORMAT, level=loguru_level)
        logger.debug(f'Logging to file {logfile}')


def validate_cli_argument(value: str, arg_name: str) -> None:
    """
    Validates that a value handed to an external tool does not contain shell
    metacharacters and cannot be mistaken for an option flag.
    """
    # Regex for common shell metacharacters and whitespace
    if re.search(r'[;&|$`(){}[\]<>*?!#\s]', value) or value.startswith('-'):
        logger.error(f'Invalid characters found in {arg_name}: {value}')
        raise ValueError(f'Potential unsafe characters in {arg_name}')
    logger.debug(f'Argument validation passed for {arg_name}.')


def run_subprocess_with_log(
    cmd: list[str],
    step_name: str,
    cwd: str | None = None,
) -> subprocess.CompletedProcess[Any]:
    """
    Runs a subprocess command with robust logging.
    Logs the command, its output, and errors if any occur.
    """
    cmd_str = ' '.join(cmd)
    logger.info(f'Running {step_name} command: {cmd_str}')
    try:
        process: subprocess.CompletedProcess[str] = subprocess.run(  # noqa: S603
            cmd,
            check=True,
            capture_output=True,
            text=True,
            cwd=cwd,
        )
        logger.info(f'{step_name} completed successfully.')
        if process.stdout:
            logger.debug(f'{step_name} STDOUT:\n{process.stdout.strip()}')
        if process.stderr:
            logger.debug(f'{step_name} STDERR:\n{process.stderr.strip()}')
        return process
    except subprocess.CalledProcessError as e:
        logger.error(f'{step_name} failed with return code {e.returncode}')
        logger.error(f'CMD: {cmd_str}')
        logger.error(f'STDOUT: {e.stdout}')
        logger.error(f'STDERR: {e.stderr}')
        raise


def normalize_list_input(value: str | list[Any] | tuple[Any, ...] | None) -> list[str]:
    """
    Flattens list inputs that may hold comma-separated strings, as produced both by
    repeated CLI flags (`-a 1,2 -a 3`) and by TOML arrays. Empty items are dropped.
    """
    if value is None:
        return []
    raw: list[Any] = [value] if isinstance(value, str) else list(value)
    items: list[str] = []
    for item in raw:
        items.extend(part.strip() for part in str(item).split(','))
    return [item for item in items if item]
