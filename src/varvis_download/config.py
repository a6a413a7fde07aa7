"""
Resolves the effective run settings from the command line, the environment and
layered TOML configuration (packaged defaults overlaid with an optional user file).
"""

import os
from argparse import Namespace
from dataclasses import dataclass, field
from typing import Any

from cpg_utils.config import config_retrieve, set_config_paths
from loguru import logger

from varvis_download.constants import DEFAULT_FILETYPES, DEFAULT_RESTORATION_FILE
from varvis_download.utils import normalize_list_input

DEFAULTS_CONFIG_PATH = os.path.join(os.path.dirname(__file__), 'varvis_download_defaults.toml')
RESTORE_MODES = ('no', 'ask', 'all', 'force')


@dataclass(frozen=True)
class ToolPaths:
    samtools: str = 'samtools'
    tabix: str = 'tabix'
    bgzip: str = 'bgzip'
    samtools_min_version: str = '1.17'
    tabix_min_version: str = '1.7'
    bgzip_min_version: str = '1.7'


@dataclass(frozen=True)
class HttpSettings:
    retries: int = 3
    retry_wait_seconds: float = 1
    timeout_seconds: float = 600


@dataclass(frozen=True)
class DownloadSettings:
    target: str
    username: str | None = None
    password: str | None = None
    analysis_ids: list[str] = field(default_factory=list)
    sample_ids: list[str] = field(default_factory=list)
    lims_ids: list[str] = field(default_factory=list)
    filters: list[str] = field(default_factory=list)
    destination: str = '.'
    overwrite: bool = False
    filetypes: list[str] = field(default_factory=lambda: list(DEFAULT_FILETYPES))
    range: str | None = None
    bed: str | None = None
    restore_archived: str = 'ask'
    restoration_file: str = DEFAULT_RESTORATION_FILE
    resume_archived_downloads: bool = False
    list_files: bool = False
    list_urls: bool = False
    url_file: str | None = None
    reportfile: str | None = None
    proxy: str | None = None
    proxy_username: str | None = None
    proxy_password: str | None = None
    loglevel: str = 'info'
    logfile: str | None = None
    tools: ToolPaths = field(default_factory=ToolPaths)
    http: HttpSettings = field(default_factory=HttpSettings)

    @property
    def has_selection(self) -> bool:
        return bool(self.analysis_ids or self.sample_ids or self.lims_ids)


def _setting(cli_value: Any, key: list[str], default: Any) -> Any:
    """CLI value if given, else the configured value. Empty TOML strings mean unset."""
    if cli_value is not None:
        return cli_value
    value = config_retrieve(key, default=default)
    if value == '':  # noqa: PLC1901
        return None
    return value


def _list_setting(cli_value: list[str] | None, key: list[str]) -> list[str]:
    if cli_value:
        return normalize_list_input(cli_value)
    return normalize_list_input(config_retrieve(key, default=[]))


def load_settings(args: Namespace) -> DownloadSettings:
    """
    Builds the DownloadSettings for this run.

    Precedence is CLI flag > environment (credentials only) > user TOML > packaged defaults.
    """
    config_paths: list[str] = [DEFAULTS_CONFIG_PATH]
    if args.config and os.path.exists(args.config):
        config_paths.append(args.config)
        logger.debug(f'Using configuration file {args.config}')
    elif args.config:
        logger.debug(f'Configuration file {args.config} not found, using defaults')
    set_config_paths(config_paths)

    restore_archived: str = _setting(args.restore_archived, ['restoration', 'restore_archived'], 'ask')
    if restore_archived not in RESTORE_MODES:
        raise ValueError(f'Invalid restore mode "{restore_archived}". Valid options are {", ".join(RESTORE_MODES)}.')

    filetypes = _list_setting(args.filetypes, ['download', 'filetypes']) or list(DEFAULT_FILETYPES)

    return DownloadSettings(
        target=_setting(args.target, ['varvis', 'target'], '') or '',
        username=os.environ.get('VARVIS_USER') or _setting(args.username, ['varvis', 'username'], ''),
        password=os.environ.get('VARVIS_PASSWORD') or _setting(args.password, ['varvis', 'password'], ''),
        analysis_ids=_list_setting(args.analysis_ids, ['download', 'analysis_ids']),
        sample_ids=_list_setting(args.sample_ids, ['download', 'sample_ids']),
        lims_ids=_list_setting(args.lims_ids, ['download', 'lims_ids']),
        filters=[f.strip() for f in (args.filter or config_retrieve(['download', 'filters'], default=[]))],
        destination=_setting(args.destination, ['download', 'destination'], '.') or '.',
        overwrite=bool(_setting(args.overwrite, ['download', 'overwrite'], False)),
        filetypes=filetypes,
        range=_setting(args.range, ['download', 'range'], ''),
        bed=_setting(args.bed, ['download', 'bed'], ''),
        restore_archived=restore_archived,
        restoration_file=_setting(args.restoration_file, ['restoration', 'restoration_file'], '')
        or DEFAULT_RESTORATION_FILE,
        resume_archived_downloads=bool(args.resume_archived_downloads),
        list_files=bool(args.list),
        list_urls=bool(args.list_urls),
        url_file=_setting(args.url_file, ['download', 'url_file'], ''),
        reportfile=_setting(args.reportfile, ['download', 'reportfile'], ''),
        proxy=_setting(args.proxy, ['varvis', 'proxy'], ''),
        proxy_username=_setting(args.proxy_username, ['varvis', 'proxy_username'], ''),
        proxy_password=_setting(args.proxy_password, ['varvis', 'proxy_password'], ''),
        loglevel=_setting(args.loglevel, ['logging', 'level'], 'info') or 'info',
        logfile=_setting(args.logfile, ['logging', 'file'], ''),
        tools=ToolPaths(
            samtools=config_retrieve(['tools', 'samtools'], default='samtools'),
            tabix=config_retrieve(['tools', 'tabix'], default='tabix'),
            bgzip=config_retrieve(['tools', 'bgzip'], default='bgzip'),
            samtools_min_version=str(config_retrieve(['tools', 'samtools_min_version'], default='1.17')),
            tabix_min_version=str(config_retrieve(['tools', 'tabix_min_version'], default='1.7')),
            bgzip_min_version=str(config_retrieve(['tools', 'bgzip_min_version'], default='1.7')),
        ),
        http=HttpSettings(
            retries=int(config_retrieve(['http', 'retries'], default=3)),
            retry_wait_seconds=float(config_retrieve(['http', 'retry_wait_seconds'], default=1)),
            timeout_seconds=float(config_retrieve(['http', 'timeout_seconds'], default=600)),
        ),
    )
