#!/usr/bin/env python3

import sys
from argparse import ArgumentParser, BooleanOptionalAction
from importlib.metadata import PackageNotFoundError, version

from loguru import logger

from varvis_download.config import RESTORE_MODES, DownloadSettings, load_settings
from varvis_download.constants import LICENSE, PROJECT_NAME, REPOSITORY_URL
from varvis_download.errors import PreconditionError
from varvis_download.jobs import download_analyses
from varvis_download.jobs.download_file_record import DownloadOrchestrator
from varvis_download.jobs.resume_archived_downloads import ResumeScheduler
from varvis_download.jobs.trigger_archive_restore import RestoreDecision, RestoreMode
from varvis_download.metrics import DownloadMetrics, generate_report
from varvis_download.prompt_utils import is_interactive, prompt_password, prompt_yes_no
from varvis_download.ranged_utils import RangedExtractionPipeline
from varvis_download.restoration_state import RestorationStateStore
from varvis_download.tool_checks import ensure_tools_available
from varvis_download.utils import configure_logging
from varvis_download.varvis_api_utils import VarvisClient


def get_version() -> str:
    try:
        return version(PROJECT_NAME)
    except PackageNotFoundError:
        return 'unknown'


def build_parser() -> ArgumentParser:
    parser = ArgumentParser(prog=PROJECT_NAME, description='Download BAM and VCF files from the Varvis API.')
    parser.add_argument('-c', '--config', default='.config.toml', help='Path to a TOML configuration file')
    parser.add_argument('-u', '--username', help='Varvis API username (or VARVIS_USER)')
    parser.add_argument('-p', '--password', help='Varvis API password (or VARVIS_PASSWORD)')
    parser.add_argument('-t', '--target', help='Target for the Varvis API, i.e. <target>.varvis.com')
    parser.add_argument(
        '-a',
        '--analysis-ids',
        dest='analysis_ids',
        action='append',
        help='Analysis IDs (comma-separated)',
    )
    parser.add_argument('-s', '--sample-ids', dest='sample_ids', action='append', help='Sample IDs to filter analyses')
    parser.add_argument('-l', '--lims-ids', dest='lims_ids', action='append', help='LIMS IDs to filter analyses')
    parser.add_argument(
        '-F',
        '--filter',
        action='append',
        help='Filter expression on analysis fields, e.g. analysisType=SNV (=, !=, >, <, >=, <=)',
    )
    parser.add_argument('-L', '--list', action='store_true', help='List available files for the selected analyses')
    parser.add_argument('-d', '--destination', help='Destination folder for the downloaded files')
    parser.add_argument('-x', '--proxy', help='Proxy URL')
    parser.add_argument('--proxy-username', dest='proxy_username', help='Proxy username')
    parser.add_argument('--proxy-password', dest='proxy_password', help='Proxy password')
    parser.add_argument(
        '-o',
        '--overwrite',
        action=BooleanOptionalAction,
        default=None,
        help='Overwrite existing files',
    )
    parser.add_argument('-f', '--filetypes', action='append', help='File types to download (comma-separated)')
    parser.add_argument('--loglevel', choices=['debug', 'info', 'warn', 'warning', 'error'], help='Logging level')
    parser.add_argument('--logfile', help='Path to the log file')
    parser.add_argument('-r', '--reportfile', help='Path to the report file')
    parser.add_argument('-g', '--range', help='Genomic range(s) for ranged download, e.g. "chr1:1-100000 chr2"')
    parser.add_argument('-b', '--bed', help='BED file with regions for ranged download')
    parser.add_argument(
        '--restore-archived',
        dest='restore_archived',
        choices=RESTORE_MODES,
        help='Restore archived files: no, ask (default), all or force',
    )
    parser.add_argument('--restoration-file', dest='restoration_file', help='Path of the awaiting-restoration file')
    parser.add_argument(
        '--resume-archived-downloads',
        dest='resume_archived_downloads',
        action='store_true',
        help='Resume downloads of restored archived files whose estimated restore time has passed',
    )
    parser.add_argument('-U', '--list-urls', dest='list_urls', action='store_true', help='Print download URLs only')
    parser.add_argument('--url-file', dest='url_file', help='Also write the URLs from --list-urls to this file')
    parser.add_argument('-v', '--version', action='store_true', help='Show version information')
    return parser


def _login(settings: DownloadSettings) -> VarvisClient:
    if not settings.target:
        raise PreconditionError('No Varvis target given, use --target or [varvis] target in the configuration')
    if not settings.username:
        raise PreconditionError('No username given, use --username, VARVIS_USER or [varvis] username')
    client = VarvisClient(
        target=settings.target,
        proxy=settings.proxy,
        proxy_username=settings.proxy_username,
        proxy_password=settings.proxy_password,
        retries=settings.http.retries,
        retry_wait_seconds=settings.http.retry_wait_seconds,
        timeout_seconds=settings.http.timeout_seconds,
    )
    password = settings.password or prompt_password()
    logger.debug('Attempting to log in')
    client.login(settings.username, password)
    return client


def run(settings: DownloadSettings) -> int:
    client = _login(settings)
    metrics = DownloadMetrics()

    if settings.resume_archived_downloads:
        logger.info('Starting in archive resumption mode.')
        scheduler = ResumeScheduler(
            client=client,
            store=RestorationStateStore(settings.restoration_file),
            orchestrator=DownloadOrchestrator(client, RangedExtractionPipeline(settings.tools), metrics),
            default_destination=settings.destination,
            default_overwrite=settings.overwrite,
        )
        scheduler.run()
        logger.info('Archive resumption process complete.')
        generate_report(metrics, settings.reportfile)
        return 0

    listing_only = settings.list_files or settings.list_urls
    if (settings.range or settings.bed) and not listing_only:
        ensure_tools_available(settings.tools)

    decision = RestoreDecision(
        mode=RestoreMode(settings.restore_archived),
        prompt=prompt_yes_no if is_interactive() else None,
    )
    download_analyses.run(client, settings, decision, metrics)
    if not listing_only:
        logger.info('Download complete.')
        generate_report(metrics, settings.reportfile)
    return 0


def cli_main(argv: list[str] | None = None) -> int:
    # CLI entrypoint
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        print(f'{PROJECT_NAME} {get_version()}\nRepository: {REPOSITORY_URL}\nLicense: {LICENSE}')  # noqa: T201
        return 0

    try:
        settings = load_settings(args)
    except ValueError as e:
        parser.error(str(e))
    configure_logging(settings.loglevel, settings.logfile)

    try:
        return run(settings)
    except KeyboardInterrupt:
        logger.warning('Interrupted by user')
        return 130
    except Exception as e:  # noqa: BLE001
        logger.error(f'An error occurred: {e}')
        logger.opt(exception=e).debug('Traceback')
        return 1


if __name__ == '__main__':
    sys.exit(cli_main())
