"""
Fetches the file listing of an analysis, applies the file-type filter and
handles archived data files according to the session's restore decision.
"""

from collections.abc import Callable

from loguru import logger

from varvis_download.file_types import DownloadLinkRecord, get_file_type_spec, matches_filetypes
from varvis_download.jobs.trigger_archive_restore import RestorationCoordinator, RestoreDecision, RestoreMode
from varvis_download.restoration_state import RequestOptions
from varvis_download.varvis_api_utils import VarvisClient, fetch_download_links


def _warn_missing_filetypes(analysis_id: str, file_names: list[str], filetypes: list[str]) -> None:
    missing = [ft for ft in filetypes if not any(matches_filetypes(name, [ft]) for name in file_names)]
    if missing:
        logger.warning(
            f'The following requested file types are not available for the analysis {analysis_id}: '
            f'{", ".join(missing)}',
        )


def get_download_links(
    client: VarvisClient,
    analysis_id: str,
    filetypes: list[str] | None,
    decision: RestoreDecision,
    coordinator: RestorationCoordinator | None = None,
    options: RequestOptions | None = None,
) -> dict[str, DownloadLinkRecord]:
    """
    Returns the analysis' files matching `filetypes`, keyed by file name.

    Archived files stay in the result, flagged `currently_archived`, so callers can
    tell "archived" from "absent". For archived data files (BAM, VCF) a restore is
    triggered only if the decision allows it and a coordinator is given; passing no
    coordinator guarantees the restore endpoint is never called.
    """
    records = fetch_download_links(client, analysis_id)
    files: dict[str, DownloadLinkRecord] = {}
    for record in records:
        if not matches_filetypes(record.file_name, filetypes):
            continue
        files[record.file_name] = record
        if not record.currently_archived or get_file_type_spec(record.file_name) is None:
            continue

        logger.warning(f'File {record.file_name} for analysis {analysis_id} is archived.')
        if coordinator is None or decision.mode is RestoreMode.NO:
            continue
        if decision.should_restore(record.file_name):
            coordinator.trigger(analysis_id, record, options or RequestOptions())

    available = [name for name, record in files.items() if not record.currently_archived]
    if available:
        logger.info(f'Found {len(available)} files for analysis ID: {analysis_id}')
        logger.debug(f'Available files: {", ".join(available)}')
    else:
        logger.info(f'No files found for analysis ID: {analysis_id} after applying file type filters.')
    if filetypes:
        _warn_missing_filetypes(analysis_id, available, filetypes)
    return files


def list_available_files(client: VarvisClient, analysis_id: str) -> list[str]:
    """Logs every downloadable file of an analysis. Never triggers a restore."""
    logger.info(f'Listing available files for analysis ID: {analysis_id}')
    files = get_download_links(client, analysis_id, None, RestoreDecision(RestoreMode.NO))
    names = [name for name, record in files.items() if not record.currently_archived]
    for name in names:
        logger.info(f'- {name}')
    return names


def collect_download_urls(files: dict[str, DownloadLinkRecord]) -> list[str]:
    return [record.download_link for record in files.values() if record.download_link and not record.currently_archived]


def make_link_refresher(client: VarvisClient, analysis_id: str, file_name: str) -> Callable[[], str | None]:
    """Builds a callback that re-fetches the current pre-signed link of one file."""

    def refresh() -> str | None:
        for record in fetch_download_links(client, analysis_id):
            if record.file_name == file_name and not record.currently_archived:
                return record.download_link
        return None

    return refresh
