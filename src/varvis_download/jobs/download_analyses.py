"""
The regular download run: resolve analyses, list their files, trigger restores for
archived ones and download everything else, in full or restricted to regions.
"""

import requests
from loguru import logger

from varvis_download.config import DownloadSettings
from varvis_download.errors import VarvisDownloadError
from varvis_download.file_types import DownloadLinkRecord, get_file_type_spec
from varvis_download.file_utils import atomic_write_text
from varvis_download.jobs.download_file_record import DownloadOrchestrator, RequestContext
from varvis_download.jobs.list_download_links import (
    collect_download_urls,
    get_download_links,
    list_available_files,
    make_link_refresher,
)
from varvis_download.jobs.trigger_archive_restore import RestorationCoordinator, RestoreDecision
from varvis_download.metrics import DownloadMetrics
from varvis_download.ranged_utils import RangedExtractionPipeline
from varvis_download.regions import RegionSet
from varvis_download.restoration_state import RequestOptions, RestorationStateStore
from varvis_download.varvis_api_utils import VarvisClient, fetch_analysis_ids


def resolve_analysis_ids(client: VarvisClient, settings: DownloadSettings) -> list[str]:
    if settings.analysis_ids:
        return list(settings.analysis_ids)
    return fetch_analysis_ids(client, settings.sample_ids, settings.lims_ids, settings.filters)


def request_options_from_settings(settings: DownloadSettings) -> RequestOptions:
    """The options recorded with a restore request, so the download can be resumed as requested."""
    return RequestOptions(
        destination=settings.destination,
        overwrite=settings.overwrite,
        range=settings.range,
        bed=settings.bed,
        restoration_file=settings.restoration_file,
        filetypes=tuple(settings.filetypes),
    )


def write_url_listing(urls: list[str], url_file: str | None) -> None:
    if not urls:
        logger.info('No files matching the criteria were found. No URLs to list.')
        return
    # Plain stdout, so the listing can be piped
    print('\n'.join(urls))  # noqa: T201
    if url_file:
        atomic_write_text(url_file, '\n'.join(urls) + '\n')
        logger.info(f'Successfully saved {len(urls)} URLs to {url_file}')


def download_analysis_files(
    client: VarvisClient,
    orchestrator: DownloadOrchestrator,
    analysis_id: str,
    files: dict[str, DownloadLinkRecord],
    context: RequestContext,
) -> int:
    """
    Downloads every available file of one analysis. Index files of data files in the
    listing are handled together with their data file. Returns the number of failures.
    """
    companion_indices = {
        spec.index_name(name) for name in files if (spec := get_file_type_spec(name)) is not None
    }
    failures = 0
    for name, record in files.items():
        if record.currently_archived or name in companion_indices:
            continue
        spec = get_file_type_spec(name)
        index_record = files.get(spec.index_name(name)) if spec else None
        try:
            orchestrator.execute(
                record,
                index_record,
                context,
                refresh_link=make_link_refresher(client, analysis_id, name),
            )
        except (VarvisDownloadError, requests.RequestException, OSError, ValueError) as e:
            failures += 1
            logger.error(f'Error during download for {name} (analysis {analysis_id}): {e}')
    return failures


def run(
    client: VarvisClient,
    settings: DownloadSettings,
    decision: RestoreDecision,
    metrics: DownloadMetrics,
) -> None:
    ids = resolve_analysis_ids(client, settings)
    logger.info(f'Fetched analysis IDs: {", ".join(ids)}')

    if settings.list_files:
        for analysis_id in ids:
            try:
                list_available_files(client, analysis_id)
            except VarvisDownloadError as e:
                logger.error(f'Could not list files for analysis {analysis_id}: {e}')
        logger.info('Listing complete.')
        return

    regions = RegionSet.from_options(settings.range, settings.bed)
    if regions:
        logger.info(f'Using regions: {regions}')
    else:
        logger.info('No regions provided. Proceeding with full file download.')

    context = RequestContext(
        destination=settings.destination,
        overwrite=settings.overwrite,
        regions=regions,
        filetypes=tuple(settings.filetypes),
    )
    options = request_options_from_settings(settings)
    coordinator = RestorationCoordinator(client, RestorationStateStore(settings.restoration_file))
    orchestrator = DownloadOrchestrator(client, RangedExtractionPipeline(settings.tools), metrics)

    urls: list[str] = []
    failures = 0
    for analysis_id in ids:
        logger.info(f'Processing analysis ID: {analysis_id}')
        try:
            files = get_download_links(client, analysis_id, settings.filetypes, decision, coordinator, options)
        except VarvisDownloadError as e:
            # One analysis failing to list must not stop the others
            failures += 1
            logger.error(f'Could not fetch download links for analysis {analysis_id}: {e}')
            continue
        if settings.list_urls:
            urls.extend(collect_download_urls(files))
            continue
        failures += download_analysis_files(client, orchestrator, analysis_id, files, context)

    if settings.list_urls:
        write_url_listing(urls, settings.url_file)
    elif failures:
        logger.warning(f'{failures} file(s) could not be downloaded, see the errors above.')
