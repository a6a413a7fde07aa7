"""
Downloads one file of an analysis, either in full or restricted to genomic regions.
"""

import os
from collections.abc import Callable
from dataclasses import dataclass, field

import requests
from loguru import logger

from varvis_download.errors import PreconditionError, VarvisDownloadError
from varvis_download.file_types import DownloadLinkRecord, FileKind, FileTypeSpec, get_file_type_spec, matches_filetypes
from varvis_download.file_utils import DownloadOutcome, download_file
from varvis_download.metrics import DownloadMetrics
from varvis_download.ranged_utils import ExtractionJob, RangedExtractionPipeline, index_path_for
from varvis_download.regions import RegionSet, derive_output_name
from varvis_download.url_utils import format_remaining_time, get_url_remaining_seconds, is_url_expiring_soon
from varvis_download.varvis_api_utils import VarvisClient


@dataclass(frozen=True)
class RequestContext:
    """Everything a download needs besides the file itself."""

    destination: str
    overwrite: bool = False
    regions: RegionSet = field(default_factory=RegionSet)
    filetypes: tuple[str, ...] | None = None


class DownloadOrchestrator:
    def __init__(
        self,
        client: VarvisClient,
        pipeline: RangedExtractionPipeline,
        metrics: DownloadMetrics | None = None,
    ) -> None:
        self.client = client
        self.pipeline = pipeline
        self.metrics: DownloadMetrics = metrics or DownloadMetrics()

    def execute(
        self,
        record: DownloadLinkRecord,
        index_record: DownloadLinkRecord | None,
        context: RequestContext,
        refresh_link: Callable[[], str | None] | None = None,
    ) -> DownloadOutcome:
        """
        Downloads `record` into the context's destination.

        Without regions the whole file is streamed and its index fetched on a best-effort
        basis. With regions the remote index is mandatory and the regions are extracted
        with samtools or tabix | bgzip, then indexed. `refresh_link` supplies a fresh
        pre-signed URL when the current one is about to expire.
        """
        if record.currently_archived:
            raise PreconditionError(f'File {record.file_name} is still archived')
        if not record.download_link:
            raise PreconditionError(f'File {record.file_name} has no download link')

        os.makedirs(context.destination, exist_ok=True)
        spec = get_file_type_spec(record.file_name)
        if spec is None:
            if context.regions:
                logger.warning(f'Ranged download is not supported for {record.file_name}, downloading the full file.')
            return download_file(
                self.client,
                record.download_link,
                os.path.join(context.destination, record.file_name),
                context.overwrite,
                self.metrics,
            )

        if not context.regions:
            return self._download_full(record, index_record, spec, context)
        return self._download_ranged(record, index_record, spec, context, refresh_link)

    def _download_full(
        self,
        record: DownloadLinkRecord,
        index_record: DownloadLinkRecord | None,
        spec: FileTypeSpec,
        context: RequestContext,
    ) -> DownloadOutcome:
        logger.info(f'Performing full download for file: {record.file_name}')
        output_path = os.path.join(context.destination, record.file_name)
        outcome = download_file(self.client, record.download_link or '', output_path, context.overwrite, self.metrics)

        index_name = spec.index_name(record.file_name)
        if index_record and index_record.download_link and matches_filetypes(index_name, list(context.filetypes or [])):
            logger.info(f'Downloading optional index file: {index_name}')
            try:
                download_file(
                    self.client,
                    index_record.download_link,
                    os.path.join(context.destination, index_name),
                    context.overwrite,
                    self.metrics,
                )
            except (VarvisDownloadError, requests.RequestException, OSError) as e:
                logger.warning(f'Failed to download index file {index_name}: {e}')
        else:
            logger.info(f'Index file for {record.file_name} not available, skipping index download.')

        self.pipeline.build_index(output_path, spec.kind)
        return outcome

    def _ensure_local_index(self, index_record: DownloadLinkRecord, index_path: str, overwrite: bool) -> None:
        if os.path.exists(index_path) and not overwrite:
            logger.info(f'Index file already exists: {index_path}')
            return
        logger.info(f'Downloading index file to {index_path}')
        download_file(self.client, index_record.download_link or '', index_path, True, self.metrics)

    def _source_url(self, url: str, refresh_link: Callable[[], str | None] | None) -> str:
        if refresh_link is None or not is_url_expiring_soon(url):
            return url
        remaining = get_url_remaining_seconds(url)
        if remaining is None:
            logger.info('Download URL carries no expiry information, refreshing it')
        else:
            logger.info(f'Download URL expires in {format_remaining_time(remaining)}, refreshing it')
        fresh_url = refresh_link()
        if not fresh_url:
            logger.warning('Could not refresh the download URL, using the current one')
            return url
        return fresh_url

    def _download_ranged(
        self,
        record: DownloadLinkRecord,
        index_record: DownloadLinkRecord | None,
        spec: FileTypeSpec,
        context: RequestContext,
        refresh_link: Callable[[], str | None] | None,
    ) -> DownloadOutcome:
        if index_record is None or not index_record.download_link or index_record.currently_archived:
            raise PreconditionError(
                f'Index file for {record.file_name} not found. Ranged download requires {spec.index_suffix} index.',
            )
        # The index of the full remote file, named after it so tabix finds it in its working directory
        index_path = os.path.join(context.destination, spec.index_name(record.file_name))
        self._ensure_local_index(index_record, index_path, context.overwrite)

        # tabix extracts one region per call, samtools handles the whole set at once
        if spec.kind is FileKind.VARIANT:
            region_sets = [RegionSet((region,)) for region in context.regions]
        else:
            region_sets = [context.regions]
        targets = [
            (regions, os.path.join(context.destination, derive_output_name(record.file_name, regions)))
            for regions in region_sets
        ]

        source_url = record.download_link or ''
        extracted = 0
        for regions, output_path in targets:
            if os.path.exists(output_path) and not context.overwrite:
                logger.info(f'File already exists: {output_path}, skipping download.')
                if not os.path.exists(index_path_for(output_path, spec.kind)):
                    # An earlier run stopped between extraction and indexing
                    logger.info(f'Index of {output_path} is missing, rebuilding it.')
                    self.pipeline.build_index(output_path, spec.kind)
                self.metrics.record_skip()
                continue
            logger.info(f'Performing ranged download for file: {record.file_name} with regions: {regions}')
            source_url = self._source_url(source_url, refresh_link)
            self.pipeline.extract(
                ExtractionJob(source_url=source_url, regions=regions, output_path=output_path, index_path=index_path),
                spec.kind,
            )
            self.pipeline.build_index(output_path, spec.kind, force=True)
            self.metrics.record_extraction()
            extracted += 1
        return DownloadOutcome.DOWNLOADED if extracted else DownloadOutcome.SKIPPED
