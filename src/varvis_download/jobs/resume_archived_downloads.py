"""
Resumes downloads of archived files once their restoration is expected to be done.

One sequential pass over the restoration state file: entries that are not ready yet
are kept untouched, ready entries are re-checked against a fresh file listing and
downloaded with the options they were requested with. Successful downloads leave
the file; every other outcome keeps the entry for the next pass. Stored items
that fail validation are written back exactly as they were read.
"""

from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from loguru import logger

from varvis_download.file_types import get_file_type_spec
from varvis_download.jobs.download_file_record import DownloadOrchestrator, RequestContext
from varvis_download.jobs.list_download_links import get_download_links, make_link_refresher
from varvis_download.jobs.trigger_archive_restore import RestoreDecision, RestoreMode
from varvis_download.regions import RegionSet
from varvis_download.restoration_state import (
    RequestOptions,
    RestorationEntry,
    RestorationStateStore,
    StoredItem,
    partition_entries,
    valid_entries,
)
from varvis_download.varvis_api_utils import VarvisClient


class EntryStatus(Enum):
    """
    Lifecycle of a restoration entry. All non-terminal states go back to
    READY_FOR_RETRY on the next pass; only DOWNLOAD_SUCCEEDED removes the entry.
    """

    RESTORE_REQUESTED = 'restore_requested'
    READY_FOR_RETRY = 'ready_for_retry'
    STILL_ARCHIVED = 'still_archived'
    NOT_FOUND = 'not_found'
    DOWNLOAD_FAILED = 'download_failed'
    DOWNLOAD_SUCCEEDED = 'download_succeeded'


@dataclass
class ResumeSummary:
    pending: int = 0
    # Stored items that failed validation, carried over unchanged
    unparsed: int = 0
    results: list[tuple[RestorationEntry, EntryStatus]] = field(default_factory=list)

    @property
    def counts(self) -> Counter[EntryStatus]:
        return Counter(status for _, status in self.results)

    @property
    def succeeded(self) -> int:
        return self.counts[EntryStatus.DOWNLOAD_SUCCEEDED]

    @property
    def retained(self) -> int:
        return self.pending + self.unparsed + len(self.results) - self.succeeded


class ResumeScheduler:
    def __init__(
        self,
        client: VarvisClient,
        store: RestorationStateStore,
        orchestrator: DownloadOrchestrator,
        default_destination: str = '.',
        default_overwrite: bool = False,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.client = client
        self.store = store
        self.orchestrator = orchestrator
        self.default_destination = default_destination
        self.default_overwrite = default_overwrite
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def build_context(self, options: RequestOptions) -> RequestContext:
        """
        Rebuilds the request context an entry was created with. Destination and
        overwrite fall back to this run's defaults; a range wins over a BED file.
        Raises OSError or ValueError if the stored BED file can no longer be read.
        """
        return RequestContext(
            destination=options.destination or self.default_destination,
            overwrite=options.overwrite if options.overwrite is not None else self.default_overwrite,
            regions=RegionSet.from_options(options.range, options.bed),
            filetypes=options.filetypes,
        )

    def run(self, now: datetime | None = None) -> ResumeSummary:
        summary = ResumeSummary()
        items = self.store.load_items()
        entries = valid_entries(items) if items else []
        if not entries:
            logger.info(f'No restoration entries found in {self.store.path}. Nothing to resume.')
            return summary

        ready, pending = partition_entries(entries, now or self.clock())
        summary.pending = len(pending)
        summary.unparsed = len(items) - len(entries)
        if not ready:
            logger.info(f'{len(pending)} restoration entries are still pending, none is ready yet.')
            return summary

        logger.info(f'{len(ready)} restoration entries are ready, {len(pending)} still pending.')
        ready_ids = {id(entry) for entry in ready}
        remaining: list[StoredItem] = []
        for item in items:
            if id(item) not in ready_ids:
                remaining.append(item)
                continue
            status = self.resume_entry(item)
            summary.results.append((item, status))
            if status is not EntryStatus.DOWNLOAD_SUCCEEDED:
                remaining.append(item)

        self.store.write(remaining)
        logger.info(
            f'Archive resumption pass complete: {summary.succeeded} downloaded, {summary.retained} kept for retry.',
        )
        return summary

    def resume_entry(self, entry: RestorationEntry) -> EntryStatus:
        """Attempts one entry. Never raises: any failure keeps the entry for the next pass."""
        logger.info(f'Resuming download for analysis {entry.analysis_id}, file {entry.file_name}')
        try:
            # Restore-suppressed: no coordinator, so the restore endpoint is never called from here
            files = get_download_links(self.client, entry.analysis_id, None, RestoreDecision(RestoreMode.NO))
            record = files.get(entry.file_name)
            if record is None:
                logger.warning(
                    f'File {entry.file_name} not found for analysis {entry.analysis_id}. Keeping for retry.',
                )
                return EntryStatus.NOT_FOUND
            if record.currently_archived:
                logger.warning(
                    f'File {entry.file_name} is still archived for analysis {entry.analysis_id}. Keeping for retry.',
                )
                return EntryStatus.STILL_ARCHIVED

            context = self.build_context(entry.options)
            spec = get_file_type_spec(entry.file_name)
            index_record = files.get(spec.index_name(entry.file_name)) if spec else None
            self.orchestrator.execute(
                record,
                index_record,
                context,
                refresh_link=make_link_refresher(self.client, entry.analysis_id, entry.file_name),
            )
        except Exception as e:  # noqa: BLE001
            logger.error(
                f'Failed to resume download for {entry.file_name} (analysis {entry.analysis_id}): '
                f'{type(e).__name__}: {e}. Keeping for retry.',
            )
            return EntryStatus.DOWNLOAD_FAILED

        logger.info(f'Successfully resumed download for {entry.file_name} (analysis {entry.analysis_id})')
        return EntryStatus.DOWNLOAD_SUCCEEDED
