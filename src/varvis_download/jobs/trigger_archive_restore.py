"""
Triggers restoration of archived files and records each successful request in the
restoration state file, so a later run can resume the download.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from loguru import logger

from varvis_download.constants import RESTORE_PATH
from varvis_download.errors import VarvisDownloadError
from varvis_download.file_types import DownloadLinkRecord
from varvis_download.restoration_state import RequestOptions, RestorationEntry, RestorationStateStore
from varvis_download.varvis_api_utils import VarvisClient


class RestoreMode(Enum):
    NO = 'no'
    ASK = 'ask'
    ALL = 'all'
    FORCE = 'force'


@dataclass
class RestoreDecision:
    """
    Whether archived files found during this session should be restored.

    'ask' prompts once per file, 'all' prompts once and reuses the answer for the
    rest of the session. Without a prompt (non-interactive runs) both mean no.
    """

    mode: RestoreMode
    prompt: Callable[[str], bool] | None = None
    _all_answer: bool | None = field(default=None, init=False, repr=False)

    def should_restore(self, file_name: str) -> bool:
        if self.mode is RestoreMode.NO:
            logger.info(f'Skipping restoration for archived file {file_name} as per "no" option.')
            return False
        if self.mode is RestoreMode.FORCE:
            logger.info(f'Force restoring archived file {file_name} without prompting.')
            return True
        if self.prompt is None:
            logger.info(f'Skipping restoration for archived file {file_name}: no interactive prompt available.')
            return False
        if self.mode is RestoreMode.ALL:
            if self._all_answer is None:
                self._all_answer = self.prompt('Restore all archived files?')
            if not self._all_answer:
                logger.info(f'Skipping restoration for archived file {file_name} as per "all" option decision.')
            return self._all_answer
        return self.prompt(f'File {file_name} is archived. Restore it?')


class RestorationCoordinator:
    def __init__(self, client: VarvisClient, store: RestorationStateStore) -> None:
        self.client = client
        self.store = store

    def trigger(
        self,
        analysis_id: str,
        file: DownloadLinkRecord,
        options: RequestOptions,
    ) -> RestorationEntry | None:
        """
        Requests restoration of the analysis holding `file` and persists the request.

        Returns the stored entry, or None if the request failed. Failures are logged,
        never raised or retried here; the file is simply unavailable for this run.
        """
        logger.info(f'Triggering restoration for archived file {file.file_name} (analysis ID: {analysis_id})')
        try:
            result = self.client.post_form(
                RESTORE_PATH,
                data={'analysisIds': str(analysis_id), 'disableArchive': 'false'},
            )
        except VarvisDownloadError as e:
            logger.error(f'Error triggering restoration for analysis {analysis_id}: {e}')
            return None

        if not isinstance(result, dict) or not result.get('success'):
            error_message_id = result.get('errorMessageId') if isinstance(result, dict) else None
            logger.error(f'Failed to initiate restoration for analysis {analysis_id}: {error_message_id}')
            return None

        response = result.get('response')
        restore_estimation = None
        if isinstance(response, list) and response and isinstance(response[0], dict):
            restore_estimation = response[0].get('restoreEstimation')
        if isinstance(restore_estimation, bool) or not isinstance(restore_estimation, str | int | float | None):
            logger.warning(f'Ignoring unexpected restoreEstimation {restore_estimation!r}')
            restore_estimation = None
        logger.info(f'Restoration initiated for analysis {analysis_id}. Expected availability: {restore_estimation}')

        entry = RestorationEntry(
            analysis_id=str(analysis_id),
            file_name=file.file_name,
            restore_estimation=restore_estimation,
            options=options,
        )
        try:
            self.store.upsert(entry)
        except OSError as e:
            logger.error(f'Could not record restoration of {file.file_name} in {self.store.path}: {e}')
            return None
        return entry
