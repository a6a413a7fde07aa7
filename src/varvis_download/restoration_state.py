"""
Durable record of restore requests that are still waiting to be downloaded.

The state file is a pretty-printed JSON array, one object per pending file:

    [
      {
        "analysisId": "123",
        "fileName": "S1.bam",
        "restoreEstimation": "2024-01-15T12:00:00Z",
        "options": {"destination": "out", "overwrite": false}
      }
    ]

It is a materialized snapshot: every mutation rewrites the whole file through
a temp file, fsync and atomic rename. There is a single writer and no locking;
concurrent invocations against the same file need external mutual exclusion.
"""

import json
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from loguru import logger

from varvis_download.errors import StateCorruptionError
from varvis_download.file_utils import atomic_write_text

# Persisted option keys, in the order they are written
OPTION_KEYS = ('destination', 'overwrite', 'range', 'bed', 'restorationFile', 'filetypes')


class UpsertResult(Enum):
    INSERTED = 'inserted'
    UPDATED = 'updated'


@dataclass(frozen=True)
class RequestOptions:
    """The request context an archived file was asked for with, needed to resume it later."""

    destination: str | None = None
    overwrite: bool | None = None
    range: str | None = None
    bed: str | None = None
    restoration_file: str | None = None
    filetypes: tuple[str, ...] | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        values = {
            'destination': self.destination,
            'overwrite': self.overwrite,
            'range': self.range,
            'bed': self.bed,
            'restorationFile': self.restoration_file,
            'filetypes': list(self.filetypes) if self.filetypes is not None else None,
        }
        data = {key: value for key, value in values.items() if value is not None}
        data.update(self.extra)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> 'RequestOptions':
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise StateCorruptionError(f'options must be an object, got {type(data).__name__}')

        def _optional(key: str, expected: type | tuple[type, ...]) -> Any:
            value = data.get(key)
            if value is not None and not isinstance(value, expected):
                raise StateCorruptionError(f'options.{key} has unexpected type {type(value).__name__}')
            return value

        filetypes = _optional('filetypes', list)
        if filetypes is not None and not all(isinstance(ft, str) for ft in filetypes):
            raise StateCorruptionError('options.filetypes must be a list of strings')
        return cls(
            destination=_optional('destination', str),
            overwrite=_optional('overwrite', bool),
            range=_optional('range', str),
            bed=_optional('bed', str),
            restoration_file=_optional('restorationFile', str),
            filetypes=tuple(filetypes) if filetypes is not None else None,
            extra={key: value for key, value in data.items() if key not in OPTION_KEYS},
        )

    def canonical(self) -> str:
        """Key-order independent serialization used for identity comparison."""
        return json.dumps(self.to_dict(), sort_keys=True, separators=(',', ':'))


@dataclass
class RestorationEntry:
    analysis_id: str
    file_name: str
    restore_estimation: str | int | float | None = None
    options: RequestOptions = field(default_factory=RequestOptions)
    # The object as read from the state file, written back unchanged on rewrites
    raw: dict[str, Any] | None = field(default=None, compare=False, repr=False)

    @property
    def identity_key(self) -> tuple[str, str, str]:
        return (self.analysis_id, self.file_name, self.options.canonical())

    def to_dict(self) -> dict[str, Any]:
        return {
            'analysisId': self.analysis_id,
            'fileName': self.file_name,
            'restoreEstimation': self.restore_estimation,
            'options': self.options.to_dict(),
        }

    def stored_form(self) -> dict[str, Any]:
        return self.raw if self.raw is not None else self.to_dict()

    @classmethod
    def from_dict(cls, data: Any) -> 'RestorationEntry':
        if not isinstance(data, dict):
            raise StateCorruptionError(f'entry must be an object, got {type(data).__name__}')
        analysis_id = data.get('analysisId')
        file_name = data.get('fileName')
        estimation = data.get('restoreEstimation')
        if isinstance(analysis_id, bool) or not isinstance(analysis_id, str | int) or analysis_id == '':
            raise StateCorruptionError(f'entry has an invalid analysisId: {analysis_id!r}')
        if not isinstance(file_name, str) or not file_name:
            raise StateCorruptionError(f'entry has an invalid fileName: {file_name!r}')
        if isinstance(estimation, bool) or not isinstance(estimation, str | int | float | None):
            raise StateCorruptionError(f'entry has an invalid restoreEstimation: {estimation!r}')
        return cls(
            analysis_id=str(analysis_id),
            file_name=file_name,
            restore_estimation=estimation,
            options=RequestOptions.from_dict(data.get('options')),
            raw=data,
        )

    def estimated_ready_at(self) -> datetime | None:
        """
        The estimated restore time as an aware datetime, or None if there is none.
        Numbers are epoch milliseconds; naive ISO-8601 timestamps are read as UTC.
        Raises ValueError if the estimation cannot be parsed.
        """
        estimation = self.restore_estimation
        if estimation is None or estimation == '':  # noqa: PLC1901
            return None
        if isinstance(estimation, int | float):
            return datetime.fromtimestamp(estimation / 1000, tz=timezone.utc)
        text = estimation.strip()
        if text.endswith(('Z', 'z')):
            text = f'{text[:-1]}+00:00'
        parsed = datetime.fromisoformat(text)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed


def is_ready(entry: RestorationEntry, now: datetime) -> bool:
    """
    Missing estimations are always ready. Unparsable ones are ready as well, so the
    fresh archive status reported by the API decides instead.
    """
    try:
        ready_at = entry.estimated_ready_at()
    except (ValueError, OverflowError, OSError):
        logger.warning(
            f'Unparsable restoreEstimation {entry.restore_estimation!r} for {entry.file_name} '
            f'(analysis {entry.analysis_id}), treating it as ready',
        )
        return True
    return ready_at is None or ready_at <= now


def partition_entries(
    entries: list[RestorationEntry],
    now: datetime,
) -> tuple[list[RestorationEntry], list[RestorationEntry]]:
    """Splits entries into (ready, pending), each keeping the original relative order."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    ready: list[RestorationEntry] = []
    pending: list[RestorationEntry] = []
    for entry in entries:
        (ready if is_ready(entry, now) else pending).append(entry)
    return ready, pending


@dataclass(frozen=True)
class UnparsedEntry:
    """A stored item that failed validation. It is kept verbatim so that no rewrite drops it."""

    raw: Any
    reason: str


StoredItem = RestorationEntry | UnparsedEntry


def parse_items(raw_items: list[Any], source: str) -> list[StoredItem]:
    """Validates each stored item on its own; invalid ones become UnparsedEntry with a warning."""
    items: list[StoredItem] = []
    for position, raw_item in enumerate(raw_items, start=1):
        try:
            items.append(RestorationEntry.from_dict(raw_item))
        except StateCorruptionError as e:
            logger.warning(f'Skipping invalid restoration entry #{position} in {source}, keeping it as is: {e}')
            items.append(UnparsedEntry(raw=raw_item, reason=str(e)))
    return items


def valid_entries(items: list[StoredItem]) -> list[RestorationEntry]:
    return [item for item in items if isinstance(item, RestorationEntry)]


def serialize_entries(items: list[StoredItem]) -> str:
    stored = [item.raw if isinstance(item, UnparsedEntry) else item.stored_form() for item in items]
    return json.dumps(stored, indent=2, ensure_ascii=False)


class RestorationStateStore:
    def __init__(self, path: str) -> None:
        self.path: str = path

    def _load(self) -> list[Any]:
        """
        Returns the raw items of the state file. Raises StateCorruptionError only if the
        file is not valid JSON or not an array; single items are validated by parse_items.
        """
        try:
            with open(self.path, encoding='utf-8') as state_file:
                data = json.load(state_file)
        except (OSError, ValueError) as e:
            raise StateCorruptionError(f'Failed to parse restoration file {self.path}: {e}') from e
        if not isinstance(data, list):
            raise StateCorruptionError(f'Restoration file {self.path} does not contain a valid array')
        return data

    def load_items(self) -> list[StoredItem] | None:
        """
        Returns every stored item in file order, invalid ones as UnparsedEntry.
        None if the file is absent or corrupt. Corruption is logged, never raised.
        """
        if not os.path.exists(self.path):
            logger.debug(f'Restoration file not found: {self.path}')
            return None
        try:
            raw_items = self._load()
        except StateCorruptionError as e:
            logger.error(str(e))
            return None
        return parse_items(raw_items, self.path)

    def read(self) -> list[RestorationEntry] | None:
        """Returns the valid stored entries, or None if the file is absent, corrupt or holds none."""
        items = self.load_items()
        if items is None:
            return None
        entries = valid_entries(items)
        if not entries:
            logger.debug(f'Restoration file {self.path} holds no valid entries')
            return None
        return entries

    def write(self, items: list[StoredItem]) -> None:
        atomic_write_text(self.path, serialize_entries(items))
        logger.debug(f'Updated restoration file: {self.path}')

    def upsert(self, entry: RestorationEntry) -> UpsertResult:
        """
        Replaces the entry with the same (analysisId, fileName, options) in place, or appends it.
        Invalid stored items are carried over unchanged. Only an unreadable file is replaced.
        """
        items: list[StoredItem] = []
        if os.path.exists(self.path):
            try:
                items = parse_items(self._load(), self.path)
            except StateCorruptionError as e:
                logger.warning(f'{e}. Starting fresh.')

        key = entry.identity_key
        for index, existing in enumerate(items):
            if isinstance(existing, RestorationEntry) and existing.identity_key == key:
                items[index] = entry
                result = UpsertResult.UPDATED
                logger.info(
                    f'Updated existing restoration entry for analysis {entry.analysis_id}, file {entry.file_name}.',
                )
                break
        else:
            items.append(entry)
            result = UpsertResult.INSERTED
            logger.info(f'Appended new restoration entry for analysis {entry.analysis_id}, file {entry.file_name}.')

        self.write(items)
        logger.info(f'Restoration info written to {self.path}')
        return result

    def remove(self, analysis_id: str, file_name: str) -> bool:
        """Removes the first entry for this analysis and file. False if there was none."""
        items = self.load_items()
        if not items:
            return False
        for index, item in enumerate(items):
            if (
                isinstance(item, RestorationEntry)
                and item.analysis_id == str(analysis_id)
                and item.file_name == file_name
            ):
                del items[index]
                self.write(items)
                logger.info(f'Removed restoration entry for {file_name} (analysis {analysis_id})')
                return True
        return False

    def partition(self, now: datetime | None = None) -> tuple[list[RestorationEntry], list[RestorationEntry]]:
        entries = self.read()
        if not entries:
            return [], []
        return partition_entries(entries, now or datetime.now(timezone.utc))
