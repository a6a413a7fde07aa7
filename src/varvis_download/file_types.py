"""
This module defines shared data structures and types used across the downloader.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any


class FileKind(Enum):
    ALIGNMENT = 'alignment'
    VARIANT = 'variant'


@dataclass(frozen=True)
class FileTypeSpec:
    """Groups the file suffixes for an indexed, range-extractable file type."""

    kind: FileKind
    data_suffix: str  # e.g., 'bam'
    index_suffix: str  # e.g., 'bam.bai'

    def index_name(self, file_name: str) -> str:
        """Name of the companion index, e.g. 'S1.bam' -> 'S1.bam.bai'."""
        return f'{file_name}{self.index_suffix.removeprefix(self.data_suffix)}'


ALIGNMENT_SPEC = FileTypeSpec(kind=FileKind.ALIGNMENT, data_suffix='bam', index_suffix='bam.bai')
VARIANT_SPEC = FileTypeSpec(kind=FileKind.VARIANT, data_suffix='vcf.gz', index_suffix='vcf.gz.tbi')


def get_file_type_spec(file_name: str) -> FileTypeSpec | None:
    """
    Maps a file name to its indexed file type, or None for anything that is not
    an alignment or variant data file (indices included).
    """
    for spec in (ALIGNMENT_SPEC, VARIANT_SPEC):
        if file_name.endswith(f'.{spec.data_suffix}'):
            return spec
    return None


def matches_filetypes(file_name: str, filetypes: list[str] | None) -> bool:
    """True if no filter is given or the file name ends with one of the requested types."""
    if not filetypes:
        return True
    return any(file_name.endswith(f'.{filetype.lstrip(".")}') for filetype in filetypes)


@dataclass
class DownloadLinkRecord:
    """One file of an analysis as reported by the download-links endpoint."""

    file_name: str
    download_link: str | None
    currently_archived: bool = False

    @classmethod
    def from_api(cls, item: dict[str, Any]) -> 'DownloadLinkRecord':
        return cls(
            file_name=item['fileName'],
            download_link=item.get('downloadLink'),
            currently_archived=bool(item.get('currentlyArchived', False)),
        )
