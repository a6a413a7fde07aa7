"""
Genomic regions requested for a ranged download, parsed from a range string
(`chr1:1-100 chr2:5-50`) or from a BED file, and the output names derived from them.
"""

import os
import re
from collections.abc import Iterator
from dataclasses import dataclass

from loguru import logger

from varvis_download.constants import MULTI_REGION_TOKEN, WHOLE_CHROMOSOME_END

REGION_PATTERN = re.compile(r'^(?P<chrom>[^:\s]+)(?::(?P<start>[\d,]+)-(?P<end>[\d,]+))?$')
BED_SKIP_PREFIXES = ('#', 'track', 'browser')

# Compound suffixes that must stay intact when a region token is inserted
COMPOUND_EXTENSIONS = ('.vcf.gz.tbi', '.vcf.gz', '.bam.bai')


@dataclass(frozen=True)
class GenomicRegion:
    chrom: str
    start: int | None = None
    end: int | None = None

    @classmethod
    def parse(cls, region: str) -> 'GenomicRegion':
        match = REGION_PATTERN.match(region.strip())
        if not match:
            raise ValueError(f'Invalid genomic region: {region}')
        if match.group('start') is None:
            return cls(chrom=match.group('chrom'))
        start = int(match.group('start').replace(',', ''))
        end = int(match.group('end').replace(',', ''))
        if end < start:
            raise ValueError(f'Invalid genomic region: {region} (end before start)')
        return cls(chrom=match.group('chrom'), start=start, end=end)

    @property
    def is_whole_chromosome(self) -> bool:
        return self.start is None

    def __str__(self) -> str:
        if self.is_whole_chromosome:
            return self.chrom
        return f'{self.chrom}:{self.start}-{self.end}'

    def to_bed_line(self) -> str:
        if self.is_whole_chromosome:
            return f'{self.chrom}\t1\t{WHOLE_CHROMOSOME_END}'
        return f'{self.chrom}\t{self.start}\t{self.end}'


@dataclass(frozen=True)
class RegionSet:
    """An ordered list of regions. An empty set means the full file."""

    regions: tuple[GenomicRegion, ...] = ()

    @classmethod
    def from_range_string(cls, range_string: str | None) -> 'RegionSet':
        if not range_string:
            return cls()
        return cls(tuple(GenomicRegion.parse(token) for token in range_string.split()))

    @classmethod
    def from_bed_file(cls, bed_path: str) -> 'RegionSet':
        """
        Reads regions from a BED file. Coordinates are taken as written.
        Raises OSError if the file cannot be read.
        """
        regions: list[GenomicRegion] = []
        with open(bed_path, encoding='utf-8') as bed_file:
            for line_number, line in enumerate(bed_file, start=1):
                stripped = line.strip()
                if not stripped or stripped.startswith(BED_SKIP_PREFIXES):
                    continue
                columns = stripped.split()
                try:
                    if len(columns) >= 3:  # noqa: PLR2004
                        regions.append(GenomicRegion.parse(f'{columns[0]}:{columns[1]}-{columns[2]}'))
                    else:
                        regions.append(GenomicRegion.parse(columns[0]))
                except ValueError as e:
                    raise ValueError(f'{bed_path}:{line_number}: {e}') from e
        logger.debug(f'Read {len(regions)} regions from BED file {bed_path}')
        return cls(tuple(regions))

    @classmethod
    def from_options(cls, range_string: str | None, bed_path: str | None) -> 'RegionSet':
        """The range string wins over the BED file when both are given."""
        if range_string:
            return cls.from_range_string(range_string)
        if bed_path:
            return cls.from_bed_file(bed_path)
        return cls()

    def __len__(self) -> int:
        return len(self.regions)

    def __iter__(self) -> Iterator[GenomicRegion]:
        return iter(self.regions)

    def __bool__(self) -> bool:
        return bool(self.regions)

    def to_bed(self) -> str:
        return ''.join(f'{region.to_bed_line()}\n' for region in self.regions)

    def __str__(self) -> str:
        return ' '.join(str(region) for region in self.regions)


def _split_extension(file_name: str) -> tuple[str, str]:
    for extension in COMPOUND_EXTENSIONS:
        if file_name.endswith(extension):
            return file_name[: -len(extension)], extension
    return os.path.splitext(file_name)


def derive_output_name(file_name: str, regions: RegionSet | list[str] | None) -> str:
    """
    Inserts the region into a file name just before its primary extension.

    'S1.vcf.gz' + [chr1:1-100] -> 'S1.chr1_1_100.vcf.gz'
    'S1.bam' + [chr1:1-100, chr2:5-50] -> 'S1.multiple-regions.bam'
    Without regions (or a single empty region) the name is returned unchanged.
    """
    region_strings = [str(region) for region in regions or []]
    if not region_strings or region_strings == ['']:
        return file_name

    if len(region_strings) > 1:
        token = MULTI_REGION_TOKEN
    else:
        token = re.sub(r'[:-]', '_', region_strings[0])

    base_name, extension = _split_extension(file_name)
    return f'{base_name}.{token}{extension}'
