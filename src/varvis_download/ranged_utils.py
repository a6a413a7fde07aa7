"""
Ranged extraction of indexed remote files with samtools and tabix | bgzip.

Alignment files are extracted by a single `samtools view` call over a temporary
BED file. Variant files go through a two-process pipeline: tabix streams the
requested regions from the remote URL into bgzip, which writes the compressed
result. Both processes are awaited independently and their results are merged
only once both are known, so a tabix failure is never hidden by a bgzip that
exited 0 on truncated input.

All outputs are written to `<output>.part` and renamed into place on success.
"""

import os
import subprocess
import tempfile
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import IO

from loguru import logger

from varvis_download.config import ToolPaths
from varvis_download.errors import SubprocessFailureError
from varvis_download.file_types import FileKind
from varvis_download.file_utils import partial_path, remove_if_exists
from varvis_download.regions import RegionSet, derive_output_name
from varvis_download.utils import run_subprocess_with_log, validate_cli_argument

INDEX_EXTENSIONS: dict[FileKind, str] = {
    FileKind.ALIGNMENT: '.bai',
    FileKind.VARIANT: '.tbi',
}


@dataclass(frozen=True)
class ExtractionJob:
    """One ranged extraction attempt. Built per attempt and never persisted."""

    source_url: str
    regions: RegionSet
    output_path: str
    index_path: str
    requires_index: bool = True


@dataclass(frozen=True)
class ProcessResult:
    tool: str
    returncode: int
    stderr: str = ''

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def merge_pipeline_results(extractor: ProcessResult, compressor: ProcessResult) -> None:
    """
    Resolves the outcome of an extractor | compressor pipeline once both have exited.

    A failed compressor wins. Otherwise a failed extractor fails the pipeline even
    though the compressor exited 0, since its output is then truncated.
    """
    if not compressor.ok:
        raise SubprocessFailureError(compressor.tool, compressor.returncode, compressor.stderr)
    if not extractor.ok:
        raise SubprocessFailureError(extractor.tool, extractor.returncode, extractor.stderr)


def _drain_and_wait(process: 'subprocess.Popen[bytes]', tool: str) -> ProcessResult:
    """Reads the process' stderr to EOF, then waits for it to exit."""
    stderr_pipe: IO[bytes] | None = process.stderr
    stderr = ''
    if stderr_pipe is not None:
        with stderr_pipe:
            stderr = stderr_pipe.read().decode(errors='replace').strip()
    returncode = process.wait()
    if stderr:
        logger.debug(f'[{tool} stderr]: {stderr}')
    return ProcessResult(tool=tool, returncode=returncode, stderr=stderr)


def index_path_for(path: str, kind: FileKind) -> str:
    return f'{path}{INDEX_EXTENSIONS[kind]}'


class RangedExtractionPipeline:
    derive_output_name = staticmethod(derive_output_name)

    def __init__(self, tools: ToolPaths | None = None) -> None:
        self.tools: ToolPaths = tools or ToolPaths()

    def extract(self, job: ExtractionJob, kind: FileKind) -> None:
        if not job.regions:
            raise ValueError(f'No regions given for ranged extraction of {job.output_path}')
        for region in job.regions:
            validate_cli_argument(str(region), 'region')
        if job.requires_index and not os.path.exists(job.index_path):
            raise FileNotFoundError(f'Local index {job.index_path} is missing')

        os.makedirs(os.path.dirname(job.output_path) or '.', exist_ok=True)
        if kind is FileKind.ALIGNMENT:
            self._extract_alignment(job)
        else:
            self._extract_variant(job)

    def _extract_alignment(self, job: ExtractionJob) -> None:
        tmp_output = partial_path(job.output_path)
        with tempfile.NamedTemporaryFile('w', suffix='.bed', prefix='regions-', delete=False) as bed_file:
            bed_file.write(job.regions.to_bed())
            bed_path = bed_file.name
        logger.debug(f'Downloading BAM for regions in BED file: {bed_path}')

        cmd = [
            self.tools.samtools,
            'view',
            '-b',
            '-X',
            job.source_url,
            job.index_path,
            '-L',
            bed_path,
            '-M',
            '-o',
            tmp_output,
        ]
        try:
            run_subprocess_with_log(cmd, 'samtools view')
            os.replace(tmp_output, job.output_path)
        except subprocess.CalledProcessError as e:
            remove_if_exists(tmp_output)
            raise SubprocessFailureError('samtools', e.returncode, (e.stderr or '').strip()) from e
        except OSError as e:
            remove_if_exists(tmp_output)
            raise SubprocessFailureError('samtools', None, str(e)) from e
        finally:
            remove_if_exists(bed_path)
        logger.info(f'Downloaded BAM file for regions {job.regions} to {job.output_path}')

    def _extract_variant(self, job: ExtractionJob) -> None:
        # tabix looks up the index by file name relative to its working directory
        index_dir = os.path.dirname(os.path.abspath(job.index_path))
        tmp_output = partial_path(job.output_path)
        extractor_cmd = [self.tools.tabix, '-h', job.source_url, *(str(region) for region in job.regions)]
        compressor_cmd = [self.tools.bgzip, '-c']
        logger.info(f'Executing in {index_dir}: {" ".join(extractor_cmd)}')
        logger.info(f'Piping to: {" ".join(compressor_cmd)}')

        output_file = open(tmp_output, 'wb')  # noqa: SIM115
        try:
            try:
                extractor = subprocess.Popen(  # noqa: S603
                    extractor_cmd,
                    cwd=index_dir,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                )
            except OSError as e:
                raise SubprocessFailureError('tabix', None, str(e)) from e

            try:
                compressor = subprocess.Popen(  # noqa: S603
                    compressor_cmd,
                    stdin=extractor.stdout,
                    stdout=output_file,
                    stderr=subprocess.PIPE,
                )
            except OSError as e:
                extractor.kill()
                _drain_and_wait(extractor, 'tabix')
                raise SubprocessFailureError('bgzip', None, str(e)) from e
            finally:
                # Only the compressor reads the extractor's stdout
                if extractor.stdout is not None:
                    extractor.stdout.close()

            with ThreadPoolExecutor(max_workers=2, thread_name_prefix='pipeline') as executor:
                extractor_future = executor.submit(_drain_and_wait, extractor, 'tabix')
                compressor_future = executor.submit(_drain_and_wait, compressor, 'bgzip')
                extractor_result = extractor_future.result()
                compressor_result = compressor_future.result()

            merge_pipeline_results(extractor_result, compressor_result)

            output_file.flush()
            os.fsync(output_file.fileno())
            output_file.close()
            os.replace(tmp_output, job.output_path)
        except Exception:
            output_file.close()
            remove_if_exists(tmp_output)
            raise
        logger.info(f'Ranged VCF download complete: {job.output_path}')

    def build_index(self, path: str, kind: FileKind, force: bool = False) -> str:
        """
        Indexes a local BAM (`samtools index`) or bgzipped VCF (`tabix -p vcf`).
        Skipped when the index already exists, unless forced. Returns the index path.
        """
        index_path = index_path_for(path, kind)
        if os.path.exists(index_path) and not force:
            logger.info(f'Index file already exists: {index_path}, skipping indexing.')
            return index_path

        if kind is FileKind.ALIGNMENT:
            tool = 'samtools'
            cmd = [self.tools.samtools, 'index', path]
        else:
            tool = 'tabix'
            cmd = [self.tools.tabix, '-f', '-p', 'vcf', path]

        try:
            run_subprocess_with_log(cmd, f'{tool} index')
        except subprocess.CalledProcessError as e:
            raise SubprocessFailureError(tool, e.returncode, (e.stderr or '').strip()) from e
        except OSError as e:
            raise SubprocessFailureError(tool, None, str(e)) from e
        logger.info(f'Indexed {path}')
        return index_path
