"""
Local file helpers: atomic writes and the streamed full-file download.
"""

import contextlib
import os
import time
from enum import Enum
from typing import TYPE_CHECKING

from loguru import logger
from tqdm import tqdm

from varvis_download.constants import DOWNLOAD_CHUNK_SIZE

if TYPE_CHECKING:
    from varvis_download.metrics import DownloadMetrics
    from varvis_download.varvis_api_utils import VarvisClient


class DownloadOutcome(Enum):
    DOWNLOADED = 'downloaded'
    SKIPPED = 'skipped'


def partial_path(path: str) -> str:
    return f'{path}.part'


def remove_if_exists(path: str) -> None:
    with contextlib.suppress(FileNotFoundError):
        os.remove(path)


def atomic_write_text(path: str, content: str) -> None:
    """Writes to a sibling temp file, fsyncs it and renames it over `path`."""
    directory = os.path.dirname(path) or '.'
    os.makedirs(directory, exist_ok=True)
    tmp_path = f'{path}.tmp-{os.getpid()}'
    try:
        with open(tmp_path, 'w', encoding='utf-8') as fh:
            fh.write(content)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_path, path)
    except OSError:
        remove_if_exists(tmp_path)
        raise


def download_file(
    client: 'VarvisClient',
    url: str,
    output_path: str,
    overwrite: bool,
    metrics: 'DownloadMetrics | None' = None,
) -> DownloadOutcome:
    """
    Streams `url` to `output_path` in 8MB chunks with a progress bar.

    The data lands in `<output_path>.part` first and is renamed into place only
    once complete, so an interrupted download never leaves a truncated file
    under the final name. An existing file is kept unless `overwrite` is set.
    """
    if os.path.exists(output_path) and not overwrite:
        logger.info(f'File already exists, skipping: {output_path}')
        if metrics:
            metrics.record_skip()
        return DownloadOutcome.SKIPPED

    logger.debug(f'Starting download for: {output_path}')
    os.makedirs(os.path.dirname(output_path) or '.', exist_ok=True)
    tmp_path = partial_path(output_path)
    start_time = time.monotonic()
    total_bytes = 0
    try:
        with client.stream(url) as response:
            total_size = int(response.headers.get('content-length', 0)) or None
            with (
                open(tmp_path, 'wb') as fh,
                tqdm(
                    total=total_size,
                    unit='B',
                    unit_scale=True,
                    unit_divisor=1024,
                    desc=os.path.basename(output_path),
                    leave=False,
                ) as pbar,
            ):
                for chunk in response.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE):
                    if not chunk:
                        continue
                    fh.write(chunk)
                    total_bytes += len(chunk)
                    pbar.update(len(chunk))
                fh.flush()
                os.fsync(fh.fileno())
        os.replace(tmp_path, output_path)
    except Exception as e:
        logger.error(f'Download interrupted for {output_path}: {e}')
        remove_if_exists(tmp_path)
        raise

    logger.info(f'Successfully downloaded {output_path}')
    if metrics:
        metrics.record_download(total_bytes, time.monotonic() - start_time)
    return DownloadOutcome.DOWNLOADED
