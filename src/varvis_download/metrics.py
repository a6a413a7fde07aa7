"""
Download statistics for one run and the summary report printed at the end.
"""

import time
from dataclasses import dataclass, field

from loguru import logger

from varvis_download.file_utils import atomic_write_text


@dataclass
class DownloadMetrics:
    start_time: float = field(default_factory=time.monotonic)
    total_files_downloaded: int = 0
    total_files_skipped: int = 0
    total_files_extracted: int = 0
    total_bytes_downloaded: int = 0
    download_speeds: list[float] = field(default_factory=list)

    def record_download(self, num_bytes: int, duration_seconds: float) -> None:
        self.total_files_downloaded += 1
        self.total_bytes_downloaded += num_bytes
        if duration_seconds > 0:
            self.download_speeds.append(num_bytes / duration_seconds)

    def record_skip(self) -> None:
        self.total_files_skipped += 1

    def record_extraction(self) -> None:
        self.total_files_extracted += 1

    @property
    def average_speed(self) -> float:
        if not self.download_speeds:
            return 0.0
        return sum(self.download_speeds) / len(self.download_speeds)


def generate_report(metrics: DownloadMetrics, reportfile: str | None = None) -> str:
    """Logs the summary report and writes it to `reportfile` if one is given."""
    total_time = time.monotonic() - metrics.start_time
    report = (
        '\nDownload Summary Report:\n'
        '------------------------\n'
        f'Total Files Downloaded: {metrics.total_files_downloaded}\n'
        f'Total Files Extracted: {metrics.total_files_extracted}\n'
        f'Total Files Skipped: {metrics.total_files_skipped}\n'
        f'Total Bytes Downloaded: {metrics.total_bytes_downloaded}\n'
        f'Average Download Speed: {metrics.average_speed:.2f} bytes/sec\n'
        f'Total Time Taken: {total_time:.2f} seconds\n'
    )
    logger.info(report)
    if reportfile:
        atomic_write_text(reportfile, report)
        logger.info(f'Report written to {reportfile}')
    return report
