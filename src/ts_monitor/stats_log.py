#!/usr/bin/env python3
"""
Statistics Log Format and CSV Sink

One CSV line per published snapshot:

    Timestamp,TotalPackets,LostPackets,LossRate(%),Throughput(Mbps)
    2025-06-01 12:00:00.100,5230,0,0.0000,9.87

The analyzer only formats lines. Where they end up is the sink's
business; CsvStatsLogSink writes them to a timestamped file and flushes
after every line so a crash never loses more than the current record.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional, Protocol, TextIO, TYPE_CHECKING

if TYPE_CHECKING:
    from .aggregator import StatisticsSnapshot

logger = logging.getLogger(__name__)

LOG_HEADER = "Timestamp,TotalPackets,LostPackets,LossRate(%),Throughput(Mbps)"
LOG_COLUMNS = LOG_HEADER.split(',')

FILE_PREFIX = "udp_stats_"


def format_timestamp(timestamp: float) -> str:
    """Local time with millisecond precision: YYYY-MM-DD HH:MM:SS.mmm"""
    dt = datetime.fromtimestamp(timestamp)
    return dt.strftime('%Y-%m-%d %H:%M:%S.') + f"{dt.microsecond // 1000:03d}"


def format_log_line(snapshot: 'StatisticsSnapshot') -> str:
    """Format one snapshot as a CSV record (no trailing newline)"""
    return (f"{format_timestamp(snapshot.timestamp)},"
            f"{snapshot.total_packets},"
            f"{snapshot.lost_packets},"
            f"{snapshot.loss_rate_percent:.4f},"
            f"{snapshot.throughput_mbps:.2f}")


class StatsLogSink(Protocol):
    """
    Protocol for log sinks - embedding applications implement this.

    The publisher calls write_header() once when logging starts and
    write_line() once per snapshot.
    """

    def write_header(self, header: str) -> None:
        ...

    def write_line(self, line: str) -> None:
        ...

    def close(self) -> None:
        ...


class CsvStatsLogSink:
    """
    Writes statistics records to udp_stats_YYYYMMDD_HHMMSS.csv.

    Example:
        sink = CsvStatsLogSink(Path('./logs'))
        monitor.start('224.1.1.1', 1234, log_sink=sink)
    """

    def __init__(self, output_dir: Path, file_name: Optional[str] = None):
        """
        Create the output directory and open a new CSV file.

        Args:
            output_dir: Directory for statistics files
            file_name: Override the timestamped default name
        """
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)

        if file_name is None:
            file_name = f"{FILE_PREFIX}{datetime.now().strftime('%Y%m%d_%H%M%S')}.csv"
        self.path = self.output_dir / file_name

        self._file: Optional[TextIO] = open(self.path, 'w', newline='')
        self.lines_written = 0

        logger.info(f"CSV logging started: {self.path}")

    def write_header(self, header: str) -> None:
        self._write(header)

    def write_line(self, line: str) -> None:
        self._write(line)
        self.lines_written += 1

    def _write(self, text: str):
        if self._file is None:
            raise ValueError(f"CSV log {self.path} is closed")
        self._file.write(text + '\n')
        self._file.flush()

    def close(self) -> None:
        if self._file is None:
            return
        try:
            self._file.flush()
            self._file.close()
        finally:
            self._file = None
        logger.info(f"CSV logging stopped: {self.path} ({self.lines_written} records)")
