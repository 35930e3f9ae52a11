import unittest
import tempfile
import shutil
import sys
from datetime import datetime
from pathlib import Path

src_path = str(Path(__file__).parent.parent / 'src')
if src_path not in sys.path:
    sys.path.append(src_path)

from ts_monitor.aggregator import StatisticsSnapshot
from ts_monitor.stats_log import (
    CsvStatsLogSink, LOG_HEADER, format_log_line, format_timestamp,
)


class TestLogFormat(unittest.TestCase):

    def test_timestamp_has_milliseconds(self):
        ts = datetime(2025, 6, 1, 12, 30, 45, 123456).timestamp()
        self.assertEqual(format_timestamp(ts), "2025-06-01 12:30:45.123")

    def test_line_fields_in_order(self):
        ts = datetime(2025, 6, 1, 12, 0, 0, 100000).timestamp()
        snapshot = StatisticsSnapshot(
            total_packets=5, lost_packets=1,
            loss_rate_percent=20.0, throughput_mbps=9.876,
            timestamp=ts,
        )
        self.assertEqual(format_log_line(snapshot),
                         "2025-06-01 12:00:00.100,5,1,20.0000,9.88")

    def test_header(self):
        self.assertEqual(LOG_HEADER,
                         "Timestamp,TotalPackets,LostPackets,LossRate(%),Throughput(Mbps)")


class TestCsvStatsLogSink(unittest.TestCase):
    def setUp(self):
        self.test_dir = Path(tempfile.mkdtemp())

    def tearDown(self):
        shutil.rmtree(self.test_dir)

    def test_writes_and_flushes_each_line(self):
        sink = CsvStatsLogSink(self.test_dir / 'logs')
        self.assertTrue(sink.path.name.startswith('udp_stats_'))
        self.assertEqual(sink.path.suffix, '.csv')

        sink.write_header(LOG_HEADER)
        sink.write_line("2025-06-01 12:00:00.100,5,1,20.0000,9.88")

        # Readable before close
        lines = sink.path.read_text().splitlines()
        self.assertEqual(lines, [LOG_HEADER, "2025-06-01 12:00:00.100,5,1,20.0000,9.88"])

        sink.close()
        sink.close()
        self.assertEqual(sink.lines_written, 1)

    def test_write_after_close_raises(self):
        sink = CsvStatsLogSink(self.test_dir, file_name='stats.csv')
        sink.close()
        with self.assertRaises(ValueError):
            sink.write_line("x")


if __name__ == '__main__':
    unittest.main()
