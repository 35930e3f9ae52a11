import unittest
import tempfile
import shutil
import sys
from pathlib import Path

src_path = str(Path(__file__).parent.parent / 'src')
if src_path not in sys.path:
    sys.path.append(src_path)

from ts_monitor.report import load_stats_csv, summarize_stats, plot_stats, format_summary
from ts_monitor.stats_log import LOG_HEADER

ROWS = [
    "2025-06-01 12:00:00.100,100,0,0.0000,9.50",
    "2025-06-01 12:00:00.200,200,2,1.0000,10.50",
    "2025-06-01 12:00:00.300,300,2,0.6667,10.00",
    "2025-06-01 12:00:01.300,400,4,1.0000,8.00",
]


class TestReport(unittest.TestCase):
    def setUp(self):
        self.test_dir = Path(tempfile.mkdtemp())
        self.csv_path = self.test_dir / 'udp_stats_20250601_120000.csv'
        self.csv_path.write_text('\n'.join([LOG_HEADER] + ROWS) + '\n')

    def tearDown(self):
        shutil.rmtree(self.test_dir)

    def test_summary(self):
        summary = summarize_stats(load_stats_csv(self.csv_path))

        self.assertEqual(summary['records'], 4)
        self.assertAlmostEqual(summary['duration_sec'], 1.2, places=3)
        self.assertEqual(summary['total_packets'], 400)
        self.assertEqual(summary['lost_packets'], 4)
        self.assertEqual(summary['loss_windows'], 2)
        self.assertAlmostEqual(summary['throughput_mean_mbps'], 9.5)
        self.assertEqual(summary['throughput_max_mbps'], 10.5)
        self.assertIn('Loss Rate:        1.0000 %', format_summary(summary))

    def test_rejects_other_csv(self):
        other = self.test_dir / 'other.csv'
        other.write_text("a,b\n1,2\n")
        with self.assertRaises(ValueError):
            load_stats_csv(other)

    def test_plot(self):
        output = plot_stats(load_stats_csv(self.csv_path), self.test_dir / 'stats.png')
        self.assertTrue(output.exists())
        self.assertGreater(output.stat().st_size, 0)


if __name__ == '__main__':
    unittest.main()
