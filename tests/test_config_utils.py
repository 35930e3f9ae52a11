import unittest
import tempfile
import shutil
import os
import sys
from pathlib import Path
from unittest.mock import patch

src_path = str(Path(__file__).parent.parent / 'src')
if src_path not in sys.path:
    sys.path.append(src_path)

from ts_monitor.config_utils import (
    MonitorConfig, load_config, parse_stream_uri, resolve_log_dir,
)


class TestParseStreamUri(unittest.TestCase):

    def test_forms(self):
        self.assertEqual(parse_stream_uri("udp://224.1.1.1:1234"), ('224.1.1.1', 1234))
        self.assertEqual(parse_stream_uri("udp://@239.0.0.5:5000"), ('239.0.0.5', 5000))
        self.assertEqual(parse_stream_uri("10.0.0.2:6000"), ('10.0.0.2', 6000))

    def test_defaults(self):
        self.assertEqual(parse_stream_uri("udp://:4000"), ('0.0.0.0', 4000))
        self.assertEqual(parse_stream_uri("udp://224.1.1.1"), ('224.1.1.1', 1234))

    def test_invalid(self):
        with self.assertRaises(ValueError):
            parse_stream_uri("rtp://224.1.1.1:1234")
        with self.assertRaises(ValueError):
            parse_stream_uri("udp://224.1.1.1:http")
        with self.assertRaises(ValueError):
            parse_stream_uri("udp://224.1.1.1:70000")


class TestMonitorConfig(unittest.TestCase):
    def setUp(self):
        self.test_dir = Path(tempfile.mkdtemp())

    def tearDown(self):
        shutil.rmtree(self.test_dir)

    def test_load_toml(self):
        config_file = self.test_dir / 'config.toml'
        config_file.write_text(
            '[stream]\n'
            'uri = "udp://@239.1.2.3:5500"\n'
            '[analyzer]\n'
            'publish_interval_ms = 250\n'
            'receive_timeout_sec = 5\n'
            '[logging]\n'
            'level = "debug"\n'
            'csv_enabled = true\n'
            'log_dir = "$HOME/ts-logs"\n'
        )
        config = load_config(config_file)

        self.assertEqual((config.address, config.port), ('239.1.2.3', 5500))
        self.assertEqual(config.publish_interval_sec, 0.25)
        self.assertEqual(config.receive_timeout_sec, 5.0)
        self.assertEqual(config.log_level, 'DEBUG')
        self.assertTrue(config.csv_enabled)
        self.assertEqual(config.session_options()['receive_timeout'], 5.0)

    def test_zero_timeout_means_none(self):
        config = MonitorConfig.from_dict({'analyzer': {'receive_timeout_sec': 0}})
        self.assertIsNone(config.receive_timeout_sec)

    def test_missing_file(self):
        with self.assertRaises(FileNotFoundError):
            load_config(self.test_dir / 'missing.toml')

    def test_validation(self):
        with self.assertRaises(ValueError):
            MonitorConfig(publish_interval_ms=0)
        with self.assertRaises(ValueError):
            MonitorConfig(max_datagram_size=100)
        with self.assertRaises(ValueError):
            MonitorConfig(port=0)

    def test_resolve_log_dir(self):
        config = MonitorConfig(log_dir='$TS_TEST_ROOT/stats')
        with patch.dict(os.environ, {'TS_TEST_ROOT': str(self.test_dir)}):
            self.assertEqual(resolve_log_dir(config), self.test_dir / 'stats')

        self.assertEqual(resolve_log_dir(MonitorConfig(), development_mode=True), Path('./logs'))


if __name__ == '__main__':
    unittest.main()
