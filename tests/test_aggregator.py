import unittest
import sys
from pathlib import Path

src_path = str(Path(__file__).parent.parent / 'src')
if src_path not in sys.path:
    sys.path.append(src_path)

from ts_monitor.aggregator import (
    StatisticsAggregator, StatisticsSnapshot, LatestSnapshot, loss_rate,
)
from ts_monitor.stats_log import LOG_HEADER


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class MemorySink:
    def __init__(self):
        self.header = []
        self.lines = []

    def write_header(self, header):
        self.header.append(header)

    def write_line(self, line):
        self.lines.append(line)

    def close(self):
        pass


class BrokenSink(MemorySink):
    def write_line(self, line):
        raise IOError("disk full")


class TestStatisticsAggregator(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.published = []
        self.aggregator = StatisticsAggregator(
            publish_interval_sec=0.1,
            consumers=[self.published.append],
            clock=self.clock,
            wallclock=lambda: 1700000000.0,
        )

    def test_no_publish_before_interval(self):
        self.aggregator.add_datagram(1316)
        self.clock.advance(0.05)
        self.assertIsNone(self.aggregator.tick())
        self.assertEqual(self.published, [])

    def test_throughput_over_two_windows(self):
        self.aggregator.add_datagram(125_000)
        self.clock.advance(0.1)
        first = self.aggregator.tick()

        self.clock.advance(0.1)
        second = self.aggregator.tick()

        self.assertAlmostEqual(first.throughput_mbps, 10.0, places=6)
        self.assertEqual(f"{first.throughput_mbps:.2f}", "10.00")
        self.assertEqual(second.throughput_mbps, 0.0)
        self.assertEqual(self.published, [first, second])

    def test_loss_rate_scenario(self):
        for lost in (0, 0, 0, 1, 0):
            self.aggregator.add_packet(lost)
        self.clock.advance(0.1)
        snapshot = self.aggregator.tick()

        self.assertEqual(snapshot.total_packets, 5)
        self.assertEqual(snapshot.lost_packets, 1)
        self.assertEqual(f"{snapshot.loss_rate_percent:.4f}", "20.0000")

    def test_loss_rate_zero_without_packets(self):
        self.assertEqual(loss_rate(0, 0), 0.0)
        self.clock.advance(0.2)
        self.assertEqual(self.aggregator.tick().loss_rate_percent, 0.0)

    def test_totals_are_cumulative_window_resets(self):
        self.aggregator.add_datagram(1000)
        self.aggregator.add_packet()
        self.clock.advance(0.1)
        self.aggregator.tick()

        self.assertEqual(self.aggregator.window_bytes, 0)
        self.aggregator.add_packet(2)
        self.clock.advance(0.1)
        snapshot = self.aggregator.tick()

        self.assertEqual(snapshot.total_packets, 2)
        self.assertEqual(snapshot.lost_packets, 2)
        self.assertEqual(self.aggregator.total_bytes, 1000)

    def test_snapshot_is_immutable(self):
        self.clock.advance(0.1)
        snapshot = self.aggregator.tick()
        with self.assertRaises(Exception):
            snapshot.total_packets = 99

    def test_failing_consumer_is_isolated(self):
        def broken(snapshot):
            raise RuntimeError("ui gone")

        self.aggregator.consumers.insert(0, broken)
        self.clock.advance(0.1)
        snapshot = self.aggregator.tick()

        self.assertIsNotNone(snapshot)
        self.assertEqual(self.published, [snapshot])
        self.assertEqual(self.aggregator.consumer_failures, 1)

    def test_log_sink_gets_header_once_and_one_line_per_snapshot(self):
        sink = MemorySink()
        self.aggregator.log_sink = sink
        self.aggregator.start_logging()
        self.aggregator.start_logging()

        for _ in range(3):
            self.clock.advance(0.1)
            self.aggregator.tick()

        self.assertEqual(sink.header, [LOG_HEADER])
        self.assertEqual(len(sink.lines), 3)

    def test_failing_log_sink_is_isolated(self):
        self.aggregator.log_sink = BrokenSink()
        self.clock.advance(0.1)
        snapshot = self.aggregator.tick()

        self.assertIsNotNone(snapshot)
        self.assertEqual(self.aggregator.log_failures, 1)

    def test_flush_publishes_partial_window(self):
        self.aggregator.add_datagram(500)
        self.clock.advance(0.04)
        snapshot = self.aggregator.flush()

        self.assertIsNotNone(snapshot)
        self.assertAlmostEqual(snapshot.throughput_mbps, 0.1, places=6)

    def test_rejects_bad_interval(self):
        with self.assertRaises(ValueError):
            StatisticsAggregator(publish_interval_sec=0)


class TestLatestSnapshot(unittest.TestCase):

    def test_holds_last_value(self):
        holder = LatestSnapshot()
        self.assertIsNone(holder.get())

        a = StatisticsSnapshot(1, 0, 0.0, 1.0, 0.0)
        b = StatisticsSnapshot(2, 0, 0.0, 2.0, 0.1)
        holder.publish(a)
        holder.publish(b)

        self.assertIs(holder.get(), b)
        self.assertEqual(holder.count, 2)


if __name__ == '__main__':
    unittest.main()
