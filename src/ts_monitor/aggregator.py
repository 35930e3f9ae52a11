#!/usr/bin/env python3
"""
Statistics Aggregator and Publisher

Turns per-datagram byte counts and per-packet loss estimates into
time-windowed statistics, published on a fixed cadence that does not
depend on how fast datagrams arrive.

Throughput is measured at the transport layer (every received byte
counts, synchronized or not); loss is measured at the TS layer.

Snapshots are immutable. Consumers may hold on to them and read them
from any thread.
"""

import time
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional

from .stats_log import LOG_HEADER, StatsLogSink, format_log_line

logger = logging.getLogger(__name__)

DEFAULT_PUBLISH_INTERVAL_SEC = 0.1

SnapshotConsumer = Callable[['StatisticsSnapshot'], None]


@dataclass(frozen=True)
class StatisticsSnapshot:
    """Statistics for one reporting window (totals are cumulative)"""
    total_packets: int
    lost_packets: int
    loss_rate_percent: float
    throughput_mbps: float
    timestamp: float            # Unix time at publish


def loss_rate(total_packets: int, lost_packets: int) -> float:
    """Loss percentage, 0.0 when nothing has been counted"""
    if total_packets <= 0:
        return 0.0
    return 100.0 * lost_packets / total_packets


def throughput_mbps(window_bytes: int, elapsed_sec: float) -> float:
    if elapsed_sec <= 0:
        return 0.0
    return (window_bytes * 8) / (elapsed_sec * 1_000_000)


class LatestSnapshot:
    """
    Last-value holder for handing snapshots across threads.

    The worker publishes, any other thread reads. Only the reference is
    swapped; snapshots themselves are immutable.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._snapshot: Optional[StatisticsSnapshot] = None
        self._count = 0

    def publish(self, snapshot: StatisticsSnapshot):
        with self._lock:
            self._snapshot = snapshot
            self._count += 1

    def get(self) -> Optional[StatisticsSnapshot]:
        with self._lock:
            return self._snapshot

    @property
    def count(self) -> int:
        with self._lock:
            return self._count


class StatisticsAggregator:
    """
    Accumulates counters and publishes a snapshot every publish interval.

    Counters are owned by the receive worker; nothing here is shared
    with consumers except the immutable snapshots.

    Example:
        aggregator = StatisticsAggregator(consumers=[print])
        aggregator.add_datagram(len(data))
        aggregator.add_packet(lost=0)
        aggregator.tick()
    """

    def __init__(
        self,
        publish_interval_sec: float = DEFAULT_PUBLISH_INTERVAL_SEC,
        consumers: Iterable[SnapshotConsumer] = (),
        log_sink: Optional[StatsLogSink] = None,
        clock: Callable[[], float] = time.monotonic,
        wallclock: Callable[[], float] = time.time,
    ):
        """
        Args:
            publish_interval_sec: Minimum time between snapshots
            consumers: Callables that receive each snapshot
            log_sink: Optional sink for one CSV line per snapshot
            clock: Monotonic clock used for window timing
            wallclock: Clock used for snapshot timestamps
        """
        if publish_interval_sec <= 0:
            raise ValueError("publish_interval_sec must be positive")

        self.publish_interval_sec = publish_interval_sec
        self.consumers: List[SnapshotConsumer] = list(consumers)
        self.log_sink = log_sink
        self._clock = clock
        self._wallclock = wallclock

        # Cumulative for the session
        self.total_packets = 0
        self.lost_packets = 0
        self.total_bytes = 0

        # Reset every publish
        self.window_bytes = 0
        self.window_start = clock()

        self.snapshots_published = 0
        self.consumer_failures = 0
        self.log_failures = 0
        self._logging_started = False

    def start_logging(self):
        """Write the header line to the log sink (once)"""
        if self.log_sink is None or self._logging_started:
            return
        self._logging_started = True
        try:
            self.log_sink.write_header(LOG_HEADER)
        except Exception as e:
            self.log_failures += 1
            logger.warning(f"Log sink failed writing header: {e}")

    def add_datagram(self, nbytes: int):
        self.window_bytes += nbytes
        self.total_bytes += nbytes

    def add_packet(self, lost: int = 0):
        """Count one non-null TS packet and the loss estimated before it"""
        self.total_packets += 1
        self.lost_packets += lost

    def tick(self) -> Optional[StatisticsSnapshot]:
        """
        Publish a snapshot if the publish interval has elapsed.

        Returns:
            The published snapshot, or None if the window is still open
        """
        now = self._clock()
        elapsed = now - self.window_start
        if elapsed < self.publish_interval_sec:
            return None
        return self._publish(now, elapsed)

    def flush(self) -> Optional[StatisticsSnapshot]:
        """Publish the partial window, used on teardown"""
        now = self._clock()
        elapsed = now - self.window_start
        if elapsed <= 0:
            return None
        return self._publish(now, elapsed)

    def snapshot(self, elapsed_sec: float = 0.0) -> StatisticsSnapshot:
        return StatisticsSnapshot(
            total_packets=self.total_packets,
            lost_packets=self.lost_packets,
            loss_rate_percent=loss_rate(self.total_packets, self.lost_packets),
            throughput_mbps=throughput_mbps(self.window_bytes, elapsed_sec),
            timestamp=self._wallclock(),
        )

    def _publish(self, now: float, elapsed: float) -> StatisticsSnapshot:
        snapshot = self.snapshot(elapsed)

        self.window_bytes = 0
        self.window_start = now
        self.snapshots_published += 1

        for consumer in self.consumers:
            try:
                consumer(snapshot)
            except Exception as e:
                self.consumer_failures += 1
                logger.warning(f"Snapshot consumer {consumer!r} failed: {e}")

        if self.log_sink is not None:
            if not self._logging_started:
                self.start_logging()
            try:
                self.log_sink.write_line(format_log_line(snapshot))
            except Exception as e:
                self.log_failures += 1
                logger.warning(f"Log sink failed: {e}")

        return snapshot
