"""
TS Monitor - MPEG Transport Stream loss and throughput monitor

Receives an MPEG-TS carried over UDP (unicast or multicast), recovers
188-byte packet boundaries from arbitrarily-split datagrams, estimates
packet loss from per-PID continuity counters, and publishes throughput
and loss statistics every 100 ms.

Quick Start:
    from ts_monitor import StreamMonitor

    monitor = StreamMonitor()
    handle = monitor.start('224.1.1.1', 1234, consumer=print)
    ...
    monitor.stop(handle)
"""

__version__ = "1.0.0"

from .ts_packet import TSHeader, parse_ts_header, SYNC_BYTE, PACKET_SIZE, NULL_PID
from .transport import (
    UDPTransport, is_multicast_address,
    TransportError, BindError, TransientReceiveError, ReceiveTimeoutError,
    FatalReceiveError, ReceiveCancelled,
)
from .synchronizer import TSSynchronizer, SyncResult, synchronize
from .continuity import ContinuityEstimator
from .aggregator import StatisticsAggregator, StatisticsSnapshot, LatestSnapshot
from .stats_log import CsvStatsLogSink, StatsLogSink, LOG_HEADER, format_log_line
from .session import (
    StreamMonitor, SessionHandle, SessionState, SessionAlreadyRunningError,
)
from .config_utils import MonitorConfig, load_config, parse_stream_uri

__all__ = [
    # === Control surface ===
    "StreamMonitor",
    "SessionHandle",
    "SessionState",
    "SessionAlreadyRunningError",
    # === Pipeline components ===
    "UDPTransport",
    "TSSynchronizer",
    "synchronize",
    "SyncResult",
    "ContinuityEstimator",
    "StatisticsAggregator",
    "StatisticsSnapshot",
    "LatestSnapshot",
    # TS packets
    "TSHeader",
    "parse_ts_header",
    "SYNC_BYTE",
    "PACKET_SIZE",
    "NULL_PID",
    # Errors
    "TransportError",
    "BindError",
    "TransientReceiveError",
    "ReceiveTimeoutError",
    "FatalReceiveError",
    "ReceiveCancelled",
    "is_multicast_address",
    # Logging
    "CsvStatsLogSink",
    "StatsLogSink",
    "LOG_HEADER",
    "format_log_line",
    # Configuration
    "MonitorConfig",
    "load_config",
    "parse_stream_uri",
]
