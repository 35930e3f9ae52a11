#!/usr/bin/env python3
"""
Monitoring Session

Runs the receive → synchronize → estimate → aggregate cycle for one
stream on a dedicated worker thread.

State machine:

    IDLE → STARTING → RUNNING → STOPPING → STOPPED
                 ↘ STOPPED (open failed)
                      RUNNING → FAILED → STOPPED (fatal receive error)

Everything the worker touches (carry-over buffer, PID table, window
counters) belongs to the worker alone. Other threads only see the
session state and immutable snapshots.

Architecture:
    UDPTransport → TSSynchronizer → ContinuityEstimator → StatisticsAggregator → consumers
"""

import logging
import threading
from enum import Enum
from typing import Callable, Dict, Optional

from .transport import (
    UDPTransport, ReceiveCancelled, ReceiveTimeoutError, TransientReceiveError,
    DEFAULT_MAX_DATAGRAM_SIZE,
)
from .synchronizer import TSSynchronizer
from .continuity import ContinuityEstimator
from .aggregator import (
    StatisticsAggregator, StatisticsSnapshot, LatestSnapshot, SnapshotConsumer,
    DEFAULT_PUBLISH_INTERVAL_SEC,
)
from .stats_log import StatsLogSink

logger = logging.getLogger(__name__)

# How long stop() waits for the worker to finish teardown
STOP_JOIN_TIMEOUT_SEC = 5.0


class SessionState(Enum):
    """Monitoring session states"""
    IDLE = "idle"              # Not started
    STARTING = "starting"      # Opening transport
    RUNNING = "running"        # Receive loop active
    STOPPING = "stopping"      # Cancellation requested
    FAILED = "failed"          # Fatal error, teardown pending
    STOPPED = "stopped"        # Transport closed


class SessionAlreadyRunningError(RuntimeError):
    """A session for this stream is already active"""


class SessionHandle:
    """
    One monitoring session for one (address, port).

    key is the UDP port the transport actually bound.

    Created by StreamMonitor.start(); a handle runs at most once.
    A fresh start() builds a fresh handle with fresh counters.
    """

    def __init__(
        self,
        address: str,
        port: int,
        consumer: Optional[SnapshotConsumer] = None,
        log_sink: Optional[StatsLogSink] = None,
        on_session_end: Optional[Callable[['SessionHandle'], None]] = None,
        publish_interval_sec: float = DEFAULT_PUBLISH_INTERVAL_SEC,
        max_datagram_size: int = DEFAULT_MAX_DATAGRAM_SIZE,
        receive_timeout: Optional[float] = None,
        transport_factory: Callable[..., UDPTransport] = UDPTransport,
    ):
        self.address = address
        self.port = port
        self.bound_port = port
        self.on_session_end = on_session_end
        self.max_datagram_size = max_datagram_size

        self.transport = transport_factory(
            address=address,
            port=port,
            receive_timeout=receive_timeout,
            max_datagram_size=max_datagram_size,
        )
        self.synchronizer = TSSynchronizer()
        self.estimator = ContinuityEstimator()

        self._latest = LatestSnapshot()
        consumers = [self._latest.publish]
        if consumer is not None:
            consumers.append(consumer)
        self.aggregator = StatisticsAggregator(
            publish_interval_sec=publish_interval_sec,
            consumers=consumers,
            log_sink=log_sink,
        )

        self.error: Optional[BaseException] = None
        self.timeouts = 0
        self.receive_errors = 0
        self._failed = False

        self._state = SessionState.IDLE
        self._state_lock = threading.Lock()
        self._stop_requested = threading.Event()
        self._done = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._finished_callbacks = []

    @property
    def key(self) -> int:
        return self.bound_port

    @property
    def state(self) -> SessionState:
        with self._state_lock:
            return self._state

    @property
    def is_running(self) -> bool:
        return self.state in (SessionState.STARTING, SessionState.RUNNING)

    @property
    def stopped_unexpectedly(self) -> bool:
        """True if the session ended because of a fatal error"""
        return self._failed

    def latest_snapshot(self) -> Optional[StatisticsSnapshot]:
        return self._latest.get()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the session reaches STOPPED"""
        return self._done.wait(timeout)

    def _set_state(self, state: SessionState):
        with self._state_lock:
            old = self._state
            self._state = state
        logger.debug(f"Session {self.address}:{self.port}: {old.value} → {state.value}")

    def start(self):
        """
        Open the transport and launch the worker.

        Raises:
            BindError: Transport could not be opened; the session is STOPPED
        """
        with self._state_lock:
            if self._state != SessionState.IDLE:
                raise RuntimeError(f"Session already used (state {self._state.value})")
            self._state = SessionState.STARTING

        try:
            self.transport.open()
        except Exception as e:
            self.error = e
            self._set_state(SessionState.STOPPED)
            self._done.set()
            logger.error(f"Failed to start session {self.address}:{self.port}: {e}")
            raise

        if self.port == 0:
            self.bound_port = self.transport.bound_port

        self.aggregator.start_logging()

        with self._state_lock:
            cancelled_early = self._stop_requested.is_set()
            self._state = SessionState.STOPPING if cancelled_early else SessionState.RUNNING

        self._thread = threading.Thread(
            target=self._run,
            name=f"ts-monitor-{self.address}:{self.port}",
            daemon=True,
        )
        self._thread.start()
        logger.info(f"Session started on {self.address}:{self.port}")

    def stop(self, timeout: float = STOP_JOIN_TIMEOUT_SEC):
        """
        Request cooperative cancellation and wait for teardown.

        Stopping a session that never started or has already stopped is a no-op.
        """
        with self._state_lock:
            if self._state in (SessionState.IDLE, SessionState.STOPPED):
                return
            if self._state == SessionState.RUNNING:
                self._state = SessionState.STOPPING
            self._stop_requested.set()

        self.transport.cancel()

        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)
            if thread.is_alive():
                logger.warning(f"Session worker {thread.name} did not stop within {timeout}s")

    def _run(self):
        """Worker loop: one blocking receive, then synchronous processing"""
        buffer = bytearray(self.max_datagram_size)
        view = memoryview(buffer)

        try:
            while not self._stop_requested.is_set():
                try:
                    nbytes = self.transport.receive(buffer)
                except ReceiveCancelled:
                    break
                except ReceiveTimeoutError as e:
                    self.timeouts += 1
                    logger.warning(f"No data flowing: {e}")
                    self.aggregator.tick()
                    continue
                except TransientReceiveError as e:
                    self.receive_errors += 1
                    logger.warning(f"Transient receive error: {e}")
                    continue

                self.process_datagram(bytes(view[:nbytes]))

        except Exception as e:
            self.error = e
            self._failed = True
            self._set_state(SessionState.FAILED)
            logger.error(f"Session {self.address}:{self.port} failed: {e}")

        finally:
            self._teardown()

    def process_datagram(self, data: bytes):
        """Run one datagram through the synchronous part of the cycle"""
        self.aggregator.add_datagram(len(data))

        for header in self.synchronizer.feed(data):
            if header.is_null:
                continue
            lost = self.estimator.observe_header(header)
            self.aggregator.add_packet(lost)

        self.aggregator.tick()

    def _teardown(self):
        try:
            self.transport.close()
        except Exception as e:
            logger.warning(f"Error closing transport {self.address}:{self.port}: {e}")

        try:
            self.aggregator.flush()
        except Exception as e:
            logger.warning(f"Error publishing final snapshot: {e}")

        agg = self.aggregator
        logger.info(f"Session stopped on {self.address}:{self.port}: "
                    f"{agg.total_packets} packets, {agg.lost_packets} lost, "
                    f"{self.estimator.pids_seen} PIDs, "
                    f"{self.synchronizer.bytes_discarded} bytes unsynchronized")

        self._set_state(SessionState.STOPPED)

        for callback in self._finished_callbacks:
            try:
                callback(self)
            except Exception as e:
                logger.warning(f"Session cleanup callback failed: {e}")

        if self.on_session_end is not None:
            try:
                self.on_session_end(self)
            except Exception as e:
                logger.warning(f"on_session_end callback failed: {e}")

        self._done.set()


class StreamMonitor:
    """
    Control surface for embedding applications: start, stop, is_running.

    At most one live session per bound UDP port. Every transport binds
    its port on all interfaces, so 0.0.0.0:P, 127.0.0.1:P and any group
    on P share one endpoint; starting a second session on a port while
    the first is active raises SessionAlreadyRunningError.

    Example:
        monitor = StreamMonitor()
        handle = monitor.start('224.1.1.1', 1234, consumer=print)
        ...
        monitor.stop(handle)
    """

    def __init__(self, **session_defaults):
        """
        Args:
            **session_defaults: Keyword arguments passed to every
                SessionHandle (publish_interval_sec, receive_timeout, ...)
        """
        self.session_defaults = session_defaults
        self._sessions: Dict[int, SessionHandle] = {}
        self._lock = threading.Lock()

    def start(self, address: str, port: int, **kwargs) -> SessionHandle:
        """
        Start monitoring address:port.

        Port 0 binds an ephemeral port, which is registered once known.

        Raises:
            SessionAlreadyRunningError: A session already uses this port
            BindError: The transport could not be opened
        """
        options = dict(self.session_defaults)
        options.update(kwargs)

        with self._lock:
            existing = self._sessions.get(port) if port else None
            if existing is not None and existing.state != SessionState.STOPPED:
                raise SessionAlreadyRunningError(
                    f"Port {port} already monitored by session "
                    f"{existing.address}:{existing.port}")

            handle = SessionHandle(address, port, **options)
            handle._finished_callbacks.append(self._forget)
            handle.start()
            # _forget takes this lock, so teardown cannot unregister first
            self._sessions[handle.key] = handle

        return handle

    def stop(self, handle: SessionHandle, timeout: float = STOP_JOIN_TIMEOUT_SEC):
        """Stop a session; a no-op if it is already stopped"""
        handle.stop(timeout=timeout)

    def stop_all(self):
        with self._lock:
            handles = list(self._sessions.values())
        for handle in handles:
            handle.stop()

    def is_running(self, address: Optional[str] = None, port: Optional[int] = None) -> bool:
        """True if any session (or the one matching address and/or port) is live"""
        with self._lock:
            handles = list(self._sessions.values())
        if port is not None:
            handles = [h for h in handles if h.key == port]
        if address is not None:
            handles = [h for h in handles if h.address == address]
        return any(h.is_running for h in handles)

    def _forget(self, handle: SessionHandle):
        with self._lock:
            if self._sessions.get(handle.key) is handle:
                del self._sessions[handle.key]
