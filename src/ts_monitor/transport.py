#!/usr/bin/env python3
"""
UDP Transport

Owns exactly one UDP endpoint for a monitoring session:

- Multicast address (224.0.0.0/4): bind the port with SO_REUSEADDR and
  join the group.
- Anything else (including 0.0.0.0): bind the port on all interfaces
  with SO_REUSEADDR, so a player can share the port.

receive() blocks until a datagram arrives or cancel()/close() is called
from another thread. Blocking happens in a selector that also watches a
wake-up socketpair, so cancellation never depends on interrupting a
recv() that is already in progress.
"""

import errno
import socket
import struct
import logging
import ipaddress
import selectors
import threading
import time
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_PORT = 1234
DEFAULT_MAX_DATAGRAM_SIZE = 4096

# How long close() waits for a blocked receive() to notice cancellation
CLOSE_WAIT_SEC = 2.0

# recv errors after which the socket is still usable
TRANSIENT_ERRNOS = {
    errno.EINTR,
    errno.EAGAIN,
    errno.ENOBUFS,
    errno.ENOMEM,
    errno.ECONNREFUSED,
}


class TransportError(Exception):
    """Base class for transport failures"""


class BindError(TransportError):
    """Socket could not be bound or the multicast group could not be joined"""


class TransientReceiveError(TransportError):
    """A single receive failed but the socket is still usable"""


class ReceiveTimeoutError(TransientReceiveError):
    """No datagram arrived within the configured receive timeout"""


class FatalReceiveError(TransportError):
    """The socket is closed or unusable"""


class ReceiveCancelled(TransportError):
    """receive() was unblocked by cancel() or close()"""


def is_multicast_address(address: str) -> bool:
    """True for IPv4 224.0.0.0 - 239.255.255.255"""
    try:
        return ipaddress.IPv4Address(address).is_multicast
    except ValueError:
        return False


class UDPTransport:
    """
    Cancellable UDP receiver for one (address, port).

    Example:
        transport = UDPTransport('224.1.1.1', 1234)
        transport.open()
        buf = bytearray(transport.max_datagram_size)
        n = transport.receive(buf)
        ...
        transport.close()
    """

    def __init__(
        self,
        address: str = '0.0.0.0',
        port: int = DEFAULT_PORT,
        receive_timeout: Optional[float] = None,
        max_datagram_size: int = DEFAULT_MAX_DATAGRAM_SIZE,
        interface_address: str = '0.0.0.0',
    ):
        """
        Args:
            address: Multicast group, unicast address, or 0.0.0.0
            port: UDP port to bind
            receive_timeout: Seconds before receive() raises
                ReceiveTimeoutError (None = wait forever)
            max_datagram_size: Suggested receive buffer size
            interface_address: Local interface for the multicast join
        """
        self.address = address
        self.port = port
        self.receive_timeout = receive_timeout
        self.max_datagram_size = max_datagram_size
        self.interface_address = interface_address
        self.multicast = is_multicast_address(address)

        self.socket: Optional[socket.socket] = None
        self._selector: Optional[selectors.BaseSelector] = None
        self._wake_r: Optional[socket.socket] = None
        self._wake_w: Optional[socket.socket] = None
        self._mreq: Optional[bytes] = None

        self._cancelled = threading.Event()
        self._cond = threading.Condition()
        self._receiving = False
        self._closed = False

        self.datagram_count = 0
        self.byte_count = 0

    @property
    def is_open(self) -> bool:
        return self.socket is not None and not self._closed

    @property
    def bound_port(self) -> Optional[int]:
        """Local port actually bound (differs from port when port is 0)"""
        if self.socket is None or self._closed:
            return None
        return self.socket.getsockname()[1]

    def open(self):
        """
        Bind the socket (and join the group for multicast).

        Raises:
            BindError: If the port is in use, the address is invalid, or
                the group cannot be joined
        """
        if self.socket is not None:
            raise TransportError(f"Transport {self.address}:{self.port} already open")

        sock = None
        try:
            sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind(('', self.port))

            if self.multicast:
                mreq = struct.pack("4s4s",
                                   socket.inet_aton(self.address),
                                   socket.inet_aton(self.interface_address))
                sock.setsockopt(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, mreq)
                self._mreq = mreq
                logger.info(f"Joined multicast {self.address} on {self.interface_address}")

            sock.setblocking(False)

            self._wake_r, self._wake_w = socket.socketpair()
            self._wake_r.setblocking(False)
            self._selector = selectors.DefaultSelector()
            self._selector.register(sock, selectors.EVENT_READ)
            self._selector.register(self._wake_r, selectors.EVENT_READ)
        except OSError as e:
            self._release_partial_open(sock)
            raise BindError(f"Failed to open UDP {self.address}:{self.port}: {e}") from e

        self.socket = sock
        kind = "multicast" if self.multicast else "unicast"
        logger.info(f"UDP transport open ({kind}) on {self.address}:{self.port}")

    def _release_partial_open(self, sock: Optional[socket.socket]):
        """Close whatever open() created before it failed"""
        if self._selector is not None:
            self._selector.close()
            self._selector = None
        for wake in (self._wake_r, self._wake_w):
            if wake is not None:
                wake.close()
        self._wake_r = self._wake_w = None
        self._mreq = None
        if sock is not None:
            sock.close()

    def receive(self, buffer) -> int:
        """
        Wait for one datagram and copy it into buffer at offset 0.

        Args:
            buffer: Writable buffer (bytearray or memoryview)

        Returns:
            Number of bytes written

        Raises:
            ReceiveCancelled: cancel() or close() was called
            ReceiveTimeoutError: receive_timeout elapsed with no data
            TransientReceiveError: recv failed, socket still usable
            FatalReceiveError: socket unusable
        """
        with self._cond:
            if self.socket is None or self._closed or self._cancelled.is_set():
                raise ReceiveCancelled("Transport cancelled")
            self._receiving = True
        try:
            return self._receive(buffer)
        finally:
            with self._cond:
                self._receiving = False
                self._cond.notify_all()

    def _receive(self, buffer) -> int:
        deadline = None
        if self.receive_timeout is not None:
            deadline = time.monotonic() + self.receive_timeout

        while True:
            timeout = None
            if deadline is not None:
                timeout = max(0.0, deadline - time.monotonic())

            try:
                events = self._selector.select(timeout)
            except (OSError, ValueError) as e:
                if self._cancelled.is_set():
                    raise ReceiveCancelled("Transport cancelled") from e
                raise FatalReceiveError(f"Selector failed: {e}") from e

            if self._cancelled.is_set():
                raise ReceiveCancelled("Transport cancelled")

            if not events:
                raise ReceiveTimeoutError(
                    f"No data on {self.address}:{self.port} for {self.receive_timeout}s")

            try:
                nbytes, addr = self.socket.recvfrom_into(buffer)
            except BlockingIOError:
                # Spurious wakeup, wait again
                continue
            except OSError as e:
                if self._cancelled.is_set():
                    raise ReceiveCancelled("Transport cancelled") from e
                if e.errno in TRANSIENT_ERRNOS:
                    raise TransientReceiveError(f"UDP receive failed: {e}") from e
                raise FatalReceiveError(f"UDP receive failed: {e}") from e

            self.datagram_count += 1
            self.byte_count += nbytes
            if self.datagram_count % 100 == 1:
                logger.debug(f"Datagram #{self.datagram_count}: {nbytes} bytes from {addr}")
            return nbytes

    def cancel(self):
        """Unblock a pending receive(); later receives raise ReceiveCancelled"""
        if self._cancelled.is_set():
            return
        self._cancelled.set()
        wake = self._wake_w
        if wake is not None:
            try:
                wake.send(b'\x00')
            except OSError as e:
                logger.debug(f"Wake-up send failed: {e}")

    def close(self):
        """
        Leave the multicast group and release the socket.

        Idempotent, and safe to call from any thread while receive() is
        blocked: the receiver is cancelled first and given CLOSE_WAIT_SEC
        to return before resources are released.
        """
        self.cancel()

        with self._cond:
            if self._closed:
                return
            self._closed = True
            if self._receiving:
                self._cond.wait_for(lambda: not self._receiving, timeout=CLOSE_WAIT_SEC)
                if self._receiving:
                    logger.warning("Receiver did not return before close")

        sock = self.socket
        if sock is not None:
            if self._mreq is not None:
                try:
                    sock.setsockopt(socket.IPPROTO_IP, socket.IP_DROP_MEMBERSHIP, self._mreq)
                    logger.debug(f"Left multicast group {self.address}")
                except OSError as e:
                    logger.warning(f"Error leaving multicast group {self.address}: {e}")
            try:
                if self._selector is not None:
                    self._selector.close()
            finally:
                sock.close()

        for wake in (self._wake_r, self._wake_w):
            if wake is not None:
                wake.close()

        logger.info(f"UDP transport closed: {self.address}:{self.port} "
                    f"({self.datagram_count} datagrams, {self.byte_count} bytes)")
