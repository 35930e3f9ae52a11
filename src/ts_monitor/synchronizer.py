#!/usr/bin/env python3
"""
TS Packet Synchronizer

Recovers 188-byte TS packet boundaries from a raw byte stream that was
split across arbitrarily-sized UDP datagrams.

Datagrams are never assumed to be aligned with TS packets: a datagram
may end mid-packet, carry several packets, or start with garbage. The
only state kept between datagrams is the carry-over: the 0..187 bytes
that follow the last complete packet and start with a sync byte.

Unsynchronized data is dropped as soon as it is seen. If a buffer holds
no further sync byte, everything from the current offset on is
abandoned and nothing is carried over, so noise never accumulates.
"""

import logging
from typing import List, NamedTuple

from .ts_packet import SYNC_BYTE, PACKET_SIZE, TSHeader, parse_ts_header

logger = logging.getLogger(__name__)


class SyncResult(NamedTuple):
    """Output of one synchronization pass"""
    packets: List[bytes]    # Complete 188-byte packets, in stream order
    carry_over: bytes       # Partial packet to prepend to the next datagram
    discarded: int          # Bytes dropped while hunting for a sync byte


def synchronize(carry_over: bytes, new_bytes: bytes) -> SyncResult:
    """
    Split carry_over + new_bytes into whole TS packets.

    Pure function of its inputs: the same pair always yields the same
    result.

    Args:
        carry_over: Remainder returned by the previous call (b'' initially)
        new_bytes: Payload of the newly received datagram

    Returns:
        SyncResult with extracted packets and the new carry-over
    """
    buf = carry_over + new_bytes if carry_over else bytes(new_bytes)
    size = len(buf)
    packets: List[bytes] = []
    discarded = 0
    offset = 0

    while offset < size:
        if buf[offset] != SYNC_BYTE:
            next_sync = buf.find(SYNC_BYTE, offset + 1)
            if next_sync == -1:
                # No sync anywhere ahead: abandon the rest of the buffer
                discarded += size - offset
                return SyncResult(packets, b'', discarded)
            discarded += next_sync - offset
            offset = next_sync
            continue

        if size - offset < PACKET_SIZE:
            break

        packets.append(buf[offset:offset + PACKET_SIZE])
        offset += PACKET_SIZE

    return SyncResult(packets, buf[offset:], discarded)


class TSSynchronizer:
    """
    Stateful wrapper around synchronize() that owns the carry-over buffer.

    Example:
        sync = TSSynchronizer()
        for datagram in datagrams:
            for header in sync.feed(datagram):
                ...
    """

    def __init__(self):
        self.carry_over = b''
        self.packets_extracted = 0
        self.bytes_discarded = 0

    def feed_packets(self, data: bytes) -> List[bytes]:
        """Feed one datagram, return the complete packets it finished"""
        result = synchronize(self.carry_over, data)
        self.carry_over = result.carry_over
        self.packets_extracted += len(result.packets)
        if result.discarded:
            self.bytes_discarded += result.discarded
            logger.debug(f"Dropped {result.discarded} unsynchronized bytes "
                         f"({self.bytes_discarded} total)")
        return result.packets

    def feed(self, data: bytes) -> List[TSHeader]:
        """Feed one datagram, return the headers of the packets it finished"""
        headers = []
        for packet in self.feed_packets(data):
            header = parse_ts_header(packet)
            if header is not None:
                headers.append(header)
        return headers
