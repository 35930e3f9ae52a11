#!/usr/bin/env python3
"""
MPEG-TS Packet Header View

A Transport Stream packet is exactly 188 bytes. Only the fixed 4-byte
header is inspected here:

    Byte 0:     Sync byte (0x47)
    Byte 1-2:   TEI | PUSI | Priority | PID (13 bits)
    Byte 3:     Scrambling | Adaptation Field | Continuity Counter (4 bits)

Payload bytes beyond the header are never parsed.
"""

from dataclasses import dataclass
from typing import Optional

# Sync byte that starts every TS packet
SYNC_BYTE = 0x47

PACKET_SIZE = 188
HEADER_SIZE = 4

# Null packet (stuffing), excluded from all counting
NULL_PID = 0x1FFF
MAX_PID = 0x1FFF

CC_MODULUS = 16


@dataclass(frozen=True)
class TSHeader:
    """Parsed TS header fields"""
    pid: int
    continuity_counter: int

    @property
    def is_null(self) -> bool:
        return self.pid == NULL_PID


def parse_ts_header(packet: bytes) -> Optional[TSHeader]:
    """
    Parse the fixed header of one 188-byte TS packet.

    Args:
        packet: Packet bytes (at least HEADER_SIZE long)

    Returns:
        TSHeader if the packet starts with the sync byte, None otherwise
    """
    if len(packet) < HEADER_SIZE or packet[0] != SYNC_BYTE:
        return None

    pid = ((packet[1] & 0x1F) << 8) | packet[2]
    cc = packet[3] & 0x0F

    return TSHeader(pid=pid, continuity_counter=cc)
