#!/usr/bin/env python3
"""
Continuity Counter Loss Estimator

Estimates lost TS packets per PID from the 4-bit continuity counter,
which increments modulo 16 between consecutive packets of one PID.

The estimate is a lower bound: a gap of 16 or more packets wraps around
and looks like a smaller gap (or none), and reordered or duplicated
packets are counted as forward skips. Packets without payload do not
increment the counter on the wire; they are not special-cased here.
"""

import logging
import numpy as np

from .ts_packet import NULL_PID, MAX_PID, CC_MODULUS, TSHeader

logger = logging.getLogger(__name__)

# Marks a PID that has not been seen yet
_UNSEEN = -1


class ContinuityEstimator:
    """
    Per-PID continuity tracking over a fixed-size table.

    The PID space is bounded (13 bits), so last-seen counters live in a
    preallocated 8192-slot array rather than a growing dict.
    """

    def __init__(self):
        self._last_cc = np.full(MAX_PID + 1, _UNSEEN, dtype=np.int8)
        self.pids_seen = 0

    def observe(self, pid: int, cc: int) -> int:
        """
        Record one packet and return how many packets were skipped before it.

        Args:
            pid: 13-bit PID (the null PID is ignored and returns 0)
            cc: 4-bit continuity counter

        Returns:
            Estimated number of lost packets (0..15)
        """
        if pid == NULL_PID:
            return 0
        if not 0 <= pid <= MAX_PID:
            raise ValueError(f"PID must be 0-{MAX_PID}, got {pid}")
        if not 0 <= cc < CC_MODULUS:
            raise ValueError(f"Continuity counter must be 0-15, got {cc}")

        last_cc = int(self._last_cc[pid])
        self._last_cc[pid] = cc

        if last_cc == _UNSEEN:
            self.pids_seen += 1
            logger.debug(f"First packet on PID 0x{pid:04X}: cc={cc}")
            return 0

        expected = (last_cc + 1) % CC_MODULUS
        if cc == expected:
            return 0

        lost = (cc - expected + CC_MODULUS) % CC_MODULUS
        logger.debug(f"CC discontinuity on PID 0x{pid:04X}: "
                     f"expected {expected}, got {cc} ({lost} lost)")
        return lost

    def observe_header(self, header: TSHeader) -> int:
        return self.observe(header.pid, header.continuity_counter)

    def last_counter(self, pid: int):
        """Last continuity counter seen on pid, or None"""
        value = int(self._last_cc[pid])
        return None if value == _UNSEEN else value
