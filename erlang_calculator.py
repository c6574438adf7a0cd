# coding: utf-8

"""Erlang B dimensioning formulas for voice links.

This module exposes the loss-system formulas used to size circuit-switched
trunks and packet voice links.  The helpers are grouped in small namespace
classes in the same way as the call centre KPIs they grew out of.

Examples
--------
>>> from erlang_calculator import CIRCUITS, BLOCKING, VOIP
>>> CIRCUITS.required(offered_load=10.0, target_blocking=0.01)
18

>>> BLOCKING.recurrence(traffic=10.0, trunks=18)
0.0071  # approximate blocking probability

>>> VOIP.bandwidth_per_call(64, include_header_overhead=False)
64.0
"""

import logging

import numpy as np
from scipy.special import factorial

logger = logging.getLogger(__name__)

# Circuit search bound for the recurrence.
MAX_CIRCUITS = 10000

# Largest trunk count whose factorial still fits in a double.
MAX_CLOSED_FORM_TRUNKS = 170

CODEC_BANDWIDTHS = {
    "g711": 64,
    "g729a": 8,
}

PACKETS_PER_SECOND = 50

# RTP + UDP + IP + Ethernet bytes carried by every voice packet.
RTP_HEADER_BYTES = 12
UDP_HEADER_BYTES = 8
IP_HEADER_BYTES = 20
ETHERNET_HEADER_BYTES = 14

# Fixed 40 byte RTP/UDP/IP header at 50 packets per second, in kbps.
HEADER_OVERHEAD_KBPS = (40 * 8 * PACKETS_PER_SECOND) / 1000


class BLOCKING:
    """Blocking probability of a loss system with ``trunks`` servers."""

    @staticmethod
    def recurrence(traffic: float, trunks: int) -> float:
        """Return Erlang B blocking probability using the stable recurrence.

        ``B(E, 0) = 1`` and ``B(E, m) = E * B(E, m-1) / (m + E * B(E, m-1))``.
        Every intermediate value stays in ``[0, 1]`` so large trunk groups
        can be evaluated without overflow.

        Parameters
        ----------
        traffic : float
            Offered traffic intensity in erlangs.
        trunks : int
            Number of available trunks/lines.
        """

        traffic = float(traffic)
        trunks = int(trunks)
        if traffic < 0:
            raise ValueError("traffic must be non-negative")
        if trunks < 0:
            raise ValueError("trunks must be non-negative")
        b = 1.0
        for m in range(1, trunks + 1):
            b = (traffic * b) / (m + traffic * b)
        return b

    @staticmethod
    def closed_form(traffic: float, trunks: int) -> float:
        """Return Erlang B blocking probability from the factorial ratio.

        ``B(E, m) = (E^m / m!) / sum(E^i / i!, i=0..m)``.  Only valid while
        ``E^m`` and ``m!`` stay inside floating point range, so callers must
        keep ``trunks`` small (the simulator uses a few tens at most).

        Examples
        --------
        >>> BLOCKING.closed_form(traffic=4, trunks=5)
        0.1991
        """

        traffic = float(traffic)
        trunks = int(trunks)
        if traffic < 0:
            raise ValueError("traffic must be non-negative")
        if trunks < 0:
            raise ValueError("trunks must be non-negative")
        if trunks > MAX_CLOSED_FORM_TRUNKS:
            raise ValueError(
                f"closed form Erlang B is limited to {MAX_CLOSED_FORM_TRUNKS} trunks"
            )
        if trunks == 0:
            return 1.0
        k = np.arange(trunks + 1)
        terms = np.power(traffic, k) / factorial(k)
        return float(terms[-1] / np.sum(terms))


class CIRCUITS:
    """Trunk dimensioning for a target grade of service."""

    @staticmethod
    def required(
        offered_load: float, target_blocking: float, max_circuits: int = MAX_CIRCUITS
    ) -> int:
        """Minimum circuits so blocking <= ``target_blocking``.

        Walks the Erlang B recurrence from one circuit upwards and returns the
        first count that meets the target.  When the target cannot be met
        within ``max_circuits`` the cap is returned and a warning is logged;
        see :meth:`is_saturated`.

        Parameters
        ----------
        offered_load : float
            Busy hour offered traffic in erlangs.
        target_blocking : float
            Acceptable blocking probability (grade of service).
        max_circuits : int, optional
            Search bound, by default ``10000``.
        """

        offered_load = float(offered_load)
        if offered_load < 0:
            raise ValueError("offered_load must be non-negative")
        if offered_load == 0:
            return 0

        b = 1.0
        for m in range(1, max_circuits + 1):
            b = (offered_load * b) / (m + offered_load * b)
            if b <= target_blocking:
                return m

        logger.warning(
            "Erlang B search saturated: %.2f erlangs cannot reach blocking %.4f "
            "within %d circuits",
            offered_load,
            target_blocking,
            max_circuits,
        )
        return max_circuits

    @staticmethod
    def is_saturated(circuits: int, max_circuits: int = MAX_CIRCUITS) -> bool:
        """Return ``True`` when ``circuits`` is the search cap."""

        return int(circuits) >= max_circuits


class VOIP:
    """Packet voice bandwidth helpers."""

    @staticmethod
    def codec_bandwidth(codec: str) -> int:
        """Return the payload bitrate of ``codec`` in kbps."""

        try:
            return CODEC_BANDWIDTHS[codec]
        except KeyError:
            raise ValueError(f"unknown codec: {codec!r}") from None

    @staticmethod
    def bandwidth_per_call(codec_kbps: float, include_header_overhead: bool = True) -> float:
        """Return kbps used by one call, optionally with protocol overhead.

        The overhead is the ratio of header bytes to payload bytes at a
        cadence of 50 packets per second.

        Examples
        --------
        >>> VOIP.bandwidth_per_call(64)
        85.6
        >>> VOIP.bandwidth_per_call(8)
        29.6
        """

        bandwidth = float(codec_kbps)
        if bandwidth <= 0:
            raise ValueError("codec_kbps must be positive")
        if not include_header_overhead:
            return bandwidth

        header_bytes = (
            RTP_HEADER_BYTES + UDP_HEADER_BYTES + IP_HEADER_BYTES + ETHERNET_HEADER_BYTES
        )
        payload_bytes = (bandwidth * 1000) / (8 * PACKETS_PER_SECOND)
        return bandwidth * (1 + header_bytes / payload_bytes)


def erlang_b(offered_load, target_blocking, max_circuits=MAX_CIRCUITS):
    """Shortcut for :meth:`CIRCUITS.required`."""
    return CIRCUITS.required(offered_load, target_blocking, max_circuits)


def voip_bandwidth_per_call(codec_kbps, include_header_overhead=True):
    """Shortcut for :meth:`VOIP.bandwidth_per_call`."""
    return VOIP.bandwidth_per_call(codec_kbps, include_header_overhead)
