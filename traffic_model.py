# coding: utf-8

"""Busy hour traffic model for the US / China / UK voice network.

Daily outgoing minutes per location are split into a traffic matrix, turned
into busy hour erlangs and dimensioned per directed link either as PSTN
trunks (Erlang B circuits carried on T-1s) or as VoIP bandwidth.

Examples
--------
>>> links = build_link_metrics("pstn", None, 0.01)
>>> links[0].from_location, links[0].to_location, links[0].required_circuits
('US', 'China', 28)
"""

import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd

from erlang_calculator import CIRCUITS, HEADER_OVERHEAD_KBPS, MAX_CIRCUITS, VOIP

# Total outgoing traffic for each location (minutes per day).
TOTAL_DAILY_OUTGOING_MINUTES = {
    "US": 12822,
    "China": 28286,
    "UK": 28000,
}
LOCATIONS = tuple(TOTAL_DAILY_OUTGOING_MINUTES)

BUSY_HOUR_FACTOR = 0.17

T1_BANDWIDTH_MBPS = 1.544
T1_CHANNELS = 24

SPLIT_MODES = ("equal", "random")
RANDOM_WEIGHT_RANGE = (0.3, 0.7)

TrafficMatrix = Dict[Tuple[str, str], float]

PSTN_COLUMNS = [
    "From",
    "To",
    "Daily Minutes",
    "Busy Hour Erlangs",
    "Required Circuits",
    "T-1 Count",
    "Bandwidth (Mbps)",
]
VOIP_COLUMNS = [
    "From",
    "To",
    "Daily Minutes",
    "Busy Hour Erlangs",
    "Codec",
    "Bandwidth per Call (kbps)",
    "Total Bandwidth (Mbps)",
]


@dataclass(frozen=True)
class LinkMetrics:
    """Dimensioning result for one directed link."""

    from_location: str
    to_location: str
    daily_minutes: float
    busy_hour_erlangs: float
    network_type: str
    # PSTN
    required_circuits: Optional[int] = None
    t1_count: Optional[int] = None
    bandwidth_mbps: Optional[float] = None
    circuits_saturated: bool = False
    # VoIP
    codec: Optional[str] = None
    codec_bandwidth_kbps: Optional[int] = None
    header_overhead_kbps: Optional[float] = None
    total_bandwidth_per_call_kbps: Optional[float] = None
    total_bandwidth_mbps: Optional[float] = None

    @property
    def name(self) -> str:
        return f"{self.from_location} → {self.to_location}"

    @property
    def link_bandwidth_mbps(self) -> float:
        """Provisioned bandwidth regardless of network type."""
        if self.network_type == "pstn":
            return self.bandwidth_mbps
        return self.total_bandwidth_mbps


def busy_hour_erlangs(daily_minutes: float, busy_hour_factor: float = BUSY_HOUR_FACTOR) -> float:
    """Return busy hour erlangs for ``daily_minutes`` of traffic."""
    return daily_minutes * busy_hour_factor / 60


def generate_traffic_matrix(
    split_mode: str = "equal",
    rng: Optional[np.random.Generator] = None,
    totals: Optional[Dict[str, float]] = None,
) -> TrafficMatrix:
    """Split each location's outgoing minutes across the other locations.

    Parameters
    ----------
    split_mode : str, optional
        ``"equal"`` divides every total evenly, ``"random"`` draws a weight in
        ``[0.3, 0.7]`` per destination and normalises it per origin.
    rng : numpy.random.Generator, optional
        Random source for the ``"random"`` mode.
    totals : dict, optional
        Outgoing minutes per location, by default the three fixed sites.
    """
    if split_mode not in SPLIT_MODES:
        raise ValueError(f"split_mode must be one of {SPLIT_MODES}")
    totals = TOTAL_DAILY_OUTGOING_MINUTES if totals is None else totals
    locations = list(totals)
    if split_mode == "random" and rng is None:
        rng = np.random.default_rng()

    matrix = {}
    for origin in locations:
        destinations = [d for d in locations if d != origin]
        if not destinations:
            continue
        total = totals[origin]
        if split_mode == "equal":
            shares = [total / len(destinations)] * len(destinations)
        else:
            weights = rng.uniform(*RANDOM_WEIGHT_RANGE, size=len(destinations))
            shares = list(total * weights / weights.sum())
        for destination, share in zip(destinations, shares):
            matrix[(origin, destination)] = float(share)
    return matrix


def build_link_metrics(
    network_type: str,
    codec: Optional[str],
    blocking_probability: float,
    split_mode: str = "equal",
    rng: Optional[np.random.Generator] = None,
    busy_hour_factor: float = BUSY_HOUR_FACTOR,
    max_circuits: int = MAX_CIRCUITS,
    totals: Optional[Dict[str, float]] = None,
) -> List[LinkMetrics]:
    """Dimension every directed link with traffic.

    Inputs are expected to have passed
    :func:`core.validators.validate_analysis_inputs`.  Pairs without traffic
    produce no entry.
    """
    matrix = generate_traffic_matrix(split_mode, rng, totals)
    links = []
    for (origin, destination), daily_minutes in matrix.items():
        if daily_minutes == 0:
            continue
        erlangs = busy_hour_erlangs(daily_minutes, busy_hour_factor)
        if network_type == "pstn":
            circuits = CIRCUITS.required(erlangs, blocking_probability, max_circuits)
            t1_count = math.ceil(circuits / T1_CHANNELS)
            links.append(
                LinkMetrics(
                    from_location=origin,
                    to_location=destination,
                    daily_minutes=daily_minutes,
                    busy_hour_erlangs=erlangs,
                    network_type=network_type,
                    required_circuits=circuits,
                    t1_count=t1_count,
                    bandwidth_mbps=t1_count * T1_BANDWIDTH_MBPS,
                    circuits_saturated=CIRCUITS.is_saturated(circuits, max_circuits),
                )
            )
        else:
            codec_kbps = VOIP.codec_bandwidth(codec)
            per_call = codec_kbps + HEADER_OVERHEAD_KBPS
            links.append(
                LinkMetrics(
                    from_location=origin,
                    to_location=destination,
                    daily_minutes=daily_minutes,
                    busy_hour_erlangs=erlangs,
                    network_type=network_type,
                    codec=codec,
                    codec_bandwidth_kbps=codec_kbps,
                    header_overhead_kbps=HEADER_OVERHEAD_KBPS,
                    total_bandwidth_per_call_kbps=per_call,
                    total_bandwidth_mbps=erlangs * per_call / 1000,
                )
            )
    return links


def links_frame(links: List[LinkMetrics]) -> pd.DataFrame:
    """Return the analysis table for ``links``."""
    if not links:
        return pd.DataFrame(columns=PSTN_COLUMNS)
    rows = []
    if links[0].network_type == "pstn":
        for link in links:
            rows.append({
                "From": link.from_location,
                "To": link.to_location,
                "Daily Minutes": link.daily_minutes,
                "Busy Hour Erlangs": link.busy_hour_erlangs,
                "Required Circuits": link.required_circuits,
                "T-1 Count": link.t1_count,
                "Bandwidth (Mbps)": link.bandwidth_mbps,
            })
        return pd.DataFrame(rows, columns=PSTN_COLUMNS)
    for link in links:
        rows.append({
            "From": link.from_location,
            "To": link.to_location,
            "Daily Minutes": link.daily_minutes,
            "Busy Hour Erlangs": link.busy_hour_erlangs,
            "Codec": link.codec.upper(),
            "Bandwidth per Call (kbps)": link.total_bandwidth_per_call_kbps,
            "Total Bandwidth (Mbps)": link.total_bandwidth_mbps,
        })
    return pd.DataFrame(rows, columns=VOIP_COLUMNS)
