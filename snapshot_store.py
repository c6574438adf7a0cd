"""In-memory analysis snapshots and side-by-side comparison."""

import logging
import random
import time
from dataclasses import dataclass, replace
from datetime import datetime
from typing import List, Optional, Tuple

import numpy as np
import pandas as pd

from core.config import EngineConfig
from core.validators import (
    SnapshotLimitError,
    SnapshotNotFoundError,
    require_valid_analysis_inputs,
)
from traffic_model import LinkMetrics, build_link_metrics

logger = logging.getLogger(__name__)

COMPARISON_TOLERANCE = 0.01


@dataclass(frozen=True)
class Snapshot:
    id: str
    timestamp: str
    network_type: str
    codec: Optional[str]
    blocking_probability: float
    links: Tuple[LinkMetrics, ...]
    explanation: Optional[str] = None
    model_used: Optional[str] = None


def new_snapshot_id() -> str:
    return f"{int(time.time() * 1000)}-{random.randrange(1000)}"


class SnapshotStore:
    """Holds the analyses of the current session.

    At most ``max_live`` snapshots are kept (``None`` for no limit); the
    stored records are immutable and are replaced rather than edited.
    """

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig()
        self.max_live = self.config.max_live_snapshots
        self._snapshots = {}

    def __len__(self):
        return len(self._snapshots)

    def __contains__(self, snapshot_id):
        return snapshot_id in self._snapshots

    def create(
        self,
        network_type: str,
        codec: Optional[str],
        blocking_probability: float,
        split_mode: str = "equal",
        rng: Optional[np.random.Generator] = None,
    ) -> Snapshot:
        """Run an analysis and store its result."""
        require_valid_analysis_inputs(network_type, codec, blocking_probability)
        if self.max_live is not None and len(self._snapshots) >= self.max_live:
            raise SnapshotLimitError(
                f"You already have {self.max_live} analyses. "
                "Please clear existing analyses before running a new one."
            )

        blocking_probability = float(blocking_probability)
        links = build_link_metrics(
            network_type,
            codec if network_type == "voip" else None,
            blocking_probability,
            split_mode=split_mode,
            rng=rng,
            busy_hour_factor=self.config.busy_hour_factor,
            max_circuits=self.config.max_circuits,
        )
        snapshot_id = new_snapshot_id()
        while snapshot_id in self._snapshots:
            snapshot_id = new_snapshot_id()
        snapshot = Snapshot(
            id=snapshot_id,
            timestamp=datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
            network_type=network_type,
            codec=codec if network_type == "voip" else None,
            blocking_probability=blocking_probability,
            links=tuple(links),
        )
        self._snapshots[snapshot_id] = snapshot
        saturated = [link.name for link in links if link.circuits_saturated]
        if saturated:
            logger.warning("Snapshot %s has saturated links: %s", snapshot_id, ", ".join(saturated))
        logger.info(
            "Created %s snapshot %s with %d links", network_type, snapshot_id, len(links)
        )
        return snapshot

    def get(self, snapshot_id: str) -> Snapshot:
        try:
            return self._snapshots[snapshot_id]
        except KeyError:
            raise SnapshotNotFoundError(snapshot_id) from None

    def find(self, snapshot_id: str) -> Optional[Snapshot]:
        return self._snapshots.get(snapshot_id)

    def list(self) -> List[Snapshot]:
        return list(self._snapshots.values())

    def remove(self, snapshot_id: str) -> Snapshot:
        snapshot = self.get(snapshot_id)
        del self._snapshots[snapshot_id]
        return snapshot

    def clear(self) -> None:
        self._snapshots.clear()
        logger.info("Cleared all snapshots")

    def attach_explanation(self, snapshot_id: str, explanation: str, model_used: str) -> Snapshot:
        snapshot = replace(self.get(snapshot_id), explanation=explanation, model_used=model_used)
        self._snapshots[snapshot_id] = snapshot
        return snapshot

    def clear_explanation(self, snapshot_id: str) -> Snapshot:
        snapshot = replace(self.get(snapshot_id), explanation=None, model_used=None)
        self._snapshots[snapshot_id] = snapshot
        return snapshot


def describe_snapshot(snapshot: Snapshot) -> str:
    """Return a short label such as ``PSTN (1.0% blocking)``."""
    pct = f"{snapshot.blocking_probability * 100:.1f}% blocking"
    if snapshot.network_type == "pstn":
        return f"PSTN ({pct})"
    return f"VoIP {snapshot.codec.upper()} ({pct})"


def _close(a, b):
    return abs(a - b) <= COMPARISON_TOLERANCE


def snapshots_identical(first: Snapshot, second: Snapshot) -> bool:
    """Return ``True`` when two analyses would give the same results."""
    if first.network_type != second.network_type:
        return False
    if first.blocking_probability != second.blocking_probability:
        return False
    if first.network_type == "voip" and first.codec != second.codec:
        return False
    if len(first.links) != len(second.links):
        return False

    for a, b in zip(first.links, second.links):
        if (a.from_location, a.to_location) != (b.from_location, b.to_location):
            return False
        if not _close(a.daily_minutes, b.daily_minutes):
            return False
        if not _close(a.busy_hour_erlangs, b.busy_hour_erlangs):
            return False
        if first.network_type == "pstn":
            if (
                a.required_circuits != b.required_circuits
                or a.t1_count != b.t1_count
                or not _close(a.bandwidth_mbps, b.bandwidth_mbps)
            ):
                return False
        else:
            if (
                a.codec != b.codec
                or a.total_bandwidth_per_call_kbps != b.total_bandwidth_per_call_kbps
                or not _close(a.total_bandwidth_mbps, b.total_bandwidth_mbps)
            ):
                return False
    return True


def compare_snapshots(first: Snapshot, second: Snapshot) -> pd.DataFrame:
    """Per link comparison of two analyses.

    Links present in only one snapshot get ``NaN`` for the other side.
    """
    left = {(l.from_location, l.to_location): l for l in first.links}
    right = {(l.from_location, l.to_location): l for l in second.links}
    keys = list(left) + [k for k in right if k not in left]

    label_1 = describe_snapshot(first)
    label_2 = describe_snapshot(second)
    if label_1 == label_2:
        label_1, label_2 = f"{label_1} #1", f"{label_2} #2"
    rows = []
    for key in keys:
        a = left.get(key)
        b = right.get(key)
        bw_a = a.link_bandwidth_mbps if a else np.nan
        bw_b = b.link_bandwidth_mbps if b else np.nan
        rows.append({
            "Link": f"{key[0]}-{key[1]}",
            "Daily Minutes": (a or b).daily_minutes,
            "Busy Hour Erlangs": (a or b).busy_hour_erlangs,
            f"{label_1} (Mbps)": bw_a,
            f"{label_2} (Mbps)": bw_b,
            "Difference (Mbps)": bw_b - bw_a,
        })
    return pd.DataFrame(rows).set_index("Link")
