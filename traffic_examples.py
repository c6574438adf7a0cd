"""Example workflows using the traffic analysis and simulation utilities."""

import numpy as np

from call_simulation import SimulationManager
from core.config import EngineConfig, configure_logging
from erlang_calculator import BLOCKING, CIRCUITS
from event_scheduler import VirtualScheduler
from snapshot_store import SnapshotStore, compare_snapshots
from traffic_model import links_frame


def run_dimensioning_workflow() -> None:
    """Size a single trunk group and print the achieved blocking."""
    offered_load = 10.0
    target = 0.01

    circuits = CIRCUITS.required(offered_load, target)
    achieved = BLOCKING.recurrence(offered_load, circuits)

    print("=== Trunk Dimensioning ===")
    print(f"Offered load: {offered_load:.2f} erlangs")
    print(f"Required circuits: {circuits}")
    print(f"Achieved blocking: {achieved:.4f}")


def run_comparison_example() -> None:
    """Analyse PSTN and VoIP G.729a side by side."""
    store = SnapshotStore()
    pstn = store.create("pstn", None, 0.01)
    voip = store.create("voip", "g729a", 0.01)
    print("=== PSTN ===")
    print(links_frame(list(pstn.links)))
    print("=== VoIP G.729a ===")
    print(links_frame(list(voip.links)))
    print("=== Comparison ===")
    print(compare_snapshots(pstn, voip))


def run_simulation_example(seed: int = 7) -> None:
    """Replay one simulation window on a virtual clock and print the metrics."""
    config = EngineConfig()
    store = SnapshotStore(config)
    snapshot = store.create("pstn", None, 0.01)
    manager = SimulationManager(
        store, VirtualScheduler(), config, rng=np.random.default_rng(seed)
    )
    manager.subscribe(
        lambda e: print(f"{e.time_ms / 1000:6.2f}s  {e.kind:<20} {e.link_name or ''}")
    )
    metrics = manager.run_to_completion(snapshot.id)
    print("=== Simulation ===")
    for name, value in metrics.to_dict().items():
        print(f"{name}: {value}")


if __name__ == "__main__":
    configure_logging()
    run_dimensioning_workflow()
    run_comparison_example()
    run_simulation_example()
