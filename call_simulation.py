# coding: utf-8

"""Discrete event call blocking simulator.

Every analysis snapshot can run its own bounded simulation: calls arrive on
each directed link as a Poisson process, are accepted or blocked using the
Erlang B probability of the link's current occupancy and leave again after a
fixed holding time.  All simulations share one scheduler and are owned by a
:class:`SimulationManager` instance.

Examples
--------
>>> from event_scheduler import VirtualScheduler
>>> store = SnapshotStore()
>>> snapshot = store.create("voip", "g729a", 0.01)
>>> manager = SimulationManager(store, VirtualScheduler(), rng=np.random.default_rng(7))
>>> manager.run_to_completion(snapshot.id).phase
'completed'
"""

import asyncio
import logging
import math
from dataclasses import asdict, dataclass, field
from typing import Callable, Dict, List, Optional

import numpy as np

from core.config import EngineConfig
from erlang_calculator import BLOCKING, VOIP
from event_scheduler import AsyncioScheduler, Scheduler, VirtualScheduler
from snapshot_store import Snapshot, SnapshotStore
from traffic_model import T1_BANDWIDTH_MBPS, LinkMetrics

logger = logging.getLogger(__name__)

IDLE = "idle"
RUNNING = "running"
COMPLETED = "completed"
STOPPED = "stopped"

SIMULATION_STARTED = "simulation-started"
CALL_STARTED = "call-started"
CALL_BLOCKED = "call-blocked"
CALL_ENDED = "call-ended"
SIMULATION_STOPPED = "simulation-stopped"
SIMULATION_COMPLETED = "simulation-completed"

PSTN_CALL_KBPS = 64
# Capacity assumed for a VoIP link in the simulator.
VOIP_LINK_CAPACITY_KBPS = 1000


@dataclass(frozen=True)
class LinkSimConfig:
    name: str
    call_rate_per_minute: float
    bandwidth_per_call_mbps: float
    max_concurrent_calls: int
    call_duration_ms: float
    offered_load_erlangs: float
    arrival_budget: Optional[int] = None


@dataclass
class LinkState:
    active_calls: int = 0
    accepted_calls: int = 0
    blocked_calls: int = 0
    arrivals_scheduled: int = 0
    arrival_offset_ms: float = 0.0
    last_call_id: int = 0


@dataclass
class SimulationState:
    snapshot_id: str
    start_time: float
    links: List[LinkSimConfig]
    link_states: List[LinkState]
    phase: str = RUNNING
    active_calls: int = 0
    total_calls_accepted: int = 0
    blocked_calls: int = 0
    bandwidth_usage_mbps: float = 0.0
    peak_active_calls: int = 0
    peak_bandwidth_usage_mbps: float = 0.0
    end_time: Optional[float] = None
    last_push_ms: Optional[float] = None


@dataclass(frozen=True)
class SimulationMetrics:
    active_calls: int
    total_calls: int
    blocked_calls: int
    bandwidth_usage_mbps: float
    peak_active_calls: int
    peak_bandwidth_usage_mbps: float
    elapsed_ms: float
    blocking_rate: float
    phase: str

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass(frozen=True)
class SimulationEvent:
    kind: str
    snapshot_id: str
    time_ms: float
    link_index: Optional[int] = None
    link_name: Optional[str] = None
    call_id: Optional[int] = None
    active_calls: Optional[int] = None
    max_concurrent_calls: Optional[int] = None
    blocking_probability: Optional[float] = None
    metrics: Optional[SimulationMetrics] = field(default=None, repr=False)


def derive_link_config(
    link: LinkMetrics,
    network_type: str,
    codec: Optional[str],
    blocking_probability: float,
    config: EngineConfig,
) -> LinkSimConfig:
    """Simulation parameters for one link of a snapshot.

    The arrival rate is the busy hour load divided by the holding time, thinned
    by the target blocking probability.  Concurrency is limited by both the
    whole erlangs on the link and the link capacity (one T-1 for PSTN, a
    1 Mbps pipe for VoIP).
    """
    if network_type == "pstn":
        bandwidth_kbps = PSTN_CALL_KBPS
        capacity = math.floor(T1_BANDWIDTH_MBPS * 1000 / PSTN_CALL_KBPS)
    else:
        codec_kbps = VOIP.codec_bandwidth(codec)
        bandwidth_kbps = VOIP.bandwidth_per_call(codec_kbps, config.include_header_overhead)
        capacity = math.floor(VOIP_LINK_CAPACITY_KBPS / codec_kbps)

    call_rate = link.busy_hour_erlangs * 60 / config.call_duration_s * (1 - blocking_probability)
    budget = None
    if config.cap_arrivals_at_expected_count:
        budget = math.ceil(call_rate * config.simulation_duration_ms / 60000)

    return LinkSimConfig(
        name=link.name,
        call_rate_per_minute=call_rate,
        bandwidth_per_call_mbps=bandwidth_kbps / 1000,
        max_concurrent_calls=min(math.floor(link.busy_hour_erlangs), capacity),
        call_duration_ms=config.call_duration_s * 1000,
        offered_load_erlangs=call_rate * config.call_duration_s / 60,
        arrival_budget=budget,
    )


def instantaneous_blocking_probability(active_calls: int, max_calls: int, offered_load: float) -> float:
    """Erlang B blocking for the load implied by the current occupancy.

    The offered load is scaled by ``active_calls / max_calls`` so an idle
    link never blocks and a full link blocks with certainty.
    """
    if max_calls <= 0 or active_calls >= max_calls:
        return 1.0
    current_load = offered_load * active_calls / max_calls
    return BLOCKING.closed_form(current_load, max_calls)


def _register(registry, listener):
    registry.append(listener)

    def unsubscribe():
        if listener in registry:
            registry.remove(listener)

    return unsubscribe


class SimulationManager:
    """Owns the simulations of every snapshot in one session.

    Parameters
    ----------
    store : SnapshotStore
        Source of snapshots, read by id.
    scheduler : Scheduler, optional
        Timer backend, by default an :class:`AsyncioScheduler`.
    config : EngineConfig, optional
        Simulation window, holding time and metrics cadence.
    rng : numpy.random.Generator, optional
        Random source for arrivals and blocking draws.
    on_completed : callable, optional
        Called with ``(snapshot_id, metrics)`` when a simulation reaches its
        deadline.
    """

    def __init__(
        self,
        store: SnapshotStore,
        scheduler: Optional[Scheduler] = None,
        config: Optional[EngineConfig] = None,
        rng: Optional[np.random.Generator] = None,
        on_completed: Optional[Callable] = None,
    ):
        self.store = store
        self.scheduler = scheduler or AsyncioScheduler()
        self.config = config or store.config
        self.rng = rng or np.random.default_rng()
        self.on_completed = on_completed
        self._states: Dict[str, SimulationState] = {}
        self._listeners = []
        self._metric_listeners = []
        self._waiters = {}

    # ------------------------------------------------------------------
    # observers
    # ------------------------------------------------------------------
    def subscribe(self, listener: Callable[[SimulationEvent], None]) -> Callable[[], None]:
        """Receive every :class:`SimulationEvent`; returns an unsubscribe callable."""
        return _register(self._listeners, listener)

    def subscribe_metrics(self, listener: Callable[[str, SimulationMetrics], None]) -> Callable[[], None]:
        """Receive throttled metrics pushes as ``(snapshot_id, metrics)``."""
        return _register(self._metric_listeners, listener)

    def _notify(self, listener, *payload):
        try:
            listener(*payload)
        except Exception:
            logger.exception("Simulation listener %r failed", listener)

    def _emit(self, state: SimulationState, kind: str, index: Optional[int] = None, **details):
        link = state.links[index] if index is not None else None
        event = SimulationEvent(
            kind=kind,
            snapshot_id=state.snapshot_id,
            time_ms=self.scheduler.now_ms() - state.start_time,
            link_index=index,
            link_name=link.name if link else None,
            max_concurrent_calls=link.max_concurrent_calls if link else None,
            **details,
        )
        for listener in list(self._listeners):
            self._notify(listener, event)

    def _push_metrics(self, state: SimulationState, final: bool = False):
        now = self.scheduler.now_ms()
        if (
            not final
            and state.last_push_ms is not None
            and now - state.last_push_ms < self.config.metrics_throttle_ms
        ):
            return
        state.last_push_ms = now
        metrics = self._metrics(state)
        for listener in list(self._metric_listeners):
            self._notify(listener, state.snapshot_id, metrics)

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------
    def phase(self, snapshot_id: str) -> str:
        state = self._states.get(snapshot_id)
        return state.phase if state else IDLE

    def is_running(self, snapshot_id: str) -> bool:
        return self.phase(snapshot_id) == RUNNING

    def running(self) -> List[str]:
        return [sid for sid, state in self._states.items() if state.phase == RUNNING]

    def start(self, snapshot_id: str) -> bool:
        """Start the simulation of ``snapshot_id``.

        Returns ``False`` without side effects when it is already running or
        the snapshot does not exist.  A completed or stopped simulation is
        started afresh.
        """
        current = self._states.get(snapshot_id)
        if current is not None and current.phase == RUNNING:
            logger.info("Simulation already running for %s", snapshot_id)
            return False

        snapshot = self.store.find(snapshot_id)
        if snapshot is None:
            logger.warning("No snapshot data found for %s; simulation not started", snapshot_id)
            return False

        if current is not None:
            self._discard(snapshot_id)

        state = self._initial_state(snapshot)
        self._states[snapshot_id] = state
        cfg = self.config
        self.scheduler.call_later(
            cfg.simulation_duration_ms,
            (snapshot_id, None, "deadline"),
            lambda: self._on_deadline(snapshot_id),
        )
        self.scheduler.call_later(
            cfg.metrics_interval_ms,
            (snapshot_id, None, "metrics"),
            lambda: self._on_metrics_tick(snapshot_id),
        )
        for index, link in enumerate(state.links):
            logger.debug(
                "%s: %.2f calls/min, max %d calls, budget %s",
                link.name,
                link.call_rate_per_minute,
                link.max_concurrent_calls,
                link.arrival_budget,
            )
            self._schedule_next_arrival(state, index)

        logger.info(
            "Simulation started for %s (%s, %d links, %d ms window)",
            snapshot_id,
            snapshot.network_type.upper(),
            len(state.links),
            cfg.simulation_duration_ms,
        )
        self._emit(state, SIMULATION_STARTED)
        self._push_metrics(state, final=True)
        return True

    def _initial_state(self, snapshot: Snapshot) -> SimulationState:
        links = [
            derive_link_config(
                link, snapshot.network_type, snapshot.codec, snapshot.blocking_probability, self.config
            )
            for link in snapshot.links
        ]
        return SimulationState(
            snapshot_id=snapshot.id,
            start_time=self.scheduler.now_ms(),
            links=links,
            link_states=[LinkState() for _ in links],
        )

    def stop(self, snapshot_id: str) -> bool:
        """Stop a running simulation and freeze its metrics."""
        state = self._states.get(snapshot_id)
        if state is None or state.phase != RUNNING:
            return False
        self._finish(state, STOPPED)
        logger.info("Simulation stopped for %s", snapshot_id)
        self._emit(state, SIMULATION_STOPPED, metrics=self._metrics(state))
        return True

    def reset(self, snapshot_id: str) -> None:
        """Drop the simulation state of ``snapshot_id`` (back to idle)."""
        if snapshot_id in self._states:
            self._discard(snapshot_id)

    def stop_all(self) -> None:
        for snapshot_id in self.running():
            self.stop(snapshot_id)

    def clear(self) -> None:
        """Stop every simulation and drop all state."""
        self.stop_all()
        for snapshot_id in list(self._states):
            self._discard(snapshot_id)

    def _discard(self, snapshot_id: str):
        self.scheduler.cancel_prefix((snapshot_id,))
        del self._states[snapshot_id]
        self._release_waiter(snapshot_id, IDLE)

    def _finish(self, state: SimulationState, phase: str):
        cancelled = self.scheduler.cancel_prefix((state.snapshot_id,))
        state.phase = phase
        state.end_time = self.scheduler.now_ms()
        logger.debug("Cancelled %d timers for %s", cancelled, state.snapshot_id)
        self._push_metrics(state, final=True)
        self._release_waiter(state.snapshot_id, phase)

    def _release_waiter(self, snapshot_id, phase):
        waiter = self._waiters.pop(snapshot_id, None)
        if waiter is not None and not waiter.done():
            waiter.set_result(phase)

    # ------------------------------------------------------------------
    # timer callbacks
    # ------------------------------------------------------------------
    def _schedule_next_arrival(self, state: SimulationState, index: int):
        link = state.links[index]
        link_state = state.link_states[index]
        if link.call_rate_per_minute <= 0:
            return
        if link.arrival_budget is not None and link_state.arrivals_scheduled >= link.arrival_budget:
            return

        lam = link.call_rate_per_minute / 60
        interval_ms = self.rng.exponential(1 / lam) * 1000
        offset = link_state.arrival_offset_ms + interval_ms
        if offset > self.config.simulation_duration_ms:
            logger.debug(
                "Call generation complete for %s after %d arrivals",
                link.name,
                link_state.arrivals_scheduled,
            )
            return

        link_state.arrival_offset_ms = offset
        link_state.arrivals_scheduled += 1
        delay = max(0.0, state.start_time + offset - self.scheduler.now_ms())
        snapshot_id = state.snapshot_id
        self.scheduler.call_later(
            delay,
            (snapshot_id, index, "arrival"),
            lambda: self._on_arrival(snapshot_id, index),
        )

    def _on_arrival(self, snapshot_id: str, index: int):
        state = self._states.get(snapshot_id)
        if state is None or state.phase != RUNNING:
            return
        self.try_accept_call(state, index)
        self._schedule_next_arrival(state, index)

    def try_accept_call(self, state: SimulationState, index: int) -> bool:
        """Offer one call to link ``index``; returns ``True`` when accepted."""
        link = state.links[index]
        link_state = state.link_states[index]
        link_state.last_call_id += 1
        call_id = link_state.last_call_id

        p_block = instantaneous_blocking_probability(
            link_state.active_calls, link.max_concurrent_calls, link.offered_load_erlangs
        )
        blocked = p_block >= 1.0 or self.rng.random() < p_block
        logger.debug(
            "Call %d on %s: %d/%d active, blocking %.3f%%, blocked=%s",
            call_id,
            link.name,
            link_state.active_calls,
            link.max_concurrent_calls,
            p_block * 100,
            blocked,
        )

        if blocked:
            link_state.blocked_calls += 1
            state.blocked_calls += 1
            self._emit(
                state,
                CALL_BLOCKED,
                index,
                call_id=call_id,
                active_calls=link_state.active_calls,
                blocking_probability=p_block,
            )
            self._push_metrics(state)
            return False

        link_state.active_calls += 1
        link_state.accepted_calls += 1
        state.active_calls += 1
        state.total_calls_accepted += 1
        state.bandwidth_usage_mbps += link.bandwidth_per_call_mbps
        state.peak_active_calls = max(state.peak_active_calls, state.active_calls)
        state.peak_bandwidth_usage_mbps = max(
            state.peak_bandwidth_usage_mbps, state.bandwidth_usage_mbps
        )

        snapshot_id = state.snapshot_id
        self.scheduler.call_later(
            link.call_duration_ms,
            (snapshot_id, index, "departure"),
            lambda: self._on_departure(snapshot_id, index, call_id),
        )
        self._emit(
            state,
            CALL_STARTED,
            index,
            call_id=call_id,
            active_calls=link_state.active_calls,
            blocking_probability=p_block,
        )
        self._push_metrics(state)
        return True

    def _on_departure(self, snapshot_id: str, index: int, call_id: int):
        state = self._states.get(snapshot_id)
        if state is None or state.phase != RUNNING:
            return
        link = state.links[index]
        link_state = state.link_states[index]
        link_state.active_calls -= 1
        state.active_calls -= 1
        if state.active_calls == 0:
            state.bandwidth_usage_mbps = 0.0
        else:
            state.bandwidth_usage_mbps = max(
                0.0, state.bandwidth_usage_mbps - link.bandwidth_per_call_mbps
            )
        self._emit(state, CALL_ENDED, index, call_id=call_id, active_calls=link_state.active_calls)
        self._push_metrics(state)

    def _on_metrics_tick(self, snapshot_id: str):
        state = self._states.get(snapshot_id)
        if state is None or state.phase != RUNNING:
            return
        self._push_metrics(state)
        self.scheduler.call_later(
            self.config.metrics_interval_ms,
            (snapshot_id, None, "metrics"),
            lambda: self._on_metrics_tick(snapshot_id),
        )

    def _on_deadline(self, snapshot_id: str):
        state = self._states.get(snapshot_id)
        if state is None or state.phase != RUNNING:
            return
        self._finish(state, COMPLETED)
        metrics = self._metrics(state)
        logger.info(
            "Simulation completed for %s: %d accepted, %d blocked",
            snapshot_id,
            metrics.total_calls,
            metrics.blocked_calls,
        )
        self._emit(state, SIMULATION_COMPLETED, metrics=metrics)
        if self.on_completed is not None:
            self._notify(self.on_completed, snapshot_id, metrics)

    # ------------------------------------------------------------------
    # read side
    # ------------------------------------------------------------------
    def _metrics(self, state: SimulationState) -> SimulationMetrics:
        end = state.end_time if state.end_time is not None else self.scheduler.now_ms()
        offered = state.total_calls_accepted + state.blocked_calls
        return SimulationMetrics(
            active_calls=state.active_calls,
            total_calls=state.total_calls_accepted,
            blocked_calls=state.blocked_calls,
            bandwidth_usage_mbps=state.bandwidth_usage_mbps,
            peak_active_calls=state.peak_active_calls,
            peak_bandwidth_usage_mbps=state.peak_bandwidth_usage_mbps,
            elapsed_ms=min(end - state.start_time, float(self.config.simulation_duration_ms)),
            blocking_rate=state.blocked_calls / offered if offered else 0.0,
            phase=state.phase,
        )

    def get_metrics(self, snapshot_id: str) -> Optional[SimulationMetrics]:
        """Current metrics, or ``None`` when the snapshot has no simulation."""
        state = self._states.get(snapshot_id)
        if state is None:
            return None
        return self._metrics(state)

    def link_configs(self, snapshot_id: str) -> List[LinkSimConfig]:
        state = self._states.get(snapshot_id)
        return list(state.links) if state else []

    def link_states(self, snapshot_id: str) -> List[LinkState]:
        state = self._states.get(snapshot_id)
        return [LinkState(**asdict(ls)) for ls in state.link_states] if state else []

    # ------------------------------------------------------------------
    # drivers
    # ------------------------------------------------------------------
    def run_to_completion(self, snapshot_id: str) -> Optional[SimulationMetrics]:
        """Run a whole window on a :class:`VirtualScheduler` and return final metrics."""
        if not isinstance(self.scheduler, VirtualScheduler):
            raise TypeError("run_to_completion requires a VirtualScheduler")
        self.start(snapshot_id)
        state = self._states.get(snapshot_id)
        if state is None:
            return None
        if state.phase == RUNNING:
            deadline = state.start_time + self.config.simulation_duration_ms
            self.scheduler.advance(max(0.0, deadline - self.scheduler.now_ms()))
        return self._metrics(state)

    async def run(self, snapshot_id: str) -> Optional[SimulationMetrics]:
        """Start on the running event loop and wait until completed or stopped."""
        if not self.is_running(snapshot_id) and not self.start(snapshot_id):
            return None
        waiter = self._waiters.get(snapshot_id)
        if waiter is None:
            waiter = asyncio.get_running_loop().create_future()
            self._waiters[snapshot_id] = waiter
        await waiter
        return self.get_metrics(snapshot_id)
