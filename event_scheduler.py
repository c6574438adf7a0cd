"""Cancellable timers for the call simulator.

Timers carry a tuple key such as ``(snapshot_id, link_index, kind)`` so that
everything belonging to one simulation can be cancelled by key prefix.  Two
clocks are provided: :class:`AsyncioScheduler` runs on a real event loop and
:class:`VirtualScheduler` keeps a heap ordered virtual clock that is advanced
explicitly, which makes runs instant and reproducible.
"""

import asyncio
import heapq
import itertools
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Tuple


@dataclass(order=True)
class TimerHandle:
    when: float
    seq: int
    key: Tuple = field(compare=False)
    callback: Callable[[], Any] = field(compare=False, repr=False)
    cancelled: bool = field(default=False, compare=False)
    loop_handle: Any = field(default=None, compare=False, repr=False)


class Scheduler:
    """Bookkeeping shared by both clocks."""

    def __init__(self):
        self._timers = {}
        self._seq = itertools.count()

    def now_ms(self) -> float:
        raise NotImplementedError

    def _arm(self, handle: TimerHandle, delay_ms: float) -> None:
        raise NotImplementedError

    def _disarm(self, handle: TimerHandle) -> None:
        pass

    def call_later(self, delay_ms: float, key: Tuple, callback: Callable[[], Any]) -> TimerHandle:
        """Run ``callback`` after ``delay_ms`` milliseconds."""
        if delay_ms < 0:
            raise ValueError("delay_ms must be non-negative")
        handle = TimerHandle(self.now_ms() + delay_ms, next(self._seq), tuple(key), callback)
        self._timers[handle.seq] = handle
        self._arm(handle, delay_ms)
        return handle

    def cancel(self, handle: TimerHandle) -> bool:
        if handle.cancelled or handle.seq not in self._timers:
            return False
        handle.cancelled = True
        del self._timers[handle.seq]
        self._disarm(handle)
        return True

    def cancel_prefix(self, prefix: Tuple) -> int:
        """Cancel every pending timer whose key starts with ``prefix``."""
        prefix = tuple(prefix)
        matches = [h for h in self._timers.values() if h.key[: len(prefix)] == prefix]
        for handle in matches:
            self.cancel(handle)
        return len(matches)

    def pending(self, prefix: Tuple = ()) -> int:
        prefix = tuple(prefix)
        return sum(1 for h in self._timers.values() if h.key[: len(prefix)] == prefix)

    def _fire(self, handle: TimerHandle) -> None:
        if handle.cancelled:
            return
        self._timers.pop(handle.seq, None)
        handle.callback()


class AsyncioScheduler(Scheduler):
    """Wall clock timers on an asyncio event loop.

    The loop defaults to the running loop at first use, so the scheduler can
    be created before ``asyncio.run`` starts.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        super().__init__()
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def now_ms(self) -> float:
        return self.loop.time() * 1000

    def _arm(self, handle, delay_ms):
        handle.loop_handle = self.loop.call_later(delay_ms / 1000, self._fire, handle)

    def _disarm(self, handle):
        if handle.loop_handle is not None:
            handle.loop_handle.cancel()


class VirtualScheduler(Scheduler):
    """Discrete event clock; time only moves on :meth:`advance`."""

    def __init__(self, start_ms: float = 0.0):
        super().__init__()
        self._now = float(start_ms)
        self._queue = []

    def now_ms(self) -> float:
        return self._now

    def _arm(self, handle, delay_ms):
        heapq.heappush(self._queue, handle)

    def advance(self, delay_ms: float) -> int:
        """Move the clock forward, firing due timers in time order.

        Returns the number of callbacks run.
        """
        if delay_ms < 0:
            raise ValueError("delay_ms must be non-negative")
        target = self._now + delay_ms
        fired = 0
        while self._queue and self._queue[0].when <= target:
            handle = heapq.heappop(self._queue)
            if handle.cancelled:
                continue
            self._now = handle.when
            self._fire(handle)
            fired += 1
        self._now = target
        return fired

    def run_until_idle(self) -> int:
        """Fire timers until none are pending."""
        fired = 0
        while self._queue:
            handle = heapq.heappop(self._queue)
            if handle.cancelled:
                continue
            self._now = handle.when
            self._fire(handle)
            fired += 1
        return fired
