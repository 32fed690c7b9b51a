"""Single-threaded tick sources.

Everything in the engine (frame loop, capture pacing, batch waits, audio
timestamps) reads time and schedules work through one Scheduler, so the same
code runs against Tk's event loop or against a simulated clock that can be
advanced as fast as the CPU allows.
"""
import heapq
import itertools
import logging
import time
from typing import Any, Callable, List, Optional, Tuple

log = logging.getLogger(__name__)

FRAME_MS = 1000.0 / 60.0


class Scheduler:
    def now(self) -> float:
        """Current time in seconds."""
        raise NotImplementedError

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> Any:
        raise NotImplementedError

    def cancel(self, handle: Any) -> None:
        raise NotImplementedError

    def call_soon(self, callback: Callable[[], None]) -> Any:
        return self.call_later(0, callback)


class TkScheduler(Scheduler):
    """Drives callbacks through a Tk widget's after() queue."""

    def __init__(self, widget, clock: Callable[[], float] = time.perf_counter):
        self.widget = widget
        self._clock = clock

    def now(self) -> float:
        return self._clock()

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> Any:
        return self.widget.after(max(0, int(round(delay_ms))), callback)

    def cancel(self, handle: Any) -> None:
        if handle is not None:
            self.widget.after_cancel(handle)


class SimulatedScheduler(Scheduler):
    """Virtual clock; callbacks fire in (due time, insertion) order when time advances."""

    def __init__(self, start: float = 0.0):
        self._now = float(start)
        self._queue: List[Tuple[float, int, Callable[[], None]]] = []
        self._seq = itertools.count()
        self._cancelled = set()

    def now(self) -> float:
        return self._now

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> int:
        handle = next(self._seq)
        due = self._now + max(0.0, float(delay_ms)) / 1000.0
        heapq.heappush(self._queue, (due, handle, callback))
        return handle

    def cancel(self, handle: Any) -> None:
        if handle is not None:
            self._cancelled.add(handle)

    @property
    def pending(self) -> int:
        return sum(1 for _, h, _ in self._queue if h not in self._cancelled)

    def _pop_due(self, limit: float) -> Optional[Callable[[], None]]:
        while self._queue and self._queue[0][0] <= limit:
            due, handle, callback = heapq.heappop(self._queue)
            if handle in self._cancelled:
                self._cancelled.discard(handle)
                continue
            self._now = max(self._now, due)
            return callback
        return None

    def advance(self, ms: float) -> None:
        """Run everything due within the next `ms` milliseconds, then park the clock there."""
        target = self._now + float(ms) / 1000.0
        while True:
            callback = self._pop_due(target)
            if callback is None:
                break
            callback()
        self._now = target

    def run_until(self, predicate: Callable[[], bool], timeout: Optional[float] = None) -> bool:
        """Jump from callback to callback until predicate() holds.

        Returns False if the queue drains or `timeout` virtual seconds pass first.
        """
        deadline = None if timeout is None else self._now + timeout
        while not predicate():
            if not self._queue:
                return False
            if deadline is not None and self._queue[0][0] > deadline:
                self._now = deadline
                return predicate()
            callback = self._pop_due(self._queue[0][0])
            if callback is not None:
                callback()
        return True
