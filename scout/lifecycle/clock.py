"""Clock and deferred-action primitives.

Everything time-based in Scout (signal finalisation, interval-aligned signal
generation) runs against an injectable ``Clock`` so tests can advance virtual
time instead of sleeping.
"""

import heapq
import itertools
import logging
import time
from typing import Callable, Optional, Protocol, runtime_checkable

logger = logging.getLogger("scout.lifecycle")


@runtime_checkable
class Clock(Protocol):
    """Source of the current time in epoch milliseconds."""

    def now_ms(self) -> int:
        ...


class SystemClock:
    """Wall-clock time."""

    def now_ms(self) -> int:
        return int(time.time() * 1000)


class ManualClock:
    """A clock that only moves when told to."""

    def __init__(self, start_ms: int = 0) -> None:
        self._now = start_ms

    def now_ms(self) -> int:
        return self._now

    def advance(self, ms: int) -> int:
        if ms < 0:
            raise ValueError(f"Cannot move a clock backwards ({ms} ms)")
        self._now += ms
        return self._now

    def set(self, now_ms: int) -> None:
        self._now = now_ms


class Scheduler:
    """Sorted queue of ``(fire_at, action)`` pairs.

    Nothing fires on its own; ``run_due(now)`` executes every action whose
    time has come, earliest first (ties in insertion order).
    """

    def __init__(self) -> None:
        self._queue: list[tuple[int, int, Callable[[], None]]] = []
        self._counter = itertools.count()

    def __len__(self) -> int:
        return len(self._queue)

    def schedule(self, fire_at_ms: int, action: Callable[[], None]) -> None:
        heapq.heappush(self._queue, (fire_at_ms, next(self._counter), action))

    def next_fire_at(self) -> Optional[int]:
        return self._queue[0][0] if self._queue else None

    def run_due(self, now_ms: int) -> int:
        """Run all due actions; returns how many ran.

        A failing action is logged and does not stop the others.
        """
        ran = 0
        while self._queue and self._queue[0][0] <= now_ms:
            _, _, action = heapq.heappop(self._queue)
            try:
                action()
            except Exception:
                logger.exception("Scheduled action failed")
            ran += 1
        return ran

    def clear(self) -> None:
        self._queue.clear()


class IntervalGate:
    """Fires at most once per wall-clock interval boundary.

    With a 5-minute interval the gate opens in the first poll at or after
    12:00, 12:05, 12:10 ... and stays shut for the rest of each period.
    """

    def __init__(self, interval_minutes: int) -> None:
        self._interval_ms = 0
        self._last_boundary: Optional[int] = None
        self.rearm(interval_minutes)

    @property
    def interval_minutes(self) -> int:
        return self._interval_ms // 60_000

    def rearm(self, interval_minutes: int) -> None:
        """Change the interval and forget the last trigger."""
        if interval_minutes < 1:
            raise ValueError(f"interval must be >= 1 minute, got {interval_minutes}")
        self._interval_ms = interval_minutes * 60_000
        self._last_boundary = None

    def should_fire(self, now_ms: int) -> bool:
        boundary = now_ms // self._interval_ms * self._interval_ms
        if boundary == self._last_boundary:
            return False
        self._last_boundary = boundary
        return True
