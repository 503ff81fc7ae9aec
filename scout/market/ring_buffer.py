"""Fixed-capacity candle buffer with a cached ordered snapshot."""

from collections import deque
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class RingBuffer(Generic[T]):
    """Bounded FIFO: once full, each ``add`` evicts the oldest item.

    ``snapshot()`` returns an oldest-first list that is rebuilt only after a
    write, so repeated reads between ticks are free.
    """

    def __init__(self, capacity: int = 2000) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self._items: deque[T] = deque(maxlen=capacity)
        self._snapshot: Optional[list[T]] = None

    @property
    def capacity(self) -> int:
        return self._items.maxlen

    def __len__(self) -> int:
        return len(self._items)

    # ── Mutation ─────────────────────────────────────────────────────────

    def add(self, item: T) -> None:
        self._items.append(item)
        self._snapshot = None

    def update_last(self, item: T) -> None:
        """Replace the newest item; no-op on an empty buffer."""
        if not self._items:
            return
        self._items[-1] = item
        self._snapshot = None

    def clear(self) -> None:
        self._items.clear()
        self._snapshot = None

    # ── Queries ──────────────────────────────────────────────────────────

    def latest(self) -> Optional[T]:
        return self._items[-1] if self._items else None

    def snapshot(self) -> list[T]:
        if self._snapshot is None:
            self._snapshot = list(self._items)
        return self._snapshot
