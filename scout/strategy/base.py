"""Decision-engine protocols and shared result types.

Two engine shapes exist:

- ``CandleEngine``: evaluated per instrument against its own history.
- ``SnapshotEngine``: evaluated once per interval across every instrument,
  plus a per-tick ``sync`` hook for its learning state.

Engine state values are immutable; every call returns the new state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Protocol, Sequence, runtime_checkable

from scout.strategy.models import Candle, Signal


@dataclass(frozen=True)
class EngineResult:
    """A per-instrument decision: optional signal plus the next state."""

    signal: Optional[Signal]
    state: Any


@dataclass(frozen=True)
class InstrumentSnapshot:
    """Everything a snapshot engine sees about one instrument."""

    instrument: str
    candles: Sequence[Candle]
    state: Any = None
    flux: float = 0.0
    payout: Optional[float] = None


@dataclass(frozen=True)
class SnapshotResult:
    """Cross-instrument decision plus every instrument's next state."""

    best: Optional[Signal]
    states: Mapping[str, Any] = field(default_factory=dict)
    scores: Mapping[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class ShadowOutcome:
    """A resolved synthetic trade."""

    instrument: str
    direction: str
    entry_price: float
    exit_price: float
    result: str  # "WIN" | "LOSS"
    resolved_at: int


@runtime_checkable
class CandleEngine(Protocol):
    """Interface for per-instrument engines."""

    name: str

    def initial_state(self) -> Any:
        ...

    def generate_signal(
        self,
        candles: Sequence[Candle],
        instrument: str,
        state: Any,
        now_ms: Optional[int] = None,
    ) -> EngineResult:
        """Return a signal or ``None`` and the updated engine state."""
        ...


@runtime_checkable
class SnapshotEngine(Protocol):
    """Interface for cross-instrument ranking engines."""

    name: str

    def initial_state(self) -> Any:
        ...

    def process_snapshot(
        self,
        snapshot: Mapping[str, InstrumentSnapshot],
        expiry_minutes: int,
        context: Optional[Mapping[str, float]] = None,
        now_ms: Optional[int] = None,
    ) -> SnapshotResult:
        """Rank instruments and return the single best signal."""
        ...

    def sync(
        self,
        instrument: str,
        state: Any,
        price: float,
        now_ms: int,
    ) -> tuple[Any, list[ShadowOutcome]]:
        """Resolve any expired synthetic trades at *price*."""
        ...


# ── Shared helpers ───────────────────────────────────────────────────────


def clamp_confidence(value: float, low: int = 1) -> int:
    """Round and clamp a confidence to ``[low, 100]``."""
    return int(max(low, min(100, round(value))))


def candle_color_direction(candles: Sequence[Candle]) -> str:
    """Deterministic fallback direction from the last candle's colour.

    Close below open is SELL; anything else (including a flat candle) is BUY.
    """
    if candles and candles[-1].close < candles[-1].open:
        return "SELL"
    return "BUY"
