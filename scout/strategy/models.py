"""Shared data models for the analysis and decision layers."""

from dataclasses import dataclass, field, replace
from typing import Generic, Literal, Optional, TypeVar

BUY = "BUY"
SELL = "SELL"

Side = Literal["bullish", "bearish"]
Outcome = Literal["pending", "win", "loss"]


def side_to_direction(side: str) -> str:
    """Map a structural side (``bullish``/``bearish``) to a trade direction."""
    return BUY if side == "bullish" else SELL


def direction_to_side(direction: str) -> str:
    return "bullish" if direction == BUY else "bearish"


def opposite(direction: str) -> str:
    return SELL if direction == BUY else BUY


@dataclass(frozen=True)
class Candle:
    """One fixed-length OHLC bucket.  ``time`` is the bucket start (epoch ms)."""

    time: int
    open: float
    high: float
    low: float
    close: float

    @property
    def range(self) -> float:
        return self.high - self.low

    @property
    def body(self) -> float:
        return abs(self.close - self.open)

    @property
    def upper_wick(self) -> float:
        return self.high - max(self.open, self.close)

    @property
    def lower_wick(self) -> float:
        return min(self.open, self.close) - self.low

    @property
    def is_bullish(self) -> bool:
        return self.close > self.open

    @property
    def is_bearish(self) -> bool:
        return self.close < self.open

    def with_price(self, price: float) -> "Candle":
        """Return this candle updated by one more tick inside its bucket."""
        return replace(
            self,
            high=max(self.high, price),
            low=min(self.low, price),
            close=price,
        )


# ── Structural annotations ───────────────────────────────────────────────


@dataclass(frozen=True)
class SwingPoint:
    index: int
    price: float
    time: int
    kind: Literal["high", "low"]


@dataclass(frozen=True)
class StructureBreak:
    """A close beyond a swing extreme.

    ``kind`` is ``BOS`` (with the trend) or ``CHOCH`` (against it);
    ``side`` is the direction of the break; ``bqi`` is the Breakout
    Quality Index of the breaking candle (0–100).
    """

    kind: Literal["BOS", "CHOCH"]
    side: Side
    level: float
    close: float
    time: int
    index: int
    bqi: float


@dataclass(frozen=True)
class MarketStructure:
    trend: Literal["bullish", "bearish", "ranging"]
    structure: Literal["BOS", "CHOCH", "NONE"]
    last_bos: Optional[StructureBreak]
    last_choch: Optional[StructureBreak]
    swing_highs: tuple[SwingPoint, ...]
    swing_lows: tuple[SwingPoint, ...]

    @property
    def last_break(self) -> Optional[StructureBreak]:
        return self.last_choch or self.last_bos


@dataclass(frozen=True)
class LiquidityLevel:
    """A cluster of equal highs (``kind="high"``) or equal lows."""

    kind: Literal["high", "low"]
    price: float
    touches: int
    time: int


@dataclass(frozen=True)
class SRLevel:
    """Horizontal support or resistance clustered from swing points."""

    zone_type: Literal["support", "resistance"]
    price_level: float
    strength: int


@dataclass(frozen=True)
class Sweep:
    """A wick through a liquidity level that closed back inside.

    A ``bullish`` sweep takes sell-side liquidity below a low and
    implies an upward reversal; ``bearish`` is the mirror.
    """

    side: Side
    price: float
    swept_level: float
    time: int
    index: int
    strength: float


ZoneKind = Literal["OB", "FVG", "BREAKER", "MITIGATION", "REJECTION"]


@dataclass(frozen=True)
class Zone:
    """A structural price band (order block, gap, breaker, ...).

    ``mitigated`` is a projection computed during each analysis pass by
    scanning the candles after ``index``; zones are never deleted.
    """

    kind: ZoneKind
    side: Side
    high: float
    low: float
    time: int
    index: int
    strength: float = 1.0
    mitigated: bool = False

    @property
    def mid(self) -> float:
        return (self.high + self.low) / 2

    def contains(self, price: float) -> bool:
        return self.low <= price <= self.high

    def overlaps(self, low: float, high: float) -> bool:
        return low <= self.high and high >= self.low


@dataclass(frozen=True)
class Inducement:
    side: Side
    price: float
    time: int
    index: int
    move_ratio: float


@dataclass(frozen=True)
class TradingRange:
    high: float
    low: float
    source: Literal["dynamic", "static"]

    @property
    def size(self) -> float:
        return self.high - self.low


@dataclass(frozen=True)
class PremiumDiscount:
    zone: Literal["PREMIUM", "DISCOUNT", "EQUILIBRIUM"]
    bias: Literal["bullish", "bearish", "neutral"]
    position: float  # 0.0 = range low, 1.0 = range high
    range_high: float
    range_low: float


@dataclass(frozen=True)
class OteLevels:
    """Fibonacci retracement levels of the active range.

    ``buy_zone`` / ``sell_zone`` are ``(low, high)`` price bands of the
    0.705–0.786 retracement measured from the range high (buys) or the
    range low (sells).
    """

    fib_618: float
    fib_705: float
    fib_786: float
    buy_zone: tuple[float, float]
    sell_zone: tuple[float, float]

    def in_zone(self, direction: str, price: float) -> bool:
        low, high = self.buy_zone if direction == BUY else self.sell_zone
        return low <= price <= high


@dataclass(frozen=True)
class VelocityDelta:
    velocity: float
    previous: float
    delta: float
    aligned: Literal["bullish", "bearish", "none"]


@dataclass(frozen=True)
class PriceAction:
    pattern: Literal["PIN_BAR", "ENGULFING", "DOJI", "NONE"]
    side: Literal["bullish", "bearish", "neutral"]


T = TypeVar("T")


@dataclass(frozen=True)
class Sided(Generic[T]):
    """Bullish / bearish pair of annotation tuples."""

    bullish: tuple[T, ...] = ()
    bearish: tuple[T, ...] = ()

    def of(self, side: str) -> tuple[T, ...]:
        return self.bullish if side == "bullish" else self.bearish

    @property
    def all(self) -> tuple[T, ...]:
        return self.bullish + self.bearish


# ── Signals ──────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Signal:
    """A directional call emitted by a decision engine.

    Resolved exactly once by the lifecycle manager, which stores a copy
    with ``outcome`` set to ``win`` or ``loss``.
    """

    instrument: str
    direction: Literal["BUY", "SELL"]
    confidence: int
    expiry_minutes: int
    entry_price: float
    created_at: int
    reasons: tuple[str, ...] = ()
    engine: str = ""
    signal_id: str = ""
    outcome: Outcome = "pending"
    exit_price: Optional[float] = None
    payout: Optional[float] = None
    extra: dict = field(default_factory=dict, compare=False, hash=False)

    @property
    def expires_at(self) -> int:
        return self.created_at + self.expiry_minutes * 60_000

    @property
    def is_resolved(self) -> bool:
        return self.outcome != "pending"

    def to_payload(self) -> dict:
        """Render the delivery-channel object consumed by executors."""
        result = None if self.outcome == "pending" else self.outcome.upper()
        return {
            "id": self.signal_id,
            "pair": self.instrument,
            "action": self.direction,
            "confidence": self.confidence,
            "duration": self.expiry_minutes,
            "entryPrice": self.entry_price,
            "timestamp": self.created_at,
            "reasons": list(self.reasons),
            "result": result,
        }
