"""Market structure — swing points, BOS/CHoCH, trading range, premium/discount, OTE.

Pure functions recomputed from scratch on every call.
"""

from typing import Optional, Sequence

from scout.strategy.models import (
    Candle,
    MarketStructure,
    OteLevels,
    PremiumDiscount,
    StructureBreak,
    SwingPoint,
    TradingRange,
)

SWING_LOOKBACK = 3
BQI_MEAN_RANGE_WINDOW = 5
STATIC_RANGE_LOOKBACK = 50
MIN_DYNAMIC_RANGE_CANDLES = 20

PREMIUM_THRESHOLD = 0.75
DISCOUNT_THRESHOLD = 0.25

OTE_FIBS = (0.618, 0.705, 0.786)


# ── Swing points ─────────────────────────────────────────────────────────


def find_swing_points(
    candles: Sequence[Candle],
    lookback: int = SWING_LOOKBACK,
) -> tuple[tuple[SwingPoint, ...], tuple[SwingPoint, ...]]:
    """Identify swing highs and swing lows.

    A swing high is a candle whose high is strictly higher than the highs of
    the *lookback* candles on each side; a swing low is the mirror on lows.

    Returns:
        ``(swing_highs, swing_lows)`` ordered oldest-first.
    """
    highs: list[SwingPoint] = []
    lows: list[SwingPoint] = []
    for i in range(lookback, len(candles) - lookback):
        candle = candles[i]
        neighbours = [
            candles[i + j]
            for j in range(-lookback, lookback + 1)
            if j != 0
        ]
        if all(n.high < candle.high for n in neighbours):
            highs.append(SwingPoint(i, candle.high, candle.time, "high"))
        if all(n.low > candle.low for n in neighbours):
            lows.append(SwingPoint(i, candle.low, candle.time, "low"))
    return tuple(highs), tuple(lows)


# ── Breakout quality ─────────────────────────────────────────────────────


def breakout_quality(candles: Sequence[Candle], index: int) -> float:
    """Breakout Quality Index of ``candles[index]`` in ``[0, 100]``.

    60 points scale with the body-to-range ratio of the breaking candle;
    up to 40 points scale with its range relative to the mean range of the
    preceding five candles (20 points per 1× the mean, capped at 40).
    """
    candle = candles[index]
    if candle.range <= 0:
        return 0.0

    body_score = candle.body / candle.range * 60.0

    previous = candles[max(0, index - BQI_MEAN_RANGE_WINDOW):index]
    mean_range = sum(c.range for c in previous) / len(previous) if previous else 0.0
    if mean_range > 0:
        range_score = min(40.0, candle.range / mean_range * 20.0)
    else:
        range_score = 40.0

    return max(0.0, min(100.0, round(body_score + range_score, 2)))


# ── Market structure ─────────────────────────────────────────────────────


def _trend_from_swings(
    highs: Sequence[SwingPoint], lows: Sequence[SwingPoint]
) -> str:
    if len(highs) < 2 or len(lows) < 2:
        return "ranging"
    highs_rising = highs[-1].price > highs[-2].price
    lows_rising = lows[-1].price > lows[-2].price
    highs_falling = highs[-1].price < highs[-2].price
    lows_falling = lows[-1].price < lows[-2].price
    if highs_rising and lows_rising:
        return "bullish"
    if highs_falling and lows_falling:
        return "bearish"
    return "ranging"


def detect_market_structure(
    candles: Sequence[Candle],
    lookback: int = SWING_LOOKBACK,
) -> MarketStructure:
    """Classify trend from swings and detect a break on the latest close.

    Rules:
        - **Trend**: bullish when the last two swing highs *and* lows rise,
          bearish when both fall, otherwise ranging.
        - **BOS**: the latest close is beyond the last swing extreme in the
          trend direction.
        - **CHoCH**: the latest close is beyond the last swing extreme
          against the trend direction.
    """
    highs, lows = find_swing_points(candles, lookback)
    trend = _trend_from_swings(highs, lows)

    if not highs or not lows or trend == "ranging":
        return MarketStructure(trend, "NONE", None, None, highs, lows)

    index = len(candles) - 1
    last = candles[index]
    last_high = highs[-1]
    last_low = lows[-1]
    bos: Optional[StructureBreak] = None
    choch: Optional[StructureBreak] = None

    if trend == "bullish":
        if last.close > last_high.price:
            bos = StructureBreak("BOS", "bullish", last_high.price, last.close,
                                 last.time, index, breakout_quality(candles, index))
        elif last.close < last_low.price:
            choch = StructureBreak("CHOCH", "bearish", last_low.price, last.close,
                                   last.time, index, breakout_quality(candles, index))
    else:
        if last.close < last_low.price:
            bos = StructureBreak("BOS", "bearish", last_low.price, last.close,
                                 last.time, index, breakout_quality(candles, index))
        elif last.close > last_high.price:
            choch = StructureBreak("CHOCH", "bullish", last_high.price, last.close,
                                   last.time, index, breakout_quality(candles, index))

    structure = "CHOCH" if choch else ("BOS" if bos else "NONE")
    return MarketStructure(trend, structure, bos, choch, highs, lows)


# ── Trading range ────────────────────────────────────────────────────────


def get_trading_range(
    candles: Sequence[Candle],
    structure: Optional[MarketStructure] = None,
    static_lookback: int = STATIC_RANGE_LOOKBACK,
) -> Optional[TradingRange]:
    """Active trading range used for premium/discount and OTE.

    Derived from the most recent swing leg once a BOS or CHoCH is confirmed:
    a bullish break spans the last swing low up to the break candle's high,
    a bearish break spans the last swing high down to the break candle's
    low.  Falls back to the high/low of the last *static_lookback* candles.
    """
    if not candles:
        return None

    if structure is None and len(candles) >= MIN_DYNAMIC_RANGE_CANDLES:
        structure = detect_market_structure(candles)

    brk = structure.last_break if structure else None
    if (
        brk is not None
        and len(candles) >= MIN_DYNAMIC_RANGE_CANDLES
        and structure.swing_highs
        and structure.swing_lows
    ):
        last = candles[-1]
        if brk.side == "bullish":
            low = structure.swing_lows[-1].price
            high = max(structure.swing_highs[-1].price, last.high)
        else:
            high = structure.swing_highs[-1].price
            low = min(structure.swing_lows[-1].price, last.low)
        if high > low:
            return TradingRange(high=high, low=low, source="dynamic")

    window = candles[-static_lookback:]
    return TradingRange(
        high=max(c.high for c in window),
        low=min(c.low for c in window),
        source="static",
    )


def calculate_premium_discount(
    price: float, trading_range: Optional[TradingRange]
) -> PremiumDiscount:
    """Classify *price* inside *trading_range*.

    Top quartile is PREMIUM (bearish bias), bottom quartile DISCOUNT
    (bullish bias), anything else EQUILIBRIUM.
    """
    if trading_range is None or trading_range.size <= 0:
        high = trading_range.high if trading_range else price
        low = trading_range.low if trading_range else price
        return PremiumDiscount("EQUILIBRIUM", "neutral", 0.5, high, low)

    position = (price - trading_range.low) / trading_range.size
    if position >= PREMIUM_THRESHOLD:
        zone, bias = "PREMIUM", "bearish"
    elif position <= DISCOUNT_THRESHOLD:
        zone, bias = "DISCOUNT", "bullish"
    else:
        zone, bias = "EQUILIBRIUM", "neutral"
    return PremiumDiscount(zone, bias, position, trading_range.high, trading_range.low)


def calculate_ote(trading_range: Optional[TradingRange]) -> Optional[OteLevels]:
    """Optimal-trade-entry levels for the active range.

    The fib levels are retracements from the range high.  A BUY is in zone
    between the 0.705 and 0.786 retracement from the high; a SELL between the
    0.705 and 0.786 retracement from the low.
    """
    if trading_range is None or trading_range.size <= 0:
        return None

    high, low, size = trading_range.high, trading_range.low, trading_range.size
    fib_618, fib_705, fib_786 = (high - f * size for f in OTE_FIBS)
    return OteLevels(
        fib_618=fib_618,
        fib_705=fib_705,
        fib_786=fib_786,
        buy_zone=(high - 0.786 * size, high - 0.705 * size),
        sell_zone=(low + 0.705 * size, low + 0.786 * size),
    )
