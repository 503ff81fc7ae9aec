"""Structural zones — order blocks, fair-value gaps, breaker / mitigation /
rejection blocks, and inducement traps.

Zones are never removed.  ``mitigated`` is recomputed on every pass by
scanning the candles that follow the zone for price re-entry.
"""

from dataclasses import replace
from typing import Sequence

from scout.strategy.models import Candle, Inducement, Sided, Sweep, Zone
from scout.strategy.structure import find_swing_points

ZONE_LOOKBACK = 10
OB_IMPULSE_MULTIPLIER = 1.5
FVG_MIN_GAP = 0.0002  # fraction of price
BREAKER_LOOKBACK = 10
BREAKER_STRENGTH = 1.5
MITIGATION_STRENGTH = 0.7
REJECTION_WICK_THRESHOLD = 0.5
INDUCEMENT_MOVE_WINDOW = 5
INDUCEMENT_SWING_LOOKBACK = 2
INDUCEMENT_MOVE_MULTIPLIER = 3.33


def _window_start(candles: Sequence[Candle], lookback: int, tail: int) -> int:
    return max(0, len(candles) - lookback - tail)


def is_mitigated(zone: Zone, candles: Sequence[Candle], after: int) -> bool:
    """Has price re-entered *zone* on any candle with index > *after*?

    Bullish zones are re-entered from above (a low at or below the zone
    top); bearish zones from below (a high at or above the zone bottom).
    """
    for candle in candles[after + 1:]:
        if zone.side == "bullish" and candle.low <= zone.high:
            return True
        if zone.side == "bearish" and candle.high >= zone.low:
            return True
    return False


# ── Order blocks ─────────────────────────────────────────────────────────


def detect_order_blocks(
    candles: Sequence[Candle],
    lookback: int = ZONE_LOOKBACK,
) -> Sided[Zone]:
    """Order blocks within the last *lookback* candles.

    A bullish order block is a bearish candle immediately followed by a
    bullish candle whose range is at least 1.5× the first candle's range;
    the first candle's high/low is the zone.  Bearish is the mirror.
    ``strength`` is the impulse-to-block range ratio.
    """
    bullish: list[Zone] = []
    bearish: list[Zone] = []
    for i in range(_window_start(candles, lookback, 1), len(candles) - 1):
        block, impulse = candles[i], candles[i + 1]
        if block.range <= 0 or impulse.range < block.range * OB_IMPULSE_MULTIPLIER:
            continue
        strength = round(impulse.range / block.range, 2)
        if block.is_bearish and impulse.is_bullish:
            zone = Zone("OB", "bullish", block.high, block.low, block.time, i, strength)
            bullish.append(replace(zone, mitigated=is_mitigated(zone, candles, i + 1)))
        elif block.is_bullish and impulse.is_bearish:
            zone = Zone("OB", "bearish", block.high, block.low, block.time, i, strength)
            bearish.append(replace(zone, mitigated=is_mitigated(zone, candles, i + 1)))
    return Sided(tuple(bullish), tuple(bearish))


# ── Fair-value gaps ──────────────────────────────────────────────────────


def detect_fair_value_gaps(
    candles: Sequence[Candle],
    lookback: int = ZONE_LOOKBACK,
    min_gap: float = FVG_MIN_GAP,
) -> Sided[Zone]:
    """Three-candle imbalances within the last *lookback* candles.

    Bullish: candle 3's low is above candle 1's high; the gap between them
    is the zone.  Bearish: candle 3's high is below candle 1's low.  The gap
    must exceed *min_gap* as a fraction of the middle candle's close.  The
    zone is stamped with the middle candle's time and index.
    """
    bullish: list[Zone] = []
    bearish: list[Zone] = []
    for i in range(_window_start(candles, lookback, 2), len(candles) - 2):
        first, middle, third = candles[i], candles[i + 1], candles[i + 2]
        threshold = middle.close * min_gap

        gap = third.low - first.high
        if gap > threshold:
            zone = Zone("FVG", "bullish", third.low, first.high, middle.time, i + 1,
                        round(gap / threshold, 2) if threshold else 1.0)
            bullish.append(replace(zone, mitigated=is_mitigated(zone, candles, i + 2)))

        gap = first.low - third.high
        if gap > threshold:
            zone = Zone("FVG", "bearish", first.low, third.high, middle.time, i + 1,
                        round(gap / threshold, 2) if threshold else 1.0)
            bearish.append(replace(zone, mitigated=is_mitigated(zone, candles, i + 2)))
    return Sided(tuple(bullish), tuple(bearish))


# ── Breaker / mitigation blocks ──────────────────────────────────────────


def classify_order_blocks(
    order_blocks: Sided[Zone],
    sweeps: Sided[Sweep],
    lookback: int = BREAKER_LOOKBACK,
) -> tuple[Sided[Zone], Sided[Zone]]:
    """Split touched order blocks into breakers and mitigation blocks.

    A touched order block with a same-side sweep in the *lookback* candles
    before it is a breaker (strength × 1.5); one without is a mitigation
    block (strength × 0.7).

    Returns:
        ``(breakers, mitigation_blocks)``.
    """
    breakers: dict[str, list[Zone]] = {"bullish": [], "bearish": []}
    mitigations: dict[str, list[Zone]] = {"bullish": [], "bearish": []}
    for side in ("bullish", "bearish"):
        for block in order_blocks.of(side):
            if not block.mitigated:
                continue
            swept = any(
                block.index - lookback <= s.index <= block.index
                for s in sweeps.of(side)
            )
            if swept:
                breakers[side].append(replace(
                    block, kind="BREAKER",
                    strength=round(block.strength * BREAKER_STRENGTH, 2),
                ))
            else:
                mitigations[side].append(replace(
                    block, kind="MITIGATION",
                    strength=round(block.strength * MITIGATION_STRENGTH, 2),
                ))
    return (
        Sided(tuple(breakers["bullish"]), tuple(breakers["bearish"])),
        Sided(tuple(mitigations["bullish"]), tuple(mitigations["bearish"])),
    )


# ── Rejection blocks ─────────────────────────────────────────────────────


def detect_rejection_blocks(
    candles: Sequence[Candle],
    lookback: int = ZONE_LOOKBACK,
    threshold: float = REJECTION_WICK_THRESHOLD,
) -> Sided[Zone]:
    """Candles whose wick on one side is at least *threshold* of their range.

    The zone is the outer half of that wick: a long lower wick yields a
    bullish block ``[low, low + wick/2]``; a long upper wick a bearish block
    ``[high - wick/2, high]``.
    """
    bullish: list[Zone] = []
    bearish: list[Zone] = []
    for i in range(_window_start(candles, lookback, 0), len(candles)):
        candle = candles[i]
        if candle.range <= 0:
            continue
        if candle.lower_wick / candle.range >= threshold:
            zone = Zone("REJECTION", "bullish", candle.low + candle.lower_wick / 2,
                        candle.low, candle.time, i,
                        round(candle.lower_wick / candle.range, 2))
            bullish.append(replace(zone, mitigated=is_mitigated(zone, candles, i)))
        if candle.upper_wick / candle.range >= threshold:
            zone = Zone("REJECTION", "bearish", candle.high,
                        candle.high - candle.upper_wick / 2, candle.time, i,
                        round(candle.upper_wick / candle.range, 2))
            bearish.append(replace(zone, mitigated=is_mitigated(zone, candles, i)))
    return Sided(tuple(bullish), tuple(bearish))


# ── Inducement ───────────────────────────────────────────────────────────


def detect_inducements(
    candles: Sequence[Candle],
    move_window: int = INDUCEMENT_MOVE_WINDOW,
    multiplier: float = INDUCEMENT_MOVE_MULTIPLIER,
) -> Sided[Inducement]:
    """Minor swings followed by a move much larger than the swing itself.

    Uses a two-candle swing lookback.  The swing size is the distance to the
    previous swing of the same kind; the move is the extreme reached over
    the next *move_window* candles.  A move/size ratio above *multiplier*
    marks a likely retail trap.
    """
    if len(candles) < move_window + 3:
        return Sided()

    highs, lows = find_swing_points(candles, INDUCEMENT_SWING_LOOKBACK)
    last_allowed = len(candles) - 3

    bullish: list[Inducement] = []
    for previous, current in zip(lows, lows[1:]):
        if current.index >= last_allowed:
            continue
        after = candles[current.index:current.index + move_window]
        move = max(c.high for c in after) - current.price
        size = abs(current.price - previous.price)
        if size > 0 and move / size > multiplier:
            bullish.append(Inducement("bullish", current.price, current.time,
                                      current.index, round(move / size, 2)))

    bearish: list[Inducement] = []
    for previous, current in zip(highs, highs[1:]):
        if current.index >= last_allowed:
            continue
        after = candles[current.index:current.index + move_window]
        move = current.price - min(c.low for c in after)
        size = abs(current.price - previous.price)
        if size > 0 and move / size > multiplier:
            bearish.append(Inducement("bearish", current.price, current.time,
                                      current.index, round(move / size, 2)))

    return Sided(tuple(bullish), tuple(bearish))
