"""Liquidity detection — equal highs/lows, S/R levels and sweeps.

All tolerances are fractional (``|a - b| / mean(a, b)``) so the same value
works for 5-digit and JPY-quoted instruments.
"""

from typing import Optional, Sequence

from scout.strategy.indicators import calculate_atr
from scout.strategy.models import Candle, LiquidityLevel, SRLevel, Sided, Sweep
from scout.strategy.structure import find_swing_points

EQUAL_LEVEL_TOLERANCE = 0.0002
LIQUIDITY_LOOKBACK = 20
SWEEP_LOOKBACK = 5
SR_LOOKBACK = 50
SR_TOLERANCE = 0.0005

# ATR as a percentage of price → minimum wick/range ratio for a sweep
_WICK_RATIO_STEPS = ((0.1, 0.4), (0.05, 0.5))
_WICK_RATIO_CALM = 0.6


def _cluster_levels(
    levels: Sequence[tuple[float, int]], tolerance: float
) -> list[list[tuple[float, int]]]:
    """Cluster ``(price, time)`` pairs whose neighbours are within *tolerance*.

    Groups sorted levels while each consecutive price is within the
    fractional tolerance of the previous one.
    """
    if not levels:
        return []

    sorted_levels = sorted(levels)
    clusters: list[list[tuple[float, int]]] = []
    current: list[tuple[float, int]] = [sorted_levels[0]]
    for level in sorted_levels[1:]:
        prev_price = current[-1][0]
        mean = (level[0] + prev_price) / 2
        if mean > 0 and abs(level[0] - prev_price) / mean <= tolerance:
            current.append(level)
        else:
            clusters.append(current)
            current = [level]
    clusters.append(current)
    return clusters


def find_equal_levels(
    candles: Sequence[Candle],
    lookback: int = LIQUIDITY_LOOKBACK,
    tolerance: float = EQUAL_LEVEL_TOLERANCE,
) -> tuple[tuple[LiquidityLevel, ...], tuple[LiquidityLevel, ...]]:
    """Equal highs / equal lows (liquidity pools) in the last *lookback* candles.

    Swing highs (and lows) within *tolerance* of each other are clustered;
    every cluster with two or more touches becomes a ``LiquidityLevel`` at
    the cluster's average price.

    Returns:
        ``(equal_highs, equal_lows)``.
    """
    window = list(candles[-lookback:])
    highs, lows = find_swing_points(window)

    def _pools(points, kind) -> tuple[LiquidityLevel, ...]:
        clusters = _cluster_levels([(p.price, p.time) for p in points], tolerance)
        return tuple(
            LiquidityLevel(
                kind=kind,
                price=sum(price for price, _ in cluster) / len(cluster),
                touches=len(cluster),
                time=max(t for _, t in cluster),
            )
            for cluster in clusters
            if len(cluster) >= 2
        )

    return _pools(highs, "high"), _pools(lows, "low")


def detect_sr_levels(
    candles: Sequence[Candle],
    lookback: int = SR_LOOKBACK,
    swing_window: int = 3,
    tolerance: float = SR_TOLERANCE,
) -> list[SRLevel]:
    """Horizontal support and resistance from clustered swing points.

    Args:
        candles: Candle history, oldest-first.
        lookback: Number of most-recent candles to analyse.
        swing_window: Half-window size for swing detection.
        tolerance: Fractional clustering tolerance.

    Returns:
        List of ``SRLevel`` objects sorted by price level.
    """
    recent = candles[-lookback:] if len(candles) > lookback else candles
    highs, lows = find_swing_points(recent, swing_window)

    levels: list[SRLevel] = []
    for zone_type, points in (("resistance", highs), ("support", lows)):
        clusters = _cluster_levels([(p.price, p.time) for p in points], tolerance)
        for cluster in clusters:
            levels.append(SRLevel(
                zone_type=zone_type,
                price_level=sum(price for price, _ in cluster) / len(cluster),
                strength=len(cluster),
            ))

    levels.sort(key=lambda lv: lv.price_level)
    return levels


# ── Sweeps ───────────────────────────────────────────────────────────────


def dynamic_wick_ratio(candles: Sequence[Candle], atr_period: int = 14) -> float:
    """Minimum wick share of the range for a sweep, shrinking with volatility.

    ATR above 0.1 % of price → 0.4; above 0.05 % → 0.5; otherwise 0.6.
    """
    atr = calculate_atr(candles, atr_period)
    if atr is None:
        return _WICK_RATIO_CALM
    last = candles[-1]
    mid = (last.high + last.low) / 2
    if mid <= 0:
        return _WICK_RATIO_CALM
    atr_pct = atr / mid * 100
    for threshold, ratio in _WICK_RATIO_STEPS:
        if atr_pct > threshold:
            return ratio
    return _WICK_RATIO_CALM


def _sweep_at(
    candles: Sequence[Candle],
    index: int,
    lookback: int,
    wick_ratio: float,
) -> list[Sweep]:
    candle = candles[index]
    prior = candles[max(0, index - lookback):index]
    if not prior or candle.range <= 0:
        return []

    sweeps: list[Sweep] = []
    recent_high = max(c.high for c in prior)
    recent_low = min(c.low for c in prior)

    upper_share = candle.upper_wick / candle.range
    if candle.high > recent_high and candle.close < recent_high and upper_share > wick_ratio:
        sweeps.append(Sweep("bearish", candle.high, recent_high, candle.time, index,
                            round(upper_share * 100, 1)))

    lower_share = candle.lower_wick / candle.range
    if candle.low < recent_low and candle.close > recent_low and lower_share > wick_ratio:
        sweeps.append(Sweep("bullish", candle.low, recent_low, candle.time, index,
                            round(lower_share * 100, 1)))
    return sweeps


def detect_liquidity_sweeps(
    candles: Sequence[Candle],
    lookback: int = SWEEP_LOOKBACK,
    wick_ratio: Optional[float] = None,
) -> Sided[Sweep]:
    """Sweep on the latest candle.

    Bearish: the high pierces the highest high of the previous *lookback*
    candles, the close is back below it, and the upper wick exceeds
    *wick_ratio* of the range.  Bullish is the mirror on lows.  When
    *wick_ratio* is ``None`` it is derived from ``dynamic_wick_ratio``.
    """
    if len(candles) < lookback + 1:
        return Sided()
    ratio = dynamic_wick_ratio(candles) if wick_ratio is None else wick_ratio
    sweeps = _sweep_at(candles, len(candles) - 1, lookback, ratio)
    return Sided(
        bullish=tuple(s for s in sweeps if s.side == "bullish"),
        bearish=tuple(s for s in sweeps if s.side == "bearish"),
    )


def scan_sweeps(
    candles: Sequence[Candle],
    lookback: int = SWEEP_LOOKBACK,
    wick_ratio: Optional[float] = None,
) -> Sided[Sweep]:
    """Every sweep event in *candles*, oldest-first."""
    if len(candles) < lookback + 1:
        return Sided()
    ratio = dynamic_wick_ratio(candles) if wick_ratio is None else wick_ratio
    bullish: list[Sweep] = []
    bearish: list[Sweep] = []
    for i in range(lookback, len(candles)):
        for sweep in _sweep_at(candles, i, lookback, ratio):
            (bullish if sweep.side == "bullish" else bearish).append(sweep)
    return Sided(tuple(bullish), tuple(bearish))


def detect_pool_sweeps(
    candles: Sequence[Candle],
    equal_highs: Sequence[LiquidityLevel],
    equal_lows: Sequence[LiquidityLevel],
    wick_ratio: Optional[float] = None,
) -> Sided[Sweep]:
    """Latest-candle sweeps of an equal-high / equal-low pool.

    Stricter than ``detect_liquidity_sweeps``: the wick must take a
    clustered liquidity level rather than any recent extreme.
    """
    if not candles:
        return Sided()
    candle = candles[-1]
    if candle.range <= 0:
        return Sided()
    ratio = dynamic_wick_ratio(candles) if wick_ratio is None else wick_ratio
    index = len(candles) - 1

    bearish = tuple(
        Sweep("bearish", candle.high, level.price, candle.time, index,
              round(candle.upper_wick / candle.range * 100, 1))
        for level in equal_highs
        if candle.high > level.price > candle.close
        and candle.upper_wick / candle.range > ratio
    )
    bullish = tuple(
        Sweep("bullish", candle.low, level.price, candle.time, index,
              round(candle.lower_wick / candle.range * 100, 1))
        for level in equal_lows
        if candle.low < level.price < candle.close
        and candle.lower_wick / candle.range > ratio
    )
    return Sided(bullish, bearish)
