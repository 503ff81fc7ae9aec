"""Trend, phase and regime detection.

Provides:
- ``detect_trend()``: dual-EMA directional bias on the working timeframe.
- ``resample_candles()`` / ``detect_htf_trend()``: the same bias on a
  higher timeframe built from the 1-minute history.
- ``detect_market_phase()``: EXPANSION / CONTRACTION / RANGING from candle
  ranges relative to ATR.
- ``classify_regime()``: TRENDING / MEAN_REVERTING / CONTRACTION from EMA
  separation and Bollinger-band width.
- ``calculate_velocity_delta()``: short-horizon momentum and its change.
"""

from dataclasses import dataclass
from typing import Literal, Optional, Sequence

from scout.strategy.indicators import calculate_atr, calculate_bollinger, calculate_ema
from scout.strategy.models import Candle, VelocityDelta

PHASE_RANGE_WINDOW = 5
EXPANSION_RATIO = 1.2
CONTRACTION_RATIO = 0.7
SQUEEZE_RATIO = 0.6
TRENDING_SEPARATION_ATR = 0.5


@dataclass(frozen=True)
class TrendState:
    """Snapshot of the current trend direction and EMA values."""

    direction: Literal["bullish", "bearish", "flat"]
    ema_fast_value: float
    ema_slow_value: float
    slope: float  # ema_fast - ema_slow (positive = bullish bias)


_FLAT = TrendState(direction="flat", ema_fast_value=0.0, ema_slow_value=0.0, slope=0.0)


def detect_trend(
    candles: Sequence[Candle],
    ema_fast: int = 21,
    ema_slow: int = 50,
) -> TrendState:
    """Classify trend direction using dual-EMA crossover and price position.

    Rules:
        - **Bullish**: EMA(fast) > EMA(slow) AND price > EMA(fast).
        - **Bearish**: EMA(fast) < EMA(slow) AND price < EMA(fast).
        - **Flat**: everything else, or not enough history.
    """
    closes = [c.close for c in candles]
    fast_values = calculate_ema(closes, ema_fast)
    slow_values = calculate_ema(closes, ema_slow)
    if fast_values is None or slow_values is None:
        return _FLAT

    ema_f = fast_values[-1]
    ema_s = slow_values[-1]
    price = closes[-1]

    if ema_f > ema_s and price > ema_f:
        direction = "bullish"
    elif ema_f < ema_s and price < ema_f:
        direction = "bearish"
    else:
        direction = "flat"

    return TrendState(
        direction=direction,
        ema_fast_value=ema_f,
        ema_slow_value=ema_s,
        slope=ema_f - ema_s,
    )


def resample_candles(candles: Sequence[Candle], minutes: int = 15) -> list[Candle]:
    """Aggregate 1-minute candles into *minutes*-long buckets."""
    bucket_ms = minutes * 60_000
    resampled: list[Candle] = []
    for candle in candles:
        bucket = candle.time // bucket_ms * bucket_ms
        if resampled and resampled[-1].time == bucket:
            last = resampled[-1]
            resampled[-1] = Candle(
                time=bucket,
                open=last.open,
                high=max(last.high, candle.high),
                low=min(last.low, candle.low),
                close=candle.close,
            )
        else:
            resampled.append(Candle(bucket, candle.open, candle.high, candle.low, candle.close))
    return resampled


def detect_htf_trend(candles: Sequence[Candle], minutes: int = 15) -> str:
    """Trend on the *minutes* timeframe; ``flat`` when history is too short.

    Uses EMA 9/21 since a 2000-candle history yields ~130 M15 candles.
    """
    return detect_trend(resample_candles(candles, minutes), ema_fast=9, ema_slow=21).direction


def detect_market_phase(
    candles: Sequence[Candle],
    atr_period: int = 14,
) -> Literal["EXPANSION", "CONTRACTION", "RANGING"]:
    """Compare the mean range of the last five candles with ATR."""
    atr = calculate_atr(candles, atr_period)
    if not atr:
        return "RANGING"
    recent = candles[-PHASE_RANGE_WINDOW:]
    avg_range = sum(c.range for c in recent) / len(recent)
    ratio = avg_range / atr
    if ratio > EXPANSION_RATIO:
        return "EXPANSION"
    if ratio < CONTRACTION_RATIO:
        return "CONTRACTION"
    return "RANGING"


def bollinger_width(candles: Sequence[Candle], period: int = 20) -> Optional[list[float]]:
    """Band width relative to the middle band, per index."""
    bands = calculate_bollinger([c.close for c in candles], period)
    if bands is None:
        return None
    upper, middle, lower = bands
    return [(u - lo) / m if m else 0.0 for u, m, lo in zip(upper, middle, lower)]


def classify_regime(
    candles: Sequence[Candle],
) -> Literal["TRENDING", "MEAN_REVERTING", "CONTRACTION"]:
    """Regime used to pick which technicals to trust.

    - **CONTRACTION**: the current Bollinger width is below 60 % of its
      recent average (a squeeze).
    - **TRENDING**: EMA(9) and EMA(21) are separated by more than half an
      ATR.
    - **MEAN_REVERTING**: everything else.
    """
    widths = bollinger_width(candles)
    if widths and len(widths) >= 10:
        recent = widths[-20:]
        avg_width = sum(recent) / len(recent)
        if avg_width > 0 and widths[-1] < avg_width * SQUEEZE_RATIO:
            return "CONTRACTION"

    closes = [c.close for c in candles]
    fast = calculate_ema(closes, 9)
    slow = calculate_ema(closes, 21)
    atr = calculate_atr(candles)
    if fast and slow and atr:
        if abs(fast[-1] - slow[-1]) > atr * TRENDING_SEPARATION_ATR:
            return "TRENDING"
    return "MEAN_REVERTING"


def calculate_velocity_delta(candles: Sequence[Candle]) -> Optional[VelocityDelta]:
    """Three-candle close-to-close velocity against the prior three.

    ``aligned`` is bullish when velocity and its change are both positive
    (accelerating up), bearish when both negative, else ``none``.
    Requires ten candles.
    """
    if len(candles) < 10:
        return None
    closes = [c.close for c in candles]
    v_now = (closes[-1] - closes[-4]) / 3
    v_prev = (closes[-4] - closes[-7]) / 3
    delta = v_now - v_prev
    if v_now > 0 and delta > 0:
        aligned = "bullish"
    elif v_now < 0 and delta < 0:
        aligned = "bearish"
    else:
        aligned = "none"
    return VelocityDelta(velocity=v_now, previous=v_prev, delta=delta, aligned=aligned)
