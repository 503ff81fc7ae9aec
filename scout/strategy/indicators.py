"""Technical indicators — SMA, EMA, RSI, Bollinger, Stochastic, ADX, ATR.

Pure functions, no I/O.  Every function returns ``None`` when the input is
shorter than the required period; callers must check before using the
result.  Series are *trimmed*: the first element corresponds to the first
input index at which the indicator is defined.
"""

import math
from dataclasses import dataclass
from typing import Optional, Sequence

from scout.strategy.models import Candle


def calculate_sma(values: Sequence[float], period: int) -> Optional[list[float]]:
    """Rolling simple moving average.

    Returns ``len(values) - period + 1`` values, or ``None`` if fewer than
    *period* values are supplied.
    """
    if period < 1 or len(values) < period:
        return None

    window_sum = sum(values[:period])
    sma = [window_sum / period]
    for i in range(period, len(values)):
        window_sum += values[i] - values[i - period]
        sma.append(window_sum / period)
    return sma


def calculate_ema(values: Sequence[float], period: int) -> Optional[list[float]]:
    """Exponential moving average seeded from the SMA of the first *period* values.

    Uses the standard EMA formula:
        ``EMA_today = value × k + EMA_yesterday × (1 - k)``
    where ``k = 2 / (period + 1)``.

    Returns ``len(values) - period + 1`` values (the seed first).
    """
    if period < 1 or len(values) < period:
        return None

    k = 2.0 / (period + 1)
    ema = [sum(values[:period]) / period]
    for i in range(period, len(values)):
        ema.append(values[i] * k + ema[-1] * (1 - k))
    return ema


# ── RSI ──────────────────────────────────────────────────────────────────


def _rsi_from_avgs(avg_gain: float, avg_loss: float) -> float:
    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return 100.0 - 100.0 / (1.0 + rs)


def calculate_rsi(values: Sequence[float], period: int = 14) -> Optional[list[float]]:
    """Wilder's Relative Strength Index.

    Algorithm (Wilder-smoothed):
        1. delta = value[i] - value[i-1]
        2. Separate gains (positive) and losses (|negative|).
        3. Seed average gain/loss = SMA of the first *period* deltas.
        4. Subsequent: avg = (prev_avg × (period-1) + current) / period
        5. RSI = 100 - 100 / (1 + avg_gain / avg_loss), or 100 when
           avg_loss is exactly zero.

    Requires at least ``period + 1`` values.  The first returned value is
    aligned with ``values[period]``.
    """
    if period < 1 or len(values) < period + 1:
        return None

    deltas = [values[i] - values[i - 1] for i in range(1, len(values))]
    gains = [max(d, 0.0) for d in deltas]
    losses = [abs(min(d, 0.0)) for d in deltas]

    avg_gain = sum(gains[:period]) / period
    avg_loss = sum(losses[:period]) / period
    rsi = [_rsi_from_avgs(avg_gain, avg_loss)]

    for i in range(period, len(deltas)):
        avg_gain = (avg_gain * (period - 1) + gains[i]) / period
        avg_loss = (avg_loss * (period - 1) + losses[i]) / period
        rsi.append(_rsi_from_avgs(avg_gain, avg_loss))

    return rsi


# ── Bollinger Bands ──────────────────────────────────────────────────────


def calculate_bollinger(
    values: Sequence[float],
    period: int = 20,
    std_dev: float = 2.0,
) -> Optional[tuple[list[float], list[float], list[float]]]:
    """Rolling mean ± ``std_dev`` population standard deviations.

    Returns ``(upper, middle, lower)`` lists of equal length, or ``None``.
    ``upper >= middle >= lower`` holds for every index when ``std_dev >= 0``.
    """
    if period < 1 or len(values) < period:
        return None

    upper: list[float] = []
    middle: list[float] = []
    lower: list[float] = []
    for i in range(period - 1, len(values)):
        window = values[i - period + 1:i + 1]
        mean = sum(window) / period
        variance = sum((v - mean) ** 2 for v in window) / period
        std = math.sqrt(variance)
        middle.append(mean)
        upper.append(mean + std_dev * std)
        lower.append(mean - std_dev * std)
    return upper, middle, lower


# ── Stochastic ───────────────────────────────────────────────────────────


def calculate_stochastic(
    candles: Sequence[Candle],
    k_period: int = 14,
    d_period: int = 3,
) -> Optional[tuple[list[float], list[float]]]:
    """Stochastic oscillator.

    %K = 100 × (close − lowest low) / (highest high − lowest low) over
    *k_period* candles; a zero range counts as 1 so flat markets read 0.
    %D is the *d_period* SMA of %K.

    Returns ``(k, d)`` where ``d`` is shorter than ``k`` by
    ``d_period - 1``, or ``None`` when there is not enough data for %D.
    """
    if len(candles) < k_period:
        return None

    k_values: list[float] = []
    for i in range(k_period - 1, len(candles)):
        window = candles[i - k_period + 1:i + 1]
        lowest = min(c.low for c in window)
        highest = max(c.high for c in window)
        span = (highest - lowest) or 1.0
        k_values.append(100.0 * (candles[i].close - lowest) / span)

    d_values = calculate_sma(k_values, d_period)
    if d_values is None:
        return None
    return k_values, d_values


# ── ADX ──────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class AdxResult:
    """ADX series with the matching +DI / −DI tails (equal lengths)."""

    adx: list[float]
    plus_di: list[float]
    minus_di: list[float]


def calculate_adx(candles: Sequence[Candle], period: int = 14) -> Optional[AdxResult]:
    """Average Directional Index.

    True range and directional movement are smoothed with
    ``calculate_ema``; DX is smoothed again for ADX.  Requires at least
    ``2 × period`` candles.
    """
    if len(candles) < period * 2:
        return None

    tr: list[float] = []
    plus_dm: list[float] = []
    minus_dm: list[float] = []
    for i in range(1, len(candles)):
        cur, prev = candles[i], candles[i - 1]
        tr.append(max(
            cur.high - cur.low,
            abs(cur.high - prev.close),
            abs(cur.low - prev.close),
        ))
        up_move = cur.high - prev.high
        down_move = prev.low - cur.low
        plus_dm.append(up_move if up_move > down_move and up_move > 0 else 0.0)
        minus_dm.append(down_move if down_move > up_move and down_move > 0 else 0.0)

    smooth_tr = calculate_ema(tr, period)
    smooth_plus = calculate_ema(plus_dm, period)
    smooth_minus = calculate_ema(minus_dm, period)
    if smooth_tr is None or smooth_plus is None or smooth_minus is None:
        return None

    plus_di: list[float] = []
    minus_di: list[float] = []
    dx: list[float] = []
    for s_tr, s_plus, s_minus in zip(smooth_tr, smooth_plus, smooth_minus):
        p_di = 100.0 * s_plus / s_tr if s_tr else 0.0
        m_di = 100.0 * s_minus / s_tr if s_tr else 0.0
        plus_di.append(p_di)
        minus_di.append(m_di)
        dx.append(100.0 * abs(p_di - m_di) / ((p_di + m_di) or 1.0))

    adx = calculate_ema(dx, period)
    if adx is None:
        return None
    return AdxResult(
        adx=adx,
        plus_di=plus_di[-len(adx):],
        minus_di=minus_di[-len(adx):],
    )


# ── ATR ──────────────────────────────────────────────────────────────────


def calculate_atr(candles: Sequence[Candle], period: int = 14) -> Optional[float]:
    """Average True Range over the last *period* candles.

    Uses the standard True Range definition:
        TR = max(high - low, |high - prev_close|, |low - prev_close|)

    Requires at least ``period + 1`` candles (need a previous close for TR).
    Returns the simple average of the last *period* true ranges.
    """
    if period < 1 or len(candles) < period + 1:
        return None

    true_ranges = [
        max(
            candles[i].high - candles[i].low,
            abs(candles[i].high - candles[i - 1].close),
            abs(candles[i].low - candles[i - 1].close),
        )
        for i in range(len(candles) - period, len(candles))
    ]
    return sum(true_ranges) / period


# ── RSI divergence ───────────────────────────────────────────────────────

_DIVERGENCE_MIN_OFFSET = 3


@dataclass(frozen=True)
class Divergence:
    bullish: bool = False
    bearish: bool = False
    strength: int = 0


def detect_rsi_divergence(
    prices: Sequence[float],
    rsi_values: Sequence[float],
    lookback: int = 10,
) -> Divergence:
    """Detect price/RSI divergence at the most recent bar.

    The reference extrema are taken from the lookback window excluding the
    last three bars, so a divergence always compares against a trough or
    peak at least three bars removed from the current one.

    - **Bullish**: price closes below the reference price low while RSI
      stays above its reference low.
    - **Bearish**: price closes above the reference price high while RSI
      stays below its reference high.

    Strength = ``min(100, |price change %| × 10 + RSI change)``, rounded.
    *prices* and *rsi_values* must be aligned (same length).
    """
    if len(prices) != len(rsi_values) or len(prices) < lookback:
        return Divergence()
    if lookback <= _DIVERGENCE_MIN_OFFSET:
        return Divergence()

    recent_prices = list(prices[-lookback:])
    recent_rsi = list(rsi_values[-lookback:])
    ref_prices = recent_prices[:-_DIVERGENCE_MIN_OFFSET]
    ref_rsi = recent_rsi[:-_DIVERGENCE_MIN_OFFSET]

    price_now = recent_prices[-1]
    rsi_now = recent_rsi[-1]
    price_low, price_high = min(ref_prices), max(ref_prices)
    rsi_low, rsi_high = min(ref_rsi), max(ref_rsi)

    bullish = False
    bearish = False
    strength = 0.0

    if price_now < price_low and rsi_now > rsi_low:
        bullish = True
        if price_low > 0:
            change_pct = (price_low - price_now) / price_low * 100
            strength = min(100.0, abs(change_pct * 10) + (rsi_now - rsi_low))

    if price_now > price_high and rsi_now < rsi_high:
        bearish = True
        if price_high > 0:
            change_pct = (price_now - price_high) / price_high * 100
            strength = min(100.0, abs(change_pct * 10) + (rsi_high - rsi_now))

    return Divergence(bullish=bullish, bearish=bearish, strength=round(strength))
