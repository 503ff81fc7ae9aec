"""Candlestick price-action patterns — pure functions, no I/O."""

from typing import Sequence

from scout.strategy.models import Candle, PriceAction

# A pin bar's dominant wick must be at least this many times its body
PIN_WICK_TO_BODY = 2.0
PIN_WICK_SHARE = 0.6
DOJI_BODY_SHARE = 0.1

_NONE = PriceAction("NONE", "neutral")


def is_pin_bar_buy(candle: Candle) -> bool:
    """Long lower shadow rejecting lower prices."""
    if candle.range <= 0:
        return False
    return (
        candle.lower_wick >= PIN_WICK_TO_BODY * candle.body
        and candle.lower_wick / candle.range >= PIN_WICK_SHARE
    )


def is_pin_bar_sell(candle: Candle) -> bool:
    """Long upper shadow rejecting higher prices."""
    if candle.range <= 0:
        return False
    return (
        candle.upper_wick >= PIN_WICK_TO_BODY * candle.body
        and candle.upper_wick / candle.range >= PIN_WICK_SHARE
    )


def is_engulfing(previous: Candle, current: Candle, side: str) -> bool:
    """Current body fully covers an opposite-colour previous body."""
    if side == "bullish":
        return (
            previous.is_bearish
            and current.is_bullish
            and current.close >= previous.open
            and current.open <= previous.close
            and current.body > previous.body
        )
    return (
        previous.is_bullish
        and current.is_bearish
        and current.close <= previous.open
        and current.open >= previous.close
        and current.body > previous.body
    )


def detect_price_action(candles: Sequence[Candle]) -> PriceAction:
    """Classify the latest candle.  Engulfing wins over pin bar over doji."""
    if len(candles) < 2:
        return _NONE
    previous, current = candles[-2], candles[-1]

    if is_engulfing(previous, current, "bullish"):
        return PriceAction("ENGULFING", "bullish")
    if is_engulfing(previous, current, "bearish"):
        return PriceAction("ENGULFING", "bearish")
    if is_pin_bar_buy(current):
        return PriceAction("PIN_BAR", "bullish")
    if is_pin_bar_sell(current):
        return PriceAction("PIN_BAR", "bearish")
    if current.range > 0 and current.body / current.range <= DOJI_BODY_SHARE:
        return PriceAction("DOJI", "neutral")
    return _NONE


def candle_touches_level(candle: Candle, level: float, tolerance: float = 0.0) -> bool:
    """Does the candle's range (widened by fractional *tolerance*) reach *level*?"""
    pad = level * tolerance
    return (candle.low - pad) <= level <= (candle.high + pad)
