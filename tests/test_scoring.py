"""Tests for the confluence scoring engine."""

import random
from dataclasses import replace

import pytest

from scout.strategy.models import BUY, SELL, Candle, Sided, Sweep, Zone
from scout.strategy.scoring import (
    ConfluenceScoringEngine,
    choose_duration,
    score_to_confidence,
)
from scout.strategy.smc import analyze_smart_money


# ── Helpers ──────────────────────────────────────────────────────────────


def _make_candle(i: int, o: float, h: float, l: float, c: float) -> Candle:
    return Candle(time=i * 60_000, open=o, high=h, low=l, close=c)


def _flat_candles(n: int = 100, price: float = 1.1000) -> list[Candle]:
    return [_make_candle(i, price, price, price, price) for i in range(n)]


def _random_candles(n: int, seed: int) -> list[Candle]:
    rng = random.Random(seed)
    candles = []
    price = 1.1000
    for i in range(n):
        o = price
        c = o + rng.uniform(-0.001, 0.001)
        candles.append(_make_candle(i, o, max(o, c) + rng.uniform(0, 0.0005),
                                    min(o, c) - rng.uniform(0, 0.0005), c))
        price = c
    return candles


def _analyzer_with(**overrides):
    """Analyze the real window, then graft the given annotations onto it."""
    def analyzer(candles):
        return replace(analyze_smart_money(candles), **overrides)
    return analyzer


# ── Pure helpers ─────────────────────────────────────────────────────────


class TestConfidenceTable:
    def test_table_points(self):
        assert score_to_confidence(0) == 10
        assert score_to_confidence(10) == 25
        assert score_to_confidence(50) == 70
        assert score_to_confidence(120) == 100

    def test_interpolates(self):
        assert score_to_confidence(15) == pytest.approx(32.5)

    def test_clamped_ends(self):
        assert score_to_confidence(-5) == 10
        assert score_to_confidence(500) == 100

    def test_monotonic(self):
        values = [score_to_confidence(s) for s in range(0, 130)]
        assert values == sorted(values)


class TestDuration:
    def test_expansion(self):
        assert choose_duration(80, "EXPANSION") == 2
        assert choose_duration(60, "EXPANSION") == 3

    def test_contraction(self):
        assert choose_duration(90, "CONTRACTION") == 5

    def test_ranging(self):
        assert choose_duration(65, "RANGING") == 3
        assert choose_duration(40, "RANGING") == 5


# ── Engine ───────────────────────────────────────────────────────────────


class TestConfluenceEngine:
    def test_short_history_no_signal(self):
        engine = ConfluenceScoringEngine()
        result = engine.generate_signal(_flat_candles(49), "EURUSD_otc", None)
        assert result.signal is None

    def test_analyzer_returning_none(self):
        engine = ConfluenceScoringEngine(analyzer=lambda _c: None)
        assert engine.generate_signal(_flat_candles(), "EURUSD_otc", None).signal is None

    def test_flat_market_always_decides(self):
        engine = ConfluenceScoringEngine()
        signal = engine.generate_signal(_flat_candles(), "EURUSD_otc", None, now_ms=1_000).signal
        assert signal.direction == BUY
        assert 1 <= signal.confidence <= 100
        assert "CONFLICTED" in signal.reasons
        assert signal.entry_price == 1.1000
        assert signal.created_at == 1_000
        assert signal.engine == "confluence"

    def test_state_passes_through(self):
        engine = ConfluenceScoringEngine()
        sentinel = object()
        assert engine.generate_signal(_flat_candles(), "X", sentinel).state is sentinel

    def test_bullish_sweep_wins(self):
        sweep = Sweep("bullish", 1.0990, 1.0995, 0, 99, 70.0)
        engine = ConfluenceScoringEngine(analyzer=_analyzer_with(sweeps=Sided(bullish=(sweep,))))
        signal = engine.generate_signal(_flat_candles(), "EURUSD_otc", None).signal
        assert signal.direction == BUY
        assert "SWEEP" in signal.reasons
        assert "CONFLICTED" not in signal.reasons
        assert signal.extra["buy_score"] > signal.extra["sell_score"]

    def test_bearish_order_block_wins(self):
        block = Zone("OB", "bearish", 1.1010, 1.1005, 0, 95, 2.0)
        sweep = Sweep("bearish", 1.1010, 1.1005, 0, 99, 70.0)
        analyzer = _analyzer_with(
            order_blocks=Sided(bearish=(block,)),
            sweeps=Sided(bearish=(sweep,)),
        )
        signal = ConfluenceScoringEngine(analyzer=analyzer).generate_signal(
            _flat_candles(), "EURUSD_otc", None,
        ).signal
        assert signal.direction == SELL
        assert signal.reasons[0] == "SWEEP"
        assert "ORDER_BLOCK" in signal.reasons

    def test_high_confidence_without_ote_is_gated(self):
        sweep = Sweep("bullish", 1.0990, 1.0995, 0, 99, 70.0)
        block = Zone("OB", "bullish", 1.0998, 1.0995, 0, 95, 2.0)
        rejection = Zone("REJECTION", "bullish", 1.0998, 1.0995, 0, 95, 0.6)
        analyzer = _analyzer_with(
            sweeps=Sided(bullish=(sweep,)),
            pool_sweeps=Sided(bullish=(sweep,)),
            order_blocks=Sided(bullish=(block,)),
            breakers=Sided(bullish=(replace(block, kind="BREAKER"),)),
            rejections=Sided(bullish=(rejection,)),
        )
        signal = ConfluenceScoringEngine(analyzer=analyzer).generate_signal(
            _flat_candles(), "EURUSD_otc", None,
        ).signal
        assert signal.direction == BUY
        assert "OTE_GATE" in signal.reasons
        assert signal.confidence <= 45

    def test_random_windows_bounded_and_deterministic(self):
        engine = ConfluenceScoringEngine()
        for seed in range(5):
            candles = _random_candles(120, seed)
            first = engine.generate_signal(candles, "X", None, now_ms=0).signal
            second = engine.generate_signal(candles, "X", None, now_ms=0).signal
            assert first == second
            assert 1 <= first.confidence <= 100
            assert first.direction in (BUY, SELL)
            assert first.expiry_minutes in (2, 3, 5)
