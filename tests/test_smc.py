"""Deterministic tests for the SMC pattern library.

Covers structure, liquidity, zones, trend and price-action detectors plus
the combined ``analyze_smart_money`` pass.
"""

import math
import random

import pytest

from scout.strategy.liquidity import (
    detect_liquidity_sweeps,
    detect_pool_sweeps,
    detect_sr_levels,
    dynamic_wick_ratio,
    find_equal_levels,
    scan_sweeps,
)
from scout.strategy.models import BUY, SELL, Candle, LiquidityLevel, Sided, Sweep, TradingRange
from scout.strategy.price_action import candle_touches_level, detect_price_action
from scout.strategy.smc import analyze_smart_money
from scout.strategy.structure import (
    breakout_quality,
    calculate_ote,
    calculate_premium_discount,
    detect_market_structure,
    find_swing_points,
    get_trading_range,
)
from scout.strategy.trend import (
    calculate_velocity_delta,
    classify_regime,
    detect_market_phase,
    detect_trend,
    resample_candles,
)
from scout.strategy.zones import (
    classify_order_blocks,
    detect_fair_value_gaps,
    detect_order_blocks,
    detect_rejection_blocks,
)


# ── Helpers ──────────────────────────────────────────────────────────────

_PAD = 0.0001


def _make_candle(i: int, o: float, h: float, l: float, c: float) -> Candle:
    return Candle(time=i * 60_000, open=o, high=h, low=l, close=c)


def _wave_closes(n: int, trend: float = 0.00005, amp: float = 0.001, period: int = 12) -> list[float]:
    # one precomputed cycle so a zero-trend wave repeats exactly
    cycle = [amp * math.sin(2 * math.pi * k / period) for k in range(period)]
    return [1.1000 + trend * i + cycle[i % period] for i in range(n)]


def _wave_candles(n: int = 60, trend: float = 0.00005) -> list[Candle]:
    """Sine wave on a drift; highs/lows follow the close so swings are strict."""
    return [
        _make_candle(i, c - 0.00003, c + _PAD, c - _PAD, c)
        for i, c in enumerate(_wave_closes(n, trend))
    ]


def _mirror(candles: list[Candle]) -> list[Candle]:
    return [
        Candle(c.time, 3.0 - c.open, 3.0 - c.low, 3.0 - c.high, 3.0 - c.close)
        for c in candles
    ]


def _random_candles(n: int, seed: int) -> list[Candle]:
    rng = random.Random(seed)
    candles = []
    price = 1.1000
    for i in range(n):
        o = price
        c = o + rng.uniform(-0.001, 0.001)
        h = max(o, c) + rng.uniform(0, 0.0008)
        l = min(o, c) - rng.uniform(0, 0.0008)
        candles.append(_make_candle(i, o, h, l, c))
        price = c
    return candles


def _sweep_setup() -> list[Candle]:
    """Ten quiet candles with lows at 1.0955, then a wick to 1.0950 closing at 1.0970."""
    candles = [_make_candle(i, 1.0960, 1.0975, 1.0955, 1.0962) for i in range(10)]
    candles.append(_make_candle(10, 1.0968, 1.0972, 1.0950, 1.0970))
    return candles


# ── Structure ────────────────────────────────────────────────────────────


class TestSwingPoints:
    def test_wave_swings(self):
        highs, lows = find_swing_points(_wave_candles(60))
        assert [p.index for p in highs] == [3, 15, 27, 39, 51]
        assert [p.index for p in lows] == [9, 21, 33, 45]

    def test_mirror_symmetry(self):
        for seed in range(5):
            candles = _random_candles(80, seed)
            highs, lows = find_swing_points(candles)
            m_highs, m_lows = find_swing_points(_mirror(candles))
            assert [p.index for p in highs] == [p.index for p in m_lows]
            assert [p.index for p in lows] == [p.index for p in m_highs]

    def test_plateau_is_not_a_swing(self):
        candles = [_make_candle(i, 1.1, 1.1, 1.1, 1.1) for i in range(10)]
        assert find_swing_points(candles) == ((), ())


class TestBreakoutQuality:
    def test_bounds_on_random_candles(self):
        for seed in range(5):
            candles = _random_candles(60, seed)
            for i in range(len(candles)):
                assert 0.0 <= breakout_quality(candles, i) <= 100.0

    def test_zero_range_is_zero(self):
        candles = [_make_candle(i, 1.1, 1.1, 1.1, 1.1) for i in range(6)]
        assert breakout_quality(candles, 5) == 0.0

    def test_full_body_wide_candle_scores_100(self):
        candles = [_make_candle(i, 1.1, 1.1001, 1.0999, 1.1) for i in range(5)]
        candles.append(_make_candle(5, 1.1, 1.1010, 1.1, 1.1010))
        assert breakout_quality(candles, 5) == pytest.approx(100.0)


class TestMarketStructure:
    def test_bullish_bos_on_breakout_close(self):
        candles = _wave_candles(60)
        last_high = find_swing_points(candles)[0][-1].price
        o = candles[-1].close
        c = last_high + 0.002
        candles.append(_make_candle(60, o, c + _PAD, o - _PAD, c))

        ms = detect_market_structure(candles)
        assert ms.trend == "bullish"
        assert ms.structure == "BOS"
        assert ms.last_bos.side == "bullish"
        assert ms.last_bos.level == pytest.approx(last_high)
        assert 0.0 <= ms.last_bos.bqi <= 100.0
        assert ms.last_choch is None

    def test_bearish_choch_against_uptrend(self):
        candles = _wave_candles(60)
        o = candles[-1].close
        c = 1.0900
        candles.append(_make_candle(60, o, o + _PAD, c - _PAD, c))

        ms = detect_market_structure(candles)
        assert ms.trend == "bullish"
        assert ms.structure == "CHOCH"
        assert ms.last_choch.side == "bearish"
        assert ms.last_break is ms.last_choch

    def test_ranging_has_no_break(self):
        candles = _wave_candles(60, trend=0.0)
        ms = detect_market_structure(candles)
        assert ms.trend == "ranging"
        assert ms.structure == "NONE"


class TestTradingRange:
    def test_static_range_without_break(self):
        candles = _wave_candles(60, trend=0.0)
        tr = get_trading_range(candles)
        assert tr.source == "static"
        assert tr.high == pytest.approx(max(c.high for c in candles[-50:]))

    def test_dynamic_range_after_bullish_break(self):
        candles = _wave_candles(60)
        last_high = find_swing_points(candles)[0][-1].price
        o = candles[-1].close
        c = last_high + 0.002
        candles.append(_make_candle(60, o, c + _PAD, o - _PAD, c))
        tr = get_trading_range(candles)
        assert tr.source == "dynamic"
        assert tr.high == pytest.approx(c + _PAD)

    def test_empty(self):
        assert get_trading_range([]) is None

    def test_premium_discount_quartiles(self):
        tr = TradingRange(high=1.2000, low=1.1000, source="static")
        assert calculate_premium_discount(1.1900, tr).zone == "PREMIUM"
        assert calculate_premium_discount(1.1900, tr).bias == "bearish"
        assert calculate_premium_discount(1.1100, tr).zone == "DISCOUNT"
        assert calculate_premium_discount(1.1500, tr).zone == "EQUILIBRIUM"

    def test_premium_discount_zero_size(self):
        pd = calculate_premium_discount(1.1, TradingRange(1.1, 1.1, "static"))
        assert pd.zone == "EQUILIBRIUM"
        assert pd.position == 0.5

    def test_ote_zones(self):
        ote = calculate_ote(TradingRange(high=1.2000, low=1.1000, source="dynamic"))
        assert ote.buy_zone == pytest.approx((1.1214, 1.1295))
        assert ote.sell_zone == pytest.approx((1.1705, 1.1786))
        assert ote.in_zone(BUY, 1.1250)
        assert not ote.in_zone(SELL, 1.1250)
        assert calculate_ote(TradingRange(1.1, 1.1, "static")) is None


# ── Liquidity ────────────────────────────────────────────────────────────


class TestSweeps:
    def test_bullish_sweep_example(self):
        sweeps = detect_liquidity_sweeps(_sweep_setup())
        assert len(sweeps.bullish) == 1
        assert sweeps.bearish == ()
        sweep = sweeps.bullish[0]
        assert sweep.swept_level == pytest.approx(1.0955)
        assert sweep.price == pytest.approx(1.0950)
        assert sweep.index == 10

    def test_close_below_level_is_not_a_sweep(self):
        candles = _sweep_setup()
        candles[-1] = _make_candle(10, 1.0968, 1.0972, 1.0950, 1.0953)
        assert detect_liquidity_sweeps(candles, wick_ratio=0.1).bullish == ()

    def test_short_history(self):
        assert detect_liquidity_sweeps(_sweep_setup()[:5]) == Sided()

    def test_scan_finds_historical_sweep(self):
        candles = _sweep_setup() + [_make_candle(11, 1.0970, 1.0974, 1.0966, 1.0971)]
        history = scan_sweeps(candles, wick_ratio=0.5)
        assert [s.index for s in history.bullish] == [10]

    def test_pool_sweep_requires_level(self):
        candles = _sweep_setup()
        level = LiquidityLevel("low", 1.0955, 2, 0)
        assert len(detect_pool_sweeps(candles, (), (level,), 0.5).bullish) == 1
        assert detect_pool_sweeps(candles, (), (), 0.5).bullish == ()

    def test_dynamic_wick_ratio_calm_without_atr(self):
        assert dynamic_wick_ratio(_sweep_setup()) == 0.6


class TestEqualLevels:
    def test_wave_troughs_form_a_pool(self):
        candles = _wave_candles(40, trend=0.0)
        eq_highs, eq_lows = find_equal_levels(candles, lookback=40)
        assert len(eq_lows) == 1
        assert eq_lows[0].touches == 3
        assert eq_lows[0].price == pytest.approx(1.1000 - 0.001 - _PAD)
        assert len(eq_highs) == 1

    def test_rising_wave_has_no_pool(self):
        eq_highs, eq_lows = find_equal_levels(_wave_candles(40, trend=0.0002), lookback=40)
        assert eq_highs == () and eq_lows == ()

    def test_sr_levels_sorted(self):
        levels = detect_sr_levels(_wave_candles(60, trend=0.0))
        prices = [lv.price_level for lv in levels]
        assert prices == sorted(prices)
        assert {lv.zone_type for lv in levels} == {"support", "resistance"}


# ── Zones ────────────────────────────────────────────────────────────────


class TestZones:
    def test_bullish_order_block(self):
        candles = [
            _make_candle(0, 1.1010, 1.1012, 1.0998, 1.1000),
            _make_candle(1, 1.1000, 1.1032, 1.0999, 1.1030),
        ]
        obs = detect_order_blocks(candles)
        assert len(obs.bullish) == 1
        block = obs.bullish[0]
        assert (block.high, block.low) == (1.1012, 1.0998)
        assert block.strength > 1.5
        assert not block.mitigated

    def test_order_block_mitigated_on_return(self):
        candles = [
            _make_candle(0, 1.1010, 1.1012, 1.0998, 1.1000),
            _make_candle(1, 1.1000, 1.1032, 1.0999, 1.1030),
            _make_candle(2, 1.1030, 1.1035, 1.1005, 1.1010),
        ]
        assert detect_order_blocks(candles).bullish[0].mitigated

    def test_weak_impulse_is_not_an_order_block(self):
        candles = [
            _make_candle(0, 1.1010, 1.1012, 1.0998, 1.1000),
            _make_candle(1, 1.1000, 1.1012, 1.0999, 1.1010),
        ]
        assert detect_order_blocks(candles) == Sided()

    def test_bullish_fvg(self):
        candles = [
            _make_candle(0, 1.0992, 1.1000, 1.0990, 1.0998),
            _make_candle(1, 1.1000, 1.1032, 1.0998, 1.1030),
            _make_candle(2, 1.1030, 1.1040, 1.1010, 1.1035),
        ]
        fvgs = detect_fair_value_gaps(candles)
        assert len(fvgs.bullish) == 1
        gap = fvgs.bullish[0]
        assert (gap.high, gap.low) == (1.1010, 1.1000)
        assert gap.index == 1
        assert gap.time == candles[1].time

    def test_tiny_gap_ignored(self):
        candles = [
            _make_candle(0, 1.0992, 1.1000, 1.0990, 1.0998),
            _make_candle(1, 1.1000, 1.1032, 1.0998, 1.1030),
            _make_candle(2, 1.1030, 1.1040, 1.10001, 1.1035),
        ]
        assert detect_fair_value_gaps(candles).bullish == ()

    def test_breaker_vs_mitigation(self):
        block = detect_order_blocks([
            _make_candle(0, 1.1010, 1.1012, 1.0998, 1.1000),
            _make_candle(1, 1.1000, 1.1032, 1.0999, 1.1030),
            _make_candle(2, 1.1030, 1.1035, 1.1005, 1.1010),
        ])
        swept = Sided(bullish=(Sweep("bullish", 1.0990, 1.0995, 0, 0, 80.0),))
        breakers, mitigations = classify_order_blocks(block, swept)
        assert breakers.bullish[0].kind == "BREAKER"
        assert mitigations.bullish == ()

        breakers, mitigations = classify_order_blocks(block, Sided())
        assert breakers.bullish == ()
        assert mitigations.bullish[0].kind == "MITIGATION"
        assert mitigations.bullish[0].strength < block.bullish[0].strength

    def test_rejection_block_from_long_lower_wick(self):
        candles = [_make_candle(0, 1.1000, 1.1003, 1.0990, 1.1002)]
        rejections = detect_rejection_blocks(candles)
        assert len(rejections.bullish) == 1
        assert rejections.bullish[0].low == 1.0990


# ── Trend / phase / price action ─────────────────────────────────────────


class TestTrend:
    def test_short_history_is_flat(self):
        assert detect_trend(_wave_candles(30)).direction == "flat"

    def test_steady_rise_is_bullish(self):
        candles = [
            _make_candle(i, 1.1 + i * 0.0002, 1.1 + i * 0.0002 + 0.0003,
                         1.1 + i * 0.0002 - 0.0001, 1.1 + i * 0.0002 + 0.0002)
            for i in range(80)
        ]
        state = detect_trend(candles)
        assert state.direction == "bullish"
        assert state.slope > 0
        assert classify_regime(candles) == "TRENDING"

    def test_resample_to_m15(self):
        candles = _wave_candles(30)
        m15 = resample_candles(candles, 15)
        assert len(m15) == 2
        assert m15[0].open == candles[0].open
        assert m15[0].close == candles[14].close
        assert m15[0].high == max(c.high for c in candles[:15])

    def test_expansion_phase(self):
        candles = [_make_candle(i, 1.1, 1.1002, 1.0998, 1.1) for i in range(20)]
        for i in range(20, 25):
            candles.append(_make_candle(i, 1.1, 1.1010, 1.0990, 1.1))
        assert detect_market_phase(candles) == "EXPANSION"

    def test_contraction_phase(self):
        candles = [_make_candle(i, 1.1, 1.1010, 1.0990, 1.1) for i in range(20)]
        for i in range(20, 25):
            candles.append(_make_candle(i, 1.1, 1.1001, 1.0999, 1.1))
        assert detect_market_phase(candles) == "CONTRACTION"

    def test_velocity_accelerating_up(self):
        closes = [1.1 + 0.00001 * i * i for i in range(12)]
        candles = [_make_candle(i, c, c, c, c) for i, c in enumerate(closes)]
        vd = calculate_velocity_delta(candles)
        assert vd.aligned == "bullish"
        assert calculate_velocity_delta(candles[:9]) is None


class TestPriceAction:
    def test_pin_bar_buy(self):
        candles = [
            _make_candle(0, 1.1000, 1.1004, 1.0999, 1.1003),
            _make_candle(1, 1.1000, 1.1003, 1.0990, 1.1002),
        ]
        pa = detect_price_action(candles)
        assert (pa.pattern, pa.side) == ("PIN_BAR", "bullish")

    def test_bearish_engulfing_wins(self):
        candles = [
            _make_candle(0, 1.1000, 1.1006, 1.0999, 1.1005),
            _make_candle(1, 1.1007, 1.1008, 1.0990, 1.0995),
        ]
        pa = detect_price_action(candles)
        assert (pa.pattern, pa.side) == ("ENGULFING", "bearish")

    def test_single_candle_is_none(self):
        assert detect_price_action(_wave_candles(1)).pattern == "NONE"

    def test_touches_level(self):
        candle = _make_candle(0, 1.1000, 1.1010, 1.0990, 1.1005)
        assert candle_touches_level(candle, 1.0995)
        assert not candle_touches_level(candle, 1.1020)


# ── Full pass ────────────────────────────────────────────────────────────


class TestAnalyzeSmartMoney:
    def test_needs_twenty_candles(self):
        assert analyze_smart_money(_wave_candles(19)) is None

    def test_full_pass(self):
        candles = _wave_candles(120)
        smc = analyze_smart_money(candles)
        assert smc.price == candles[-1].close
        assert smc.structure.trend == "bullish"
        assert smc.atr is not None and smc.atr > 0
        assert smc.regime in {"TRENDING", "MEAN_REVERTING", "CONTRACTION"}
        assert smc.phase in {"EXPANSION", "CONTRACTION", "RANGING"}
        for zone in smc.fresh_zones("bullish"):
            assert not zone.mitigated

    def test_deterministic(self):
        candles = _random_candles(150, 3)
        assert analyze_smart_money(candles) == analyze_smart_money(candles)
