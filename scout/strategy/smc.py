"""One-shot Smart Money Concepts analysis of a candle window.

``analyze_smart_money`` runs every detector over the most recent
``ANALYSIS_WINDOW`` candles and bundles the results.  Nothing is cached
between calls; the same window always yields the same analysis.
"""

from dataclasses import dataclass
from typing import Optional, Sequence

from scout.strategy.indicators import calculate_atr
from scout.strategy.liquidity import (
    detect_liquidity_sweeps,
    detect_pool_sweeps,
    detect_sr_levels,
    dynamic_wick_ratio,
    find_equal_levels,
    scan_sweeps,
)
from scout.strategy.models import (
    Candle,
    Inducement,
    LiquidityLevel,
    MarketStructure,
    OteLevels,
    PremiumDiscount,
    PriceAction,
    Sided,
    SRLevel,
    Sweep,
    TradingRange,
    VelocityDelta,
    Zone,
)
from scout.strategy.price_action import detect_price_action
from scout.strategy.structure import (
    calculate_ote,
    calculate_premium_discount,
    detect_market_structure,
    get_trading_range,
)
from scout.strategy.trend import (
    TrendState,
    calculate_velocity_delta,
    classify_regime,
    detect_htf_trend,
    detect_market_phase,
    detect_trend,
)
from scout.strategy.zones import (
    classify_order_blocks,
    detect_fair_value_gaps,
    detect_inducements,
    detect_order_blocks,
    detect_rejection_blocks,
)

MIN_SMC_CANDLES = 20
ANALYSIS_WINDOW = 300


@dataclass(frozen=True)
class SmcAnalysis:
    """Every structural annotation for one candle window."""

    price: float
    structure: MarketStructure
    equal_highs: tuple[LiquidityLevel, ...]
    equal_lows: tuple[LiquidityLevel, ...]
    sweeps: Sided[Sweep]
    pool_sweeps: Sided[Sweep]
    sweep_history: Sided[Sweep]
    order_blocks: Sided[Zone]
    fvgs: Sided[Zone]
    breakers: Sided[Zone]
    mitigations: Sided[Zone]
    rejections: Sided[Zone]
    inducements: Sided[Inducement]
    sr_levels: tuple[SRLevel, ...]
    trading_range: Optional[TradingRange]
    premium_discount: PremiumDiscount
    ote: Optional[OteLevels]
    trend: TrendState
    htf_trend: str
    phase: str
    regime: str
    velocity: Optional[VelocityDelta]
    atr: Optional[float]
    wick_ratio: float
    price_action: PriceAction

    def fresh_zones(self, side: str) -> tuple[Zone, ...]:
        """Unmitigated order blocks and fair-value gaps on *side*."""
        return tuple(
            z for z in self.order_blocks.of(side) + self.fvgs.of(side)
            if not z.mitigated
        )


def analyze_smart_money(
    candles: Sequence[Candle],
    window: int = ANALYSIS_WINDOW,
) -> Optional[SmcAnalysis]:
    """Run the full SMC pass; ``None`` with fewer than 20 candles."""
    if len(candles) < MIN_SMC_CANDLES:
        return None

    recent = list(candles[-window:])
    price = recent[-1].close
    wick_ratio = dynamic_wick_ratio(recent)

    structure = detect_market_structure(recent)
    equal_highs, equal_lows = find_equal_levels(recent)
    sweep_history = scan_sweeps(recent, wick_ratio=wick_ratio)
    order_blocks = detect_order_blocks(recent)
    breakers, mitigations = classify_order_blocks(order_blocks, sweep_history)
    trading_range = get_trading_range(recent, structure)

    return SmcAnalysis(
        price=price,
        structure=structure,
        equal_highs=equal_highs,
        equal_lows=equal_lows,
        sweeps=detect_liquidity_sweeps(recent, wick_ratio=wick_ratio),
        pool_sweeps=detect_pool_sweeps(recent, equal_highs, equal_lows, wick_ratio),
        sweep_history=sweep_history,
        order_blocks=order_blocks,
        fvgs=detect_fair_value_gaps(recent),
        breakers=breakers,
        mitigations=mitigations,
        rejections=detect_rejection_blocks(recent),
        inducements=detect_inducements(recent),
        sr_levels=tuple(detect_sr_levels(recent)),
        trading_range=trading_range,
        premium_discount=calculate_premium_discount(price, trading_range),
        ote=calculate_ote(trading_range),
        trend=detect_trend(recent),
        htf_trend=detect_htf_trend(candles),
        phase=detect_market_phase(recent),
        regime=classify_regime(recent),
        velocity=calculate_velocity_delta(recent),
        atr=calculate_atr(recent),
        wick_ratio=wick_ratio,
        price_action=detect_price_action(recent),
    )
