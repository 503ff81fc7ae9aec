"""Confluence scoring engine — weighted point model over SMC features.

Each candle window is scored independently for BUY and SELL:

1. Sum fixed points for every structural feature present on that side.
2. Subtract penalties for adverse context.
3. Apply confluence multipliers (trend alignment, deep zone, phase).
4. Map the winning score to a confidence through a piecewise-linear table.
5. Halve confidence on near-ties and cap it at 45 unless an order block,
   a fair-value gap *and* OTE occupancy all back the call.

The engine is stateless; the state argument is passed through untouched.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Sequence

from scout.strategy.base import EngineResult, candle_color_direction, clamp_confidence
from scout.strategy.indicators import calculate_adx, calculate_rsi, detect_rsi_divergence
from scout.strategy.models import BUY, SELL, Candle, Signal
from scout.strategy.smc import SmcAnalysis, analyze_smart_money

logger = logging.getLogger("scout.strategy.confluence")

MIN_CANDLES = 50

# ── Point table ──────────────────────────────────────────────────────────

POINTS = {
    "CHOCH_OB": 30,
    "SWEEP": 20,
    "BOS_TREND": 15,
    "BREAKER": 12,
    "ORDER_BLOCK": 10,
    "ZONE": 10,
    "TREND": 10,
    "FVG": 8,
    "FVG_DISPLACEMENT": 5,
    "PRICE_ACTION": 8,
    "DIVERGENCE": 8,
    "REJECTION": 6,
    "VELOCITY": 6,
    "INDUCEMENT": 5,
    "MITIGATION": 4,
}

PENALTIES = {
    "COUNTER_TREND": 15,
    "ZONE_MISALIGNED": 10,
    "HTF_DIVERGENCE": 10,
    "TOXIC_PA": 8,
    "WEAK_TREND": 5,
    "LOW_VOLATILITY": 5,
}

TREND_MULTIPLIER = 1.2
DEEP_ZONE_MULTIPLIER = 1.15
EXPANSION_MULTIPLIER = 1.1
CONTRACTION_MULTIPLIER = 0.85
DEEP_ZONE_EDGE = 0.15
DISPLACEMENT_ATR = 1.2
WEAK_ADX = 20.0

# score → confidence
CONFIDENCE_TABLE = (
    (0, 10),
    (10, 25),
    (20, 40),
    (35, 55),
    (50, 70),
    (70, 85),
    (90, 95),
    (120, 100),
)

CONFLICT_MIN_GAP = 3.0
CONFLICT_RATIO = 0.15
GATED_CONFIDENCE_CAP = 45


def score_to_confidence(score: float) -> float:
    """Piecewise-linear interpolation over ``CONFIDENCE_TABLE``."""
    if score <= CONFIDENCE_TABLE[0][0]:
        return float(CONFIDENCE_TABLE[0][1])
    for (x0, y0), (x1, y1) in zip(CONFIDENCE_TABLE, CONFIDENCE_TABLE[1:]):
        if score <= x1:
            return y0 + (score - x0) / (x1 - x0) * (y1 - y0)
    return float(CONFIDENCE_TABLE[-1][1])


def choose_duration(confidence: int, phase: str) -> int:
    """Expiry in minutes from confidence tier and market phase."""
    if phase == "EXPANSION":
        return 2 if confidence >= 70 else 3
    if phase == "CONTRACTION":
        return 5
    return 3 if confidence >= 60 else 5


@dataclass
class _SideScore:
    side: str
    score: float = 0.0
    reasons: list = field(default_factory=list)

    def add(self, key: str, points: float) -> None:
        self.score += points
        self.reasons.append((key, points))

    def penalise(self, key: str) -> None:
        self.score -= PENALTIES[key]
        self.reasons.append((key, -PENALTIES[key]))


class ConfluenceScoringEngine:
    """Fixed/weighted point-scoring decision engine."""

    name = "confluence"

    def __init__(
        self,
        analyzer: Optional[Callable[[Sequence[Candle]], Optional[SmcAnalysis]]] = analyze_smart_money,
    ) -> None:
        self._analyzer = analyzer

    def initial_state(self) -> Any:
        return None

    def generate_signal(
        self,
        candles: Sequence[Candle],
        instrument: str,
        state: Any,
        now_ms: Optional[int] = None,
    ) -> EngineResult:
        if self._analyzer is None or len(candles) < MIN_CANDLES:
            return EngineResult(None, state)
        smc = self._analyzer(candles)
        if smc is None:
            return EngineResult(None, state)

        buy = self._score_side(candles, smc, "bullish")
        sell = self._score_side(candles, smc, "bearish")

        if buy.score > sell.score:
            direction, winner, loser = BUY, buy, sell
        elif sell.score > buy.score:
            direction, winner, loser = SELL, sell, buy
        else:
            direction = candle_color_direction(candles)
            winner, loser = (buy, sell) if direction == BUY else (sell, buy)

        confidence = score_to_confidence(winner.score)
        reasons = [key for key, pts in sorted(winner.reasons, key=lambda r: -r[1]) if pts > 0]

        gap = winner.score - loser.score
        if gap <= max(CONFLICT_MIN_GAP, CONFLICT_RATIO * max(winner.score, 0.0)):
            confidence /= 2
            reasons.append("CONFLICTED")

        if confidence >= 50 and not self._passes_gate(smc, winner.side, direction):
            confidence = min(confidence, GATED_CONFIDENCE_CAP)
            reasons.append("OTE_GATE")

        final = clamp_confidence(confidence)
        duration = choose_duration(final, smc.phase)
        created_at = now_ms if now_ms is not None else int(time.time() * 1000)

        logger.debug(
            "%s buy=%.1f sell=%.1f → %s %d%% (%dm)",
            instrument, buy.score, sell.score, direction, final, duration,
        )
        signal = Signal(
            instrument=instrument,
            direction=direction,
            confidence=final,
            expiry_minutes=duration,
            entry_price=candles[-1].close,
            created_at=created_at,
            reasons=tuple(reasons) or ("NO_CONFLUENCE",),
            engine=self.name,
            extra={"buy_score": round(buy.score, 2), "sell_score": round(sell.score, 2),
                   "phase": smc.phase},
        )
        return EngineResult(signal, state)

    # ── Scoring ──────────────────────────────────────────────────────────

    def _score_side(self, candles: Sequence[Candle], smc: SmcAnalysis, side: str) -> _SideScore:
        result = _SideScore(side)
        opposite = "bearish" if side == "bullish" else "bullish"
        structure = smc.structure
        choch = structure.last_choch
        bos = structure.last_bos
        has_choch = choch is not None and choch.side == side

        if has_choch and smc.order_blocks.of(side):
            result.add("CHOCH_OB", POINTS["CHOCH_OB"])
        if smc.sweeps.of(side):
            result.add("SWEEP", POINTS["SWEEP"])
        if bos is not None and bos.side == side and smc.trend.direction == side:
            result.add("BOS_TREND", POINTS["BOS_TREND"])
        if smc.order_blocks.of(side):
            result.add("ORDER_BLOCK", POINTS["ORDER_BLOCK"])
        if smc.fvgs.of(side):
            result.add("FVG", POINTS["FVG"])
            displaced = smc.atr is not None and candles[-1].range > smc.atr * DISPLACEMENT_ATR
            if displaced or smc.phase == "EXPANSION":
                result.add("FVG_DISPLACEMENT", POINTS["FVG_DISPLACEMENT"])
        if smc.breakers.of(side):
            result.add("BREAKER", POINTS["BREAKER"])
        if smc.mitigations.of(side):
            result.add("MITIGATION", POINTS["MITIGATION"])
        if smc.rejections.of(side):
            result.add("REJECTION", POINTS["REJECTION"])
        if smc.inducements.of(side):
            result.add("INDUCEMENT", POINTS["INDUCEMENT"])
        if smc.premium_discount.bias == side:
            result.add("ZONE", POINTS["ZONE"])
        if smc.price_action.side == side:
            result.add("PRICE_ACTION", POINTS["PRICE_ACTION"])
        if smc.trend.direction == side:
            result.add("TREND", POINTS["TREND"])
        if smc.velocity is not None and smc.velocity.aligned == side:
            result.add("VELOCITY", POINTS["VELOCITY"])

        closes = [c.close for c in candles]
        rsi = calculate_rsi(closes)
        if rsi:
            divergence = detect_rsi_divergence(closes[-len(rsi):], rsi)
            if (side == "bullish" and divergence.bullish) or (side == "bearish" and divergence.bearish):
                result.add("DIVERGENCE", POINTS["DIVERGENCE"])

        # ── Penalties ────────────────────────────────────────────────────
        if smc.trend.direction == opposite and not has_choch:
            result.penalise("COUNTER_TREND")
        adx = calculate_adx(candles)
        if smc.trend.direction == "flat" or (adx is not None and adx.adx[-1] < WEAK_ADX):
            result.penalise("WEAK_TREND")
        if smc.premium_discount.bias == opposite:
            result.penalise("ZONE_MISALIGNED")
        if smc.phase == "CONTRACTION":
            result.penalise("LOW_VOLATILITY")
        if smc.htf_trend == opposite:
            result.penalise("HTF_DIVERGENCE")
        if smc.price_action.side == opposite:
            result.penalise("TOXIC_PA")

        result.score = max(0.0, result.score)

        # ── Multipliers ──────────────────────────────────────────────────
        if smc.trend.direction == side and smc.htf_trend == side:
            result.score *= TREND_MULTIPLIER
        position = smc.premium_discount.position
        if (side == "bullish" and position <= DEEP_ZONE_EDGE) or (
            side == "bearish" and position >= 1 - DEEP_ZONE_EDGE
        ):
            result.score *= DEEP_ZONE_MULTIPLIER
        if smc.phase == "EXPANSION":
            result.score *= EXPANSION_MULTIPLIER
        elif smc.phase == "CONTRACTION":
            result.score *= CONTRACTION_MULTIPLIER

        return result

    @staticmethod
    def _passes_gate(smc: SmcAnalysis, side: str, direction: str) -> bool:
        has_zones = bool(smc.order_blocks.of(side)) and bool(smc.fvgs.of(side))
        in_ote = smc.ote is not None and smc.ote.in_zone(direction, smc.price)
        return has_zones and in_ote
