"""Nexus engine — cross-instrument ranking with shadow learning.

Runs once per signal interval over every tracked instrument:

1. Pick a raw direction per instrument with a fixed cascade
   (trend+zone → momentum → zone → trend → candle colour).
2. Build a five-feature vector (shadow history, regime-appropriate
   technicals, tick flux, currency correlation, volatility sanity) and
   score it against the per-instrument synapse weights.
3. Apply ghost inversion (poor shadow win rate) and fractal memory
   (skewed outcome history for the last three-candle pattern).
4. Record a shadow trade on the raw direction for every instrument and
   return the highest-scoring instrument as the interval's signal.

Shadow trades are resolved on every tick by ``sync``; each resolution
updates the rolling history, the synapse weights and the fractal memory.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field, fields, replace
from typing import Callable, Mapping, Optional, Sequence

import numpy as np

from scout.strategy.base import (
    InstrumentSnapshot,
    ShadowOutcome,
    SnapshotResult,
    candle_color_direction,
    clamp_confidence,
)
from scout.strategy.currency_strength import compute_currency_strength, net_bias
from scout.strategy.indicators import calculate_rsi, calculate_stochastic
from scout.strategy.models import (
    BUY,
    Candle,
    Signal,
    direction_to_side,
    opposite,
    side_to_direction,
)
from scout.strategy.smc import SmcAnalysis, analyze_smart_money

logger = logging.getLogger("scout.strategy.nexus")

WIN = "WIN"
LOSS = "LOSS"
NORMAL = "NORMAL"
GHOST_INVERSION = "GHOST_INVERSION"

FEATURE_NAMES = ("history", "technical", "flux", "correlation", "volatility")
FEATURE_POINTS = np.array([25.0, 30.0, 10.0, 15.0, 10.0])

CORRELATION_REFERENCE = 0.05  # % net currency bias counted as full agreement
DEAD_ATR_PCT = 0.002
CHOPPY_ATR_PCT = 0.3


@dataclass(frozen=True)
class NexusParams:
    history_size: int = 10
    ghost_inversion: bool = True
    ghost_threshold: float = 0.40
    ghost_min_samples: int = 5
    learning_rate: float = 0.05
    synapse_min: float = 0.5
    synapse_max: float = 2.0
    fractal_min_samples: int = 4
    fractal_boost_rate: float = 0.7
    fractal_invert_rate: float = 0.3
    fractal_bonus: float = 10.0
    flux_reference: float = 0.5  # ticks per second
    max_pending: int = 20
    min_candles: int = 50


@dataclass
class NexusFeatures:
    """Normalised inputs to the success-probability score."""

    history: float = 0.5
    technical: float = 0.0
    flux: float = 0.0
    correlation: float = 0.0
    volatility: float = 0.0  # -1 penalises, +1 rewards

    def to_array(self) -> np.ndarray:
        values = [getattr(self, f.name) for f in fields(self)]
        return np.nan_to_num(np.array(values, dtype=np.float64), nan=0.0, posinf=0.0, neginf=0.0)


@dataclass(frozen=True)
class ShadowTrade:
    direction: str
    entry_price: float
    opened_at: int
    expires_at: int
    active_features: tuple[str, ...] = ()
    fractal_key: str = ""


@dataclass(frozen=True)
class NexusState:
    """Per-instrument learning state."""

    history: tuple[str, ...] = ()
    pending: tuple[ShadowTrade, ...] = ()
    synapses: tuple[float, ...] = (1.0,) * len(FEATURE_NAMES)
    fractal: tuple[tuple[str, int, int], ...] = ()  # (key, wins, losses)
    last_cycle_at: int = 0

    @property
    def win_rate(self) -> Optional[float]:
        if not self.history:
            return None
        return self.history.count(WIN) / len(self.history)

    def fractal_stats(self, key: str) -> tuple[int, int]:
        for entry_key, wins, losses in self.fractal:
            if entry_key == key:
                return wins, losses
        return 0, 0

    @property
    def synapse_map(self) -> dict[str, float]:
        return dict(zip(FEATURE_NAMES, self.synapses))


def fractal_key(candles: Sequence[Candle]) -> str:
    """Up/down/flat pattern of the last three candles, e.g. ``"UDU"``."""
    marks = []
    for candle in candles[-3:]:
        if candle.close > candle.open:
            marks.append("U")
        elif candle.close < candle.open:
            marks.append("D")
        else:
            marks.append("F")
    return "".join(marks)


@dataclass
class _Evaluation:
    instrument: str
    raw_direction: str
    direction: str
    score: float
    bias: float
    price: float
    reasons: list = field(default_factory=list)
    active_features: tuple[str, ...] = ()
    fractal_key: str = ""


class NexusEngine:
    """Cross-instrument ranking engine with self-evaluated reliability."""

    name = "nexus"

    def __init__(
        self,
        params: NexusParams = NexusParams(),
        analyzer: Optional[Callable[[Sequence[Candle]], Optional[SmcAnalysis]]] = analyze_smart_money,
    ) -> None:
        self.params = params
        self._analyzer = analyzer

    def initial_state(self) -> NexusState:
        return NexusState()

    # ── Cycle ────────────────────────────────────────────────────────────

    def process_snapshot(
        self,
        snapshot: Mapping[str, InstrumentSnapshot],
        expiry_minutes: int,
        context: Optional[Mapping[str, float]] = None,
        now_ms: Optional[int] = None,
    ) -> SnapshotResult:
        now = now_ms if now_ms is not None else int(time.time() * 1000)
        strengths = (
            dict(context) if context is not None
            else compute_currency_strength({k: v.candles for k, v in snapshot.items()})
        )

        states: dict[str, NexusState] = {}
        evaluations: list[_Evaluation] = []
        for instrument in sorted(snapshot):
            snap = snapshot[instrument]
            state = snap.state if isinstance(snap.state, NexusState) else self.initial_state()
            states[instrument] = state
            if self._analyzer is None or len(snap.candles) < self.params.min_candles:
                continue
            smc = self._analyzer(snap.candles)
            if smc is None:
                continue

            evaluation = self._evaluate(instrument, snap, state, smc, strengths)
            evaluations.append(evaluation)

            shadow = ShadowTrade(
                direction=evaluation.raw_direction,
                entry_price=evaluation.price,
                opened_at=now,
                expires_at=now + expiry_minutes * 60_000,
                active_features=evaluation.active_features,
                fractal_key=evaluation.fractal_key,
            )
            pending = (state.pending + (shadow,))[-self.params.max_pending:]
            states[instrument] = replace(state, pending=pending, last_cycle_at=now)

        scores = {e.instrument: round(e.score, 2) for e in evaluations}
        if not evaluations:
            return SnapshotResult(None, states, scores)

        best = min(evaluations, key=lambda e: (-e.score, -abs(e.bias), e.instrument))
        signal = Signal(
            instrument=best.instrument,
            direction=best.direction,
            confidence=clamp_confidence(best.score),
            expiry_minutes=expiry_minutes,
            entry_price=best.price,
            created_at=now,
            reasons=tuple(best.reasons),
            engine=self.name,
            extra={"score": round(best.score, 2), "bias": round(best.bias, 4)},
        )
        return SnapshotResult(signal, states, scores)

    # ── Shadow resolution ────────────────────────────────────────────────

    def sync(
        self,
        instrument: str,
        state: Optional[NexusState],
        price: float,
        now_ms: int,
    ) -> tuple[NexusState, list[ShadowOutcome]]:
        """Resolve every pending shadow trade whose expiry has passed."""
        if not isinstance(state, NexusState):
            return self.initial_state(), []
        due = [t for t in state.pending if t.expires_at <= now_ms]
        if not due:
            return state, []

        outcomes: list[ShadowOutcome] = []
        for trade in due:
            won = (
                (trade.direction == BUY and price > trade.entry_price)
                or (trade.direction != BUY and price < trade.entry_price)
            )
            result = WIN if won else LOSS
            state = self._learn(state, trade, result)
            outcomes.append(ShadowOutcome(
                instrument=instrument,
                direction=trade.direction,
                entry_price=trade.entry_price,
                exit_price=price,
                result=result,
                resolved_at=now_ms,
            ))

        remaining = tuple(t for t in state.pending if t.expires_at > now_ms)
        return replace(state, pending=remaining), outcomes

    def _learn(self, state: NexusState, trade: ShadowTrade, result: str) -> NexusState:
        history = (state.history + (result,))[-self.params.history_size:]

        weights = np.array(state.synapses, dtype=np.float64)
        step = self.params.learning_rate if result == WIN else -self.params.learning_rate
        for name in trade.active_features:
            weights[FEATURE_NAMES.index(name)] += step
        weights = np.clip(weights, self.params.synapse_min, self.params.synapse_max)

        fractal = []
        found = False
        for key, wins, losses in state.fractal:
            if key == trade.fractal_key:
                found = True
                wins, losses = (wins + 1, losses) if result == WIN else (wins, losses + 1)
            fractal.append((key, wins, losses))
        if not found and trade.fractal_key:
            fractal.append((trade.fractal_key, int(result == WIN), int(result == LOSS)))

        return replace(
            state,
            history=history,
            synapses=tuple(float(w) for w in weights),
            fractal=tuple(fractal),
        )

    # ── Evaluation ───────────────────────────────────────────────────────

    def _evaluate(
        self,
        instrument: str,
        snap: InstrumentSnapshot,
        state: NexusState,
        smc: SmcAnalysis,
        strengths: Mapping[str, float],
    ) -> _Evaluation:
        candles = snap.candles
        raw_direction, source = self._cascade(candles, smc)
        side = direction_to_side(raw_direction)
        bias = net_bias(instrument, strengths)

        features = NexusFeatures(
            history=state.win_rate if state.win_rate is not None else 0.5,
            technical=self._technical(candles, smc, side),
            flux=min(1.0, snap.flux / self.params.flux_reference) if self.params.flux_reference else 0.0,
            correlation=self._correlation(raw_direction, bias),
            volatility=self._volatility(smc),
        )
        vector = features.to_array()
        weighted = FEATURE_POINTS * np.array(state.synapses, dtype=np.float64)
        score = float(np.clip(np.dot(weighted, vector), 0.0, 100.0))
        active = tuple(
            name for name, value in zip(FEATURE_NAMES, vector) if value >= 0.5
        )

        direction = raw_direction
        mode = NORMAL
        win_rate = state.win_rate
        if (
            self.params.ghost_inversion
            and win_rate is not None
            and len(state.history) >= self.params.ghost_min_samples
            and win_rate < self.params.ghost_threshold
        ):
            direction = opposite(raw_direction)
            mode = GHOST_INVERSION
            logger.info(
                "INVERSION %s: shadow WR %.0f%% over %d → %s instead of %s",
                instrument, win_rate * 100, len(state.history), direction, raw_direction,
            )

        reasons = [mode, f"CASCADE:{source}", f"REGIME:{smc.regime}"]
        if win_rate is not None:
            reasons.append(f"SHADOW_WR:{round(win_rate * 100)}%")

        key = fractal_key(candles)
        wins, losses = state.fractal_stats(key)
        samples = wins + losses
        if samples >= self.params.fractal_min_samples:
            rate = wins / samples
            if rate > self.params.fractal_boost_rate and direction == raw_direction:
                score = min(100.0, score + self.params.fractal_bonus)
                reasons.append("FRACTAL_BOOST")
            elif rate < self.params.fractal_invert_rate and direction == raw_direction:
                direction = opposite(raw_direction)
                reasons.append("FRACTAL_INVERSION")
                logger.info("INVERSION %s: fractal %s WR %.0f%%", instrument, key, rate * 100)

        return _Evaluation(
            instrument=instrument,
            raw_direction=raw_direction,
            direction=direction,
            score=score,
            bias=bias,
            price=candles[-1].close,
            reasons=reasons,
            active_features=active,
            fractal_key=key,
        )

    @staticmethod
    def _cascade(candles: Sequence[Candle], smc: SmcAnalysis) -> tuple[str, str]:
        sides = ("bullish", "bearish")
        trend = smc.trend.direction
        zone = smc.premium_discount.bias
        momentum = smc.velocity.aligned if smc.velocity is not None else "none"
        if trend in sides and trend == zone:
            return side_to_direction(trend), "TREND_ZONE"
        if momentum in sides:
            return side_to_direction(momentum), "MOMENTUM"
        if zone in sides:
            return side_to_direction(zone), "ZONE"
        if trend in sides:
            return side_to_direction(trend), "TREND"
        return candle_color_direction(candles), "CANDLE"

    @staticmethod
    def _technical(candles: Sequence[Candle], smc: SmcAnalysis, side: str) -> float:
        if smc.regime == "TRENDING":
            brk = smc.structure.last_break
            checks = [
                smc.trend.direction == side,
                smc.htf_trend == side,
                (brk is not None and brk.side == side) or smc.structure.trend == side,
            ]
        elif smc.regime == "MEAN_REVERTING":
            closes = [c.close for c in candles]
            rsi = calculate_rsi(closes)
            stoch = calculate_stochastic(candles)
            rsi_now = rsi[-1] if rsi else 50.0
            k_now = stoch[0][-1] if stoch else 50.0
            if side == "bullish":
                checks = [rsi_now < 30, k_now < 20, smc.premium_discount.bias == side]
            else:
                checks = [rsi_now > 70, k_now > 80, smc.premium_discount.bias == side]
        else:
            checks = [
                bool(smc.fresh_zones(side)),
                smc.price_action.side == side,
            ]
        return sum(checks) / len(checks)

    @staticmethod
    def _correlation(direction: str, bias: float) -> float:
        aligned = bias > 0 if direction == BUY else bias < 0
        if not aligned:
            return 0.0
        return min(1.0, abs(bias) / CORRELATION_REFERENCE)

    @staticmethod
    def _volatility(smc: SmcAnalysis) -> float:
        if smc.atr is None or smc.price <= 0:
            return 0.0
        atr_pct = smc.atr / smc.price * 100
        if atr_pct < DEAD_ATR_PCT or atr_pct > CHOPPY_ATR_PCT:
            return -1.0
        return 1.0
