"""Sequence engine — explicit SMC state machine.

    IDLE ──sweep──▶ LIQUIDITY_SWEPT ──displacement──▶ DISPLACEMENT
    DISPLACEMENT ──CHoCH (BQI ≥ floor)──▶ CHOCH ──retest of POI──▶ signal, IDLE

Any non-IDLE state that sees no transition for ``timeout_candles`` candles
is force-reset to IDLE (cooldown marker preserved).  After a signal the
instrument is throttled for ``cooldown_ms``.

The aggressive preset adds three fast paths evaluated before the state
machine (velocity strike, gap & go, sniper rejection), a hybrid shortcut
out of LIQUIDITY_SWEPT, and a fast-track exit on CHoCH when momentum is
already aligned.

State is an immutable ``SequenceState``; every call returns a new value.
"""

import logging
import time
from dataclasses import dataclass, replace
from typing import Callable, Optional, Sequence

from scout.strategy.base import EngineResult, clamp_confidence
from scout.strategy.models import (
    BUY,
    SELL,
    Candle,
    Signal,
    Zone,
    direction_to_side,
)
from scout.strategy.price_action import is_engulfing, is_pin_bar_buy, is_pin_bar_sell
from scout.strategy.smc import SmcAnalysis, analyze_smart_money

logger = logging.getLogger("scout.strategy.sequence")

IDLE = "IDLE"
LIQUIDITY_SWEPT = "LIQUIDITY_SWEPT"
DISPLACEMENT = "DISPLACEMENT"
CHOCH = "CHOCH"
RETEST = "RETEST"

MIN_CANDLES = 35

# ── Confidence weights ───────────────────────────────────────────────────

WEIGHTS = {
    "STATE_SWEPT": 20,
    "STATE_DISPLACEMENT": 10,
    "STATE_CHOCH": 10,
    "STATE_RETEST": 10,
    "BQI_FLOOR": 10,
    "TREND_ALIGN": 10,
    "PHASE_ACTIVE": 7,
    "MOMENTUM_BOOST": 13,
    "PA_CONFIRM": 10,
}

_STATE_PROGRESS = {
    IDLE: 0,
    LIQUIDITY_SWEPT: WEIGHTS["STATE_SWEPT"],
    DISPLACEMENT: WEIGHTS["STATE_SWEPT"] + WEIGHTS["STATE_DISPLACEMENT"],
    CHOCH: WEIGHTS["STATE_SWEPT"] + WEIGHTS["STATE_DISPLACEMENT"] + WEIGHTS["STATE_CHOCH"],
    RETEST: (
        WEIGHTS["STATE_SWEPT"] + WEIGHTS["STATE_DISPLACEMENT"]
        + WEIGHTS["STATE_CHOCH"] + WEIGHTS["STATE_RETEST"]
    ),
}

# Fast-path thresholds
VELOCITY_SPIKE = 1.8
VELOCITY_BODY_SHARE = 0.7
VELOCITY_PIVOT_LOOKBACK = 5
GAP_GO_MIN_GAP = 0.00003  # fraction of price
GAP_GO_CLOSE_SHARE = 0.2
SNIPER_WICK_SHARE = 0.6
SNIPER_TOLERANCE = 0.00002  # fraction of price
MIN_VIABLE_CONFIDENCE = 48


@dataclass(frozen=True)
class SequenceParams:
    """Tunables that distinguish engine generations."""

    bqi_threshold: float = 45.0
    timeout_candles: int = 40
    cooldown_ms: int = 10 * 60_000
    displacement_atr: float = 1.2
    pool_sweeps_only: bool = False
    fast_paths: bool = True
    hybrid: bool = True
    fast_track: bool = True


AGGRESSIVE = SequenceParams()
STRICT = SequenceParams(
    bqi_threshold=65.0,
    timeout_candles=20,
    cooldown_ms=3 * 60_000,
    displacement_atr=1.5,
    pool_sweeps_only=True,
    fast_paths=False,
    hybrid=False,
    fast_track=False,
)


@dataclass(frozen=True)
class SequenceState:
    """Per-instrument progress through the sequence."""

    status: str = IDLE
    direction: Optional[str] = None
    last_update_time: int = 0
    last_signal_at: int = 0
    sweep_time: int = 0
    bqi: float = 0.0
    poi: tuple[Zone, ...] = ()
    reasons: tuple[str, ...] = ()


def reset_state(state: SequenceState, signal_at: Optional[int] = None) -> SequenceState:
    """Back to IDLE, keeping (or setting) the cooldown marker."""
    marker = state.last_signal_at if signal_at is None else signal_at
    return SequenceState(last_signal_at=marker)


def candles_since(candles: Sequence[Candle], time_ms: int) -> int:
    """Number of candles opened strictly after *time_ms*."""
    count = 0
    for candle in reversed(candles):
        if candle.time <= time_ms:
            break
        count += 1
    return count


class SequenceEngine:
    """Sweep → displacement → CHoCH → retest state machine.

    Args:
        params: Generation preset (``AGGRESSIVE`` or ``STRICT``).
        analyzer: SMC analysis function; ``None`` disables the engine.
        name: Registry name reported on signals.
    """

    def __init__(
        self,
        params: SequenceParams = AGGRESSIVE,
        analyzer: Optional[Callable[[Sequence[Candle]], Optional[SmcAnalysis]]] = analyze_smart_money,
        name: str = "sequence",
    ) -> None:
        self.params = params
        self.name = name
        self._analyzer = analyzer

    def initial_state(self) -> SequenceState:
        return SequenceState()

    # ── Entry point ──────────────────────────────────────────────────────

    def generate_signal(
        self,
        candles: Sequence[Candle],
        instrument: str,
        state: Optional[SequenceState],
        now_ms: Optional[int] = None,
    ) -> EngineResult:
        if state is None:
            state = self.initial_state()
        if self._analyzer is None or len(candles) < MIN_CANDLES:
            return EngineResult(None, state)

        now = now_ms if now_ms is not None else int(time.time() * 1000)
        if state.last_signal_at and now - state.last_signal_at < self.params.cooldown_ms:
            return EngineResult(None, state)

        smc = self._analyzer(candles)
        if smc is None:
            return EngineResult(None, state)

        last = candles[-1]
        if (
            state.status != IDLE
            and candles_since(candles, state.last_update_time) > self.params.timeout_candles
        ):
            logger.info("%s: %s stalled, resetting to IDLE", instrument, state.status)
            state = reset_state(state)

        if self.params.fast_paths:
            for check in (self._velocity_strike, self._gap_and_go, self._sniper_rejection):
                fired = check(candles, smc)
                if fired is not None:
                    direction, confidence, duration, reason = fired
                    signal = self._make_signal(
                        instrument, direction, confidence, duration, (reason,), last, now,
                    )
                    return EngineResult(signal, reset_state(state, now))

        if state.status == IDLE:
            return EngineResult(None, self._on_idle(smc, state, last))
        if state.status == LIQUIDITY_SWEPT:
            if self.params.hybrid:
                fired = self._hybrid(candles, smc, state)
                if fired is not None:
                    signal = self._make_signal(
                        instrument, state.direction, fired, 3,
                        state.reasons + ("Hybrid Setup",), last, now,
                    )
                    return EngineResult(signal, reset_state(state, now))
            return EngineResult(None, self._on_swept(smc, state, last))
        if state.status == DISPLACEMENT:
            advanced = self._on_displacement(smc, state, last)
            if (
                advanced.status == CHOCH
                and self.params.fast_track
                and smc.velocity is not None
                and smc.velocity.aligned == direction_to_side(advanced.direction)
            ):
                confidence = self._confidence(advanced, smc, momentum=True)
                signal = self._make_signal(
                    instrument, advanced.direction, confidence,
                    self._duration(confidence, smc), advanced.reasons + ("FastTrack Entry",),
                    last, now,
                )
                return EngineResult(signal, reset_state(state, now))
            return EngineResult(None, advanced)
        if state.status == CHOCH:
            if self._is_retest(state, last):
                fired = replace(state, status=RETEST)
                confidence = self._confidence(fired, smc)
                signal = self._make_signal(
                    instrument, fired.direction, confidence,
                    self._duration(confidence, smc), fired.reasons + ("Sequence Complete",),
                    last, now,
                )
                return EngineResult(signal, reset_state(state, now))
        return EngineResult(None, state)

    # ── Transitions ──────────────────────────────────────────────────────

    def _on_idle(self, smc: SmcAnalysis, state: SequenceState, last: Candle) -> SequenceState:
        sweeps = smc.pool_sweeps if self.params.pool_sweeps_only else smc.sweeps
        if sweeps.bullish:
            direction = BUY
        elif sweeps.bearish:
            direction = SELL
        else:
            return state
        return replace(
            state,
            status=LIQUIDITY_SWEPT,
            direction=direction,
            last_update_time=last.time,
            sweep_time=last.time,
            reasons=("Liquidity Sweep",),
        )

    def _on_swept(self, smc: SmcAnalysis, state: SequenceState, last: Candle) -> SequenceState:
        if smc.atr is None or smc.velocity is None:
            return state
        if last.range <= smc.atr * self.params.displacement_atr:
            return state
        v = smc.velocity.velocity
        if (state.direction == BUY and v > 0) or (state.direction == SELL and v < 0):
            return replace(
                state,
                status=DISPLACEMENT,
                last_update_time=last.time,
                reasons=state.reasons + ("Displacement",),
            )
        return state

    def _on_displacement(self, smc: SmcAnalysis, state: SequenceState, last: Candle) -> SequenceState:
        choch = smc.structure.last_choch
        if choch is None or choch.bqi < self.params.bqi_threshold:
            return state
        if choch.side != direction_to_side(state.direction):
            return state
        side = direction_to_side(state.direction)
        fresh = smc.fresh_zones(side)
        leg = tuple(z for z in fresh if z.time >= state.sweep_time)
        return replace(
            state,
            status=CHOCH,
            last_update_time=last.time,
            bqi=choch.bqi,
            poi=leg or fresh,
            reasons=state.reasons + ("CHoCH Sequence",),
        )

    @staticmethod
    def _is_retest(state: SequenceState, last: Candle) -> bool:
        if state.direction == BUY:
            return any(last.low <= zone.high for zone in state.poi)
        return any(last.high >= zone.low for zone in state.poi)

    # ── Fast paths ───────────────────────────────────────────────────────

    def _velocity_strike(self, candles: Sequence[Candle], smc: SmcAnalysis):
        """Pure momentum breakout: an outsized velocity with a full-bodied close."""
        if len(candles) < 14 or smc.velocity is None:
            return None
        v_now = smc.velocity.velocity
        avg_v = sum(
            abs(candles[-i].close - candles[-i - 3].close) / 3 for i in range(1, 11)
        ) / 10
        last = candles[-1]
        if last.range <= 0 or avg_v <= 0:
            return None
        if abs(v_now) <= avg_v * VELOCITY_SPIKE or last.body / last.range <= VELOCITY_BODY_SHARE:
            return None
        prior = candles[-VELOCITY_PIVOT_LOOKBACK - 1:-1]
        if v_now > 0 and last.close > max(c.high for c in prior):
            direction = BUY
        elif v_now < 0 and last.close < min(c.low for c in prior):
            direction = SELL
        else:
            return None
        probe = SequenceState(status=DISPLACEMENT, direction=direction, bqi=50.0)
        confidence = self._confidence(probe, smc, momentum=True, pa=True)
        return direction, confidence, 2, "Velocity Strike"

    def _gap_and_go(self, candles: Sequence[Candle], smc: SmcAnalysis):
        """Continuation on a gap printed by the previous candle, with the trend."""
        last, prev = candles[-1], candles[-2]
        span = prev.range or 1e-9
        for side, direction in (("bullish", BUY), ("bearish", SELL)):
            if smc.htf_trend != side:
                continue
            fresh = [
                z for z in smc.fvgs.of(side)
                if not z.mitigated
                and z.time == prev.time
                and (z.high - z.low) > prev.close * GAP_GO_MIN_GAP
            ]
            if not fresh:
                continue
            near_extreme = (prev.high - last.close) if side == "bullish" else (last.close - prev.low)
            if near_extreme / span < GAP_GO_CLOSE_SHARE:
                probe = SequenceState(status=DISPLACEMENT, direction=direction, bqi=45.0)
                confidence = self._confidence(probe, smc, momentum=True)
                return direction, confidence, 3, "Gap & Go"
        return None

    def _sniper_rejection(self, candles: Sequence[Candle], smc: SmcAnalysis):
        """Long rejection wick landing on S/R or a mitigated order-block edge."""
        last = candles[-1]
        if last.range <= 0:
            return None
        tolerance = last.close * SNIPER_TOLERANCE
        touched = [z for z in smc.order_blocks.all if z.mitigated]

        if (last.open - last.low) / last.range > SNIPER_WICK_SHARE:
            levels = [lv.price_level for lv in smc.sr_levels] + [z.low for z in touched]
            if any(abs(last.low - level) < tolerance for level in levels):
                probe = SequenceState(status=LIQUIDITY_SWEPT, direction=BUY, bqi=45.0)
                return BUY, self._confidence(probe, smc, pa=True), 3, "Sniper Support"

        if (last.high - last.open) / last.range > SNIPER_WICK_SHARE:
            levels = [lv.price_level for lv in smc.sr_levels] + [z.high for z in touched]
            if any(abs(last.high - level) < tolerance for level in levels):
                probe = SequenceState(status=LIQUIDITY_SWEPT, direction=SELL, bqi=45.0)
                return SELL, self._confidence(probe, smc, pa=True), 3, "Sniper Resistance"
        return None

    def _hybrid(self, candles: Sequence[Candle], smc: SmcAnalysis, state: SequenceState):
        """Sweep followed straight away by a gap retest with price-action confirmation."""
        last, prev = candles[-1], candles[-2]
        if state.direction == BUY:
            touched = any(not z.mitigated and last.low <= z.high for z in smc.fvgs.bullish)
            confirmed = is_pin_bar_buy(last) or is_engulfing(prev, last, "bullish")
        else:
            touched = any(not z.mitigated and last.high >= z.low for z in smc.fvgs.bearish)
            confirmed = is_pin_bar_sell(last) or is_engulfing(prev, last, "bearish")
        if touched and confirmed:
            return self._confidence(state, smc, pa=True)
        return None

    # ── Confidence / output ──────────────────────────────────────────────

    def _confidence(
        self,
        state: SequenceState,
        smc: SmcAnalysis,
        momentum: bool = False,
        pa: bool = False,
    ) -> int:
        score = _STATE_PROGRESS.get(state.status, 0)
        if state.bqi >= self.params.bqi_threshold:
            score += WEIGHTS["BQI_FLOOR"]
        if smc.htf_trend == direction_to_side(state.direction):
            score += WEIGHTS["TREND_ALIGN"]
        if smc.phase != "CONTRACTION":
            score += WEIGHTS["PHASE_ACTIVE"]
        if momentum:
            score += WEIGHTS["MOMENTUM_BOOST"]
        if pa:
            score += WEIGHTS["PA_CONFIRM"]
        return clamp_confidence(score, low=0)

    @staticmethod
    def _duration(confidence: int, smc: SmcAnalysis) -> int:
        if confidence <= MIN_VIABLE_CONFIDENCE:
            return 3
        return 5 if smc.phase == "EXPANSION" else 3

    def _make_signal(
        self,
        instrument: str,
        direction: str,
        confidence: int,
        duration: int,
        reasons: tuple[str, ...],
        last: Candle,
        now: int,
    ) -> Signal:
        logger.info("%s %s %d%% via %s", instrument, direction, confidence, reasons[-1])
        return Signal(
            instrument=instrument,
            direction=direction,
            confidence=confidence,
            expiry_minutes=duration,
            entry_price=last.close,
            created_at=now,
            reasons=reasons,
            engine=self.name,
        )
