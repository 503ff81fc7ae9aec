"""ScoutService — the signal pipeline's single owner.

Three periodic drivers share one event loop:

1. **tick**: poll the price feed, fold every instrument's price into its
   candles, resolve due shadow trades, then run frozen-price and warmup
   housekeeping and any due signal finalisations.
2. **signal**: once per wall-clock interval boundary, run the decision
   engine over every eligible instrument and record the best candidate.
3. **housekeeping**: measure per-instrument tick flux.

All state is touched from this one loop only.
"""

import asyncio
import logging
from dataclasses import replace
from typing import Optional

from scout.config import Config, ScoutSettings, load_settings, save_settings
from scout.lifecycle.clock import Clock, IntervalGate, Scheduler, SystemClock
from scout.lifecycle.manager import SignalLifecycleManager
from scout.lifecycle.publisher import SignalPublisher
from scout.market.aggregator import CandleAggregator, InstrumentRecord
from scout.market.feed import PriceBatch, build_feed
from scout.repos.db import init_db
from scout.repos.stats_repo import StatsRepo
from scout.strategy.base import InstrumentSnapshot
from scout.strategy.currency_strength import compute_currency_strength
from scout.strategy.models import Signal
from scout.strategy.registry import Engine, get_engine, is_snapshot_engine
from scout.strategy.shadow_log import ShadowLogger

logger = logging.getLogger("scout.service")

_SIGNAL_POLL_SECONDS = 1.0
_HOUSEKEEPING_SECONDS = 30.0


class ScoutService:
    """Ingests ticks, drives the decision engine and tracks signal outcomes.

    Args:
        engine: Decision engine, or ``None`` to ingest without signalling.
        aggregator: Candle store holding every instrument record.
        lifecycle: Records and finalises emitted signals.
        scheduler: Deferred-action queue shared with ``lifecycle``.
        clock: Time source.
        settings: Operator settings (interval, warmup, thresholds).
        feed: Tick source with an async ``fetch()``; needed only by ``run``.
        shadow_logger: Optional JSONL sink for shadow outcomes/inversions.
        settings_path: Where ``apply_settings`` persists changes.
        tick_interval_ms: Delay between feed polls.
    """

    def __init__(
        self,
        engine: Optional[Engine],
        aggregator: CandleAggregator,
        lifecycle: SignalLifecycleManager,
        scheduler: Scheduler,
        clock: Clock,
        settings: ScoutSettings = ScoutSettings(),
        feed=None,
        shadow_logger: Optional[ShadowLogger] = None,
        settings_path: Optional[str] = None,
        tick_interval_ms: int = 1500,
    ) -> None:
        self._engine = engine
        self._aggregator = aggregator
        self._lifecycle = lifecycle
        self._scheduler = scheduler
        self._clock = clock
        self._settings = settings
        self._feed = feed
        self._shadow_logger = shadow_logger
        self._settings_path = settings_path
        self._tick_interval_ms = tick_interval_ms
        self._gate = IntervalGate(settings.signal_interval_minutes)
        self._lifecycle.min_confidence = settings.min_confidence_percent
        self._last_flux_at: Optional[int] = None
        self._last_tick_ms: Optional[int] = None
        self._running = False

    # ── Properties ───────────────────────────────────────────────────────

    @property
    def engine(self) -> Optional[Engine]:
        return self._engine

    @property
    def aggregator(self) -> CandleAggregator:
        return self._aggregator

    @property
    def lifecycle(self) -> SignalLifecycleManager:
        return self._lifecycle

    @property
    def settings(self) -> ScoutSettings:
        return self._settings

    @property
    def is_running(self) -> bool:
        return self._running

    # ── Tick ingestion ───────────────────────────────────────────────────

    def _now(self, now_ms: Optional[int] = None) -> int:
        """Explicit time, else the latest feed timestamp, else the clock.

        Signals are stamped on the same time base that drives the candle
        buckets and the finalisation scheduler.
        """
        if now_ms is not None:
            return now_ms
        if self._last_tick_ms is not None:
            return self._last_tick_ms
        return self._clock.now_ms()

    def ingest(self, batch: PriceBatch) -> int:
        """Apply one poll of prices; returns how many instruments changed.

        Every instrument is updated before the frozen-price and warmup
        housekeeping runs.
        """
        now = batch.timestamp_ms if batch.timestamp_ms is not None else self._clock.now_ms()
        if self._last_tick_ms is None or now > self._last_tick_ms:
            self._last_tick_ms = now
        if batch.payouts:
            self.update_payouts(batch.payouts)

        changed = 0
        for instrument in sorted(batch.prices):
            price = batch.prices[instrument]
            if self._aggregator.on_tick(instrument, price, now):
                changed += 1
            self._sync_shadow(self._aggregator.record(instrument), now)

        self._aggregator.check_frozen(now)
        self._aggregator.update_warmup(self._settings.warmup_candles_count)
        self._scheduler.run_due(now)
        return changed

    def _sync_shadow(self, rec: InstrumentRecord, now: int) -> None:
        if self._engine is None or not is_snapshot_engine(self._engine):
            return
        if rec.last_price is None or rec.engine_state is None:
            return
        try:
            state, outcomes = self._engine.sync(rec.instrument, rec.engine_state, rec.last_price, now)
        except Exception:
            logger.exception("Shadow sync failed for %s", rec.instrument)
            return
        rec.engine_state = state
        for outcome in outcomes:
            logger.debug(
                "Shadow %s %s: %s", outcome.instrument, outcome.direction, outcome.result,
            )
            self._lifecycle.on_shadow_outcome(outcome)
            if self._shadow_logger is not None:
                self._shadow_logger.log_outcome(outcome)

    def update_payouts(self, payouts: dict[str, float]) -> None:
        """Store broker payout percentages (``None`` clears one)."""
        for instrument, payout in payouts.items():
            self._aggregator.record(instrument).payout = payout

    def measure_flux(self, now_ms: Optional[int] = None) -> dict[str, float]:
        now = self._now(now_ms)
        elapsed = 0 if self._last_flux_at is None else now - self._last_flux_at
        self._last_flux_at = now
        return self._aggregator.measure_flux(elapsed)

    # ── Signal generation ────────────────────────────────────────────────

    def is_any_ready(self) -> bool:
        return any(rec.warmup_complete for rec in self._aggregator.records.values())

    def maybe_generate(self, now_ms: Optional[int] = None) -> Optional[Signal]:
        """Generate a signal if an interval boundary has been crossed.

        The gate is not consumed while no instrument has finished warmup.
        """
        if not self.is_any_ready():
            return None
        now = self._now(now_ms)
        if not self._gate.should_fire(now):
            return None
        return self.generate_best_signal(now)

    def _payout_ok(self, rec: InstrumentRecord) -> bool:
        return rec.payout is None or rec.payout >= self._settings.min_payout_percent

    def eligible_records(self) -> list[InstrumentRecord]:
        """Warmed-up, unfrozen instruments whose payout clears the minimum."""
        return [
            rec for name, rec in sorted(self._aggregator.records.items())
            if rec.warmup_complete and not rec.frozen and self._payout_ok(rec)
        ]

    def generate_best_signal(self, now_ms: Optional[int] = None) -> Optional[Signal]:
        """Run the engine once and record the best qualifying signal."""
        now = self._now(now_ms)
        if self._engine is None:
            return None
        eligible = self.eligible_records()
        if not eligible:
            logger.debug("No eligible instruments this interval")
            return None

        if is_snapshot_engine(self._engine):
            best = self._best_from_snapshot(eligible, now)
        else:
            best = self._best_from_candidates(eligible, now)
        if best is None:
            return None

        rec = self._aggregator.record(best.instrument)
        if rec.payout is not None and best.payout is None:
            best = replace(best, payout=rec.payout)
        recorded = self._lifecycle.record(best)
        rec.last_signal = recorded
        if self._shadow_logger is not None:
            self._shadow_logger.log_inversion(recorded)
        return recorded

    def _best_from_candidates(self, eligible: list[InstrumentRecord], now: int) -> Optional[Signal]:
        min_conf = self._settings.min_confidence_percent
        candidates: list[Signal] = []
        for rec in eligible:
            state = rec.engine_state if rec.engine_state is not None else self._engine.initial_state()
            try:
                result = self._engine.generate_signal(rec.history(), rec.instrument, state, now_ms=now)
            except Exception:
                logger.exception("Engine %s failed on %s", self._engine.name, rec.instrument)
                continue
            rec.engine_state = result.state
            signal = result.signal
            if signal is None:
                continue
            if signal.confidence < min_conf:
                logger.debug(
                    "Rejected %s %s conf=%d%% (< %s%%)",
                    rec.instrument, signal.direction, signal.confidence, min_conf,
                )
                continue
            candidates.append(replace(signal, payout=rec.payout))

        if not candidates:
            return None
        candidates.sort(key=lambda s: (
            -s.confidence,
            -(s.payout if s.payout is not None else 0.0),
            s.expiry_minutes,
            s.instrument,
        ))
        return candidates[0]

    def _best_from_snapshot(self, eligible: list[InstrumentRecord], now: int) -> Optional[Signal]:
        snapshot = {
            rec.instrument: InstrumentSnapshot(
                instrument=rec.instrument,
                candles=rec.history(),
                state=rec.engine_state,
                flux=rec.flux,
                payout=rec.payout,
            )
            for rec in eligible
        }
        context = compute_currency_strength({
            name: rec.history() for name, rec in self._aggregator.records.items()
        })
        try:
            result = self._engine.process_snapshot(
                snapshot, self._settings.trade_duration_minutes, context=context, now_ms=now,
            )
        except Exception:
            logger.exception("Engine %s failed on snapshot", self._engine.name)
            return None

        for name, state in result.states.items():
            self._aggregator.record(name).engine_state = state
        best = result.best
        if best is None:
            return None
        if best.confidence < self._settings.min_confidence_percent:
            logger.debug(
                "Rejected %s %s conf=%d%% (< %s%%)",
                best.instrument, best.direction, best.confidence,
                self._settings.min_confidence_percent,
            )
            return None
        return best

    # ── Control ──────────────────────────────────────────────────────────

    def apply_settings(self, changes: dict) -> ScoutSettings:
        """Apply a camelCase settings update and persist it.

        Raises:
            ValueError: For unknown keys or invalid values.
        """
        new = self._settings.merged(changes)
        if new.signal_interval_minutes != self._settings.signal_interval_minutes:
            self._gate.rearm(new.signal_interval_minutes)
            logger.info("Signal interval set to %d min", new.signal_interval_minutes)
        self._settings = new
        self._lifecycle.min_confidence = new.min_confidence_percent
        if self._settings_path:
            save_settings(self._settings_path, new)
        return new

    def reset(self) -> None:
        """Zero stats, clear history and every instrument's signal/engine state."""
        self._lifecycle.reset()
        self._aggregator.reset_signals()
        self._scheduler.clear()

    # ── Metrics ──────────────────────────────────────────────────────────

    def instrument_status(self, now_ms: Optional[int] = None) -> dict[str, dict]:
        now = self._now(now_ms)
        status = {}
        for name, rec in sorted(self._aggregator.records.items()):
            status[name] = {
                "price": rec.last_price,
                "candles": len(rec.candles),
                "warmupComplete": rec.warmup_complete,
                "lastSignal": rec.last_signal.to_payload() if rec.last_signal else None,
                "frozen": rec.frozen,
                "timeSinceUpdate": now - rec.last_change_ms if rec.last_price is not None else None,
                "payout": rec.payout,
                "payoutEligible": self._payout_ok(rec),
                "flux": round(rec.flux, 3),
            }
        return status

    def metrics(self, now_ms: Optional[int] = None) -> dict:
        """Aggregate stats, most recent signal and per-instrument status."""
        pair_status = self.instrument_status(now_ms)
        warmed = sum(1 for s in pair_status.values() if s["warmupComplete"])
        latest = self._lifecycle.latest
        return {
            "metrics": {
                **self._lifecycle.stats(),
                "currentInterval": self._settings.signal_interval_minutes,
                "currentWarmup": self._settings.warmup_candles_count,
            },
            "engine": self._engine.name if self._engine is not None else None,
            "lastSignal": latest.to_payload() if latest else None,
            "pairStatus": pair_status,
            "activePairs": len(pair_status),
            "warmupCompletePairs": warmed,
            "warmupComplete": warmed > 0,
        }

    # ── Loops ────────────────────────────────────────────────────────────

    def stop(self) -> None:
        """Signal every loop to stop after its current iteration."""
        self._running = False

    async def run(self, max_ticks: int = 0) -> None:
        """Run the three drivers until stopped.

        Args:
            max_ticks: Stop after this many feed polls (0 = unlimited).
        """
        if self._feed is None:
            raise RuntimeError("ScoutService.run() needs a price feed")
        self._running = True
        logger.info(
            "Scout running: engine=%s interval=%dm warmup=%d",
            self._engine.name if self._engine else None,
            self._settings.signal_interval_minutes,
            self._settings.warmup_candles_count,
        )
        await asyncio.gather(
            self._tick_loop(max_ticks),
            self._signal_loop(),
            self._housekeeping_loop(),
        )
        logger.info("Scout stopped")

    async def _tick_loop(self, max_ticks: int) -> None:
        ticks = 0
        while self._running:
            ticks += 1
            try:
                batch = await self._feed.fetch()
                self.ingest(batch)
            except Exception as exc:
                logger.error("Tick %d failed: %s", ticks, exc)
            if max_ticks > 0 and ticks >= max_ticks:
                self._running = False
                break
            await asyncio.sleep(self._tick_interval_ms / 1000)

    async def _signal_loop(self) -> None:
        while self._running:
            try:
                self.maybe_generate()
            except Exception:
                logger.exception("Signal generation failed")
            await asyncio.sleep(_SIGNAL_POLL_SECONDS)

    async def _housekeeping_loop(self) -> None:
        self.measure_flux()
        while self._running:
            # Interruptible sleep; checks _running every second
            for _ in range(int(_HOUSEKEEPING_SECONDS)):
                if not self._running:
                    return
                await asyncio.sleep(1)
            self.measure_flux()


# ── Factory ──────────────────────────────────────────────────────────────


def build_service(config: Config, clock: Optional[Clock] = None) -> ScoutService:
    """Wire a ``ScoutService`` from process configuration.

    An unknown engine name is logged and the service runs without one.
    """
    clock = clock or SystemClock()
    init_db(config.db_path)
    settings = load_settings(config.settings_path)
    aggregator = CandleAggregator(config.candle_capacity, config.bucket_ms)
    scheduler = Scheduler()

    def last_price(instrument: str) -> Optional[float]:
        rec = aggregator.records.get(instrument)
        return rec.last_price if rec else None

    lifecycle = SignalLifecycleManager(
        price_lookup=last_price,
        scheduler=scheduler,
        repo=StatsRepo(config.db_path),
        publisher=SignalPublisher(config.signal_feed_path),
        min_confidence=settings.min_confidence_percent,
    )

    engine: Optional[Engine]
    try:
        engine = get_engine(config.engine)
    except KeyError as exc:
        logger.error("%s; running without a decision engine", exc)
        engine = None

    return ScoutService(
        engine=engine,
        aggregator=aggregator,
        lifecycle=lifecycle,
        scheduler=scheduler,
        clock=clock,
        settings=settings,
        feed=build_feed(config.feed_url, config.feed_file),
        shadow_logger=ShadowLogger(config.shadow_log_path),
        settings_path=config.settings_path,
        tick_interval_ms=config.tick_interval_ms,
    )
