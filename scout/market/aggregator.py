"""Tick-to-candle aggregation and per-instrument records.

``CandleAggregator`` is the single owner of everything Scout knows about an
instrument: candle history, last price, freeze status, payout, tick flux,
the decision engine's state and the last signal.  All of it lives in one
``InstrumentRecord`` per instrument.
"""

import logging
import math
from dataclasses import dataclass, field
from numbers import Real
from typing import Any, Optional

from scout.market.ring_buffer import RingBuffer
from scout.strategy.models import Candle, Signal

logger = logging.getLogger("scout.market")

FREEZE_THRESHOLD_MS = 10_000


@dataclass
class InstrumentRecord:
    """Everything tracked for one instrument."""

    instrument: str
    candles: RingBuffer
    last_price: Optional[float] = None
    last_change_ms: int = 0
    last_tick_ms: int = 0
    frozen: bool = False
    warmup_complete: bool = False
    payout: Optional[float] = None
    flux: float = 0.0
    ticks_since_measure: int = 0
    engine_state: Any = None
    last_signal: Optional[Signal] = None
    extra: dict = field(default_factory=dict)

    def history(self) -> list[Candle]:
        return self.candles.snapshot()


def _valid_number(value) -> bool:
    return (
        isinstance(value, Real)
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


class CandleAggregator:
    """Builds fixed-interval OHLC candles from a stream of ticks.

    Args:
        capacity: Candles retained per instrument (oldest evicted first).
        bucket_ms: Candle length in milliseconds.
    """

    def __init__(self, capacity: int = 2000, bucket_ms: int = 60_000) -> None:
        self._capacity = capacity
        self._bucket_ms = bucket_ms
        self._records: dict[str, InstrumentRecord] = {}

    @property
    def bucket_ms(self) -> int:
        return self._bucket_ms

    @property
    def instruments(self) -> list[str]:
        return sorted(self._records)

    @property
    def records(self) -> dict[str, InstrumentRecord]:
        return self._records

    def record(self, instrument: str) -> InstrumentRecord:
        """Return the record for *instrument*, creating it on first sight."""
        rec = self._records.get(instrument)
        if rec is None:
            rec = InstrumentRecord(instrument=instrument, candles=RingBuffer(self._capacity))
            self._records[instrument] = rec
        return rec

    # ── Ingestion ────────────────────────────────────────────────────────

    def on_tick(self, instrument: str, price, timestamp_ms) -> bool:
        """Fold one tick into the instrument's latest candle.

        Non-numeric, non-finite or non-positive prices and timestamps are
        ignored, as are ticks older than the current candle.

        Returns:
            ``True`` if the candle history changed.
        """
        if not _valid_number(price) or price <= 0:
            return False
        if not _valid_number(timestamp_ms) or timestamp_ms < 0:
            return False

        price = float(price)
        timestamp_ms = int(timestamp_ms)
        rec = self.record(instrument)
        bucket = timestamp_ms // self._bucket_ms * self._bucket_ms
        latest: Optional[Candle] = rec.candles.latest()

        if latest is not None and bucket < latest.time:
            logger.debug("%s: dropping out-of-order tick at %d", instrument, timestamp_ms)
            return False

        rec.last_tick_ms = timestamp_ms
        if rec.last_price != price:
            rec.last_change_ms = timestamp_ms
            rec.ticks_since_measure += 1
            if rec.frozen:
                logger.info("%s: price moving again, unfrozen", instrument)
            rec.frozen = False
        rec.last_price = price

        if latest is None or latest.time != bucket:
            rec.candles.add(Candle(bucket, price, price, price, price))
            return True

        updated = latest.with_price(price)
        if updated == latest:
            return False
        rec.candles.update_last(updated)
        return True

    def get_history(self, instrument: str) -> list[Candle]:
        """Ordered candle snapshot; empty for unknown instruments."""
        rec = self._records.get(instrument)
        if rec is None:
            return []
        return rec.history()

    # ── Housekeeping ─────────────────────────────────────────────────────

    def check_frozen(self, now_ms: int, threshold_ms: int = FREEZE_THRESHOLD_MS) -> list[str]:
        """Flag instruments whose price has not changed for *threshold_ms*.

        Returns the instruments that became frozen on this call.
        """
        newly_frozen = []
        for name, rec in self._records.items():
            if rec.last_price is None:
                continue
            frozen = now_ms - rec.last_change_ms > threshold_ms
            if frozen and not rec.frozen:
                newly_frozen.append(name)
            rec.frozen = frozen
        if newly_frozen:
            logger.warning("Frozen price feed: %s", ", ".join(sorted(newly_frozen)))
        return newly_frozen

    def measure_flux(self, elapsed_ms: int) -> dict[str, float]:
        """Price changes per second since the previous measurement."""
        if elapsed_ms <= 0:
            return {name: rec.flux for name, rec in self._records.items()}
        for rec in self._records.values():
            rec.flux = rec.ticks_since_measure / (elapsed_ms / 1000)
            rec.ticks_since_measure = 0
        return {name: rec.flux for name, rec in self._records.items()}

    def update_warmup(self, warmup_candles: int) -> list[str]:
        """Latch ``warmup_complete``; returns instruments that just completed."""
        completed = []
        for name, rec in self._records.items():
            if not rec.warmup_complete and len(rec.candles) >= warmup_candles:
                rec.warmup_complete = True
                completed.append(name)
        for name in completed:
            logger.info("%s: warmup complete", name)
        return completed

    def reset_signals(self) -> None:
        """Forget every instrument's last signal and engine state."""
        for rec in self._records.values():
            rec.last_signal = None
            rec.engine_state = None
