"""Signal lifecycle: record, deferred finalisation, aggregate statistics.

Every recorded signal is finalised once its expiry passes: the instrument's
price at that moment is compared with the entry price in the signal's
direction.  Counters and a bounded history survive restarts through
``StatsRepo``; the losing streak feeds a ``StreakTracker`` that caps the
displayed confidence of later signals.
"""

import logging
import sqlite3
import uuid
from dataclasses import dataclass, replace
from typing import Callable, Optional

from scout.lifecycle.clock import Scheduler
from scout.lifecycle.publisher import SignalPublisher
from scout.repos.stats_repo import StatsRepo
from scout.risk.streak import StreakTracker
from scout.strategy.base import ShadowOutcome
from scout.strategy.models import BUY, Signal

logger = logging.getLogger("scout.lifecycle")

# Executor gates: block trading when the recorded win rate falls below this
GATE_WIN_RATE = 54.0
GATE_MIN_SIGNALS = 10
GATE_MIN_HIGH_CONF_SIGNALS = 5

_PENDING_LIMIT = 200
# A signal whose expiry finds no price gets one more attempt this much later
_FINALIZE_RETRY_MS = 60_000


@dataclass
class SignalStats:
    total: int = 0
    wins: int = 0
    losses: int = 0
    high_conf_total: int = 0
    high_conf_wins: int = 0
    high_conf_losses: int = 0

    @property
    def win_rate(self) -> float:
        return self.wins / self.total * 100 if self.total else 0.0

    @property
    def high_conf_win_rate(self) -> float:
        return self.high_conf_wins / self.high_conf_total * 100 if self.high_conf_total else 0.0


def _won(signal: Signal, price: float) -> bool:
    if signal.direction == BUY:
        return price > signal.entry_price
    return price < signal.entry_price


class SignalLifecycleManager:
    """Owns the recorded-signal bookkeeping.

    Args:
        price_lookup: Returns the instrument's current price (or ``None``).
        scheduler: Queue that runs the deferred finalisations.
        repo: Persistence for counters and history; ``None`` keeps memory only.
        publisher: Delivery channel updated on record and finalise.
        min_confidence: Threshold for the high-confidence counters, compared
            with the published confidence, so a streak-capped signal counts
            as high-confidence only if its capped value still clears it.
    """

    def __init__(
        self,
        price_lookup: Callable[[str], Optional[float]],
        scheduler: Scheduler,
        repo: Optional[StatsRepo] = None,
        publisher: Optional[SignalPublisher] = None,
        min_confidence: float = 70,
    ) -> None:
        self._price_lookup = price_lookup
        self._scheduler = scheduler
        self._repo = repo
        self._publisher = publisher or SignalPublisher()
        self.min_confidence = min_confidence
        self._pending: dict[str, Signal] = {}
        self._latest: Optional[Signal] = None

        persisted = self._load()
        self._stats = SignalStats(
            **{k: v for k, v in persisted.items() if k != "consecutive_losses"}
        )
        self._streak = StreakTracker(persisted.get("consecutive_losses", 0))

    def _load(self) -> dict:
        if self._repo is None:
            return {}
        try:
            return self._repo.get_stats()
        except sqlite3.Error as exc:
            logger.warning("Could not read persisted stats, starting from zero: %s", exc)
            return {}

    # ── Queries ──────────────────────────────────────────────────────────

    @property
    def latest(self) -> Optional[Signal]:
        return self._latest

    @property
    def streak(self) -> StreakTracker:
        return self._streak

    @property
    def publisher(self) -> SignalPublisher:
        return self._publisher

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def stats(self) -> dict:
        """Counters, win rates and executor gate status (camelCase)."""
        s = self._stats
        return {
            "totalSignals": s.total,
            "wins": s.wins,
            "losses": s.losses,
            "winRate": round(s.win_rate, 2),
            "highConfTotal": s.high_conf_total,
            "highConfWins": s.high_conf_wins,
            "highConfLosses": s.high_conf_losses,
            "highConfWinRate": round(s.high_conf_win_rate, 2),
            "consecutiveLosses": self._streak.consecutive_losses,
            "confidenceCap": self._streak.confidence_cap,
            "gates": {
                "overallBlock": s.total >= GATE_MIN_SIGNALS and s.win_rate < GATE_WIN_RATE,
                "highConfBlock": (
                    s.high_conf_total >= GATE_MIN_HIGH_CONF_SIGNALS
                    and s.high_conf_win_rate < GATE_WIN_RATE
                ),
            },
        }

    def history(self, limit: int = 50) -> list[dict]:
        if self._repo is None:
            return []
        try:
            return self._repo.get_history(limit)
        except sqlite3.Error as exc:
            logger.warning("Could not read signal history: %s", exc)
            return []

    # ── Lifecycle ────────────────────────────────────────────────────────

    def record(self, signal: Signal) -> Signal:
        """Register *signal* as the most recent call and schedule its finalisation.

        The displayed confidence is capped while a losing streak is active,
        and the high-confidence counters see the capped value.
        Returns the signal as stored.
        """
        if not signal.signal_id:
            signal = replace(signal, signal_id=uuid.uuid4().hex[:12])
        capped = self._streak.apply_cap(signal.confidence)
        if capped < signal.confidence:
            signal = replace(
                signal,
                confidence=capped,
                reasons=signal.reasons + (f"STREAK_CAP:{capped}",),
            )

        self._latest = signal
        self._stats.total += 1
        if signal.confidence >= self.min_confidence:
            self._stats.high_conf_total += 1
            logger.info(
                "SIGNAL %s %s conf=%d%% %dm entry=%s [%s]",
                signal.instrument, signal.direction, signal.confidence,
                signal.expiry_minutes, signal.entry_price, ", ".join(signal.reasons),
            )
        else:
            logger.debug(
                "Signal %s %s conf=%d%% below high-confidence threshold",
                signal.instrument, signal.direction, signal.confidence,
            )

        self._pending[signal.signal_id] = signal
        if len(self._pending) > _PENDING_LIMIT:
            oldest = next(iter(self._pending))
            self._pending.pop(oldest)

        self._persist(lambda repo: repo.add_signal(signal))
        self._persist_stats()
        self._publisher.publish(signal)

        signal_id = signal.signal_id
        self._scheduler.schedule(
            signal.expires_at, lambda: self._finalize_due(signal_id, retries=1)
        )
        return signal

    def _finalize_due(self, signal_id: str, retries: int) -> None:
        """Scheduled finalisation: retry once when no price is available, then drop."""
        if self.finalize(signal_id) is not None:
            return
        signal = self._pending.get(signal_id)
        if signal is None:
            return
        if retries > 0:
            self._scheduler.schedule(
                signal.expires_at + _FINALIZE_RETRY_MS,
                lambda: self._finalize_due(signal_id, retries - 1),
            )
            return
        self._pending.pop(signal_id)
        logger.warning(
            "Dropping %s on %s: still no price after retry, not counted",
            signal_id, signal.instrument,
        )

    def finalize(self, signal_id: str) -> Optional[Signal]:
        """Resolve a recorded signal against the instrument's current price.

        Idempotent: returns ``None`` without side effects if the signal is
        unknown, already resolved, or no price is available.
        """
        signal = self._pending.get(signal_id)
        if signal is None or signal.is_resolved:
            return None
        price = self._price_lookup(signal.instrument)
        if price is None or signal.entry_price is None:
            logger.warning("No price for %s, leaving %s unresolved", signal.instrument, signal_id)
            return None

        won = _won(signal, price)
        resolved = replace(signal, outcome="win" if won else "loss", exit_price=price)
        self._pending.pop(signal_id)

        if won:
            self._stats.wins += 1
        else:
            self._stats.losses += 1
        if signal.confidence >= self.min_confidence:
            if won:
                self._stats.high_conf_wins += 1
            else:
                self._stats.high_conf_losses += 1
        self._streak.record(won)

        logger.info(
            "Result %s %s: %s (entry=%s exit=%s) streak=%d",
            resolved.instrument, resolved.direction, resolved.outcome.upper(),
            resolved.entry_price, price, self._streak.consecutive_losses,
        )

        if self._latest is not None and self._latest.signal_id == signal_id:
            self._latest = resolved
            self._publisher.publish(resolved)
        self._persist(lambda repo: repo.update_outcome(resolved))
        self._persist_stats()
        return resolved

    def on_shadow_outcome(self, outcome: ShadowOutcome) -> None:
        """Shadow recovery: a winning shadow trade eases an elevated streak."""
        if outcome.result != "WIN":
            return
        if self._streak.shadow_recovery():
            logger.info(
                "Shadow WIN on %s eased losing streak to %d",
                outcome.instrument, self._streak.consecutive_losses,
            )
            self._persist_stats()

    def reset(self) -> None:
        """Zero all counters and forget every recorded signal."""
        self._stats = SignalStats()
        self._streak.reset()
        self._pending.clear()
        self._latest = None
        self._publisher.clear()
        self._persist(lambda repo: repo.clear())
        logger.info("Signal history reset")

    # ── Persistence ──────────────────────────────────────────────────────

    def _persist_stats(self) -> None:
        s = self._stats
        snapshot = {
            "total": s.total,
            "wins": s.wins,
            "losses": s.losses,
            "high_conf_total": s.high_conf_total,
            "high_conf_wins": s.high_conf_wins,
            "high_conf_losses": s.high_conf_losses,
            "consecutive_losses": self._streak.consecutive_losses,
        }
        self._persist(lambda repo: repo.save_stats(snapshot))

    def _persist(self, write: Callable[[StatsRepo], None]) -> None:
        if self._repo is None:
            return
        try:
            write(self._repo)
        except sqlite3.Error as exc:
            logger.error("Failed to persist signal stats: %s", exc)
