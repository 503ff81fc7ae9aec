"""Tests for scout.lifecycle — clocks, scheduling, publishing and signal bookkeeping."""

import json

import pytest

from scout.lifecycle.clock import Clock, IntervalGate, ManualClock, Scheduler, SystemClock
from scout.lifecycle.manager import SignalLifecycleManager
from scout.lifecycle.publisher import SignalPublisher
from scout.repos.db import init_db
from scout.repos.stats_repo import StatsRepo
from scout.strategy.base import ShadowOutcome
from scout.strategy.models import Signal

MINUTE = 60_000
EURUSD = "EUR/USD_OTC"


# ── Helpers ──────────────────────────────────────────────────────────────


def _make_signal(direction="BUY", confidence=80, created_at=0, **overrides) -> Signal:
    fields = dict(
        instrument=EURUSD,
        direction=direction,
        confidence=confidence,
        expiry_minutes=3,
        entry_price=1.1000,
        created_at=created_at,
        reasons=("SWEEP",),
        engine="confluence",
    )
    fields.update(overrides)
    return Signal(**fields)


class _Prices:
    """Mutable price lookup."""

    def __init__(self, **prices):
        self.prices = {EURUSD: 1.1000, **prices}

    def __call__(self, instrument):
        return self.prices.get(instrument)


def _make_manager(repo=None, publisher=None, prices=None):
    prices = prices or _Prices()
    scheduler = Scheduler()
    manager = SignalLifecycleManager(prices, scheduler, repo=repo, publisher=publisher)
    return manager, scheduler, prices


def _lose(manager, scheduler, prices, created_at=0):
    signal = manager.record(_make_signal(created_at=created_at))
    prices.prices[EURUSD] = 1.0
    scheduler.run_due(signal.expires_at)
    prices.prices[EURUSD] = 1.1


# ── Clock / scheduler / gate ─────────────────────────────────────────────


class TestClock:
    def test_manual_clock(self):
        clock = ManualClock(1_000)
        assert clock.advance(500) == 1_500
        clock.set(10)
        assert clock.now_ms() == 10
        with pytest.raises(ValueError):
            clock.advance(-1)

    def test_protocol(self):
        assert isinstance(SystemClock(), Clock)
        assert isinstance(ManualClock(), Clock)
        assert SystemClock().now_ms() > 0


class TestScheduler:
    def test_runs_due_in_order(self):
        scheduler = Scheduler()
        ran = []
        scheduler.schedule(300, lambda: ran.append("c"))
        scheduler.schedule(100, lambda: ran.append("a"))
        scheduler.schedule(100, lambda: ran.append("b"))
        assert scheduler.next_fire_at() == 100
        assert scheduler.run_due(200) == 2
        assert ran == ["a", "b"]
        assert len(scheduler) == 1

    def test_failing_action_does_not_block_others(self):
        scheduler = Scheduler()
        ran = []

        def _boom():
            raise RuntimeError("boom")

        scheduler.schedule(0, _boom)
        scheduler.schedule(0, lambda: ran.append("ok"))
        assert scheduler.run_due(0) == 2
        assert ran == ["ok"]

    def test_clear(self):
        scheduler = Scheduler()
        scheduler.schedule(0, lambda: None)
        scheduler.clear()
        assert scheduler.next_fire_at() is None


class TestIntervalGate:
    def test_fires_once_per_boundary(self):
        gate = IntervalGate(5)
        assert gate.should_fire(0)
        assert not gate.should_fire(4 * MINUTE)
        assert gate.should_fire(5 * MINUTE + 30_000)
        assert not gate.should_fire(6 * MINUTE)

    def test_rearm_resets(self):
        gate = IntervalGate(5)
        gate.should_fire(0)
        gate.rearm(1)
        assert gate.interval_minutes == 1
        assert gate.should_fire(30_000)

    def test_rejects_zero_interval(self):
        with pytest.raises(ValueError):
            IntervalGate(0)


# ── Publisher ────────────────────────────────────────────────────────────


class TestPublisher:
    def test_memory_only(self):
        publisher = SignalPublisher()
        assert publisher.feed() == {"bestSignal": None}
        payload = publisher.publish(_make_signal(signal_id="abc"))
        assert payload["id"] == "abc"
        assert payload["pair"] == EURUSD
        assert payload["action"] == "BUY"
        assert payload["result"] is None
        assert publisher.latest == payload

    def test_writes_feed_file(self, tmp_path):
        path = tmp_path / "out" / "signal.json"
        publisher = SignalPublisher(str(path))
        publisher.publish(_make_signal(signal_id="abc"))
        document = json.loads(path.read_text(encoding="utf-8"))
        assert document["bestSignal"]["id"] == "abc"

        publisher.clear()
        assert json.loads(path.read_text(encoding="utf-8")) == {"bestSignal": None}


# ── Lifecycle manager ────────────────────────────────────────────────────


class TestRecord:
    def test_assigns_id_and_schedules(self):
        manager, scheduler, _ = _make_manager()
        signal = manager.record(_make_signal())
        assert len(signal.signal_id) == 12
        assert manager.latest == signal
        assert manager.pending_count == 1
        assert scheduler.next_fire_at() == 3 * MINUTE
        assert manager.publisher.latest["id"] == signal.signal_id

    def test_counts_high_confidence(self):
        manager, _, _ = _make_manager()
        manager.record(_make_signal(confidence=80))
        manager.record(_make_signal(confidence=60))
        stats = manager.stats()
        assert stats["totalSignals"] == 2
        assert stats["highConfTotal"] == 1


class TestFinalize:
    def test_buy_wins_when_price_rises(self):
        manager, scheduler, prices = _make_manager()
        signal = manager.record(_make_signal())
        prices.prices[EURUSD] = 1.2
        assert scheduler.run_due(signal.expires_at - 1) == 0
        assert scheduler.run_due(signal.expires_at) == 1

        stats = manager.stats()
        assert stats["wins"] == 1
        assert stats["highConfWins"] == 1
        assert manager.latest.outcome == "win"
        assert manager.latest.exit_price == 1.2
        assert manager.publisher.latest["result"] == "WIN"
        assert manager.pending_count == 0

    def test_sell_wins_when_price_falls(self):
        manager, _, prices = _make_manager()
        signal = manager.record(_make_signal(direction="SELL"))
        prices.prices[EURUSD] = 1.0
        assert manager.finalize(signal.signal_id).outcome == "win"

    def test_unchanged_price_is_a_loss(self):
        manager, _, _ = _make_manager()
        signal = manager.record(_make_signal())
        assert manager.finalize(signal.signal_id).outcome == "loss"

    def test_finalize_is_idempotent(self):
        manager, _, _ = _make_manager()
        signal = manager.record(_make_signal())
        assert manager.finalize(signal.signal_id) is not None
        assert manager.finalize(signal.signal_id) is None
        assert manager.finalize("unknown") is None
        assert manager.stats()["losses"] == 1

    def test_no_price_leaves_pending(self):
        manager, _, prices = _make_manager()
        signal = manager.record(_make_signal())
        prices.prices.clear()
        assert manager.finalize(signal.signal_id) is None
        assert manager.pending_count == 1

    def test_missing_price_retried_once(self):
        manager, scheduler, prices = _make_manager()
        signal = manager.record(_make_signal())
        prices.prices.clear()
        assert scheduler.run_due(signal.expires_at) == 1
        assert manager.pending_count == 1
        assert scheduler.next_fire_at() == signal.expires_at + MINUTE

        prices.prices[EURUSD] = 1.2
        assert scheduler.run_due(signal.expires_at + MINUTE) == 1
        assert manager.pending_count == 0
        assert manager.latest.outcome == "win"
        assert manager.stats()["wins"] == 1

    def test_missing_price_after_retry_drops_signal(self):
        manager, scheduler, prices = _make_manager()
        signal = manager.record(_make_signal())
        prices.prices.clear()
        assert scheduler.run_due(signal.expires_at + 10 * MINUTE) == 2
        assert manager.pending_count == 0
        assert len(scheduler) == 0
        stats = manager.stats()
        assert stats["totalSignals"] == 1
        assert stats["wins"] == 0
        assert stats["losses"] == 0
        assert manager.latest.outcome == "pending"

    def test_older_signal_does_not_republish(self):
        manager, _, _ = _make_manager()
        first = manager.record(_make_signal())
        second = manager.record(_make_signal(created_at=MINUTE))
        manager.finalize(first.signal_id)
        assert manager.latest.signal_id == second.signal_id
        assert manager.publisher.latest["result"] is None

    def test_win_rate_counts_pending(self):
        manager, _, prices = _make_manager()
        signal = manager.record(_make_signal())
        manager.record(_make_signal())
        prices.prices[EURUSD] = 1.2
        manager.finalize(signal.signal_id)
        assert manager.stats()["winRate"] == 50.0


class TestStreakIntegration:
    def test_cap_applied_after_losses(self):
        manager, scheduler, prices = _make_manager()
        _lose(manager, scheduler, prices)
        _lose(manager, scheduler, prices)
        signal = manager.record(_make_signal(confidence=95))
        assert signal.confidence == 80
        assert signal.reasons[-1] == "STREAK_CAP:80"
        assert manager.stats()["confidenceCap"] == 80

    def test_streak_capped_signal_not_high_confidence(self):
        manager, scheduler, prices = _make_manager()
        for _ in range(4):
            _lose(manager, scheduler, prices)
        before = manager.stats()
        signal = manager.record(_make_signal(confidence=90))
        assert signal.confidence == 60
        after = manager.stats()
        assert after["totalSignals"] == before["totalSignals"] + 1
        assert after["highConfTotal"] == before["highConfTotal"]

    def test_shadow_win_eases_streak(self):
        manager, scheduler, prices = _make_manager()
        _lose(manager, scheduler, prices)
        _lose(manager, scheduler, prices)
        outcome = ShadowOutcome(EURUSD, "BUY", 1.1, 1.2, "WIN", 0)
        manager.on_shadow_outcome(outcome)
        assert manager.stats()["consecutiveLosses"] == 1
        manager.on_shadow_outcome(outcome)
        assert manager.stats()["consecutiveLosses"] == 1
        manager.on_shadow_outcome(ShadowOutcome(EURUSD, "BUY", 1.1, 1.0, "LOSS", 0))
        assert manager.stats()["consecutiveLosses"] == 1


class TestGates:
    def test_overall_gate_needs_minimum_sample(self):
        manager, scheduler, prices = _make_manager()
        for _ in range(9):
            _lose(manager, scheduler, prices)
        assert manager.stats()["gates"]["overallBlock"] is False
        _lose(manager, scheduler, prices)
        stats = manager.stats()
        assert stats["gates"]["overallBlock"] is True
        # the streak cap drops later calls under the high-confidence line
        assert stats["highConfTotal"] == 4
        assert stats["gates"]["highConfBlock"] is False

    def test_high_conf_gate(self):
        manager, _, _ = _make_manager()
        for _ in range(5):
            signal = manager.record(_make_signal())
            manager.finalize(signal.signal_id)
            manager.streak.reset()
        assert manager.stats()["gates"]["highConfBlock"] is True


class TestPersistence:
    def test_counters_survive_restart(self, tmp_path):
        db_path = str(tmp_path / "scout.db")
        init_db(db_path)
        manager, scheduler, prices = _make_manager(repo=StatsRepo(db_path))
        _lose(manager, scheduler, prices)
        _lose(manager, scheduler, prices)

        restored, _, _ = _make_manager(repo=StatsRepo(db_path))
        stats = restored.stats()
        assert stats["totalSignals"] == 2
        assert stats["losses"] == 2
        assert stats["consecutiveLosses"] == 2
        history = restored.history()
        assert len(history) == 2
        assert {row["outcome"] for row in history} == {"loss"}

    def test_reset_clears_everything(self, tmp_path):
        db_path = str(tmp_path / "scout.db")
        init_db(db_path)
        manager, scheduler, prices = _make_manager(repo=StatsRepo(db_path))
        _lose(manager, scheduler, prices)
        manager.reset()
        assert manager.stats()["totalSignals"] == 0
        assert manager.latest is None
        assert manager.publisher.latest is None
        assert manager.history() == []

    def test_storage_errors_do_not_escape(self, tmp_path):
        # no schema: every read and write fails
        repo = StatsRepo(str(tmp_path / "broken.db"))
        manager, scheduler, prices = _make_manager(repo=repo)
        assert manager.stats()["totalSignals"] == 0
        _lose(manager, scheduler, prices)
        assert manager.stats()["losses"] == 1
        assert manager.history() == []
