"""Tests for the SQLite stats repository."""

import sqlite3

import pytest

from scout.repos.db import init_db
from scout.repos.stats_repo import STAT_FIELDS, StatsRepo
from scout.strategy.models import Signal


@pytest.fixture
def db_path(tmp_path):
    path = str(tmp_path / "data" / "scout.db")
    init_db(path)
    return path


def _make_signal(signal_id: str, **overrides) -> Signal:
    fields = dict(
        instrument="EUR/USD_OTC",
        direction="BUY",
        confidence=75,
        expiry_minutes=3,
        entry_price=1.1,
        created_at=1_000,
        reasons=("SWEEP", "ORDER_BLOCK"),
        engine="confluence",
        signal_id=signal_id,
    )
    fields.update(overrides)
    return Signal(**fields)


class TestInitDb:
    def test_creates_parent_and_seeds_row(self, db_path):
        assert StatsRepo(db_path).get_stats() == {name: 0 for name in STAT_FIELDS}

    def test_idempotent(self, db_path):
        StatsRepo(db_path).save_stats({"total": 3})
        init_db(db_path)
        assert StatsRepo(db_path).get_stats()["total"] == 3


class TestStats:
    def test_save_and_load(self, db_path):
        repo = StatsRepo(db_path)
        repo.save_stats({"total": 5, "wins": 3, "losses": 1, "consecutive_losses": 1})
        stats = repo.get_stats()
        assert stats["total"] == 5
        assert stats["wins"] == 3
        assert stats["consecutive_losses"] == 1
        assert stats["high_conf_total"] == 0

    def test_clear(self, db_path):
        repo = StatsRepo(db_path)
        repo.save_stats({"total": 5})
        repo.add_signal(_make_signal("a"))
        repo.clear()
        assert repo.get_stats()["total"] == 0
        assert repo.get_history() == []


class TestHistory:
    def test_newest_first_with_reasons(self, db_path):
        repo = StatsRepo(db_path)
        repo.add_signal(_make_signal("a"))
        repo.add_signal(_make_signal("b", direction="SELL"))
        history = repo.get_history()
        assert [row["signal_id"] for row in history] == ["b", "a"]
        assert history[0]["direction"] == "SELL"
        assert history[1]["reasons"] == ["SWEEP", "ORDER_BLOCK"]
        assert history[1]["outcome"] == "pending"

    def test_trimmed_to_limit(self, db_path):
        repo = StatsRepo(db_path, history_limit=3)
        for i in range(5):
            repo.add_signal(_make_signal(f"s{i}"))
        assert [row["signal_id"] for row in repo.get_history()] == ["s4", "s3", "s2"]

    def test_update_outcome(self, db_path):
        repo = StatsRepo(db_path)
        repo.add_signal(_make_signal("a"))
        repo.update_outcome(_make_signal("a", outcome="win", exit_price=1.2))
        row = repo.get_history()[0]
        assert row["outcome"] == "win"
        assert row["exit_price"] == pytest.approx(1.2)

    def test_prune(self, db_path):
        repo = StatsRepo(db_path)
        for i in range(4):
            repo.add_signal(_make_signal(f"s{i}"))
        repo.prune_history(1)
        assert [row["signal_id"] for row in repo.get_history()] == ["s3"]


class TestStorageFull:
    def test_prunes_and_retries_once(self, db_path, monkeypatch):
        repo = StatsRepo(db_path, history_limit=4)
        for i in range(4):
            repo.add_signal(_make_signal(f"s{i}"))

        original = StatsRepo._run
        failures = []

        def _flaky_run(self, operation):
            if not failures:
                failures.append(True)
                raise sqlite3.OperationalError("database or disk is full")
            return original(self, operation)

        monkeypatch.setattr(StatsRepo, "_run", _flaky_run)
        repo.add_signal(_make_signal("new"))

        # pruned to half the cap, then the retried insert landed
        assert [row["signal_id"] for row in repo.get_history()] == ["new", "s3", "s2"]

    def test_other_operational_errors_propagate(self, tmp_path):
        repo = StatsRepo(str(tmp_path / "uninitialised.db"))
        with pytest.raises(sqlite3.OperationalError, match="no such table"):
            repo.add_signal(_make_signal("a"))
