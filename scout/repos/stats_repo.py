"""Signal statistics repository — SQLite persistence for aggregate counters
and the bounded signal history."""

import json
import logging
import sqlite3
from datetime import datetime, timezone
from typing import Callable

from scout.repos.db import get_connection
from scout.strategy.models import Signal

logger = logging.getLogger("scout.repos")

HISTORY_LIMIT = 50

STAT_FIELDS = (
    "total",
    "wins",
    "losses",
    "high_conf_total",
    "high_conf_wins",
    "high_conf_losses",
    "consecutive_losses",
)


def _is_storage_full(exc: sqlite3.OperationalError) -> bool:
    return "full" in str(exc).lower()


class StatsRepo:
    """Data access layer for ``signal_stats`` and ``signal_history``.

    Args:
        db_path: Path to the SQLite database file.
        history_limit: Signals kept in ``signal_history`` (newest win).
    """

    def __init__(self, db_path: str, history_limit: int = HISTORY_LIMIT) -> None:
        self._db_path = db_path
        self._history_limit = history_limit

    @property
    def history_limit(self) -> int:
        return self._history_limit

    # ── Write ────────────────────────────────────────────────────────────

    def _write(self, operation: Callable[[sqlite3.Connection], None]) -> None:
        """Run *operation* in a transaction.

        When the database reports it is full, the history is pruned to half
        its cap and the write is retried once.
        """
        try:
            self._run(operation)
        except sqlite3.OperationalError as exc:
            if not _is_storage_full(exc):
                raise
            keep = self._history_limit // 2
            logger.warning("Storage full (%s); pruning signal history to %d", exc, keep)
            self.prune_history(keep)
            self._run(operation)

    def _run(self, operation: Callable[[sqlite3.Connection], None]) -> None:
        conn = get_connection(self._db_path)
        try:
            operation(conn)
            conn.commit()
        finally:
            conn.close()

    def save_stats(self, stats: dict) -> None:
        """Overwrite the aggregate counters with *stats*."""
        values = [int(stats.get(name, 0)) for name in STAT_FIELDS]
        updated_at = datetime.now(timezone.utc).isoformat()

        def op(conn: sqlite3.Connection) -> None:
            conn.execute(
                f"""
                INSERT OR REPLACE INTO signal_stats
                    (id, {', '.join(STAT_FIELDS)}, updated_at)
                VALUES (1, {', '.join('?' * len(STAT_FIELDS))}, ?)
                """,
                (*values, updated_at),
            )

        self._write(op)

    def add_signal(self, signal: Signal) -> None:
        """Insert *signal* into the history and trim to the cap."""
        limit = self._history_limit

        def op(conn: sqlite3.Connection) -> None:
            conn.execute(
                """
                INSERT OR REPLACE INTO signal_history
                    (signal_id, instrument, direction, confidence,
                     duration_minutes, entry_price, exit_price, outcome,
                     engine, reasons, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    signal.signal_id, signal.instrument, signal.direction,
                    signal.confidence, signal.expiry_minutes, signal.entry_price,
                    signal.exit_price, signal.outcome, signal.engine,
                    json.dumps(list(signal.reasons)), signal.created_at,
                ),
            )
            conn.execute(
                """
                DELETE FROM signal_history WHERE id NOT IN (
                    SELECT id FROM signal_history ORDER BY id DESC LIMIT ?
                )
                """,
                (limit,),
            )

        self._write(op)

    def update_outcome(self, signal: Signal) -> None:
        """Store a resolved signal's outcome and exit price."""

        def op(conn: sqlite3.Connection) -> None:
            conn.execute(
                """
                UPDATE signal_history
                SET outcome = ?, exit_price = ?
                WHERE signal_id = ?
                """,
                (signal.outcome, signal.exit_price, signal.signal_id),
            )

        self._write(op)

    def prune_history(self, keep: int) -> None:
        """Drop all but the newest *keep* history rows."""
        conn = get_connection(self._db_path)
        try:
            conn.execute(
                """
                DELETE FROM signal_history WHERE id NOT IN (
                    SELECT id FROM signal_history ORDER BY id DESC LIMIT ?
                )
                """,
                (keep,),
            )
            conn.commit()
        finally:
            conn.close()

    def clear(self) -> None:
        """Zero every counter and empty the history."""
        conn = get_connection(self._db_path)
        try:
            conn.execute("DELETE FROM signal_history")
            conn.execute(
                f"""
                UPDATE signal_stats
                SET {', '.join(f'{name} = 0' for name in STAT_FIELDS)}, updated_at = ?
                WHERE id = 1
                """,
                (datetime.now(timezone.utc).isoformat(),),
            )
            conn.commit()
        finally:
            conn.close()

    # ── Read ─────────────────────────────────────────────────────────────

    def get_stats(self) -> dict:
        """Return the aggregate counters (all zero when never written)."""
        conn = get_connection(self._db_path)
        try:
            row = conn.execute(
                "SELECT * FROM signal_stats WHERE id = 1"
            ).fetchone()
            if row is None:
                return {name: 0 for name in STAT_FIELDS}
            return {name: row[name] for name in STAT_FIELDS}
        finally:
            conn.close()

    def get_history(self, limit: int = HISTORY_LIMIT) -> list[dict]:
        """Return up to *limit* signals, newest first."""
        conn = get_connection(self._db_path)
        try:
            rows = conn.execute(
                "SELECT * FROM signal_history ORDER BY id DESC LIMIT ?",
                (limit,),
            ).fetchall()
        finally:
            conn.close()

        history = []
        for row in rows:
            record = dict(row)
            record["reasons"] = json.loads(record["reasons"] or "[]")
            history.append(record)
        return history
