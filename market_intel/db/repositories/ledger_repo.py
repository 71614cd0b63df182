"""
Repository and ``TrackerStore`` implementation for the performance ledger.

``LedgerRepository`` maps ``PerformanceRecord`` to the
``performance_records`` table.  ``SqliteTrackerStore`` adapts it to the
``TrackerStore`` protocol used by ``load_tracker()`` / ``save_tracker()``:

  - ``load()`` returns ``None`` for an empty table (nothing saved yet).
  - ``save()`` replaces the stored ledger with the tracker's records inside
    one transaction, so an explicit ``prune_before()`` is persisted and a
    failed save leaves the previous ledger intact.  Every record becomes one
    row, including outcomes that share a (strategy, asset, signal time) key.
"""

from __future__ import annotations

import sqlite3
from typing import Iterable, Optional

from market_intel.adaptive.tracker import PerformanceTracker
from market_intel.db.connection import get_connection
from market_intel.db.repositories.base import BaseRepository
from market_intel.db.schema import apply_schema
from market_intel.models.performance import PerformanceRecord

_INSERT_SQL = """
INSERT INTO performance_records (
    strategy_id, asset_id, signal_timestamp,
    score_at_signal, realized_return, regime
) VALUES (?, ?, ?, ?, ?, ?);
"""


class LedgerRepository(BaseRepository):
    """Persist and query ``PerformanceRecord`` rows."""

    def insert_records(self, records: Iterable[PerformanceRecord]) -> int:
        """Insert records as new rows.

        Returns:
            Number of rows inserted.
        """
        before = self.conn.total_changes
        self.executemany(_INSERT_SQL, [_record_to_params(r) for r in records])
        return self.conn.total_changes - before

    def get_all(self) -> list[PerformanceRecord]:
        rows = self.fetchall(
            "SELECT * FROM performance_records ORDER BY record_id;"
        )
        return [_row_to_record(row) for row in rows]

    def count(self) -> int:
        row = self.fetchone("SELECT COUNT(*) AS n FROM performance_records;")
        return int(row["n"]) if row else 0

    def delete_all(self) -> None:
        self.execute("DELETE FROM performance_records;")


class SqliteTrackerStore:
    """``TrackerStore`` backed by a SQLite database file."""

    def __init__(
        self,
        db_path: str,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
    ) -> None:
        self.db_path = db_path
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms

    def load(self) -> Optional[PerformanceTracker]:
        with get_connection(self.db_path, self.wal_mode, self.busy_timeout_ms) as conn:
            apply_schema(conn)
            records = LedgerRepository(conn).get_all()
        if not records:
            return None
        return PerformanceTracker(records)

    def save(self, tracker: PerformanceTracker) -> None:
        with get_connection(self.db_path, self.wal_mode, self.busy_timeout_ms) as conn:
            apply_schema(conn)
            repo = LedgerRepository(conn)
            repo.delete_all()
            repo.insert_records(tracker.records)


def _record_to_params(record: PerformanceRecord) -> tuple:
    return (
        record.strategy_id,
        record.asset_id,
        record.signal_timestamp.isoformat(),
        record.score_at_signal,
        record.realized_return,
        record.regime.value,
    )


def _row_to_record(row: sqlite3.Row) -> PerformanceRecord:
    return PerformanceRecord(
        strategy_id=row["strategy_id"],
        asset_id=row["asset_id"],
        signal_timestamp=row["signal_timestamp"],
        score_at_signal=row["score_at_signal"],
        realized_return=row["realized_return"],
        regime=row["regime"],
    )
