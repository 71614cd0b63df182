"""
SQLite schema DDL for the performance ledger.

Every statement uses ``IF NOT EXISTS`` so ``apply_schema()`` is idempotent.

Rows mirror the in-memory ledger one to one: several outcomes may share a
(strategy_id, asset_id, signal_timestamp) key and are all kept.
"""

from __future__ import annotations

import logging
import sqlite3

logger = logging.getLogger(__name__)

_DDL_PERFORMANCE_RECORDS = """
CREATE TABLE IF NOT EXISTS performance_records (
    record_id        INTEGER PRIMARY KEY AUTOINCREMENT,
    strategy_id      TEXT    NOT NULL,
    asset_id         TEXT    NOT NULL,
    signal_timestamp TEXT    NOT NULL,
    score_at_signal  REAL    NOT NULL,
    realized_return  REAL    NOT NULL,
    regime           TEXT    NOT NULL
        CHECK (regime IN ('risk_off', 'neutral', 'risk_on')),
    created_at       TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))
);
"""

_DDL_PERFORMANCE_RECORDS_INDEXES = """
CREATE INDEX IF NOT EXISTS idx_perf_strategy_regime
    ON performance_records(strategy_id, regime);
CREATE INDEX IF NOT EXISTS idx_perf_signal_ts
    ON performance_records(signal_timestamp);
"""

_ALL_DDL: list[str] = [
    _DDL_PERFORMANCE_RECORDS,
    _DDL_PERFORMANCE_RECORDS_INDEXES,
]

ALL_TABLE_NAMES = [
    "performance_records",
]


def apply_schema(conn: sqlite3.Connection) -> None:
    """Apply all DDL statements to ``conn``.  Safe to call repeatedly."""
    for ddl in _ALL_DDL:
        for statement in _split_ddl(ddl):
            conn.execute(statement)
    conn.commit()
    logger.debug("Schema applied: %d table(s).", len(ALL_TABLE_NAMES))


def _split_ddl(ddl: str) -> list[str]:
    return [s.strip() for s in ddl.split(";") if s.strip()]


def get_existing_tables(conn: sqlite3.Connection) -> list[str]:
    rows = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name;"
    ).fetchall()
    return [row["name"] for row in rows]
