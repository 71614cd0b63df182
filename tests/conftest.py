"""
Shared pytest fixtures for the market intelligence test suite.

Provides:
  - ``in_memory_db``: a fresh in-memory SQLite connection with the schema applied.
  - Factories for assets, price series, market data and ledger records.
"""

from __future__ import annotations

import math
import sqlite3
from datetime import datetime, timedelta, timezone
from typing import Callable, Generator

import pytest

from market_intel.adaptive.tracker import PerformanceTracker
from market_intel.db.schema import apply_schema
from market_intel.models.asset import AssetSnapshot
from market_intel.models.performance import PerformanceRecord
from market_intel.models.regime import MarketData, RegimeLabel

NOW = datetime(2026, 3, 2, 16, 0, 0, tzinfo=timezone.utc)


# ── Database fixture ──────────────────────────────────────────────────────────

@pytest.fixture
def in_memory_db() -> Generator[sqlite3.Connection, None, None]:
    """Yield a fresh in-memory SQLite connection with the schema applied."""
    conn = sqlite3.connect(":memory:")
    conn.row_factory = sqlite3.Row
    apply_schema(conn)
    yield conn
    conn.close()


# ── Price series ──────────────────────────────────────────────────────────────

def increasing_prices(n: int = 400, start: float = 100.0, step: float = 0.5) -> list[float]:
    return [start + step * i for i in range(n)]


def wavy_prices(n: int = 260, start: float = 100.0, drift: float = 0.0, phase: float = 0.0) -> list[float]:
    """Deterministic oscillating series with an optional linear drift."""
    return [start + drift * i + 3.0 * math.sin(i / 5.0 + phase) for i in range(n)]


@pytest.fixture
def rising_market() -> MarketData:
    return MarketData(benchmark_prices=increasing_prices())


# ── Assets ────────────────────────────────────────────────────────────────────

@pytest.fixture
def make_asset() -> Callable[..., AssetSnapshot]:
    def _make(ticker: str = "AAA", **fields) -> AssetSnapshot:
        return AssetSnapshot(ticker=ticker, **fields)
    return _make


# ── Ledger ────────────────────────────────────────────────────────────────────

def make_record(
    hit: bool,
    *,
    strategy: str = "momentum",
    regime: RegimeLabel = RegimeLabel.RISK_ON,
    days_ago: float = 1.0,
    asset: str = "AAA",
    score: float = 70.0,
    now: datetime = NOW,
) -> PerformanceRecord:
    return PerformanceRecord(
        asset_id=asset,
        signal_timestamp=now - timedelta(days=days_ago),
        score_at_signal=score,
        realized_return=5.0 if hit else -3.0,
        regime=regime,
        strategy_id=strategy,
    )


def seeded_tracker(
    hits: int,
    misses: int,
    *,
    strategy: str = "momentum",
    regime: RegimeLabel = RegimeLabel.RISK_ON,
    days_ago: float = 1.0,
) -> PerformanceTracker:
    tracker = PerformanceTracker()
    for i in range(hits):
        tracker.add_record(make_record(True, strategy=strategy, regime=regime,
                                       days_ago=days_ago, asset=f"H{i}"))
    for i in range(misses):
        tracker.add_record(make_record(False, strategy=strategy, regime=regime,
                                       days_ago=days_ago, asset=f"M{i}"))
    return tracker


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def record_factory() -> Callable[..., PerformanceRecord]:
    return make_record


@pytest.fixture
def tracker_factory() -> Callable[..., PerformanceTracker]:
    return seeded_tracker


@pytest.fixture
def price_factory():
    """Namespace of deterministic price-series builders."""
    class _Prices:
        increasing = staticmethod(increasing_prices)
        wavy = staticmethod(wavy_prices)
    return _Prices
