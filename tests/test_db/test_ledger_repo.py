"""Tests for the performance ledger repository and its SQLite tracker store."""

from __future__ import annotations

from datetime import timedelta

import pytest

from market_intel.adaptive.persistence import load_tracker, save_tracker
from market_intel.adaptive.tracker import PerformanceTracker
from market_intel.db.repositories.ledger_repo import LedgerRepository, SqliteTrackerStore
from market_intel.models.regime import RegimeLabel


class TestLedgerRepository:
    def test_insert_and_read_back(self, in_memory_db, record_factory):
        repo = LedgerRepository(in_memory_db)
        records = [
            record_factory(True, asset="AAA"),
            record_factory(False, asset="BBB", regime=RegimeLabel.RISK_OFF),
        ]
        assert repo.insert_records(records) == 2
        assert repo.count() == 2
        assert repo.get_all() == records

    def test_repeated_signal_key_kept(self, in_memory_db, record_factory):
        repo = LedgerRepository(in_memory_db)
        record = record_factory(True, asset="AAA")
        repo.insert_records([record])
        assert repo.insert_records([record]) == 1
        assert repo.count() == 2

    def test_same_asset_different_strategy_kept(self, in_memory_db, record_factory):
        repo = LedgerRepository(in_memory_db)
        repo.insert_records([
            record_factory(True, asset="AAA", strategy="momentum"),
            record_factory(True, asset="AAA", strategy="value"),
        ])
        assert repo.count() == 2

    def test_delete_all(self, in_memory_db, tracker_factory):
        repo = LedgerRepository(in_memory_db)
        repo.insert_records(tracker_factory(2, 2).records)
        repo.delete_all()
        assert repo.count() == 0

    def test_timestamps_round_trip_as_utc(self, in_memory_db, record_factory, now):
        repo = LedgerRepository(in_memory_db)
        repo.insert_records([record_factory(True, days_ago=0)])
        [stored] = repo.get_all()
        assert stored.signal_timestamp == now
        assert stored.signal_timestamp.tzinfo is not None


class TestSqliteTrackerStore:
    def test_empty_database_loads_none(self, tmp_path):
        store = SqliteTrackerStore(str(tmp_path / "ledger.db"))
        assert store.load() is None
        assert len(load_tracker(store)) == 0

    def test_round_trip(self, tmp_path, tracker_factory):
        store = SqliteTrackerStore(str(tmp_path / "ledger.db"))
        tracker = tracker_factory(4, 3)
        assert save_tracker(store, tracker)
        assert load_tracker(store).records == tracker.records

    def test_outcomes_sharing_signal_key_survive_reload(self, tmp_path, record_factory):
        store = SqliteTrackerStore(str(tmp_path / "ledger.db"))
        first = record_factory(True, asset="AAA")
        tracker = PerformanceTracker([
            first,
            first.model_copy(update={"realized_return": -3.0}),
            first.model_copy(update={"realized_return": 2.0}),
        ])
        before = tracker.calculate_hit_rate().hit_rate

        assert save_tracker(store, tracker)
        reloaded = load_tracker(store)

        assert len(reloaded) == 3
        assert [r.realized_return for r in reloaded.records] == [5.0, -3.0, 2.0]
        assert reloaded.calculate_hit_rate().hit_rate == pytest.approx(before)

    def test_repeated_saves_do_not_duplicate(self, tmp_path, tracker_factory):
        store = SqliteTrackerStore(str(tmp_path / "ledger.db"))
        tracker = tracker_factory(2, 1)
        save_tracker(store, tracker)
        save_tracker(store, tracker)
        assert len(load_tracker(store)) == 3

    def test_prune_is_persisted(self, tmp_path, record_factory, now):
        store = SqliteTrackerStore(str(tmp_path / "ledger.db"))
        tracker = PerformanceTracker([
            record_factory(True, asset="OLD", days_ago=200),
            record_factory(True, asset="NEW", days_ago=1),
        ])
        save_tracker(store, tracker)

        tracker.prune_before(now - timedelta(days=180))
        save_tracker(store, tracker)

        reloaded = load_tracker(store)
        assert [r.asset_id for r in reloaded.records] == ["NEW"]

    def test_unwritable_path_save_returns_false(self, tmp_path, tracker_factory):
        blocker = tmp_path / "not_a_dir"
        blocker.write_text("")
        store = SqliteTrackerStore(str(blocker / "ledger.db"))
        assert save_tracker(store, tracker_factory(1, 0)) is False
