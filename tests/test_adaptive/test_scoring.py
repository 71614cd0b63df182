"""
Tests for adaptive score adjustment.

What we test
------------
1. Empty ledger → multiplier 1.0, score unchanged.
2. Fewer than 10 matching records → 1.0 / insufficient_data.
3. 75% hit rate raises the score; 25% lowers it; tier boundaries.
4. Only records in [signal_ts - 60d, signal_ts] for the same strategy and
   regime count.
5. Decay weighting favours recent outcomes, floored at 0.5.
6. Clamping to [0, 100].
7. Batch adjustment returns copies and keeps the original score.
8. Strategy report notes.
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from market_intel.adaptive.scoring import (
    INSUFFICIENT_DATA,
    adjust_score_adaptively,
    adjust_scores_batch,
    calculate_adaptive_multiplier,
    get_strategy_performance_report,
    record_decay_weight,
)
from market_intel.adaptive.tracker import PerformanceTracker
from market_intel.config import AdaptiveScoringConfig
from market_intel.models.regime import RegimeLabel

RISK_ON = RegimeLabel.RISK_ON


# ── Multiplier ────────────────────────────────────────────────────────────────

class TestMultiplier:
    def test_empty_ledger_is_identity(self, now):
        result = adjust_score_adaptively(70.0, "momentum", RISK_ON, now, PerformanceTracker())
        assert result.adjusted_score == 70.0
        assert result.multiplier == 1.0
        assert result.category == INSUFFICIENT_DATA
        assert result.hit_rate is None

    def test_too_few_samples(self, tracker_factory, now):
        result = calculate_adaptive_multiplier(tracker_factory(9, 0), "momentum", RISK_ON, now)
        assert result.multiplier == 1.0
        assert result.sample_size == 9
        assert result.category == INSUFFICIENT_DATA

    def test_high_hit_rate_raises_score(self, tracker_factory, now):
        result = adjust_score_adaptively(70.0, "momentum", RISK_ON, now, tracker_factory(15, 5))
        assert result.multiplier == 1.25
        assert result.category == "excellent"
        assert result.adjusted_score == pytest.approx(87.5)
        assert result.adjusted_score > 70.0

    def test_low_hit_rate_lowers_score(self, tracker_factory, now):
        result = adjust_score_adaptively(70.0, "momentum", RISK_ON, now, tracker_factory(5, 15))
        assert result.multiplier == 0.70
        assert result.category == "very_poor"
        assert result.adjusted_score < 70.0

    @pytest.mark.parametrize("hits, misses, multiplier, category", [
        (7, 3, 1.25, "excellent"),
        (6, 4, 1.10, "good"),
        (5, 5, 1.00, "neutral"),
        (4, 6, 0.85, "poor"),
        (3, 7, 0.70, "very_poor"),
    ])
    def test_tier_boundaries(self, tracker_factory, now, hits, misses, multiplier, category):
        result = calculate_adaptive_multiplier(
            tracker_factory(hits, misses, days_ago=0), "momentum", RISK_ON, now
        )
        assert result.multiplier == multiplier
        assert result.category == category

    def test_other_strategy_or_regime_ignored(self, tracker_factory, now):
        tracker = tracker_factory(15, 5)
        assert calculate_adaptive_multiplier(tracker, "value", RISK_ON, now).multiplier == 1.0
        assert calculate_adaptive_multiplier(
            tracker, "momentum", RegimeLabel.RISK_OFF, now
        ).multiplier == 1.0


class TestLookbackWindow:
    def test_records_older_than_window_excluded(self, tracker_factory, now):
        tracker = tracker_factory(15, 5, days_ago=61)
        assert calculate_adaptive_multiplier(tracker, "momentum", RISK_ON, now).sample_size == 0

    def test_records_after_signal_excluded(self, tracker_factory, now):
        tracker = tracker_factory(15, 5, days_ago=1)
        earlier_signal = now - timedelta(days=2)
        result = calculate_adaptive_multiplier(tracker, "momentum", RISK_ON, earlier_signal)
        assert result.sample_size == 0

    def test_window_relative_to_signal_time(self, tracker_factory, now):
        tracker = tracker_factory(15, 5, days_ago=100)
        old_signal = now - timedelta(days=90)
        result = calculate_adaptive_multiplier(tracker, "momentum", RISK_ON, old_signal)
        assert result.sample_size == 20
        assert result.multiplier == 1.25


# ── Decay ─────────────────────────────────────────────────────────────────────

class TestDecay:
    @pytest.mark.parametrize("age_days, weight", [
        (0, 1.0),
        (10, 0.5),
        (30, 0.5),   # floor
    ])
    def test_weight(self, now, age_days, weight):
        assert record_decay_weight(now - timedelta(days=age_days), now) == pytest.approx(weight)

    def test_half_half_life(self, now):
        assert record_decay_weight(now - timedelta(days=5), now) == pytest.approx(0.5 ** 0.5)

    def test_disabled(self, now):
        config = AdaptiveScoringConfig(decay_enabled=False)
        assert record_decay_weight(now - timedelta(days=40), now, config) == 1.0

    def test_recent_hits_outweigh_old_misses(self, record_factory, now):
        tracker = PerformanceTracker(
            [record_factory(True, days_ago=0, asset=f"H{i}") for i in range(10)]
            + [record_factory(False, days_ago=20, asset=f"M{i}") for i in range(10)]
        )
        result = calculate_adaptive_multiplier(tracker, "momentum", RISK_ON, now)
        # 10 / (10 + 10 * 0.5)
        assert result.hit_rate == pytest.approx(2 / 3)
        assert result.category == "good"

        flat = calculate_adaptive_multiplier(
            tracker, "momentum", RISK_ON, now, AdaptiveScoringConfig(decay_enabled=False)
        )
        assert flat.hit_rate == pytest.approx(0.5)
        assert flat.category == "neutral"


# ── Adjustment ────────────────────────────────────────────────────────────────

class TestAdjustment:
    def test_clamped_to_max(self, tracker_factory, now):
        result = adjust_score_adaptively(95.0, "momentum", RISK_ON, now, tracker_factory(15, 5))
        assert result.adjusted_score == 100.0

    def test_zero_stays_zero(self, tracker_factory, now):
        result = adjust_score_adaptively(0.0, "momentum", RISK_ON, now, tracker_factory(15, 5))
        assert result.adjusted_score == 0.0

    def test_batch_returns_copies(self, tracker_factory, make_asset, now):
        assets = [
            make_asset("AAA", quant_score=60.0),
            make_asset("BBB", quant_score=None),
        ]
        adjusted = adjust_scores_batch(assets, "momentum", RISK_ON, tracker_factory(15, 5), now=now)

        assert assets[0].quant_score == 60.0
        assert assets[0].quant_score_original is None
        assert adjusted[0].quant_score == pytest.approx(75.0)
        assert adjusted[0].quant_score_original == 60.0
        assert adjusted[0].adaptive_multiplier == 1.25
        assert adjusted[1] is assets[1]

    def test_batch_uses_asset_signal_timestamp(self, tracker_factory, make_asset, now):
        tracker = tracker_factory(15, 5, days_ago=1)
        asset = make_asset("AAA", quant_score=60.0, signal_timestamp=now - timedelta(days=90))
        [adjusted] = adjust_scores_batch([asset], "momentum", RISK_ON, tracker, now=now)
        assert adjusted.adaptive_multiplier == 1.0
        assert adjusted.quant_score == 60.0


# ── Report ────────────────────────────────────────────────────────────────────

class TestStrategyReport:
    def test_empty_ledger_report(self, now):
        report = get_strategy_performance_report(PerformanceTracker(), "momentum", now=now)
        assert report.overall.sample_size == 0
        kinds = [n.kind for n in report.notes]
        assert kinds == ["info"]
        assert report.to_dict()["timestamp"] == now.isoformat()

    def test_strong_strategy_notes(self, tracker_factory, now):
        report = get_strategy_performance_report(tracker_factory(15, 5), "momentum", now=now)
        kinds = [n.kind for n in report.notes]
        assert "success" in kinds
        # constant scores carry no information about returns
        assert "warning" in kinds
        assert "info" not in kinds

    def test_poor_regime_warning(self, tracker_factory, now):
        report = get_strategy_performance_report(
            tracker_factory(2, 10, regime=RegimeLabel.RISK_OFF), "momentum", now=now
        )
        messages = [n.message for n in report.notes]
        assert any("risk_off" in m for m in messages)
        assert report.to_dict()["by_regime"]["risk_off"]["multiplier_recommendation"] == "decrease"
