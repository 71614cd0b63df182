"""
Tests for factor feature extraction.

What we test
------------
1. Histories under 50 points, or with a non-positive price, give None.
2. Short histories reuse the next shorter ROC and the 0.5 consistency default.
3. Constant growth: no drawdown, zero volatility, return_stability 1.
4. volume_ratio is last volume over the 20-day mean; 1.0 without 20 volumes.
5. as_list follows FACTOR_FEATURE_COLS.
"""

from __future__ import annotations

import pytest

from market_intel.factors.features import extract_factor_features
from market_intel.models.factor import FACTOR_FEATURE_COLS


def _growth(n: int, rate: float = 0.01) -> list[float]:
    return [100.0 * (1 + rate) ** i for i in range(n)]


class TestRejectedHistories:
    def test_too_short(self):
        assert extract_factor_features(_growth(49)) is None

    @pytest.mark.parametrize("value", [0.0, -3.0])
    def test_non_positive_price(self, value):
        prices = _growth(150)
        prices[100] = value
        assert extract_factor_features(prices) is None


class TestShortHistoryFallbacks:
    def test_fifty_points(self):
        features = extract_factor_features(_growth(50))
        assert features.roc_60 == features.roc_20
        assert features.roc_120 == features.roc_20
        assert features.trend_consistency == 0.5

    def test_ninety_points_has_own_roc_60(self):
        features = extract_factor_features(_growth(90))
        assert features.roc_60 > features.roc_20
        assert features.roc_120 == features.roc_60


class TestConstantGrowth:
    def test_shape(self):
        features = extract_factor_features(_growth(250))
        assert features.roc_20 == pytest.approx((1.01 ** 19 - 1) * 100)
        assert features.drawdown == 0.0
        assert features.volatility_20 == pytest.approx(0.0, abs=1e-9)
        assert features.return_stability == pytest.approx(1.0)
        assert features.price_vs_ema20 > 0
        assert 0.0 <= features.trend_consistency <= 1.0

    def test_falling_series_drawdown(self):
        features = extract_factor_features(_growth(60, rate=-0.01))
        assert features.drawdown == pytest.approx((1 - 0.99 ** 59) * 100)
        assert features.momentum_score < 0


class TestVolume:
    def test_ratio_of_last_to_average(self):
        volumes = [100.0] * 19 + [200.0]
        features = extract_factor_features(_growth(60), volumes)
        assert features.volume_ratio == pytest.approx(200.0 / 105.0)

    @pytest.mark.parametrize("volumes", [None, [], [100.0] * 19, [0.0] * 30])
    def test_defaults(self, volumes):
        assert extract_factor_features(_growth(60), volumes).volume_ratio == 1.0


def test_as_list_follows_column_order():
    features = extract_factor_features(_growth(130))
    assert features.as_list() == [getattr(features, c) for c in FACTOR_FEATURE_COLS]
    assert len(features.as_list()) == 12
