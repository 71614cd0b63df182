"""
Tests for regime feature extraction.

What we test
------------
1. Fewer than 200 benchmark prices yields InsufficientData (never raises).
   So does a benchmark containing a zero or negative price.
2. A 400-point strictly increasing series gives positive trends, ema_alignment 1
   and the 0.5 breadth default with no peers.
3. Defaults: average correlation 0.5, volume trend 1.0 without enough volumes.
4. Breadth counts short peer series in the denominator only.
5. Correlation uses the mean absolute upper triangle.
6. Extraction is deterministic and the vector order is REGIME_FEATURE_COLS.
7. EMA periods follow the configured short / trend / long windows.
"""

from __future__ import annotations

import pytest

from market_intel.config import RegimeModelConfig
from market_intel.models.regime import REGIME_FEATURE_COLS, FeatureVector, MarketData
from market_intel.regime.features import InsufficientData, extract_regime_features


class TestInsufficientHistory:
    def test_short_series_returns_sentinel(self, price_factory):
        result = extract_regime_features(MarketData(benchmark_prices=price_factory.increasing(199)))
        assert isinstance(result, InsufficientData)
        assert "199" in result.reason

    def test_empty_market_data(self):
        assert isinstance(extract_regime_features(MarketData()), InsufficientData)

    def test_exactly_200_points_is_enough(self, price_factory):
        result = extract_regime_features(MarketData(benchmark_prices=price_factory.increasing(200)))
        assert isinstance(result, FeatureVector)

    @pytest.mark.parametrize("index, value", [(390, 0.0), (390, -5.0), (0, 0.0), (-1, -1.0)])
    def test_non_positive_price_returns_sentinel(self, price_factory, index, value):
        prices = price_factory.increasing(400)
        prices[index] = value
        result = extract_regime_features(MarketData(benchmark_prices=prices))
        assert isinstance(result, InsufficientData)
        assert "not positive" in result.reason


class TestRisingMarket:
    def test_trend_features_positive(self, rising_market):
        fv = extract_regime_features(rising_market)
        assert fv.trend_short > 0
        assert fv.trend_medium > 0
        assert fv.trend_long > 0
        assert fv.roc_20 > 0
        assert fv.roc_60 > fv.roc_20

    def test_ema_alignment_bullish(self, rising_market):
        assert extract_regime_features(rising_market).ema_alignment == 1.0

    def test_defaults_without_peers_volumes_or_correlations(self, rising_market):
        fv = extract_regime_features(rising_market)
        assert fv.breadth_score == 0.5
        assert fv.avg_correlation == 0.5
        assert fv.volume_trend == 1.0

    def test_falling_market_alignment_bearish(self, price_factory):
        prices = list(reversed(price_factory.increasing()))
        fv = extract_regime_features(MarketData(benchmark_prices=prices))
        assert fv.ema_alignment == -1.0
        assert fv.trend_short < 0


class TestOptionalInputs:
    def test_breadth_counts_short_peers_in_denominator(self, price_factory):
        market = MarketData(
            benchmark_prices=price_factory.increasing(),
            asset_prices=[
                price_factory.increasing(50),                  # above EMA20
                list(reversed(price_factory.increasing(50))),  # below EMA20
                [1.0, 2.0, 3.0],                               # too short
                price_factory.increasing(30),                  # above EMA20
            ],
        )
        assert extract_regime_features(market).breadth_score == pytest.approx(0.5)

    def test_average_absolute_upper_triangle(self, price_factory):
        market = MarketData(
            benchmark_prices=price_factory.increasing(),
            correlations=[
                [1.0, 0.8, -0.4],
                [0.8, 1.0, 0.0],
                [-0.4, 0.0, 1.0],
            ],
        )
        assert extract_regime_features(market).avg_correlation == pytest.approx(0.4)

    def test_volume_trend_ratio(self, price_factory):
        volumes = [100.0] * 40 + [200.0] * 20
        market = MarketData(benchmark_prices=price_factory.increasing(), volumes=volumes)
        # recent 200 / historical (40*100 + 20*200)/60
        assert extract_regime_features(market).volume_trend == pytest.approx(200 / (8000 / 60))

    def test_short_volume_series_defaults(self, price_factory):
        market = MarketData(benchmark_prices=price_factory.increasing(), volumes=[1.0] * 59)
        assert extract_regime_features(market).volume_trend == 1.0


class TestConfiguredWindows:
    def test_shorter_long_window_tracks_price_closer(self, rising_market):
        default = extract_regime_features(rising_market)
        custom = extract_regime_features(
            rising_market,
            RegimeModelConfig(trend_window=40, long_window=100, min_history_points=200),
        )
        assert custom.trend_long < default.trend_long
        assert custom.trend_medium < default.trend_medium
        assert custom.trend_short == pytest.approx(default.trend_short)


class TestDeterminism:
    def test_repeated_calls_identical(self, price_factory):
        market = MarketData(benchmark_prices=price_factory.wavy(300, drift=0.1))
        assert extract_regime_features(market) == extract_regime_features(market)

    def test_as_list_follows_column_order(self, rising_market):
        fv = extract_regime_features(rising_market)
        assert len(fv.as_list()) == len(REGIME_FEATURE_COLS) == 12
        assert fv.as_list()[3] == fv.ema_alignment
        assert fv.as_list()[-1] == fv.volume_trend
