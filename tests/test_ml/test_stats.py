"""
Tests for the shared statistics helpers.

What we test
------------
1. z_scores uses the population standard deviation and is all zeros for flat input.
2. correlation handles perfect, inverse and degenerate inputs.
3. ema returns the last price for short series and lags a rising series.
4. annualized_volatility defaults to 10 below two prices and is 0 for constant growth.
. rate_of_change and max_drawdown in percent.
"""

from __future__ import annotations

import math

import pytest

from market_intel.ml.stats import (
    DEFAULT_VOLATILITY,
    annualized_volatility,
    clamp,
    correlation,
    ema,
    max_drawdown,
    mean,
    normalize,
    percentile_rank,
    pstdev,
    rate_of_change,
    z_scores,
)


class TestDispersion:
    def test_population_std(self):
        assert pstdev([2, 4, 4, 4, 5, 5, 7, 9]) == pytest.approx(2.0)

    def test_z_scores_population(self):
        z = z_scores([2, 4, 4, 4, 5, 5, 7, 9])
        assert z[0] == pytest.approx(-1.5)
        assert z[-1] == pytest.approx(2.0)

    def test_z_scores_flat_input_all_zero(self):
        assert z_scores([3.0, 3.0, 3.0]) == [0.0, 0.0, 0.0]

    def test_empty_inputs(self):
        assert mean([]) == 0.0
        assert z_scores([]) == []
        assert normalize([]) == []

    def test_normalize_flat_maps_to_half(self):
        assert normalize([5, 5]) == [0.5, 0.5]
        assert normalize([0, 5, 10]) == [0.0, 0.5, 1.0]


class TestCorrelation:
    def test_perfect_positive(self):
        assert correlation([1, 2, 3], [2, 4, 6]) == pytest.approx(1.0)

    def test_perfect_negative(self):
        assert correlation([1, 2, 3], [3, 2, 1]) == pytest.approx(-1.0)

    @pytest.mark.parametrize("a, b", [
        ([1, 2], [1, 2, 3]),
        ([], []),
        ([1, 1, 1], [1, 2, 3]),
    ])
    def test_degenerate_inputs_return_zero(self, a, b):
        assert correlation(a, b) == 0.0


class TestEma:
    def test_short_series_returns_last_price(self):
        assert ema([1.0, 2.0, 3.0], 20) == 3.0

    def test_rising_series_lags_price(self):
        prices = [float(i) for i in range(1, 101)]
        assert ema(prices, 20) < prices[-1]
        assert ema(prices, 20) > ema(prices, 50)


class TestVolatility:
    def test_default_for_short_series(self):
        assert annualized_volatility([100.0]) == DEFAULT_VOLATILITY

    def test_constant_growth_has_zero_volatility(self):
        prices = [100.0 * 1.01 ** i for i in range(30)]
        assert annualized_volatility(prices) == pytest.approx(0.0, abs=1e-9)

    def test_alternating_returns(self):
        prices = [100.0, 110.0, 100.0, 110.0, 100.0]
        r = math.log(1.1)
        expected = r * math.sqrt(252) * 100
        assert annualized_volatility(prices) == pytest.approx(expected)


def test_percentile_rank_counts_strictly_lower():
    assert percentile_rank(3, [1, 2, 3, 4]) == 0.5
    assert percentile_rank(3, []) == 0.0


def test_clamp():
    assert clamp(120, 0, 100) == 100
    assert clamp(-5, 0, 100) == 0
    assert clamp(42, 0, 100) == 42


def test_rate_of_change_uses_nth_from_last():
    prices = [50.0, 80.0, 100.0, 110.0]
    assert rate_of_change(prices, 3) == pytest.approx(37.5)
    assert rate_of_change(prices, 1) == 0.0


class TestMaxDrawdown:
    def test_rising_series_has_none(self):
        assert max_drawdown([1.0, 2.0, 3.0]) == 0.0

    def test_deepest_decline_from_running_peak(self):
        assert max_drawdown([100.0, 120.0, 90.0, 130.0, 104.0]) == pytest.approx(25.0)

    def test_empty(self):
        assert max_drawdown([]) == 0.0
