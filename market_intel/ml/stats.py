"""
Small descriptive-statistics helpers shared by the regime, adaptive and
anomaly layers.

Everything here works on plain Python sequences and returns floats; there is
no dependency on a numerical library.  Dispersion is always the *population*
form (divide by n), matching how the feature extractor and the z-score
detectors were calibrated.
"""

from __future__ import annotations

import math
from typing import Sequence

TRADING_DAYS_PER_YEAR = 252
DEFAULT_VOLATILITY = 10.0


def mean(values: Sequence[float]) -> float:
    """Arithmetic mean; 0.0 for an empty sequence."""
    if not values:
        return 0.0
    return sum(values) / len(values)


def pstdev(values: Sequence[float]) -> float:
    """Population standard deviation; 0.0 for fewer than one value."""
    if not values:
        return 0.0
    mu = mean(values)
    return math.sqrt(sum((v - mu) ** 2 for v in values) / len(values))


def z_scores(values: Sequence[float]) -> list[float]:
    """Standardise ``values``; all zeros when the spread is zero."""
    if not values:
        return []
    mu = mean(values)
    sd = pstdev(values)
    if sd == 0:
        return [0.0] * len(values)
    return [(v - mu) / sd for v in values]


def normalize(values: Sequence[float]) -> list[float]:
    """Min-max scale to [0, 1]; a flat series maps to 0.5."""
    if not values:
        return []
    lo, hi = min(values), max(values)
    span = hi - lo
    if span == 0:
        return [0.5] * len(values)
    return [(v - lo) / span for v in values]


def correlation(a: Sequence[float], b: Sequence[float]) -> float:
    """Pearson correlation; 0.0 for mismatched, empty or constant inputs."""
    if len(a) != len(b) or not a:
        return 0.0
    mu_a, mu_b = mean(a), mean(b)
    num = ss_a = ss_b = 0.0
    for x, y in zip(a, b):
        dx, dy = x - mu_a, y - mu_b
        num += dx * dy
        ss_a += dx * dx
        ss_b += dy * dy
    denom = math.sqrt(ss_a * ss_b)
    return 0.0 if denom == 0 else num / denom


def ema(prices: Sequence[float], period: int) -> float:
    """Exponential moving average of the full series, seeded with the first price.

    Returns the last price when the series is shorter than ``period``.
    """
    if len(prices) < period:
        return prices[-1]
    k = 2.0 / (period + 1)
    value = prices[0]
    for price in prices[1:]:
        value = price * k + value * (1 - k)
    return value


def annualized_volatility(prices: Sequence[float]) -> float:
    """Annualised volatility of log returns, in percent.

    Returns ``DEFAULT_VOLATILITY`` when fewer than two prices are available.
    """
    if len(prices) < 2:
        return DEFAULT_VOLATILITY
    returns = [math.log(curr / prev) for prev, curr in zip(prices, prices[1:])]
    mu = mean(returns)
    variance = sum((r - mu) ** 2 for r in returns) / len(returns)
    return math.sqrt(variance * TRADING_DAYS_PER_YEAR) * 100.0


def percentile_rank(value: float, population: Sequence[float]) -> float:
    """Fraction of ``population`` strictly below ``value`` (0.0 when empty)."""
    if not population:
        return 0.0
    return sum(1 for p in population if p < value) / len(population)


def clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def rate_of_change(prices: Sequence[float], lookback: int) -> float:
    """Percent change of the last price vs the ``lookback``-th-from-last price."""
    return (prices[-1] / prices[-lookback] - 1) * 100


def max_drawdown(prices: Sequence[float]) -> float:
    """Largest peak-to-trough decline, in percent (0.0 for a rising series)."""
    worst = 0.0
    peak = prices[0] if prices else 0.0
    for price in prices:
        peak = max(peak, price)
        if peak > 0:
            worst = max(worst, (peak - price) / peak * 100)
    return worst
