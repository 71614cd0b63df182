"""
Factor feature extraction.

Turns one asset's price (and optional volume) history into the 12-column
``FactorFeatures`` row the factor regressor is trained on:

  roc_20 / roc_60 / roc_120   last price vs the 20th / 60th / 120th-from-last
                              price, in %; a longer window falls back to the
                              next shorter one when the history is too short
  price_vs_ema20/50/200       last price vs EMA(20/50/200), in %
  volatility_20 / _60         annualised log-return volatility, in %
  drawdown                    max peak-to-trough decline over the history, in %
  volume_ratio                last volume / mean of the last 20; 1.0 without
                              20 volumes or with a zero average
  trend_consistency           share of the last 60 prices above their EMA20;
                              0.5 with fewer than 60 prices
  return_stability            1 / (1 + volatility_20)

Returns ``None`` (never raises) for a history shorter than
``min_history_points`` or containing a non-positive price.
"""

from __future__ import annotations

from typing import Optional, Sequence

from market_intel.ml.stats import (
    annualized_volatility,
    ema,
    max_drawdown,
    mean,
    rate_of_change,
)
from market_intel.models.factor import FactorFeatures

MIN_HISTORY_POINTS = 50
CONSISTENCY_WINDOW = 60
DEFAULT_CONSISTENCY = 0.5
DEFAULT_VOLUME_RATIO = 1.0


def extract_factor_features(
    prices: Sequence[float],
    volumes: Optional[Sequence[float]] = None,
    min_history_points: int = MIN_HISTORY_POINTS,
) -> Optional[FactorFeatures]:
    if len(prices) < max(min_history_points, 20) or any(not p > 0 for p in prices):
        return None

    last = prices[-1]
    roc_20 = rate_of_change(prices, 20)
    roc_60 = rate_of_change(prices, 60) if len(prices) >= 60 else roc_20
    roc_120 = rate_of_change(prices, 120) if len(prices) >= 120 else roc_60

    volatility_20 = annualized_volatility(prices[-20:])

    return FactorFeatures(
        roc_20=roc_20,
        roc_60=roc_60,
        roc_120=roc_120,
        price_vs_ema20=(last / ema(prices, 20) - 1) * 100,
        price_vs_ema50=(last / ema(prices, 50) - 1) * 100,
        price_vs_ema200=(last / ema(prices, 200) - 1) * 100,
        volatility_20=volatility_20,
        volatility_60=annualized_volatility(prices[-60:]),
        drawdown=max_drawdown(prices),
        volume_ratio=_volume_ratio(volumes),
        trend_consistency=_trend_consistency(prices),
        return_stability=1 / (1 + volatility_20),
    )


def _volume_ratio(volumes: Optional[Sequence[float]]) -> float:
    if not volumes or len(volumes) < 20:
        return DEFAULT_VOLUME_RATIO
    average = mean(volumes[-20:])
    if average <= 0:
        return DEFAULT_VOLUME_RATIO
    return volumes[-1] / average


def _trend_consistency(prices: Sequence[float]) -> float:
    if len(prices) < CONSISTENCY_WINDOW:
        return DEFAULT_CONSISTENCY
    window = prices[-CONSISTENCY_WINDOW:]
    ema_20 = ema(window, 20)
    return sum(1 for p in window if p > ema_20) / len(window)
