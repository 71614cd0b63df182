"""
Regime feature extraction.

Turns a ``MarketData`` snapshot into the 12-column ``FeatureVector`` the regime
classifier is trained on.  Extraction is deterministic and never raises for
short or unusable inputs: a benchmark series below ``min_history_points``, or
one containing a non-positive price, produces an ``InsufficientData`` value
the caller must handle.

Feature definitions (all computed on the benchmark unless noted):

  trend_short/medium/long  last price vs the EMA over short_window /
                           trend_window / long_window (20/50/200), in percent
  ema_alignment            +1 iff the three EMAs are in descending order
                           (short > trend > long), else -1
  vol_20 / vol_60          annualised log-return volatility of the last
                           20 / 60 prices, in percent
  vol_ratio                vol_20 / (vol_60 + 0.01)
  roc_20 / roc_60          last price vs the 20th / 60th-from-last price, in %
  breadth_score            share of peers (with >= 20 points) trading above
                           their own EMA20; 0.5 with no peers
  avg_correlation          mean |rho| over the upper triangle of the peer
                           correlation matrix; 0.5 when absent
  volume_trend             mean of last 20 volumes / mean of last 60;
                           1.0 with fewer than 60 volumes
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence, Union

from market_intel.config import RegimeModelConfig
from market_intel.ml.stats import annualized_volatility, ema, mean, rate_of_change
from market_intel.models.regime import FeatureVector, MarketData

DEFAULT_BREADTH = 0.5
DEFAULT_CORRELATION = 0.5
DEFAULT_VOLUME_TREND = 1.0


@dataclass(frozen=True)
class InsufficientData:
    """Returned instead of a ``FeatureVector`` when extraction is impossible."""

    reason: str


def extract_regime_features(
    market_data: MarketData,
    config: Optional[RegimeModelConfig] = None,
) -> Union[FeatureVector, InsufficientData]:
    """Compute the regime feature vector for one market snapshot.

    Args:
        market_data: Benchmark prices plus optional peers, volumes and
                     correlation matrix.
        config:      Window settings; defaults to ``RegimeModelConfig()``.

    Returns:
        ``FeatureVector``, or ``InsufficientData`` when the benchmark history is
        shorter than ``config.min_history_points`` or holds a price <= 0.
    """
    config = config or RegimeModelConfig()
    prices = market_data.benchmark_prices

    if len(prices) < config.min_history_points:
        return InsufficientData(
            reason=(
                f"benchmark has {len(prices)} prices; "
                f"{config.min_history_points} required"
            )
        )

    bad = next((i for i, p in enumerate(prices) if not p > 0), None)
    if bad is not None:
        return InsufficientData(
            reason=f"benchmark price at index {bad} is not positive ({prices[bad]})"
        )

    last = prices[-1]
    ema_short = ema(prices, config.short_window)
    ema_medium = ema(prices, config.trend_window)
    ema_long = ema(prices, config.long_window)

    vol_20 = annualized_volatility(prices[-config.short_window:])
    vol_60 = annualized_volatility(prices[-config.medium_window:])

    return FeatureVector(
        trend_short=(last / ema_short - 1) * 100,
        trend_medium=(last / ema_medium - 1) * 100,
        trend_long=(last / ema_long - 1) * 100,
        ema_alignment=1.0 if ema_short > ema_medium > ema_long else -1.0,
        vol_20=vol_20,
        vol_60=vol_60,
        vol_ratio=vol_20 / (vol_60 + 0.01),
        roc_20=rate_of_change(prices, config.short_window),
        roc_60=rate_of_change(prices, config.medium_window),
        breadth_score=_breadth(market_data.asset_prices, config.short_window),
        avg_correlation=_average_correlation(market_data.correlations),
        volume_trend=_volume_trend(
            market_data.volumes, config.short_window, config.medium_window
        ),
    )


def _breadth(peers: Sequence[Sequence[float]], window: int) -> float:
    if not peers:
        return DEFAULT_BREADTH
    above = sum(
        1 for series in peers
        if len(series) >= window and series[-1] > ema(series, window)
    )
    # Short peers count in the denominator but can never be "above".
    return above / len(peers)


def _average_correlation(matrix: Optional[Sequence[Sequence[float]]]) -> float:
    if not matrix:
        return DEFAULT_CORRELATION
    upper = [
        abs(row[j])
        for i, row in enumerate(matrix)
        for j in range(i + 1, len(row))
    ]
    return mean(upper) if upper else DEFAULT_CORRELATION


def _volume_trend(
    volumes: Optional[Sequence[float]], recent: int, historical: int
) -> float:
    if not volumes or len(volumes) < historical:
        return DEFAULT_VOLUME_TREND
    historical_avg = mean(volumes[-historical:])
    if historical_avg <= 0:
        return DEFAULT_VOLUME_TREND
    return mean(volumes[-recent:]) / historical_avg
