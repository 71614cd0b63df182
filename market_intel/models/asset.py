"""
Scanned-asset snapshot and portfolio models.

``AssetSnapshot`` is the explicit form of one scanner result row.  Upstream
scanners occasionally omit risk or momentum details; the defaults below stand
in for the missing values so one malformed asset never aborts a batch:

    volatility            20.0   (annualised %, a typical large-cap level)
    relative_volatility    1.0   (market-like beta proxy)
    max_drawdown           0.0
    rsi                   50.0   (neutral)
    roc_6m / roc_12m       0.0
    score_momentum /
    score_trend /
    score_risk             0.0

An explicit ``null`` for any of these fields is treated as missing.
``quant_score``, ``volume``, ``momentum``, ``correlation`` and
``price_change_60d`` stay optional: each consumer decides how to treat them.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, model_validator

from market_intel.models.regime import RegimeLabel, RegimePrediction

_DEFAULTED_FIELDS = (
    "volatility", "relative_volatility", "max_drawdown", "rsi",
    "roc_6m", "roc_12m", "score_momentum", "score_trend", "score_risk",
)


class AssetSnapshot(BaseModel):
    """One asset as produced by the upstream scanner.

    Attributes:
        ticker:               Asset identifier.
        name:                 Display name (falls back to ticker).
        sector:               Sector tag, if known.
        quant_score:          Composite 0–100 score computed upstream.
        quant_score_original: Pre-adjustment score, set by adjust_scores_batch().
        adaptive_multiplier:  Multiplier applied by adjust_scores_batch().
        signal_timestamp:     When the score was produced.
        volatility:           Annualised volatility in percent.
        relative_volatility:  Volatility relative to the benchmark.
        max_drawdown:         Maximum drawdown in percent (sign ignored).
        volume:               Average traded volume.
        momentum:             Momentum factor value.
        correlation:          Correlation to the benchmark.
        price_change_60d:     60-day price change in percent.
        roc_6m / roc_12m:     6- and 12-month rate of change in percent.
        rsi:                  Relative strength index (0–100).
        score_momentum / score_trend / score_risk: Upstream sub-scores (0–100).
    """

    model_config = ConfigDict(frozen=True)

    ticker: str
    name: Optional[str] = None
    sector: Optional[str] = None
    quant_score: Optional[float] = None
    quant_score_original: Optional[float] = None
    adaptive_multiplier: Optional[float] = None
    signal_timestamp: Optional[datetime] = None

    volatility: float = 20.0
    relative_volatility: float = 1.0
    max_drawdown: float = 0.0
    volume: Optional[float] = None
    momentum: Optional[float] = None
    correlation: Optional[float] = None
    price_change_60d: Optional[float] = None

    roc_6m: float = 0.0
    roc_12m: float = 0.0
    rsi: float = 50.0
    score_momentum: float = 0.0
    score_trend: float = 0.0
    score_risk: float = 0.0

    @model_validator(mode="before")
    @classmethod
    def drop_null_defaults(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {
                k: v for k, v in data.items()
                if not (k in _DEFAULTED_FIELDS and v is None)
            }
        return data

    @property
    def display_name(self) -> str:
        return self.name or self.ticker


class AssetPerformance(BaseModel):
    """Trailing realized performance of a held asset."""

    model_config = ConfigDict(frozen=True)

    return_60d: Optional[float] = None


class Position(BaseModel):
    """A held position.  ``weight`` is the fraction of portfolio value (0–1)."""

    model_config = ConfigDict(frozen=True)

    weight: float
    name: Optional[str] = None
    quant_score: Optional[float] = None
    sector: Optional[str] = None


class Portfolio(BaseModel):
    """Portfolio snapshot consumed by the recommendation stages.

    Attributes:
        positions:       Ticker → held position.
        target_weights:  Ticker → target weight (0–1); missing means 0.
        total_value:     Portfolio value in account currency.
        sector_exposure: Sector → weight (0–1).
    """

    model_config = ConfigDict(frozen=True)

    positions: dict[str, Position] = {}
    target_weights: dict[str, float] = {}
    total_value: float = 0.0
    sector_exposure: dict[str, float] = {}


class MarketSnapshot(BaseModel):
    """Market-wide context for one scan / rebalance cycle.

    Attributes:
        volatility:        Market volatility in percent, if known.
        assets:            Scanned universe.
        regime_prediction: Current regime prediction, if any.
        previous_regime:   Regime of the previous cycle, if any.
    """

    model_config = ConfigDict(frozen=True)

    volatility: Optional[float] = None
    assets: list[AssetSnapshot] = []
    regime_prediction: Optional[RegimePrediction] = None
    previous_regime: Optional[RegimeLabel] = None
