"""
Regime classification models.

``RegimeLabel`` is the three-state market classification.  Its string value is
the external slug (what the ledger stores and the CLI prints); ``code`` is the
ordinal class index the ensemble is trained on.  Keep the two in sync: the
ensemble's round-and-clamp voting relies on risk_off < neutral < risk_on.

``FeatureVector`` fixes the column order of the regime feature matrix.
``REGIME_FEATURE_COLS`` is the single source of that order for both training
data preparation and live inference.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator


class RegimeLabel(str, Enum):
    """Discrete market state."""

    RISK_OFF = "risk_off"
    NEUTRAL  = "neutral"
    RISK_ON  = "risk_on"

    @property
    def code(self) -> int:
        return _LABEL_TO_CODE[self]

    @classmethod
    def from_code(cls, code: int) -> "RegimeLabel":
        return _CODE_TO_LABEL[code]


_LABEL_TO_CODE: dict[RegimeLabel, int] = {
    RegimeLabel.RISK_OFF: 0,
    RegimeLabel.NEUTRAL:  1,
    RegimeLabel.RISK_ON:  2,
}
_CODE_TO_LABEL: dict[int, RegimeLabel] = {v: k for k, v in _LABEL_TO_CODE.items()}

REGIME_FEATURE_COLS: tuple[str, ...] = (
    "trend_short",
    "trend_medium",
    "trend_long",
    "ema_alignment",
    "vol_20",
    "vol_60",
    "vol_ratio",
    "roc_20",
    "roc_60",
    "breadth_score",
    "avg_correlation",
    "volume_trend",
)


class MarketData(BaseModel):
    """Raw inputs to regime feature extraction.

    Defaults are the graceful-degradation values: no peers means breadth 0.5,
    no correlation matrix means average correlation 0.5, no volumes means a
    volume trend of 1.0.

    Attributes:
        benchmark_prices: Benchmark closes, oldest first.  At least 200 are
            needed for extraction.
        asset_prices:     Optional peer close series, oldest first.
        volumes:          Optional benchmark volume series, oldest first.
        correlations:     Optional square pairwise correlation matrix.
    """

    model_config = ConfigDict(frozen=True)

    benchmark_prices: list[float] = []
    asset_prices: list[list[float]] = []
    volumes: Optional[list[float]] = None
    correlations: Optional[list[list[float]]] = None


class FeatureVector(BaseModel):
    """The 12 regime features, in ``REGIME_FEATURE_COLS`` order."""

    model_config = ConfigDict(frozen=True)

    trend_short: float
    trend_medium: float
    trend_long: float
    ema_alignment: float
    vol_20: float
    vol_60: float
    vol_ratio: float
    roc_20: float
    roc_60: float
    breadth_score: float
    avg_correlation: float
    volume_trend: float

    def as_list(self) -> list[float]:
        """Feature values in the fixed training/inference column order."""
        return [getattr(self, col) for col in REGIME_FEATURE_COLS]


class RegimePrediction(BaseModel):
    """Output of ``predict_regime()``.

    When ``error`` is set the prediction is a neutral fallback (confidence 0,
    near-uniform probabilities) and must not drive decisions.

    Attributes:
        regime:        Highest-probability regime.
        confidence:    Probability of ``regime`` (0–1).
        probabilities: Probability per regime slug; sums to 1.
        features:      Extracted features, or ``None`` on fallback.
        timestamp:     UTC time the prediction was made.
        error:         Fallback reason, or ``None`` for a real prediction.
    """

    model_config = ConfigDict(frozen=True)

    regime: RegimeLabel
    confidence: float
    probabilities: dict[str, float]
    features: Optional[FeatureVector] = None
    timestamp: datetime
    error: Optional[str] = None

    @property
    def is_fallback(self) -> bool:
        return self.error is not None

    @field_validator("confidence")
    @classmethod
    def validate_confidence(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError(f"confidence must be in [0, 1], got {v}.")
        return v


class RegimeTrainingSample(BaseModel):
    """A historical market snapshot labelled with the regime that followed."""

    model_config = ConfigDict(frozen=True)

    market_data: MarketData
    regime: RegimeLabel
