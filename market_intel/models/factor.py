"""
Factor weighting models.

``FactorName`` lists the five scoring factors whose weights the factor
optimizer learns.  ``FACTOR_FEATURE_COLS`` fixes the column order of the
factor feature matrix, and ``FACTOR_FEATURE_GROUPS`` maps each feature to the
factor its importance is credited to.  The value factor has no price-derived
feature; its weight comes from a configured prior.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator


class FactorName(str, Enum):
    MOMENTUM = "momentum"
    VALUE = "value"
    VOLATILITY = "volatility"
    VOLUME = "volume"
    QUALITY = "quality"


FACTOR_FEATURE_COLS: tuple[str, ...] = (
    "roc_20",
    "roc_60",
    "roc_120",
    "price_vs_ema20",
    "price_vs_ema50",
    "price_vs_ema200",
    "volatility_20",
    "volatility_60",
    "drawdown",
    "volume_ratio",
    "trend_consistency",
    "return_stability",
)

FACTOR_FEATURE_GROUPS: dict[FactorName, tuple[str, ...]] = {
    FactorName.MOMENTUM: (
        "roc_20", "roc_60", "roc_120",
        "price_vs_ema20", "price_vs_ema50", "price_vs_ema200",
    ),
    FactorName.VOLATILITY: ("volatility_20", "volatility_60", "drawdown"),
    FactorName.VOLUME: ("volume_ratio",),
    FactorName.QUALITY: ("trend_consistency", "return_stability"),
}


class AssetHistory(BaseModel):
    """Daily closes (and optional volumes) for one asset, oldest first."""

    model_config = ConfigDict(frozen=True)

    ticker: Optional[str] = None
    prices: list[float]
    volumes: Optional[list[float]] = None


class FactorFeatures(BaseModel):
    """The 12 factor features, in ``FACTOR_FEATURE_COLS`` order.

    Returns and distances are percentages; ``trend_consistency`` is a share
    in [0, 1] and ``return_stability`` is ``1 / (1 + volatility_20)``.
    """

    model_config = ConfigDict(frozen=True)

    roc_20: float
    roc_60: float
    roc_120: float
    price_vs_ema20: float
    price_vs_ema50: float
    price_vs_ema200: float
    volatility_20: float
    volatility_60: float
    drawdown: float
    volume_ratio: float
    trend_consistency: float
    return_stability: float

    def as_list(self) -> list[float]:
        return [getattr(self, col) for col in FACTOR_FEATURE_COLS]

    # Composite views used when presenting a single asset.

    @property
    def momentum_score(self) -> float:
        return (self.roc_20 + self.roc_60 * 0.5 + self.roc_120 * 0.3) / 1.8

    @property
    def volatility_score(self) -> float:
        return -self.volatility_60

    @property
    def volume_score(self) -> float:
        return min(self.volume_ratio, 3.0)

    @property
    def quality_score(self) -> float:
        return (self.trend_consistency + self.return_stability) / 2


class FactorWeights(BaseModel):
    """One weight per factor; the weights sum to 1."""

    model_config = ConfigDict(frozen=True)

    momentum: float
    value: float
    volatility: float
    volume: float
    quality: float

    @field_validator("momentum", "value", "volatility", "volume", "quality")
    @classmethod
    def validate_non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError(f"Factor weights must be >= 0, got {v}.")
        return v

    def get(self, factor: FactorName) -> float:
        return getattr(self, factor.value)

    def as_dict(self) -> dict[str, float]:
        return {f.value: self.get(f) for f in FactorName}
