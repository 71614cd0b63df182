"""
Recommendation output models.

Recommendations are regenerated every scan / rebalance cycle and are never
persisted.  ``priority.level`` drives ordering (3 = critical ... 0 = low);
``label`` and ``color`` are presentation hints for rendering collaborators.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator

from market_intel.models.regime import RegimeLabel


class RecommendationType(str, Enum):
    REBALANCE       = "rebalance"
    BUY_OPPORTUNITY = "buy_opportunity"
    SELL_ALERT      = "sell_alert"
    RISK_WARNING    = "risk_warning"
    DIVERSIFICATION = "diversification"
    MOMENTUM_SHIFT  = "momentum_shift"
    REGIME_CHANGE   = "regime_change"


class Priority(BaseModel):
    model_config = ConfigDict(frozen=True)

    level: int
    label: str
    color: str


class RecommendationPriority:
    """The four priority levels."""

    CRITICAL = Priority(level=3, label="Critical", color="#dc2626")
    HIGH     = Priority(level=2, label="High",     color="#f59e0b")
    MEDIUM   = Priority(level=1, label="Medium",   color="#3b82f6")
    LOW      = Priority(level=0, label="Low",      color="#6b7280")


class Recommendation(BaseModel):
    """One actionable recommendation.

    Attributes:
        type:        Stage that produced it.
        priority:    Urgency (level / label / color).
        title:       Short headline.
        message:     Explanation with the triggering numbers.
        action:      Suggested action.
        confidence:  Heuristic confidence of the stage (0–1).
        timestamp:   UTC generation time.
        ticker:      Asset concerned, for per-asset recommendations.
        name:        Display name of the asset.
        amount:      Trade amount in account currency (rebalance only).
        regime:      New regime (regime change only).
        quant_score: Score that triggered a buy opportunity.
    """

    model_config = ConfigDict(frozen=True)

    type: RecommendationType
    priority: Priority
    title: str
    message: str
    action: str
    confidence: float
    timestamp: datetime
    ticker: Optional[str] = None
    name: Optional[str] = None
    amount: Optional[float] = None
    regime: Optional[RegimeLabel] = None
    quant_score: Optional[float] = None

    @field_validator("confidence")
    @classmethod
    def validate_confidence(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError(f"confidence must be in [0, 1], got {v}.")
        return v
