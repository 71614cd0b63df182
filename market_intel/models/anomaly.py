"""
Anomaly detector outputs.

Severity is ordered moderate < high < extreme; ``AnomalySeverity.rank``
exposes that order for sorting.  ``metrics`` carries the detector-specific
statistics (z-score, distance, correlation, divergence, ...) so the record
shape stays the same across detectors.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict


class AnomalySeverity(str, Enum):
    MODERATE = "moderate"
    HIGH     = "high"
    EXTREME  = "extreme"

    @property
    def rank(self) -> int:
        return {"moderate": 1, "high": 2, "extreme": 3}[self.value]


class AnomalyType(str, Enum):
    Z_SCORE     = "z_score_anomaly"
    CLUSTER     = "cluster_anomaly"
    CORRELATION = "correlation_anomaly"
    DIVERGENCE  = "price_score_divergence"
    VOLUME      = "volume_anomaly"


class AnomalyRecord(BaseModel):
    """One flagged anomaly.

    Attributes:
        asset_id:         Ticker the anomaly belongs to.
        type:             Detector that raised it.
        severity:         moderate / high / extreme.
        metrics:          Detector statistics.
        description:      Human-readable explanation.
        name:             Display name of the asset.
        related_asset_id: Second ticker for pair anomalies (correlation).
        timestamp:        UTC detection time.
    """

    model_config = ConfigDict(frozen=True)

    asset_id: str
    type: AnomalyType
    severity: AnomalySeverity
    metrics: dict[str, Any] = {}
    description: str
    name: Optional[str] = None
    related_asset_id: Optional[str] = None
    timestamp: datetime


class AnomalyReport(BaseModel):
    """All anomalies from one scan, plus the per-asset merge.

    ``anomalies`` is sorted by severity (extreme first, detector order kept
    within a severity).  ``by_asset`` maps each ticker to every anomaly that
    involves it; pair anomalies appear under both tickers.
    """

    model_config = ConfigDict(frozen=True)

    anomalies: list[AnomalyRecord] = []
    by_asset: dict[str, list[AnomalyRecord]] = {}
