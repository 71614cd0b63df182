"""
Anomaly detectors.

Each detector is a pure function over the scanned universe returning a list of
``AnomalyRecord``.  ``detect_all_anomalies()`` runs them in a fixed order:

  1. z-score on ``quant_score``
  2. z-score on ``volatility``
  3. k-means distance-to-centroid outliers
  4. highly correlated pairs (only when a correlation matrix is given)
  5. score / 60-day price divergence
  6. volume spikes and droughts

and merges the results into an ``AnomalyReport`` (stable sort by severity, then
grouped per asset).  Clustering is seeded from ``AnomalyConfig.seed`` so a scan
is reproducible.
"""

from __future__ import annotations

import logging
import math
import random
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Optional, Sequence

from market_intel.config import AnomalyConfig
from market_intel.ml.kmeans import KMeans, euclidean_distance
from market_intel.ml.stats import z_scores
from market_intel.models.anomaly import (
    AnomalyRecord,
    AnomalyReport,
    AnomalySeverity,
    AnomalyType,
)
from market_intel.models.asset import AssetSnapshot

logger = logging.getLogger(__name__)

# Defaults for missing clustering inputs.
CLUSTER_DEFAULTS = {
    "quant_score": 50.0,
    "volatility":  20.0,
    "volume":      100_000.0,
    "momentum":    0.0,
    "correlation": 0.5,
}

TOP_ANOMALIES = 5


def calculate_z_scores(values: Sequence[float]) -> list[float]:
    """Population z-scores; all zeros when the values have no spread."""
    return z_scores(values)


def _now(now: Optional[datetime]) -> datetime:
    return now or datetime.now(tz=timezone.utc)


def _z_severity(abs_z: float, config: AnomalyConfig) -> Optional[AnomalySeverity]:
    if abs_z >= config.z_extreme:
        return AnomalySeverity.EXTREME
    if abs_z >= config.z_high:
        return AnomalySeverity.HIGH
    if abs_z >= config.z_moderate:
        return AnomalySeverity.MODERATE
    return None


# ── Detectors ─────────────────────────────────────────────────────────────────


def detect_z_score_anomalies(
    assets: Sequence[AssetSnapshot],
    field: str = "quant_score",
    config: Optional[AnomalyConfig] = None,
    now: Optional[datetime] = None,
) -> list[AnomalyRecord]:
    """Flag assets whose ``field`` is >= 2 standard deviations from the mean.

    A missing value counts as 0.
    """
    config = config or AnomalyConfig()
    if not assets:
        return []

    values = [getattr(asset, field) or 0.0 for asset in assets]
    scores = calculate_z_scores(values)
    ts = _now(now)

    anomalies: list[AnomalyRecord] = []
    for asset, value, z in zip(assets, values, scores):
        severity = _z_severity(abs(z), config)
        if severity is None:
            continue
        direction = "above_mean" if z > 0 else "below_mean"
        anomalies.append(AnomalyRecord(
            asset_id=asset.ticker,
            name=asset.display_name,
            type=AnomalyType.Z_SCORE,
            severity=severity,
            metrics={"feature": field, "value": value, "z_score": z, "direction": direction},
            description=(
                f"{asset.display_name} ({asset.ticker}): {severity.value} {field} "
                f"outlier, z-score {z:.2f}"
            ),
            timestamp=ts,
        ))
    return anomalies


def extract_clustering_features(asset: AssetSnapshot) -> list[float]:
    """Clustering vector ``[quant_score, volatility, volume, momentum, correlation]``."""
    return [
        CLUSTER_DEFAULTS[name] if getattr(asset, name) is None else getattr(asset, name)
        for name in CLUSTER_DEFAULTS
    ]


def _standardize_columns(X: list[list[float]]) -> list[list[float]]:
    columns = [calculate_z_scores(list(col)) for col in zip(*X)]
    return [list(row) for row in zip(*columns)]


def detect_cluster_anomalies(
    assets: Sequence[AssetSnapshot],
    config: Optional[AnomalyConfig] = None,
    now: Optional[datetime] = None,
) -> list[AnomalyRecord]:
    """Flag the assets farthest from their k-means centroid.

    Needs at least ``2 * kmeans_k`` assets.  Features are standardised per
    column, clustered, and the top ``cluster_outlier_fraction`` of distances
    are flagged: extreme at >= ``cluster_extreme_ratio`` of the maximum
    distance, high otherwise.
    """
    config = config or AnomalyConfig()
    if len(assets) < config.kmeans_k * 2:
        logger.debug(
            "Cluster detection skipped: %d assets (< %d)", len(assets), config.kmeans_k * 2
        )
        return []

    X = _standardize_columns([extract_clustering_features(a) for a in assets])
    kmeans = KMeans(
        k=config.kmeans_k,
        max_iterations=config.kmeans_max_iterations,
        rng=random.Random(config.seed),
    ).fit(X)
    assert kmeans.centroids is not None and kmeans.labels is not None

    distances = [
        euclidean_distance(point, kmeans.centroids[label])
        for point, label in zip(X, kmeans.labels)
    ]
    max_distance = max(distances)
    if max_distance == 0:
        return []

    ranked = sorted(distances, reverse=True)
    threshold = ranked[math.floor(len(distances) * config.cluster_outlier_fraction)]
    ts = _now(now)

    anomalies: list[AnomalyRecord] = []
    for asset, dist, label in zip(assets, distances, kmeans.labels):
        if dist <= 0 or dist < threshold:
            continue
        severity = (
            AnomalySeverity.EXTREME
            if dist >= max_distance * config.cluster_extreme_ratio
            else AnomalySeverity.HIGH
        )
        anomalies.append(AnomalyRecord(
            asset_id=asset.ticker,
            name=asset.display_name,
            type=AnomalyType.CLUSTER,
            severity=severity,
            metrics={"distance": dist, "cluster": label},
            description=(
                f"{asset.display_name} ({asset.ticker}) sits far from its peer "
                f"cluster (distance {dist:.2f})"
            ),
            timestamp=ts,
        ))
    return anomalies


def detect_correlation_anomalies(
    assets: Sequence[AssetSnapshot],
    correlation_matrix: Optional[Sequence[Sequence[float]]],
    config: Optional[AnomalyConfig] = None,
    now: Optional[datetime] = None,
) -> list[AnomalyRecord]:
    """Flag asset pairs with |rho| >= ``correlation_threshold``.

    Matrix rows/columns follow the order of ``assets``; indices beyond the
    asset list are labelled ``Asset_<i>``.
    """
    config = config or AnomalyConfig()
    if not correlation_matrix or len(correlation_matrix) < 2:
        return []

    def ticker_at(i: int) -> str:
        return assets[i].ticker if i < len(assets) else f"Asset_{i}"

    def name_at(i: int) -> str:
        return assets[i].display_name if i < len(assets) else f"Asset_{i}"

    ts = _now(now)
    anomalies: list[AnomalyRecord] = []
    for i, row in enumerate(correlation_matrix):
        for j in range(i + 1, len(row)):
            rho = row[j]
            if abs(rho) < config.correlation_threshold:
                continue
            severity = (
                AnomalySeverity.EXTREME
                if abs(rho) >= config.correlation_extreme
                else AnomalySeverity.HIGH
            )
            anomalies.append(AnomalyRecord(
                asset_id=ticker_at(i),
                name=name_at(i),
                related_asset_id=ticker_at(j),
                type=AnomalyType.CORRELATION,
                severity=severity,
                metrics={"correlation": rho},
                description=(
                    f"{abs(rho) * 100:.1f}% correlation between {name_at(i)} "
                    f"({ticker_at(i)}) and {name_at(j)} ({ticker_at(j)})"
                ),
                timestamp=ts,
            ))
    return anomalies


def detect_price_score_divergence(
    assets: Sequence[AssetSnapshot],
    config: Optional[AnomalyConfig] = None,
    now: Optional[datetime] = None,
) -> list[AnomalyRecord]:
    """Flag assets whose score and 60-day price change disagree.

    The 0–100 score is mapped to −100..+100 via ``(score - 50) * 2`` and
    compared with the 60-day price change in percent.  Assets missing either
    value are skipped.
    """
    config = config or AnomalyConfig()
    ts = _now(now)
    anomalies: list[AnomalyRecord] = []

    for asset in assets:
        if asset.quant_score is None or asset.price_change_60d is None:
            continue
        normalized = (asset.quant_score - 50) * 2
        change = asset.price_change_60d
        divergence = abs(normalized - change)
        if divergence < config.divergence_threshold:
            continue

        if normalized > 0 and change < 0:
            subtype = "bullish_divergence"
        elif normalized < 0 and change > 0:
            subtype = "bearish_divergence"
        else:
            subtype = "divergence"
        severity = (
            AnomalySeverity.HIGH
            if divergence >= config.divergence_threshold * config.divergence_high_ratio
            else AnomalySeverity.MODERATE
        )
        anomalies.append(AnomalyRecord(
            asset_id=asset.ticker,
            name=asset.display_name,
            type=AnomalyType.DIVERGENCE,
            severity=severity,
            metrics={
                "subtype":          subtype,
                "quant_score":      asset.quant_score,
                "normalized_score": normalized,
                "price_change_60d": change,
                "divergence":       divergence,
            },
            description=(
                f"{asset.display_name} ({asset.ticker}): {subtype.replace('_', ' ')}, "
                f"score {normalized:.1f} vs 60d price change {change:.1f}%"
            ),
            timestamp=ts,
        ))
    return anomalies


def detect_volume_anomalies(
    assets: Sequence[AssetSnapshot],
    config: Optional[AnomalyConfig] = None,
    now: Optional[datetime] = None,
) -> list[AnomalyRecord]:
    """Flag volume spikes and droughts (|z| >= ``z_high``).

    Only assets with a positive volume take part; z-scores are computed over
    that subset and paired with the same assets.
    """
    config = config or AnomalyConfig()
    traded = [a for a in assets if a.volume is not None and a.volume > 0]
    if not traded:
        return []

    scores = calculate_z_scores([a.volume for a in traded])
    ts = _now(now)
    anomalies: list[AnomalyRecord] = []

    for asset, z in zip(traded, scores):
        if abs(z) < config.z_high:
            continue
        severity = AnomalySeverity.EXTREME if abs(z) >= config.z_extreme else AnomalySeverity.HIGH
        direction = "spike" if z > 0 else "drought"
        anomalies.append(AnomalyRecord(
            asset_id=asset.ticker,
            name=asset.display_name,
            type=AnomalyType.VOLUME,
            severity=severity,
            metrics={"volume": asset.volume, "z_score": z, "direction": direction},
            description=(
                f"{asset.display_name} ({asset.ticker}): volume {direction}, "
                f"z-score {z:.2f}"
            ),
            timestamp=ts,
        ))
    return anomalies


# ── Aggregation ───────────────────────────────────────────────────────────────


def detect_all_anomalies(
    assets: Sequence[AssetSnapshot],
    correlation_matrix: Optional[Sequence[Sequence[float]]] = None,
    config: Optional[AnomalyConfig] = None,
    now: Optional[datetime] = None,
) -> AnomalyReport:
    """Run every detector and merge the results.

    Returns:
        ``AnomalyReport`` with anomalies stably sorted extreme → moderate and
        grouped by asset (pair anomalies appear under both tickers).
    """
    config = config or AnomalyConfig()
    now = _now(now)

    found: list[AnomalyRecord] = []
    found += detect_z_score_anomalies(assets, "quant_score", config, now)
    found += detect_z_score_anomalies(assets, "volatility", config, now)
    found += detect_cluster_anomalies(assets, config, now)
    if correlation_matrix:
        found += detect_correlation_anomalies(assets, correlation_matrix, config, now)
    found += detect_price_score_divergence(assets, config, now)
    found += detect_volume_anomalies(assets, config, now)

    found.sort(key=lambda a: a.severity.rank, reverse=True)

    by_asset: dict[str, list[AnomalyRecord]] = {}
    for anomaly in found:
        by_asset.setdefault(anomaly.asset_id, []).append(anomaly)
        if anomaly.related_asset_id and anomaly.related_asset_id != anomaly.asset_id:
            by_asset.setdefault(anomaly.related_asset_id, []).append(anomaly)

    logger.info(
        "Anomaly scan: %d assets, %d anomalies, %d assets flagged",
        len(assets), len(found), len(by_asset),
    )
    return AnomalyReport(anomalies=found, by_asset=by_asset)


def get_anomaly_summary(anomalies: Sequence[AnomalyRecord]) -> dict[str, Any]:
    """Counts by type and severity plus the first five anomalies."""
    by_severity = {s.value: 0 for s in sorted(AnomalySeverity, key=lambda s: -s.rank)}
    by_severity.update(Counter(a.severity.value for a in anomalies))
    return {
        "total":         len(anomalies),
        "by_type":       dict(Counter(a.type.value for a in anomalies)),
        "by_severity":   by_severity,
        "top_anomalies": list(anomalies[:TOP_ANOMALIES]),
    }
