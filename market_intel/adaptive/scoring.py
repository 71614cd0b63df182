"""
Adaptive score adjustment.

Re-weights static quant scores by how well past signals of the same strategy
performed in the same regime.  This is the system's feedback loop: instead of
retraining a model, the realized hit rate of recent signals is mapped to a
score multiplier.

Multiplier policy (``AdaptiveScoringConfig`` defaults)
------------------------------------------------------
  hit rate >= 0.70  → 1.25  excellent
  hit rate >= 0.60  → 1.10  good
  hit rate >= 0.50  → 1.00  neutral
  hit rate >= 0.40  → 0.85  poor
  otherwise         → 0.70  very_poor

Only records for the same (strategy, regime) signalled in
``[signal_ts - lookback_days, signal_ts]`` are considered.  Fewer than
``min_samples_for_adjustment`` matches leave the score untouched.

With decay enabled every matching record is weighted by
``max(0.5 ** (age_days / half_life_days), min_decay_weight)``, where the age
is measured back from the signal being scored, so recent outcomes count more
than old ones.  The adjusted score is clamped to ``[min_score, max_score]``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Sequence

from market_intel.adaptive.tracker import (
    PerformanceSummary,
    PerformanceTracker,
    ScoreCorrelation,
)
from market_intel.config import AdaptiveScoringConfig
from market_intel.ml.stats import clamp
from market_intel.models.asset import AssetSnapshot
from market_intel.models.performance import PerformanceRecord
from market_intel.models.regime import RegimeLabel

logger = logging.getLogger(__name__)

_SECONDS_PER_DAY = 86_400.0

INSUFFICIENT_DATA = "insufficient_data"


@dataclass(frozen=True)
class AdaptiveMultiplier:
    """Multiplier chosen for one (strategy, regime, signal time) lookup.

    ``hit_rate`` is ``None`` and ``category`` is ``insufficient_data`` when
    too few records matched.
    """

    multiplier: float
    category: str
    hit_rate: Optional[float]
    sample_size: int


@dataclass(frozen=True)
class AdaptiveAdjustment:
    base_score: float
    adjusted_score: float
    multiplier: float
    sample_size: int
    hit_rate: Optional[float]
    category: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "base_score":     self.base_score,
            "adjusted_score": self.adjusted_score,
            "multiplier":     self.multiplier,
            "sample_size":    self.sample_size,
            "hit_rate":       self.hit_rate,
            "category":       self.category,
        }


def _as_utc(ts: datetime) -> datetime:
    return ts if ts.tzinfo is not None else ts.replace(tzinfo=timezone.utc)


# ── Multiplier ────────────────────────────────────────────────────────────────


def record_decay_weight(
    record_ts: datetime,
    reference_ts: datetime,
    config: Optional[AdaptiveScoringConfig] = None,
) -> float:
    """Weight of a record signalled at ``record_ts`` as seen from ``reference_ts``.

    Records at or after the reference time (and every record when decay is
    disabled) weigh 1.0.
    """
    config = config or AdaptiveScoringConfig()
    if not config.decay_enabled:
        return 1.0
    age_days = (
        _as_utc(reference_ts) - _as_utc(record_ts)
    ).total_seconds() / _SECONDS_PER_DAY
    if age_days <= 0:
        return 1.0
    return max(0.5 ** (age_days / config.half_life_days), config.min_decay_weight)


def _weighted_hit_rate(
    records: Sequence[PerformanceRecord],
    signal_ts: datetime,
    config: AdaptiveScoringConfig,
) -> float:
    weights = [record_decay_weight(r.signal_timestamp, signal_ts, config) for r in records]
    hits = sum(w for w, r in zip(weights, records) if r.hit)
    return hits / sum(weights)


def _tier(hit_rate: float, config: AdaptiveScoringConfig) -> tuple[float, str]:
    tiers = (
        (config.excellent_hit_rate, config.excellent_multiplier, "excellent"),
        (config.good_hit_rate,      config.good_multiplier,      "good"),
        (config.neutral_hit_rate,   config.neutral_multiplier,   "neutral"),
        (config.poor_hit_rate,      config.poor_multiplier,      "poor"),
    )
    for threshold, multiplier, category in tiers:
        if hit_rate >= threshold:
            return multiplier, category
    return config.very_poor_multiplier, "very_poor"


def calculate_adaptive_multiplier(
    tracker: PerformanceTracker,
    strategy: str,
    regime: RegimeLabel,
    signal_ts: datetime,
    config: Optional[AdaptiveScoringConfig] = None,
) -> AdaptiveMultiplier:
    """Pick the score multiplier for a signal from the ledger history.

    Args:
        tracker:   Session-owned performance ledger.
        strategy:  Strategy that issued the signal.
        regime:    Regime the signal is issued in.
        signal_ts: Time of the signal being scored.  Only records inside the
                   lookback window ending at ``signal_ts`` count.
        config:    Tier table and decay settings.

    Returns:
        ``AdaptiveMultiplier``; multiplier 1.0 with ``insufficient_data`` when
        fewer than ``config.min_samples_for_adjustment`` records match.
    """
    config = config or AdaptiveScoringConfig()
    signal_ts = _as_utc(signal_ts)

    records = tracker.get_records(
        strategy=strategy,
        regime=regime,
        min_timestamp=signal_ts - timedelta(days=config.lookback_days),
        max_timestamp=signal_ts,
    )
    if len(records) < config.min_samples_for_adjustment:
        return AdaptiveMultiplier(
            multiplier=1.0,
            category=INSUFFICIENT_DATA,
            hit_rate=None,
            sample_size=len(records),
        )

    hit_rate = _weighted_hit_rate(records, signal_ts, config)
    multiplier, category = _tier(hit_rate, config)
    return AdaptiveMultiplier(
        multiplier=multiplier,
        category=category,
        hit_rate=hit_rate,
        sample_size=len(records),
    )


# ── Score adjustment ──────────────────────────────────────────────────────────


def adjust_score_adaptively(
    base_score: float,
    strategy: str,
    regime: RegimeLabel,
    signal_ts: datetime,
    tracker: PerformanceTracker,
    config: Optional[AdaptiveScoringConfig] = None,
) -> AdaptiveAdjustment:
    """Scale ``base_score`` by the ledger-derived multiplier and clamp it.

    An empty ledger (or too little matching history) is the identity.
    """
    config = config or AdaptiveScoringConfig()
    result = calculate_adaptive_multiplier(tracker, strategy, regime, signal_ts, config)
    adjusted = clamp(base_score * result.multiplier, config.min_score, config.max_score)
    return AdaptiveAdjustment(
        base_score=base_score,
        adjusted_score=adjusted,
        multiplier=result.multiplier,
        sample_size=result.sample_size,
        hit_rate=result.hit_rate,
        category=result.category,
    )


def adjust_scores_batch(
    assets: Sequence[AssetSnapshot],
    strategy: str,
    regime: RegimeLabel,
    tracker: PerformanceTracker,
    config: Optional[AdaptiveScoringConfig] = None,
    now: Optional[datetime] = None,
) -> list[AssetSnapshot]:
    """Return adjusted copies of ``assets``; the input list is not modified.

    Each copy keeps the pre-adjustment score in ``quant_score_original`` and
    the applied multiplier in ``adaptive_multiplier``.  Assets without a
    ``quant_score`` are returned unchanged.  Assets without a
    ``signal_timestamp`` are scored as of ``now``.
    """
    config = config or AdaptiveScoringConfig()
    now = now or datetime.now(tz=timezone.utc)

    adjusted: list[AssetSnapshot] = []
    for asset in assets:
        if asset.quant_score is None:
            adjusted.append(asset)
            continue
        adjustment = adjust_score_adaptively(
            asset.quant_score,
            strategy,
            regime,
            asset.signal_timestamp or now,
            tracker,
            config,
        )
        adjusted.append(
            asset.model_copy(
                update={
                    "quant_score":          adjustment.adjusted_score,
                    "quant_score_original": asset.quant_score,
                    "adaptive_multiplier":  adjustment.multiplier,
                }
            )
        )

    logger.debug(
        "Adjusted %d asset score(s) for strategy=%s regime=%s",
        len(adjusted), strategy, regime.value,
    )
    return adjusted


# ── Reporting ─────────────────────────────────────────────────────────────────

_REGIME_ORDER = (RegimeLabel.RISK_ON, RegimeLabel.NEUTRAL, RegimeLabel.RISK_OFF)

INCREASE_HIT_RATE = 0.60
DECREASE_HIT_RATE = 0.45


@dataclass(frozen=True)
class RegimePerformance:
    summary: PerformanceSummary
    multiplier_recommendation: str

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.summary.to_dict(),
            "multiplier_recommendation": self.multiplier_recommendation,
        }


def analyze_performance_by_regime(
    tracker: PerformanceTracker,
    strategy: str,
) -> dict[str, RegimePerformance]:
    """Summarise a strategy's outcomes per regime.

    Returns:
        Regime slug → ``RegimePerformance`` (all three regimes, always).
        ``multiplier_recommendation`` is ``increase`` at a hit rate >= 0.60,
        ``decrease`` below 0.45 and ``maintain`` otherwise.
    """
    analysis: dict[str, RegimePerformance] = {}
    for regime in _REGIME_ORDER:
        summary = tracker.get_summary(strategy=strategy, regime=regime)
        if summary.hit_rate >= INCREASE_HIT_RATE:
            recommendation = "increase"
        elif summary.hit_rate < DECREASE_HIT_RATE:
            recommendation = "decrease"
        else:
            recommendation = "maintain"
        analysis[regime.value] = RegimePerformance(summary, recommendation)
    return analysis


@dataclass(frozen=True)
class ReportNote:
    kind: str  # warning | success | info
    message: str


@dataclass(frozen=True)
class StrategyPerformanceReport:
    strategy: str
    overall: PerformanceSummary
    by_regime: dict[str, RegimePerformance]
    score_correlation: ScoreCorrelation
    notes: list[ReportNote] = field(default_factory=list)
    timestamp: datetime = field(default_factory=lambda: datetime.now(tz=timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "strategy":  self.strategy,
            "overall":   self.overall.to_dict(),
            "by_regime": {k: v.to_dict() for k, v in self.by_regime.items()},
            "score_correlation": {
                "correlation":  self.score_correlation.correlation,
                "sample_size":  self.score_correlation.sample_size,
                "insufficient": self.score_correlation.insufficient,
            },
            "notes":     [{"type": n.kind, "message": n.message} for n in self.notes],
            "timestamp": self.timestamp.isoformat(),
        }


def get_strategy_performance_report(
    tracker: PerformanceTracker,
    strategy: str,
    now: Optional[datetime] = None,
) -> StrategyPerformanceReport:
    """Overall and per-regime performance of a strategy with advisory notes."""
    overall = tracker.get_summary(strategy=strategy)
    by_regime = analyze_performance_by_regime(tracker, strategy)
    score_corr = tracker.calculate_score_correlation(strategy=strategy)
    return StrategyPerformanceReport(
        strategy=strategy,
        overall=overall,
        by_regime=by_regime,
        score_correlation=score_corr,
        notes=_report_notes(overall, by_regime, score_corr),
        timestamp=now or datetime.now(tz=timezone.utc),
    )


def _report_notes(
    overall: PerformanceSummary,
    by_regime: dict[str, RegimePerformance],
    score_corr: ScoreCorrelation,
) -> list[ReportNote]:
    notes: list[ReportNote] = []

    if overall.hit_rate < 0.45:
        notes.append(ReportNote(
            "warning",
            f"Overall hit rate ({overall.hit_rate * 100:.1f}%) is below 45%. "
            "Consider reviewing strategy parameters.",
        ))
    elif overall.hit_rate > 0.65:
        notes.append(ReportNote(
            "success",
            f"Excellent overall hit rate ({overall.hit_rate * 100:.1f}%). "
            "Strategy performing well.",
        ))

    for regime, perf in by_regime.items():
        if perf.summary.hit_rate < 0.40 and perf.summary.sample_size >= 10:
            notes.append(ReportNote(
                "warning",
                f"Poor performance in {regime} regime "
                f"({perf.summary.hit_rate * 100:.1f}%). "
                "Consider adjusting strategy for this regime.",
            ))

    if not score_corr.insufficient and abs(score_corr.correlation) < 0.2:
        notes.append(ReportNote(
            "warning",
            f"Low correlation ({score_corr.correlation:.2f}) between scores and "
            "returns. Scores may not be predictive.",
        ))

    if overall.sample_size < 20:
        notes.append(ReportNote(
            "info",
            f"Limited sample size ({overall.sample_size}). "
            "Collect more data for reliable analysis.",
        ))

    return notes
