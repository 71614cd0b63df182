"""
Performance ledger.

``PerformanceTracker`` is an append-only, insertion-ordered list of
``PerformanceRecord`` objects with filtered queries.  It is created and owned
by the calling session and passed by reference to the scoring functions;
there is no shared module-level instance.

Retention is the caller's decision: records are never evicted automatically.
Call ``prune_before(cutoff)`` to drop old history explicitly.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from market_intel.ml.stats import correlation, mean
from market_intel.models.performance import PerformanceRecord
from market_intel.models.regime import RegimeLabel

logger = logging.getLogger(__name__)

MIN_SAMPLES = 10
MIN_CORRELATION_SAMPLES = 10


@dataclass(frozen=True)
class HitRateStats:
    """Fraction of positive outcomes among the matching records.

    ``hit_rate`` is 0.5 (no information) when nothing matches.
    """

    hit_rate: float
    sample_size: int
    insufficient: bool


@dataclass(frozen=True)
class ScoreCorrelation:
    """Pearson correlation between score at signal and realized return."""

    correlation: float
    sample_size: int
    insufficient: bool


@dataclass(frozen=True)
class PerformanceSummary:
    hit_rate: float
    avg_return: float
    avg_win: float
    avg_loss: float
    sample_size: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "hit_rate":    self.hit_rate,
            "avg_return":  self.avg_return,
            "avg_win":     self.avg_win,
            "avg_loss":    self.avg_loss,
            "sample_size": self.sample_size,
        }


EMPTY_SUMMARY = PerformanceSummary(
    hit_rate=0.5, avg_return=0.0, avg_win=0.0, avg_loss=0.0, sample_size=0
)


def _as_utc(ts: Optional[datetime]) -> Optional[datetime]:
    if ts is None or ts.tzinfo is not None:
        return ts
    return ts.replace(tzinfo=timezone.utc)


class PerformanceTracker:
    """Append-only ledger of realized signal outcomes."""

    def __init__(
        self,
        records: Optional[Iterable[PerformanceRecord]] = None,
        min_samples: int = MIN_SAMPLES,
    ) -> None:
        self._records: list[PerformanceRecord] = list(records or [])
        self.min_samples = min_samples

    def __len__(self) -> int:
        return len(self._records)

    @property
    def records(self) -> tuple[PerformanceRecord, ...]:
        """All records, in insertion order."""
        return tuple(self._records)

    def add_record(self, record: PerformanceRecord) -> None:
        self._records.append(record)

    def get_records(
        self,
        strategy: Optional[str] = None,
        regime: Optional[RegimeLabel] = None,
        min_timestamp: Optional[datetime] = None,
        max_timestamp: Optional[datetime] = None,
    ) -> list[PerformanceRecord]:
        """Records matching every given filter; bounds are inclusive."""
        min_timestamp = _as_utc(min_timestamp)
        max_timestamp = _as_utc(max_timestamp)
        return [
            r for r in self._records
            if (strategy is None or r.strategy_id == strategy)
            and (regime is None or r.regime == regime)
            and (min_timestamp is None or r.signal_timestamp >= min_timestamp)
            and (max_timestamp is None or r.signal_timestamp <= max_timestamp)
        ]

    def calculate_hit_rate(self, **filters: Any) -> HitRateStats:
        records = self.get_records(**filters)
        if not records:
            return HitRateStats(hit_rate=0.5, sample_size=0, insufficient=True)
        hits = sum(1 for r in records if r.hit)
        return HitRateStats(
            hit_rate=hits / len(records),
            sample_size=len(records),
            insufficient=len(records) < self.min_samples,
        )

    def calculate_score_correlation(self, **filters: Any) -> ScoreCorrelation:
        records = self.get_records(**filters)
        if len(records) < MIN_CORRELATION_SAMPLES:
            return ScoreCorrelation(
                correlation=0.0, sample_size=len(records), insufficient=True
            )
        return ScoreCorrelation(
            correlation=correlation(
                [r.score_at_signal for r in records],
                [r.realized_return for r in records],
            ),
            sample_size=len(records),
            insufficient=len(records) < self.min_samples,
        )

    def get_summary(self, **filters: Any) -> PerformanceSummary:
        records = self.get_records(**filters)
        if not records:
            return EMPTY_SUMMARY
        wins = [r.realized_return for r in records if r.hit]
        losses = [r.realized_return for r in records if not r.hit]
        return PerformanceSummary(
            hit_rate=len(wins) / len(records),
            avg_return=mean([r.realized_return for r in records]),
            avg_win=mean(wins),
            avg_loss=mean(losses),
            sample_size=len(records),
        )

    def prune_before(self, cutoff: datetime) -> int:
        """Drop records signalled strictly before ``cutoff``.

        Returns:
            Number of records removed.
        """
        cutoff = _as_utc(cutoff)
        kept = [r for r in self._records if r.signal_timestamp >= cutoff]
        removed = len(self._records) - len(kept)
        self._records = kept
        if removed:
            logger.info("Pruned %d ledger record(s) before %s", removed, cutoff.isoformat())
        return removed

    # ── Serialization ─────────────────────────────────────────────────────────

    def to_dict(self) -> dict[str, Any]:
        return {
            "records":      [r.model_dump(mode="json") for r in self._records],
            "record_count": len(self._records),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PerformanceTracker":
        """Rebuild a tracker from ``to_dict()`` output.

        Raises:
            ValueError: ``data`` is not a mapping or ``records`` is not a list.
            pydantic.ValidationError: A record is malformed.
        """
        if not isinstance(data, dict):
            raise ValueError(f"Ledger document must be an object, got {type(data).__name__}.")
        records = data.get("records", [])
        if not isinstance(records, list):
            raise ValueError("Ledger 'records' must be a list.")
        return cls([PerformanceRecord.model_validate(r) for r in records])
