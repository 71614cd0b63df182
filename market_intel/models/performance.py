"""
Signal outcome records: the rows of the performance ledger.

A ``PerformanceRecord`` captures what a signal predicted (the quant score at
signal time, the regime it was issued in, the strategy that issued it) and
what actually happened (the realized return).  Records are frozen: the ledger
is append-only and a record is never edited after the outcome is known.
"""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, field_validator

from market_intel.models.regime import RegimeLabel


class PerformanceRecord(BaseModel):
    """Realized outcome of one scored signal.

    Attributes:
        asset_id:         Ticker or other asset identifier.
        signal_timestamp: When the signal was issued (UTC; naive values are
                          interpreted as UTC).
        score_at_signal:  Quant score (0–100) at signal time.
        realized_return:  Realized return of the signal, in percent.
        regime:           Regime the signal was issued in.
        strategy_id:      Strategy / scoring profile that produced the signal.
    """

    model_config = ConfigDict(frozen=True)

    asset_id: str
    signal_timestamp: datetime
    score_at_signal: float
    realized_return: float
    regime: RegimeLabel
    strategy_id: str

    @property
    def hit(self) -> bool:
        """A signal is a hit when its realized return is positive."""
        return self.realized_return > 0

    @field_validator("signal_timestamp")
    @classmethod
    def ensure_utc(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)

    @field_validator("asset_id", "strategy_id")
    @classmethod
    def validate_not_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("identifier must not be empty.")
        return v.strip()
