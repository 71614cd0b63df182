"""
Per-asset insight report.

``analyze_asset_ml(asset, market, peers)`` bundles four heuristics:

  regime_impact   how the latest regime transition affects this asset, from
                  a defensive / aggressive tag (volatility and relative
                  volatility)
  momentum_shift  acceleration of 6-month ROC vs half the 12-month ROC, plus
                  the asset's 6-month-ROC percentile among peers
  ml_signal       weighted blend of quant score, momentum+trend, risk quality
                  and an RSI mean-reversion term, banded STRONG_BUY..STRONG_SELL
  risk            0–100 composite of volatility, drawdown and inverted risk
                  quality, bucketed LOW..VERY_HIGH

Missing asset fields fall back to the ``AssetSnapshot`` defaults.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Optional, Sequence

from market_intel.config import RecommendationConfig
from market_intel.ml.stats import percentile_rank
from market_intel.models.asset import AssetSnapshot, MarketSnapshot
from market_intel.models.regime import RegimeLabel

# Defensive / aggressive tagging.
DEFENSIVE_MAX_VOLATILITY = 20.0
DEFENSIVE_MAX_BETA = 0.9
AGGRESSIVE_MIN_VOLATILITY = 30.0
AGGRESSIVE_MIN_BETA = 1.2

ACCELERATION_BAND = 5.0
HIGH_VOLATILITY_DAMPING = 40.0
MAX_SIGNAL_CONFIDENCE = 95.0


@dataclass(frozen=True)
class RegimeImpact:
    regime: RegimeLabel
    previous_regime: RegimeLabel
    confidence: float
    impact: str  # favorable | unfavorable | neutral
    severity: str  # high | moderate | low
    is_defensive: bool
    is_aggressive: bool


@dataclass(frozen=True)
class MomentumShift:
    shift: str  # accelerating | decelerating | strong_positive | strong_negative | stable
    strength: str
    acceleration: float
    percentile: float  # 0–100
    roc_6m: float
    roc_12m: float


@dataclass(frozen=True)
class MLSignal:
    signal: str  # STRONG_BUY | BUY | HOLD | SELL | STRONG_SELL
    confidence: float   # 0–95
    ml_score: float  # 0–100


@dataclass(frozen=True)
class RiskAssessment:
    risk_level: str  # LOW | MODERATE | HIGH | VERY_HIGH
    risk_score: float
    relative_risk_percentile: float
    volatility: float
    max_drawdown: float


@dataclass(frozen=True)
class AssetInsights:
    ticker: str
    regime_impact: Optional[RegimeImpact]
    momentum_shift: Optional[MomentumShift]
    ml_signal: MLSignal
    risk: RiskAssessment

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# ── Components ────────────────────────────────────────────────────────────────


def analyze_regime_impact(
    asset: AssetSnapshot,
    regime: RegimeLabel,
    previous_regime: Optional[RegimeLabel],
    confidence: float,
) -> Optional[RegimeImpact]:
    """Impact of a regime transition on ``asset``; ``None`` when nothing changed."""
    if previous_regime is None or regime == previous_regime:
        return None

    is_defensive = (
        asset.volatility < DEFENSIVE_MAX_VOLATILITY
        and asset.relative_volatility < DEFENSIVE_MAX_BETA
    )
    is_aggressive = (
        asset.volatility > AGGRESSIVE_MIN_VOLATILITY
        or asset.relative_volatility > AGGRESSIVE_MIN_BETA
    )

    impact, severity = "neutral", "moderate"
    if regime == RegimeLabel.RISK_OFF:
        if is_defensive:
            impact, severity = "favorable", "high"
        elif is_aggressive:
            impact, severity = "unfavorable", "high"
    elif regime == RegimeLabel.RISK_ON:
        if is_aggressive:
            impact, severity = "favorable", "moderate"
        elif is_defensive:
            impact, severity = "unfavorable", "low"

    return RegimeImpact(
        regime=regime,
        previous_regime=previous_regime,
        confidence=confidence,
        impact=impact,
        severity=severity,
        is_defensive=is_defensive,
        is_aggressive=is_aggressive,
    )


def detect_momentum_shift(
    asset: AssetSnapshot,
    peers: Sequence[AssetSnapshot],
) -> MomentumShift:
    percentile = percentile_rank(asset.roc_6m, [p.roc_6m for p in peers])
    acceleration = asset.roc_6m - asset.roc_12m / 2
    momentum = asset.score_momentum

    shift, strength = "stable", "moderate"
    if acceleration > ACCELERATION_BAND and momentum > 60:
        shift = "accelerating"
        strength = "strong" if momentum > 75 else "moderate"
    elif acceleration < -ACCELERATION_BAND and momentum < 50:
        shift = "decelerating"
        strength = "strong" if momentum < 35 else "moderate"
    elif percentile > 0.8:
        shift, strength = "strong_positive", "high"
    elif percentile < 0.2:
        shift, strength = "strong_negative", "high"

    return MomentumShift(
        shift=shift,
        strength=strength,
        acceleration=round(acceleration, 2),
        percentile=round(percentile * 100),
        roc_6m=asset.roc_6m,
        roc_12m=asset.roc_12m,
    )


def generate_ml_signal(asset: AssetSnapshot) -> MLSignal:
    score = asset.quant_score or 0.0
    if asset.rsi < 30:
        rsi_term = 1.0
    elif asset.rsi > 70:
        rsi_term = 0.0
    else:
        rsi_term = 0.5

    ml_score = (
        score / 100 * 0.4
        + (asset.score_momentum + asset.score_trend) / 200 * 0.3
        + asset.score_risk / 100 * 0.2
        + rsi_term * 0.1
    )
    confidence = abs(ml_score - 0.5) * 200

    if ml_score >= 0.7:
        signal = "STRONG_BUY"
    elif ml_score >= 0.6:
        signal = "BUY"
    elif ml_score <= 0.3:
        signal = "STRONG_SELL"
    elif ml_score <= 0.4:
        signal = "SELL"
    else:
        signal = "HOLD"

    if asset.volatility > HIGH_VOLATILITY_DAMPING and signal in ("STRONG_BUY", "BUY"):
        signal = "BUY" if signal == "STRONG_BUY" else "HOLD"
        confidence *= 0.8

    return MLSignal(
        signal=signal,
        confidence=round(min(confidence, MAX_SIGNAL_CONFIDENCE)),
        ml_score=round(ml_score * 100, 1),
    )


def calculate_risk_score(
    asset: AssetSnapshot,
    peers: Optional[Sequence[AssetSnapshot]] = None,
) -> RiskAssessment:
    volatility = asset.volatility
    drawdown = abs(asset.max_drawdown)

    relative = 50.0
    if peers:
        higher = sum(1 for p in peers if p.volatility > volatility)
        relative = higher / len(peers) * 100

    if volatility > 50:
        score = 40.0
    elif volatility > 35:
        score = 30.0
    elif volatility > 25:
        score = 20.0
    else:
        score = 10.0

    if drawdown > 40:
        score += 35
    elif drawdown > 25:
        score += 25
    elif drawdown > 15:
        score += 15
    else:
        score += 5

    score += (100 - asset.score_risk) * 0.25

    if score > 70:
        level = "VERY_HIGH"
    elif score > 50:
        level = "HIGH"
    elif score > 30:
        level = "MODERATE"
    else:
        level = "LOW"

    return RiskAssessment(
        risk_level=level,
        risk_score=round(min(score, 100.0)),
        relative_risk_percentile=round(relative),
        volatility=round(volatility, 1),
        max_drawdown=round(drawdown, 1),
    )


# ── Entry point ───────────────────────────────────────────────────────────────


def analyze_asset_ml(
    asset: AssetSnapshot,
    market: Optional[MarketSnapshot] = None,
    peers: Optional[Sequence[AssetSnapshot]] = None,
    config: Optional[RecommendationConfig] = None,
) -> AssetInsights:
    """Build the insight report for one asset.

    Args:
        asset:  The asset to analyse.
        market: Snapshot carrying the regime prediction and previous regime.
        peers:  Scanned universe used for percentile comparisons.  Momentum
                shift needs more than ``config.min_peers_for_momentum`` peers.
        config: Recommendation thresholds.
    """
    config = config or RecommendationConfig()
    peers = list(peers or [])

    regime_impact = None
    if market is not None and market.regime_prediction is not None:
        prediction = market.regime_prediction
        regime_impact = analyze_regime_impact(
            asset, prediction.regime, market.previous_regime, prediction.confidence
        )

    momentum_shift = None
    if len(peers) > config.min_peers_for_momentum:
        momentum_shift = detect_momentum_shift(asset, peers)

    return AssetInsights(
        ticker=asset.ticker,
        regime_impact=regime_impact,
        momentum_shift=momentum_shift,
        ml_signal=generate_ml_signal(asset),
        risk=calculate_risk_score(asset, peers),
    )
