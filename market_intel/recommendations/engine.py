"""
Recommendation synthesizer.

``generate_recommendations()`` runs a fixed pipeline of six pure stages over
one immutable (portfolio, market, performance) snapshot:

  1. rebalance         positions drifting >= 5% from target weight
  2. risk warning      top-3 concentration > 60%, market volatility > 30%
  3. buy opportunity   top 3 un-held assets with quant score > 70
  4. sell alert        60-day return < -15% (HIGH), quant score < 40 (MEDIUM)
  5. diversification   sector exposure > 35%
  6. regime change     new regime with confidence > 0.70

``EXTENDED_STAGES`` appends an opt-in seventh stage:

  7. momentum shift    held assets whose momentum is accelerating or
                       decelerating against the scanned universe

Stage outputs are concatenated in that order and stably sorted by priority
level, highest first, so ties keep stage emission order.  Thresholds live in
``RecommendationConfig``.

Confidence values are fixed per stage heuristics, except the regime change
recommendation which carries the prediction's own confidence.
"""

from __future__ import annotations

import logging
import math
from collections import defaultdict
from datetime import datetime, timezone
from typing import Callable, Mapping, Optional, Sequence

from market_intel.config import RecommendationConfig
from market_intel.models.asset import AssetPerformance, MarketSnapshot, Portfolio
from market_intel.models.recommendation import (
    Recommendation,
    RecommendationPriority,
    RecommendationType,
)
from market_intel.models.regime import RegimeLabel
from market_intel.recommendations.asset_insights import detect_momentum_shift

logger = logging.getLogger(__name__)

HistoricalPerformance = Mapping[str, AssetPerformance]

Stage = Callable[
    [
        Portfolio,
        Optional[MarketSnapshot],
        Optional[HistoricalPerformance],
        RecommendationConfig,
        datetime,
    ],
    list[Recommendation],
]


def _round_half_up(value: float, places: int = 3) -> float:
    scale = 10 ** places
    return math.floor(value * scale + 0.5) / scale


def _regime_name(regime: RegimeLabel) -> str:
    return regime.value.replace("_", "-")


# ── Stages ────────────────────────────────────────────────────────────────────


def detect_rebalancing_needs(
    portfolio: Portfolio,
    market: Optional[MarketSnapshot],
    performance: Optional[HistoricalPerformance],
    config: RecommendationConfig,
    now: datetime,
) -> list[Recommendation]:
    recs: list[Recommendation] = []
    for ticker, position in portfolio.positions.items():
        target = portfolio.target_weights.get(ticker, 0.0)
        gap = position.weight - target
        # Rounded to 3 decimals so 0.15 - 0.10 counts as a full 5%.
        deviation = _round_half_up(abs(gap))
        if deviation < config.rebalance_threshold:
            continue
        priority = (
            RecommendationPriority.HIGH
            if deviation > config.rebalance_high_threshold
            else RecommendationPriority.MEDIUM
        )
        recs.append(Recommendation(
            type=RecommendationType.REBALANCE,
            priority=priority,
            ticker=ticker,
            name=position.name or ticker,
            title=f"Rebalance {ticker}",
            message=(
                f"Current weight {position.weight * 100:.1f}% vs target "
                f"{target * 100:.1f}% (deviation {deviation * 100:.1f}%)."
            ),
            action="Sell" if gap > 0 else "Buy",
            amount=abs(gap) * portfolio.total_value,
            confidence=0.9,
            timestamp=now,
        ))
    return recs


def detect_risk_warnings(
    portfolio: Portfolio,
    market: Optional[MarketSnapshot],
    performance: Optional[HistoricalPerformance],
    config: RecommendationConfig,
    now: datetime,
) -> list[Recommendation]:
    recs: list[Recommendation] = []

    weights = sorted((p.weight for p in portfolio.positions.values()), reverse=True)
    top3 = sum(weights[:3])
    if top3 > config.concentration_threshold:
        recs.append(Recommendation(
            type=RecommendationType.RISK_WARNING,
            priority=RecommendationPriority.HIGH,
            title="High concentration",
            message=f"Top 3 positions make up {top3 * 100:.1f}% of the portfolio.",
            action="Diversify holdings",
            confidence=0.85,
            timestamp=now,
        ))

    if market is not None and market.volatility is not None \
            and market.volatility > config.volatility_spike:
        recs.append(Recommendation(
            type=RecommendationType.RISK_WARNING,
            priority=RecommendationPriority.CRITICAL,
            title="Elevated market volatility",
            message=f"Market volatility is at {market.volatility:.1f}%.",
            action="Review risk exposure",
            confidence=0.90,
            timestamp=now,
        ))
    return recs


def detect_buy_opportunities(
    portfolio: Portfolio,
    market: Optional[MarketSnapshot],
    performance: Optional[HistoricalPerformance],
    config: RecommendationConfig,
    now: datetime,
) -> list[Recommendation]:
    if market is None or not market.assets:
        return []

    candidates = [
        a for a in market.assets
        if a.ticker not in portfolio.positions
        and a.quant_score is not None
        and a.quant_score > config.buy_score_threshold
    ]
    candidates.sort(key=lambda a: a.quant_score, reverse=True)

    return [
        Recommendation(
            type=RecommendationType.BUY_OPPORTUNITY,
            priority=RecommendationPriority.MEDIUM,
            ticker=asset.ticker,
            name=asset.display_name,
            title=f"Buy opportunity: {asset.ticker}",
            message=f"Quant score {asset.quant_score:.1f} and not currently held.",
            action="Consider buying",
            quant_score=asset.quant_score,
            confidence=0.70,
            timestamp=now,
        )
        for asset in candidates[: config.max_buy_opportunities]
    ]


def detect_sell_alerts(
    portfolio: Portfolio,
    market: Optional[MarketSnapshot],
    performance: Optional[HistoricalPerformance],
    config: RecommendationConfig,
    now: datetime,
) -> list[Recommendation]:
    recs: list[Recommendation] = []
    performance = performance or {}

    for ticker, position in portfolio.positions.items():
        perf = performance.get(ticker)
        if perf is not None and perf.return_60d is not None \
                and perf.return_60d < config.sell_return_threshold:
            recs.append(Recommendation(
                type=RecommendationType.SELL_ALERT,
                priority=RecommendationPriority.HIGH,
                ticker=ticker,
                name=position.name or ticker,
                title=f"Sell alert: {ticker}",
                message=f"Down {abs(perf.return_60d):.1f}% over the last 60 days.",
                action="Consider selling",
                confidence=0.65,
                timestamp=now,
            ))

        if position.quant_score is not None \
                and position.quant_score < config.low_score_threshold:
            recs.append(Recommendation(
                type=RecommendationType.SELL_ALERT,
                priority=RecommendationPriority.MEDIUM,
                ticker=ticker,
                name=position.name or ticker,
                title=f"Low score: {ticker}",
                message=f"Quant score has dropped to {position.quant_score:.1f}.",
                action="Monitor closely",
                confidence=0.60,
                timestamp=now,
            ))
    return recs


def detect_diversification_needs(
    portfolio: Portfolio,
    market: Optional[MarketSnapshot],
    performance: Optional[HistoricalPerformance],
    config: RecommendationConfig,
    now: datetime,
) -> list[Recommendation]:
    return [
        Recommendation(
            type=RecommendationType.DIVERSIFICATION,
            priority=RecommendationPriority.MEDIUM,
            title=f"High {sector} exposure",
            message=f"{sector} makes up {weight * 100:.1f}% of the portfolio.",
            action="Diversify across sectors",
            confidence=0.75,
            timestamp=now,
        )
        for sector, weight in portfolio.sector_exposure.items()
        if weight > config.sector_exposure_threshold
    ]


def detect_regime_changes(
    portfolio: Portfolio,
    market: Optional[MarketSnapshot],
    performance: Optional[HistoricalPerformance],
    config: RecommendationConfig,
    now: datetime,
) -> list[Recommendation]:
    if market is None or market.regime_prediction is None or market.previous_regime is None:
        return []

    prediction = market.regime_prediction
    if prediction.regime == market.previous_regime \
            or prediction.confidence <= config.regime_confidence_threshold:
        return []

    risk_off = prediction.regime == RegimeLabel.RISK_OFF
    return [Recommendation(
        type=RecommendationType.REGIME_CHANGE,
        priority=RecommendationPriority.CRITICAL if risk_off else RecommendationPriority.HIGH,
        title="Market regime change",
        message=(
            f"Regime shifted from {_regime_name(market.previous_regime)} to "
            f"{_regime_name(prediction.regime)} ({prediction.confidence * 100:.0f}% confidence)."
        ),
        action="Reduce risk exposure" if risk_off else "Adjust strategy",
        regime=prediction.regime,
        confidence=prediction.confidence,
        timestamp=now,
    )]


def detect_momentum_shifts(
    portfolio: Portfolio,
    market: Optional[MarketSnapshot],
    performance: Optional[HistoricalPerformance],
    config: RecommendationConfig,
    now: datetime,
) -> list[Recommendation]:
    if market is None or len(market.assets) <= config.min_peers_for_momentum:
        return []

    by_ticker = {a.ticker: a for a in market.assets}
    recs: list[Recommendation] = []
    for ticker, position in portfolio.positions.items():
        asset = by_ticker.get(ticker)
        if asset is None:
            continue
        shift = detect_momentum_shift(asset, market.assets)
        if shift.shift == "decelerating":
            priority = (
                RecommendationPriority.HIGH
                if shift.strength == "strong"
                else RecommendationPriority.MEDIUM
            )
            title, action = f"Momentum fading: {ticker}", "Review position"
        elif shift.shift == "accelerating":
            priority = RecommendationPriority.LOW
            title, action = f"Momentum building: {ticker}", "Consider adding"
        else:
            continue
        recs.append(Recommendation(
            type=RecommendationType.MOMENTUM_SHIFT,
            priority=priority,
            ticker=ticker,
            name=position.name or asset.display_name,
            title=title,
            message=(
                f"6-month ROC {shift.roc_6m:.1f}% vs 12-month {shift.roc_12m:.1f}% "
                f"(acceleration {shift.acceleration:+.1f}, "
                f"{shift.percentile:.0f}th percentile)."
            ),
            action=action,
            confidence=0.60,
            timestamp=now,
        ))
    return recs


STAGES: tuple[Stage, ...] = (
    detect_rebalancing_needs,
    detect_risk_warnings,
    detect_buy_opportunities,
    detect_sell_alerts,
    detect_diversification_needs,
    detect_regime_changes,
)

EXTENDED_STAGES: tuple[Stage, ...] = STAGES + (detect_momentum_shifts,)


# ── Pipeline ──────────────────────────────────────────────────────────────────


def generate_recommendations(
    portfolio: Optional[Portfolio] = None,
    market: Optional[MarketSnapshot] = None,
    historical_performance: Optional[HistoricalPerformance] = None,
    config: Optional[RecommendationConfig] = None,
    now: Optional[datetime] = None,
    stages: Sequence[Stage] = STAGES,
) -> list[Recommendation]:
    """Run every stage and return the recommendations, most urgent first.

    Args:
        portfolio:              Current holdings; ``None`` means empty.
        market:                 Market snapshot (volatility, scanned assets,
                                regime prediction), if available.
        historical_performance: Ticker → trailing realized performance.
        config:                 Stage thresholds.
        now:                    Timestamp stamped on every recommendation.
        stages:                 Stage pipeline; defaults to ``STAGES``.

    Returns:
        A list (possibly empty, never ``None``) stably sorted by priority level.
    """
    portfolio = portfolio or Portfolio()
    config = config or RecommendationConfig()
    now = now or datetime.now(tz=timezone.utc)

    recs: list[Recommendation] = []
    for stage in stages:
        recs.extend(stage(portfolio, market, historical_performance, config, now))

    recs.sort(key=lambda r: r.priority.level, reverse=True)
    logger.debug("Generated %d recommendation(s)", len(recs))
    return recs


def filter_by_priority(
    recommendations: Sequence[Recommendation],
    min_level: int = RecommendationPriority.MEDIUM.level,
) -> list[Recommendation]:
    return [r for r in recommendations if r.priority.level >= min_level]


def group_by_type(
    recommendations: Sequence[Recommendation],
) -> dict[RecommendationType, list[Recommendation]]:
    groups: dict[RecommendationType, list[Recommendation]] = defaultdict(list)
    for rec in recommendations:
        groups[rec.type].append(rec)
    return dict(groups)
