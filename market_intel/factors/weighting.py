"""
Factor weight optimization.

Pipeline
--------
1. ``prepare_factor_training_data(histories)`` splits every history at
   ``forward_days`` before its end.  Features come from the prices up to the
   split; the target is the percent return over the remaining
   ``forward_days``.  Histories too short for both are skipped.
2. ``train_factor_model(X, y)`` holds out ``test_ratio`` of the rows (seeded
   shuffle), fits an ``EnsembleRegressor`` on the rest, scores both sides
   (R², MAE, RMSE) and runs ``cv_folds``-fold cross-validation.
3. ``optimize_factor_weights(result)`` credits each feature's split-count
   importance to its factor, adds ``value_prior`` for the value factor,
   normalises, and blends with the default weights.  A failed training run or
   a held-out R² below ``min_test_r2`` returns the defaults with
   ``use_default=True``.

``train_and_optimize_factor_weights()`` chains the three steps.
"""

from __future__ import annotations

import logging
import random
from dataclasses import asdict, dataclass, field
from typing import Any, Iterable, Optional, Sequence

from market_intel.config import FactorWeightingConfig
from market_intel.factors.features import extract_factor_features
from market_intel.ml.ensemble import EnsembleRegressor
from market_intel.ml.stats import mean, pstdev
from market_intel.ml.validation import (
    k_fold_split,
    mean_absolute_error,
    r2_score,
    root_mean_squared_error,
    train_test_split,
)
from market_intel.models.factor import (
    FACTOR_FEATURE_COLS,
    FACTOR_FEATURE_GROUPS,
    AssetHistory,
    FactorName,
    FactorWeights,
)

logger = logging.getLogger(__name__)

INSUFFICIENT_SAMPLES_ERROR = "Insufficient training samples"
LOW_PERFORMANCE_REASON = "Low model performance"


@dataclass(frozen=True)
class RegressionMetrics:
    r2: float
    mae: float
    rmse: float

    @classmethod
    def score(cls, actual: Sequence[float], predicted: Sequence[float]) -> "RegressionMetrics":
        return cls(
            r2=r2_score(actual, predicted),
            mae=mean_absolute_error(actual, predicted),
            rmse=root_mean_squared_error(actual, predicted),
        )


@dataclass(frozen=True)
class CrossValidationScores:
    """Per-fold held-out R² with its mean and population std."""

    mean: float
    std: float
    scores: tuple[float, ...]


@dataclass(frozen=True)
class FactorTrainingResult:
    """Outcome of ``train_factor_model()``.

    ``success=False`` (with ``error`` set and ``model=None``) is the expected
    result for an undersized batch, not an exception.
    """

    success: bool
    model: Optional[EnsembleRegressor] = None
    train_metrics: Optional[RegressionMetrics] = None
    test_metrics: Optional[RegressionMetrics] = None
    cv_scores: Optional[CrossValidationScores] = None
    feature_importance: tuple[float, ...] = ()
    feature_names: tuple[str, ...] = FACTOR_FEATURE_COLS
    training_size: int = 0
    test_size: int = 0
    error: Optional[str] = None


@dataclass(frozen=True)
class FactorWeightsResult:
    """Weights to apply, with the evidence behind them.

    ``use_default=True`` means ``weights`` are the configured defaults and
    ``reason`` says why.
    """

    success: bool
    weights: FactorWeights
    use_default: bool
    reason: Optional[str] = None
    train_metrics: Optional[RegressionMetrics] = None
    test_metrics: Optional[RegressionMetrics] = None
    cv_scores: Optional[CrossValidationScores] = None
    feature_importance: list[tuple[str, float]] = field(default_factory=list)
    training_size: int = 0
    test_size: int = 0

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["weights"] = self.weights.as_dict()
        data["feature_importance"] = [
            {"feature": name, "importance": value}
            for name, value in self.feature_importance
        ]
        return data


# ── Training data ─────────────────────────────────────────────────────────────


def prepare_factor_training_data(
    histories: Iterable[AssetHistory],
    config: Optional[FactorWeightingConfig] = None,
) -> tuple[list[list[float]], list[float]]:
    """Build the feature matrix and forward-return targets.

    Returns:
        ``(X, y)`` with rows in ``FACTOR_FEATURE_COLS`` order and ``y`` in
        percent.
    """
    config = config or FactorWeightingConfig()
    horizon = config.forward_days

    X: list[list[float]] = []
    y: list[float] = []
    skipped = 0

    for history in histories:
        prices = history.prices
        if len(prices) <= horizon:
            skipped += 1
            continue
        past = prices[:-horizon]
        volumes = history.volumes[:-horizon] if history.volumes else None
        features = extract_factor_features(past, volumes, config.min_history_points)
        if features is None:
            skipped += 1
            continue
        X.append(features.as_list())
        y.append((prices[-1] / past[-1] - 1) * 100)

    if skipped:
        logger.info("Skipped %d asset history(ies) too short or non-positive", skipped)
    return X, y


# ── Training ──────────────────────────────────────────────────────────────────


def _regressor(config: FactorWeightingConfig, seed: Optional[int]) -> EnsembleRegressor:
    return EnsembleRegressor(
        n_estimators=config.n_estimators,
        max_depth=config.max_depth,
        min_samples_split=config.min_samples_split,
        min_samples_leaf=config.min_samples_leaf,
        seed=seed,
    )


def _fold_seed(config: FactorWeightingConfig, fold: int) -> Optional[int]:
    return None if config.seed is None else config.seed + fold + 1


def cross_validate(
    X: Sequence[Sequence[float]],
    y: Sequence[float],
    config: Optional[FactorWeightingConfig] = None,
) -> CrossValidationScores:
    """Held-out R² of a fresh regressor per contiguous fold."""
    config = config or FactorWeightingConfig()
    scores: list[float] = []
    for fold, (train_idx, test_idx) in enumerate(k_fold_split(len(X), config.cv_folds)):
        model = _regressor(config, _fold_seed(config, fold))
        model.fit([X[i] for i in train_idx], [y[i] for i in train_idx])
        predicted = model.predict([X[i] for i in test_idx])
        scores.append(r2_score([y[i] for i in test_idx], predicted))
    return CrossValidationScores(mean=mean(scores), std=pstdev(scores), scores=tuple(scores))


def train_factor_model(
    X: Sequence[Sequence[float]],
    y: Sequence[float],
    config: Optional[FactorWeightingConfig] = None,
) -> FactorTrainingResult:
    """Fit the factor regressor and measure it.

    Raises:
        ValueError: ``X`` and ``y`` lengths differ.
    """
    config = config or FactorWeightingConfig()

    if len(X) != len(y):
        raise ValueError(f"X and y must have the same length; got {len(X)} and {len(y)}.")

    if len(X) < config.min_training_samples:
        logger.warning(
            "Factor training skipped: %d samples (< %d required)",
            len(X), config.min_training_samples,
        )
        return FactorTrainingResult(
            success=False, training_size=len(X), error=INSUFFICIENT_SAMPLES_ERROR
        )

    train_idx, test_idx = train_test_split(len(X), config.test_ratio, random.Random(config.seed))
    X_train = [X[i] for i in train_idx]
    y_train = [y[i] for i in train_idx]
    X_test = [X[i] for i in test_idx]
    y_test = [y[i] for i in test_idx]

    model = _regressor(config, config.seed).fit(X_train, y_train)
    train_metrics = RegressionMetrics.score(y_train, model.predict(X_train))
    test_metrics = RegressionMetrics.score(y_test, model.predict(X_test))
    cv_scores = cross_validate(X, y, config)

    logger.info(
        "Factor model trained: %d train / %d test, test R²=%.3f, CV R²=%.3f±%.3f",
        len(X_train), len(X_test), test_metrics.r2, cv_scores.mean, cv_scores.std,
    )
    return FactorTrainingResult(
        success=True,
        model=model,
        train_metrics=train_metrics,
        test_metrics=test_metrics,
        cv_scores=cv_scores,
        feature_importance=tuple(model.feature_importance()),
        training_size=len(X_train),
        test_size=len(X_test),
    )


# ── Weights ───────────────────────────────────────────────────────────────────


def importance_to_factor_weights(
    importance: Sequence[float],
    feature_names: Sequence[str] = FACTOR_FEATURE_COLS,
    config: Optional[FactorWeightingConfig] = None,
) -> FactorWeights:
    """Sum feature importance per factor, normalise, blend with the defaults.

    Features outside ``FACTOR_FEATURE_GROUPS`` are ignored.  The value factor
    scores ``config.value_prior``.  When every score is zero the defaults are
    used as the learned weights.
    """
    config = config or FactorWeightingConfig()
    defaults = config.default_weights

    owner = {
        feature: factor
        for factor, features in FACTOR_FEATURE_GROUPS.items()
        for feature in features
    }
    scores = {factor: 0.0 for factor in FactorName}
    for name, value in zip(feature_names, importance):
        if name in owner:
            scores[owner[name]] += value
    scores[FactorName.VALUE] = config.value_prior

    total = sum(scores.values())
    learned = {
        factor: (score / total if total > 0 else defaults.get(factor))
        for factor, score in scores.items()
    }
    s = config.smoothing
    return FactorWeights(**{
        factor.value: s * learned[factor] + (1 - s) * defaults.get(factor)
        for factor in FactorName
    })


def optimize_factor_weights(
    training: FactorTrainingResult,
    config: Optional[FactorWeightingConfig] = None,
) -> FactorWeightsResult:
    config = config or FactorWeightingConfig()

    if not training.success or not training.feature_importance:
        return FactorWeightsResult(
            success=False,
            weights=config.default_weights,
            use_default=True,
            reason=training.error or "No feature importance available",
            training_size=training.training_size,
        )

    context = dict(
        train_metrics=training.train_metrics,
        test_metrics=training.test_metrics,
        cv_scores=training.cv_scores,
        training_size=training.training_size,
        test_size=training.test_size,
    )

    if training.test_metrics is None or training.test_metrics.r2 < config.min_test_r2:
        logger.warning(
            "Factor model R² too low (%s < %.2f); keeping default weights",
            None if training.test_metrics is None else f"{training.test_metrics.r2:.3f}",
            config.min_test_r2,
        )
        return FactorWeightsResult(
            success=False,
            weights=config.default_weights,
            use_default=True,
            reason=LOW_PERFORMANCE_REASON,
            **context,
        )

    ranked = sorted(
        zip(training.feature_names, training.feature_importance),
        key=lambda pair: pair[1],
        reverse=True,
    )
    return FactorWeightsResult(
        success=True,
        weights=importance_to_factor_weights(
            training.feature_importance, training.feature_names, config
        ),
        use_default=False,
        feature_importance=ranked,
        **context,
    )


def train_and_optimize_factor_weights(
    histories: Iterable[AssetHistory],
    config: Optional[FactorWeightingConfig] = None,
) -> FactorWeightsResult:
    """Prepare, train and optimise in one call; never raises for thin data."""
    config = config or FactorWeightingConfig()
    X, y = prepare_factor_training_data(histories, config)
    return optimize_factor_weights(train_factor_model(X, y, config), config)
