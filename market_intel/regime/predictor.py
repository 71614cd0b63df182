"""
Regime classifier training, persistence and inference.

Training pipeline
-----------------
1. ``prepare_training_data(samples)`` extracts one feature row per labelled
   snapshot (snapshots with too little history are skipped).
2. ``train_regime_classifier(X, y, config)`` fits a ``FeatureScaler`` on the
   batch, standardises it and trains an ``EnsembleClassifier``.  The scaler is
   stored inside the returned ``RegimeModel`` and reapplied at inference, so
   live features land in the same space the trees were split on.
3. ``RegimeModel.save()`` / ``RegimeModel.load()`` persist the bundle with
   joblib; ``write_metadata()`` writes a JSON sidecar for inspection.

Inference
---------
``predict_regime(market_data, model)`` returns a ``RegimePrediction``.  When
feature extraction reports insufficient data the result is a neutral fallback
with ``confidence=0`` and ``error`` set; it is never an exception.
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional, Sequence, Union

from market_intel.config import RegimeModelConfig
from market_intel.ml.ensemble import EnsembleClassifier
from market_intel.ml.errors import InvalidModelStateError
from market_intel.models.regime import (
    REGIME_FEATURE_COLS,
    MarketData,
    RegimeLabel,
    RegimePrediction,
    RegimeTrainingSample,
)
from market_intel.regime.features import InsufficientData, extract_regime_features

logger = logging.getLogger(__name__)

MODEL_VERSION = "1.0"

FALLBACK_PROBABILITIES: dict[str, float] = {
    RegimeLabel.RISK_OFF.value: 0.33,
    RegimeLabel.NEUTRAL.value:  0.34,
    RegimeLabel.RISK_ON.value:  0.33,
}
FALLBACK_ERROR = "Insufficient market data"
INSUFFICIENT_SAMPLES_ERROR = "Insufficient training samples"


# ── Scaler ────────────────────────────────────────────────────────────────────


class FeatureScaler:
    """Per-column standardisation captured from a training batch.

    Columns with zero spread map to 0.0.  Population standard deviation is
    used throughout.
    """

    def __init__(self) -> None:
        self.means: Optional[list[float]] = None
        self.stds: Optional[list[float]] = None

    @property
    def is_fitted(self) -> bool:
        return self.means is not None

    def fit(self, X: Sequence[Sequence[float]]) -> "FeatureScaler":
        if not X:
            raise ValueError("FeatureScaler.fit() needs at least one row.")
        n = len(X)
        columns = list(zip(*X))
        self.means = [sum(col) / n for col in columns]
        self.stds = [
            math.sqrt(sum((v - mu) ** 2 for v in col) / n)
            for col, mu in zip(columns, self.means)
        ]
        return self

    def transform(self, X: Sequence[Sequence[float]]) -> list[list[float]]:
        if self.means is None or self.stds is None:
            raise InvalidModelStateError("FeatureScaler is not fitted. Call fit() first.")
        return [
            [
                (v - mu) / sd if sd > 0 else 0.0
                for v, mu, sd in zip(row, self.means, self.stds)
            ]
            for row in X
        ]

    def fit_transform(self, X: Sequence[Sequence[float]]) -> list[list[float]]:
        return self.fit(X).transform(X)

    def to_dict(self) -> dict[str, list[float]]:
        return {"means": list(self.means or []), "stds": list(self.stds or [])}


# ── Model bundle ──────────────────────────────────────────────────────────────


@dataclass
class RegimeModel:
    """A trained regime classifier together with its training-time scaler.

    Attributes:
        ensemble:      Fitted voting ensemble.
        scaler:        Scaler fitted on the training batch.
        feature_names: Column order the ensemble was trained on.
        accuracy:      Resubstitution accuracy on the training batch.
        training_size: Number of training rows.
        trained_at:    UTC training time.
    """

    ensemble: EnsembleClassifier
    scaler: FeatureScaler
    feature_names: list[str] = field(default_factory=lambda: list(REGIME_FEATURE_COLS))
    accuracy: float = 0.0
    training_size: int = 0
    trained_at: datetime = field(default_factory=lambda: datetime.now(tz=timezone.utc))

    def predict_proba(self, row: Sequence[float]) -> list[float]:
        """Class probabilities for one raw (unscaled) feature row."""
        return self.ensemble.predict_proba(self.scaler.transform([row]))[0]

    # ── Persistence ───────────────────────────────────────────────────────────

    def save(self, artifact_path: Path) -> None:
        """Serialize the bundle to a joblib pickle file.

        Raises:
            InvalidModelStateError: If the ensemble has not been fitted.
        """
        if not self.ensemble.is_fitted:
            raise InvalidModelStateError("Cannot save an unfitted regime model.")

        import joblib

        artifact_path = Path(artifact_path)
        artifact_path.parent.mkdir(parents=True, exist_ok=True)
        joblib.dump(
            {
                "ensemble":      self.ensemble,
                "scaler":        self.scaler,
                "feature_names": self.feature_names,
                "accuracy":      self.accuracy,
                "training_size": self.training_size,
                "trained_at":    self.trained_at.isoformat(),
                "model_version": MODEL_VERSION,
            },
            artifact_path,
        )
        logger.info("Regime model saved: %s", artifact_path)

    @classmethod
    def load(cls, artifact_path: Path) -> "RegimeModel":
        """Load a bundle written by ``save()``.

        Raises:
            FileNotFoundError: If ``artifact_path`` does not exist.
        """
        import joblib

        artifact_path = Path(artifact_path)
        if not artifact_path.exists():
            raise FileNotFoundError(f"Regime model artifact not found: {artifact_path}")

        state = joblib.load(artifact_path)
        model = cls(
            ensemble=state["ensemble"],
            scaler=state["scaler"],
            feature_names=state.get("feature_names", list(REGIME_FEATURE_COLS)),
            accuracy=state.get("accuracy", 0.0),
            training_size=state.get("training_size", 0),
            trained_at=datetime.fromisoformat(state["trained_at"]),
        )
        logger.info(
            "Regime model loaded: %s (trained=%s, rows=%d)",
            artifact_path, state["trained_at"], model.training_size,
        )
        return model

    def write_metadata(self, meta_path: Path) -> None:
        """Write a JSON metadata sidecar alongside the model artifact."""
        meta = {
            "schema_version":  MODEL_VERSION,
            "model_type":      "bagged_regression_trees",
            "trained_at":      self.trained_at.isoformat(),
            "feature_columns": self.feature_names,
            "hyperparameters": {
                "n_estimators":      self.ensemble.n_estimators,
                "max_depth":         self.ensemble.max_depth,
                "min_samples_split": self.ensemble.min_samples_split,
                "min_samples_leaf":  self.ensemble.min_samples_leaf,
                "num_classes":       self.ensemble.num_classes,
                "seed":              self.ensemble.seed,
            },
            "training_accuracy":  self.accuracy,
            "training_rows":      self.training_size,
            "scaler":             self.scaler.to_dict(),
            "feature_importance": dict(
                zip(self.feature_names, self.ensemble.feature_importance())
            ),
        }
        meta_path = Path(meta_path)
        meta_path.parent.mkdir(parents=True, exist_ok=True)
        meta_path.write_text(json.dumps(meta, indent=2))
        logger.debug("Regime model metadata written: %s", meta_path)


@dataclass(frozen=True)
class TrainingResult:
    """Outcome of ``train_regime_classifier()``.

    ``success=False`` (with ``error`` set and ``model=None``) is the expected
    result for an undersized training batch, not an exception.
    """

    success: bool
    model: Optional[RegimeModel] = None
    accuracy: Optional[float] = None
    training_size: int = 0
    feature_names: tuple[str, ...] = REGIME_FEATURE_COLS
    error: Optional[str] = None


# ── Training ──────────────────────────────────────────────────────────────────


TrainingSample = Union[RegimeTrainingSample, tuple[MarketData, RegimeLabel]]


def prepare_training_data(
    samples: Iterable[TrainingSample],
    config: Optional[RegimeModelConfig] = None,
) -> tuple[list[list[float]], list[int]]:
    """Build the feature matrix and class-code targets from labelled snapshots.

    Snapshots whose feature extraction reports insufficient data are skipped.

    Returns:
        ``(X, y)`` with rows in ``REGIME_FEATURE_COLS`` order and ``y`` holding
        ``RegimeLabel.code`` values.
    """
    X: list[list[float]] = []
    y: list[int] = []
    skipped = 0

    for sample in samples:
        if isinstance(sample, RegimeTrainingSample):
            market_data, label = sample.market_data, sample.regime
        else:
            market_data, label = sample
        features = extract_regime_features(market_data, config)
        if isinstance(features, InsufficientData):
            skipped += 1
            continue
        X.append(features.as_list())
        y.append(RegimeLabel(label).code)

    if skipped:
        logger.info("Skipped %d training sample(s) with insufficient history", skipped)
    return X, y


def train_regime_classifier(
    X: Sequence[Sequence[float]],
    y: Sequence[int],
    config: Optional[RegimeModelConfig] = None,
) -> TrainingResult:
    """Standardise ``X`` and train the regime ensemble.

    Args:
        X:      Raw feature rows in ``REGIME_FEATURE_COLS`` order.
        y:      Class codes (0 = risk_off, 1 = neutral, 2 = risk_on).
        config: Hyperparameters; defaults to ``RegimeModelConfig()``.

    Returns:
        ``TrainingResult``.  Fewer than ``config.min_training_samples`` rows
        yield ``success=False`` with ``error="Insufficient training samples"``.

    Raises:
        ValueError: ``X`` and ``y`` lengths differ.
    """
    config = config or RegimeModelConfig()

    if len(X) != len(y):
        raise ValueError(f"X and y must have the same length; got {len(X)} and {len(y)}.")

    if len(X) < config.min_training_samples:
        logger.warning(
            "Regime training skipped: %d samples (< %d required)",
            len(X), config.min_training_samples,
        )
        return TrainingResult(
            success=False,
            training_size=len(X),
            error=INSUFFICIENT_SAMPLES_ERROR,
        )

    scaler = FeatureScaler()
    X_scaled = scaler.fit_transform(X)

    ensemble = EnsembleClassifier(
        n_estimators=config.n_estimators,
        max_depth=config.max_depth,
        min_samples_split=config.min_samples_split,
        min_samples_leaf=config.min_samples_leaf,
        num_classes=config.num_classes,
        seed=config.seed,
    )
    ensemble.fit(X_scaled, list(y))

    predictions = ensemble.predict(X_scaled)
    correct = sum(1 for pred, actual in zip(predictions, y) if pred == actual)
    accuracy = correct / len(predictions)

    model = RegimeModel(
        ensemble=ensemble,
        scaler=scaler,
        feature_names=list(REGIME_FEATURE_COLS),
        accuracy=accuracy,
        training_size=len(X),
    )
    logger.info(
        "Regime classifier trained: %d samples, %d trees, accuracy=%.3f",
        len(X), config.n_estimators, accuracy,
    )
    return TrainingResult(
        success=True,
        model=model,
        accuracy=accuracy,
        training_size=len(X),
    )


# ── Inference ─────────────────────────────────────────────────────────────────


def predict_regime(
    market_data: MarketData,
    model: RegimeModel,
    config: Optional[RegimeModelConfig] = None,
    now: Optional[datetime] = None,
) -> RegimePrediction:
    """Classify the current market regime.

    Args:
        market_data: Current market snapshot.
        model:       Trained ``RegimeModel``.
        config:      Feature window settings.
        now:         Prediction timestamp; defaults to the current UTC time.

    Returns:
        ``RegimePrediction``; a neutral fallback with ``error`` set when the
        snapshot has insufficient history.

    Raises:
        InvalidModelStateError: ``model`` holds an unfitted ensemble.
    """
    now = now or datetime.now(tz=timezone.utc)
    features = extract_regime_features(market_data, config)

    if isinstance(features, InsufficientData):
        logger.warning("Regime prediction fell back to neutral: %s", features.reason)
        return RegimePrediction(
            regime=RegimeLabel.NEUTRAL,
            confidence=0.0,
            probabilities=dict(FALLBACK_PROBABILITIES),
            features=None,
            timestamp=now,
            error=FALLBACK_ERROR,
        )

    probabilities = model.predict_proba(features.as_list())
    best = max(range(len(probabilities)), key=lambda c: probabilities[c])

    return RegimePrediction(
        regime=RegimeLabel.from_code(best),
        confidence=probabilities[best],
        probabilities={
            RegimeLabel.from_code(code).value: p
            for code, p in enumerate(probabilities)
        },
        features=features,
        timestamp=now,
    )


def confidence_band(
    confidence: float,
    config: Optional[RegimeModelConfig] = None,
) -> str:
    """Map a prediction confidence to ``high`` / ``medium`` / ``low`` / ``very_low``."""
    config = config or RegimeModelConfig()
    if confidence >= config.high_confidence:
        return "high"
    if confidence >= config.medium_confidence:
        return "medium"
    if confidence >= config.low_confidence:
        return "low"
    return "very_low"
