"""
Application configuration management.

Load order (each layer overrides the previous):
  1. ``config/default.toml``      : committed static defaults
  2. ``config/local.toml``        : optional local overrides (gitignored)
  3. ``.env``                     : local secrets and env overrides (gitignored)
  4. Environment variables        : ``MARKET_INTEL_*`` prefix

Entry point: ``load_config(config_path=None) -> AppConfig``

Library functions accept the individual config section they need (e.g.
``AdaptiveScoringConfig``) and default to that section's defaults, so the
engine is usable without a TOML file.  The CLI always goes through
``load_config()``.
"""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from market_intel.models.factor import FactorWeights
from market_intel.models.regime import RegimeLabel

# ── Sub-config models ─────────────────────────────────────────────────────────


class DatabaseConfig(BaseModel):
    """SQLite settings for the performance ledger store."""

    model_config = ConfigDict(frozen=True)

    db_path: str = "data/db/market_intel.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000


class LoggingConfig(BaseModel):
    """Logging output settings."""

    model_config = ConfigDict(frozen=True)

    level: str = "INFO"
    log_file: str = "data/logs/market_intel.log"
    json_format: bool = False

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid:
            raise ValueError(f"Log level must be one of {sorted(valid)}, got '{v}'.")
        return v.upper()


class RegimeModelConfig(BaseModel):
    """Regime classifier hyperparameters and feature windows."""

    model_config = ConfigDict(frozen=True)

    n_estimators: int = 30
    max_depth: int = 6
    min_samples_split: int = 10
    min_samples_leaf: int = 5
    num_classes: int = 3
    min_training_samples: int = 30
    min_history_points: int = 200
    short_window: int = 20
    medium_window: int = 60
    trend_window: int = 50
    long_window: int = 200
    high_confidence: float = 0.7
    medium_confidence: float = 0.5
    low_confidence: float = 0.3
    seed: Optional[int] = None

    @field_validator("n_estimators", "max_depth", "min_samples_split", "min_samples_leaf")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"Tree hyperparameters must be >= 1, got {v}.")
        return v

    @field_validator("num_classes")
    @classmethod
    def validate_num_classes(cls, v: int) -> int:
        if v != len(RegimeLabel):
            raise ValueError(
                f"num_classes must equal the number of regimes ({len(RegimeLabel)}), got {v}."
            )
        return v

    @model_validator(mode="after")
    def validate_windows(self) -> "RegimeModelConfig":
        # EMA(short) < EMA(trend) < EMA(long), all fed from min_history_points prices.
        if not 2 <= self.short_window < self.trend_window < self.long_window:
            raise ValueError(
                "Windows must satisfy 2 <= short_window < trend_window < long_window; "
                f"got {self.short_window}, {self.trend_window}, {self.long_window}."
            )
        if max(self.medium_window, self.long_window) > self.min_history_points:
            raise ValueError(
                f"min_history_points ({self.min_history_points}) must cover "
                "medium_window and long_window."
            )
        return self


class AdaptiveScoringConfig(BaseModel):
    """Performance-feedback settings for the adaptive scorer.

    The hit-rate tiers are evaluated top-down: the first threshold the hit rate
    reaches selects the multiplier.  Anything below ``poor_hit_rate`` gets
    ``very_poor_multiplier``.
    """

    model_config = ConfigDict(frozen=True)

    lookback_days: int = 60
    min_samples_for_adjustment: int = 10

    excellent_hit_rate: float = 0.70
    good_hit_rate: float = 0.60
    neutral_hit_rate: float = 0.50
    poor_hit_rate: float = 0.40

    excellent_multiplier: float = 1.25
    good_multiplier: float = 1.10
    neutral_multiplier: float = 1.00
    poor_multiplier: float = 0.85
    very_poor_multiplier: float = 0.70

    decay_enabled: bool = True
    half_life_days: float = 10.0
    min_decay_weight: float = 0.5

    min_score: float = 0.0
    max_score: float = 100.0

    @model_validator(mode="after")
    def validate_tiers(self) -> "AdaptiveScoringConfig":
        tiers = [
            self.excellent_hit_rate,
            self.good_hit_rate,
            self.neutral_hit_rate,
            self.poor_hit_rate,
        ]
        if tiers != sorted(tiers, reverse=True):
            raise ValueError(f"Hit-rate tiers must be descending, got {tiers}.")
        if self.half_life_days <= 0:
            raise ValueError("half_life_days must be positive.")
        return self


class AnomalyConfig(BaseModel):
    """Thresholds for the anomaly detectors."""

    model_config = ConfigDict(frozen=True)

    z_moderate: float = 2.0
    z_high: float = 2.5
    z_extreme: float = 3.0

    kmeans_k: int = 3
    kmeans_max_iterations: int = 100
    cluster_outlier_fraction: float = 0.10
    cluster_extreme_ratio: float = 0.90

    correlation_threshold: float = 0.90
    correlation_extreme: float = 0.95

    divergence_threshold: float = 20.0
    divergence_high_ratio: float = 1.5

    seed: Optional[int] = 42


class RecommendationConfig(BaseModel):
    """Trigger thresholds for the recommendation stages."""

    model_config = ConfigDict(frozen=True)

    rebalance_threshold: float = 0.05
    rebalance_high_threshold: float = 0.10
    concentration_threshold: float = 0.60
    volatility_spike: float = 30.0
    buy_score_threshold: float = 70.0
    max_buy_opportunities: int = 3
    sell_return_threshold: float = -15.0
    low_score_threshold: float = 40.0
    sector_exposure_threshold: float = 0.35
    regime_confidence_threshold: float = 0.70
    min_peers_for_momentum: int = 10


class FactorWeightingConfig(BaseModel):
    """Factor weight optimizer settings.

    Learned weights are blended with ``default_weights``:
    ``smoothing * learned + (1 - smoothing) * default``.  A model whose
    held-out R² is below ``min_test_r2`` is not trusted and the defaults are
    returned unchanged.
    """

    model_config = ConfigDict(frozen=True)

    default_weights: FactorWeights = FactorWeights(
        momentum=0.30, value=0.20, volatility=0.15, volume=0.15, quality=0.20
    )
    n_estimators: int = 50
    max_depth: int = 8
    min_samples_split: int = 5
    min_samples_leaf: int = 2
    min_training_samples: int = 20
    min_history_points: int = 50
    forward_days: int = 60
    test_ratio: float = 0.2
    cv_folds: int = 5
    min_test_r2: float = 0.1
    smoothing: float = 0.6
    value_prior: float = 0.15
    seed: Optional[int] = None

    @field_validator("n_estimators", "max_depth", "min_samples_split", "min_samples_leaf")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"Tree hyperparameters must be >= 1, got {v}.")
        return v

    @field_validator("default_weights")
    @classmethod
    def validate_weights_sum(cls, v: FactorWeights) -> FactorWeights:
        total = sum(v.as_dict().values())
        if abs(total - 1.0) > 1e-6:
            raise ValueError(f"default_weights must sum to 1, got {total:.4f}.")
        return v

    @model_validator(mode="after")
    def validate_ranges(self) -> "FactorWeightingConfig":
        if not 0.0 < self.test_ratio < 1.0:
            raise ValueError(f"test_ratio must be in (0, 1), got {self.test_ratio}.")
        if int(self.min_training_samples * self.test_ratio) < 1:
            raise ValueError("min_training_samples * test_ratio must hold out at least one row.")
        if not 0.0 <= self.smoothing <= 1.0:
            raise ValueError(f"smoothing must be in [0, 1], got {self.smoothing}.")
        if self.value_prior < 0:
            raise ValueError("value_prior must be >= 0.")
        if self.cv_folds < 2 or self.cv_folds > self.min_training_samples:
            raise ValueError(
                f"cv_folds must be in [2, min_training_samples], got {self.cv_folds}."
            )
        if self.min_history_points < 20 or self.forward_days < 1:
            raise ValueError("min_history_points must be >= 20 and forward_days >= 1.")
        return self


class AppConfig(BaseModel):
    """Complete application configuration, the single source of truth."""

    model_config = ConfigDict(frozen=True)

    database: DatabaseConfig = DatabaseConfig()
    logging: LoggingConfig = LoggingConfig()
    regime: RegimeModelConfig = RegimeModelConfig()
    adaptive: AdaptiveScoringConfig = AdaptiveScoringConfig()
    anomaly: AnomalyConfig = AnomalyConfig()
    recommendations: RecommendationConfig = RecommendationConfig()
    factors: FactorWeightingConfig = FactorWeightingConfig()
    debug: bool = False


# ── Loader ────────────────────────────────────────────────────────────────────

_PROJECT_ROOT = Path(__file__).parent.parent


def _find_project_root() -> Path:
    """Walk up from this file to find the project root (contains pyproject.toml)."""
    candidate = Path(__file__).parent
    for _ in range(5):
        if (candidate / "pyproject.toml").exists():
            return candidate
        candidate = candidate.parent
    return _PROJECT_ROOT


def load_config(config_path: Optional[Path] = None) -> AppConfig:
    """Load and merge application configuration.

    Args:
        config_path: Explicit path to a TOML config file. Defaults to
            ``<project_root>/config/default.toml``.

    Returns:
        Fully validated ``AppConfig`` instance.

    Raises:
        FileNotFoundError: If the specified ``config_path`` does not exist.
        pydantic.ValidationError: If merged config values fail validation.
    """
    root = _find_project_root()

    load_dotenv(dotenv_path=root / ".env", override=False)

    if config_path is None:
        config_path = root / "config" / "default.toml"

    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Config file not found: {config_path}\n"
            "Create config/default.toml or pass --config."
        )

    with open(config_path, "rb") as f:
        raw: dict[str, Any] = tomllib.load(f)

    local_config_path = config_path.parent / "local.toml"
    if local_config_path.exists():
        with open(local_config_path, "rb") as f:
            local_raw: dict[str, Any] = tomllib.load(f)
        raw = _deep_merge(raw, local_raw)

    raw = _apply_env_overrides(raw)

    return _build_app_config(raw)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge ``override`` into ``base``."""
    result = dict(base)
    for key, val in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(val, dict):
            result[key] = _deep_merge(result[key], val)
        else:
            result[key] = val
    return result


def _apply_env_overrides(raw: dict[str, Any]) -> dict[str, Any]:
    """Apply MARKET_INTEL_* env vars to the raw config dict.

    Supported overrides:
      MARKET_INTEL_DB_PATH    → raw["database"]["db_path"]
      MARKET_INTEL_LOG_LEVEL  → raw["logging"]["level"]
      MARKET_INTEL_DEBUG      → raw["debug"]
      MARKET_INTEL_SEED       → the regime, anomaly and factors ``seed``
    """
    if db_path := os.environ.get("MARKET_INTEL_DB_PATH"):
        raw.setdefault("database", {})["db_path"] = db_path

    if log_level := os.environ.get("MARKET_INTEL_LOG_LEVEL"):
        raw.setdefault("logging", {})["level"] = log_level

    if debug := os.environ.get("MARKET_INTEL_DEBUG"):
        raw["debug"] = debug.lower() in ("1", "true", "yes")

    if seed := os.environ.get("MARKET_INTEL_SEED"):
        raw.setdefault("regime", {})["seed"] = int(seed)
        raw.setdefault("anomaly", {})["seed"] = int(seed)
        raw.setdefault("factors", {})["seed"] = int(seed)

    return raw


def _build_app_config(raw: dict[str, Any]) -> AppConfig:
    """Map raw TOML dict to ``AppConfig`` model structure."""
    project = raw.pop("project", {})

    return AppConfig(
        database=DatabaseConfig(**raw.get("database", {})),
        logging=LoggingConfig(**raw.get("logging", {})),
        regime=RegimeModelConfig(**raw.get("regime", {})),
        adaptive=AdaptiveScoringConfig(**raw.get("adaptive", {})),
        anomaly=AnomalyConfig(**raw.get("anomaly", {})),
        recommendations=RecommendationConfig(**raw.get("recommendations", {})),
        factors=FactorWeightingConfig(**raw.get("factors", {})),
        debug=raw.get("debug", project.get("debug", False)),
    )
