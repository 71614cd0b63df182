"""
Tests for regime training, persistence and inference.

What we test
------------
1. Fewer than 30 samples returns TrainingResult(success=False) instead of raising.
2. Training succeeds on >= 30 samples with accuracy in [0, 1].
3. prepare_training_data skips snapshots with insufficient history.
4. predict_regime probabilities sum to 1 and confidence matches the top class.
5. Insufficient or non-positive market data gives the neutral fallback.
6. The training scaler is reused at inference and survives save/load.
7. confidence_band thresholds.
"""

from __future__ import annotations

import json

import pytest

from market_intel.config import RegimeModelConfig
from market_intel.ml.errors import InvalidModelStateError
from market_intel.models.regime import MarketData, RegimeLabel, RegimeTrainingSample
from market_intel.regime.predictor import (
    FALLBACK_PROBABILITIES,
    FeatureScaler,
    RegimeModel,
    confidence_band,
    predict_regime,
    prepare_training_data,
    train_regime_classifier,
)

CONFIG = RegimeModelConfig(n_estimators=10, seed=123)


@pytest.fixture
def training_samples(price_factory) -> list[RegimeTrainingSample]:
    samples = []
    for i in range(12):
        phase = i * 0.4
        samples.append(RegimeTrainingSample(
            market_data=MarketData(benchmark_prices=price_factory.wavy(260, drift=0.4, phase=phase)),
            regime=RegimeLabel.RISK_ON,
        ))
        samples.append(RegimeTrainingSample(
            market_data=MarketData(benchmark_prices=price_factory.wavy(260, 300.0, drift=-0.4, phase=phase)),
            regime=RegimeLabel.RISK_OFF,
        ))
        samples.append(RegimeTrainingSample(
            market_data=MarketData(benchmark_prices=price_factory.wavy(260, drift=0.0, phase=phase)),
            regime=RegimeLabel.NEUTRAL,
        ))
    return samples


@pytest.fixture
def trained_model(training_samples) -> RegimeModel:
    X, y = prepare_training_data(training_samples, CONFIG)
    result = train_regime_classifier(X, y, CONFIG)
    assert result.success
    return result.model


# ── Training ──────────────────────────────────────────────────────────────────

class TestTraining:
    def test_insufficient_samples_sentinel(self):
        X = [[0.0] * 12 for _ in range(29)]
        y = [1] * 29
        result = train_regime_classifier(X, y, CONFIG)
        assert result.success is False
        assert result.model is None
        assert result.error == "Insufficient training samples"

    def test_success_with_enough_samples(self, training_samples):
        X, y = prepare_training_data(training_samples, CONFIG)
        assert len(X) == 36
        result = train_regime_classifier(X, y, CONFIG)
        assert result.success
        assert 0.0 <= result.accuracy <= 1.0
        assert result.training_size == 36
        assert result.model.scaler.is_fitted

    def test_prepare_skips_short_history(self, price_factory):
        samples = [
            (MarketData(benchmark_prices=price_factory.increasing(250)), RegimeLabel.RISK_ON),
            (MarketData(benchmark_prices=price_factory.increasing(50)), RegimeLabel.RISK_OFF),
        ]
        X, y = prepare_training_data(samples)
        assert len(X) == 1
        assert y == [RegimeLabel.RISK_ON.code]

    def test_mismatched_lengths_raise(self):
        with pytest.raises(ValueError):
            train_regime_classifier([[0.0] * 12] * 30, [0] * 29, CONFIG)


# ── Inference ─────────────────────────────────────────────────────────────────

class TestPrediction:
    def test_probabilities_sum_to_one(self, trained_model, rising_market):
        prediction = predict_regime(rising_market, trained_model, CONFIG)
        assert sum(prediction.probabilities.values()) == pytest.approx(1.0, abs=1e-9)
        assert set(prediction.probabilities) == {"risk_off", "neutral", "risk_on"}
        assert prediction.confidence == max(prediction.probabilities.values())
        assert prediction.probabilities[prediction.regime.value] == prediction.confidence
        assert prediction.error is None
        assert prediction.features is not None

    def test_rising_market_predicted_risk_on(self, trained_model, price_factory):
        market = MarketData(benchmark_prices=price_factory.wavy(260, drift=0.4, phase=0.2))
        assert predict_regime(market, trained_model, CONFIG).regime == RegimeLabel.RISK_ON

    def test_insufficient_data_fallback(self, trained_model, price_factory, now):
        market = MarketData(benchmark_prices=price_factory.increasing(50))
        prediction = predict_regime(market, trained_model, CONFIG, now=now)
        assert prediction.regime == RegimeLabel.NEUTRAL
        assert prediction.confidence == 0.0
        assert prediction.probabilities == FALLBACK_PROBABILITIES
        assert prediction.error == "Insufficient market data"
        assert prediction.is_fallback
        assert prediction.timestamp == now

    def test_zero_benchmark_price_falls_back(self, trained_model, price_factory, now):
        prices = price_factory.increasing(400)
        prices[390] = 0.0
        prediction = predict_regime(
            MarketData(benchmark_prices=prices), trained_model, CONFIG, now=now
        )
        assert prediction.is_fallback
        assert prediction.regime == RegimeLabel.NEUTRAL
        assert prediction.error == "Insufficient market data"

    def test_uses_training_scaler(self, trained_model, rising_market):
        from market_intel.regime.features import extract_regime_features

        row = extract_regime_features(rising_market, CONFIG).as_list()
        scaled = trained_model.scaler.transform([row])
        expected = trained_model.ensemble.predict_proba(scaled)[0]
        assert trained_model.predict_proba(row) == expected


# ── Scaler and persistence ────────────────────────────────────────────────────

class TestScaler:
    def test_zero_spread_column_maps_to_zero(self):
        scaler = FeatureScaler().fit([[1.0, 5.0], [3.0, 5.0]])
        assert scaler.transform([[2.0, 5.0]]) == [[0.0, 0.0]]
        assert scaler.transform([[3.0, 9.0]]) == [[1.0, 0.0]]

    def test_unfitted_transform_raises(self):
        with pytest.raises(InvalidModelStateError):
            FeatureScaler().transform([[1.0]])


class TestPersistence:
    def test_save_load_round_trip(self, trained_model, rising_market, tmp_path):
        artifact = tmp_path / "models" / "regime.pkl"
        trained_model.save(artifact)
        loaded = RegimeModel.load(artifact)

        assert loaded.scaler.means == trained_model.scaler.means
        assert loaded.scaler.stds == trained_model.scaler.stds
        assert loaded.training_size == trained_model.training_size
        original = predict_regime(rising_market, trained_model, CONFIG)
        restored = predict_regime(rising_market, loaded, CONFIG)
        assert restored.probabilities == original.probabilities

    def test_metadata_sidecar(self, trained_model, tmp_path):
        meta_path = tmp_path / "regime.json"
        trained_model.write_metadata(meta_path)
        meta = json.loads(meta_path.read_text())
        assert meta["training_rows"] == 36
        assert len(meta["feature_columns"]) == 12
        assert len(meta["scaler"]["means"]) == 12

    def test_load_missing_artifact_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            RegimeModel.load(tmp_path / "missing.pkl")


@pytest.mark.parametrize("confidence, band", [
    (0.95, "high"),
    (0.70, "high"),
    (0.55, "medium"),
    (0.30, "low"),
    (0.10, "very_low"),
])
def test_confidence_band(confidence, band):
    assert confidence_band(confidence) == band
