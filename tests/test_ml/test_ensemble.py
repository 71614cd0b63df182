"""
Tests for the bagged voting ensemble.

What we test
------------
1. predict_proba rows sum to 1 and every entry lies in [0, 1].
2. A separable three-class problem is learned.
3. The same seed reproduces the forest exactly; refit replaces all trees.
4. Ties resolve to the lowest class index; a 0.5 or 1.5 tree output votes up.
. EnsembleRegressor averages its trees and tracks a smooth target.
"""

from __future__ import annotations

import random

import pytest

from market_intel.ml.ensemble import EnsembleClassifier, EnsembleRegressor
from market_intel.ml.errors import InvalidModelStateError
from market_intel.ml.tree import DecisionTree


def _three_class_data(n_per_class: int = 20, seed: int = 0):
    rng = random.Random(seed)
    X, y = [], []
    for label, centre in enumerate((-3.0, 0.0, 3.0)):
        for _ in range(n_per_class):
            X.append([centre + rng.uniform(-0.5, 0.5), rng.uniform(-1, 1)])
            y.append(label)
    return X, y


class TestProbabilities:
    def test_rows_sum_to_one(self):
        X, y = _three_class_data()
        model = EnsembleClassifier(n_estimators=15, min_samples_split=4,
                                   min_samples_leaf=2, seed=7).fit(X, y)
        for row in model.predict_proba(X):
            assert sum(row) == pytest.approx(1.0, abs=1e-9)
            assert all(0.0 <= p <= 1.0 for p in row)
            assert len(row) == 3

    def test_learns_separable_classes(self):
        X, y = _three_class_data()
        model = EnsembleClassifier(n_estimators=25, min_samples_split=4,
                                   min_samples_leaf=2, seed=11).fit(X, y)
        predictions = model.predict([[-3.0, 0.0], [0.0, 0.0], [3.0, 0.0]])
        assert predictions == [0, 1, 2]

    def test_votes_are_clamped_to_class_range(self):
        model = EnsembleClassifier(n_estimators=5, min_samples_split=2,
                                   min_samples_leaf=1, num_classes=2, seed=1)
        model.fit([[0.0], [1.0], [2.0], [3.0]], [0, 0, 1, 1])
        for row in model.predict_proba([[-100.0], [100.0]]):
            assert len(row) == 2
            assert sum(row) == pytest.approx(1.0)


class TestDeterminism:
    def test_same_seed_same_forest(self):
        X, y = _three_class_data(seed=4)
        a = EnsembleClassifier(n_estimators=10, seed=42).fit(X, y)
        b = EnsembleClassifier(n_estimators=10, seed=42).fit(X, y)
        assert a.predict_proba(X) == b.predict_proba(X)

    def test_refit_replaces_trees(self):
        X, y = _three_class_data()
        model = EnsembleClassifier(n_estimators=6, seed=1).fit(X, y)
        first = list(model.trees)
        model.fit(X, y)
        assert len(model.trees) == 6
        assert not any(t in first for t in model.trees)

    def test_feature_importance_normalised(self):
        X, y = _three_class_data()
        model = EnsembleClassifier(n_estimators=10, min_samples_split=4,
                                   min_samples_leaf=2, seed=3).fit(X, y)
        importance = model.feature_importance()
        assert sum(importance) == pytest.approx(1.0)
        assert len(importance) == 2
        assert importance[0] > 0


class TestContracts:
    def test_tie_goes_to_lowest_class(self):
        model = EnsembleClassifier(num_classes=3)
        model.predict_proba = lambda X: [[0.4, 0.4, 0.2]]
        assert model.predict([[0.0]]) == [0]

    @pytest.mark.parametrize("labels, expected", [
        ([0, 1], [0.0, 1.0, 0.0]),
        ([1, 2], [0.0, 0.0, 1.0]),
    ])
    def test_half_way_outputs_vote_up(self, labels, expected):
        tree = DecisionTree().fit([[0.0]] * len(labels), labels)
        model = EnsembleClassifier(num_classes=3)
        model.trees = [tree]
        assert model.predict_proba([[0.0]]) == [expected]

    def test_untrained_raises(self):
        with pytest.raises(InvalidModelStateError):
            EnsembleClassifier().predict_proba([[0.0]])

    def test_empty_training_set_raises(self):
        with pytest.raises(ValueError):
            EnsembleClassifier().fit([], [])

    def test_mismatched_lengths_raise(self):
        with pytest.raises(ValueError):
            EnsembleClassifier().fit([[0.0], [1.0]], [0])


# ── Regressor ─────────────────────────────────────────────────────────────────

class TestRegressor:
    def test_prediction_is_mean_of_trees(self):
        model = EnsembleRegressor()
        model.trees = [
            DecisionTree().fit([[0.0], [0.0]], [1.0, 3.0]),
            DecisionTree().fit([[0.0]], [8.0]),
        ]
        assert model.predict([[0.0]]) == [pytest.approx(5.0)]

    def test_tracks_linear_target(self):
        X = [[float(i), float(i % 3)] for i in range(60)]
        y = [2.0 * row[0] for row in X]
        model = EnsembleRegressor(n_estimators=20, min_samples_split=4,
                                  min_samples_leaf=2, seed=9).fit(X, y)
        low, high = model.predict([[5.0, 0.0], [55.0, 0.0]])
        assert low < 40.0 < high
        assert high - low > 60.0

    def test_same_seed_same_forest(self):
        X = [[float(i)] for i in range(30)]
        y = [float(i % 7) for i in range(30)]
        a = EnsembleRegressor(n_estimators=5, seed=3).fit(X, y)
        b = EnsembleRegressor(n_estimators=5, seed=3).fit(X, y)
        assert a.predict(X) == b.predict(X)

    def test_untrained_raises(self):
        with pytest.raises(InvalidModelStateError):
            EnsembleRegressor().predict([[0.0]])

    def test_empty_training_set_raises(self):
        with pytest.raises(ValueError):
            EnsembleRegressor().fit([], [])
