"""
Tests for the variance-minimising decision tree.

What we test
------------
1. A single clean threshold is found at the midpoint between the two groups.
2. Stopping rules: max_depth, min_samples_split, pure node, min_samples_leaf.
3. Inputs are not mutated by fit().
4. Predicting before fit raises InvalidModelStateError.
5. Mismatched or empty inputs raise ValueError.
6. split_counts() reflects the features actually used.
"""

from __future__ import annotations

import copy
import random

import pytest

from market_intel.ml.errors import InvalidModelStateError
from market_intel.ml.tree import DecisionTree

X_STEP = [[0.0], [1.0], [2.0], [3.0], [10.0], [11.0], [12.0], [13.0]]
Y_STEP = [0, 0, 0, 0, 2, 2, 2, 2]


class TestSplitting:
    def test_finds_midpoint_threshold(self):
        tree = DecisionTree().fit(X_STEP, Y_STEP)
        assert tree.root.feature == 0
        assert tree.root.threshold == pytest.approx(6.5)
        assert tree.predict([[2.5], [10.5]]) == [0.0, 2.0]

    def test_picks_informative_feature(self):
        rng = random.Random(1)
        X = [[rng.random(), float(i >= 10)] for i in range(20)]
        y = [float(i >= 10) for i in range(20)]
        tree = DecisionTree().fit(X, y)
        assert tree.root.feature == 1
        assert tree.split_counts() == [0, 1]

    def test_leaf_value_is_mean(self):
        tree = DecisionTree(max_depth=0).fit(X_STEP, Y_STEP)
        assert tree.root.is_leaf
        assert tree.predict([[5.0]]) == [1.0]


class TestStopping:
    def test_max_depth_respected(self):
        X = [[float(i)] for i in range(64)]
        y = [float(i % 7) for i in range(64)]
        tree = DecisionTree(max_depth=3).fit(X, y)
        assert tree.depth() <= 3

    def test_min_samples_split(self):
        tree = DecisionTree(min_samples_split=100).fit(X_STEP, Y_STEP)
        assert tree.root.is_leaf

    def test_pure_node_is_leaf(self):
        tree = DecisionTree().fit([[1.0], [2.0], [3.0]], [1, 1, 1])
        assert tree.root.is_leaf
        assert tree.depth() == 0

    def test_min_samples_leaf_enforced_in_search(self):
        # The only variance-reducing split isolates one sample; with
        # min_samples_leaf=2 it must be rejected.
        X = [[0.0], [1.0], [1.0], [1.0]]
        y = [5.0, 0.0, 0.0, 0.0]
        tree = DecisionTree(min_samples_leaf=2).fit(X, y)
        assert tree.root.is_leaf

    def test_no_threshold_between_equal_values(self):
        tree = DecisionTree().fit([[1.0], [1.0], [1.0]], [0, 1, 2])
        assert tree.root.is_leaf


class TestContracts:
    def test_inputs_not_mutated(self):
        X = copy.deepcopy(X_STEP)
        y = list(Y_STEP)
        DecisionTree().fit(X, y)
        assert X == X_STEP
        assert y == Y_STEP

    def test_predict_before_fit_raises(self):
        with pytest.raises(InvalidModelStateError):
            DecisionTree().predict([[1.0]])

    def test_empty_input_raises(self):
        with pytest.raises(ValueError):
            DecisionTree().fit([], [])

    def test_mismatched_lengths_raise(self):
        with pytest.raises(ValueError):
            DecisionTree().fit([[1.0], [2.0]], [1])

    def test_seeded_feature_subsampling_is_reproducible(self):
        rng = random.Random(3)
        X = [[rng.random() for _ in range(6)] for _ in range(40)]
        y = [float(sum(row) > 3) for row in X]
        a = DecisionTree(max_features=2, rng=random.Random(9)).fit(X, y)
        b = DecisionTree(max_features=2, rng=random.Random(9)).fit(X, y)
        assert a.predict(X) == b.predict(X)
        assert a.split_counts() == b.split_counts()
