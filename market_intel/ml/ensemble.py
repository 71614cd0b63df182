"""
Bootstrap-aggregated forests built from regression trees.

Each of ``n_estimators`` trees is fitted on a bootstrap resample (drawn with
replacement, same size as the training set) using a random ⌊√m⌋-column
subset per node.

``EnsembleClassifier``
    Every tree's continuous output is rounded to the nearest class index
    (halves round up) and clamped to ``[0, num_classes - 1]``; that index is
    the tree's vote, and class probability = votes / n_estimators.

``EnsembleRegressor``
    The prediction is the plain mean of the tree outputs.

Why regression trees as a classifier?
-------------------------------------
Class labels are ordinal here (risk_off < neutral < risk_on), so a variance
split on the integer label still separates the regimes, and rounding the
leaf mean recovers a class.  One tree implementation serves both the regime
classifier and the factor regressor.  The price is blurrier boundaries than
a Gini/entropy split would give on non-ordinal labels.

All randomness comes from a single ``random.Random(seed)`` created per
``fit()`` call, so a fixed seed reproduces the forest exactly.
"""

from __future__ import annotations

import logging
import math
import random
from typing import Optional, Sequence

from market_intel.ml.errors import InvalidModelStateError
from market_intel.ml.tree import DecisionTree

logger = logging.getLogger(__name__)


class _BaggedTrees:
    """Shared bootstrap fitting and split-count importance."""

    def __init__(
        self,
        n_estimators: int,
        max_depth: int,
        min_samples_split: int,
        min_samples_leaf: int,
        seed: Optional[int],
    ) -> None:
        self.n_estimators = n_estimators
        self.max_depth = max_depth
        self.min_samples_split = min_samples_split
        self.min_samples_leaf = min_samples_leaf
        self.seed = seed
        self.trees: list[DecisionTree] = []
        self._n_features = 0

    @property
    def is_fitted(self) -> bool:
        return bool(self.trees)

    # ── Training ──────────────────────────────────────────────────────────────

    def _fit_trees(self, X: Sequence[Sequence[float]], y: Sequence[float]) -> None:
        name = type(self).__name__
        if not X:
            raise ValueError(f"{name}.fit() needs at least one sample.")
        if len(X) != len(y):
            raise ValueError(
                f"X and y must have the same length; got {len(X)} and {len(y)}."
            )

        rng = random.Random(self.seed)
        n = len(X)
        self._n_features = len(X[0])
        max_features = max(1, int(math.sqrt(self._n_features)))

        trees: list[DecisionTree] = []
        for _ in range(self.n_estimators):
            sample = [rng.randrange(n) for _ in range(n)]
            tree = DecisionTree(
                max_depth=self.max_depth,
                min_samples_split=self.min_samples_split,
                min_samples_leaf=self.min_samples_leaf,
                max_features=max_features,
                rng=rng,
            )
            tree.fit([X[i] for i in sample], [y[i] for i in sample])
            trees.append(tree)

        self.trees = trees
        logger.debug(
            "%s fitted: %d trees, %d samples, %d features (max_features=%d)",
            name, len(trees), n, self._n_features, max_features,
        )

    def _tree_outputs(self, X: Sequence[Sequence[float]]) -> list[list[float]]:
        if not self.trees:
            raise InvalidModelStateError(
                f"{type(self).__name__} is not fitted. Call fit() first."
            )
        return [tree.predict(X) for tree in self.trees]

    def feature_importance(self) -> list[float]:
        """Share of all splits in the forest that use each feature."""
        counts = [0] * self._n_features
        for tree in self.trees:
            for idx, c in enumerate(tree.split_counts()):
                counts[idx] += c
        total = sum(counts)
        if total == 0:
            return [0.0] * self._n_features
        return [c / total for c in counts]


class EnsembleClassifier(_BaggedTrees):
    """Bagged forest of ``DecisionTree`` voters.

    Attributes:
        n_estimators: Number of trees fitted by ``fit()``.
        num_classes:  Number of ordinal classes (labels ``0..num_classes-1``).
    """

    def __init__(
        self,
        n_estimators: int = 30,
        max_depth: int = 6,
        min_samples_split: int = 10,
        min_samples_leaf: int = 5,
        num_classes: int = 3,
        seed: Optional[int] = None,
    ) -> None:
        super().__init__(n_estimators, max_depth, min_samples_split, min_samples_leaf, seed)
        self.num_classes = num_classes

    def fit(self, X: Sequence[Sequence[float]], y: Sequence[int]) -> "EnsembleClassifier":
        """Fit ``n_estimators`` trees on bootstrap resamples of ``X``/``y``.

        A refit discards every previously fitted tree.

        Raises:
            ValueError: Empty input or mismatched ``X``/``y`` lengths.
        """
        self._fit_trees(X, y)
        return self

    # ── Inference ─────────────────────────────────────────────────────────────

    def predict_proba(self, X: Sequence[Sequence[float]]) -> list[list[float]]:
        """Vote share of each class for every row of ``X``.

        Raises:
            InvalidModelStateError: ``fit()`` has not been called.
        """
        per_tree = self._tree_outputs(X)
        top = self.num_classes - 1
        n_trees = len(self.trees)

        probabilities: list[list[float]] = []
        for row_idx in range(len(X)):
            votes = [0] * self.num_classes
            for predictions in per_tree:
                label = min(top, max(0, math.floor(predictions[row_idx] + 0.5)))
                votes[label] += 1
            probabilities.append([v / n_trees for v in votes])
        return probabilities

    def predict(self, X: Sequence[Sequence[float]]) -> list[int]:
        """Most-voted class per row; the lowest class index wins ties."""
        return [
            max(range(self.num_classes), key=lambda c: probs[c])
            for probs in self.predict_proba(X)
        ]


class EnsembleRegressor(_BaggedTrees):
    """Bagged forest whose prediction is the mean tree output."""

    def __init__(
        self,
        n_estimators: int = 50,
        max_depth: int = 8,
        min_samples_split: int = 5,
        min_samples_leaf: int = 2,
        seed: Optional[int] = None,
    ) -> None:
        super().__init__(n_estimators, max_depth, min_samples_split, min_samples_leaf, seed)

    def fit(self, X: Sequence[Sequence[float]], y: Sequence[float]) -> "EnsembleRegressor":
        """Fit the forest; a refit discards the previous trees.

        Raises:
            ValueError: Empty input or mismatched ``X``/``y`` lengths.
        """
        self._fit_trees(X, y)
        return self

    def predict(self, X: Sequence[Sequence[float]]) -> list[float]:
        """Mean of the tree predictions for every row of ``X``.

        Raises:
            InvalidModelStateError: ``fit()`` has not been called.
        """
        per_tree = self._tree_outputs(X)
        n_trees = len(per_tree)
        return [
            sum(predictions[row_idx] for predictions in per_tree) / n_trees
            for row_idx in range(len(X))
        ]
