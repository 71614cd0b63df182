"""
Variance-minimising binary decision tree (the ensemble's weak learner).

Splitting
---------
At every node a random subset of ``max_features`` columns is drawn (all
columns when ``max_features`` is ``None``).  For each candidate column the
samples are sorted once and swept left-to-right while maintaining running
sums of y and y², so the weighted child variance of every threshold is
available in O(1).  Candidate thresholds are midpoints between consecutive
distinct values; a sample goes left when ``x[feature] <= threshold``.

Stopping
--------
A node becomes a leaf (value = mean target) when any of these hold:
  - depth has reached ``max_depth``
  - fewer than ``min_samples_split`` samples reached the node
  - every target in the node is identical
  - no threshold leaves at least ``min_samples_leaf`` samples on both sides
  - the best variance reduction is not positive

Ties between equally good splits keep the first one found (column order of
the drawn subset, then ascending threshold), so a tree is fully determined by
its training sample and the state of the injected ``random.Random``.
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Optional, Sequence

from market_intel.ml.errors import InvalidModelStateError
from market_intel.ml.stats import mean

# Gains below this are treated as float noise, not a real improvement.
_MIN_GAIN = 1e-12


@dataclass
class TreeNode:
    """One node of a fitted tree.

    Leaves carry ``value``; internal nodes carry ``feature``/``threshold`` and
    own their two subtrees exclusively.
    """

    value: Optional[float] = None
    feature: Optional[int] = None
    threshold: Optional[float] = None
    left: Optional["TreeNode"] = None
    right: Optional["TreeNode"] = None

    @property
    def is_leaf(self) -> bool:
        return self.feature is None


class DecisionTree:
    """Regression tree fitted by greedy variance reduction."""

    def __init__(
        self,
        max_depth: int = 10,
        min_samples_split: int = 2,
        min_samples_leaf: int = 1,
        max_features: Optional[int] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.max_depth = max_depth
        self.min_samples_split = min_samples_split
        self.min_samples_leaf = min_samples_leaf
        self.max_features = max_features
        self._rng = rng or random.Random()
        self.root: Optional[TreeNode] = None
        self._n_features = 0

    @property
    def is_fitted(self) -> bool:
        return self.root is not None

    @property
    def n_features(self) -> int:
        return self._n_features

    # ── Training ──────────────────────────────────────────────────────────────

    def fit(self, X: Sequence[Sequence[float]], y: Sequence[float]) -> "DecisionTree":
        """Grow the tree on ``X``/``y``.  Neither input is modified.

        Raises:
            ValueError: Empty input, or ``X`` and ``y`` differ in length.
        """
        if not X:
            raise ValueError("DecisionTree.fit() needs at least one sample.")
        if len(X) != len(y):
            raise ValueError(
                f"X and y must have the same length; got {len(X)} and {len(y)}."
            )
        self._n_features = len(X[0])
        targets = [float(v) for v in y]
        self.root = self._build(X, targets, list(range(len(X))), depth=0)
        return self

    def _build(
        self,
        X: Sequence[Sequence[float]],
        y: list[float],
        indices: list[int],
        depth: int,
    ) -> TreeNode:
        node_targets = [y[i] for i in indices]
        leaf = TreeNode(value=mean(node_targets))

        if (
            depth >= self.max_depth
            or len(indices) < self.min_samples_split
            or min(node_targets) == max(node_targets)
        ):
            return leaf

        split = self._best_split(X, y, indices, self._candidate_features())
        if split is None:
            return leaf

        feature, threshold = split
        left_idx  = [i for i in indices if X[i][feature] <= threshold]
        right_idx = [i for i in indices if X[i][feature] > threshold]

        return TreeNode(
            feature=feature,
            threshold=threshold,
            left=self._build(X, y, left_idx, depth + 1),
            right=self._build(X, y, right_idx, depth + 1),
        )

    def _candidate_features(self) -> list[int]:
        if self.max_features and self.max_features < self._n_features:
            return self._rng.sample(range(self._n_features), self.max_features)
        return list(range(self._n_features))

    def _best_split(
        self,
        X: Sequence[Sequence[float]],
        y: list[float],
        indices: list[int],
        features: list[int],
    ) -> Optional[tuple[int, float]]:
        n = len(indices)
        total_sum = sum(y[i] for i in indices)
        total_sq  = sum(y[i] * y[i] for i in indices)
        parent_var = total_sq / n - (total_sum / n) ** 2

        best_gain = _MIN_GAIN
        best: Optional[tuple[int, float]] = None

        for feature in features:
            order = sorted(indices, key=lambda i: X[i][feature])
            left_sum = left_sq = 0.0

            for pos in range(n - 1):
                target = y[order[pos]]
                left_sum += target
                left_sq  += target * target

                x_here = X[order[pos]][feature]
                x_next = X[order[pos + 1]][feature]
                if x_here == x_next:
                    continue

                n_left  = pos + 1
                n_right = n - n_left
                if n_left < self.min_samples_leaf or n_right < self.min_samples_leaf:
                    continue

                right_sum = total_sum - left_sum
                right_sq  = total_sq - left_sq
                left_var  = left_sq / n_left - (left_sum / n_left) ** 2
                right_var = right_sq / n_right - (right_sum / n_right) ** 2

                weighted = (n_left * left_var + n_right * right_var) / n
                gain = parent_var - weighted
                if gain > best_gain:
                    best_gain = gain
                    best = (feature, (x_here + x_next) / 2.0)

        return best

    # ── Inference ─────────────────────────────────────────────────────────────

    def predict(self, X: Sequence[Sequence[float]]) -> list[float]:
        """Return the leaf value reached by each row of ``X``.

        Raises:
            InvalidModelStateError: The tree has not been fitted.
        """
        if self.root is None:
            raise InvalidModelStateError("DecisionTree is not fitted. Call fit() first.")
        return [self._predict_one(row) for row in X]

    def _predict_one(self, row: Sequence[float]) -> float:
        node = self.root
        while not node.is_leaf:
            node = node.left if row[node.feature] <= node.threshold else node.right
        return node.value

    # ── Introspection ─────────────────────────────────────────────────────────

    def depth(self) -> int:
        """Depth of the deepest leaf (a single-leaf tree has depth 0)."""
        def _depth(node: Optional[TreeNode]) -> int:
            if node is None or node.is_leaf:
                return 0
            return 1 + max(_depth(node.left), _depth(node.right))
        return _depth(self.root)

    def split_counts(self) -> list[int]:
        """Number of internal nodes splitting on each feature."""
        counts = [0] * self._n_features
        stack = [self.root] if self.root is not None else []
        while stack:
            node = stack.pop()
            if node.is_leaf:
                continue
            counts[node.feature] += 1
            stack.extend((node.left, node.right))
        return counts
