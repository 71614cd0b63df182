"""
K-means clustering with k-means++ seeding.

Used by the cluster-based anomaly detector: points far from their assigned
centroid are outliers.  Iteration stops when the summed centroid shift falls
below ``tolerance`` or after ``max_iterations``.  Empty clusters are re-seeded
from a random point.  Randomness comes from the injected ``random.Random``.
"""

from __future__ import annotations

import math
import random
from typing import Optional, Sequence

from market_intel.ml.errors import InvalidModelStateError


def euclidean_distance(a: Sequence[float], b: Sequence[float]) -> float:
    return math.sqrt(sum((x - y) ** 2 for x, y in zip(a, b)))


class KMeans:
    """Lloyd's algorithm over lists of float vectors."""

    def __init__(
        self,
        k: int = 3,
        max_iterations: int = 100,
        tolerance: float = 1e-4,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.k = k
        self.max_iterations = max_iterations
        self.tolerance = tolerance
        self._rng = rng or random.Random()
        self.centroids: Optional[list[list[float]]] = None
        self.labels: Optional[list[int]] = None

    def fit(self, X: Sequence[Sequence[float]]) -> "KMeans":
        if len(X) < self.k:
            raise ValueError(f"KMeans needs at least k={self.k} points; got {len(X)}.")

        centroids = self._init_centroids(X)

        for _ in range(self.max_iterations):
            labels = self._assign(X, centroids)
            updated = self._update(X, labels)
            shift = sum(euclidean_distance(c, u) for c, u in zip(centroids, updated))
            centroids = updated
            if shift < self.tolerance:
                break

        self.centroids = centroids
        self.labels = self._assign(X, centroids)
        return self

    def predict(self, X: Sequence[Sequence[float]]) -> list[int]:
        if self.centroids is None:
            raise InvalidModelStateError("KMeans is not fitted. Call fit() first.")
        return self._assign(X, self.centroids)

    def inertia(self, X: Sequence[Sequence[float]]) -> float:
        """Sum of squared distances from each point to its centroid."""
        if self.centroids is None or self.labels is None:
            raise InvalidModelStateError("KMeans is not fitted. Call fit() first.")
        return sum(
            euclidean_distance(point, self.centroids[label]) ** 2
            for point, label in zip(X, self.labels)
        )

    # ── Internals ─────────────────────────────────────────────────────────────

    def _init_centroids(self, X: Sequence[Sequence[float]]) -> list[list[float]]:
        centroids = [list(X[self._rng.randrange(len(X))])]
        while len(centroids) < self.k:
            weights = [
                min(euclidean_distance(p, c) for c in centroids) ** 2 for p in X
            ]
            total = sum(weights)
            if total == 0:
                centroids.append(list(X[self._rng.randrange(len(X))]))
                continue
            r = self._rng.random() * total
            cumulative = 0.0
            chosen = len(X) - 1
            for idx, w in enumerate(weights):
                cumulative += w
                if r <= cumulative:
                    chosen = idx
                    break
            centroids.append(list(X[chosen]))
        return centroids

    @staticmethod
    def _assign(X: Sequence[Sequence[float]], centroids: list[list[float]]) -> list[int]:
        labels = []
        for point in X:
            distances = [euclidean_distance(point, c) for c in centroids]
            labels.append(distances.index(min(distances)))
        return labels

    def _update(self, X: Sequence[Sequence[float]], labels: list[int]) -> list[list[float]]:
        dims = len(X[0])
        centroids: list[list[float]] = []
        for cluster in range(self.k):
            members = [X[i] for i, label in enumerate(labels) if label == cluster]
            if not members:
                centroids.append(list(X[self._rng.randrange(len(X))]))
                continue
            centroids.append(
                [sum(m[d] for m in members) / len(members) for d in range(dims)]
            )
        return centroids
