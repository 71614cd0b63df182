"""
Model evaluation helpers: regression metrics and index splits.

Splits return row *indices*, not data, so callers slice ``X`` and ``y`` the
same way.  Shuffling always goes through an injected ``random.Random``.
"""

from __future__ import annotations

import math
import random
from typing import Optional, Sequence

from market_intel.ml.stats import mean


def r2_score(actual: Sequence[float], predicted: Sequence[float]) -> float:
    """Coefficient of determination.

    0.0 for empty or mismatched inputs and for a constant ``actual`` series.
    Can be negative when the predictions are worse than the mean.
    """
    if len(actual) != len(predicted) or not actual:
        return 0.0
    mu = mean(actual)
    ss_total = sum((a - mu) ** 2 for a in actual)
    if ss_total == 0:
        return 0.0
    ss_residual = sum((a - p) ** 2 for a, p in zip(actual, predicted))
    return 1 - ss_residual / ss_total


def mean_absolute_error(actual: Sequence[float], predicted: Sequence[float]) -> float:
    """``inf`` for empty or mismatched inputs."""
    if len(actual) != len(predicted) or not actual:
        return math.inf
    return sum(abs(a - p) for a, p in zip(actual, predicted)) / len(actual)


def root_mean_squared_error(actual: Sequence[float], predicted: Sequence[float]) -> float:
    """``inf`` for empty or mismatched inputs."""
    if len(actual) != len(predicted) or not actual:
        return math.inf
    return math.sqrt(sum((a - p) ** 2 for a, p in zip(actual, predicted)) / len(actual))


def train_test_split(
    n: int,
    test_ratio: float,
    rng: Optional[random.Random] = None,
) -> tuple[list[int], list[int]]:
    """Shuffle ``range(n)`` and hold out ``floor(n * test_ratio)`` indices.

    Returns:
        ``(train_indices, test_indices)``.
    """
    indices = list(range(n))
    (rng or random.Random()).shuffle(indices)
    test_size = int(n * test_ratio)
    cut = n - test_size
    return indices[:cut], indices[cut:]


def k_fold_split(n: int, k: int) -> list[tuple[list[int], list[int]]]:
    """Contiguous, unshuffled folds; the last fold absorbs the remainder.

    Raises:
        ValueError: ``k`` is below 2 or larger than ``n``.
    """
    if not 2 <= k <= n:
        raise ValueError(f"k must be in [2, {n}], got {k}.")
    fold_size = n // k
    folds = []
    for i in range(k):
        start = i * fold_size
        end = n if i == k - 1 else start + fold_size
        test = list(range(start, end))
        train = list(range(0, start)) + list(range(end, n))
        folds.append((train, test))
    return folds
