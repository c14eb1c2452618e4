"""Similarity and significance helpers shared by every engine.

All functions are pure. Degenerate input (empty vectors, zero variance, zero
magnitude, empty samples) yields a neutral 0.0 instead of an exception.
"""

import math
from collections.abc import Mapping, Sequence

import numpy as np
from scipy import stats

RATING_MIN = 1.0
RATING_MAX = 5.0


def clamp_rating(value: float) -> float:
    """Clamp a predicted rating to the 1-5 scale."""
    return float(min(RATING_MAX, max(RATING_MIN, value)))


def clamp_unit(value: float) -> float:
    """Clamp a score, confidence or similarity to [0, 1]."""
    return float(min(1.0, max(0.0, value)))


def pearson_correlation(x: Sequence[float], y: Sequence[float]) -> float:
    """Compute the Pearson correlation coefficient of paired samples.

    Args:
        x: First sample.
        y: Second sample, paired element-wise with x.

    Returns:
        Correlation in [-1, 1], or 0.0 when the samples differ in length,
        are empty, or either has zero variance.
    """
    if len(x) != len(y) or len(x) == 0:
        return 0.0

    xs = np.asarray(x, dtype=float)
    ys = np.asarray(y, dtype=float)
    dx = xs - xs.mean()
    dy = ys - ys.mean()
    denominator = math.sqrt(float(np.dot(dx, dx)) * float(np.dot(dy, dy)))
    if denominator == 0:
        return 0.0
    return float(np.clip(np.dot(dx, dy) / denominator, -1.0, 1.0))


def cosine_similarity(vec_a: Mapping[str, float], vec_b: Mapping[str, float]) -> float:
    """Cosine similarity of two sparse vectors keyed by feature name.

    Keys missing from one vector count as 0. The result is clamped to [0, 1].

    Args:
        vec_a: First sparse vector.
        vec_b: Second sparse vector.

    Returns:
        Similarity in [0, 1], or 0.0 if either vector has zero magnitude.
    """
    if not vec_a or not vec_b:
        return 0.0

    if len(vec_a) > len(vec_b):
        vec_a, vec_b = vec_b, vec_a
    dot = sum(value * vec_b.get(key, 0.0) for key, value in vec_a.items())
    norm_a = math.sqrt(sum(v * v for v in vec_a.values()))
    norm_b = math.sqrt(sum(v * v for v in vec_b.values()))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return clamp_unit(dot / (norm_a * norm_b))


def calculate_statistical_significance(
    accuracy_a: float, n_a: int, accuracy_b: float, n_b: int
) -> float:
    """Confidence that two accuracies differ, from a two-proportion z-test.

    Uses the pooled-proportion standard error and returns the complement of
    the two-sided p-value, so larger gaps and larger samples approach 1.

    Args:
        accuracy_a: Accuracy (proportion correct) of the first model.
        n_a: Number of samples behind accuracy_a.
        accuracy_b: Accuracy of the second model.
        n_b: Number of samples behind accuracy_b.

    Returns:
        Significance in [0, 1].
    """
    if n_a <= 0 or n_b <= 0:
        return 0.0

    pooled = (accuracy_a * n_a + accuracy_b * n_b) / (n_a + n_b)
    variance = pooled * (1 - pooled) * (1 / n_a + 1 / n_b)
    if variance <= 0:
        return 0.0

    z = abs(accuracy_a - accuracy_b) / math.sqrt(variance)
    p_value = 2 * (1 - stats.norm.cdf(z))
    return clamp_unit(1 - p_value)


def significance_level(significance: float) -> str:
    """Label a significance value with the conventional p-value bucket."""
    if significance >= 0.99:
        return "p<0.01"
    if significance >= 0.95:
        return "p<0.05"
    if significance >= 0.90:
        return "p<0.10"
    return "not_significant"
