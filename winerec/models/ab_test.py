"""A/B comparison of two trained models on held-out ratings.

The test data is split into two random partitions, each model is evaluated
on its own partition, and the accuracy gap is tested for significance with
a two-proportion z-test.
"""

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, TypeVar

import numpy as np

from winerec.models.schemas import EvaluationMetrics
from winerec.models.similarity import (
    calculate_statistical_significance,
    significance_level,
)
from winerec.utils.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class ABTestResult:
    """Outcome of one A/B test.

    Attributes:
        model1_results: Metrics of the first model on its partition.
        model2_results: Metrics of the second model on its partition.
        statistical_significance: Confidence in [0, 1] that accuracies differ.
        significance_level: Conventional p-value bucket of the significance.
        winner: "model1", "model2" or "tie" by accuracy.
        test_id: Registry id, set when the test is recorded.
        model1: Name and version of the first model, when known.
        model2: Name and version of the second model, when known.
        created_at: Time the test was run.
    """

    model1_results: EvaluationMetrics
    model2_results: EvaluationMetrics
    statistical_significance: float
    significance_level: str
    winner: str
    test_id: str | None = None
    model1: dict[str, Any] | None = None
    model2: dict[str, Any] | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def significant(self) -> bool:
        return self.statistical_significance >= 0.95

    def to_dict(self) -> dict[str, Any]:
        return {
            "test_id": self.test_id,
            "model1": self.model1,
            "model2": self.model2,
            "model1_results": self.model1_results.to_dict(),
            "model2_results": self.model2_results.to_dict(),
            "statistical_significance": self.statistical_significance,
            "significance_level": self.significance_level,
            "winner": self.winner,
            "created_at": self.created_at.isoformat(),
        }


def partition_test_data(
    test_data: Sequence[T],
    split_ratio: float = 0.5,
    seed: int = 42,
) -> tuple[list[T], list[T]]:
    """Randomly partition test data into two non-empty groups.

    Args:
        test_data: Records to partition.
        split_ratio: Fraction of records assigned to the first group.
        seed: Seed of the permutation, so partitions are reproducible.

    Returns:
        A tuple of (first group, second group).

    Raises:
        ValueError: If split_ratio is outside (0, 1) or there are fewer than
            two records.
    """
    if not 0 < split_ratio < 1:
        raise ValueError(f"split_ratio must be between 0 and 1, got {split_ratio}")
    if len(test_data) < 2:
        raise ValueError("A/B test needs at least two test records")

    order = np.random.RandomState(seed).permutation(len(test_data))
    cut = min(len(test_data) - 1, max(1, round(len(test_data) * split_ratio)))
    first = [test_data[i] for i in order[:cut]]
    second = [test_data[i] for i in order[cut:]]
    return first, second


def compare_results(
    model1_results: EvaluationMetrics,
    model2_results: EvaluationMetrics,
) -> ABTestResult:
    """Test the accuracy gap between two evaluated partitions."""
    significance = calculate_statistical_significance(
        model1_results.accuracy,
        model1_results.n_predictions,
        model2_results.accuracy,
        model2_results.n_predictions,
    )
    if model1_results.accuracy > model2_results.accuracy:
        winner = "model1"
    elif model2_results.accuracy > model1_results.accuracy:
        winner = "model2"
    else:
        winner = "tie"

    result = ABTestResult(
        model1_results=model1_results,
        model2_results=model2_results,
        statistical_significance=significance,
        significance_level=significance_level(significance),
        winner=winner,
    )
    logger.info(
        "A/B test: accuracy %.4f vs %.4f, significance=%.4f (%s)",
        model1_results.accuracy,
        model2_results.accuracy,
        significance,
        result.significance_level,
    )
    return result
