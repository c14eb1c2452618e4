"""Evaluation metrics for rating predictions.

Implements rating accuracy metrics (RMSE, MAE) and thresholded
classification metrics, where a rating at or above the recommend threshold
counts as "would recommend".
"""

import numpy as np

from winerec.models.schemas import EvaluationMetrics
from winerec.utils.logger import get_logger

logger = get_logger(__name__)

# Weights of the metrics combined by overall_score.
OVERALL_WEIGHTS = {"accuracy": 0.3, "precision": 0.2, "recall": 0.2, "f1_score": 0.3}


class Evaluator:
    """Evaluation suite for (predicted, actual) rating pairs.

    Attributes:
        threshold: Minimum rating that counts as a positive recommendation.
    """

    def __init__(self, threshold: float = 4.0) -> None:
        """Initialize the evaluator.

        Args:
            threshold: Rating at or above which a wine counts as recommended.
        """
        self.threshold = threshold

    @staticmethod
    def rmse(predictions: list[tuple[float, float]]) -> float:
        """Compute Root Mean Square Error.

        Args:
            predictions: List of (predicted, actual) value pairs.

        Returns:
            RMSE value.
        """
        if not predictions:
            return 0.0
        errors = [(pred - actual) ** 2 for pred, actual in predictions]
        return float(np.sqrt(np.mean(errors)))

    @staticmethod
    def mae(predictions: list[tuple[float, float]]) -> float:
        """Compute Mean Absolute Error.

        Args:
            predictions: List of (predicted, actual) value pairs.

        Returns:
            MAE value.
        """
        if not predictions:
            return 0.0
        errors = [abs(pred - actual) for pred, actual in predictions]
        return float(np.mean(errors))

    def classification_metrics(
        self, predictions: list[tuple[float, float]]
    ) -> dict[str, float]:
        """Compute accuracy, precision, recall and F1 at the threshold.

        Args:
            predictions: List of (predicted, actual) value pairs.

        Returns:
            Dictionary with accuracy, precision, recall and f1_score, each in
            [0, 1]; undefined ratios are reported as 0.
        """
        if not predictions:
            return {"accuracy": 0.0, "precision": 0.0, "recall": 0.0, "f1_score": 0.0}

        tp = fp = fn = tn = 0
        for pred, actual in predictions:
            predicted_pos = pred >= self.threshold
            actual_pos = actual >= self.threshold
            if predicted_pos and actual_pos:
                tp += 1
            elif predicted_pos:
                fp += 1
            elif actual_pos:
                fn += 1
            else:
                tn += 1

        precision = tp / (tp + fp) if tp + fp else 0.0
        recall = tp / (tp + fn) if tp + fn else 0.0
        f1 = 2 * precision * recall / (precision + recall) if precision + recall else 0.0
        return {
            "accuracy": (tp + tn) / len(predictions),
            "precision": precision,
            "recall": recall,
            "f1_score": f1,
        }

    def evaluate(self, predictions: list[tuple[float, float]]) -> EvaluationMetrics:
        """Compute all metrics for a set of prediction pairs.

        Raises:
            ValueError: If predictions is empty.
        """
        if not predictions:
            raise ValueError("No valid predictions to evaluate")

        classification = self.classification_metrics(predictions)
        metrics = EvaluationMetrics(
            rmse=self.rmse(predictions),
            mae=self.mae(predictions),
            n_predictions=len(predictions),
            **classification,
        )
        logger.debug(
            "Evaluated %d predictions: rmse=%.4f accuracy=%.4f",
            metrics.n_predictions,
            metrics.rmse,
            metrics.accuracy,
        )
        return metrics


def overall_score(metrics: EvaluationMetrics) -> float:
    """Weighted combination of the classification metrics used to rank models."""
    values = metrics.to_dict()
    return float(sum(weight * values[name] for name, weight in OVERALL_WEIGHTS.items()))
