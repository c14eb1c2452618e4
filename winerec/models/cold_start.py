"""Cold-start handling for users with few or no ratings.

Owns the policy that decides how much collaborative signal to trust for a
user with n ratings, the item popularity scores used as the fallback, and
the blending of thin CF output with popularity output.
"""

import pandas as pd

from winerec.models.schemas import Recommendation, RecommendationSource
from winerec.models.similarity import clamp_rating, clamp_unit
from winerec.utils.config import config
from winerec.utils.logger import get_logger

logger = get_logger(__name__)


class ColdStartPolicy:
    """Rating-count based degradation from popularity to collaborative filtering.

    | n ratings            | behaviour                        |
    |----------------------|----------------------------------|
    | 0                    | popularity only                  |
    | 1 .. full - 1        | CF weight n / full + popularity  |
    | >= full              | CF only                          |

    Attributes:
        full_cf_ratings: Rating count from which CF output is used alone.
        popularity_method: Scoring method for compute_popularity_scores.
        confidence_min: Confidence of the least popular fallback item.
        confidence_max: Confidence of the most popular fallback item.
    """

    def __init__(
        self,
        full_cf_ratings: int | None = None,
        popularity_method: str | None = None,
        confidence_min: float | None = None,
        confidence_max: float | None = None,
    ) -> None:
        """Initialize the policy, defaulting to the cold_start config section."""
        defaults = config["cold_start"]
        self.full_cf_ratings = full_cf_ratings or defaults["full_cf_ratings"]
        self.popularity_method = popularity_method or defaults["popularity_method"]
        self.confidence_min = (
            defaults["popularity_confidence_min"]
            if confidence_min is None
            else confidence_min
        )
        self.confidence_max = (
            defaults["popularity_confidence_max"]
            if confidence_max is None
            else confidence_max
        )

    @staticmethod
    def compute_popularity_scores(
        ratings_df: pd.DataFrame,
        method: str = "count_weighted",
    ) -> dict:
        """Compute wine popularity from ratings data.

        Supports simple count-based and Bayesian average-weighted methods.

        Args:
            ratings_df: DataFrame with wine_id and rating columns.
            method: Scoring method - "count" or "count_weighted".

        Returns:
            Dictionary mapping wine_id to popularity normalized to [0, 1].

        Raises:
            ValueError: If an unknown method is specified.
        """
        if ratings_df.empty:
            return {}

        grouped = ratings_df.groupby("wine_id", sort=False)["rating"]
        if method == "count":
            scores = grouped.size().to_dict()
        elif method == "count_weighted":
            stats = grouped.agg(["count", "mean"])
            c = stats["count"].mean()
            m = stats["mean"].mean()
            scores = (
                (stats["count"] * stats["mean"] + c * m) / (stats["count"] + c)
            ).to_dict()
        else:
            raise ValueError(f"Unknown popularity method: {method}")

        max_score = max(scores.values())
        normalized = {k: float(v / max_score) for k, v in scores.items()}

        logger.debug(
            "Computed popularity scores for %d wines (method=%s)",
            len(normalized),
            method,
        )
        return normalized

    def is_cold_user(self, num_ratings: int) -> bool:
        """Check if a user has too few ratings for CF output alone."""
        return num_ratings < self.full_cf_ratings

    def cf_weight(self, num_ratings: int) -> float:
        """Share of the collaborative signal for a user with num_ratings."""
        if num_ratings <= 0:
            return 0.0
        return min(1.0, num_ratings / self.full_cf_ratings)

    def popularity_confidence(self, popularity: float) -> float:
        """Map a [0, 1] popularity score into the fallback confidence band."""
        span = self.confidence_max - self.confidence_min
        return clamp_unit(self.confidence_min + span * clamp_unit(popularity))

    def blend(
        self,
        cf_recs: list[Recommendation],
        popularity_recs: list[Recommendation],
        num_ratings: int,
        limit: int,
    ) -> list[Recommendation]:
        """Mix thin CF output with popularity output for a semi-cold user.

        Each wine's score, confidence and predicted rating is the weighted sum
        of the contributing lists; a wine missing from one list takes only the
        other list's weighted share of score and confidence.

        Args:
            cf_recs: Collaborative recommendations.
            popularity_recs: Popularity recommendations.
            num_ratings: Number of ratings of the requesting user.
            limit: Maximum number of recommendations.

        Returns:
            Blended recommendations sorted by score descending.
        """
        weight = self.cf_weight(num_ratings)
        if weight >= 1.0 and cf_recs:
            return cf_recs[:limit]
        if weight <= 0.0 or not cf_recs:
            return popularity_recs[:limit]

        cf_by_wine = {rec.wine_id: rec for rec in cf_recs}
        pop_by_wine = {rec.wine_id: rec for rec in popularity_recs}

        blended = []
        for wine_id in dict.fromkeys([*cf_by_wine, *pop_by_wine]):
            cf = cf_by_wine.get(wine_id)
            pop = pop_by_wine.get(wine_id)
            parts = [(rec, w) for rec, w in ((cf, weight), (pop, 1 - weight)) if rec]

            score = sum(w * rec.score for rec, w in parts)
            confidence = sum(w * (rec.confidence or 0.0) for rec, w in parts)
            share = sum(w for _, w in parts)
            predicted = sum(w * rec.predicted_rating for rec, w in parts) / share
            blended.append(
                Recommendation(
                    wine_id=wine_id,
                    score=clamp_unit(score),
                    source=RecommendationSource.BLENDED,
                    predicted_rating=clamp_rating(predicted),
                    confidence=clamp_unit(confidence),
                    sources=tuple(rec.source.value for rec, _ in parts),
                )
            )

        blended.sort(key=lambda rec: rec.score, reverse=True)
        return blended[:limit]
