"""Hybrid recommendation combining collaborative and content-based filtering.

Provides activity-adaptive, fixed-weight and switching strategies. The
adaptive strategy shifts weight from content to collaborative output as a
user accumulates ratings.
"""

from collections.abc import Iterable
from typing import Any

from winerec.models.cold_start import ColdStartPolicy
from winerec.models.collaborative import CollaborativeFilter
from winerec.models.content_based import ContentBasedFilter
from winerec.models.schemas import (
    Recommendation,
    RecommendationSource,
    UserId,
    WineId,
)
from winerec.models.similarity import clamp_unit
from winerec.utils.config import config
from winerec.utils.logger import get_logger

logger = get_logger(__name__)

STRATEGIES = ("adaptive", "weighted", "switching")


def calculate_adaptive_weights(
    rating_count: int, max_ratings: int = 20
) -> dict[str, float]:
    """Blending weights for a user with rating_count ratings.

    The CF weight grows linearly from 0 at no ratings to 1 at max_ratings;
    the weights always sum to 1.
    """
    cf = min(max(rating_count, 0), max_ratings) / max_ratings
    cb = 1.0 - cf
    total = cf + cb
    return {"cf": cf / total, "cb": cb / total}


def blend_recommendations(
    cf_recs: Iterable[Recommendation],
    cb_recs: Iterable[Recommendation],
    cf_weight: float,
    cb_weight: float,
    use_confidence: bool = True,
) -> list[Recommendation]:
    """Merge CF and CB lists by wine into one ranked list.

    The combined score is cf_weight * cf_score + cb_weight * cb_score, with
    the CF score discounted by its confidence when use_confidence is set.

    Args:
        cf_recs: Collaborative recommendations.
        cb_recs: Content-based recommendations.
        cf_weight: Weight of the collaborative scores.
        cb_weight: Weight of the content-based scores.
        use_confidence: Whether to multiply CF scores by their confidence.

    Returns:
        Blended recommendations sorted by combined score descending, then by
        wine id, each tagged with its contributing sources.
    """
    merged: dict[WineId, dict[str, Any]] = {}

    for rec in cf_recs:
        score = rec.score
        if use_confidence and rec.confidence is not None:
            score *= rec.confidence
        entry = merged.setdefault(rec.wine_id, {"score": 0.0, "sources": []})
        entry["score"] += cf_weight * score
        entry["sources"].append("cf")
        entry["predicted_rating"] = rec.predicted_rating
        entry["confidence"] = rec.confidence

    for rec in cb_recs:
        entry = merged.setdefault(rec.wine_id, {"score": 0.0, "sources": []})
        entry["score"] += cb_weight * rec.score
        entry["sources"].append("cb")
        entry["similarity"] = rec.similarity

    blended = [
        Recommendation(
            wine_id=wine_id,
            score=clamp_unit(entry["score"]),
            source=RecommendationSource.BLENDED,
            predicted_rating=entry.get("predicted_rating"),
            confidence=entry.get("confidence"),
            similarity=entry.get("similarity"),
            sources=tuple(entry["sources"]),
        )
        for wine_id, entry in merged.items()
    ]
    # Equal scores are ordered by wine id, integer ids before string ids.
    blended.sort(
        key=lambda rec: (-rec.score, type(rec.wine_id).__name__, rec.wine_id)
    )
    return blended


class HybridRecommender:
    """Hybrid recommender combining collaborative and content-based engines.

    Attributes:
        collaborative: The collaborative filtering engine.
        content_based: The content-based engine.
        alpha: CF weight of the "weighted" strategy.
        max_ratings: Rating count at which the adaptive CF weight reaches 1.
        candidate_multiplier: Candidates fetched per engine, per result.
        cold_start: Policy deciding when the switching strategy uses CB.
    """

    def __init__(
        self,
        collaborative: CollaborativeFilter,
        content_based: ContentBasedFilter,
        alpha: float | None = None,
        max_ratings: int | None = None,
        candidate_multiplier: int | None = None,
        cold_start: ColdStartPolicy | None = None,
    ) -> None:
        """Initialize the hybrid recommender.

        Args:
            collaborative: An initialized CollaborativeFilter.
            content_based: An initialized ContentBasedFilter.
            alpha: Weight for collaborative scores (0.0 to 1.0).
            max_ratings: Saturation point of the adaptive weight curve.
            candidate_multiplier: Over-fetch factor per engine.
            cold_start: Cold-start policy, defaulting to the CF engine's.
        """
        defaults = config["hybrid"]
        self.collaborative = collaborative
        self.content_based = content_based
        self.alpha = defaults["alpha"] if alpha is None else alpha
        self.max_ratings = max_ratings or defaults["max_ratings"]
        self.candidate_multiplier = (
            candidate_multiplier or defaults["candidate_multiplier"]
        )
        self.cold_start = cold_start or collaborative.cold_start

    def _history(self, user_id: UserId, ratings: Iterable[Any] | None) -> list:
        if ratings is not None:
            return list(ratings)
        profile = self.collaborative.user_profiles.get(user_id)
        return list(profile.ratings) if profile is not None else []

    def _rated(self, user_id: UserId, history: list) -> set:
        profile = self.collaborative.user_profiles.get(user_id)
        rated = set(profile.items) if profile is not None else set()
        for rating in history:
            wine_id = (
                rating.get("wine_id") if isinstance(rating, dict) else rating.wine_id
            )
            rated.add(wine_id)
        return rated

    def recommend(
        self,
        user_id: UserId,
        limit: int = 10,
        strategy: str = "adaptive",
        ratings: Iterable[Any] | None = None,
    ) -> list[Recommendation]:
        """Main recommendation interface supporting multiple strategies.

        Args:
            user_id: The user identifier.
            limit: Number of recommendations to return.
            strategy: One of "adaptive", "weighted" or "switching".
            ratings: The user's rating history, defaulting to the ratings
                known to the collaborative engine.

        Returns:
            Recommendations sorted by score, never containing rated wines.

        Raises:
            ValueError: If an unknown strategy is specified.
        """
        if strategy not in STRATEGIES:
            raise ValueError(f"Unknown strategy: {strategy}")

        history = self._history(user_id, ratings)
        rated = self._rated(user_id, history)
        n = limit * self.candidate_multiplier

        if strategy == "switching":
            if self.cold_start.is_cold_user(len(rated)):
                recs = self.content_based.get_recommendations(user_id, history, n)
            else:
                recs = self.collaborative.get_user_based_recommendations(user_id, n)
        else:
            if strategy == "adaptive":
                weights = calculate_adaptive_weights(len(rated), self.max_ratings)
            else:
                weights = {"cf": self.alpha, "cb": 1 - self.alpha}
            recs = blend_recommendations(
                self.collaborative.get_user_based_recommendations(user_id, n),
                self.content_based.get_recommendations(user_id, history, n),
                weights["cf"],
                weights["cb"],
            )
            logger.debug(
                "Blended for %s with cf=%.2f cb=%.2f",
                user_id,
                weights["cf"],
                weights["cb"],
            )

        return [rec for rec in recs if rec.wine_id not in rated][:limit]
