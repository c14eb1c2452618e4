"""Neighbourhood collaborative filtering over a sparse rating set.

Builds user and item profiles plus a sparse Pearson similarity matrix from
ratings, and produces user-based, item-based and popularity-based
recommendations. Users with few ratings are served through the cold-start
policy.

The engine keeps all derived structures in one immutable state object.
Writers build a replacement under a lock and swap the reference, so a
reader always works against one consistent snapshot.
"""

import copy
import threading
from collections import defaultdict
from collections.abc import Hashable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from winerec.data.preprocessor import (
    deduplicate_ratings,
    ratings_to_frame,
    validate_ratings,
    validate_wines,
)
from winerec.models.cold_start import ColdStartPolicy
from winerec.models.schemas import (
    CollaborativeFilteringModel,
    ItemProfile,
    Rating,
    Recommendation,
    RecommendationSource,
    SimilarityMatrix,
    UserId,
    UserProfile,
    WineId,
)
from winerec.models.similarity import (
    RATING_MAX,
    RATING_MIN,
    clamp_rating,
    clamp_unit,
    pearson_correlation,
)
from winerec.utils.config import config
from winerec.utils.logger import get_logger

logger = get_logger(__name__)

NEUTRAL_RATING = (RATING_MIN + RATING_MAX) / 2


def build_user_profiles(ratings: Iterable[Rating]) -> dict[UserId, UserProfile]:
    """Aggregate ratings per user.

    Args:
        ratings: Validated, de-duplicated ratings.

    Returns:
        Dictionary mapping user_id to its UserProfile.
    """
    grouped: dict[UserId, list[Rating]] = defaultdict(list)
    for rating in ratings:
        grouped[rating.user_id].append(rating)

    profiles = {}
    for user_id, user_ratings in grouped.items():
        by_item = {r.wine_id: r.rating for r in user_ratings}
        profiles[user_id] = UserProfile(
            ratings=tuple(user_ratings),
            avg_rating=sum(by_item.values()) / len(by_item),
            items=frozenset(by_item),
            rating_by_item=by_item,
        )
    return profiles


def build_item_profiles(
    ratings: Iterable[Rating],
    popularity_method: str = "count_weighted",
) -> dict[WineId, ItemProfile]:
    """Aggregate ratings per wine, including a normalized popularity score.

    Args:
        ratings: Validated, de-duplicated ratings.
        popularity_method: Method passed to compute_popularity_scores.

    Returns:
        Dictionary mapping wine_id to its ItemProfile.
    """
    ratings = list(ratings)
    popularity = ColdStartPolicy.compute_popularity_scores(
        ratings_to_frame(ratings), method=popularity_method
    )

    grouped: dict[WineId, list[Rating]] = defaultdict(list)
    for rating in ratings:
        grouped[rating.wine_id].append(rating)

    profiles = {}
    for wine_id, wine_ratings in grouped.items():
        by_user = {r.user_id: r.rating for r in wine_ratings}
        profiles[wine_id] = ItemProfile(
            ratings=tuple(wine_ratings),
            avg_rating=sum(by_user.values()) / len(by_user),
            popularity=popularity.get(wine_id, 0.0),
            rating_by_user=by_user,
        )
    return profiles


def _similarity_row(
    key: Hashable,
    vectors: Mapping[Any, Mapping[Any, float]],
    inverted: Mapping[Any, Iterable[Any]],
    min_similarity: float,
    min_common_items: int,
    order: Mapping[Any, int] | None = None,
) -> dict:
    """Pearson similarities of one entity against every co-rating entity.

    Args:
        key: Entity (user or wine) whose row is computed.
        vectors: Ratings per entity, keyed by the opposite axis.
        inverted: Entities per opposite-axis key, the inverted index of
            vectors.
        min_similarity: Smallest similarity that is kept.
        min_common_items: Smallest number of co-ratings a pair needs.
        order: If given, only entities ordered after key are compared.

    Returns:
        Dictionary mapping other entities to their similarity with key.
    """
    vector = vectors[key]
    common: dict[Any, int] = defaultdict(int)
    for axis_key in vector:
        for other in inverted[axis_key]:
            if other != key:
                common[other] += 1

    row = {}
    for other, count in common.items():
        if count < min_common_items:
            continue
        if order is not None and order[other] <= order[key]:
            continue
        other_vector = vectors[other]
        shared = [k for k in vector if k in other_vector]
        sim = pearson_correlation(
            [vector[k] for k in shared], [other_vector[k] for k in shared]
        )
        if sim >= min_similarity:
            row[other] = sim
    return row


def _inverted_index(vectors: Mapping[Any, Mapping[Any, float]]) -> dict[Any, list]:
    index: dict[Any, list] = defaultdict(list)
    for key, vector in vectors.items():
        for axis_key in vector:
            index[axis_key].append(key)
    return index


def _similarity_rows(
    vectors: Mapping[Any, Mapping[Any, float]],
    min_similarity: float,
    min_common_items: int,
) -> dict[Any, dict[Any, float]]:
    """Symmetric similarity rows for every pair that clears both thresholds."""
    inverted = _inverted_index(vectors)
    # Ids may mix ints and strings, so pairs are ordered by first appearance.
    order = {key: i for i, key in enumerate(vectors)}

    rows: dict[Any, dict[Any, float]] = defaultdict(dict)
    for key in vectors:
        row = _similarity_row(
            key, vectors, inverted, min_similarity, min_common_items, order
        )
        for other, sim in row.items():
            rows[key][other] = sim
            rows[other][key] = sim
    return dict(rows)


def build_similarity_matrix(
    ratings: Iterable[Rating],
    min_similarity: float = 0.3,
    min_common_items: int = 2,
) -> SimilarityMatrix:
    """Build the user-user and item-item Pearson similarity matrix.

    Co-rating pairs are found through an inverted index, so only pairs that
    share at least one rating are ever compared.

    Args:
        ratings: Validated, de-duplicated ratings.
        min_similarity: Pairs below this similarity are omitted.
        min_common_items: Pairs with fewer co-ratings are omitted.

    Returns:
        The sparse SimilarityMatrix; empty when no pair clears the thresholds.
    """
    ratings = list(ratings)
    user_vectors: dict[UserId, dict[WineId, float]] = defaultdict(dict)
    item_vectors: dict[WineId, dict[UserId, float]] = defaultdict(dict)
    for rating in ratings:
        user_vectors[rating.user_id][rating.wine_id] = rating.rating
        item_vectors[rating.wine_id][rating.user_id] = rating.rating

    matrix = SimilarityMatrix(
        users=_similarity_rows(user_vectors, min_similarity, min_common_items),
        items=_similarity_rows(item_vectors, min_similarity, min_common_items),
    )
    user_pairs, item_pairs = matrix.pair_counts()
    logger.info(
        "Built similarity matrix: %d user pairs, %d item pairs",
        user_pairs,
        item_pairs,
    )
    return matrix


def _refresh_rows(
    rows: dict[Any, dict[Any, float]],
    affected: Iterable[Any],
    vectors: Mapping[Any, Mapping[Any, float]],
    min_similarity: float,
    min_common_items: int,
) -> None:
    """Recompute the rows of affected entities in place, keeping symmetry."""
    inverted = _inverted_index(vectors)
    for key in affected:
        for other in rows.pop(key, {}):
            other_row = rows.get(other)
            if other_row is not None:
                other_row.pop(key, None)
                if not other_row:
                    del rows[other]

        row = _similarity_row(key, vectors, inverted, min_similarity, min_common_items)
        if row:
            rows[key] = row
        for other, sim in row.items():
            rows.setdefault(other, {})[key] = sim


def predict_from_neighbors(
    user_id: UserId,
    wine_id: WineId,
    user_profiles: Mapping[UserId, UserProfile],
    similarity: SimilarityMatrix,
    k: int | None = None,
) -> tuple[float, float] | None:
    """Similarity-weighted average of the nearest neighbours' ratings.

    Args:
        user_id: The user to predict for.
        wine_id: The wine to predict.
        user_profiles: Profiles of all users.
        similarity: Similarity matrix holding the user's neighbours.
        k: Only the k most similar neighbours who rated the wine are used.

    Returns:
        A (predicted_rating, confidence) tuple, or None when no neighbour
        rated the wine.
    """
    neighbors = similarity.users.get(user_id, {})
    raters = []
    for other, sim in neighbors.items():
        profile = user_profiles.get(other)
        if profile is not None and wine_id in profile.rating_by_item:
            raters.append((sim, profile.rating_by_item[wine_id]))
    if not raters:
        return None

    raters.sort(key=lambda pair: pair[0], reverse=True)
    if k is not None:
        raters = raters[:k]
    return _weighted_prediction(raters)


def _weighted_prediction(pairs: list[tuple[float, float]]) -> tuple[float, float]:
    """Turn (similarity, rating) pairs into (predicted rating, confidence).

    Confidence is the mean similarity damped by support / (support + 1).
    """
    weight = sum(abs(sim) for sim, _ in pairs)
    if weight == 0:
        return NEUTRAL_RATING, 0.0
    predicted = sum(sim * rating for sim, rating in pairs) / weight
    support = len(pairs)
    mean_sim = sum(sim for sim, _ in pairs) / support
    confidence = mean_sim * support / (support + 1)
    return clamp_rating(predicted), clamp_unit(confidence)


def fallback_rating(
    wine_id: WineId,
    item_profiles: Mapping[WineId, ItemProfile],
    global_mean: float | None,
) -> float:
    """Item average, else the global average, else the scale midpoint."""
    item = item_profiles.get(wine_id)
    if item is not None:
        return clamp_rating(item.avg_rating)
    if global_mean is not None:
        return clamp_rating(global_mean)
    return NEUTRAL_RATING


def rating_to_score(rating: float) -> float:
    """Map a 1-5 rating onto the [0, 1] ranking score."""
    return clamp_unit((rating - RATING_MIN) / (RATING_MAX - RATING_MIN))


@dataclass(frozen=True)
class _EngineState:
    ratings: tuple[Rating, ...] = ()
    user_profiles: dict[UserId, UserProfile] = field(default_factory=dict)
    item_profiles: dict[WineId, ItemProfile] = field(default_factory=dict)
    similarity: SimilarityMatrix = field(default_factory=SimilarityMatrix)
    global_mean: float | None = None
    known_wines: frozenset | None = None
    out_of_stock: frozenset = frozenset()
    skipped_records: int = 0


class CollaborativeFilter:
    """User-based and item-based neighbourhood recommender.

    Attributes:
        min_similarity: Smallest similarity kept in the matrix.
        min_common_items: Smallest co-rating count for a similarity pair.
        k_neighbors: Neighbours used for user-based predictions.
        out_of_stock_penalty: Score multiplier for wines out of stock.
        cold_start: Policy for users with few ratings.
        content_engine: Optional content engine for similar-wine lookups.
    """

    def __init__(
        self,
        min_similarity: float | None = None,
        min_common_items: int | None = None,
        k_neighbors: int | None = None,
        out_of_stock_penalty: float | None = None,
        cold_start: ColdStartPolicy | None = None,
        content_engine: Any = None,
    ) -> None:
        """Initialize an empty engine, defaulting to the collaborative config."""
        defaults = config["collaborative"]
        self.min_similarity = (
            defaults["min_similarity"] if min_similarity is None else min_similarity
        )
        self.min_common_items = min_common_items or defaults["min_common_items"]
        self.k_neighbors = k_neighbors or defaults["k_neighbors"]
        self.out_of_stock_penalty = (
            defaults["out_of_stock_penalty"]
            if out_of_stock_penalty is None
            else out_of_stock_penalty
        )
        self.cold_start = cold_start or ColdStartPolicy()
        self.content_engine = content_engine
        self._state = _EngineState()
        self._write_lock = threading.Lock()

    @property
    def ratings(self) -> tuple[Rating, ...]:
        return self._state.ratings

    @property
    def user_profiles(self) -> dict[UserId, UserProfile]:
        return self._state.user_profiles

    @property
    def item_profiles(self) -> dict[WineId, ItemProfile]:
        return self._state.item_profiles

    @property
    def similarity_matrix(self) -> SimilarityMatrix:
        return self._state.similarity

    @property
    def global_mean(self) -> float | None:
        return self._state.global_mean

    @property
    def skipped_records(self) -> int:
        return self._state.skipped_records

    def _build_state(
        self,
        ratings: list[Rating],
        known_wines: frozenset | None,
        out_of_stock: frozenset,
        skipped: int,
        similarity: SimilarityMatrix | None = None,
    ) -> _EngineState:
        if similarity is None:
            similarity = build_similarity_matrix(
                ratings, self.min_similarity, self.min_common_items
            )
        return _EngineState(
            ratings=tuple(ratings),
            user_profiles=build_user_profiles(ratings),
            item_profiles=build_item_profiles(
                ratings, self.cold_start.popularity_method
            ),
            similarity=similarity,
            global_mean=(
                sum(r.rating for r in ratings) / len(ratings) if ratings else None
            ),
            known_wines=known_wines,
            out_of_stock=out_of_stock,
            skipped_records=skipped,
        )

    def initialize(
        self,
        ratings: Iterable[Any],
        wines: Iterable[Any] | None = None,
        min_similarity: float | None = None,
        min_common_items: int | None = None,
    ) -> "CollaborativeFilter":
        """Build profiles and the similarity matrix from a rating set.

        Malformed ratings, and ratings of wines missing from a given catalog,
        are skipped and counted. Duplicate (user, wine) ratings keep the
        latest one. An empty rating set yields empty structures.

        Args:
            ratings: Raw rating records or Rating instances.
            wines: Optional wine catalog used for validation and stock.
            min_similarity: Overrides the configured similarity floor.
            min_common_items: Overrides the configured co-rating floor.

        Returns:
            Self, for method chaining.
        """
        if min_similarity is not None:
            self.min_similarity = min_similarity
        if min_common_items is not None:
            self.min_common_items = min_common_items

        known_wines = None
        out_of_stock = frozenset()
        if wines is not None:
            catalog, _ = validate_wines(wines)
            known_wines = frozenset(w.id for w in catalog)
            out_of_stock = frozenset(w.id for w in catalog if not w.in_stock)

        valid, skipped = validate_ratings(ratings, known_wines)
        valid = deduplicate_ratings(valid)

        with self._write_lock:
            self._state = self._build_state(valid, known_wines, out_of_stock, skipped)

        logger.info(
            "Initialized collaborative filter: %d ratings, %d users, %d wines",
            len(valid),
            len(self._state.user_profiles),
            len(self._state.item_profiles),
        )
        return self

    @classmethod
    def from_model(cls, model: CollaborativeFilteringModel) -> "CollaborativeFilter":
        """Rebuild an engine from a trained model snapshot without recomputing it."""
        params = model.parameters
        engine = cls(
            min_similarity=params.get("min_similarity"),
            min_common_items=params.get("min_common_items"),
            k_neighbors=params.get("k_neighbors"),
        )
        engine._state = _EngineState(
            ratings=tuple(
                r for profile in model.user_profiles.values() for r in profile.ratings
            ),
            user_profiles=model.user_profiles,
            item_profiles=model.item_profiles,
            similarity=model.similarity_matrix,
            global_mean=model.global_mean,
            skipped_records=model.statistics.get("skipped_records", 0),
        )
        return engine

    def update_with_new_ratings(self, new_ratings: Iterable[Any]) -> int:
        """Append ratings and refresh the affected profiles and similarity rows.

        Profiles are rebuilt from the merged rating set; similarity rows are
        recomputed only for users and wines that received a new rating.

        Args:
            new_ratings: Raw rating records or Rating instances.

        Returns:
            Number of ratings accepted.
        """
        with self._write_lock:
            state = self._state
            valid, skipped = validate_ratings(new_ratings, state.known_wines)
            if not valid:
                return 0

            merged = deduplicate_ratings([*state.ratings, *valid])
            user_vectors: dict[UserId, dict[WineId, float]] = defaultdict(dict)
            item_vectors: dict[WineId, dict[UserId, float]] = defaultdict(dict)
            for rating in merged:
                user_vectors[rating.user_id][rating.wine_id] = rating.rating
                item_vectors[rating.wine_id][rating.user_id] = rating.rating

            users = copy.deepcopy(state.similarity.users)
            items = copy.deepcopy(state.similarity.items)
            _refresh_rows(
                users,
                dict.fromkeys(r.user_id for r in valid),
                user_vectors,
                self.min_similarity,
                self.min_common_items,
            )
            _refresh_rows(
                items,
                dict.fromkeys(r.wine_id for r in valid),
                item_vectors,
                self.min_similarity,
                self.min_common_items,
            )

            self._state = self._build_state(
                merged,
                state.known_wines,
                state.out_of_stock,
                state.skipped_records + skipped,
                similarity=SimilarityMatrix(users=users, items=items),
            )

        logger.info("Applied %d new ratings (%d skipped)", len(valid), skipped)
        return len(valid)

    def update_stock(self, wines: Iterable[Any]) -> None:
        """Replace the stock lookup used for re-ranking."""
        catalog, _ = validate_wines(wines)
        with self._write_lock:
            state = self._state
            self._state = _EngineState(
                ratings=state.ratings,
                user_profiles=state.user_profiles,
                item_profiles=state.item_profiles,
                similarity=state.similarity,
                global_mean=state.global_mean,
                known_wines=frozenset(w.id for w in catalog),
                out_of_stock=frozenset(w.id for w in catalog if not w.in_stock),
                skipped_records=state.skipped_records,
            )

    def _stock_factor(self, state: _EngineState, wine_id: WineId) -> float:
        return self.out_of_stock_penalty if wine_id in state.out_of_stock else 1.0

    @staticmethod
    def _rated_by(state: _EngineState, user_id: UserId) -> frozenset:
        profile = state.user_profiles.get(user_id)
        return profile.items if profile is not None else frozenset()

    def _top(self, row: Mapping[Any, float], limit: int) -> list[tuple[Any, float]]:
        ranked = sorted(row.items(), key=lambda pair: pair[1], reverse=True)
        return [(key, sim) for key, sim in ranked if sim >= self.min_similarity][
            :limit
        ]

    def find_similar_users(
        self, user_id: UserId, limit: int = 20
    ) -> list[tuple[UserId, float]]:
        """Most similar users, above the similarity floor, sorted descending."""
        return self._top(self._state.similarity.users.get(user_id, {}), limit)

    def find_similar_items(
        self, wine_id: WineId, limit: int = 20
    ) -> list[tuple[WineId, float]]:
        """Most similar wines by co-rating pattern, sorted descending."""
        return self._top(self._state.similarity.items.get(wine_id, {}), limit)

    def predict_rating(self, user_id: UserId, wine_id: WineId) -> float:
        """Predict a user's rating of a wine, always within [1, 5].

        Falls back to the wine's average, then the global average, when no
        neighbour rated the wine.
        """
        state = self._state
        prediction = predict_from_neighbors(
            user_id, wine_id, state.user_profiles, state.similarity, self.k_neighbors
        )
        if prediction is not None:
            return prediction[0]
        logger.debug("No neighbour rated %s for %s, using averages", wine_id, user_id)
        return fallback_rating(wine_id, state.item_profiles, state.global_mean)

    def _user_based(
        self, state: _EngineState, user_id: UserId, k: int
    ) -> list[Recommendation]:
        rated = self._rated_by(state, user_id)
        candidates: dict[WineId, list[tuple[float, float]]] = defaultdict(list)
        neighbors = self._top(state.similarity.users.get(user_id, {}), k)
        for other, sim in neighbors:
            for wine_id, rating in state.user_profiles[other].rating_by_item.items():
                if wine_id not in rated:
                    candidates[wine_id].append((sim, rating))

        recs = []
        for wine_id, pairs in candidates.items():
            predicted, confidence = _weighted_prediction(pairs)
            recs.append(
                Recommendation(
                    wine_id=wine_id,
                    score=rating_to_score(predicted)
                    * self._stock_factor(state, wine_id),
                    source=RecommendationSource.CF,
                    predicted_rating=predicted,
                    confidence=confidence,
                )
            )
        recs.sort(key=lambda rec: rec.score, reverse=True)
        return recs

    def get_user_based_recommendations(
        self, user_id: UserId, limit: int = 10, k: int | None = None
    ) -> list[Recommendation]:
        """Recommend unrated wines from the ratings of the most similar users.

        Users with fewer ratings than the cold-start threshold get the CF list
        blended with popularity; users without ratings get popularity only.

        Args:
            user_id: The user to recommend for.
            limit: Maximum number of recommendations.
            k: Number of neighbours, defaulting to k_neighbors.

        Returns:
            Recommendations sorted by score descending.
        """
        state = self._state
        num_ratings = len(self._rated_by(state, user_id))
        if num_ratings == 0:
            logger.debug("User %s has no ratings, serving popularity", user_id)
            return self._popularity(state, user_id, limit)

        cf_recs = self._user_based(state, user_id, k or self.k_neighbors)
        if not self.cold_start.is_cold_user(num_ratings) and cf_recs:
            return cf_recs[:limit]

        popular = self._popularity(state, user_id, len(state.item_profiles))
        return self.cold_start.blend(cf_recs, popular, num_ratings, limit)

    def get_item_based_recommendations(
        self, user_id: UserId, limit: int = 10
    ) -> list[Recommendation]:
        """Recommend wines similar to those the user rated, weighted by rating.

        Falls back to popularity when no rated wine has a similar neighbour.
        """
        state = self._state
        profile = state.user_profiles.get(user_id)
        if profile is None:
            return self._popularity(state, user_id, limit)

        candidates: dict[WineId, list[tuple[float, float]]] = defaultdict(list)
        for wine_id, rating in profile.rating_by_item.items():
            for other, sim in state.similarity.items.get(wine_id, {}).items():
                if other not in profile.items and sim >= self.min_similarity:
                    candidates[other].append((sim, rating))

        if not candidates:
            logger.debug("No similar items for %s, serving popularity", user_id)
            return self._popularity(state, user_id, limit)

        recs = []
        for wine_id, pairs in candidates.items():
            predicted, confidence = _weighted_prediction(pairs)
            recs.append(
                Recommendation(
                    wine_id=wine_id,
                    score=rating_to_score(predicted)
                    * self._stock_factor(state, wine_id),
                    source=RecommendationSource.CF,
                    predicted_rating=predicted,
                    confidence=confidence,
                )
            )
        recs.sort(key=lambda rec: rec.score, reverse=True)
        return recs[:limit]

    def get_hybrid_recommendations(
        self,
        user_id: UserId,
        limit: int = 10,
        weights: Mapping[str, float] | None = None,
    ) -> list[Recommendation]:
        """Merge the user-based and item-based lists into one CF list.

        A wine's score is the weighted sum of its scores in both lists, so a
        wine found by one approach only gets that approach's share. Each wine
        appears once.

        Args:
            user_id: The user to recommend for.
            limit: Maximum number of recommendations.
            weights: "user" and "item" weights, defaulting to the
                collaborative config.

        Returns:
            Recommendations sorted by combined score descending.
        """
        defaults = config["collaborative"]
        weights = {
            "user": defaults["user_weight"],
            "item": defaults["item_weight"],
            **(weights or {}),
        }
        lists = {
            "user": self.get_user_based_recommendations(user_id, limit * 2),
            "item": self.get_item_based_recommendations(user_id, limit * 2),
        }

        merged: dict[WineId, list[tuple[str, Recommendation]]] = defaultdict(list)
        for approach, recs in lists.items():
            for rec in recs:
                merged[rec.wine_id].append((approach, rec))

        combined = []
        for wine_id, entries in merged.items():
            share = {approach: weights[approach] for approach, _ in entries}
            total = sum(share.values())
            predicted = [
                (share[a], r.predicted_rating)
                for a, r in entries
                if r.predicted_rating is not None
            ]
            combined.append(
                Recommendation(
                    wine_id=wine_id,
                    score=clamp_unit(sum(share[a] * r.score for a, r in entries)),
                    source=(
                        RecommendationSource.CF
                        if any(r.source == RecommendationSource.CF for _, r in entries)
                        else RecommendationSource.POPULARITY
                    ),
                    predicted_rating=(
                        clamp_rating(sum(w * p for w, p in predicted) / total)
                        if predicted and total > 0
                        else None
                    ),
                    confidence=max(
                        (r.confidence for _, r in entries if r.confidence is not None),
                        default=None,
                    ),
                    sources=tuple(f"{a}_based" for a, _ in entries),
                )
            )
        combined.sort(key=lambda rec: rec.score, reverse=True)
        return combined[:limit]

    def _popularity(
        self, state: _EngineState, user_id: UserId, limit: int
    ) -> list[Recommendation]:
        rated = self._rated_by(state, user_id)
        recs = [
            Recommendation(
                wine_id=wine_id,
                score=item.popularity * self._stock_factor(state, wine_id),
                source=RecommendationSource.POPULARITY,
                predicted_rating=clamp_rating(item.avg_rating),
                confidence=self.cold_start.popularity_confidence(item.popularity),
            )
            for wine_id, item in state.item_profiles.items()
            if wine_id not in rated
        ]
        recs.sort(key=lambda rec: rec.score, reverse=True)
        return recs[:limit]

    def get_popularity_based_recommendations(
        self, user_id: UserId | None = None, limit: int = 10
    ) -> list[Recommendation]:
        """Rank wines the user has not rated by Bayesian popularity.

        Confidence stays within the cold-start popularity band.
        """
        return self._popularity(self._state, user_id, limit)

    def get_content_based_similar_wines(
        self, wine_id: WineId, limit: int = 10
    ) -> list[Recommendation]:
        """Similar wines from the attached content engine, if any."""
        if self.content_engine is None:
            return []
        return self.content_engine.find_similar_wines(wine_id, limit)

    def statistics(self) -> dict[str, Any]:
        """Summary counts of the current state."""
        state = self._state
        n_users = len(state.user_profiles)
        n_items = len(state.item_profiles)
        cells = n_users * n_items
        user_pairs, item_pairs = state.similarity.pair_counts()
        return {
            "total_ratings": len(state.ratings),
            "total_users": n_users,
            "total_items": n_items,
            "sparsity": 1 - len(state.ratings) / cells if cells else 1.0,
            "user_pairs": user_pairs,
            "item_pairs": item_pairs,
            "skipped_records": state.skipped_records,
        }
