"""Content-based filtering over wine attributes and description TF-IDF.

Each wine is turned into a set of sparse sub-vectors (type, region, grape,
price bucket, vintage, description terms). Similarity is the cosine over the
concatenation of those sub-vectors, with every group scaled by its weight so
that, for example, sharing a type counts more than sharing a region.

The fitted catalog is held as one sparse matrix (a row per wine) together with
its precomputed item-item cosine similarity matrix.
"""

import math
import threading
from collections import defaultdict
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from typing import Any

import numpy as np
from scipy import sparse
from sklearn.feature_extraction import DictVectorizer
from sklearn.feature_extraction.text import TfidfVectorizer
from sklearn.metrics import pairwise

from winerec.data.preprocessor import (
    coerce_wine,
    deduplicate_ratings,
    description_vector,
    extract_description_features,
    validate_ratings,
    validate_wines,
)
from winerec.models.schemas import (
    ContentProfile,
    Rating,
    Recommendation,
    RecommendationSource,
    UserId,
    Wine,
    WineId,
)
from winerec.models.similarity import (
    RATING_MAX,
    RATING_MIN,
    clamp_rating,
    clamp_unit,
    cosine_similarity,
    pearson_correlation,
)
from winerec.utils.config import config
from winerec.utils.logger import get_logger

logger = get_logger(__name__)

# Upper bounds of the price buckets, in order.
PRICE_BUCKETS = [
    (20.0, "budget"),
    (50.0, "mid"),
    (100.0, "premium"),
    (250.0, "luxury"),
    (math.inf, "icon"),
]
NEIGHBOR_WEIGHT = 0.5

FEATURE_GROUPS = {
    "type": "type_vector",
    "region": "region_vector",
    "grape": "grape_vector",
    "price": "price_vector",
    "vintage": "vintage_vector",
    "text": "text_features",
}
# Groups whose values are reported as attribute preferences.
PREFERENCE_GROUPS = ("type", "region", "grape", "price", "vintage")


def default_group_weights() -> dict[str, float]:
    """Group weights from the content_based config section."""
    section = config["content_based"]
    return {group: float(section[f"{group}_weight"]) for group in FEATURE_GROUPS}


def price_bucket(price: float) -> int:
    """Index of the price bucket containing price."""
    for index, (upper, _) in enumerate(PRICE_BUCKETS):
        if price < upper:
            return index
    return len(PRICE_BUCKETS) - 1


def _categorical(value: str | None) -> dict[str, float]:
    if value is None or not str(value).strip():
        return {}
    return {str(value).strip().lower(): 1.0}


def _grapes(value: str | None) -> dict[str, float]:
    if value is None:
        return {}
    parts = str(value).replace("/", ",").split(",")
    return {p.strip().lower(): 1.0 for p in parts if p.strip()}


def _price_vector(price: float | None) -> dict[str, float]:
    if price is None:
        return {}
    index = price_bucket(price)
    vector = {PRICE_BUCKETS[index][1]: 1.0}
    for neighbor in (index - 1, index + 1):
        if 0 <= neighbor < len(PRICE_BUCKETS):
            vector[PRICE_BUCKETS[neighbor][1]] = NEIGHBOR_WEIGHT
    return vector


def _vintage_vector(year: int | None) -> dict[str, float]:
    if year is None:
        return {}
    return {
        str(year): 1.0,
        str(year - 1): NEIGHBOR_WEIGHT,
        str(year + 1): NEIGHBOR_WEIGHT,
    }


def extract_wine_features(
    wine: Wine,
    text_features: dict[str, float] | None = None,
) -> dict[str, dict[str, float]]:
    """Build the sparse sub-vectors of one wine.

    Missing attributes leave their sub-vector out rather than failing.

    Args:
        wine: The wine to vectorize.
        text_features: Precomputed TF-IDF terms of the wine's description.

    Returns:
        Dictionary with any of type_vector, region_vector, grape_vector,
        price_vector, vintage_vector and text_features.
    """
    vectors = {
        "type_vector": _categorical(wine.type),
        "region_vector": _categorical(wine.region),
        "grape_vector": _grapes(wine.grape_variety),
        "price_vector": _price_vector(wine.price),
        "vintage_vector": _vintage_vector(wine.vintage_year),
        "text_features": text_features or {},
    }
    return {name: vector for name, vector in vectors.items() if vector}


def flatten_features(
    features: Mapping[str, Mapping[str, float]],
    group_weights: Mapping[str, float] | None = None,
) -> dict[str, float]:
    """Concatenate sub-vectors into one vector keyed "group:value".

    Each group is scaled by the square root of its weight, so the group's
    share of a dot product grows linearly with the weight.
    """
    flat = {}
    for group, name in FEATURE_GROUPS.items():
        vector = features.get(name)
        if not vector:
            continue
        scale = math.sqrt(group_weights.get(group, 1.0)) if group_weights else 1.0
        for value, weight in vector.items():
            flat[f"{group}:{value}"] = weight * scale
    return flat


def vectorize_features(
    features: Sequence[Mapping[str, Mapping[str, float]]],
    group_weights: Mapping[str, float],
) -> tuple[DictVectorizer, sparse.csr_matrix]:
    """Stack weighted feature sets into a sparse matrix, one row per wine.

    Args:
        features: Non-empty sequence of feature sub-vector sets.
        group_weights: Attribute group weights.

    Returns:
        A tuple of (fitted DictVectorizer, CSR matrix).
    """
    vectorizer = DictVectorizer()
    matrix = vectorizer.fit_transform(
        [flatten_features(f, group_weights) for f in features]
    )
    return vectorizer, sparse.csr_matrix(matrix)


def pairwise_similarity(rows: Any, others: Any = None) -> np.ndarray:
    """Cosine similarity between matrix rows, clipped to [0, 1].

    Rows without any feature are similar to nothing.
    """
    others = rows if others is None else others
    if min(rows.shape[0], others.shape[0], rows.shape[1]) == 0:
        return np.zeros((rows.shape[0], others.shape[0]))
    return np.clip(pairwise.cosine_similarity(rows, others), 0.0, 1.0)


def content_similarity(
    features_a: Mapping[str, Mapping[str, float]],
    features_b: Mapping[str, Mapping[str, float]],
    group_weights: Mapping[str, float],
) -> float:
    """Weighted cosine similarity of two wines' feature sets, in [0, 1]."""
    _, matrix = vectorize_features([features_a, features_b], group_weights)
    return float(pairwise_similarity(matrix[0], matrix[1])[0, 0])


def similarities_to(
    wine_id: WineId,
    other_ids: Iterable[WineId],
    item_features: Mapping[WineId, Mapping[str, Mapping[str, float]]],
    group_weights: Mapping[str, float],
) -> dict[WineId, float]:
    """Similarity of one wine to each of other_ids, computed as one matrix call.

    The wine itself and wines without features are left out.
    """
    target = item_features.get(wine_id)
    others = [w for w in other_ids if w != wine_id and item_features.get(w)]
    if not target or not others:
        return {}
    _, matrix = vectorize_features(
        [target, *(item_features[w] for w in others)], group_weights
    )
    return dict(zip(others, pairwise_similarity(matrix[0], matrix[1:])[0].tolist()))


def learn_weights(
    ratings: Iterable[Rating],
    item_features: Mapping[WineId, Mapping[str, Mapping[str, float]]],
) -> dict[str, float]:
    """Per-feature importance from presence-rating correlation.

    A feature's weight is 1 + pearson(presence, rating) over the rated wines,
    so it lies in [0, 2]; features present in all or none of them get 1.

    Args:
        ratings: Ratings whose wines have entries in item_features.
        item_features: Feature sub-vectors per wine.

    Returns:
        Dictionary mapping "group:value" keys to weights.
    """
    rows = [
        (flatten_features(item_features[r.wine_id]), r.rating)
        for r in ratings
        if r.wine_id in item_features
    ]
    if not rows:
        return {}

    values = [rating for _, rating in rows]
    keys = dict.fromkeys(key for flat, _ in rows for key in flat)
    return {
        key: 1.0
        + pearson_correlation([1.0 if key in flat else 0.0 for flat, _ in rows], values)
        for key in keys
    }


def build_content_profile(
    ratings: Iterable[Rating],
    item_features: Mapping[WineId, Mapping[str, Mapping[str, float]]],
    group_weights: Mapping[str, float],
) -> ContentProfile:
    """Rating-weighted average of the rated wines' feature vectors.

    Args:
        ratings: One user's ratings.
        item_features: Feature sub-vectors per wine.
        group_weights: Attribute group weights.

    Returns:
        The ContentProfile; empty when no rated wine has features.
    """
    totals: dict[str, float] = defaultdict(float)
    rating_sum = 0.0
    by_value: dict[str, dict[str, list[float]]] = defaultdict(lambda: defaultdict(list))

    for rating in ratings:
        features = item_features.get(rating.wine_id)
        if not features:
            continue
        for key, value in flatten_features(features, group_weights).items():
            totals[key] += rating.rating * value
        rating_sum += rating.rating
        for group in PREFERENCE_GROUPS:
            for value, weight in features.get(FEATURE_GROUPS[group], {}).items():
                if weight == 1.0:
                    by_value[group][value].append(rating.rating)

    if rating_sum == 0:
        return ContentProfile(preferences={}, feature_vector={})

    preferences = {
        group: {value: sum(rs) / len(rs) for value, rs in values.items()}
        for group, values in by_value.items()
    }
    feature_vector = {key: total / rating_sum for key, total in totals.items()}
    return ContentProfile(preferences=preferences, feature_vector=feature_vector)


def predict_content_rating(
    rating_by_item: Mapping[WineId, float],
    similarities: Mapping[WineId, float],
    item_average: float | None = None,
    global_mean: float | None = None,
) -> float:
    """Predict a rating as the similarity-weighted average of a user's ratings.

    Falls back to the item average, then the global average, then the scale
    midpoint when the wine resembles nothing the user rated.

    Args:
        rating_by_item: The user's ratings keyed by wine.
        similarities: Similarity of the predicted wine to each rated wine,
            without the predicted wine itself.
        item_average: Average rating of the wine, if known.
        global_mean: Average of all ratings, if known.

    Returns:
        Predicted rating in [1, 5].
    """
    rated = [w for w in rating_by_item if similarities.get(w, 0.0) > 0]
    if rated:
        sims = np.array([similarities[w] for w in rated])
        ratings = np.array([rating_by_item[w] for w in rated])
        return clamp_rating(float(sims @ ratings / sims.sum()))

    for fallback in (item_average, global_mean):
        if fallback is not None:
            return clamp_rating(fallback)
    return (RATING_MIN + RATING_MAX) / 2


@dataclass(frozen=True)
class _CatalogState:
    """Immutable catalog snapshot; rows of matrix and similarity follow wine_ids."""

    wines: dict[WineId, Wine] = field(default_factory=dict)
    features: dict[WineId, dict[str, dict[str, float]]] = field(default_factory=dict)
    vectorizer: TfidfVectorizer | None = None
    wine_ids: list[WineId] = field(default_factory=list)
    index: dict[WineId, int] = field(default_factory=dict)
    feature_vectorizer: DictVectorizer | None = None
    matrix: Any = None
    similarity: np.ndarray = field(default_factory=lambda: np.zeros((0, 0)))


class ContentBasedFilter:
    """Content-based recommender over wine attributes.

    Attributes:
        group_weights: Weight of each feature group in similarity.
        quality_influence: Share of the score driven by quality_score.
        out_of_stock_penalty: Score multiplier for wines out of stock.
    """

    cosine_similarity = staticmethod(cosine_similarity)

    def __init__(
        self,
        group_weights: Mapping[str, float] | None = None,
        quality_influence: float | None = None,
        out_of_stock_penalty: float | None = None,
    ) -> None:
        """Initialize an empty engine, defaulting to the content_based config."""
        defaults = config["content_based"]
        self.group_weights = {**default_group_weights(), **(group_weights or {})}
        self.quality_influence = (
            defaults["quality_influence"]
            if quality_influence is None
            else quality_influence
        )
        self.out_of_stock_penalty = (
            defaults["out_of_stock_penalty"]
            if out_of_stock_penalty is None
            else out_of_stock_penalty
        )
        self._state = _CatalogState()
        self._write_lock = threading.Lock()

    @property
    def wines(self) -> dict[WineId, Wine]:
        return self._state.wines

    @property
    def item_features(self) -> dict[WineId, dict[str, dict[str, float]]]:
        return self._state.features

    @property
    def similarity_matrix(self) -> np.ndarray:
        """Item-item similarity, rows and columns in catalog order."""
        return self._state.similarity

    def _index_catalog(
        self,
        wines: dict[WineId, Wine],
        features: dict[WineId, dict[str, dict[str, float]]],
        vectorizer: TfidfVectorizer | None,
    ) -> tuple[_CatalogState, sparse.csr_matrix | None]:
        """Vectorize a catalog; the similarity matrix is left for the caller."""
        wine_ids = list(wines)
        if not wine_ids:
            return _CatalogState(vectorizer=vectorizer), None
        feature_vectorizer, matrix = vectorize_features(
            [features[w] for w in wine_ids], self.group_weights
        )
        state = _CatalogState(
            wines=wines,
            features=features,
            vectorizer=vectorizer,
            wine_ids=wine_ids,
            index={w: i for i, w in enumerate(wine_ids)},
            feature_vectorizer=feature_vectorizer,
            matrix=matrix,
        )
        return state, matrix

    def initialize(self, wines: Iterable[Any]) -> "ContentBasedFilter":
        """Validate the catalog, extract features and precompute similarity.

        Args:
            wines: Raw wine records or Wine instances.

        Returns:
            Self, for method chaining.
        """
        catalog, _ = validate_wines(wines)
        text, vectorizer = extract_description_features(catalog)
        state, matrix = self._index_catalog(
            {w.id: w for w in catalog},
            {w.id: extract_wine_features(w, text.get(w.id)) for w in catalog},
            vectorizer,
        )
        if matrix is not None:
            state = replace(state, similarity=pairwise_similarity(matrix))
        with self._write_lock:
            self._state = state

        logger.info(
            "Fitted content-based model: %d wines, %d features",
            len(state.wine_ids),
            0 if matrix is None else matrix.shape[1],
        )
        return self

    def _text_features(self, state: _CatalogState, wine: Wine) -> dict[str, float]:
        if state.vectorizer is None or not wine.description:
            return {}
        row = state.vectorizer.transform([wine.description])[0]
        return description_vector(state.vectorizer, row)

    def extract_features(self, wine: Any) -> dict[str, dict[str, float]]:
        """Feature sub-vectors of a wine, using the fitted description vocabulary.

        Args:
            wine: A Wine instance or raw wine record.

        Returns:
            Dictionary of sub-vectors; empty for a malformed record.
        """
        wine = coerce_wine(wine)
        if wine is None:
            return {}
        return extract_wine_features(wine, self._text_features(self._state, wine))

    def calculate_similarity(self, wine_id_a: WineId, wine_id_b: WineId) -> float:
        """Weighted cosine similarity of two catalog wines, 0 if either is unknown."""
        state = self._state
        if wine_id_a not in state.index or wine_id_b not in state.index:
            return 0.0
        return float(state.similarity[state.index[wine_id_a], state.index[wine_id_b]])

    @staticmethod
    def _user_ratings(user_id: UserId | None, ratings: Iterable[Any]) -> list[Rating]:
        valid, _ = validate_ratings(ratings)
        if user_id is not None:
            valid = [r for r in valid if r.user_id == user_id]
        return deduplicate_ratings(valid)

    def build_user_profile(
        self, user_id: UserId, ratings: Iterable[Any]
    ) -> ContentProfile:
        """Build a user's taste profile from the ratings that belong to them."""
        return build_content_profile(
            self._user_ratings(user_id, ratings),
            self._state.features,
            self.group_weights,
        )

    def learn_feature_weights(
        self, user_id: UserId | None, ratings: Iterable[Any]
    ) -> dict[str, float]:
        """Learn per-feature weights in [0, 2] from a user's rating history."""
        return learn_weights(self._user_ratings(user_id, ratings), self._state.features)

    def _quality_factor(self, wine: Wine) -> float:
        quality = 50.0 if wine.quality_score is None else wine.quality_score
        quality = min(100.0, max(0.0, quality))
        return (1 - self.quality_influence) + self.quality_influence * quality / 100

    def _stock_factor(self, wine: Wine) -> float:
        return 1.0 if wine.in_stock else self.out_of_stock_penalty

    def _stock_factors(self, state: _CatalogState) -> np.ndarray:
        return np.array([self._stock_factor(state.wines[w]) for w in state.wine_ids])

    @staticmethod
    def _ranked(
        state: _CatalogState,
        similarities: np.ndarray,
        scores: np.ndarray,
        exclude: set,
        limit: int,
        source: RecommendationSource = RecommendationSource.CB,
    ) -> list[Recommendation]:
        recs: list[Recommendation] = []
        for i in np.argsort(-scores, kind="stable"):
            if len(recs) >= limit:
                break
            wine_id = state.wine_ids[i]
            if wine_id in exclude or similarities[i] <= 0:
                continue
            recs.append(
                Recommendation(
                    wine_id=wine_id,
                    score=float(scores[i]),
                    source=source,
                    similarity=float(similarities[i]),
                )
            )
        return recs

    def get_recommendations(
        self, user_id: UserId, ratings: Iterable[Any], limit: int = 10
    ) -> list[Recommendation]:
        """Score unrated wines by similarity to the user's taste profile.

        Wine vectors are modulated by the learned feature weights, and the
        similarity is scaled by quality and stock. A user without ratings gets
        a generic list ranked by quality and stock.

        Args:
            user_id: The user to recommend for.
            ratings: Rating history; only the user's own ratings are used.
            limit: Maximum number of recommendations.

        Returns:
            Recommendations sorted by score descending.
        """
        state = self._state
        user_ratings = self._user_ratings(user_id, ratings)
        rated = {r.wine_id for r in user_ratings}
        profile = build_content_profile(user_ratings, state.features, self.group_weights)
        if not profile.feature_vector:
            logger.debug("No content history for %s, serving generic list", user_id)
            return self._generic(state, rated, limit)

        weights = learn_weights(user_ratings, state.features)
        column_weights = np.array(
            [weights.get(name, 1.0) for name in state.feature_vectorizer.feature_names_]
        )
        weighted = state.matrix @ sparse.diags(column_weights)
        profile_row = state.feature_vectorizer.transform([profile.feature_vector])
        similarities = pairwise_similarity(profile_row, weighted)[0]

        quality = np.array(
            [self._quality_factor(state.wines[w]) for w in state.wine_ids]
        )
        scores = np.clip(similarities * quality * self._stock_factors(state), 0.0, 1.0)
        return self._ranked(state, similarities, scores, rated, limit)

    def _generic(
        self, state: _CatalogState, rated: set, limit: int
    ) -> list[Recommendation]:
        recs = [
            Recommendation(
                wine_id=wine.id,
                score=clamp_unit(
                    (0.5 if wine.quality_score is None else wine.quality_score / 100)
                    * self._stock_factor(wine)
                ),
                source=RecommendationSource.POPULARITY,
            )
            for wine in state.wines.values()
            if wine.id not in rated
        ]
        recs.sort(key=lambda rec: rec.score, reverse=True)
        return recs[:limit]

    def find_similar_wines(
        self, wine_id: WineId, limit: int = 10
    ) -> list[Recommendation]:
        """Nearest wines by content similarity, excluding the wine itself."""
        state = self._state
        if wine_id not in state.index:
            return []
        similarities = state.similarity[state.index[wine_id]]
        scores = similarities * self._stock_factors(state)
        return self._ranked(state, similarities, scores, {wine_id}, limit)

    def update_wine_features(self, wine: Any) -> bool:
        """Recompute and replace the cached features of one wine.

        Only the wine's row and column of the similarity matrix are
        recomputed; the new snapshot is swapped in as a whole.

        Args:
            wine: A Wine instance or raw wine record; new ids are added.

        Returns:
            False if the record is malformed, True otherwise.
        """
        wine = coerce_wine(wine)
        if wine is None:
            logger.warning("Ignoring malformed wine update")
            return False

        with self._write_lock:
            previous = self._state
            features = extract_wine_features(wine, self._text_features(previous, wine))
            state, matrix = self._index_catalog(
                {**previous.wines, wine.id: wine},
                {**previous.features, wine.id: features},
                previous.vectorizer,
            )
            # Existing wines keep their positions, a new wine is appended.
            size = len(state.wine_ids)
            kept = len(previous.wine_ids)
            similarity = np.zeros((size, size))
            similarity[:kept, :kept] = previous.similarity
            row = state.index[wine.id]
            similarity[row, :] = pairwise_similarity(matrix[row], matrix)[0]
            similarity[:, row] = similarity[row, :]
            self._state = replace(state, similarity=similarity)
        return True

    def predict_rating(
        self, user_id: UserId, wine_id: WineId, ratings: Iterable[Any]
    ) -> float:
        """Predict a rating from the user's ratings of similar wines."""
        state = self._state
        valid = deduplicate_ratings(validate_ratings(ratings)[0])
        wine_ratings = [r.rating for r in valid if r.wine_id == wine_id]
        rating_by_item = {r.wine_id: r.rating for r in valid if r.user_id == user_id}

        similarities = {}
        if wine_id in state.index:
            row = state.similarity[state.index[wine_id]]
            similarities = {
                w: float(row[state.index[w]])
                for w in rating_by_item
                if w != wine_id and w in state.index
            }
        return predict_content_rating(
            rating_by_item,
            similarities,
            item_average=(
                sum(wine_ratings) / len(wine_ratings) if wine_ratings else None
            ),
            global_mean=(sum(r.rating for r in valid) / len(valid) if valid else None),
        )
