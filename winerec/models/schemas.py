"""Core record types shared by the recommendation engines.

Ratings and wines arrive from the data store and are validated with pydantic;
everything the engines derive from them (profiles, similarity matrices,
recommendations, trained models) is a plain dataclass.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

UserId = Union[int, str]
WineId = Union[int, str]


class Rating(BaseModel):
    """A single user rating of a wine.

    Attributes:
        user_id: The rating user.
        wine_id: The rated wine.
        rating: Rating value on the 1-5 scale.
        timestamp: Unix timestamp of the rating.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    user_id: UserId
    wine_id: WineId = Field(validation_alias=AliasChoices("wine_id", "item_id"))
    rating: float = Field(
        ge=1.0, le=5.0, validation_alias=AliasChoices("rating", "overall_rating")
    )
    timestamp: float = Field(
        default=0.0, validation_alias=AliasChoices("timestamp", "created_at")
    )

    @field_validator("timestamp", mode="before")
    @classmethod
    def _coerce_timestamp(cls, value: Any) -> Any:
        if value is None:
            return 0.0
        if isinstance(value, datetime):
            return value.timestamp()
        if isinstance(value, str):
            try:
                return float(value)
            except ValueError:
                return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()
        return value


class Wine(BaseModel):
    """A wine from the catalog. Only the identifier is mandatory."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: WineId
    type: str | None = Field(
        default=None, validation_alias=AliasChoices("type", "wine_type")
    )
    region: str | None = None
    grape_variety: str | None = None
    price: float | None = Field(default=None, ge=0)
    quality_score: float | None = None
    vintage_year: int | None = None
    stock_quantity: int | None = None
    description: str | None = None

    @property
    def in_stock(self) -> bool:
        """Whether the wine is available. Unknown stock counts as available."""
        return self.stock_quantity is None or self.stock_quantity > 0


class RecommendationSource(str, Enum):
    """Which engine produced a recommendation."""

    CF = "cf"
    CB = "cb"
    POPULARITY = "popularity"
    BLENDED = "blended"


@dataclass(frozen=True)
class Recommendation:
    """A recommended wine.

    Attributes:
        wine_id: The recommended wine.
        score: Normalized ranking score in [0, 1]; lists are sorted by it.
        source: Engine that produced the entry.
        predicted_rating: Predicted rating in [1, 5] (CF and popularity).
        confidence: Confidence in [0, 1] (CF and popularity).
        similarity: Content similarity in [0, 1] (CB).
        sources: Contributing engines for blended entries.
    """

    wine_id: WineId
    score: float
    source: RecommendationSource
    predicted_rating: float | None = None
    confidence: float | None = None
    similarity: float | None = None
    sources: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["source"] = self.source.value
        data["sources"] = list(self.sources)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Recommendation":
        return cls(
            wine_id=data["wine_id"],
            score=data["score"],
            source=RecommendationSource(data["source"]),
            predicted_rating=data.get("predicted_rating"),
            confidence=data.get("confidence"),
            similarity=data.get("similarity"),
            sources=tuple(data.get("sources", ())),
        )


@dataclass(frozen=True)
class UserProfile:
    """Aggregated ratings of one user."""

    ratings: tuple[Rating, ...]
    avg_rating: float
    items: frozenset
    rating_by_item: dict[WineId, float] = field(repr=False, compare=False)


@dataclass(frozen=True)
class ItemProfile:
    """Aggregated ratings of one wine.

    Attributes:
        ratings: All ratings of the wine.
        avg_rating: Mean rating.
        popularity: Bayesian count-weighted popularity normalized to [0, 1].
    """

    ratings: tuple[Rating, ...]
    avg_rating: float
    popularity: float
    rating_by_user: dict[UserId, float] = field(repr=False, compare=False)


@dataclass(frozen=True)
class SimilarityMatrix:
    """Sparse symmetric user-user and item-item similarity rows."""

    users: dict[UserId, dict[UserId, float]] = field(default_factory=dict)
    items: dict[WineId, dict[WineId, float]] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.users and not self.items

    def pair_counts(self) -> tuple[int, int]:
        """Number of distinct user pairs and item pairs stored."""
        user_pairs = sum(len(row) for row in self.users.values()) // 2
        item_pairs = sum(len(row) for row in self.items.values()) // 2
        return user_pairs, item_pairs


@dataclass(frozen=True)
class ContentProfile:
    """Content taste profile of a user.

    Attributes:
        preferences: Average rating per attribute value, grouped by attribute
            (e.g. {"type": {"red": 4.5}}).
        feature_vector: Rating-weighted average of rated wines' vectors.
    """

    preferences: dict[str, dict[str, float]]
    feature_vector: dict[str, float]


@dataclass(frozen=True)
class EvaluationMetrics:
    """Regression and thresholded classification metrics of a model."""

    rmse: float
    mae: float
    accuracy: float
    precision: float
    recall: float
    f1_score: float
    n_predictions: int

    def to_dict(self) -> dict[str, float]:
        return asdict(self)


class ModelType(str, Enum):
    COLLABORATIVE_FILTERING = "collaborative_filtering"
    CONTENT_BASED = "content_based"


@dataclass(frozen=True)
class TrainedModel:
    """Fields common to every trained model snapshot."""

    id: str
    name: str
    algorithm: str
    parameters: dict[str, Any]
    version: int
    statistics: dict[str, Any]
    created_at: datetime
    user_profiles: dict[UserId, UserProfile]
    item_profiles: dict[WineId, ItemProfile]
    global_mean: float

    type: ModelType = field(init=False)


@dataclass(frozen=True)
class CollaborativeFilteringModel(TrainedModel):
    """Snapshot of a trained collaborative filtering engine."""

    similarity_matrix: SimilarityMatrix = field(default_factory=SimilarityMatrix)
    type: ModelType = field(default=ModelType.COLLABORATIVE_FILTERING, init=False)


@dataclass(frozen=True)
class ContentBasedModel(TrainedModel):
    """Snapshot of a trained content-based engine.

    Attributes:
        feature_weights: Learned per-feature weights over all training ratings.
        group_weights: Attribute group weights used for similarity.
        item_features: Extracted feature vectors per wine.
    """

    feature_weights: dict[str, float] = field(default_factory=dict)
    group_weights: dict[str, float] = field(default_factory=dict)
    item_features: dict[WineId, dict[str, dict[str, float]]] = field(
        default_factory=dict
    )
    type: ModelType = field(default=ModelType.CONTENT_BASED, init=False)
