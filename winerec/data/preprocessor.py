"""Validation and preprocessing of ratings and wine catalog records.

Raw records from the data store are validated into Rating and Wine models;
malformed records are skipped and counted rather than aborting the caller.
Also provides DataFrame conversion, rating statistics and TF-IDF features
for wine descriptions.
"""

from collections.abc import Collection, Iterable
from typing import Any

import pandas as pd
from pydantic import ValidationError
from sklearn.feature_extraction.text import TfidfVectorizer

from winerec.models.schemas import Rating, Wine, WineId
from winerec.utils.logger import get_logger

logger = get_logger(__name__)

RATING_COLUMNS = ["user_id", "wine_id", "rating", "timestamp"]


def coerce_rating(record: Any) -> Rating | None:
    """Validate a single rating record.

    Args:
        record: A Rating instance or a mapping with rating fields.

    Returns:
        The validated Rating, or None if the record is malformed.
    """
    if isinstance(record, Rating):
        return record
    try:
        return Rating.model_validate(record)
    except ValidationError as e:
        logger.debug("Skipping malformed rating %r: %s", record, e.error_count())
        return None


def coerce_wine(record: Any) -> Wine | None:
    """Validate a single wine record, returning None if it is malformed."""
    if isinstance(record, Wine):
        return record
    try:
        return Wine.model_validate(record)
    except ValidationError as e:
        logger.debug("Skipping malformed wine %r: %s", record, e.error_count())
        return None


def validate_ratings(
    records: Iterable[Any],
    known_wine_ids: Collection[WineId] | None = None,
) -> tuple[list[Rating], int]:
    """Validate rating records, skipping malformed ones.

    Args:
        records: Raw rating records.
        known_wine_ids: If given, ratings of wines outside this set are
            skipped as well.

    Returns:
        A tuple of (valid ratings, number of skipped records).
    """
    valid = []
    skipped = 0
    for record in records:
        rating = coerce_rating(record)
        if rating is None or (
            known_wine_ids is not None and rating.wine_id not in known_wine_ids
        ):
            skipped += 1
            continue
        valid.append(rating)

    if skipped:
        logger.warning("Skipped %d invalid rating records", skipped)
    return valid, skipped


def validate_wines(records: Iterable[Any]) -> tuple[list[Wine], int]:
    """Validate wine records, skipping malformed ones.

    Returns:
        A tuple of (valid wines, number of skipped records).
    """
    valid = []
    skipped = 0
    for record in records:
        wine = coerce_wine(record)
        if wine is None:
            skipped += 1
            continue
        valid.append(wine)

    if skipped:
        logger.warning("Skipped %d invalid wine records", skipped)
    return valid, skipped


def deduplicate_ratings(ratings: Iterable[Rating]) -> list[Rating]:
    """Keep one rating per (user, wine) pair.

    The rating with the latest timestamp wins; on equal timestamps the one
    appearing last wins. First-seen order of pairs is preserved.
    """
    latest: dict[tuple, Rating] = {}
    for rating in ratings:
        key = (rating.user_id, rating.wine_id)
        current = latest.get(key)
        if current is None or rating.timestamp >= current.timestamp:
            latest[key] = rating
    return list(latest.values())


def ratings_to_frame(ratings: Iterable[Rating]) -> pd.DataFrame:
    """Convert ratings into a DataFrame with the standard rating columns."""
    rows = [r.model_dump(include=set(RATING_COLUMNS)) for r in ratings]
    return pd.DataFrame(rows, columns=RATING_COLUMNS)


def compute_rating_statistics(df: pd.DataFrame) -> dict[str, Any]:
    """Compute summary statistics of a ratings DataFrame.

    Args:
        df: Ratings DataFrame with user_id, wine_id and rating columns.

    Returns:
        Dictionary with rating, user and item counts, sparsity of the
        user-item matrix and the mean rating.
    """
    n_users = int(df["user_id"].nunique())
    n_items = int(df["wine_id"].nunique())
    cells = n_users * n_items

    stats = {
        "total_ratings": len(df),
        "total_users": n_users,
        "total_items": n_items,
        "sparsity": 1 - len(df) / cells if cells else 1.0,
        "avg_rating": float(df["rating"].mean()) if len(df) else 0.0,
    }
    logger.info(
        "Rating statistics: %d ratings, %d users, %d items, sparsity=%.4f",
        stats["total_ratings"],
        stats["total_users"],
        stats["total_items"],
        stats["sparsity"],
    )
    return stats


def extract_description_features(
    wines: Iterable[Wine],
) -> tuple[dict[WineId, dict[str, float]], TfidfVectorizer | None]:
    """Convert wine descriptions to sparse TF-IDF term weights.

    Args:
        wines: Wines whose descriptions should be vectorized.

    Returns:
        A tuple of ({wine_id: {term: weight}}, fitted vectorizer). Wines
        without a description are absent from the mapping; the vectorizer is
        None when no wine has a usable description.
    """
    described = [w for w in wines if w.description and w.description.strip()]
    if not described:
        return {}, None

    vectorizer = TfidfVectorizer(stop_words="english")
    try:
        tfidf_matrix = vectorizer.fit_transform([w.description for w in described])
    except ValueError:
        # Descriptions made only of stop words leave an empty vocabulary.
        return {}, None

    features = {
        wine.id: description_vector(vectorizer, tfidf_matrix[row])
        for row, wine in enumerate(described)
    }
    logger.info(
        "Extracted TF-IDF features: %d wines x %d terms",
        tfidf_matrix.shape[0],
        tfidf_matrix.shape[1],
    )
    return features, vectorizer


def description_vector(vectorizer: TfidfVectorizer, row: Any) -> dict[str, float]:
    """Turn one sparse TF-IDF row into a {term: weight} dict."""
    terms = vectorizer.get_feature_names_out()
    row = row.tocoo()
    return {str(terms[col]): float(val) for col, val in zip(row.col, row.data)}
