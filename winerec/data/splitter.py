"""Per-user temporal train/test splitting.

Each user's most recent ratings are held out, so a model is always tested
on ratings that came after everything it was trained on for that user.
"""

import pandas as pd

from winerec.data.preprocessor import ratings_to_frame
from winerec.models.schemas import Rating
from winerec.utils.logger import get_logger

logger = get_logger(__name__)


def temporal_split(
    ratings: pd.DataFrame,
    test_ratio: float = 0.2,
) -> tuple[pd.DataFrame, pd.DataFrame]:
    """Hold out the latest test_ratio share of every user's ratings.

    A user with two or more ratings keeps at least one rating on each side;
    a user with a single rating keeps it for training.

    Args:
        ratings: DataFrame with user_id, wine_id, rating and timestamp columns.
        test_ratio: Share of each user's ratings to hold out.

    Returns:
        A tuple of (train_df, test_df), keeping the input index.

    Raises:
        ValueError: If test_ratio is not between 0 and 1.
    """
    if not 0 < test_ratio < 1:
        raise ValueError(f"test_ratio must be between 0 and 1, got {test_ratio}")

    # User ids may mix ints and strings, so only timestamps are sorted.
    ordered = ratings.sort_values("timestamp", kind="stable")
    by_user = ordered.groupby("user_id", sort=False)
    position = by_user.cumcount()
    size = by_user["user_id"].transform("size")

    n_train = (size * (1 - test_ratio)).astype(int).clip(lower=1)
    n_train = n_train.where(size == 1, n_train.clip(upper=size - 1))
    in_train = position < n_train

    train = ordered[in_train]
    test = ordered[~in_train]
    logger.info(
        "Temporal split: %d train, %d test (ratio=%.2f)",
        len(train),
        len(test),
        test_ratio,
    )
    return train, test


def temporal_split_ratings(
    ratings: list[Rating],
    test_ratio: float = 0.2,
) -> tuple[list[Rating], list[Rating]]:
    """Apply temporal_split to Rating records, returning Rating lists."""
    if not ratings:
        return [], []
    train, test = temporal_split(ratings_to_frame(ratings), test_ratio)
    return [ratings[i] for i in train.index], [ratings[i] for i in test.index]
