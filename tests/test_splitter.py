"""Tests for the temporal train/test splitting module."""

import pandas as pd
import pytest

from winerec.data.preprocessor import ratings_to_frame, validate_ratings
from winerec.data.splitter import temporal_split, temporal_split_ratings


@pytest.fixture
def ratings_df(test_data: dict) -> pd.DataFrame:
    """Convert the synthetic ratings into a DataFrame."""
    return ratings_to_frame(validate_ratings(test_data["ratings"])[0])


class TestTemporalSplit:
    """Tests for the temporal_split function."""

    def test_split_preserves_all_rows(self, ratings_df: pd.DataFrame) -> None:
        """Total rows in train + test equals original."""
        train, test = temporal_split(ratings_df, test_ratio=0.2)
        assert len(train) + len(test) == len(ratings_df)

    def test_split_ratio_approximate(self, ratings_df: pd.DataFrame) -> None:
        """Test set size is approximately the requested ratio."""
        train, test = temporal_split(ratings_df, test_ratio=0.3)
        assert abs(len(test) / len(ratings_df) - 0.3) < 0.15

    def test_user_coverage(self, ratings_df: pd.DataFrame) -> None:
        """All users with 2+ ratings appear in both train and test sets."""
        train, test = temporal_split(ratings_df, test_ratio=0.3)
        counts = ratings_df.groupby("user_id").size()
        for user_id in counts[counts >= 2].index:
            assert user_id in train["user_id"].values
            assert user_id in test["user_id"].values

    def test_temporal_ordering(self, ratings_df: pd.DataFrame) -> None:
        """Test timestamps are never before train timestamps for each user."""
        train, test = temporal_split(ratings_df, test_ratio=0.3)
        for user_id in test["user_id"].unique():
            max_train_ts = train[train["user_id"] == user_id]["timestamp"].max()
            min_test_ts = test[test["user_id"] == user_id]["timestamp"].min()
            assert min_test_ts >= max_train_ts

    def test_single_rating_stays_in_train(self) -> None:
        """A user with one rating keeps it for training."""
        df = pd.DataFrame(
            [{"user_id": "solo", "wine_id": 1, "rating": 4.0, "timestamp": 1.0}]
        )
        train, test = temporal_split(df, test_ratio=0.5)
        assert len(train) == 1
        assert test.empty

    def test_invalid_ratio_raises(self, ratings_df: pd.DataFrame) -> None:
        """Invalid test_ratio values raise ValueError."""
        with pytest.raises(ValueError):
            temporal_split(ratings_df, test_ratio=0.0)
        with pytest.raises(ValueError):
            temporal_split(ratings_df, test_ratio=1.0)

    def test_columns_preserved(self, ratings_df: pd.DataFrame) -> None:
        """Output DataFrames have the same columns as input."""
        train, test = temporal_split(ratings_df, test_ratio=0.2)
        assert list(train.columns) == list(ratings_df.columns)
        assert list(test.columns) == list(ratings_df.columns)


class TestTemporalSplitRatings:
    """Tests for splitting Rating records."""

    def test_returns_rating_records(self, test_data: dict) -> None:
        """Rating lists are split without losing records."""
        ratings = validate_ratings(test_data["ratings"])[0]
        train, test = temporal_split_ratings(ratings, 0.2)
        assert len(train) + len(test) == len(ratings)
        assert set(train).isdisjoint(test)

    def test_mixed_id_types(self) -> None:
        """Integer and string user ids split side by side."""
        ratings = validate_ratings(
            [
                {"user_id": 1, "wine_id": 1, "rating": 4.0, "timestamp": 1},
                {"user_id": 1, "wine_id": 2, "rating": 3.0, "timestamp": 2},
                {"user_id": "a", "wine_id": 1, "rating": 5.0, "timestamp": 3},
                {"user_id": "a", "wine_id": 3, "rating": 2.0, "timestamp": 4},
            ]
        )[0]
        train, test = temporal_split_ratings(ratings, 0.5)
        assert {(r.user_id, r.wine_id) for r in test} == {(1, 2), ("a", 3)}

    def test_empty(self) -> None:
        """Nothing to split gives two empty lists."""
        assert temporal_split_ratings([]) == ([], [])
