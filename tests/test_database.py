"""Tests for SQLite database utilities."""

import asyncio
import sqlite3
from pathlib import Path

import pytest

from winerec.models.schemas import Rating
from winerec.utils.database import (
    SQLiteRatingStore,
    get_all_ratings,
    get_all_wines,
    get_connection,
    get_user_ratings,
    init_db,
    insert_rating,
    insert_wine,
)


@pytest.fixture
def db_path(tmp_dir: Path) -> str:
    """Create an initialized database file."""
    path = str(tmp_dir / "test.db")
    init_db(path)
    return path


class TestDatabase:
    """Tests for database connection and CRUD operations."""

    def test_init_creates_tables(self, db_path: str) -> None:
        """init_db creates ratings and wines tables."""
        conn = get_connection(db_path)
        cursor = conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
        tables = {row["name"] for row in cursor.fetchall()}
        conn.close()
        assert "ratings" in tables
        assert "wines" in tables

    def test_insert_and_retrieve_rating(self, db_path: str) -> None:
        """Inserting a rating can be retrieved by user."""
        insert_rating(db_path, user_id=1, wine_id=10, rating=4.5, timestamp=1000)
        assert get_user_ratings(db_path, user_id=1) == [(10, 4.5)]

    def test_upsert_rating(self, db_path: str) -> None:
        """Inserting a duplicate user-wine pair updates the rating."""
        insert_rating(db_path, user_id=1, wine_id=10, rating=3.0, timestamp=1000)
        insert_rating(db_path, user_id=1, wine_id=10, rating=5.0, timestamp=2000)
        assert get_user_ratings(db_path, user_id=1) == [(10, 5.0)]
        assert get_all_ratings(db_path)[0]["timestamp"] == 2000

    def test_older_rating_does_not_overwrite(self, db_path: str) -> None:
        """A late-arriving older rating leaves the newer one in place."""
        insert_rating(db_path, user_id=1, wine_id=1, rating=5.0, timestamp=200)
        insert_rating(db_path, user_id=1, wine_id=1, rating=1.0, timestamp=100)
        assert get_user_ratings(db_path, user_id=1) == [(1, 5.0)]
        assert get_all_ratings(db_path)[0]["timestamp"] == 200

    def test_equal_timestamp_last_write_wins(self, db_path: str) -> None:
        """On equal timestamps the later write wins."""
        insert_rating(db_path, user_id=1, wine_id=1, rating=2.0, timestamp=100)
        insert_rating(db_path, user_id=1, wine_id=1, rating=4.0, timestamp=100)
        assert get_user_ratings(db_path, user_id=1) == [(1, 4.0)]

    def test_string_ids_round_trip(self, db_path: str) -> None:
        """String and integer ids come back with their original type."""
        insert_rating(db_path, user_id="user_7", wine_id="w-1", rating=4.0, timestamp=1)
        insert_rating(db_path, user_id="user_7", wine_id=2, rating=2.0, timestamp=2)
        assert get_user_ratings(db_path, user_id="user_7") == [("w-1", 4.0), (2, 2.0)]

    def test_get_user_ratings_empty(self, db_path: str) -> None:
        """Querying a user with no ratings returns an empty list."""
        assert get_user_ratings(db_path, user_id=999) == []

    def test_rating_constraint(self, db_path: str) -> None:
        """Ratings outside 1.0-5.0 range are rejected."""
        with pytest.raises(sqlite3.IntegrityError):
            insert_rating(db_path, user_id=1, wine_id=1, rating=6.0, timestamp=1000)

    def test_wines_round_trip(self, db_path: str, sample_wines: list[dict]) -> None:
        """Wines are stored with missing attributes as NULL."""
        for wine in sample_wines:
            insert_wine(db_path, wine)
        wines = {w["id"]: w for w in get_all_wines(db_path)}
        assert len(wines) == 5
        assert wines[1]["region"] == "Bordeaux"
        assert wines[5]["description"] is None

    def test_creates_parent_directory(self, tmp_dir: Path) -> None:
        """get_connection creates parent directories if needed."""
        db_path = str(tmp_dir / "subdir" / "nested" / "test.db")
        conn = get_connection(db_path)
        conn.close()
        assert Path(db_path).exists()


class TestSQLiteRatingStore:
    """Tests for the async store facade."""

    def test_add_and_fetch(self, tmp_dir: Path, sample_wines: list[dict]) -> None:
        """Ratings written through the store are fetched back in order."""
        store = SQLiteRatingStore(str(tmp_dir / "store.db"))
        for wine in sample_wines:
            insert_wine(store.db_path, wine)
        ratings = [
            Rating(user_id=1, wine_id=1, rating=5.0, timestamp=10),
            Rating(user_id=1, wine_id=2, rating=3.0, timestamp=11),
        ]

        written = asyncio.run(store.add_ratings(ratings))
        fetched = asyncio.run(store.fetch_ratings())
        wines = asyncio.run(store.fetch_wines())

        assert written == 2
        assert [(r["wine_id"], r["rating"]) for r in fetched] == [(1, 5.0), (2, 3.0)]
        assert len(wines) == 5
