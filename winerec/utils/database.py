"""SQLite storage for ratings and the wine catalog.

Manages the SQLite database connection and schema, and exposes the store
through an async interface for the serving layer. User and wine ids are
stored without a declared type, so integer and string ids round-trip
unchanged.
"""

import asyncio
import sqlite3
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

from winerec.models.schemas import Rating, UserId, WineId
from winerec.utils.config import config
from winerec.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_DB_PATH = config["sqlite"]["path"]

WINE_COLUMNS = [
    "id",
    "type",
    "region",
    "grape_variety",
    "price",
    "quality_score",
    "vintage_year",
    "stock_quantity",
    "description",
]


def get_connection(db_path: str = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Create or open a SQLite database connection.

    Args:
        db_path: Path to the SQLite database file.

    Returns:
        An open SQLite connection with row factory enabled.
    """
    path = Path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path))
    conn.row_factory = sqlite3.Row
    return conn


def init_db(db_path: str = DEFAULT_DB_PATH) -> None:
    """Initialize the database schema.

    Creates the ratings and wines tables if they do not already exist.

    Args:
        db_path: Path to the SQLite database file.
    """
    conn = get_connection(db_path)
    try:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS ratings (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id NOT NULL,
                wine_id NOT NULL,
                rating REAL NOT NULL CHECK(rating >= 1.0 AND rating <= 5.0),
                timestamp REAL NOT NULL,
                UNIQUE(user_id, wine_id)
            );

            CREATE INDEX IF NOT EXISTS idx_ratings_user
                ON ratings(user_id);

            CREATE INDEX IF NOT EXISTS idx_ratings_wine
                ON ratings(wine_id);

            CREATE TABLE IF NOT EXISTS wines (
                id PRIMARY KEY,
                type TEXT,
                region TEXT,
                grape_variety TEXT,
                price REAL,
                quality_score REAL,
                vintage_year INTEGER,
                stock_quantity INTEGER,
                description TEXT
            );
            """
        )
        conn.commit()
        logger.info("Database schema initialized at %s", db_path)
    finally:
        conn.close()


def insert_rating(
    db_path: str, user_id: UserId, wine_id: WineId, rating: float, timestamp: float
) -> None:
    """Insert a user rating, or replace the stored one if this one is newer.

    An older rating arriving late leaves the stored rating in place, matching
    the newest-wins rule of deduplicate_ratings.

    Args:
        db_path: Path to the SQLite database file.
        user_id: The user identifier.
        wine_id: The wine identifier.
        rating: The rating value (1.0-5.0).
        timestamp: Unix timestamp of the rating.
    """
    conn = get_connection(db_path)
    try:
        conn.execute(
            """
            INSERT INTO ratings (user_id, wine_id, rating, timestamp)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(user_id, wine_id)
            DO UPDATE SET rating = excluded.rating, timestamp = excluded.timestamp
            WHERE excluded.timestamp >= ratings.timestamp
            """,
            (user_id, wine_id, rating, timestamp),
        )
        conn.commit()
    finally:
        conn.close()


def insert_wine(db_path: str, wine: Mapping[str, Any]) -> None:
    """Insert or replace a wine record; missing attributes are stored as NULL."""
    conn = get_connection(db_path)
    try:
        conn.execute(
            f"INSERT OR REPLACE INTO wines ({', '.join(WINE_COLUMNS)}) "
            f"VALUES ({', '.join('?' for _ in WINE_COLUMNS)})",
            [wine.get(column) for column in WINE_COLUMNS],
        )
        conn.commit()
    finally:
        conn.close()


def get_user_ratings(db_path: str, user_id: UserId) -> list[tuple[WineId, float]]:
    """Retrieve all ratings for a given user.

    Args:
        db_path: Path to the SQLite database file.
        user_id: The user identifier.

    Returns:
        A list of (wine_id, rating) tuples for the user.
    """
    conn = get_connection(db_path)
    try:
        cursor = conn.execute(
            "SELECT wine_id, rating FROM ratings WHERE user_id = ?",
            (user_id,),
        )
        return [(row["wine_id"], row["rating"]) for row in cursor.fetchall()]
    finally:
        conn.close()


def get_all_ratings(db_path: str) -> list[dict[str, Any]]:
    """Retrieve every rating as a dict, in insertion order."""
    conn = get_connection(db_path)
    try:
        cursor = conn.execute(
            "SELECT user_id, wine_id, rating, timestamp FROM ratings ORDER BY id"
        )
        return [dict(row) for row in cursor.fetchall()]
    finally:
        conn.close()


def get_all_wines(db_path: str) -> list[dict[str, Any]]:
    """Retrieve the wine catalog as dicts."""
    conn = get_connection(db_path)
    try:
        cursor = conn.execute(f"SELECT {', '.join(WINE_COLUMNS)} FROM wines")
        return [dict(row) for row in cursor.fetchall()]
    finally:
        conn.close()


class SQLiteRatingStore:
    """Async facade over the SQLite store.

    Queries run in a worker thread so callers on an event loop are not
    blocked.

    Attributes:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH) -> None:
        self.db_path = db_path
        init_db(db_path)

    async def fetch_ratings(self) -> list[dict[str, Any]]:
        return await asyncio.to_thread(get_all_ratings, self.db_path)

    async def fetch_wines(self) -> list[dict[str, Any]]:
        return await asyncio.to_thread(get_all_wines, self.db_path)

    async def add_ratings(self, ratings: Iterable[Rating]) -> int:
        """Persist validated ratings, returning how many were written."""
        ratings = list(ratings)

        def _write() -> None:
            for r in ratings:
                insert_rating(self.db_path, r.user_id, r.wine_id, r.rating, r.timestamp)

        await asyncio.to_thread(_write)
        return len(ratings)
