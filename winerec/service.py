"""Async serving facade over the data store, the engines and the cache.

The store is asynchronous; engine work is CPU bound and runs in a worker
thread so the event loop stays responsive. Engine state swaps are atomic,
so a request running during a refresh sees either the old or the new data.
"""

import asyncio
from collections.abc import Iterable
from typing import Any, Protocol

from winerec.data.preprocessor import validate_ratings
from winerec.models.collaborative import CollaborativeFilter
from winerec.models.content_based import ContentBasedFilter
from winerec.models.hybrid import HybridRecommender
from winerec.models.schemas import Rating, Recommendation, UserId, WineId
from winerec.utils.cache import RedisCache
from winerec.utils.logger import get_logger

logger = get_logger(__name__)


class RatingStore(Protocol):
    async def fetch_ratings(self) -> list[dict[str, Any]]: ...

    async def fetch_wines(self) -> list[dict[str, Any]]: ...

    async def add_ratings(self, ratings: Iterable[Rating]) -> int: ...


class RecommendationService:
    """Serves cached hybrid recommendations backed by a rating store.

    Attributes:
        store: Async source of ratings and wines.
        cache: Optional result cache.
        collaborative: The collaborative filtering engine.
        content_based: The content-based engine.
        hybrid: Blender over both engines.
    """

    def __init__(
        self,
        store: RatingStore,
        cache: RedisCache | None = None,
        collaborative: CollaborativeFilter | None = None,
        content_based: ContentBasedFilter | None = None,
    ) -> None:
        self.store = store
        self.cache = cache
        self.content_based = content_based or ContentBasedFilter()
        self.collaborative = collaborative or CollaborativeFilter(
            content_engine=self.content_based
        )
        self.hybrid = HybridRecommender(self.collaborative, self.content_based)

    def _rebuild(self, ratings: list[dict[str, Any]], wines: list[dict[str, Any]]) -> None:
        self.content_based.initialize(wines)
        self.collaborative.initialize(ratings, wines if wines else None)

    async def refresh(self) -> None:
        """Reload ratings and wines from the store and rebuild both engines."""
        ratings, wines = await asyncio.gather(
            self.store.fetch_ratings(), self.store.fetch_wines()
        )
        await asyncio.to_thread(self._rebuild, ratings, wines)
        if self.cache is not None:
            self.cache.invalidate_all()
        logger.info("Refreshed engines: %d ratings, %d wines", len(ratings), len(wines))

    async def recommend(
        self, user_id: UserId, limit: int = 10, strategy: str = "adaptive"
    ) -> list[Recommendation]:
        """Hybrid recommendations for a user, served from cache when possible.

        Raises:
            ValueError: If an unknown strategy is specified.
        """
        key = RedisCache.rec_key(user_id, limit, strategy)
        if self.cache is not None:
            cached = self.cache.get_recommendations(key)
            if cached is not None:
                return cached

        recs = await asyncio.to_thread(self.hybrid.recommend, user_id, limit, strategy)
        if self.cache is not None:
            self.cache.set_recommendations(key, recs)
        return recs

    async def similar_wines(
        self, wine_id: WineId, limit: int = 10
    ) -> list[Recommendation]:
        """Wines most similar in content to wine_id, served from cache when possible."""
        key = RedisCache.sim_key(wine_id, limit)
        if self.cache is not None:
            cached = self.cache.get_recommendations(key)
            if cached is not None:
                return cached

        recs = await asyncio.to_thread(
            self.content_based.find_similar_wines, wine_id, limit
        )
        if self.cache is not None:
            self.cache.set_recommendations(key, recs, ttl=self.cache.sim_ttl)
        return recs

    async def add_ratings(self, records: Iterable[Any]) -> int:
        """Validate, persist and apply new ratings.

        Ratings of wines missing from the catalog are skipped. Cached
        recommendations of every affected user are invalidated.

        Returns:
            Number of ratings accepted.
        """
        known = set(self.content_based.wines) or None
        valid, skipped = validate_ratings(records, known)
        if not valid:
            return 0

        await self.store.add_ratings(valid)
        await asyncio.to_thread(self.collaborative.update_with_new_ratings, valid)
        if self.cache is not None:
            for user_id in dict.fromkeys(r.user_id for r in valid):
                self.cache.invalidate_user(user_id)

        logger.info("Added %d ratings (%d skipped)", len(valid), skipped)
        return len(valid)
