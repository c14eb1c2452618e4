"""Redis result cache for recommendation and similar-wine lists.

Entries are JSON documents under "rec:{user}:{limit}:{strategy}" and
"sim:{wine}:{limit}" keys. Redis being unreachable only costs a cache miss;
errors are logged and never raised to the caller.
"""

import json
from collections.abc import Iterable
from typing import Any

import redis

from winerec.models.schemas import Recommendation, UserId, WineId
from winerec.utils.config import config, settings
from winerec.utils.logger import get_logger

logger = get_logger(__name__)


def create_client() -> redis.Redis:
    """Connect to the Redis server named by the environment settings."""
    return redis.Redis(
        host=settings.redis_host,
        port=settings.redis_port,
        db=config["redis"]["db"],
        decode_responses=True,
    )


class RedisCache:
    """JSON cache over a Redis client with per-family TTLs.

    Attributes:
        client: The Redis client instance.
        rec_ttl: Lifetime of recommendation entries, in seconds.
        sim_ttl: Lifetime of similar-wine entries, in seconds.
    """

    def __init__(self, redis_client: redis.Redis) -> None:
        self.client = redis_client
        self.rec_ttl: int = config["redis"]["recommendation_ttl"]
        self.sim_ttl: int = config["redis"]["similarity_ttl"]

    def get(self, key: str) -> Any | None:
        """Decoded value stored under key; None on a miss or any error."""
        try:
            data = self.client.get(key)
            if data:
                return json.loads(data)
        except (redis.RedisError, ValueError) as e:
            logger.warning("Cache get error for key %s: %s", key, e)
        return None

    def set(self, key: str, value: Any, ttl: int | None = None) -> bool:
        """Store a JSON-encodable value.

        Args:
            key: The cache key.
            value: Value to encode.
            ttl: Lifetime in seconds, defaulting to the recommendation TTL.

        Returns:
            False if the value could not be encoded or written.
        """
        try:
            self.client.set(key, json.dumps(value), ex=ttl or self.rec_ttl)
            return True
        except (redis.RedisError, TypeError, ValueError) as e:
            logger.warning("Cache set error for key %s: %s", key, e)
            return False

    def get_recommendations(self, key: str) -> list[Recommendation] | None:
        """Cached recommendation list under key, or None on a miss.

        Entries that no longer decode into recommendations are dropped.
        """
        cached = self.get(key)
        if cached is None:
            return None
        try:
            return [Recommendation.from_dict(item) for item in cached]
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Dropping stale cache entry %s: %s", key, e)
            self._delete_matching(key)
            return None

    def set_recommendations(
        self, key: str, recs: Iterable[Recommendation], ttl: int | None = None
    ) -> bool:
        return self.set(key, [rec.to_dict() for rec in recs], ttl)

    def _delete_matching(self, pattern: str) -> int:
        try:
            keys = list(self.client.scan_iter(pattern))
            if keys:
                self.client.delete(*keys)
        except redis.RedisError as e:
            logger.warning("Cache invalidation error for %s: %s", pattern, e)
            return 0
        return len(keys)

    def invalidate_user(self, user_id: UserId) -> int:
        """Drop every cached recommendation list of a user.

        Returns:
            Number of entries deleted.
        """
        deleted = self._delete_matching(f"rec:{user_id}:*")
        if deleted:
            logger.info("Invalidated %d cache entries for user %s", deleted, user_id)
        return deleted

    def invalidate_item(self, wine_id: WineId) -> int:
        """Drop every cached similar-wine list of a wine."""
        return self._delete_matching(f"sim:{wine_id}:*")

    def invalidate_all(self) -> int:
        """Drop every cached recommendation and similarity result."""
        return self._delete_matching("rec:*") + self._delete_matching("sim:*")

    @staticmethod
    def rec_key(user_id: UserId, n: int, strategy: str) -> str:
        return f"rec:{user_id}:{n}:{strategy}"

    @staticmethod
    def sim_key(wine_id: WineId, n: int) -> str:
        return f"sim:{wine_id}:{n}"
