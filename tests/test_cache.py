"""Tests for the Redis caching layer."""

import fakeredis
import pytest
import redis

from winerec.models.schemas import Recommendation, RecommendationSource
from winerec.utils.cache import RedisCache


@pytest.fixture
def redis_client() -> fakeredis.FakeRedis:
    """Create a fake Redis client for testing."""
    client = fakeredis.FakeRedis(decode_responses=True)
    yield client
    client.flushall()


@pytest.fixture
def cache(redis_client: fakeredis.FakeRedis) -> RedisCache:
    """Create a RedisCache with a fake Redis backend."""
    return RedisCache(redis_client)


class TestRedisCache:
    """Tests for the RedisCache class."""

    def test_set_and_get(self, cache: RedisCache) -> None:
        """Stored values can be retrieved."""
        cache.set("test_key", {"value": 42})
        assert cache.get("test_key") == {"value": 42}

    def test_get_missing_key(self, cache: RedisCache) -> None:
        """Missing keys return None."""
        assert cache.get("nonexistent") is None

    def test_set_with_ttl(
        self, cache: RedisCache, redis_client: fakeredis.FakeRedis
    ) -> None:
        """Values are set with the specified TTL."""
        cache.set("ttl_key", "data", ttl=60)
        ttl = redis_client.ttl("ttl_key")
        assert 0 < ttl <= 60

    def test_default_ttl_applied(
        self, cache: RedisCache, redis_client: fakeredis.FakeRedis
    ) -> None:
        """Default recommendation TTL is applied when no TTL specified."""
        cache.set("default_ttl", "value")
        assert 0 < redis_client.ttl("default_ttl") <= cache.rec_ttl

    def test_unserializable_value(self, cache: RedisCache) -> None:
        """Values that cannot be encoded are not cached."""
        assert cache.set("bad", {1, 2}) is False
        assert cache.get("bad") is None

    def test_corrupt_entry_is_a_miss(
        self, cache: RedisCache, redis_client: fakeredis.FakeRedis
    ) -> None:
        """Entries that are not valid JSON read as missing."""
        redis_client.set("corrupt", "{not json")
        assert cache.get("corrupt") is None

    def test_redis_errors_degrade(self, cache: RedisCache, monkeypatch) -> None:
        """Connection failures degrade to cache misses."""

        def fail(*args, **kwargs):
            raise redis.ConnectionError("down")

        monkeypatch.setattr(cache.client, "get", fail)
        monkeypatch.setattr(cache.client, "set", fail)
        assert cache.get("key") is None
        assert cache.set("key", "value") is False

    def test_invalidate_user(self, cache: RedisCache) -> None:
        """User cache invalidation removes matching keys."""
        cache.set("rec:1:10:adaptive", {"data": 1})
        cache.set("rec:1:5:switching", {"data": 2})
        cache.set("rec:2:10:adaptive", {"data": 3})

        assert cache.invalidate_user(1) == 2
        assert cache.get("rec:1:10:adaptive") is None
        assert cache.get("rec:2:10:adaptive") is not None

    def test_invalidate_user_no_keys(self, cache: RedisCache) -> None:
        """User invalidation with no matching keys returns 0."""
        assert cache.invalidate_user(999) == 0

    def test_invalidate_item(self, cache: RedisCache) -> None:
        """Wine cache invalidation removes matching keys."""
        cache.set("sim:1:10", {"data": 1})
        cache.set("sim:1:5", {"data": 2})
        cache.set("sim:2:10", {"data": 3})

        assert cache.invalidate_item(1) == 2
        assert cache.get("sim:1:10") is None
        assert cache.get("sim:2:10") is not None

    def test_invalidate_all(self, cache: RedisCache) -> None:
        """Dropping everything clears both key families only."""
        cache.set("rec:1:10:adaptive", 1)
        cache.set("sim:2:10", 2)
        cache.set("other", 3)
        assert cache.invalidate_all() == 2
        assert cache.get("other") == 3

    def test_rec_key_format(self) -> None:
        """Recommendation key follows expected format."""
        assert RedisCache.rec_key(user_id="user_1", n=10, strategy="adaptive") == (
            "rec:user_1:10:adaptive"
        )

    def test_sim_key_format(self) -> None:
        """Similarity key follows expected format."""
        assert RedisCache.sim_key(wine_id=42, n=5) == "sim:42:5"


class TestRecommendationEntries:
    """Tests for caching recommendation lists."""

    def test_round_trip(self, cache: RedisCache) -> None:
        """Recommendations come back with their fields intact."""
        recs = [
            Recommendation(
                wine_id=3,
                score=0.75,
                source=RecommendationSource.BLENDED,
                predicted_rating=4.1,
                confidence=0.5,
                sources=("cf", "cb"),
            )
        ]
        assert cache.set_recommendations("rec:u:1:adaptive", recs)
        assert cache.get_recommendations("rec:u:1:adaptive") == recs

    def test_miss(self, cache: RedisCache) -> None:
        """Missing lists read as None."""
        assert cache.get_recommendations("rec:u:1:adaptive") is None

    def test_stale_entry_dropped(
        self, cache: RedisCache, redis_client: fakeredis.FakeRedis
    ) -> None:
        """Entries in an unknown shape are treated as misses and removed."""
        cache.set("rec:u:1:adaptive", [{"wine_id": 1, "score": 0.5, "source": "mystery"}])
        assert cache.get_recommendations("rec:u:1:adaptive") is None
        assert redis_client.get("rec:u:1:adaptive") is None
