"""Unit tests for the cache backends."""

import fnmatch

import pytest

from lrs_analytics.cache import InMemoryCache, RedisCache


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock, telemetry):
    """In-memory cache with 60s default TTL and a 1h stale copy."""
    return InMemoryCache(ttl_for_category=lambda category: 60, stale_ttl_s=3600, telemetry=telemetry, clock=clock)


@pytest.mark.unit
class TestInMemoryCache:
    """Test cases for InMemoryCache."""

    @pytest.mark.asyncio
    async def test_set_then_get(self, cache):
        """Test that a stored value reads back equal."""
        assert await cache.set("cache:m:default:course:v1", {"value": 1, "metadata": {"a": "b"}}) is True
        assert await cache.get("cache:m:default:course:v1") == {"value": 1, "metadata": {"a": "b"}}

    @pytest.mark.asyncio
    async def test_expiry(self, cache, clock):
        """Test that entries expire after their TTL."""
        await cache.set("k", {"value": 1})
        clock.now += 61
        assert await cache.get("k") is None

    @pytest.mark.asyncio
    async def test_explicit_ttl_wins(self, cache, clock):
        """Test that an explicit TTL overrides the category TTL."""
        await cache.set("k", {"value": 1}, ttl=10)
        clock.now += 11
        assert await cache.get("k") is None

    @pytest.mark.asyncio
    async def test_stale_copy_outlives_entry(self, cache, clock):
        """Test that get_ignoring_expiry serves the stale copy."""
        await cache.set("k", {"value": 1})
        clock.now += 600
        assert await cache.get("k") is None
        assert await cache.get_ignoring_expiry("k") == {"value": 1}
        clock.now += 3600
        assert await cache.get_ignoring_expiry("k") is None

    @pytest.mark.asyncio
    async def test_no_stale_copy_when_ttl_not_shorter(self, clock):
        """Test that no stale copy is written if it would not outlive the entry."""
        cache = InMemoryCache(ttl_for_category=lambda c: 60, stale_ttl_s=30, clock=clock)
        await cache.set("k", {"value": 1})
        clock.now += 61
        assert await cache.get_ignoring_expiry("k") is None

    @pytest.mark.asyncio
    async def test_delete_removes_stale_copy(self, cache, telemetry):
        """Test that invalidate_key removes the entry and its stale copy."""
        await cache.set("k", {"value": 1})
        assert await cache.invalidate_key("k") is True
        assert await cache.get_ignoring_expiry("k") is None
        assert await cache.invalidate_key("k") is False
        assert telemetry.cache_evictions.value == 1

    @pytest.mark.asyncio
    async def test_invalidate_pattern_counts_primary_keys(self, cache):
        """Test glob invalidation by metric id."""
        await cache.set("cache:course-completion:default:course:courseId=1:v1", 1)
        await cache.set("cache:course-completion:other:course:courseId=1:v1", 2)
        await cache.set("cache:topic-mastery:default:topic:topicId=5:v1", 3)

        removed = await cache.invalidate_pattern("cache:course-completion:*:*")

        assert removed == 2
        assert await cache.get_ignoring_expiry("cache:course-completion:other:course:courseId=1:v1") is None
        assert await cache.get("cache:topic-mastery:default:topic:topicId=5:v1") == 3

    @pytest.mark.asyncio
    async def test_invalidate_pattern_after_primary_expired(self, cache, clock):
        """Test that invalidation removes stale copies whose entry already expired."""
        await cache.set("cache:m:default:course:v1", {"value": 1})
        clock.now += 61

        assert await cache.invalidate_pattern("cache:m:*") == 0
        assert await cache.get_ignoring_expiry("cache:m:default:course:v1") is None

    @pytest.mark.asyncio
    async def test_expired_entries_swept_on_write(self, clock):
        """Test that expired entries and stale copies do not accumulate."""
        cache = InMemoryCache(ttl_for_category=lambda c: 1, stale_ttl_s=2, clock=clock)
        for i in range(1000):
            await cache.set(f"cache:m:default:course:courseId={i}:v1", {"value": i})
        assert len(cache._entries) == 2000

        clock.now = 10000.0
        await cache.set("cache:m:default:course:v1", {"value": 0})

        assert len(cache._entries) == 2

    @pytest.mark.asyncio
    async def test_no_sweep_within_interval(self, clock):
        """Test that live entries survive a sweep."""
        cache = InMemoryCache(ttl_for_category=lambda c: 600, stale_ttl_s=3600, clock=clock, sweep_interval_s=60)
        await cache.set("a", 1)
        clock.now += 120
        await cache.set("b", 2)

        assert await cache.get("a") == 1
        assert len(cache._entries) == 4

    @pytest.mark.asyncio
    async def test_operations_observed(self, cache, telemetry):
        """Test that cache operations are timed."""
        await cache.set("k", 1)
        await cache.get("k")
        assert telemetry.cache_latency.count == 2


@pytest.mark.unit
class TestRedisCacheNotConnected:
    """Test cases for RedisCache failure handling before connect()."""

    @pytest.mark.asyncio
    async def test_reads_return_none(self):
        """Test that reads degrade to None."""
        cache = RedisCache("redis://localhost:6379/0")
        assert await cache.get("k") is None
        assert await cache.get_ignoring_expiry("k") is None

    @pytest.mark.asyncio
    async def test_writes_return_false(self):
        """Test that writes degrade to False."""
        cache = RedisCache("redis://localhost:6379/0")
        assert await cache.set("k", {"value": 1}) is False
        assert await cache.delete("k") is False
        assert await cache.invalidate_pattern("cache:*") == 0

    @pytest.mark.asyncio
    async def test_unhealthy(self):
        """Test that an unconnected cache reports unhealthy."""
        assert await RedisCache("redis://localhost:6379/0").is_healthy() is False


class DictRedis:
    """Dict-backed stand-in for the redis.asyncio client; TTLs are ignored."""

    def __init__(self):
        self.data = {}

    async def get(self, key):
        return self.data.get(key)

    async def delete(self, *keys):
        return sum(1 for key in keys if self.data.pop(key, None) is not None)

    async def scan_iter(self, match="*", count=None):
        for key in list(self.data):
            if fnmatch.fnmatchcase(key, match):
                yield key

    def pipeline(self, transaction=True):
        return DictPipeline(self)


class DictPipeline:
    def __init__(self, redis):
        self.redis = redis
        self.commands = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def setex(self, key, ttl, value):
        self.commands.append(("setex", key, value))

    def delete(self, key):
        self.commands.append(("delete", key))

    async def execute(self):
        results = []
        for command in self.commands:
            if command[0] == "setex":
                self.redis.data[command[1]] = command[2]
                results.append(True)
            else:
                results.append(await self.redis.delete(command[1]))
        self.commands = []
        return results


@pytest.fixture
def redis_cache(telemetry):
    cache = RedisCache("redis://localhost:6379/0", ttl_for_category=lambda c: 60, stale_ttl_s=3600, telemetry=telemetry)
    cache._redis = DictRedis()
    return cache


@pytest.mark.unit
class TestRedisCache:
    """Test cases for RedisCache against an in-process client."""

    @pytest.mark.asyncio
    async def test_set_writes_stale_copy(self, redis_cache):
        """Test that set stores the entry and its stale copy."""
        assert await redis_cache.set("cache:m:default:course:v1", {"value": 1}) is True
        assert set(redis_cache._redis.data) == {"cache:m:default:course:v1", "stale:cache:m:default:course:v1"}

    @pytest.mark.asyncio
    async def test_invalidate_pattern_after_primary_expired(self, redis_cache):
        """Test that invalidation removes the stale copy even when no entry matches."""
        key = "cache:m:default:course:v1"
        await redis_cache.set(key, {"value": 1})
        del redis_cache._redis.data[key]

        assert await redis_cache.invalidate_pattern("cache:m:*") == 0
        assert await redis_cache.get_ignoring_expiry(key) is None

    @pytest.mark.asyncio
    async def test_invalidate_pattern_counts_primary_keys(self, redis_cache, telemetry):
        """Test that stale copies are removed but not counted."""
        await redis_cache.set("cache:m:default:course:v1", 1)
        await redis_cache.set("cache:m:other:course:v1", 2)

        assert await redis_cache.invalidate_pattern("cache:m:*") == 2
        assert redis_cache._redis.data == {}
        assert telemetry.cache_evictions.value == 2

    @pytest.mark.asyncio
    async def test_delete_counts_primary_key(self, redis_cache, telemetry):
        """Test that deleting an entry counts one eviction, not two."""
        await redis_cache.set("k", {"value": 1})

        assert await redis_cache.delete("k") is True
        assert redis_cache._redis.data == {}
        assert telemetry.cache_evictions.value == 1

    @pytest.mark.asyncio
    async def test_delete_stale_only_is_false(self, redis_cache, telemetry):
        """Test that removing only a stale copy reports nothing deleted."""
        await redis_cache.set("k", {"value": 1})
        del redis_cache._redis.data["k"]

        assert await redis_cache.delete("k") is False
        assert await redis_cache.get_ignoring_expiry("k") is None
        assert telemetry.cache_evictions.value == 0
