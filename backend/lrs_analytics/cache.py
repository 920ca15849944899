"""
Result Cache
=============
Key-value store for computed metric results.

Two backends share one contract:
- RedisCache     → production, redis-py asyncio client over a connection pool
- InMemoryCache  → single-process fallback when no REDIS_URL is configured

Every `set` also writes a long-lived shadow copy under "stale:<key>" so the
fallback handler can still serve a result after the primary entry expired.
Backend failures never propagate out of get/set/delete: reads return None,
writes return False, and both are logged.

Example:
    cache = RedisCache("redis://localhost:6379/0", ttl_for_category=config.ttl_for_category)
    await cache.connect()
    await cache.set(key, response, category="results")
    entry = await cache.get(key)
"""

import fnmatch
import json
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional, Tuple

from redis.asyncio import ConnectionPool, Redis
from redis.exceptions import RedisError

from .errors import CacheError
from .metrics import MetricsCollector

logger = logging.getLogger(__name__)

STALE_PREFIX = "stale:"
DEFAULT_TTL_S = 3600
DEFAULT_STALE_TTL_S = 86400

TtlResolver = Callable[[Optional[str]], int]


def _default_ttl(category: Optional[str]) -> int:
    return DEFAULT_TTL_S


class CacheBackend(ABC):
    """Contract consumed by the computation service and the fallback handler."""

    def __init__(
        self,
        ttl_for_category: TtlResolver = _default_ttl,
        stale_ttl_s: int = DEFAULT_STALE_TTL_S,
        telemetry: Optional[MetricsCollector] = None,
    ):
        self._ttl_for_category = ttl_for_category
        self.stale_ttl_s = stale_ttl_s
        self.telemetry = telemetry

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Fresh value for `key`, or None."""

    @abstractmethod
    async def get_ignoring_expiry(self, key: str) -> Optional[Any]:
        """Value for `key` even if its primary TTL elapsed (within the stale TTL)."""

    @abstractmethod
    async def set(
        self,
        key: str,
        value: Any,
        ttl: Optional[int] = None,
        category: Optional[str] = None,
    ) -> bool:
        """Store `value`; `ttl` overrides the category TTL."""

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Remove `key`. True if something was deleted."""

    @abstractmethod
    async def invalidate_pattern(self, pattern: str) -> int:
        """Remove every key matching the glob `pattern`; returns the count."""

    @abstractmethod
    async def is_healthy(self) -> bool:
        ...

    async def invalidate_key(self, key: str) -> bool:
        return await self.delete(key)

    async def close(self) -> None:
        return None

    def effective_ttl(self, ttl: Optional[int], category: Optional[str]) -> int:
        return ttl if ttl is not None else self._ttl_for_category(category)

    def _observe(self, operation: str, start: float):
        if self.telemetry:
            self.telemetry.record_cache_operation(operation, time.monotonic() - start)

    def _evicted(self, count: int):
        if self.telemetry and count:
            self.telemetry.record_cache_eviction(count)

    @staticmethod
    def _serialize(value: Any) -> str:
        return json.dumps(value, ensure_ascii=False, default=str)

    @staticmethod
    def _deserialize(value: Optional[str]) -> Any:
        if value is None:
            return None
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return value


class RedisCache(CacheBackend):
    """Async Redis-backed cache."""

    def __init__(
        self,
        url: str,
        ttl_for_category: TtlResolver = _default_ttl,
        stale_ttl_s: int = DEFAULT_STALE_TTL_S,
        telemetry: Optional[MetricsCollector] = None,
        max_connections: int = 10,
    ):
        super().__init__(ttl_for_category, stale_ttl_s, telemetry)
        self._url = url
        self._max_connections = max_connections
        self._pool: Optional[ConnectionPool] = None
        self._redis: Optional[Redis] = None

    async def connect(self) -> None:
        """Create the connection pool and verify it.

        Raises:
            CacheError: If Redis cannot be reached.
        """
        try:
            self._pool = ConnectionPool.from_url(
                self._url,
                max_connections=self._max_connections,
                decode_responses=True,
            )
            self._redis = Redis(connection_pool=self._pool)
            await self._redis.ping()
        except RedisError as e:
            raise CacheError("Failed to connect to Redis", e) from e
        logger.info("✅ Redis cache connected")

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
        if self._pool is not None:
            await self._pool.disconnect()
            self._pool = None

    def _ensure_connected(self) -> Redis:
        if self._redis is None:
            raise CacheError("Redis client not connected. Call connect() first.")
        return self._redis

    async def _read(self, key: str, operation: str) -> Optional[Any]:
        start = time.monotonic()
        try:
            raw = await self._ensure_connected().get(key)
        except (RedisError, CacheError) as e:
            logger.warning(f"Cache {operation} failed for {key}: {e}")
            return None
        finally:
            self._observe("get", start)
        if raw is None:
            logger.debug(f"Cache miss ({operation}): {key}")
            return None
        return self._deserialize(raw)

    async def get(self, key: str) -> Optional[Any]:
        return await self._read(key, "get")

    async def get_ignoring_expiry(self, key: str) -> Optional[Any]:
        value = await self._read(key, "get")
        if value is not None:
            return value
        return await self._read(f"{STALE_PREFIX}{key}", "stale get")

    async def set(
        self,
        key: str,
        value: Any,
        ttl: Optional[int] = None,
        category: Optional[str] = None,
    ) -> bool:
        start = time.monotonic()
        effective_ttl = self.effective_ttl(ttl, category)
        try:
            redis = self._ensure_connected()
            serialized = self._serialize(value)
            async with redis.pipeline(transaction=False) as pipe:
                pipe.setex(key, effective_ttl, serialized)
                if self.stale_ttl_s > effective_ttl:
                    pipe.setex(f"{STALE_PREFIX}{key}", self.stale_ttl_s, serialized)
                await pipe.execute()
        except (RedisError, CacheError, TypeError, ValueError) as e:
            logger.warning(f"Cache set failed for {key} (ttl={effective_ttl}): {e}")
            return False
        finally:
            self._observe("set", start)
        logger.debug(f"Cache set: {key} (ttl={effective_ttl}s)")
        return True

    async def delete(self, key: str) -> bool:
        start = time.monotonic()
        try:
            async with self._ensure_connected().pipeline(transaction=False) as pipe:
                pipe.delete(key)
                pipe.delete(f"{STALE_PREFIX}{key}")
                deleted, _ = await pipe.execute()
        except (RedisError, CacheError) as e:
            logger.warning(f"Cache delete failed for {key}: {e}")
            return False
        finally:
            self._observe("delete", start)
        self._evicted(deleted)
        return deleted > 0

    async def invalidate_pattern(self, pattern: str) -> int:
        start = time.monotonic()
        try:
            redis = self._ensure_connected()
            keys = [key async for key in redis.scan_iter(match=pattern, count=100)]
            stale_keys = [key async for key in redis.scan_iter(match=f"{STALE_PREFIX}{pattern}", count=100)]
            if keys or stale_keys:
                await redis.delete(*keys, *stale_keys)
            deleted = len(keys)
        except (RedisError, CacheError) as e:
            logger.warning(f"Cache pattern invalidation failed for {pattern}: {e}")
            return 0
        finally:
            self._observe("invalidatePattern", start)
        self._evicted(deleted)
        logger.info(f"🧹 Invalidated {deleted} cache keys matching {pattern}")
        return deleted

    async def is_healthy(self) -> bool:
        try:
            return bool(await self._ensure_connected().ping())
        except (RedisError, CacheError):
            return False


class InMemoryCache(CacheBackend):
    """Process-local cache with monotonic-clock expiry. Values are stored serialized.

    Expired entries are dropped when read, and swept from the whole map on
    the first write after `sweep_interval_s` has passed.
    """

    def __init__(
        self,
        ttl_for_category: TtlResolver = _default_ttl,
        stale_ttl_s: int = DEFAULT_STALE_TTL_S,
        telemetry: Optional[MetricsCollector] = None,
        clock: Callable[[], float] = time.monotonic,
        sweep_interval_s: float = 60.0,
    ):
        super().__init__(ttl_for_category, stale_ttl_s, telemetry)
        self._clock = clock
        self.sweep_interval_s = sweep_interval_s
        self._last_sweep = clock()
        # key → (serialized value, expires_at)
        self._entries: Dict[str, Tuple[str, float]] = {}

    def _lookup(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        raw, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return self._deserialize(raw)

    async def get(self, key: str) -> Optional[Any]:
        start = time.monotonic()
        value = self._lookup(key)
        self._observe("get", start)
        if value is None:
            logger.debug(f"Cache miss (get): {key}")
        return value

    async def get_ignoring_expiry(self, key: str) -> Optional[Any]:
        value = self._lookup(key)
        if value is not None:
            return value
        return self._lookup(f"{STALE_PREFIX}{key}")

    async def set(
        self,
        key: str,
        value: Any,
        ttl: Optional[int] = None,
        category: Optional[str] = None,
    ) -> bool:
        start = time.monotonic()
        effective_ttl = self.effective_ttl(ttl, category)
        try:
            serialized = self._serialize(value)
        except (TypeError, ValueError) as e:
            logger.warning(f"Cache set failed for {key}: {e}")
            return False
        now = self._clock()
        if now - self._last_sweep >= self.sweep_interval_s:
            self._sweep(now)
        self._entries[key] = (serialized, now + effective_ttl)
        if self.stale_ttl_s > effective_ttl:
            self._entries[f"{STALE_PREFIX}{key}"] = (serialized, now + self.stale_ttl_s)
        self._observe("set", start)
        return True

    def _sweep(self, now: float) -> int:
        expired = [k for k, (_, expires_at) in self._entries.items() if now >= expires_at]
        for k in expired:
            del self._entries[k]
        self._last_sweep = now
        if expired:
            logger.debug(f"Swept {len(expired)} expired cache entries")
        return len(expired)

    async def delete(self, key: str) -> bool:
        self._entries.pop(f"{STALE_PREFIX}{key}", None)
        entry = self._entries.pop(key, None)
        deleted = entry is not None and self._clock() < entry[1]
        self._evicted(int(deleted))
        return deleted

    async def invalidate_pattern(self, pattern: str) -> int:
        now = self._clock()
        matches = [k for k in self._entries if fnmatch.fnmatchcase(k, pattern)]
        stale = [k for k in self._entries if fnmatch.fnmatchcase(k, f"{STALE_PREFIX}{pattern}")]
        # only live primaries count, as with Redis key expiry
        live = sum(1 for k in matches if now < self._entries[k][1])
        for k in set(matches) | set(stale):
            del self._entries[k]
        self._evicted(live)
        return live

    async def is_healthy(self) -> bool:
        return True
