import json
import math
import time
from typing import Any, Callable

from cachetools import TLRUCache
from redis.asyncio import Redis, RedisError

from tasktracker.core.config import Settings

import logging

logger = logging.getLogger(__name__)


class MemoryBackend:
    """
    In-process backend speaking the subset of the Redis API used by CacheLayer.

    Selected with ``redis_dsn = "memory://"``. Every key carries its own TTL
    (TLRUCache time-to-use), so expiry behaves like Redis ``SET ... EX``.
    Only suitable for a single worker: nothing is shared across processes.
    """

    def __init__(self, maxsize: int = 10_000, timer: Callable[[], float] = time.monotonic):
        self._data = TLRUCache(maxsize=maxsize, ttu=self._ttu, timer=timer)

    @staticmethod
    def _ttu(_key, item, now):
        _, ttl = item
        return now + ttl if ttl else math.inf

    async def get(self, key: str):
        item = self._data.get(key)
        return None if item is None else item[0]

    async def set(self, key: str, value: str, ex: int | None = None):
        self._data[key] = (value, ex)
        return True

    async def delete(self, *keys: str) -> int:
        return sum(1 for key in keys if self._data.pop(key, None) is not None)

    async def expire(self, key: str, seconds: int) -> bool:
        item = self._data.get(key)
        if item is None:
            return False
        # Re-inserting restarts the time-to-use clock for this key
        self._data[key] = (item[0], seconds)
        return True

    async def ping(self) -> bool:
        return True

    async def aclose(self):
        self._data.clear()


class CacheLayer:
    """
    Namespaced JSON cache in front of Redis (or MemoryBackend).

    Every cache failure is absorbed here: reads report a miss, writes and
    deletes become no-ops, and the error is logged and counted. Callers never
    see RedisError except from ping(), which backs the health check.
    """

    def __init__(self, backend, namespace: str = "tasktracker:"):
        self._backend = backend
        self.namespace = namespace

        # Stats tracking
        self.stats = {
            "hits": 0,
            "misses": 0,
            "errors": 0,
        }

    @classmethod
    def from_settings(cls, settings: Settings) -> "CacheLayer":
        if settings.redis_dsn.startswith("memory://"):
            backend = MemoryBackend(maxsize=settings.cache_maxsize)
        else:
            backend = Redis.from_url(
                settings.redis_dsn,
                encoding="utf-8",
                decode_responses=True,
                max_connections=settings.redis_pool_size,
                socket_connect_timeout=5,
                socket_timeout=5,
                socket_keepalive=True,
                health_check_interval=30,
            )
        return cls(backend, namespace=settings.cache_namespace)

    async def init_cache(self):
        """Verify the connection. An unreachable cache only degrades the service."""
        try:
            await self._backend.ping()
            logger.info(f"Cache connection established ({type(self._backend).__name__})")
        except RedisError as e:
            logger.error(f"Cache unavailable at startup, continuing without it: {e}")

    def _key(self, key: str) -> str:
        """Build namespaced cache key."""
        return f"{self.namespace}{key}"

    def _serialize(self, value: Any) -> str:
        """Serialize value for storage."""
        return json.dumps(value, default=str)

    def _deserialize(self, raw: str) -> Any:
        """Deserialize value from storage."""
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            # Return raw string if not valid JSON
            return raw

    async def get(self, key: str) -> Any | None:
        """Return the cached value, or None on a miss or a cache error."""
        try:
            raw = await self._backend.get(self._key(key))
        except RedisError as e:
            logger.error(f"Cache GET error for {key}: {e}")
            self.stats["errors"] += 1
            return None

        if raw is None:
            self.stats["misses"] += 1
            logger.debug(f"Cache miss: {key}")
            return None

        self.stats["hits"] += 1
        logger.debug(f"Cache hit: {key}")
        return self._deserialize(raw)

    async def set(self, key: str, value: Any, ttl: int) -> bool:
        try:
            await self._backend.set(self._key(key), self._serialize(value), ex=ttl)
            return True
        except RedisError as e:
            logger.error(f"Cache SET error for {key}: {e}")
            self.stats["errors"] += 1
            return False

    async def delete(self, *keys: str) -> bool:
        """
        Delete keys. Used for invalidation, so it runs after the database
        write it follows and is awaited before the caller returns.
        """
        try:
            await self._backend.delete(*(self._key(key) for key in keys))
            logger.debug(f"Invalidated {', '.join(keys)}")
            return True
        except RedisError as e:
            logger.error(f"Cache DELETE error for {', '.join(keys)}: {e}")
            self.stats["errors"] += 1
            return False

    async def expire(self, key: str, ttl: int) -> bool:
        """Refresh the TTL of an existing key without rewriting its value."""
        try:
            return bool(await self._backend.expire(self._key(key), ttl))
        except RedisError as e:
            logger.error(f"Cache EXPIRE error for {key}: {e}")
            self.stats["errors"] += 1
            return False

    async def ping(self) -> bool:
        return bool(await self._backend.ping())

    async def close(self):
        """Graceful shutdown of cache connections."""
        try:
            await self._backend.aclose()
            logger.info("Cache connection closed")
        except RedisError as e:
            logger.error(f"Error closing cache: {e}")

    def get_stats(self) -> dict:
        total = self.stats["hits"] + self.stats["misses"]
        return {
            **self.stats,
            "backend": type(self._backend).__name__,
            "hit_rate": self.stats["hits"] / total if total > 0 else 0,
        }
