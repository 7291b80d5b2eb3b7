"""
Storage backends for the response cache.
"""

import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, Optional, Tuple

import redis.asyncio as redis

from shared.errors import ConfigurationError
from shared.logging import get_logger


class CacheBackend(ABC):
    """Namespaced key/value store with per-entry expiry."""

    name = "abstract"

    @abstractmethod
    async def get(self, namespace: str, key: str) -> Optional[str]:
        """Return the stored value, or None when absent or expired."""

    @abstractmethod
    async def set(self, namespace: str, key: str, value: str, ttl: int) -> None:
        """Store a value for ``ttl`` seconds; ``ttl <= 0`` never expires."""

    @abstractmethod
    async def delete(self, namespace: str, key: str) -> None:
        """Remove one entry."""

    @abstractmethod
    async def delete_prefix(self, namespace: str, prefix: str = "") -> int:
        """Remove every entry whose key starts with ``prefix``."""

    async def close(self) -> None:
        return None


class MemoryCacheBackend(CacheBackend):
    """Process-local backend."""

    name = "memory"

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[str, Dict[str, Tuple[float, str]]] = {}

    async def get(self, namespace: str, key: str) -> Optional[str]:
        entry = self._entries.get(namespace, {}).get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if expires_at <= self._clock():
            del self._entries[namespace][key]
            return None
        return value

    async def set(self, namespace: str, key: str, value: str, ttl: int) -> None:
        expires_at = self._clock() + ttl if ttl > 0 else float("inf")
        self._entries.setdefault(namespace, {})[key] = (expires_at, value)

    async def delete(self, namespace: str, key: str) -> None:
        self._entries.get(namespace, {}).pop(key, None)

    async def delete_prefix(self, namespace: str, prefix: str = "") -> int:
        segments = self._entries.get(namespace, {})
        doomed = [key for key in segments if key.startswith(prefix)]
        for key in doomed:
            del segments[key]
        return len(doomed)


class RedisCacheBackend(CacheBackend):
    """Redis backend; keys are stored as ``<namespace>:<key>``."""

    name = "redis"

    def __init__(self, redis_url: str):
        self.redis_url = redis_url
        self.logger = get_logger("snipwire.cache")
        self._redis: Optional[redis.Redis] = None

    async def _get_redis(self) -> redis.Redis:
        """Get Redis connection."""
        if self._redis is None:
            self._redis = redis.from_url(self.redis_url)
        return self._redis

    @staticmethod
    def _key(namespace: str, key: str) -> str:
        return f"{namespace}:{key}"

    async def get(self, namespace: str, key: str) -> Optional[str]:
        redis_client = await self._get_redis()
        value = await redis_client.get(self._key(namespace, key))
        if value is None:
            return None
        return value.decode("utf-8") if isinstance(value, bytes) else value

    async def set(self, namespace: str, key: str, value: str, ttl: int) -> None:
        redis_client = await self._get_redis()
        if ttl > 0:
            await redis_client.setex(self._key(namespace, key), ttl, value)
        else:
            await redis_client.set(self._key(namespace, key), value)

    async def delete(self, namespace: str, key: str) -> None:
        redis_client = await self._get_redis()
        await redis_client.delete(self._key(namespace, key))

    async def delete_prefix(self, namespace: str, prefix: str = "") -> int:
        redis_client = await self._get_redis()
        keys = [key async for key in redis_client.scan_iter(match=self._key(namespace, prefix) + "*")]
        if keys:
            await redis_client.delete(*keys)
            self.logger.info("Cleared cache pattern", namespace=namespace, prefix=prefix, keys_count=len(keys))
        return len(keys)

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None


def create_backend(kind: str, redis_url: str = "") -> CacheBackend:
    """Build the backend named in configuration."""
    if kind == "redis":
        return RedisCacheBackend(redis_url)
    if kind == "memory":
        return MemoryCacheBackend()
    raise ConfigurationError(f"Unknown cache backend: {kind}", details={"cache_backend": kind})
