"""
Segmented get-or-compute cache for remote API responses.
"""

import hashlib
import json
from typing import Any, Awaitable, Callable, Mapping, Optional, Union, TYPE_CHECKING
from urllib.parse import urlencode

from shared.logging import get_logger
from .backends import CacheBackend

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


def segment_key(prefix: str, options: Union[str, Mapping[str, Any], None] = None) -> str:
    """Derive ``<prefix>.<md5>`` for an option set.

    Mappings are sorted before hashing so equivalent option sets share a
    segment regardless of insertion order.
    """
    if options is None:
        raw = ""
    elif isinstance(options, str):
        raw = options
    else:
        raw = urlencode(sorted((str(k), _stringify(v)) for k, v in options.items()))
    return f"{prefix}.{hashlib.md5(raw.encode('utf-8')).hexdigest()}"


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class ResponseCache:
    """Namespaced cache with TTL and segment invalidation.

    There is no locking: concurrent misses on one segment may each run the
    compute function and the last write wins.
    """

    def __init__(self, backend: CacheBackend, *, metrics: Optional["MetricsCollector"] = None):
        self.backend = backend
        self.metrics = metrics
        self.logger = get_logger("snipwire.cache")

    async def get_or_compute(
        self,
        namespace: str,
        key: str,
        ttl: int,
        compute_fn: Callable[[], Awaitable[Any]],
        *,
        store_if: Optional[Callable[[Any], bool]] = None,
        dumps: Callable[[Any], str] = json.dumps,
        loads: Callable[[str], Any] = json.loads,
    ) -> Any:
        """Return the cached value for ``key`` or compute and store it."""
        cache_type = key.split(".", 1)[0]

        cached = await self._safe_get(namespace, key)
        if cached is not None:
            try:
                value = loads(cached)
            except (ValueError, TypeError, KeyError, AttributeError) as e:
                self.logger.warning("Discarding undecodable cache entry", key=key, error=str(e))
            else:
                self.logger.debug("Cache hit", namespace=namespace, key=key)
                self._count("cache_hits_total", cache_type)
                return value

        self._count("cache_misses_total", cache_type)
        value = await compute_fn()

        if store_if is not None and not store_if(value):
            self.logger.debug("Result not cached", namespace=namespace, key=key)
            return value

        try:
            await self.backend.set(namespace, key, dumps(value), ttl)
            self.logger.debug("Cached value", namespace=namespace, key=key, ttl=ttl)
        except Exception as e:
            self.logger.error("Cache set error", key=key, error=str(e))
        return value

    async def _safe_get(self, namespace: str, key: str) -> Optional[str]:
        """Safely get cached data, handling errors."""
        try:
            return await self.backend.get(namespace, key)
        except Exception as e:
            self.logger.error("Cache get error", key=key, error=str(e))
            return None

    def _count(self, metric_name: str, cache_type: str):
        if self.metrics:
            self.metrics.increment_counter(metric_name, cache_type=cache_type)

    async def invalidate(self, namespace: str, key: str) -> None:
        """Remove a single segment."""
        await self.backend.delete(namespace, key)
        self.logger.debug("Invalidated segment", namespace=namespace, key=key)

    async def invalidate_prefix(self, namespace: str, prefix: str) -> int:
        """Remove every segment whose key starts with ``prefix``."""
        removed = await self.backend.delete_prefix(namespace, prefix)
        self.logger.debug("Invalidated segments", namespace=namespace, prefix=prefix, removed=removed)
        return removed

    async def invalidate_namespace(self, namespace: str) -> int:
        """Remove every segment in a namespace."""
        removed = await self.backend.delete_prefix(namespace, "")
        self.logger.info("Cache namespace reset", namespace=namespace, removed=removed)
        return removed

    async def close(self) -> None:
        await self.backend.close()
