"""
SnipWire caching package.

Segmented get-or-compute cache for Snipcart API responses with explicit,
per-resource invalidation.
"""

from .backends import CacheBackend, MemoryCacheBackend, RedisCacheBackend, create_backend
from .response_cache import ResponseCache, segment_key

__all__ = [
    "CacheBackend",
    "MemoryCacheBackend",
    "RedisCacheBackend",
    "create_backend",
    "ResponseCache",
    "segment_key",
]
