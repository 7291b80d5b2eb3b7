"""
Unit tests for the response cache and its backends.
"""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from shared.errors import ConfigurationError
from service_snipcart.app.caching.backends import (
    MemoryCacheBackend,
    RedisCacheBackend,
    create_backend,
)
from service_snipcart.app.caching.response_cache import ResponseCache, segment_key


class DummyMetrics:
    """Minimal metrics collector stub."""

    def __init__(self):
        self.counters = []

    def increment_counter(self, metric_name: str, **labels):
        self.counters.append((metric_name, labels))


class FakeClock:

    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class Counter:
    """Compute function that counts invocations."""

    def __init__(self, value="computed"):
        self.calls = 0
        self.value = value

    async def __call__(self):
        self.calls += 1
        return {"value": self.value, "call": self.calls}


class TestSegmentKey:

    def test_equivalent_options_share_a_segment(self):
        assert segment_key("Products", {"offset": 0, "limit": 20}) == segment_key("Products", {"limit": 20, "offset": 0})

    def test_different_options_never_collide(self):
        assert segment_key("Products", {"offset": 0, "limit": 20}) != segment_key("Products", {"offset": 20, "limit": 20})

    def test_prefix_is_kept(self):
        key = segment_key("OrdersDetail", "token-1")
        assert key.startswith("OrdersDetail.")
        assert len(key.split(".", 1)[1]) == 32


class TestResponseCache:
    """Test cases for ResponseCache."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def metrics(self):
        return DummyMetrics()

    @pytest.fixture
    def cache(self, clock, metrics):
        return ResponseCache(MemoryCacheBackend(clock=clock), metrics=metrics)

    @pytest.mark.asyncio
    async def test_second_call_is_served_from_cache(self, cache, metrics):
        compute = Counter()

        first = await cache.get_or_compute("SnipWire", "Orders.a", 300, compute)
        second = await cache.get_or_compute("SnipWire", "Orders.a", 300, compute)

        assert compute.calls == 1
        assert first == second
        assert ("cache_misses_total", {"cache_type": "Orders"}) in metrics.counters
        assert ("cache_hits_total", {"cache_type": "Orders"}) in metrics.counters

    @pytest.mark.asyncio
    async def test_expired_entries_are_recomputed(self, cache, clock):
        compute = Counter()

        await cache.get_or_compute("SnipWire", "Orders.a", 300, compute)
        clock.now += 301
        result = await cache.get_or_compute("SnipWire", "Orders.a", 300, compute)

        assert compute.calls == 2
        assert result["call"] == 2

    @pytest.mark.asyncio
    async def test_store_if_skips_storing(self, cache):
        compute = Counter()

        await cache.get_or_compute("SnipWire", "Orders.a", 300, compute, store_if=lambda value: False)
        await cache.get_or_compute("SnipWire", "Orders.a", 300, compute, store_if=lambda value: False)

        assert compute.calls == 2

    @pytest.mark.asyncio
    async def test_invalidate_removes_only_one_segment(self, cache):
        first, second = Counter(), Counter()
        await cache.get_or_compute("SnipWire", "Orders.a", 300, first)
        await cache.get_or_compute("SnipWire", "Orders.b", 300, second)

        await cache.invalidate("SnipWire", "Orders.a")
        await cache.get_or_compute("SnipWire", "Orders.a", 300, first)
        await cache.get_or_compute("SnipWire", "Orders.b", 300, second)

        assert first.calls == 2
        assert second.calls == 1

    @pytest.mark.asyncio
    async def test_invalidate_prefix(self, cache):
        orders, products = Counter(), Counter()
        await cache.get_or_compute("SnipWire", "Orders.a", 300, orders)
        await cache.get_or_compute("SnipWire", "OrdersDetail.b", 300, orders)
        await cache.get_or_compute("SnipWire", "Products.a", 300, products)

        removed = await cache.invalidate_prefix("SnipWire", "Orders")

        assert removed == 2
        await cache.get_or_compute("SnipWire", "Products.a", 300, products)
        assert products.calls == 1

    @pytest.mark.asyncio
    async def test_invalidate_namespace_leaves_other_namespaces(self, cache):
        ours, theirs = Counter(), Counter()
        await cache.get_or_compute("SnipWire", "Orders.a", 300, ours)
        await cache.get_or_compute("Other", "Orders.a", 300, theirs)

        await cache.invalidate_namespace("SnipWire")
        await cache.get_or_compute("SnipWire", "Orders.a", 300, ours)
        await cache.get_or_compute("Other", "Orders.a", 300, theirs)

        assert ours.calls == 2
        assert theirs.calls == 1

    @pytest.mark.asyncio
    async def test_backend_read_error_is_a_miss(self, metrics):
        backend = MagicMock()
        backend.get = AsyncMock(side_effect=ConnectionError("redis down"))
        backend.set = AsyncMock(side_effect=ConnectionError("redis down"))
        cache = ResponseCache(backend, metrics=metrics)
        compute = Counter()

        result = await cache.get_or_compute("SnipWire", "Orders.a", 300, compute)

        assert result == {"value": "computed", "call": 1}
        assert compute.calls == 1

    @pytest.mark.asyncio
    async def test_ttl_zero_never_expires(self, cache, clock):
        compute = Counter()

        await cache.get_or_compute("SnipWire", "Settings", 0, compute)
        clock.now += 10 ** 9
        await cache.get_or_compute("SnipWire", "Settings", 0, compute)

        assert compute.calls == 1


class TestRedisCacheBackend:
    """Test cases for RedisCacheBackend."""

    @pytest.fixture
    def redis_client(self):
        client = MagicMock()
        client.get = AsyncMock(return_value=b'{"a": 1}')
        client.setex = AsyncMock()
        client.set = AsyncMock()
        client.delete = AsyncMock()

        async def scan_iter(match=None):
            for key in (b"SnipWire:Orders.1", b"SnipWire:Orders.2"):
                yield key

        client.scan_iter = scan_iter
        return client

    @pytest.fixture
    def backend(self, redis_client):
        backend = RedisCacheBackend("redis://localhost:6379/0")
        backend._redis = redis_client
        return backend

    @pytest.mark.asyncio
    async def test_get_decodes_bytes(self, backend, redis_client):
        assert json.loads(await backend.get("SnipWire", "Orders.1")) == {"a": 1}
        redis_client.get.assert_awaited_once_with("SnipWire:Orders.1")

    @pytest.mark.asyncio
    async def test_set_uses_setex(self, backend, redis_client):
        await backend.set("SnipWire", "Orders.1", "{}", 900)
        redis_client.setex.assert_awaited_once_with("SnipWire:Orders.1", 900, "{}")

    @pytest.mark.asyncio
    async def test_set_without_ttl(self, backend, redis_client):
        await backend.set("SnipWire", "Settings", "{}", 0)
        redis_client.set.assert_awaited_once_with("SnipWire:Settings", "{}")

    @pytest.mark.asyncio
    async def test_delete_prefix(self, backend, redis_client):
        removed = await backend.delete_prefix("SnipWire", "Orders")

        assert removed == 2
        redis_client.delete.assert_awaited_once_with(b"SnipWire:Orders.1", b"SnipWire:Orders.2")


def test_create_backend():
    assert isinstance(create_backend("memory"), MemoryCacheBackend)
    assert isinstance(create_backend("redis", "redis://localhost:6379/0"), RedisCacheBackend)
    with pytest.raises(ConfigurationError):
        create_backend("memcached")
