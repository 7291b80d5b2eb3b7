"""
Unit tests for the Snipcart REST gateway.
"""

import json
from collections import Counter
from typing import Any, Dict, List, Tuple

import httpx
import pytest

from shared.errors import ValidationError
from service_snipcart.app.adapters.snipcart_client import (
    SnipcartGateway,
    build_query,
    resolve_options,
    to_timestamp,
    write_succeeded,
)
from service_snipcart.app.caching.backends import MemoryCacheBackend
from service_snipcart.app.caching.response_cache import ResponseCache
from service_snipcart.app.settings import CACHE_NAMESPACE, SnipcartSettings
from service_snipcart.app.transport.http_client import Envelope, HttpTransport


API = "https://app.snipcart.com/api/"


class FakeSnipcart:
    """Records requests and answers from a route table."""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.routes: Dict[Tuple[str, str], Tuple[int, Any]] = {}

    def route(self, method: str, path: str, status: int = 200, body: Any = None):
        self.routes[(method, "/api/" + path)] = (status, body if body is not None else {})

    def calls(self, method: str, path: str) -> int:
        return sum(1 for r in self.requests if r.method == method and r.url.path == "/api/" + path)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status, body = self.routes.get((request.method, request.url.path), (404, {"message": "Not found"}))
        if status == 204:
            return httpx.Response(204)
        return httpx.Response(status, json=body)


@pytest.fixture
def snipcart():
    return FakeSnipcart()


@pytest.fixture
def settings():
    return SnipcartSettings(api_key_secret_test="test-secret", snipcart_environment="test")


@pytest.fixture
def cache():
    return ResponseCache(MemoryCacheBackend())


@pytest.fixture
def gateway(snipcart, settings, cache):
    transport = HttpTransport(
        settings.active_secret_key,
        api_endpoint=API,
        transport=httpx.MockTransport(snipcart),
    )
    return SnipcartGateway(transport, cache, settings)


class TestOptionHelpers:

    def test_resolve_options_applies_allow_list_and_defaults(self):
        resolved = resolve_options({"limit": 5, "foo": "bar"}, ("offset", "limit"), {"offset": 0, "limit": 20})
        assert resolved == {"offset": 0, "limit": 5}

    def test_build_query_skips_none(self):
        assert build_query({"limit": 50, "continuationToken": None, "archived": False}) == "limit=50&archived=false"

    def test_to_timestamp(self):
        assert to_timestamp("2020-01-01T00:00:00+00:00") == 1577836800
        assert to_timestamp("2020-01-01") == 1577836800
        assert to_timestamp("") == ""
        with pytest.raises(ValidationError):
            to_timestamp("yesterday")

    def test_write_succeeded_is_exact(self):
        assert write_succeeded(Envelope(None, 201), "POST")
        assert write_succeeded(Envelope(None, 200), "put")
        assert write_succeeded(Envelope(None, 204), "DELETE")
        assert not write_succeeded(Envelope(None, 200), "DELETE")
        assert not write_succeeded(Envelope(None, 202), "POST")


class TestReadAccessors:
    """Test cases for cached read accessors."""

    @pytest.mark.asyncio
    async def test_products_are_cached_per_option_set(self, gateway, snipcart):
        snipcart.route("GET", "products", body={"items": [{"id": "p1"}], "totalItems": 1})

        first = await gateway.get_products(options={"offset": 0, "limit": 20}, ttl=300)
        second = await gateway.get_products(options={"limit": 20, "offset": 0}, ttl=300)

        assert snipcart.calls("GET", "products") == 1
        assert first == second
        assert first["products"].content["totalItems"] == 1

        await gateway.get_products(options={"offset": 20, "limit": 20}, ttl=300)
        assert snipcart.calls("GET", "products") == 2

    @pytest.mark.asyncio
    async def test_force_refresh_issues_one_new_call(self, gateway, snipcart, cache):
        snipcart.route("GET", "products", body={"items": []})
        snipcart.route("GET", "orders", body={"items": []})
        await gateway.get_products()
        await gateway.get_orders()

        await gateway.get_products(force_refresh=True)
        await gateway.get_orders()

        assert snipcart.calls("GET", "products") == 2
        assert snipcart.calls("GET", "orders") == 1

    @pytest.mark.asyncio
    async def test_default_and_unknown_options(self, gateway, snipcart):
        snipcart.route("GET", "orders", body={"items": []})

        await gateway.get_orders(options={"status": "Processed", "secret": "x"})

        params = snipcart.requests[-1].url.params
        assert params["offset"] == "0"
        assert params["limit"] == "20"
        assert params["status"] == "Processed"
        assert "secret" not in params

    @pytest.mark.asyncio
    async def test_sub_key(self, gateway, snipcart):
        snipcart.route("GET", "customers", body={"items": [{"id": "c1"}], "totalItems": 1})

        result = await gateway.get_customers_items()

        assert result["customers"].content == [{"id": "c1"}]

    @pytest.mark.asyncio
    async def test_missing_sub_key_returns_full_body(self, gateway, snipcart):
        snipcart.route("GET", "settings/general", body={"name": "Shop"})

        result = await gateway.get_currencies()

        assert result["settings/general"].content == {"name": "Shop"}

    @pytest.mark.asyncio
    async def test_subscriptions_limit_zero_means_hundred(self, gateway, snipcart):
        snipcart.route("GET", "subscriptions", body={"items": []})

        await gateway.get_subscriptions(options={"limit": 0})

        assert snipcart.requests[-1].url.params["limit"] == "100"

    @pytest.mark.asyncio
    async def test_abandoned_carts_defaults(self, gateway, snipcart):
        snipcart.route("GET", "carts/abandoned", body={"items": [], "continuationToken": None})

        await gateway.get_abandoned_carts()

        assert dict(snipcart.requests[-1].url.params) == {"limit": "50"}

    @pytest.mark.asyncio
    async def test_detail_keyed_by_path(self, gateway, snipcart):
        snipcart.route("GET", "orders/tok-1", body={"token": "tok-1"})

        result = await gateway.get_order("tok-1")

        assert list(result) == ["orders/tok-1"]
        assert result["orders/tok-1"].ok

    @pytest.mark.asyncio
    async def test_failed_responses_are_not_cached(self, gateway, snipcart):
        result = await gateway.get_order("missing")
        await gateway.get_order("missing")

        assert result["orders/missing"].http_code == 404
        assert result["orders/missing"].error == "404 Not Found"
        assert snipcart.calls("GET", "orders/missing") == 2

    @pytest.mark.asyncio
    async def test_missing_id_returns_error_envelope(self, gateway, snipcart):
        result = await gateway.get_customer("")

        assert result["customers/"].http_code == 0
        assert result["customers/"].error == "No customer ID provided"
        assert snipcart.requests == []

    @pytest.mark.asyncio
    async def test_missing_credentials(self, snipcart, cache):
        settings = SnipcartSettings(api_key_secret_test="", snipcart_environment="test")
        transport = HttpTransport("", api_endpoint=API, transport=httpx.MockTransport(snipcart))
        gateway = SnipcartGateway(transport, cache, settings)

        result = await gateway.get_orders()

        assert result["orders"].error == "Missing request headers for Snipcart REST connection"
        assert snipcart.requests == []
        assert await gateway.test_connection() == (False, "Missing request headers for Snipcart REST connection")


class TestDashboard:
    """Test cases for the batched dashboard accessor."""

    @pytest.fixture
    def routes(self, snipcart):
        for path in ("data/performance", "data/orders/sales", "data/orders/count", "customers", "products", "orders"):
            snipcart.route("GET", path, body={"path": path})

    @pytest.mark.asyncio
    async def test_batch_is_keyed_by_url_and_cached(self, gateway, snipcart, routes):
        first = await gateway.get_dashboard_data("2020-01-01", "2020-01-31", "eur")
        second = await gateway.get_dashboard_data("2020-01-01", "2020-01-31", "eur")

        assert len(first) == 6
        assert first == second
        assert len(snipcart.requests) == 6

        performance_url = API + "data/performance?from=1577836800&to=1580428800"
        assert first[performance_url].content == {"path": "data/performance"}

        products = [r for r in snipcart.requests if r.url.path == "/api/products"][0]
        assert products.url.params["orderBy"] == "SalesValue"
        assert products.url.params["excludeZeroSales"] == "true"
        orders = [r for r in snipcart.requests if r.url.path == "/api/orders"][0]
        assert orders.url.params["format"] == "Excerpt"
        assert orders.url.params["limit"] == "10"

    @pytest.mark.asyncio
    async def test_force_refresh(self, gateway, snipcart, routes):
        await gateway.get_dashboard_data("2020-01-01", "2020-01-31", "eur")
        await gateway.get_dashboard_data("2020-01-01", "2020-01-31", "eur", force_refresh=True)

        assert len(snipcart.requests) == 12

    @pytest.mark.asyncio
    async def test_invalid_date_returns_failure_envelope(self, gateway, snipcart, cache, routes):
        result = await gateway.get_dashboard_data("last week", "now", "eur")

        assert list(result) == ["Dashboard"]
        assert result["Dashboard"].http_code == 0
        assert result["Dashboard"].error == "Invalid ISO 8601 date"
        assert snipcart.requests == []
        assert await cache.invalidate_namespace(CACHE_NAMESPACE) == 0


class TestWriteAccessors:
    """Test cases for write accessors."""

    @pytest.mark.asyncio
    async def test_post_order_notification_defaults(self, gateway, snipcart):
        snipcart.route("POST", "orders/tok-1/notifications", status=201, body={"id": "n1"})

        result = await gateway.post_order_notification("tok-1", {"message": "Shipped", "bogus": 1})

        body = json.loads(snipcart.requests[-1].content)
        assert body == {"type": "TrackingNumber", "deliveryMethod": "Email", "message": "Shipped"}
        assert write_succeeded(result["orders/tok-1/notifications"], "POST")

    @pytest.mark.asyncio
    async def test_successful_write_invalidates_cache(self, gateway, snipcart):
        snipcart.route("GET", "orders/tok-1", body={"status": "Processed"})
        snipcart.route("PUT", "orders/tok-1", status=200, body={"status": "Shipped"})

        await gateway.get_order("tok-1")
        await gateway.put_order_status("tok-1", {"status": "Shipped"})
        await gateway.get_order("tok-1")

        assert snipcart.calls("GET", "orders/tok-1") == 2

    @pytest.mark.asyncio
    async def test_unexpected_status_is_failure(self, gateway, snipcart):
        snipcart.route("DELETE", "discounts/d1", status=200, body={})

        result = await gateway.delete_discount("d1")

        envelope = result["discounts/d1"]
        assert not write_succeeded(envelope, "DELETE")
        assert envelope.error == "Unexpected status 200 for DELETE discounts/d1"

    @pytest.mark.asyncio
    async def test_delete_product(self, gateway, snipcart):
        snipcart.route("DELETE", "products/p1", status=204)

        result = await gateway.delete_product("p1")

        assert result["products/p1"].http_code == 204
        assert write_succeeded(result["products/p1"], "DELETE")

    @pytest.mark.asyncio
    async def test_subscription_pause_sends_placeholder_body(self, gateway, snipcart):
        snipcart.route("POST", "subscriptions/s1/pause", status=200, body={"id": "s1"})

        await gateway.post_subscription_pause("s1")

        assert json.loads(snipcart.requests[-1].content) == {"id": "s1"}

    @pytest.mark.asyncio
    async def test_put_discount_allow_list(self, gateway, snipcart):
        snipcart.route("PUT", "discounts/d1", status=200, body={})

        await gateway.put_discount("d1", {"id": "d1", "name": "Spring", "rate": 10, "hack": True})

        assert json.loads(snipcart.requests[-1].content) == {"id": "d1", "name": "Spring", "rate": 10}


class TestLookups:

    @pytest.mark.asyncio
    async def test_get_product_id(self, gateway, snipcart):
        snipcart.route("GET", "products", body={"items": [{"id": "remote-1", "userDefinedId": "SKU-1"}]})

        assert await gateway.get_product_id("SKU-1") == "remote-1"
        assert await gateway.get_product_id("SKU-1") == "remote-1"
        assert snipcart.calls("GET", "products") == 2
        assert snipcart.requests[-1].url.params["userDefinedId"] == "SKU-1"

    @pytest.mark.asyncio
    async def test_get_product_id_not_found(self, gateway, snipcart):
        snipcart.route("GET", "products", body={"items": []})

        assert await gateway.get_product_id("SKU-404") is None
        assert await gateway.get_product_id("") is None

    @pytest.mark.asyncio
    async def test_connection(self, gateway, snipcart):
        snipcart.route("GET", "settings/domain", body={"domain": "shop.test"})
        assert await gateway.test_connection() == (True, "")

    @pytest.mark.asyncio
    async def test_request_token_is_escaped(self, gateway, snipcart):
        await gateway.validate_request_token("a/../settings?x=1")

        request = snipcart.requests[-1]
        assert request.url.raw_path == b"/api/requestvalidation/a%2F..%2Fsettings%3Fx%3D1"
        assert request.url.query == b""

    @pytest.mark.asyncio
    async def test_delete_order_cache_for_token(self, gateway, snipcart):
        snipcart.route("GET", "orders/tok-1", body={})
        snipcart.route("GET", "orders/tok-1/notifications", body={"items": []})
        snipcart.route("GET", "orders", body={"items": []})
        await gateway.get_order("tok-1")
        await gateway.get_order_notifications("tok-1")
        await gateway.get_order_notifications("tok-1", {"offset": 20})
        await gateway.get_orders()

        await gateway.delete_order_cache("tok-1")
        await gateway.get_order("tok-1")
        await gateway.get_order_notifications("tok-1")
        await gateway.get_orders()

        counts = Counter((r.method, r.url.path) for r in snipcart.requests)
        assert counts[("GET", "/api/orders/tok-1")] == 2
        assert counts[("GET", "/api/orders/tok-1/notifications")] == 3
        assert counts[("GET", "/api/orders")] == 1

    @pytest.mark.asyncio
    async def test_delete_full_cache(self, gateway, snipcart, cache):
        snipcart.route("GET", "discounts", body=[])
        await gateway.get_discounts()

        assert await gateway.delete_full_cache() == 1
        assert await cache.backend.get(CACHE_NAMESPACE, "Discounts") is None
