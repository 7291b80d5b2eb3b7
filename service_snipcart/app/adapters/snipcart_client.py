"""
Snipcart REST gateway.

One accessor per remote resource. Read accessors go through the response
cache; write accessors always hit the API. Every accessor returns a mapping
of ``resource path -> Envelope``.
"""

from __future__ import annotations

import hashlib
import json
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional, Tuple
from urllib.parse import quote, urlencode

from shared.errors import ValidationError
from shared.logging import get_logger
from service_snipcart.app.caching.response_cache import ResponseCache, segment_key
from service_snipcart.app.settings import CACHE_NAMESPACE, SnipcartSettings
from service_snipcart.app.transport.http_client import Envelope, HttpTransport


EnvelopeMap = Dict[str, Envelope]

CACHE_EXPIRE_NEVER = 0

# Resource paths
PATH_ORDERS = "orders"
PATH_ORDER = "orders/{token}"
PATH_ORDER_NOTIFICATIONS = "orders/{token}/notifications"
PATH_ORDER_REFUNDS = "orders/{token}/refunds"
PATH_SUBSCRIPTIONS = "subscriptions"
PATH_SUBSCRIPTION = "subscriptions/{id}"
PATH_SUBSCRIPTION_INVOICES = "subscriptions/{id}/invoices"
PATH_SUBSCRIPTION_PAUSE = "subscriptions/{id}/pause"
PATH_SUBSCRIPTION_RESUME = "subscriptions/{id}/resume"
PATH_CARTS_ABANDONED = "carts/abandoned"
PATH_CART_ABANDONED = "carts/abandoned/{id}"
PATH_CART_NOTIFICATIONS = "carts/{id}/notifications"
PATH_CUSTOMERS = "customers"
PATH_CUSTOMER = "customers/{id}"
PATH_CUSTOMER_ORDERS = "customers/{id}/orders"
PATH_PRODUCTS = "products"
PATH_PRODUCT = "products/{id}"
PATH_DISCOUNTS = "discounts"
PATH_DISCOUNT = "discounts/{id}"
PATH_SETTINGS_GENERAL = "settings/general"
PATH_SETTINGS_DOMAIN = "settings/domain"
PATH_SHIPPING_METHODS = "shipping_methods"
PATH_REQUEST_VALIDATION = "requestvalidation/{token}"
PATH_DATA_PERFORMANCE = "data/performance"
PATH_DATA_ORDERS_SALES = "data/orders/sales"
PATH_DATA_ORDERS_COUNT = "data/orders/count"

# Cache segment prefixes
PREFIX_DASHBOARD = "Dashboard"
PREFIX_PERFORMANCE = "Performance"
PREFIX_ORDERS = "Orders"
PREFIX_ORDERS_SALES = "OrdersSales"
PREFIX_ORDERS_COUNT = "OrdersCount"
PREFIX_ORDERS_NOTIFICATIONS = "OrdersNotifications"
PREFIX_ORDERS_DETAIL = "OrdersDetail"
PREFIX_SUBSCRIPTIONS = "Subscriptions"
PREFIX_SUBSCRIPTIONS_DETAIL = "SubscriptionsDetail"
PREFIX_SUBSCRIPTIONS_INVOICES = "SubscriptionsInvoices"
PREFIX_CARTS_ABANDONED = "CartsAbandoned"
PREFIX_CARTS_ABANDONED_DETAIL = "CartsAbandonedDetail"
PREFIX_CUSTOMERS = "Customers"
PREFIX_CUSTOMERS_ORDERS = "CustomersOrders"
PREFIX_CUSTOMERS_DETAIL = "CustomersDetail"
PREFIX_PRODUCTS = "Products"
PREFIX_PRODUCTS_DETAIL = "ProductsDetail"
PREFIX_DISCOUNTS = "Discounts"
PREFIX_DISCOUNTS_DETAIL = "DiscountsDetail"
PREFIX_SETTINGS = "Settings"

# Allow-listed options and their defaults
ORDERS_OPTIONS = ("offset", "limit", "status", "paymentStatus", "invoiceNumber", "placedBy", "from", "to", "format")
ORDER_NOTIFICATIONS_OPTIONS = ("offset", "limit")
SUBSCRIPTIONS_OPTIONS = ("offset", "limit", "status", "userDefinedPlanName", "userDefinedCustomerNameOrEmail", "from", "to")
CARTS_ABANDONED_OPTIONS = ("limit", "continuationToken", "timeRange", "minimalValue", "email")
CUSTOMERS_OPTIONS = ("offset", "limit", "status", "email", "name", "from", "to")
PRODUCTS_OPTIONS = ("offset", "limit", "userDefinedId", "keywords", "archived", "excludeZeroSales", "orderBy", "from", "to")
PERFORMANCE_OPTIONS = ("from", "to")
SALES_COUNT_OPTIONS = ("from", "to", "currency")

PAGED_DEFAULTS = {"offset": 0, "limit": 20}
CARTS_ABANDONED_DEFAULTS = {"limit": 50, "continuationToken": None}

NOTIFICATION_OPTIONS = ("type", "deliveryMethod", "message")
ORDER_NOTIFICATION_DEFAULTS = {"type": "TrackingNumber", "deliveryMethod": "Email"}
CART_NOTIFICATION_DEFAULTS = {"type": "Comment", "deliveryMethod": "Email"}
REFUND_OPTIONS = ("amount", "comment", "notifyCustomer")
ORDER_STATUS_OPTIONS = ("status", "paymentStatus", "trackingNumber", "trackingUrl")
PRODUCT_OPTIONS = ("inventoryManagementMethod", "variants", "stock", "allowOutOfStockPurchases")
DISCOUNT_OPTIONS = (
    "name", "expires", "maxNumberOfUsages", "currency", "combinable", "type", "amount", "rate",
    "alternatePrice", "shippingDescription", "shippingCost", "shippingGuaranteedDaysToDelivery",
    "productIds", "maxDiscountsPerItem", "categories", "numberOfItemsRequired", "numberOfFreeItems",
    "trigger", "code", "itemId", "totalToReach", "maxAmountToReach", "quantityInterval",
    "quantityOfAProduct", "maxQuantityOfAProduct", "onlyOnSameProducts", "quantityOfProductIds",
    "archived",
)
DISCOUNT_UPDATE_OPTIONS = ("id",) + DISCOUNT_OPTIONS

# Expected status codes for write requests
WRITE_SUCCESS_CODES = {
    "POST": (200, 201),
    "PUT": (200, 201),
    "DELETE": (204,),
}

MESSAGES = {
    "no_headers": "Missing request headers for Snipcart REST connection",
    "connection_failed": "Connection to Snipcart failed",
    "no_order_token": "No order token provided",
    "no_subscription_id": "No subscription ID provided",
    "no_cart_id": "No cart ID provided",
    "no_customer_id": "No customer ID provided",
    "no_product_id": "No product ID provided",
    "no_product_url": "No product URL provided",
    "no_userdefined_id": "No userDefinedId provided",
    "no_discount_id": "No discount ID provided",
    "invalid_date": "Invalid ISO 8601 date",
}


def resolve_options(
    options: Optional[Dict[str, Any]],
    allowed: Iterable[str],
    defaults: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Drop keys outside ``allowed`` and fill in ``defaults``."""
    allowed = set(allowed)
    resolved = dict(defaults or {})
    for key, value in (options or {}).items():
        if key in allowed:
            resolved[key] = value
    return resolved


def build_query(options: Dict[str, Any]) -> str:
    """URL-encode an option set, skipping unset values."""
    pairs = []
    for key, value in options.items():
        if value is None:
            continue
        if isinstance(value, bool):
            value = "true" if value else "false"
        pairs.append((key, value))
    return urlencode(pairs)


def to_timestamp(value: Optional[str]) -> Any:
    """Convert an ISO 8601 date to a UNIX timestamp; empty stays empty."""
    if not value:
        return ""
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        raise ValidationError("Invalid ISO 8601 date", details={"value": value})
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp())


def write_succeeded(envelope: Envelope, method: str) -> bool:
    """Exact match of the status code against the expected codes for ``method``."""
    return envelope.http_code in WRITE_SUCCESS_CODES.get(method.upper(), ())


def _md5(value: str) -> str:
    return hashlib.md5(value.encode("utf-8")).hexdigest()


def _dump_envelopes(envelopes: EnvelopeMap) -> str:
    return json.dumps({key: envelope.to_dict() for key, envelope in envelopes.items()})


def _load_envelopes(raw: str) -> EnvelopeMap:
    return {key: Envelope.from_dict(data) for key, data in json.loads(raw).items()}


def _all_ok(envelopes: EnvelopeMap) -> bool:
    return all(envelope.ok for envelope in envelopes.values())


class SnipcartGateway:
    """Client for the Snipcart REST API."""

    def __init__(self, transport: HttpTransport, cache: ResponseCache, settings: SnipcartSettings):
        self.transport = transport
        self.cache = cache
        self.settings = settings
        self.default_ttl = settings.cache_expire_default
        self.logger = get_logger("snipwire.gateway")

    # Core helpers

    def _missing(self, data_key: str, message_key: str) -> EnvelopeMap:
        message = MESSAGES[message_key]
        self.logger.warning("Snipcart request not sent", resource=data_key, reason=message)
        return {data_key: Envelope.failure(message)}

    async def _fetch(
        self,
        data_key: str,
        cache_key: str,
        url: str,
        *,
        sub_key: str = "",
        ttl: Optional[int] = None,
        force_refresh: bool = False,
    ) -> EnvelopeMap:
        """Fetch one resource through the cache and apply the sub-key."""
        if not self.transport.has_headers:
            return self._missing(data_key, "no_headers")

        if force_refresh:
            await self.cache.invalidate(CACHE_NAMESPACE, cache_key)

        async def compute() -> EnvelopeMap:
            return {data_key: await self.transport.get_json(url)}

        envelopes = await self.cache.get_or_compute(
            CACHE_NAMESPACE,
            cache_key,
            self.default_ttl if ttl is None else ttl,
            compute,
            store_if=_all_ok,
            dumps=_dump_envelopes,
            loads=_load_envelopes,
        )
        envelope = envelopes[data_key]
        if sub_key and isinstance(envelope.content, dict) and sub_key in envelope.content:
            envelope = envelope.with_content(envelope.content[sub_key])
        return {data_key: envelope}

    async def _list(
        self,
        path: str,
        prefix: str,
        options: Optional[Dict[str, Any]],
        allowed: Iterable[str],
        defaults: Optional[Dict[str, Any]],
        key: str,
        ttl: Optional[int],
        force_refresh: bool,
    ) -> EnvelopeMap:
        resolved = resolve_options(options, allowed, defaults)
        query = build_query(resolved)
        return await self._fetch(
            path,
            segment_key(prefix, resolved),
            self.transport.url_for(path, query),
            sub_key=key,
            ttl=ttl,
            force_refresh=force_refresh,
        )

    async def _detail(
        self,
        path_template: str,
        prefix: str,
        identifier: str,
        message_key: str,
        ttl: Optional[int],
        force_refresh: bool,
        **path_args: str,
    ) -> EnvelopeMap:
        path = path_template.format(**path_args)
        if not identifier:
            return self._missing(path, message_key)
        return await self._fetch(
            path,
            segment_key(prefix, identifier),
            self.transport.url_for(path),
            ttl=ttl,
            force_refresh=force_refresh,
        )

    async def _write(self, method: str, path: str, body: Optional[Any] = None) -> EnvelopeMap:
        """Send an uncached write request."""
        if not self.transport.has_headers:
            return self._missing(path, "no_headers")

        envelope = await self.transport.send_json(self.transport.url_for(path), method, body)
        if write_succeeded(envelope, method):
            self.logger.info("Snipcart write succeeded", method=method, resource=path, status_code=envelope.http_code)
        else:
            if not envelope.error:
                envelope = Envelope(
                    content=envelope.content,
                    http_code=envelope.http_code,
                    error=f"Unexpected status {envelope.http_code} for {method} {path}",
                )
            self.logger.warning(
                "Snipcart write failed",
                method=method,
                resource=path,
                status_code=envelope.http_code,
                error=envelope.error,
            )
        return {path: envelope}

    # Dashboard

    async def get_dashboard_data(
        self,
        start: str,
        end: str,
        currency: str,
        ttl: Optional[int] = None,
        force_refresh: bool = False,
    ) -> EnvelopeMap:
        """Fetch every dashboard query as one batch, cached as one segment.

        The result is keyed by full request URL.
        """
        if not self.transport.has_headers:
            return self._missing(PREFIX_DASHBOARD, "no_headers")
        try:
            window = {"from": to_timestamp(start), "to": to_timestamp(end)}
        except ValidationError as e:
            self.logger.warning("Dashboard date range rejected", value=e.details.get("value"))
            return {PREFIX_DASHBOARD: Envelope.failure(MESSAGES["invalid_date"])}

        cache_key = f"{PREFIX_DASHBOARD}.{_md5(f'{start}{end}{currency}')}"
        if force_refresh:
            await self.cache.invalidate(CACHE_NAMESPACE, cache_key)

        async def compute() -> EnvelopeMap:
            sales_window = dict(window, currency=currency)
            self.transport.enqueue([
                self.transport.url_for(PATH_DATA_PERFORMANCE, build_query(window)),
                self.transport.url_for(PATH_DATA_ORDERS_SALES, build_query(sales_window)),
                self.transport.url_for(PATH_DATA_ORDERS_COUNT, build_query(sales_window)),
                self.transport.url_for(PATH_CUSTOMERS, build_query({"limit": 10, "from": start, "to": end})),
                self.transport.url_for(PATH_PRODUCTS, build_query({
                    "limit": 10,
                    "archived": "false",
                    "excludeZeroSales": "true",
                    "orderBy": "SalesValue",
                    "from": start,
                    "to": end,
                })),
                self.transport.url_for(PATH_ORDERS, build_query({
                    "limit": 10,
                    "from": start,
                    "to": end,
                    "format": "Excerpt",
                })),
            ])
            return await self.transport.execute_batch_json()

        return await self.cache.get_or_compute(
            CACHE_NAMESPACE,
            cache_key,
            self.default_ttl if ttl is None else ttl,
            compute,
            store_if=_all_ok,
            dumps=_dump_envelopes,
            loads=_load_envelopes,
        )

    # Settings

    async def get_settings(self, key: str = "", ttl: Optional[int] = None, force_refresh: bool = False) -> EnvelopeMap:
        return await self._fetch(
            PATH_SETTINGS_GENERAL,
            PREFIX_SETTINGS,
            self.transport.url_for(PATH_SETTINGS_GENERAL),
            sub_key=key,
            ttl=ttl,
            force_refresh=force_refresh,
        )

    async def get_currencies(self, ttl: Optional[int] = None, force_refresh: bool = False) -> EnvelopeMap:
        """Currencies configured in the Snipcart account."""
        return await self.get_settings("currencies", ttl, force_refresh)

    async def refresh_settings(self) -> EnvelopeMap:
        return await self.get_settings("", CACHE_EXPIRE_NEVER, True)

    async def test_connection(self) -> Tuple[bool, str]:
        """Check the credentials against ``settings/domain``."""
        if not self.transport.has_headers:
            return False, MESSAGES["no_headers"]
        envelope = await self.transport.get_json(self.transport.url_for(PATH_SETTINGS_DOMAIN))
        if envelope.ok:
            return True, ""
        self.logger.warning("Snipcart connection test failed", status_code=envelope.http_code, error=envelope.error)
        return False, envelope.error or MESSAGES["connection_failed"]

    # Performance data

    async def get_performance(self, options=None, ttl=None, force_refresh=False) -> EnvelopeMap:
        return await self._list(
            PATH_DATA_PERFORMANCE, PREFIX_PERFORMANCE, options, PERFORMANCE_OPTIONS, None, "", ttl, force_refresh,
        )

    async def get_sales_count(self, options=None, ttl=None, force_refresh=False) -> EnvelopeMap:
        return await self._list(
            PATH_DATA_ORDERS_SALES, PREFIX_ORDERS_SALES, options, SALES_COUNT_OPTIONS, None, "", ttl, force_refresh,
        )

    async def get_orders_count(self, options=None, ttl=None, force_refresh=False) -> EnvelopeMap:
        return await self._list(
            PATH_DATA_ORDERS_COUNT, PREFIX_ORDERS_COUNT, options, SALES_COUNT_OPTIONS, None, "", ttl, force_refresh,
        )

    # Orders

    async def get_orders(self, key="", options=None, ttl=None, force_refresh=False) -> EnvelopeMap:
        return await self._list(
            PATH_ORDERS, PREFIX_ORDERS, options, ORDERS_OPTIONS, PAGED_DEFAULTS, key, ttl, force_refresh,
        )

    async def get_orders_items(self, options=None, ttl=None, force_refresh=False) -> EnvelopeMap:
        return await self.get_orders("items", options, ttl, force_refresh)

    async def get_order(self, token: str, ttl=None, force_refresh=False) -> EnvelopeMap:
        return await self._detail(
            PATH_ORDER, PREFIX_ORDERS_DETAIL, token, "no_order_token", ttl, force_refresh, token=token,
        )

    async def get_order_notifications(self, token: str, options=None, ttl=None, force_refresh=False) -> EnvelopeMap:
        path = PATH_ORDER_NOTIFICATIONS.format(token=token)
        if not token:
            return self._missing(path, "no_order_token")
        resolved = resolve_options(options, ORDER_NOTIFICATIONS_OPTIONS, PAGED_DEFAULTS)
        query = build_query(resolved)
        # Keyed by token first so a token-wide invalidation reaches every page
        cache_key = f"{PREFIX_ORDERS_NOTIFICATIONS}.{_md5(token)}.{_md5(query)}"
        return await self._fetch(
            path, cache_key, self.transport.url_for(path, query), ttl=ttl, force_refresh=force_refresh,
        )

    async def post_order_notification(self, token: str, options=None) -> EnvelopeMap:
        path = PATH_ORDER_NOTIFICATIONS.format(token=token)
        if not token:
            return self._missing(path, "no_order_token")
        body = resolve_options(options, NOTIFICATION_OPTIONS, ORDER_NOTIFICATION_DEFAULTS)
        result = await self._write("POST", path, body)
        if write_succeeded(result[path], "POST"):
            await self.delete_order_cache(token)
        return result

    async def post_order_refund(self, token: str, options=None) -> EnvelopeMap:
        path = PATH_ORDER_REFUNDS.format(token=token)
        if not token:
            return self._missing(path, "no_order_token")
        body = resolve_options(options, REFUND_OPTIONS)
        result = await self._write("POST", path, body)
        if write_succeeded(result[path], "POST"):
            await self.delete_order_cache()
        return result

    async def put_order_status(self, token: str, options=None) -> EnvelopeMap:
        path = PATH_ORDER.format(token=token)
        if not token:
            return self._missing(path, "no_order_token")
        body = resolve_options(options, ORDER_STATUS_OPTIONS)
        result = await self._write("PUT", path, body)
        if write_succeeded(result[path], "PUT"):
            await self.delete_order_cache()
        return result

    # Subscriptions

    async def get_subscriptions(self, key="", options=None, ttl=None, force_refresh=False) -> EnvelopeMap:
        options = dict(options or {})
        if options.get("limit") == 0:
            options["limit"] = 100
        return await self._list(
            PATH_SUBSCRIPTIONS, PREFIX_SUBSCRIPTIONS, options, SUBSCRIPTIONS_OPTIONS, PAGED_DEFAULTS,
            key, ttl, force_refresh,
        )

    async def get_subscriptions_items(self, options=None, ttl=None, force_refresh=False) -> EnvelopeMap:
        return await self.get_subscriptions("items", options, ttl, force_refresh)

    async def get_subscription(self, subscription_id: str, ttl=None, force_refresh=False) -> EnvelopeMap:
        return await self._detail(
            PATH_SUBSCRIPTION, PREFIX_SUBSCRIPTIONS_DETAIL, subscription_id, "no_subscription_id",
            ttl, force_refresh, id=subscription_id,
        )

    async def get_subscription_invoices(self, subscription_id: str, ttl=None, force_refresh=False) -> EnvelopeMap:
        return await self._detail(
            PATH_SUBSCRIPTION_INVOICES, PREFIX_SUBSCRIPTIONS_INVOICES, subscription_id, "no_subscription_id",
            ttl, force_refresh, id=subscription_id,
        )

    async def _subscription_action(self, path_template: str, subscription_id: str) -> EnvelopeMap:
        path = path_template.format(id=subscription_id)
        if not subscription_id:
            return self._missing(path, "no_subscription_id")
        # The API expects no body; the id is sent as a placeholder
        result = await self._write("POST", path, {"id": subscription_id})
        if write_succeeded(result[path], "POST"):
            await self.delete_subscription_cache()
        return result

    async def post_subscription_pause(self, subscription_id: str) -> EnvelopeMap:
        return await self._subscription_action(PATH_SUBSCRIPTION_PAUSE, subscription_id)

    async def post_subscription_resume(self, subscription_id: str) -> EnvelopeMap:
        return await self._subscription_action(PATH_SUBSCRIPTION_RESUME, subscription_id)

    async def delete_subscription(self, subscription_id: str) -> EnvelopeMap:
        path = PATH_SUBSCRIPTION.format(id=subscription_id)
        if not subscription_id:
            return self._missing(path, "no_subscription_id")
        result = await self._write("DELETE", path)
        if write_succeeded(result[path], "DELETE"):
            await self.delete_subscription_cache()
        return result

    # Abandoned carts

    async def get_abandoned_carts(self, key="", options=None, ttl=None, force_refresh=False) -> EnvelopeMap:
        return await self._list(
            PATH_CARTS_ABANDONED, PREFIX_CARTS_ABANDONED, options, CARTS_ABANDONED_OPTIONS,
            CARTS_ABANDONED_DEFAULTS, key, ttl, force_refresh,
        )

    async def get_abandoned_carts_items(self, options=None, ttl=None, force_refresh=False) -> EnvelopeMap:
        return await self.get_abandoned_carts("items", options, ttl, force_refresh)

    async def get_abandoned_cart(self, cart_id: str, ttl=None, force_refresh=False) -> EnvelopeMap:
        return await self._detail(
            PATH_CART_ABANDONED, PREFIX_CARTS_ABANDONED_DETAIL, cart_id, "no_cart_id",
            ttl, force_refresh, id=cart_id,
        )

    async def post_abandoned_cart_notification(self, cart_id: str, options=None) -> EnvelopeMap:
        path = PATH_CART_NOTIFICATIONS.format(id=cart_id)
        if not cart_id:
            return self._missing(path, "no_cart_id")
        body = resolve_options(options, NOTIFICATION_OPTIONS, CART_NOTIFICATION_DEFAULTS)
        result = await self._write("POST", path, body)
        if write_succeeded(result[path], "POST"):
            await self.delete_abandoned_carts_cache(cart_id)
        return result

    # Customers

    async def get_customers(self, key="", options=None, ttl=None, force_refresh=False) -> EnvelopeMap:
        return await self._list(
            PATH_CUSTOMERS, PREFIX_CUSTOMERS, options, CUSTOMERS_OPTIONS, PAGED_DEFAULTS, key, ttl, force_refresh,
        )

    async def get_customers_items(self, options=None, ttl=None, force_refresh=False) -> EnvelopeMap:
        return await self.get_customers("items", options, ttl, force_refresh)

    async def get_customer(self, customer_id: str, ttl=None, force_refresh=False) -> EnvelopeMap:
        return await self._detail(
            PATH_CUSTOMER, PREFIX_CUSTOMERS_DETAIL, customer_id, "no_customer_id",
            ttl, force_refresh, id=customer_id,
        )

    async def get_customer_orders(self, customer_id: str, ttl=None, force_refresh=False) -> EnvelopeMap:
        return await self._detail(
            PATH_CUSTOMER_ORDERS, PREFIX_CUSTOMERS_ORDERS, customer_id, "no_customer_id",
            ttl, force_refresh, id=customer_id,
        )

    # Products

    async def get_products(self, key="", options=None, ttl=None, force_refresh=False) -> EnvelopeMap:
        return await self._list(
            PATH_PRODUCTS, PREFIX_PRODUCTS, options, PRODUCTS_OPTIONS, PAGED_DEFAULTS, key, ttl, force_refresh,
        )

    async def get_products_items(self, options=None, ttl=None, force_refresh=False) -> EnvelopeMap:
        return await self.get_products("items", options, ttl, force_refresh)

    async def get_product(self, product_id: str, ttl=None, force_refresh=False) -> EnvelopeMap:
        return await self._detail(
            PATH_PRODUCT, PREFIX_PRODUCTS_DETAIL, product_id, "no_product_id",
            ttl, force_refresh, id=product_id,
        )

    async def get_product_id(self, user_defined_id: str) -> Optional[str]:
        """Look up the Snipcart id of a product by its SKU, bypassing the cache."""
        if not user_defined_id:
            self.logger.warning("Product lookup skipped", reason=MESSAGES["no_userdefined_id"])
            return None
        if not self.transport.has_headers:
            self.logger.warning("Product lookup skipped", reason=MESSAGES["no_headers"])
            return None

        options = resolve_options(
            {"offset": 0, "limit": 1, "orderBy": "", "userDefinedId": user_defined_id},
            PRODUCTS_OPTIONS,
        )
        envelope = await self.transport.get_json(self.transport.url_for(PATH_PRODUCTS, build_query(options)))
        if envelope.http_code != 200 or not isinstance(envelope.content, dict):
            return None
        items = envelope.content.get("items") or []
        return items[0].get("id") if items else None

    async def post_product(self, fetch_url: str) -> EnvelopeMap:
        """Let Snipcart crawl ``fetch_url`` and create the products found there."""
        if not fetch_url:
            return self._missing(PATH_PRODUCTS, "no_product_url")
        result = await self._write("POST", PATH_PRODUCTS, {"fetchUrl": fetch_url})
        if write_succeeded(result[PATH_PRODUCTS], "POST"):
            await self.cache.invalidate_prefix(CACHE_NAMESPACE, PREFIX_PRODUCTS)
        return result

    async def put_product(self, product_id: str, options=None) -> EnvelopeMap:
        path = PATH_PRODUCT.format(id=product_id)
        if not product_id:
            return self._missing(path, "no_product_id")
        result = await self._write("PUT", path, resolve_options(options, PRODUCT_OPTIONS))
        if write_succeeded(result[path], "PUT"):
            await self.cache.invalidate_prefix(CACHE_NAMESPACE, PREFIX_PRODUCTS)
        return result

    async def delete_product(self, product_id: str) -> EnvelopeMap:
        path = PATH_PRODUCT.format(id=product_id)
        if not product_id:
            return self._missing(path, "no_product_id")
        result = await self._write("DELETE", path)
        if write_succeeded(result[path], "DELETE"):
            await self.cache.invalidate_prefix(CACHE_NAMESPACE, PREFIX_PRODUCTS)
        return result

    # Discounts

    async def get_discounts(self, ttl=None, force_refresh=False) -> EnvelopeMap:
        return await self._fetch(
            PATH_DISCOUNTS,
            PREFIX_DISCOUNTS,
            self.transport.url_for(PATH_DISCOUNTS),
            ttl=ttl,
            force_refresh=force_refresh,
        )

    async def get_discount(self, discount_id: str, ttl=None, force_refresh=False) -> EnvelopeMap:
        return await self._detail(
            PATH_DISCOUNT, PREFIX_DISCOUNTS_DETAIL, discount_id, "no_discount_id",
            ttl, force_refresh, id=discount_id,
        )

    async def post_discount(self, options: Dict[str, Any]) -> EnvelopeMap:
        result = await self._write("POST", PATH_DISCOUNTS, resolve_options(options, DISCOUNT_OPTIONS))
        if write_succeeded(result[PATH_DISCOUNTS], "POST"):
            await self.delete_discount_cache()
        return result

    async def put_discount(self, discount_id: str, options: Dict[str, Any]) -> EnvelopeMap:
        path = PATH_DISCOUNT.format(id=discount_id)
        if not discount_id:
            return self._missing(path, "no_discount_id")
        result = await self._write("PUT", path, resolve_options(options, DISCOUNT_UPDATE_OPTIONS))
        if write_succeeded(result[path], "PUT"):
            await self.delete_discount_cache()
        return result

    async def delete_discount(self, discount_id: str) -> EnvelopeMap:
        path = PATH_DISCOUNT.format(id=discount_id)
        if not discount_id:
            return self._missing(path, "no_discount_id")
        result = await self._write("DELETE", path)
        if write_succeeded(result[path], "DELETE"):
            await self.delete_discount_cache()
        return result

    # Shipping

    async def get_shipping_methods(self, ttl=None, force_refresh=False) -> EnvelopeMap:
        return await self._fetch(
            PATH_SHIPPING_METHODS,
            segment_key("ShippingMethods"),
            self.transport.url_for(PATH_SHIPPING_METHODS),
            ttl=ttl,
            force_refresh=force_refresh,
        )

    # Cache maintenance

    async def delete_full_cache(self) -> int:
        return await self.cache.invalidate_namespace(CACHE_NAMESPACE)

    async def delete_order_cache(self, token: str = "") -> None:
        """Delete one order's cached segments, or every order segment."""
        if not token:
            await self.cache.invalidate_prefix(CACHE_NAMESPACE, PREFIX_ORDERS)
            return
        await self.cache.invalidate(CACHE_NAMESPACE, segment_key(PREFIX_ORDERS_DETAIL, token))
        await self.cache.invalidate_prefix(CACHE_NAMESPACE, f"{PREFIX_ORDERS_NOTIFICATIONS}.{_md5(token)}")

    async def delete_subscription_cache(self, subscription_id: str = "") -> None:
        if not subscription_id:
            await self.cache.invalidate_prefix(CACHE_NAMESPACE, PREFIX_SUBSCRIPTIONS)
            return
        await self.cache.invalidate(CACHE_NAMESPACE, segment_key(PREFIX_SUBSCRIPTIONS_DETAIL, subscription_id))

    async def delete_abandoned_carts_cache(self, cart_id: str = "") -> None:
        if not cart_id:
            await self.cache.invalidate_prefix(CACHE_NAMESPACE, PREFIX_CARTS_ABANDONED)
            return
        await self.cache.invalidate(CACHE_NAMESPACE, segment_key(PREFIX_CARTS_ABANDONED_DETAIL, cart_id))

    async def delete_discount_cache(self, discount_id: str = "") -> None:
        if not discount_id:
            await self.cache.invalidate_prefix(CACHE_NAMESPACE, PREFIX_DISCOUNTS)
            return
        await self.cache.invalidate(CACHE_NAMESPACE, segment_key(PREFIX_DISCOUNTS_DETAIL, discount_id))

    # Webhook support

    async def validate_request_token(self, token: str) -> Envelope:
        """Ask Snipcart whether an inbound webhook token is genuine."""
        return await self.transport.get_json(
            self.transport.url_for(PATH_REQUEST_VALIDATION.format(token=quote(token, safe="")))
        )
