"""
SnipWire service: Snipcart webhook endpoint and gateway operations.
"""

import json
from typing import Dict, Optional

import httpx
from fastapi import Request, Response
from fastapi.responses import JSONResponse

from shared.base_service import BaseService
from service_snipcart.app.adapters.snipcart_client import SnipcartGateway
from service_snipcart.app.caching.backends import CacheBackend, create_backend
from service_snipcart.app.caching.response_cache import ResponseCache
from service_snipcart.app.settings import SnipcartSettings
from service_snipcart.app.transport.http_client import HttpTransport
from service_snipcart.app.webhooks.events import REQUEST_TOKEN_HEADER
from service_snipcart.app.webhooks.handlers import build_handler_table
from service_snipcart.app.webhooks.receiver import WebhookReceiver


class SnipWireService(BaseService):
    """Snipcart integration service implementation."""

    def __init__(
        self,
        settings: Optional[SnipcartSettings] = None,
        *,
        cache_backend: Optional[CacheBackend] = None,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = settings if settings is not None else SnipcartSettings()
        super().__init__(settings.service_name, settings.port, settings)
        self.settings = settings

        self.transport = HttpTransport(
            settings.active_secret_key,
            api_endpoint=settings.api_endpoint,
            defaults=settings.transport_defaults,
            concurrent=settings.concurrent_batches,
            metrics=self.metrics,
            transport=http_transport,
        )
        self.cache = ResponseCache(
            cache_backend if cache_backend is not None else create_backend(settings.cache_backend, settings.redis_url),
            metrics=self.metrics,
        )
        self.gateway = SnipcartGateway(self.transport, self.cache, settings)
        self.receiver = WebhookReceiver(
            self.gateway,
            build_handler_table(settings),
            debug=settings.debug,
            metrics=self.metrics,
        )

        if not self.transport.has_headers:
            self.logger.warning(
                "No Snipcart secret key configured",
                environment=settings.snipcart_environment,
            )

        self._setup_snipwire_routes()

        @self.app.on_event("shutdown")
        async def _shutdown():
            await self.cache.close()

        self.app.state.snipwire_service = self

    def _setup_snipwire_routes(self):
        """Set up webhook and operational routes."""

        @self.app.api_route(
            self.settings.webhooks_endpoint,
            methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
            include_in_schema=False,
        )
        async def snipcart_webhook(request: Request):
            """Receive a Snipcart webhook."""
            result = await self.receiver.process(
                request.method,
                request.headers.get("content-type"),
                request.headers.get(REQUEST_TOKEN_HEADER),
                await request.body(),
            )
            content = json.dumps(result.body) if result.body is not None else None
            return Response(content=content, status_code=result.status, headers=result.headers)

        @self.app.get("/api/v1/connection")
        async def connection_test():
            """Check the configured credentials against Snipcart."""
            ok, error = await self.gateway.test_connection()
            body = {
                "ok": ok,
                "error": error,
                "environment": self.settings.snipcart_environment,
            }
            return JSONResponse(status_code=200 if ok else 502, content=body)

        @self.app.delete("/api/v1/cache")
        async def reset_cache():
            """Drop every cached Snipcart response."""
            removed = await self.gateway.delete_full_cache()
            self.metrics.record_business_event("cache_reset")
            return {"removed": removed}

    async def _check_dependencies(self) -> Dict[str, str]:
        return {
            "cache": self.cache.backend.name,
            "snipcart": "configured" if self.transport.has_headers else "missing_credentials",
        }


def create_app(settings: Optional[SnipcartSettings] = None):
    """Create FastAPI application."""
    service = SnipWireService(settings)
    return service.app


if __name__ == "__main__":
    service = SnipWireService()
    service.run()
