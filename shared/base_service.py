"""
FastAPI service shell shared by SnipWire services.

Provides request-id propagation, request metrics, ``/health``, ``/metrics``
and the mapping of ``SnipWireException`` to JSON error bodies.
"""

import time
from typing import Dict

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

from shared.config import BaseConfig
from shared.errors import SnipWireException
from shared.logging import configure_logging, get_logger, set_request_id, clear_context
from shared.metrics import get_metrics_collector

VERSION = "1.0.0"


class BaseService:
    """Owns the FastAPI app, logging and metrics for one service."""

    def __init__(self, service_name: str, port: int, config: BaseConfig):
        self.service_name = service_name
        self.port = port
        self.config = config
        self.metrics = get_metrics_collector(service_name)
        self._start_time = time.monotonic()

        configure_logging(service_name, config.log_level)
        self.logger = get_logger(f"{service_name}.service")

        self.app = FastAPI(
            title=f"{service_name.title()} Service",
            version=VERSION,
            docs_url="/docs" if config.env == "local" else None,
            redoc_url=None,
        )
        self._setup_middleware()
        self._setup_routes()

    def _setup_middleware(self):
        @self.app.middleware("http")
        async def track_request(request: Request, call_next):
            started = time.monotonic()
            request_id = set_request_id(request.headers.get("X-Request-ID"))
            try:
                response = await call_next(request)
            finally:
                clear_context()
            duration = time.monotonic() - started

            self.metrics.record_http_request(request.method, request.url.path, response.status_code, duration)
            self.logger.info(
                "HTTP request",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round(duration * 1000, 2),
                request_id=request_id,
            )
            response.headers["X-Request-ID"] = request_id
            return response

    def _setup_routes(self):
        @self.app.get("/health")
        async def health_check():
            dependencies = await self._check_dependencies()
            self.metrics.record_health_check("ok")
            return {
                "service": self.service_name,
                "status": "ok",
                "uptime_seconds": round(time.monotonic() - self._start_time, 3),
                "dependencies": dependencies,
                "version": VERSION,
            }

        @self.app.get("/metrics")
        async def metrics_endpoint():
            return Response(content=generate_latest(self.metrics.registry), media_type=CONTENT_TYPE_LATEST)

        @self.app.exception_handler(SnipWireException)
        async def snipwire_exception_handler(request: Request, exc: SnipWireException):
            self.logger.error("SnipWire error", code=exc.code, message=exc.message, details=exc.details)
            self.metrics.record_error(exc.code)
            return JSONResponse(status_code=400, content=exc.to_response().model_dump())

        @self.app.exception_handler(Exception)
        async def general_exception_handler(request: Request, exc: Exception):
            self.logger.error("Unhandled exception", error=str(exc), exc_info=True)
            self.metrics.record_error("INTERNAL_ERROR")
            return JSONResponse(
                status_code=500,
                content={"code": "INTERNAL_ERROR", "message": "Internal server error", "details": {}},
            )

    async def _check_dependencies(self) -> Dict[str, str]:
        """Report dependency state for ``/health``. Override in subclasses."""
        return {}

    def run(self):
        uvicorn.run(self.app, host=self.config.host, port=self.port, log_level=self.config.log_level.lower())
