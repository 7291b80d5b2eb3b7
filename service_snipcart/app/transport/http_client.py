"""
HTTP transport for the Snipcart REST API.

Every outbound call, single or batched, resolves to an ``Envelope``. Network
failures and HTTP errors are captured in the envelope; the only exception
raised to callers is ``EmptyBatchError`` when a batch is executed with
nothing queued.
"""

from __future__ import annotations

import asyncio
import base64
import json
import time
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Any, Dict, Iterable, List, Optional, Union

import httpx

from shared.errors import EmptyBatchError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from service_snipcart.app.settings import DEFAULT_API_ENDPOINT


ALLOWED_OPTION_KEYS = ("connect_timeout", "timeout", "user_agent", "proxy")
JSON_CONTENT_TYPE = "application/json; charset=utf-8"


def status_text(code: int) -> str:
    """Return ``"<code> <reason phrase>"`` for an HTTP status code."""
    try:
        phrase = HTTPStatus(code).phrase
    except ValueError:
        phrase = "Unknown Status"
    return f"{code} {phrase}"


def decode_json(content: Any) -> Any:
    """Decode a JSON body; undecodable or empty bodies decode to None."""
    if content is None or isinstance(content, (dict, list)):
        return content
    if isinstance(content, bytes):
        content = content.decode("utf-8", errors="replace")
    if not content:
        return None
    try:
        return json.loads(content)
    except ValueError:
        return None


@dataclass(frozen=True)
class RequestOptions:
    """Per-request transport options."""

    connect_timeout: float = 10.0
    timeout: float = 30.0
    user_agent: str = "SnipWire/1.0"
    proxy: Optional[str] = None

    @classmethod
    def sanitize(cls, options: Optional[Dict[str, Any]], defaults: "RequestOptions") -> "RequestOptions":
        """Keep the allow-listed keys only, falling back to ``defaults``."""
        merged = defaults.to_dict()
        for key, value in (options or {}).items():
            if key in ALLOWED_OPTION_KEYS and value is not None:
                merged[key] = value
        return cls(**merged)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "connect_timeout": self.connect_timeout,
            "timeout": self.timeout,
            "user_agent": self.user_agent,
            "proxy": self.proxy,
        }


@dataclass(frozen=True)
class RequestDescriptor:
    """A single outbound request."""

    url: str
    method: str = "GET"
    headers: Dict[str, str] = field(default_factory=dict)
    body: Optional[Any] = None
    options: Optional[RequestOptions] = None


@dataclass(frozen=True)
class Envelope:
    """Normalised outcome of a remote call."""

    content: Any
    http_code: int
    error: str = ""

    @property
    def ok(self) -> bool:
        return not self.error and 200 <= self.http_code < 300

    def with_content(self, content: Any) -> "Envelope":
        return Envelope(content=content, http_code=self.http_code, error=self.error)

    def to_dict(self) -> Dict[str, Any]:
        return {"content": self.content, "http_code": self.http_code, "error": self.error}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Envelope":
        return cls(
            content=data.get("content"),
            http_code=int(data.get("http_code", 0)),
            error=data.get("error", ""),
        )

    @classmethod
    def failure(cls, error: str, http_code: int = 0) -> "Envelope":
        return cls(content=None, http_code=http_code, error=error)


class HttpTransport:
    """Issues single and batched requests against the Snipcart API."""

    def __init__(
        self,
        secret_key: str,
        *,
        api_endpoint: str = DEFAULT_API_ENDPOINT,
        defaults: Optional[Dict[str, Any]] = None,
        concurrent: bool = True,
        metrics: Optional[MetricsCollector] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_endpoint = api_endpoint if api_endpoint.endswith("/") else api_endpoint + "/"
        self.defaults = RequestOptions.sanitize(defaults, RequestOptions())
        self.concurrent = concurrent
        self.metrics = metrics
        self.logger = get_logger("snipwire.transport")
        self.headers = self._build_headers(secret_key)
        self._transport = transport
        self._queue: Dict[str, RequestDescriptor] = {}

    @staticmethod
    def _build_headers(secret_key: str) -> Dict[str, str]:
        if not secret_key:
            return {}
        token = base64.b64encode(f"{secret_key}:".encode("utf-8")).decode("ascii")
        return {
            "Cache-Control": "no-cache",
            "Authorization": f"Basic {token}",
            "Accept": "application/json",
        }

    @property
    def has_headers(self) -> bool:
        return bool(self.headers)

    def url_for(self, path: str, query: str = "") -> str:
        url = self.api_endpoint + path.lstrip("/")
        return f"{url}?{query}" if query else url

    def describe(
        self,
        url: str,
        method: str = "GET",
        body: Optional[Any] = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> RequestDescriptor:
        """Build a descriptor carrying sanitized options."""
        headers = {"Content-Type": JSON_CONTENT_TYPE} if body is not None else {}
        return RequestDescriptor(
            url=url,
            method=method.upper(),
            headers=headers,
            body=body,
            options=RequestOptions.sanitize(options, self.defaults),
        )

    async def do_request(self, descriptor: RequestDescriptor) -> Envelope:
        """Perform one request and normalise the outcome."""
        options = descriptor.options or self.defaults
        headers = dict(self.headers)
        headers["User-Agent"] = options.user_agent
        headers.update(descriptor.headers)

        start_time = time.time()
        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(options.timeout, connect=options.connect_timeout),
                proxy=options.proxy,
                transport=self._transport,
            ) as client:
                response = await client.request(
                    descriptor.method,
                    descriptor.url,
                    headers=headers,
                    json=descriptor.body,
                )
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            error = str(e) or e.__class__.__name__
            self.logger.warning(
                "Outbound request failed",
                method=descriptor.method,
                url=descriptor.url,
                error=error,
            )
            self._record(descriptor.method, 0, start_time)
            return Envelope.failure(error)

        self._record(descriptor.method, response.status_code, start_time)
        error = "" if response.is_success else status_text(response.status_code)
        if error:
            self.logger.info(
                "Outbound request returned error status",
                method=descriptor.method,
                url=descriptor.url,
                status_code=response.status_code,
            )
        else:
            self.logger.debug(
                "Outbound request completed",
                method=descriptor.method,
                url=descriptor.url,
                status_code=response.status_code,
            )
        return Envelope(content=response.text, http_code=response.status_code, error=error)

    def _record(self, method: str, status_code: int, start_time: float):
        if self.metrics:
            self.metrics.record_outbound_request(method, status_code, time.time() - start_time)

    async def get_json(self, url: str, options: Optional[Dict[str, Any]] = None) -> Envelope:
        """GET a URL and decode its JSON body."""
        envelope = await self.do_request(self.describe(url, options=options))
        return envelope.with_content(decode_json(envelope.content))

    async def send_json(
        self,
        url: str,
        method: str,
        body: Optional[Any] = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> Envelope:
        """Send a write request with a JSON body and decode the reply."""
        envelope = await self.do_request(self.describe(url, method=method, body=body, options=options))
        return envelope.with_content(decode_json(envelope.content))

    # Batches

    def enqueue(
        self,
        requests: Union[str, RequestDescriptor, Iterable[Union[str, RequestDescriptor]]],
        options: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Queue one or more requests for the next batch.

        Requests are keyed by URL; queueing the same URL twice keeps the last.
        """
        if isinstance(requests, (str, RequestDescriptor)):
            requests = [requests]
        for request in requests:
            if isinstance(request, str):
                request = self.describe(request, options=options)
            self._queue[request.url] = request

    @property
    def queued(self) -> List[str]:
        return list(self._queue)

    async def execute_batch(self) -> Dict[str, Envelope]:
        """Run every queued request and return one envelope per URL."""
        if not self._queue:
            raise EmptyBatchError()

        queued = list(self._queue.values())
        self._queue = {}

        self.logger.debug("Executing batch", size=len(queued), concurrent=self.concurrent)

        if self.concurrent:
            outcomes = await asyncio.gather(
                *(self.do_request(descriptor) for descriptor in queued),
                return_exceptions=True,
            )
        else:
            outcomes = []
            for descriptor in queued:
                try:
                    outcomes.append(await self.do_request(descriptor))
                except Exception as e:
                    outcomes.append(e)

        results: Dict[str, Envelope] = {}
        for descriptor, outcome in zip(queued, outcomes):
            if isinstance(outcome, BaseException):
                self.logger.error("Batched request raised", url=descriptor.url, error=str(outcome))
                outcome = Envelope.failure(str(outcome) or outcome.__class__.__name__)
            results[descriptor.url] = outcome
        return results

    async def execute_batch_json(self) -> Dict[str, Envelope]:
        """Run the batch and decode every body as JSON."""
        results = await self.execute_batch()
        return {url: envelope.with_content(decode_json(envelope.content)) for url, envelope in results.items()}
