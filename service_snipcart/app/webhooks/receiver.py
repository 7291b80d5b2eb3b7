"""
Inbound Snipcart webhook receiver.

Requests pass through a fixed sequence of checks (transport shape, token
presence, handshake with Snipcart, payload schema) before the event is
dispatched. The first failing check decides the response status and no
handler runs.
"""

import json
from typing import Any, Dict, List, Optional, TYPE_CHECKING

from shared.errors import ConfigurationError
from shared.logging import get_logger, set_event_context
from .events import (
    HandlerResult,
    ReceiverStage,
    WebhookEvent,
    WebhookMode,
    WebhookPayload,
    WebhookResponse,
)
from .handlers import WebhookHandler

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from service_snipcart.app.adapters.snipcart_client import SnipcartGateway
    from shared.metrics import MetricsCollector


RESPONSE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, max-age=0",
    "Pragma": "no-cache",
}
JSON_CONTENT_TYPE = "application/json; charset=utf-8"


class WebhookRejected(Exception):
    """A validation stage failed."""

    def __init__(self, stage: ReceiverStage, status: int, reason: str):
        self.stage = stage
        self.status = status
        self.reason = reason
        super().__init__(reason)


class WebhookReceiver:
    """Validates inbound webhook requests and dispatches them to handlers."""

    def __init__(
        self,
        gateway: "SnipcartGateway",
        handlers: Dict[WebhookEvent, WebhookHandler],
        *,
        debug: bool = False,
        metrics: Optional["MetricsCollector"] = None,
    ):
        missing = [event.value for event in WebhookEvent if event not in handlers]
        if missing:
            raise ConfigurationError("Webhook events without handler", details={"events": missing})
        self.gateway = gateway
        self.handlers = handlers
        self.debug = debug
        self.metrics = metrics
        self.logger = get_logger("snipwire.webhooks")

    async def process(
        self,
        method: str,
        content_type: Optional[str],
        token: Optional[str],
        raw_body: bytes,
    ) -> WebhookResponse:
        """Run every stage in order and build the response.

        ``token`` is None when the request-token header is absent.
        """
        event_name = "unknown"
        trail = [ReceiverStage.ENTRY]
        try:
            trail.append(ReceiverStage.METHOD_CONTENTTYPE_CHECK)
            self._check_method_and_content_type(method, content_type)
            trail.append(ReceiverStage.TOKEN_PRESENT_CHECK)
            self._check_token_present(token)
            trail.append(ReceiverStage.HANDSHAKE_CHECK)
            await self._check_handshake(token)
            trail.append(ReceiverStage.PAYLOAD_SCHEMA_CHECK)
            payload = self._parse_payload(raw_body)
            event_name = payload.event.value
            set_event_context(event_name)
            trail.append(ReceiverStage.EVENT_DISPATCH)
            result = await self.handlers[payload.event].handle(payload)
        except WebhookRejected as rejected:
            self.logger.warning(
                "Webhook request rejected",
                stage=rejected.stage.value,
                status_code=rejected.status,
                reason=rejected.reason,
            )
            trail.append(ReceiverStage.RESPONSE_EMITTED)
            response = self._respond(HandlerResult(status=rejected.status), rejected.stage, trail)
        else:
            trail.append(ReceiverStage.RESPONSE_EMITTED)
            response = self._respond(result, ReceiverStage.RESPONSE_EMITTED, trail)
        finally:
            set_event_context(None)

        if self.metrics:
            self.metrics.increment_counter(
                "webhook_events_total", event=event_name, status_code=str(response.status)
            )
        if self.debug:
            self.logger.info(
                "Webhook response",
                webhook_event=event_name,
                status_code=response.status,
                body=response.body,
            )
        return response

    def _check_method_and_content_type(self, method: str, content_type: Optional[str]):
        if (method or "").upper() != "POST":
            raise WebhookRejected(ReceiverStage.METHOD_CONTENTTYPE_CHECK, 404, "Invalid request method")
        if "application/json" not in (content_type or "").lower():
            raise WebhookRejected(ReceiverStage.METHOD_CONTENTTYPE_CHECK, 404, "Invalid content type")

    def _check_token_present(self, token: Optional[str]):
        # Presence only; an empty token is left to the handshake
        if token is None:
            raise WebhookRejected(ReceiverStage.TOKEN_PRESENT_CHECK, 404, "Missing request token header")

    async def _check_handshake(self, token: str):
        if not self.gateway.transport.has_headers:
            raise WebhookRejected(ReceiverStage.HANDSHAKE_CHECK, 404, "Missing request headers for Snipcart REST connection")

        envelope = await self.gateway.validate_request_token(token)
        if envelope.error or envelope.http_code != 200:
            raise WebhookRejected(
                ReceiverStage.HANDSHAKE_CHECK,
                404,
                f"Request token validation failed: {envelope.error or envelope.http_code}",
            )
        content = envelope.content
        if not isinstance(content, dict):
            raise WebhookRejected(ReceiverStage.HANDSHAKE_CHECK, 404, "Invalid request token validation response")
        if content.get("token") != token:
            raise WebhookRejected(ReceiverStage.HANDSHAKE_CHECK, 404, "Request token mismatch")

    def _parse_payload(self, raw_body: bytes) -> WebhookPayload:
        stage = ReceiverStage.PAYLOAD_SCHEMA_CHECK
        try:
            data: Any = json.loads(raw_body) if raw_body else None
        except ValueError:
            raise WebhookRejected(stage, 400, "Invalid JSON payload")
        if not isinstance(data, dict):
            raise WebhookRejected(stage, 400, "Payload is not a JSON object")

        event = WebhookEvent.parse(data.get("eventName"))
        if event is None:
            raise WebhookRejected(stage, 400, f"Unknown event: {data.get('eventName')!r}")
        mode = WebhookMode.parse(data.get("mode"))
        if mode is None:
            raise WebhookRejected(stage, 400, f"Invalid mode: {data.get('mode')!r}")
        if "content" not in data:
            raise WebhookRejected(stage, 400, "Missing content")

        return WebhookPayload(event=event, mode=mode, content=data["content"], raw=data)

    @staticmethod
    def _respond(result: HandlerResult, stage: ReceiverStage, trail: List[ReceiverStage]) -> WebhookResponse:
        headers = dict(RESPONSE_HEADERS)
        if result.body is not None:
            headers["Content-Type"] = JSON_CONTENT_TYPE
        return WebhookResponse(
            status=result.status,
            body=result.body,
            headers=headers,
            stage=stage,
            trail=tuple(trail),
        )
