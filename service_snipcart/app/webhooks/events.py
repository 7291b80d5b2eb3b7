"""
Webhook event types and payload records.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple


REQUEST_TOKEN_HEADER = "X-Snipcart-RequestToken"


class WebhookEvent(str, Enum):
    """Event names sent by Snipcart."""

    ORDER_COMPLETED = "order.completed"
    ORDER_STATUS_CHANGED = "order.status.changed"
    ORDER_PAYMENT_STATUS_CHANGED = "order.paymentStatus.changed"
    ORDER_TRACKING_NUMBER_CHANGED = "order.trackingNumber.changed"
    SUBSCRIPTION_CREATED = "subscription.created"
    SUBSCRIPTION_CANCELLED = "subscription.cancelled"
    SUBSCRIPTION_PAUSED = "subscription.paused"
    SUBSCRIPTION_RESUMED = "subscription.resumed"
    SUBSCRIPTION_INVOICE_CREATED = "subscription.invoice.created"
    SHIPPINGRATES_FETCH = "shippingrates.fetch"
    TAXES_CALCULATE = "taxes.calculate"
    CUSTOMER_UPDATED = "customauth:customer_updated"

    @classmethod
    def parse(cls, value: Any) -> Optional["WebhookEvent"]:
        try:
            return cls(value)
        except ValueError:
            return None


class WebhookMode(str, Enum):
    LIVE = "Live"
    TEST = "Test"

    @classmethod
    def parse(cls, value: Any) -> Optional["WebhookMode"]:
        try:
            return cls(value)
        except ValueError:
            return None


class ReceiverStage(str, Enum):
    """Validation stages, in the order they run."""

    ENTRY = "entry"
    METHOD_CONTENTTYPE_CHECK = "method_contenttype_check"
    TOKEN_PRESENT_CHECK = "token_present_check"
    HANDSHAKE_CHECK = "handshake_check"
    PAYLOAD_SCHEMA_CHECK = "payload_schema_check"
    EVENT_DISPATCH = "event_dispatch"
    RESPONSE_EMITTED = "response_emitted"


@dataclass(frozen=True)
class WebhookPayload:
    """A schema-checked webhook payload."""

    event: WebhookEvent
    mode: WebhookMode
    content: Any
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class HandlerResult:
    """Status and optional JSON body produced by a handler."""

    status: int
    body: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class WebhookResponse:
    """What the receiver sends back to Snipcart.

    ``stage`` is where processing ended; ``trail`` lists every stage entered.
    """

    status: int
    body: Optional[Dict[str, Any]] = None
    headers: Dict[str, str] = field(default_factory=dict)
    stage: ReceiverStage = ReceiverStage.RESPONSE_EMITTED
    trail: Tuple[ReceiverStage, ...] = ()
