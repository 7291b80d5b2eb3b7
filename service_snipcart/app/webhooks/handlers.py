"""
Webhook event handlers.
"""

from abc import ABC, abstractmethod
from decimal import InvalidOperation
from typing import Dict

from shared.logging import get_logger
from service_snipcart.app.settings import SnipcartSettings
from .events import HandlerResult, WebhookEvent, WebhookPayload
from .taxes import TaxCalculator, TaxDefinition


class WebhookHandler(ABC):
    """Handles one kind of webhook event."""

    def __init__(self):
        self.logger = get_logger("snipwire.webhooks")

    @abstractmethod
    async def handle(self, payload: WebhookPayload) -> HandlerResult:
        """Process a validated payload."""


class AcknowledgeHandler(WebhookHandler):
    """Accepts the event without further processing."""

    async def handle(self, payload: WebhookPayload) -> HandlerResult:
        self.logger.debug("Webhook event acknowledged", webhook_event=payload.event.value, mode=payload.mode.value)
        return HandlerResult(status=202)


class TaxesCalculateHandler(WebhookHandler):
    """Answers ``taxes.calculate`` with the configured tax table."""

    def __init__(self, settings: SnipcartSettings):
        super().__init__()
        self.settings = settings
        self.calculator = TaxCalculator(
            [TaxDefinition.from_dict(entry) for entry in settings.taxes],
            taxes_included=settings.taxes_included,
            shipping_taxes_type=settings.shipping_taxes_type,
        )

    async def handle(self, payload: WebhookPayload) -> HandlerResult:
        if self.settings.taxes_provider != "integrated":
            self.logger.info("Integrated taxes provider disabled, skipping calculation")
            return HandlerResult(status=204)

        content = payload.content
        if not isinstance(content, dict) or "items" not in content:
            self.logger.warning("Invalid request data for taxes calculation")
            return HandlerResult(status=400)
        if not isinstance(content.get("shippingInformation") or {}, dict):
            self.logger.warning("Invalid shipping information for taxes calculation")
            return HandlerResult(status=400)

        try:
            digits = self.settings.precision_for(content.get("currency"))
            taxes = self.calculator.calculate(content, digits)
        except (InvalidOperation, TypeError, AttributeError) as e:
            self.logger.warning("Invalid amounts for taxes calculation", error=str(e))
            return HandlerResult(status=400)
        self.logger.debug("Taxes calculated", taxes_count=len(taxes))
        return HandlerResult(status=202, body={"taxes": taxes})


def build_handler_table(settings: SnipcartSettings) -> Dict[WebhookEvent, WebhookHandler]:
    """Map every event to exactly one handler."""
    acknowledge = AcknowledgeHandler()
    table: Dict[WebhookEvent, WebhookHandler] = {event: acknowledge for event in WebhookEvent}
    table[WebhookEvent.TAXES_CALCULATE] = TaxesCalculateHandler(settings)
    return table
