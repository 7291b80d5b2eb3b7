"""
Tax calculation for the ``taxes.calculate`` webhook.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Iterable, List, Optional

from shared.logging import get_logger
from service_snipcart.app.settings import (
    SHIPPING_TAXES_FIXED,
    SHIPPING_TAXES_HIGHEST,
    SHIPPING_TAXES_NONE,
    SHIPPING_TAXES_SPLIT,
)


SHIPPING_TAXES_TYPES = (SHIPPING_TAXES_NONE, SHIPPING_TAXES_FIXED, SHIPPING_TAXES_HIGHEST, SHIPPING_TAXES_SPLIT)


@dataclass(frozen=True)
class TaxDefinition:
    """A configured tax rate."""

    name: str
    rate: Decimal
    number_for_invoice: str = ""
    applies_on_shipping: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TaxDefinition":
        return cls(
            name=str(data["name"]),
            rate=Decimal(str(data.get("rate", "0"))),
            number_for_invoice=str(data.get("number_for_invoice") or data.get("numberForInvoice") or ""),
            applies_on_shipping=bool(data.get("applies_on_shipping") or data.get("appliesOnShipping")),
        )


def calculate_tax(value: Any, rate: Any, included_in_price: bool = True, digits: int = 2) -> str:
    """Tax amount for ``value`` as a fixed-point string.

    When the tax is included in the price it is extracted from ``value``,
    otherwise it is added on top.
    """
    value = Decimal(str(value))
    rate = Decimal(str(rate))
    if included_in_price:
        tax = value - value / (1 + rate)
    else:
        tax = value * rate
    quantum = Decimal(1).scaleb(-digits)
    return str(tax.quantize(quantum, rounding=ROUND_HALF_UP))


def _round2(value: Decimal) -> Decimal:
    return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


class TaxCalculator:
    """Builds the ``{"taxes": [...]}`` reply from a cart payload."""

    def __init__(
        self,
        definitions: Iterable[TaxDefinition],
        *,
        taxes_included: bool = True,
        shipping_taxes_type: str = SHIPPING_TAXES_HIGHEST,
    ):
        definitions = list(definitions)
        self.product_taxes = [d for d in definitions if not d.applies_on_shipping]
        self.shipping_taxes = [d for d in definitions if d.applies_on_shipping]
        self.taxes_included = taxes_included
        if shipping_taxes_type not in SHIPPING_TAXES_TYPES:
            shipping_taxes_type = SHIPPING_TAXES_HIGHEST
        self.shipping_taxes_type = shipping_taxes_type
        self.logger = get_logger("snipwire.taxes")

    @property
    def name_prefix(self) -> str:
        return "incl. " if self.taxes_included else "+ "

    def product_tax(self, name: str) -> Optional[TaxDefinition]:
        for definition in self.product_taxes:
            if definition.name == name:
                return definition
        return None

    def _entry(self, definition: TaxDefinition, value: Decimal, digits: int, suffix: str = "") -> Dict[str, Any]:
        return {
            "name": f"{self.name_prefix}{definition.name}{suffix}",
            "amount": calculate_tax(value, definition.rate, self.taxes_included, digits),
            "rate": float(definition.rate),
            "numberForInvoice": definition.number_for_invoice,
            "includedInPrice": self.taxes_included,
        }

    @staticmethod
    def group_items(items: Iterable[Dict[str, Any]]) -> Dict[str, Decimal]:
        """Sum pre-tax totals of taxable items by their first tax name."""
        sums: Dict[str, Decimal] = {}
        for item in items:
            if not isinstance(item, dict) or not item.get("taxable"):
                continue
            taxes = item.get("taxes") or []
            if not taxes:
                continue
            # Only one tax per item is supported
            name = taxes[0]
            total = Decimal(str(item.get("totalPriceWithoutTaxes") or 0))
            sums[name] = sums.get(name, Decimal(0)) + total
        return sums

    def calculate(self, content: Dict[str, Any], digits: int = 2) -> List[Dict[str, Any]]:
        items = content["items"] or []
        sums = self.group_items(items)

        taxes: List[Dict[str, Any]] = []
        highest: Optional[TaxDefinition] = None
        for name, value in sums.items():
            definition = self.product_tax(name)
            if definition is None:
                self.logger.warning("Unknown tax name in cart", tax_name=name)
                continue
            taxes.append(self._entry(definition, value, digits))
            if highest is None or definition.rate > highest.rate:
                highest = definition

        if self.shipping_taxes_type != SHIPPING_TAXES_NONE:
            taxes.extend(self._shipping_taxes(content, sums, highest, digits))
        return taxes

    def _shipping_taxes(
        self,
        content: Dict[str, Any],
        sums: Dict[str, Decimal],
        highest: Optional[TaxDefinition],
        digits: int,
    ) -> List[Dict[str, Any]]:
        shipping = content.get("shippingInformation") or {}
        fees = Decimal(str(shipping.get("fees") or 0))
        if fees <= 0:
            return []
        method = shipping.get("method")
        suffix = f" ({method})" if method else ""

        if self.shipping_taxes_type == SHIPPING_TAXES_FIXED:
            if not self.shipping_taxes:
                return []
            return [self._entry(self.shipping_taxes[0], fees, digits, suffix)]

        if self.shipping_taxes_type == SHIPPING_TAXES_HIGHEST:
            if highest is None:
                return []
            return [self._entry(highest, fees, digits, suffix)]

        # Split shipping fees proportionally to each tax's share of the items total
        items_total = Decimal(str(content.get("itemsTotal") or 0)) or sum(sums.values(), Decimal(0))
        if not items_total:
            return []
        entries = []
        for name, value in sums.items():
            definition = self.product_tax(name)
            if definition is None:
                continue
            ratio = _round2(value / items_total)
            entries.append(self._entry(definition, _round2(fees * ratio), digits, suffix))
        return entries
