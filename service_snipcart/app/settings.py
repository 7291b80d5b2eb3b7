"""
SnipWire service configuration.
"""

from typing import Any, Dict, List, Optional

from pydantic import Field

from shared.config import BaseConfig


DEFAULT_API_ENDPOINT = "https://app.snipcart.com/api/"
CACHE_NAMESPACE = "SnipWire"

# Shipping tax modes
SHIPPING_TAXES_NONE = "none"
SHIPPING_TAXES_FIXED = "fixed"
SHIPPING_TAXES_HIGHEST = "highest"
SHIPPING_TAXES_SPLIT = "split"


def default_taxes() -> List[Dict[str, Any]]:
    """Built-in tax table used until one is configured."""
    return [
        {"name": "20% VAT", "number_for_invoice": "", "rate": "0.20", "applies_on_shipping": False},
        {"name": "10% VAT", "number_for_invoice": "", "rate": "0.10", "applies_on_shipping": False},
        {"name": "20% VAT", "number_for_invoice": "", "rate": "0.20", "applies_on_shipping": True},
    ]


class SnipcartSettings(BaseConfig):
    """Settings for the Snipcart integration gateway."""

    service_name: str = Field(default="snipwire")
    port: int = Field(default=8020)

    # Credentials
    snipcart_environment: str = Field(default="test")
    api_key_secret: str = Field(default="")
    api_key_secret_test: str = Field(default="")
    api_endpoint: str = Field(default=DEFAULT_API_ENDPOINT)

    # Transport
    concurrent_batches: bool = Field(default=True)

    # Cache
    cache_expire_default: int = Field(default=900)

    # Webhooks
    webhooks_endpoint: str = Field(default="/webhooks/snipcart")
    debug: bool = Field(default=False)

    # Taxes
    taxes_provider: str = Field(default="integrated")
    taxes_included: bool = Field(default=True)
    shipping_taxes_type: str = Field(default=SHIPPING_TAXES_HIGHEST)
    taxes: List[Dict[str, Any]] = Field(default_factory=default_taxes)
    currency_precision: Dict[str, int] = Field(default_factory=dict)

    @property
    def is_live(self) -> bool:
        return self.snipcart_environment.lower() == "live"

    @property
    def active_secret_key(self) -> str:
        """Secret key for the configured Snipcart environment."""
        return self.api_key_secret if self.is_live else self.api_key_secret_test

    @property
    def transport_defaults(self) -> Dict[str, Any]:
        return {
            "connect_timeout": self.request_connect_timeout,
            "timeout": self.request_timeout,
            "user_agent": self.user_agent,
            "proxy": self.proxy,
        }

    def precision_for(self, currency: Optional[str]) -> int:
        """Number of decimal digits used for amounts in a currency."""
        if not currency:
            return 2
        return self.currency_precision.get(currency.lower(), 2)
