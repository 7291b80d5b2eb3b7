"""
Adapters package for the SnipWire service.

Contains the Snipcart REST gateway. Adapters encapsulate resource paths,
option allow-lists and cache segment naming.
"""

from .snipcart_client import SnipcartGateway

__all__ = ["SnipcartGateway"]
