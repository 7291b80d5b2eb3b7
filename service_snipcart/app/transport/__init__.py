"""
Outbound HTTP transport.

Single and batched requests against the Snipcart API; every outcome is
returned as an ``Envelope`` rather than raised.
"""

from .http_client import Envelope, HttpTransport, RequestDescriptor, RequestOptions

__all__ = [
    "Envelope",
    "HttpTransport",
    "RequestDescriptor",
    "RequestOptions",
]
