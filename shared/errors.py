"""
Shared error handling for the SnipWire access layer.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel

from shared.logging import request_id_var


class ErrorResponse(BaseModel):
    """Standard error response format."""

    request_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class SnipWireException(Exception):
    """Base exception for SnipWire services."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            request_id=request_id_var.get(),
            code=self.code,
            message=self.message,
            details=self.details
        )


class ConfigurationError(SnipWireException):
    """Missing or invalid configuration."""

    def __init__(self, message: str = "Invalid configuration", details: Optional[Dict[str, Any]] = None):
        super().__init__("CONFIGURATION_ERROR", message, details)


class ValidationError(SnipWireException):
    """Validation-related errors."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class BatchError(SnipWireException):
    """Misuse of the batched request queue."""

    def __init__(self, message: str = "Batch error", details: Optional[Dict[str, Any]] = None):
        super().__init__("BATCH_ERROR", message, details)


class EmptyBatchError(BatchError):
    """Raised when a batch is executed with nothing queued."""

    def __init__(self, message: str = "No requests queued for batch execution", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
