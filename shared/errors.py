"""
Shared error handling for the User Access service.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel
from opentelemetry import trace


class ErrorResponse(BaseModel):
    """Standard error response format."""

    trace_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class AccessLayerException(Exception):
    """Base exception for User Access services."""

    status_code = 400

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        # Get trace ID from current span
        trace_id = None
        current_span = trace.get_current_span()
        if current_span and current_span.is_recording():
            span_context = current_span.get_span_context()
            if span_context.trace_id != 0:
                trace_id = f"{span_context.trace_id:032x}"

        return ErrorResponse(
            trace_id=trace_id,
            code=self.code,
            message=self.message,
            details=self.details
        )


class ValidationError(AccessLayerException):
    """Validation-related errors."""

    status_code = 422

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class NotFoundError(AccessLayerException):
    """Requested record is absent from every backing store."""

    status_code = 404

    def __init__(self, resource: str, identity: str, details: Optional[Dict[str, Any]] = None):
        self.identity = identity
        details = {"resource": resource, "id": identity, **(details or {})}
        super().__init__("NOT_FOUND", f"{resource} with ID {identity} not found", details)


class TransientBackendError(AccessLayerException):
    """A backend failed in a way that may clear up on its own."""

    status_code = 503

    def __init__(self, backend: str, message: str = "Backend unavailable", details: Optional[Dict[str, Any]] = None):
        self.backend = backend
        super().__init__("TRANSIENT_BACKEND_ERROR", f"{backend}: {message}", details)


class InternalError(AccessLayerException):
    """Generic internal failure surfaced to callers without retry."""

    status_code = 500

    def __init__(self, message: str = "Internal error", details: Optional[Dict[str, Any]] = None,
                 code: str = "INTERNAL_ERROR"):
        super().__init__(code, message, details)


class StoreError(InternalError):
    """Durable store failure other than a missing row."""

    def __init__(self, message: str = "Store error", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, code="STORE_ERROR")
