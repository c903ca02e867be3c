"""
Shared error handling for the News Relay.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel

from shared.logging import get_request_id


class ErrorResponse(BaseModel):
    """Standard error response format."""

    request_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class RelayException(Exception):
    """Base exception for relay services."""

    status_code: int = 500

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None,
    ):
        self.code = code
        self.message = message
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            request_id=get_request_id(),
            code=self.code,
            message=self.message,
            details=self.details
        )


class InvalidRequestError(RelayException):
    """Missing or malformed client input."""

    status_code = 400

    def __init__(self, message: str = "Invalid request", details: Optional[Dict[str, Any]] = None):
        super().__init__("INVALID_REQUEST", message, details)


class ConfigurationError(RelayException):
    """A required server-side setting (e.g. an API credential) is missing."""

    def __init__(self, message: str = "Service is not configured", details: Optional[Dict[str, Any]] = None):
        super().__init__("CONFIGURATION_ERROR", message, details)


class UpstreamFailureError(RelayException):
    """Non-success status or transport error from an upstream dependency."""

    code = "UPSTREAM_FAILURE"

    def __init__(
        self,
        service: str,
        message: str = "Upstream service error",
        upstream_status: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.service = service
        self.upstream_status = upstream_status
        details = dict(details or {})
        if upstream_status is not None:
            details.setdefault("upstream_status", upstream_status)
        super().__init__(type(self).code, f"{service}: {message}", details)


class FetchFailedError(UpstreamFailureError):
    """The RSS source could not be fetched."""

    code = "FETCH_FAILED"


class MalformedUpstreamResponseError(UpstreamFailureError):
    """Upstream answered successfully but without extractable text."""

    code = "MALFORMED_UPSTREAM_RESPONSE"


class FragmentSuppressedError(RelayException):
    """A single streamed fragment could not be decoded; the stream goes on."""

    def __init__(self, message: str = "Fragment could not be decoded", details: Optional[Dict[str, Any]] = None):
        super().__init__("FRAGMENT_SUPPRESSED", message, details)


class StreamLimitError(RelayException):
    """Too many concurrent streaming sessions."""

    status_code = 503

    def __init__(self, message: str = "Stream session limit exceeded", details: Optional[Dict[str, Any]] = None):
        super().__init__("STREAM_LIMIT_EXCEEDED", message, details)
