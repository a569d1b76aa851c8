"""Unified API response format and error codes."""

from typing import Any
from datetime import datetime
from uuid import uuid4

from pydantic import BaseModel, Field

from api.middleware import get_request_id
from utils.timezone import now_utc


class APIError(BaseModel):
    """Error details in API response."""

    code: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Human-readable error message")


class APIMeta(BaseModel):
    """Metadata included in every API response."""

    timestamp: datetime = Field(..., description="Response timestamp (UTC)")
    request_id: str = Field(..., description="Unique request identifier for tracing")


class APIResponse(BaseModel):
    """
    Unified response format for all API endpoints.

    Every endpoint returns this structure, making client parsing predictable.
    """

    success: bool
    data: Any | None = None
    error: APIError | None = None
    meta: APIMeta


def _meta() -> APIMeta:
    return APIMeta(
        timestamp=now_utc(),
        request_id=get_request_id() or str(uuid4()),
    )


def success_response(data: Any) -> APIResponse:
    """Create a success response."""
    return APIResponse(success=True, data=data, error=None, meta=_meta())


def error_response(code: str, message: str) -> APIResponse:
    """Create an error response."""
    return APIResponse(
        success=False,
        data=None,
        error=APIError(code=code, message=message),
        meta=_meta(),
    )


class ErrorCodes:
    """
    Standard error codes for consistent error handling.

    Domain errors carry their own code (core.errors); the ones listed here
    are the codes clients should expect to branch on.
    """

    # Authentication & Authorization
    NOT_AUTHENTICATED = "NOT_AUTHENTICATED"
    SESSION_EXPIRED = "SESSION_EXPIRED"
    INVALID_TOKEN = "INVALID_TOKEN"
    FORBIDDEN = "FORBIDDEN"

    # Resource Errors
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"

    # Validation Errors
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_REQUEST = "INVALID_REQUEST"

    # Request Lifecycle
    INVALID_STATUS_TRANSITION = "INVALID_STATUS_TRANSITION"
    REQUEST_ALREADY_CLAIMED = "REQUEST_ALREADY_CLAIMED"
    REQUEST_NOT_ACTIVE = "REQUEST_NOT_ACTIVE"
    REQUEST_STILL_OPEN = "REQUEST_STILL_OPEN"
    ALREADY_COMPLETED = "ALREADY_COMPLETED"

    # Ledger
    LEDGER_ITEM_DUPLICATE = "LEDGER_ITEM_DUPLICATE"
    LEDGER_ITEM_FINISHED = "LEDGER_ITEM_FINISHED"
    LEDGER_INCOMPLETE = "LEDGER_INCOMPLETE"

    # Billing
    UNPAID_INVOICE = "UNPAID_INVOICE"

    # Infrastructure
    INTERNAL_ERROR = "INTERNAL_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
