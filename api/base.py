"""Response envelope shared by the invoice and payment routers, plus error codes."""

from typing import Any
from datetime import datetime
from uuid import uuid4

from pydantic import BaseModel, Field

from api.middleware import get_current_request_id
from utils.timezone import now_utc


class APIError(BaseModel):
    """Populated only when success is false."""

    code: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Human-readable error message")
    details: dict[str, Any] | None = Field(None, description="Structured context (field errors, fraud flags)")


class APIMeta(BaseModel):
    timestamp: datetime = Field(..., description="Response timestamp (UTC)")
    request_id: str = Field(..., description="Unique request identifier for tracing")


class APIResponse(BaseModel):
    """
    Envelope for every route except provider webhooks, which answer with
    whatever body the provider expects.
    """

    success: bool
    data: Any | None = None
    error: APIError | None = None
    meta: APIMeta


def _meta() -> APIMeta:
    """Meta for the current request. Outside a request a fresh ID is used."""
    return APIMeta(timestamp=now_utc(), request_id=get_current_request_id() or str(uuid4()))


def success_response(data: Any) -> APIResponse:
    return APIResponse(success=True, data=data, error=None, meta=_meta())


def error_response(code: str, message: str, details: dict[str, Any] | None = None) -> APIResponse:
    return APIResponse(
        success=False,
        data=None,
        error=APIError(code=code, message=message, details=details),
        meta=_meta(),
    )


class ErrorCodes:
    """Values of error.code. api.errors maps each BillingError subclass to one."""

    # Resource Errors
    NOT_FOUND = "NOT_FOUND"

    # Validation Errors
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_REQUEST = "INVALID_REQUEST"

    # Invoice Lifecycle
    INVALID_STATE = "INVALID_STATE"

    # Payments
    UNKNOWN_GATEWAY = "UNKNOWN_GATEWAY"
    GATEWAY_ERROR = "GATEWAY_ERROR"
    FRAUD_DECLINED = "FRAUD_DECLINED"
    NOT_REFUNDABLE = "NOT_REFUNDABLE"

    # Webhooks
    SIGNATURE_INVALID = "SIGNATURE_INVALID"
    UNSUPPORTED_EVENT = "UNSUPPORTED_EVENT"

    # Infrastructure
    INTERNAL_ERROR = "INTERNAL_ERROR"
