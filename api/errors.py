"""Global exception handlers for FastAPI."""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.responses import JSONResponse

from api.base import error_response, ErrorCodes
from core.exceptions import (
    FraudDeclinedError, GatewayError, InvalidStateError, NotFoundError, NotRefundableError,
    SignatureInvalidError, UnknownGatewayError, UnsupportedEventError, ValidationError,
)

logger = logging.getLogger(__name__)


def _json(status_code: int, code: str, message: str, details: dict | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=error_response(code, message, details).model_dump(mode="json"),
    )


def register_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers on the app."""

    @app.exception_handler(ValidationError)
    async def validation_handler(request: Request, exc: ValidationError):
        return _json(400, ErrorCodes.VALIDATION_ERROR, str(exc), {"errors": exc.errors} if exc.errors else None)

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return _json(404, ErrorCodes.NOT_FOUND, str(exc))

    @app.exception_handler(InvalidStateError)
    async def invalid_state_handler(request: Request, exc: InvalidStateError):
        details = {"current_state": exc.current_state} if exc.current_state else None
        return _json(409, ErrorCodes.INVALID_STATE, str(exc), details)

    @app.exception_handler(NotRefundableError)
    async def not_refundable_handler(request: Request, exc: NotRefundableError):
        return _json(409, ErrorCodes.NOT_REFUNDABLE, str(exc))

    @app.exception_handler(UnknownGatewayError)
    async def unknown_gateway_handler(request: Request, exc: UnknownGatewayError):
        return _json(400, ErrorCodes.UNKNOWN_GATEWAY, str(exc), {"gateway": str(exc.gateway)})

    @app.exception_handler(FraudDeclinedError)
    async def fraud_declined_handler(request: Request, exc: FraudDeclinedError):
        return _json(
            400,
            ErrorCodes.FRAUD_DECLINED,
            str(exc),
            {"flags": exc.flags, "risk_score": exc.result.risk_score},
        )

    @app.exception_handler(SignatureInvalidError)
    async def signature_handler(request: Request, exc: SignatureInvalidError):
        logger.warning(f"Webhook rejected on {request.url.path}: {exc}")
        return _json(400, ErrorCodes.SIGNATURE_INVALID, str(exc))

    @app.exception_handler(UnsupportedEventError)
    async def unsupported_event_handler(request: Request, exc: UnsupportedEventError):
        logger.warning(f"Webhook rejected on {request.url.path}: {exc}")
        return _json(400, ErrorCodes.UNSUPPORTED_EVENT, str(exc), {"event_type": exc.event_type})

    @app.exception_handler(GatewayError)
    async def gateway_error_handler(request: Request, exc: GatewayError):
        details = {"gateway": exc.gateway}
        if exc.status_code is not None:
            details["status_code"] = exc.status_code
        return _json(502, ErrorCodes.GATEWAY_ERROR, str(exc), details)

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        return _json(400, ErrorCodes.INVALID_REQUEST, str(exc))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return _json(
            422,
            ErrorCodes.VALIDATION_ERROR,
            "Request validation failed",
            {"errors": [
                {"field": ".".join(str(part) for part in error["loc"]), "message": error["msg"]}
                for error in exc.errors()
            ]},
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception")
        return _json(500, ErrorCodes.INTERNAL_ERROR, "An internal error occurred")
