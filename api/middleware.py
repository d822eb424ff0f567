"""Request-scoped middleware for API requests."""

import logging
import time
from contextvars import ContextVar
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
MAX_REQUEST_ID_LENGTH = 128

_current_request_id: ContextVar[str | None] = ContextVar("current_request_id", default=None)


def get_current_request_id() -> str | None:
    """Request ID of the request being handled, or None outside a request."""
    return _current_request_id.get()


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Tags every request with an ID.

    A caller-supplied X-Request-ID is kept so one delivery can be traced
    across services; otherwise a fresh UUID is used. The ID is echoed in the
    response header and in the envelope's meta.request_id.
    """

    async def dispatch(self, request: Request, call_next):
        request_id = (request.headers.get(REQUEST_ID_HEADER) or str(uuid4()))[:MAX_REQUEST_ID_LENGTH]
        request.state.request_id = request_id

        token = _current_request_id.set(request_id)
        started = time.monotonic()
        try:
            response = await call_next(request)
        finally:
            _current_request_id.reset(token)

        elapsed_ms = (time.monotonic() - started) * 1000
        logger.info(
            f"{request.method} {request.url.path} -> {response.status_code} "
            f"({elapsed_ms:.0f}ms) [{request_id}]"
        )
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
