"""HTTP interface: response envelope, error mapping, middleware and routers."""

from api.base import (
    APIError,
    APIMeta,
    APIResponse,
    success_response,
    error_response,
    ErrorCodes,
)
from api.errors import register_error_handlers
from api.middleware import RequestIDMiddleware, get_current_request_id
from api.invoices import create_invoices_router
from api.payments import create_payments_router
