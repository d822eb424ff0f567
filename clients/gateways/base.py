"""
Payment gateway adapter contract.

Each provider (Stripe hosted checkout, PayPal REST orders, Razorpay payment
links) hides behind PaymentGateway. Adapters speak the provider's wire format
and units; everything they return is in the normalized models from
core.models.payment.

All HTTP goes through _request(), which bounds every call with a timeout and
turns transport failures and provider rejections into GatewayError.
"""

import hashlib
import hmac
import json
import logging
from abc import ABC, abstractmethod
from decimal import Decimal

import requests

from core.exceptions import GatewayError, ValidationError
from core.models.payment import (
    GatewayName, PaymentLink, PaymentLinkParams, PaymentStatus, RefundResult,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 15.0


def hmac_sha256_hex(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def signatures_match(expected: str, received: str) -> bool:
    """Constant-time comparison."""
    return hmac.compare_digest(expected.encode("utf-8"), received.encode("utf-8"))


class PaymentGateway(ABC):
    """Abstract payment provider."""

    name: GatewayName

    def __init__(self, timeout: float = DEFAULT_TIMEOUT_SECONDS, session: requests.Session | None = None):
        self.timeout = timeout
        self._session = session or requests.Session()

    # -------------------------------------------------------------------------
    # Contract
    # -------------------------------------------------------------------------

    @abstractmethod
    def create_payment_link(self, params: PaymentLinkParams) -> PaymentLink:
        """
        Create a hosted payment page.

        Raises:
            GatewayError: Provider rejected the request (currency, minimum, auth)
        """

    @abstractmethod
    def process_webhook(self, payload: bytes, signature: str | None) -> PaymentStatus:
        """
        Verify and decode a webhook delivery.

        Raises:
            SignatureInvalidError: Authenticity could not be established
            UnsupportedEventError: Event type has no mapping
        """

    @abstractmethod
    def get_payment_status(self, payment_id: str) -> PaymentStatus:
        """Status by link id or transaction id."""

    @abstractmethod
    def refund_payment(self, payment_id: str, amount: Decimal | None = None) -> RefundResult:
        """
        Refund in full, or partially when amount is given.

        Raises:
            NotRefundableError: No completed payment exists
        """

    # -------------------------------------------------------------------------
    # HTTP
    # -------------------------------------------------------------------------

    def _request(self, method: str, url: str, **kwargs) -> dict:
        """
        Send a request and return the decoded JSON body.

        Raises:
            GatewayError: Timeout, connection failure, non-2xx status or non-JSON body
        """
        kwargs.setdefault("timeout", self.timeout)
        try:
            response = self._session.request(method, url, **kwargs)
        except requests.exceptions.Timeout:
            logger.error(f"{self.name.value} request timed out: {method} {url}")
            raise GatewayError(self.name.value, f"Request timed out after {self.timeout}s")
        except requests.exceptions.RequestException as e:
            logger.error(f"{self.name.value} connection failed: {e}")
            raise GatewayError(self.name.value, f"Connection failed: {e}")

        if response.status_code >= 400:
            message = self._error_message(response)
            logger.error(f"{self.name.value} error {response.status_code}: {message}")
            raise GatewayError(self.name.value, message, status_code=response.status_code)

        if not response.content:
            return {}
        try:
            return response.json()
        except json.JSONDecodeError:
            logger.error(f"{self.name.value} returned invalid JSON: {response.text[:200]}")
            raise GatewayError(self.name.value, "Invalid response from provider")

    def _error_message(self, response: requests.Response) -> str:
        """Best-effort human message from a provider error body."""
        try:
            body = response.json()
        except json.JSONDecodeError:
            return response.text[:200] or f"HTTP {response.status_code}"

        error = body.get("error") if isinstance(body, dict) else None
        if isinstance(error, dict):
            return error.get("message") or error.get("description") or str(error)
        if isinstance(body, dict):
            return body.get("message") or body.get("error_description") or str(error or body)
        return str(body)

    @staticmethod
    def _decode_json(payload: bytes) -> dict:
        try:
            event = json.loads(payload)
        except (json.JSONDecodeError, UnicodeDecodeError):
            event = None
        if not isinstance(event, dict):
            raise ValidationError("Webhook payload is not a JSON object")
        return event
