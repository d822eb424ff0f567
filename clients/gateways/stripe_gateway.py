"""
Stripe adapter: hosted Checkout Sessions.

Stripe's API is form-encoded with Bearer auth and amounts in the currency's
smallest unit. Webhooks carry a Stripe-Signature header of the form
"t=<unix>,v1=<hex>[,v1=<hex>]" where each v1 is HMAC-SHA256 over
"<t>.<raw body>" keyed with the endpoint's signing secret.
"""

import logging
import time
from dataclasses import dataclass, field
from decimal import Decimal

import requests

from clients.gateways.base import (
    DEFAULT_TIMEOUT_SECONDS, PaymentGateway, hmac_sha256_hex, signatures_match,
)
from core.exceptions import NotRefundableError, SignatureInvalidError, UnsupportedEventError
from core.models.payment import (
    GatewayName, LinkStatus, PaymentLink, PaymentLinkParams, PaymentState,
    PaymentStatus, RefundResult, RefundState,
)
from utils.money import ZERO, from_minor_units, to_minor_units
from utils.timezone import from_unix

logger = logging.getLogger(__name__)

STRIPE_API_BASE = "https://api.stripe.com"
SIGNATURE_TOLERANCE_SECONDS = 300

_SESSION_LINK_STATUS = {
    "open": LinkStatus.ACTIVE,
    "complete": LinkStatus.COMPLETED,
    "expired": LinkStatus.EXPIRED,
}

_INTENT_STATUS = {
    "succeeded": PaymentState.COMPLETED,
    "processing": PaymentState.PROCESSING,
    "requires_payment_method": PaymentState.PENDING,
    "requires_confirmation": PaymentState.PENDING,
    "requires_action": PaymentState.PENDING,
    "requires_capture": PaymentState.PROCESSING,
    "canceled": PaymentState.CANCELLED,
}

_REFUND_STATUS = {
    "succeeded": RefundState.COMPLETED,
    "pending": RefundState.PENDING,
    "requires_action": RefundState.PENDING,
    "failed": RefundState.FAILED,
    "canceled": RefundState.FAILED,
}


@dataclass(frozen=True)
class StripeEvent:
    """A verified Stripe webhook event."""

    id: str
    type: str
    object: dict = field(default_factory=dict)
    created: int | None = None

    @classmethod
    def from_payload(cls, event: dict) -> "StripeEvent":
        return cls(
            id=event.get("id", ""),
            type=event.get("type", ""),
            created=event.get("created"),
            object=(event.get("data") or {}).get("object") or {},
        )


class StripeGateway(PaymentGateway):
    """Stripe Checkout adapter."""

    name = GatewayName.STRIPE

    def __init__(
        self,
        secret_key: str,
        webhook_secret: str,
        frontend_url: str,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        session: requests.Session | None = None,
        api_base: str = STRIPE_API_BASE,
    ):
        if not secret_key:
            raise ValueError("secret_key is required")
        if not webhook_secret:
            raise ValueError("webhook_secret is required")

        super().__init__(timeout=timeout, session=session)
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.frontend_url = frontend_url.rstrip("/")
        self.api_base = api_base.rstrip("/")

    def _call(self, method: str, path: str, data: dict | None = None) -> dict:
        return self._request(
            method,
            f"{self.api_base}{path}",
            data=data,
            headers={"Authorization": f"Bearer {self.secret_key}"},
        )

    # -------------------------------------------------------------------------
    # Links
    # -------------------------------------------------------------------------

    def create_payment_link(self, params: PaymentLinkParams) -> PaymentLink:
        currency = params.currency.lower()
        data = {
            "mode": "payment",
            "customer_email": params.client_email,
            "success_url": f"{self.frontend_url}/payment/success?session_id={{CHECKOUT_SESSION_ID}}",
            "cancel_url": f"{self.frontend_url}/payment/cancelled",
            "line_items[0][quantity]": 1,
            "line_items[0][price_data][currency]": currency,
            "line_items[0][price_data][unit_amount]": to_minor_units(params.amount, params.currency),
            "line_items[0][price_data][product_data][name]": params.description,
            "metadata[client_email]": params.client_email,
            "metadata[client_name]": params.client_name,
        }
        if params.invoice_id is not None:
            data["metadata[invoice_id]"] = str(params.invoice_id)
            data["payment_intent_data[metadata][invoice_id]"] = str(params.invoice_id)
        for key, value in params.metadata.items():
            data[f"metadata[{key}]"] = value
        if params.expires_at is not None:
            data["expires_at"] = int(params.expires_at.timestamp())

        session = self._call("POST", "/v1/checkout/sessions", data)
        logger.info(f"Stripe checkout session created: {session.get('id')}")

        return PaymentLink(
            id=session["id"],
            url=session["url"],
            status=_SESSION_LINK_STATUS.get(session.get("status"), LinkStatus.ACTIVE),
            expires_at=from_unix(session.get("expires_at")),
        )

    # -------------------------------------------------------------------------
    # Webhooks
    # -------------------------------------------------------------------------

    def verify_signature(self, payload: bytes, header: str | None, now: float | None = None) -> None:
        """
        Check a Stripe-Signature header against the raw body.

        Raises:
            SignatureInvalidError: Missing header, no matching v1, or stale timestamp
        """
        if not header:
            raise SignatureInvalidError("Webhook signature is required for Stripe")

        timestamp = None
        candidates = []
        for part in header.split(","):
            key, _, value = part.strip().partition("=")
            if key == "t":
                timestamp = value
            elif key == "v1":
                candidates.append(value)

        if timestamp is None or not candidates:
            raise SignatureInvalidError("Malformed Stripe-Signature header")

        try:
            signed_at = int(timestamp)
        except ValueError:
            raise SignatureInvalidError("Malformed Stripe-Signature timestamp")

        current = time.time() if now is None else now
        if abs(current - signed_at) > SIGNATURE_TOLERANCE_SECONDS:
            raise SignatureInvalidError("Stripe webhook timestamp outside tolerance")

        expected = hmac_sha256_hex(self.webhook_secret, timestamp.encode("utf-8") + b"." + payload)
        if not any(signatures_match(expected, candidate) for candidate in candidates):
            raise SignatureInvalidError("Stripe webhook signature mismatch")

    def process_webhook(self, payload: bytes, signature: str | None) -> PaymentStatus:
        self.verify_signature(payload, signature)
        event = StripeEvent.from_payload(self._decode_json(payload))
        obj = event.object

        if event.type in ("checkout.session.completed", "checkout.session.async_payment_succeeded"):
            status = self._session_status(obj)
        elif event.type == "checkout.session.async_payment_failed":
            status = self._session_status(obj).model_copy(update={"status": PaymentState.FAILED})
        elif event.type == "checkout.session.expired":
            status = self._session_status(obj).model_copy(update={"status": PaymentState.CANCELLED})
        elif event.type == "payment_intent.payment_failed":
            status = self._intent_status(obj).model_copy(update={
                "status": PaymentState.FAILED,
                "failure_reason": (obj.get("last_payment_error") or {}).get("message"),
            })
        elif event.type == "charge.dispute.created":
            currency = (obj.get("currency") or "inr").upper()
            status = PaymentStatus(
                id=obj.get("payment_intent") or obj.get("charge") or obj.get("id", ""),
                status=PaymentState.FAILED,
                amount=from_minor_units(obj.get("amount", 0), currency),
                currency=currency,
                transaction_id=obj.get("payment_intent"),
                failure_reason=f"dispute: {obj.get('reason', 'unknown')}",
                metadata=obj.get("metadata") or {},
            )
        elif event.type == "charge.refunded":
            currency = (obj.get("currency") or "inr").upper()
            amount = obj.get("amount", 0)
            refunded = obj.get("amount_refunded", 0)
            status = PaymentStatus(
                id=obj.get("payment_intent") or obj.get("id", ""),
                status=PaymentState.REFUNDED if refunded >= amount else PaymentState.PARTIALLY_REFUNDED,
                amount=from_minor_units(amount, currency),
                currency=currency,
                transaction_id=obj.get("payment_intent"),
                metadata={"amount_refunded": str(from_minor_units(refunded, currency))},
            )
        else:
            raise UnsupportedEventError(self.name.value, event.type)

        update = {"event_type": event.type}
        if status.status == PaymentState.COMPLETED:
            # Session "created" is when the link was made; the event time is when it was paid
            update["paid_at"] = from_unix(event.created) or status.paid_at
        return status.model_copy(update=update)

    # -------------------------------------------------------------------------
    # Status & refunds
    # -------------------------------------------------------------------------

    def get_payment_status(self, payment_id: str) -> PaymentStatus:
        if payment_id.startswith("cs_"):
            return self._session_status(self._call("GET", f"/v1/checkout/sessions/{payment_id}"))
        return self._intent_status(self._call("GET", f"/v1/payment_intents/{payment_id}"))

    def refund_payment(self, payment_id: str, amount: Decimal | None = None) -> RefundResult:
        if payment_id.startswith("cs_"):
            session = self._call("GET", f"/v1/checkout/sessions/{payment_id}")
            intent_id = session.get("payment_intent")
            if session.get("payment_status") != "paid" or not intent_id:
                raise NotRefundableError(f"Checkout session {payment_id} has no completed payment")
            currency = (session.get("currency") or "inr").upper()
        else:
            intent = self._call("GET", f"/v1/payment_intents/{payment_id}")
            if intent.get("status") != "succeeded":
                raise NotRefundableError(f"Payment intent {payment_id} has not succeeded")
            intent_id = payment_id
            currency = (intent.get("currency") or "inr").upper()

        data = {"payment_intent": intent_id}
        if amount is not None:
            data["amount"] = to_minor_units(amount, currency)

        refund = self._call("POST", "/v1/refunds", data)
        logger.info(f"Stripe refund {refund.get('id')} for {intent_id}: {refund.get('status')}")

        return RefundResult(
            id=refund["id"],
            status=_REFUND_STATUS.get(refund.get("status"), RefundState.PENDING),
            amount=from_minor_units(refund.get("amount", 0), currency),
            reason=refund.get("reason"),
        )

    # -------------------------------------------------------------------------
    # Mapping
    # -------------------------------------------------------------------------

    def _session_status(self, session: dict) -> PaymentStatus:
        currency = (session.get("currency") or "inr").upper()
        amount = from_minor_units(session.get("amount_total") or 0, currency)
        paid = session.get("payment_status") in ("paid", "no_payment_required")

        if paid:
            state = PaymentState.COMPLETED
        elif session.get("status") == "expired":
            state = PaymentState.CANCELLED
        elif session.get("status") == "complete":
            # Completed checkout awaiting an async payment method
            state = PaymentState.PROCESSING
        else:
            state = PaymentState.PENDING

        methods = session.get("payment_method_types") or []
        return PaymentStatus(
            id=session.get("id", ""),
            status=state,
            amount=amount,
            currency=currency,
            paid_amount=amount if paid else ZERO,
            payment_method=methods[0] if methods else None,
            transaction_id=session.get("payment_intent"),
            paid_at=None,
            metadata=session.get("metadata") or {},
        )

    def _intent_status(self, intent: dict) -> PaymentStatus:
        currency = (intent.get("currency") or "inr").upper()
        state = _INTENT_STATUS.get(intent.get("status"), PaymentState.PENDING)
        methods = intent.get("payment_method_types") or []
        return PaymentStatus(
            id=intent.get("id", ""),
            status=state,
            amount=from_minor_units(intent.get("amount") or 0, currency),
            currency=currency,
            paid_amount=from_minor_units(intent.get("amount_received") or 0, currency),
            payment_method=methods[0] if methods else None,
            transaction_id=intent.get("id"),
            paid_at=from_unix(intent.get("created")) if state == PaymentState.COMPLETED else None,
            metadata=intent.get("metadata") or {},
        )
