"""
Razorpay adapter: Payment Links plus signed webhooks.

Basic auth with key id/secret, JSON bodies, amounts in paise. Webhooks carry
X-Razorpay-Signature: hex HMAC-SHA256 of the raw request body keyed with the
webhook secret (the key secret when no separate webhook secret is set).

Link ids start with "plink_"; anything else is treated as a payment id.
"""

import logging
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

RAZORPAY_API_BASE = "https://api.razorpay.com/v1"
LINK_PREFIX = "plink_"

_LINK_STATUS = {
    "created": LinkStatus.ACTIVE,
    "partially_paid": LinkStatus.ACTIVE,
    "paid": LinkStatus.COMPLETED,
    "expired": LinkStatus.EXPIRED,
    "cancelled": LinkStatus.EXPIRED,
}

_LINK_PAYMENT_STATE = {
    "created": PaymentState.PENDING,
    "partially_paid": PaymentState.PROCESSING,
    "paid": PaymentState.COMPLETED,
    "expired": PaymentState.CANCELLED,
    "cancelled": PaymentState.CANCELLED,
}

_PAYMENT_STATE = {
    "created": PaymentState.PENDING,
    "authorized": PaymentState.PROCESSING,
    "captured": PaymentState.COMPLETED,
    "failed": PaymentState.FAILED,
    "refunded": PaymentState.REFUNDED,
}

_REFUND_STATUS = {
    "processed": RefundState.COMPLETED,
    "pending": RefundState.PENDING,
    "failed": RefundState.FAILED,
}


def _notes(entity: dict) -> dict:
    """Razorpay sends notes as an object, or as an empty list when unset."""
    notes = entity.get("notes")
    return notes if isinstance(notes, dict) else {}


@dataclass(frozen=True)
class RazorpayEvent:
    """A verified Razorpay webhook event with its entities unwrapped."""

    event: str
    payment_link: dict = field(default_factory=dict)
    payment: dict = field(default_factory=dict)
    refund: dict = field(default_factory=dict)

    @classmethod
    def from_payload(cls, body: dict) -> "RazorpayEvent":
        payload = body.get("payload") or {}

        def entity(name: str) -> dict:
            return (payload.get(name) or {}).get("entity") or {}

        return cls(
            event=body.get("event", ""),
            payment_link=entity("payment_link"),
            payment=entity("payment"),
            refund=entity("refund"),
        )


class RazorpayGateway(PaymentGateway):
    """Razorpay Payment Links adapter."""

    name = GatewayName.RAZORPAY

    def __init__(
        self,
        key_id: str,
        key_secret: str,
        frontend_url: str,
        webhook_secret: str | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        session: requests.Session | None = None,
        api_base: str = RAZORPAY_API_BASE,
    ):
        if not key_id:
            raise ValueError("key_id is required")
        if not key_secret:
            raise ValueError("key_secret is required")

        super().__init__(timeout=timeout, session=session)
        self.key_id = key_id
        self.key_secret = key_secret
        self.webhook_secret = webhook_secret or key_secret
        self.frontend_url = frontend_url.rstrip("/")
        self.api_base = api_base.rstrip("/")

    def _call(self, method: str, path: str, json_body: dict | None = None) -> dict:
        return self._request(
            method,
            f"{self.api_base}{path}",
            json=json_body,
            auth=(self.key_id, self.key_secret),
        )

    # -------------------------------------------------------------------------
    # Links
    # -------------------------------------------------------------------------

    def create_payment_link(self, params: PaymentLinkParams) -> PaymentLink:
        notes = {"client_email": params.client_email, **params.metadata}
        if params.invoice_id is not None:
            notes["invoice_id"] = str(params.invoice_id)

        body = {
            "amount": to_minor_units(params.amount, params.currency),
            "currency": params.currency.upper(),
            "accept_partial": params.allow_partial_payments,
            "description": params.description,
            "customer": {"name": params.client_name, "email": params.client_email},
            "notify": {"sms": True, "email": True},
            "reminder_enable": True,
            "notes": notes,
            "callback_url": f"{self.frontend_url}/payment/success",
            "callback_method": "get",
        }
        if params.expires_at is not None:
            body["expire_by"] = int(params.expires_at.timestamp())

        link = self._call("POST", "/payment_links", body)
        logger.info(f"Razorpay payment link created: {link.get('id')}")

        return PaymentLink(
            id=link["id"],
            url=link["short_url"],
            status=_LINK_STATUS.get(link.get("status"), LinkStatus.ACTIVE),
            expires_at=from_unix(link.get("expire_by") or None),
        )

    # -------------------------------------------------------------------------
    # Webhooks
    # -------------------------------------------------------------------------

    def verify_signature(self, payload: bytes, signature: str | None) -> None:
        if not signature:
            raise SignatureInvalidError("Webhook signature is required for Razorpay")
        expected = hmac_sha256_hex(self.webhook_secret, payload)
        if not signatures_match(expected, signature):
            raise SignatureInvalidError("Razorpay webhook signature mismatch")

    def process_webhook(self, payload: bytes, signature: str | None) -> PaymentStatus:
        self.verify_signature(payload, signature)
        event = RazorpayEvent.from_payload(self._decode_json(payload))

        if event.event in ("payment_link.paid", "payment_link.partially_paid"):
            status = self._link_payment_status(event.payment_link, event.payment)
        elif event.event == "payment.captured":
            status = self._payment_status(event.payment)
        elif event.event == "payment.failed":
            status = self._payment_status(event.payment).model_copy(update={
                "status": PaymentState.FAILED,
                "failure_reason": event.payment.get("error_description"),
            })
        elif event.event in ("payment_link.expired", "payment_link.cancelled"):
            link = event.payment_link
            currency = link.get("currency") or "INR"
            status = PaymentStatus(
                id=link.get("id", ""),
                status=PaymentState.CANCELLED,
                amount=from_minor_units(link.get("amount", 0), currency),
                currency=currency,
                paid_amount=from_minor_units(link.get("amount_paid", 0), currency),
                metadata=_notes(link),
            )
        elif event.event in ("refund.processed", "refund.created"):
            status = self._refund_event_status(event.refund, event.payment)
        else:
            raise UnsupportedEventError(self.name.value, event.event)

        return status.model_copy(update={"event_type": event.event})

    def _link_payment_status(self, link: dict, payment: dict) -> PaymentStatus:
        """
        A payment against a link.

        paid_amount is the link's cumulative amount_paid, so partial payments
        report the running total, not the single instalment.
        """
        currency = link.get("currency") or "INR"
        return PaymentStatus(
            id=link.get("id", ""),
            status=PaymentState.COMPLETED,
            amount=from_minor_units(link.get("amount", 0), currency),
            currency=currency,
            paid_amount=from_minor_units(link.get("amount_paid", 0), currency),
            payment_method=payment.get("method"),
            transaction_id=payment.get("id"),
            paid_at=from_unix(payment.get("created_at")),
            metadata=_notes(link),
        )

    def _refund_event_status(self, refund: dict, payment: dict) -> PaymentStatus:
        currency = refund.get("currency") or payment.get("currency") or "INR"
        payment_amount = payment.get("amount")
        refunded_total = payment.get("amount_refunded", refund.get("amount", 0))
        partial = payment_amount is not None and refunded_total < payment_amount
        return PaymentStatus(
            id=refund.get("payment_id") or payment.get("id", ""),
            status=PaymentState.PARTIALLY_REFUNDED if partial else PaymentState.REFUNDED,
            amount=from_minor_units(payment_amount or refund.get("amount", 0), currency),
            currency=currency,
            transaction_id=refund.get("payment_id"),
            metadata={"refund_id": refund.get("id", ""), "amount_refunded": str(from_minor_units(refunded_total, currency))},
        )

    # -------------------------------------------------------------------------
    # Status & refunds
    # -------------------------------------------------------------------------

    def get_payment_status(self, payment_id: str) -> PaymentStatus:
        if payment_id.startswith(LINK_PREFIX):
            link = self._call("GET", f"/payment_links/{payment_id}")
            currency = link.get("currency") or "INR"
            payments = link.get("payments") or []
            last = payments[-1] if payments else {}
            return PaymentStatus(
                id=link.get("id", payment_id),
                status=_LINK_PAYMENT_STATE.get(link.get("status"), PaymentState.PENDING),
                amount=from_minor_units(link.get("amount", 0), currency),
                currency=currency,
                paid_amount=from_minor_units(link.get("amount_paid", 0), currency),
                payment_method=last.get("method"),
                transaction_id=last.get("payment_id"),
                metadata=_notes(link),
            )
        return self._payment_status(self._call("GET", f"/payments/{payment_id}"))

    def refund_payment(self, payment_id: str, amount: Decimal | None = None) -> RefundResult:
        if payment_id.startswith(LINK_PREFIX):
            link = self._call("GET", f"/payment_links/{payment_id}")
            captured = [p for p in (link.get("payments") or []) if p.get("status") == "captured"]
            if not captured:
                raise NotRefundableError(f"Razorpay link {payment_id} has no captured payment")
            target = captured[0]["payment_id"]
            currency = link.get("currency") or "INR"
        else:
            payment = self._call("GET", f"/payments/{payment_id}")
            if payment.get("status") != "captured":
                raise NotRefundableError(f"Razorpay payment {payment_id} is not captured")
            target = payment_id
            currency = payment.get("currency") or "INR"

        body = {}
        if amount is not None:
            body["amount"] = to_minor_units(amount, currency)

        refund = self._call("POST", f"/payments/{target}/refund", body)
        logger.info(f"Razorpay refund {refund.get('id')} for {target}: {refund.get('status')}")

        return RefundResult(
            id=refund["id"],
            status=_REFUND_STATUS.get(refund.get("status"), RefundState.PENDING),
            amount=from_minor_units(refund.get("amount", 0), currency),
            reason=_notes(refund).get("reason"),
        )

    # -------------------------------------------------------------------------
    # Mapping
    # -------------------------------------------------------------------------

    def _payment_status(self, payment: dict) -> PaymentStatus:
        currency = payment.get("currency") or "INR"
        amount = from_minor_units(payment.get("amount", 0), currency)
        state = _PAYMENT_STATE.get(payment.get("status"), PaymentState.PENDING)
        if state == PaymentState.REFUNDED and payment.get("amount_refunded", 0) < payment.get("amount", 0):
            state = PaymentState.PARTIALLY_REFUNDED
        return PaymentStatus(
            id=payment.get("id", ""),
            status=state,
            amount=amount,
            currency=currency,
            paid_amount=amount if state == PaymentState.COMPLETED else ZERO,
            payment_method=payment.get("method"),
            transaction_id=payment.get("id"),
            paid_at=from_unix(payment.get("created_at")) if state == PaymentState.COMPLETED else None,
            failure_reason=payment.get("error_description"),
            metadata=_notes(payment),
        )
