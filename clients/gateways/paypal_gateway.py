"""
PayPal adapter: REST Orders v2 with explicit capture.

Flow: create an order (intent CAPTURE) and hand the payer the "approve" URL.
When the payer approves, PayPal sends CHECKOUT.ORDER.APPROVED and the money
only moves once we capture the order. The capture is done here, as part of
processing that webhook.

PayPal webhooks carry no shared-secret signature we can check locally.
Authenticity is established by fetching the event back from PayPal with our
own credentials: an event id PayPal does not know is rejected.
"""

import logging
import time
from dataclasses import dataclass, field
from decimal import Decimal

import requests

from clients.gateways.base import DEFAULT_TIMEOUT_SECONDS, PaymentGateway
from core.exceptions import (
    GatewayError, NotRefundableError, SignatureInvalidError, UnsupportedEventError,
    ValidationError,
)
from core.models.payment import (
    GatewayName, LinkStatus, PaymentLink, PaymentLinkParams, PaymentState,
    PaymentStatus, RefundResult, RefundState,
)
from utils.money import ZERO, round2
from utils.timezone import parse_iso

logger = logging.getLogger(__name__)

TOKEN_REFRESH_MARGIN_SECONDS = 60

_ORDER_STATUS = {
    "COMPLETED": PaymentState.COMPLETED,
    "APPROVED": PaymentState.PROCESSING,
    "CREATED": PaymentState.PENDING,
    "SAVED": PaymentState.PENDING,
    "VOIDED": PaymentState.CANCELLED,
    "PAYER_ACTION_REQUIRED": PaymentState.CANCELLED,
}

_CAPTURE_STATUS = {
    "COMPLETED": PaymentState.COMPLETED,
    "PENDING": PaymentState.PROCESSING,
    "DECLINED": PaymentState.FAILED,
    "FAILED": PaymentState.FAILED,
    "REFUNDED": PaymentState.REFUNDED,
    "PARTIALLY_REFUNDED": PaymentState.PARTIALLY_REFUNDED,
}

_REFUND_STATUS = {
    "COMPLETED": RefundState.COMPLETED,
    "PENDING": RefundState.PENDING,
    "FAILED": RefundState.FAILED,
    "CANCELLED": RefundState.FAILED,
}

_CAPTURE_EVENTS = {
    "PAYMENT.CAPTURE.COMPLETED": PaymentState.COMPLETED,
    "PAYMENT.CAPTURE.PENDING": PaymentState.PROCESSING,
    "PAYMENT.CAPTURE.DENIED": PaymentState.FAILED,
}

REFUND_EVENT = "PAYMENT.CAPTURE.REFUNDED"


@dataclass(frozen=True)
class PayPalEvent:
    """A PayPal webhook event as confirmed by the events API."""

    id: str
    event_type: str
    resource: dict = field(default_factory=dict)

    @classmethod
    def from_payload(cls, event: dict) -> "PayPalEvent":
        return cls(
            id=event.get("id", ""),
            event_type=event.get("event_type", ""),
            resource=event.get("resource") or {},
        )


def _money(amount: dict | None) -> tuple[Decimal, str]:
    amount = amount or {}
    return round2(amount.get("value") or "0"), amount.get("currency_code") or "INR"


def _related_order_id(resource: dict) -> str | None:
    related = (resource.get("supplementary_data") or {}).get("related_ids") or {}
    return related.get("order_id")


class PayPalGateway(PaymentGateway):
    """PayPal Orders adapter."""

    name = GatewayName.PAYPAL

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        base_url: str,
        frontend_url: str,
        brand_name: str = "Invoicing",
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        session: requests.Session | None = None,
    ):
        if not client_id:
            raise ValueError("client_id is required")
        if not client_secret:
            raise ValueError("client_secret is required")

        super().__init__(timeout=timeout, session=session)
        self.client_id = client_id
        self.client_secret = client_secret
        self.base_url = base_url.rstrip("/")
        self.frontend_url = frontend_url.rstrip("/")
        self.brand_name = brand_name
        self._access_token: str | None = None
        self._token_expires_at = 0.0

    # -------------------------------------------------------------------------
    # Auth
    # -------------------------------------------------------------------------

    def _get_access_token(self) -> str:
        """OAuth2 client-credentials token, cached until shortly before expiry."""
        if self._access_token and time.monotonic() < self._token_expires_at:
            return self._access_token

        body = self._request(
            "POST",
            f"{self.base_url}/v1/oauth2/token",
            data={"grant_type": "client_credentials"},
            auth=(self.client_id, self.client_secret),
            headers={"Accept": "application/json"},
        )
        token = body.get("access_token")
        if not token:
            raise GatewayError(self.name.value, "Token response missing access_token")

        expires_in = int(body.get("expires_in", 0))
        self._access_token = token
        self._token_expires_at = time.monotonic() + max(0, expires_in - TOKEN_REFRESH_MARGIN_SECONDS)
        return token

    def _call(self, method: str, path: str, json_body: dict | None = None) -> dict:
        return self._request(
            method,
            f"{self.base_url}{path}",
            json=json_body,
            headers={
                "Authorization": f"Bearer {self._get_access_token()}",
                "Content-Type": "application/json",
            },
        )

    # -------------------------------------------------------------------------
    # Links
    # -------------------------------------------------------------------------

    def create_payment_link(self, params: PaymentLinkParams) -> PaymentLink:
        purchase_unit = {
            "description": params.description[:127],
            "amount": {
                "currency_code": params.currency.upper(),
                "value": f"{round2(params.amount):.2f}",
            },
        }
        if params.invoice_id is not None:
            purchase_unit["custom_id"] = str(params.invoice_id)
            purchase_unit["invoice_id"] = str(params.invoice_id)

        order = self._call("POST", "/v2/checkout/orders", {
            "intent": "CAPTURE",
            "purchase_units": [purchase_unit],
            "application_context": {
                "brand_name": self.brand_name,
                "user_action": "PAY_NOW",
                "return_url": f"{self.frontend_url}/payment/success",
                "cancel_url": f"{self.frontend_url}/payment/cancelled",
            },
        })

        approve_url = next(
            (link["href"] for link in order.get("links", []) if link.get("rel") in ("approve", "payer-action")),
            None,
        )
        if approve_url is None:
            raise GatewayError(self.name.value, f"Order {order.get('id')} has no approval link")

        logger.info(f"PayPal order created: {order['id']}")
        return PaymentLink(
            id=order["id"],
            url=approve_url,
            status=LinkStatus.ACTIVE,
            expires_at=params.expires_at,
        )

    # -------------------------------------------------------------------------
    # Webhooks
    # -------------------------------------------------------------------------

    def verify_event(self, event: dict) -> PayPalEvent:
        """
        Confirm an event with PayPal and return PayPal's own copy of it.

        Raises:
            SignatureInvalidError: Event id missing, unknown to PayPal, or
                the delivered type differs from PayPal's record
        """
        event_id = event.get("id")
        if not event_id:
            raise SignatureInvalidError("PayPal webhook has no event id")

        try:
            confirmed = self._call("GET", f"/v1/notifications/webhooks-events/{event_id}")
        except GatewayError as e:
            if e.status_code == 404:
                raise SignatureInvalidError(f"PayPal does not recognise event {event_id}")
            raise

        if confirmed.get("event_type") != event.get("event_type"):
            raise SignatureInvalidError(f"PayPal event {event_id} type mismatch")
        return PayPalEvent.from_payload(confirmed)

    def process_webhook(self, payload: bytes, signature: str | None) -> PaymentStatus:
        event = self.verify_event(self._decode_json(payload))
        resource = event.resource

        if event.event_type == "CHECKOUT.ORDER.APPROVED":
            status = self._order_status(self._capture_order(resource.get("id", "")))
        elif event.event_type == "CHECKOUT.ORDER.VOIDED":
            amount, currency = _money((resource.get("purchase_units") or [{}])[0].get("amount"))
            status = PaymentStatus(
                id=resource.get("id", ""),
                status=PaymentState.CANCELLED,
                amount=amount,
                currency=currency,
            )
        elif event.event_type in _CAPTURE_EVENTS:
            status = self._capture_event_status(event.event_type, resource)
        elif event.event_type == REFUND_EVENT:
            status = self._refund_event_status(resource)
        else:
            raise UnsupportedEventError(self.name.value, event.event_type)

        return status.model_copy(update={"event_type": event.event_type})

    def _capture_order(self, order_id: str) -> dict:
        """Capture an approved order. An already-captured order is fetched instead."""
        try:
            order = self._call("POST", f"/v2/checkout/orders/{order_id}/capture", {})
        except GatewayError as e:
            if e.status_code == 422:
                logger.info(f"PayPal order {order_id} already captured")
                return self._call("GET", f"/v2/checkout/orders/{order_id}")
            raise
        logger.info(f"PayPal order captured: {order_id} ({order.get('status')})")
        return order

    def _capture_event_status(self, event_type: str, resource: dict) -> PaymentStatus:
        amount, currency = _money(resource.get("amount"))
        state = _CAPTURE_EVENTS[event_type]
        order_id = _related_order_id(resource)
        reason = (resource.get("status_details") or {}).get("reason")
        return PaymentStatus(
            id=order_id or resource.get("id", ""),
            status=state,
            amount=amount,
            currency=currency,
            paid_amount=amount if state == PaymentState.COMPLETED else ZERO,
            payment_method="paypal",
            transaction_id=resource.get("id"),
            paid_at=parse_iso(resource["create_time"]) if resource.get("create_time") else None,
            failure_reason=reason if state == PaymentState.FAILED else None,
            metadata={"custom_id": resource["custom_id"]} if resource.get("custom_id") else {},
        )

    def _refund_event_status(self, refund: dict) -> PaymentStatus:
        """
        The resource of a refund event is the refund, not the capture. The
        capture it belongs to is its "up" link; PayPal's copy of that capture
        says whether it is now fully or partially refunded.
        """
        capture_href = next(
            (link.get("href", "") for link in refund.get("links") or [] if link.get("rel") == "up"), ""
        )
        capture_id = capture_href.rstrip("/").rsplit("/", 1)[-1]
        if not capture_id:
            raise ValidationError(f"PayPal refund {refund.get('id')} has no capture link")

        capture = self._call("GET", f"/v2/payments/captures/{capture_id}")
        captured, currency = _money(capture.get("amount"))
        refunded, _ = _money(refund.get("amount"))
        state = _CAPTURE_STATUS.get(capture.get("status"))
        if state not in (PaymentState.REFUNDED, PaymentState.PARTIALLY_REFUNDED):
            state = PaymentState.REFUNDED if refunded >= captured else PaymentState.PARTIALLY_REFUNDED

        metadata = {"amount_refunded": str(refunded), "refund_id": refund.get("id", "")}
        custom_id = refund.get("custom_id") or capture.get("custom_id")
        if custom_id:
            metadata["custom_id"] = custom_id
        return PaymentStatus(
            id=_related_order_id(capture) or capture_id,
            status=state,
            amount=captured,
            currency=currency,
            payment_method="paypal",
            transaction_id=capture_id,
            metadata=metadata,
        )

    # -------------------------------------------------------------------------
    # Status & refunds
    # -------------------------------------------------------------------------

    def get_payment_status(self, payment_id: str) -> PaymentStatus:
        try:
            return self._order_status(self._call("GET", f"/v2/checkout/orders/{payment_id}"))
        except GatewayError as e:
            if e.status_code != 404:
                raise
        capture = self._call("GET", f"/v2/payments/captures/{payment_id}")
        amount, currency = _money(capture.get("amount"))
        state = _CAPTURE_STATUS.get(capture.get("status"), PaymentState.PENDING)
        return PaymentStatus(
            id=_related_order_id(capture) or payment_id,
            status=state,
            amount=amount,
            currency=currency,
            paid_amount=amount if state == PaymentState.COMPLETED else ZERO,
            payment_method="paypal",
            transaction_id=capture.get("id"),
        )

    def refund_payment(self, payment_id: str, amount: Decimal | None = None) -> RefundResult:
        capture_id, currency = self._refundable_capture(payment_id)

        body = {}
        if amount is not None:
            body["amount"] = {"value": f"{round2(amount):.2f}", "currency_code": currency}

        refund = self._call("POST", f"/v2/payments/captures/{capture_id}/refund", body)
        refunded, _ = _money(refund.get("amount"))
        logger.info(f"PayPal refund {refund.get('id')} for capture {capture_id}: {refund.get('status')}")

        return RefundResult(
            id=refund["id"],
            status=_REFUND_STATUS.get(refund.get("status"), RefundState.PENDING),
            amount=refunded if refund.get("amount") else round2(amount or ZERO),
            reason=(refund.get("status_details") or {}).get("reason"),
        )

    def _refundable_capture(self, payment_id: str) -> tuple[str, str]:
        """Resolve an order or capture id to a completed capture id."""
        try:
            order = self._call("GET", f"/v2/checkout/orders/{payment_id}")
        except GatewayError as e:
            if e.status_code != 404:
                raise
            capture = self._call("GET", f"/v2/payments/captures/{payment_id}")
            if capture.get("status") not in ("COMPLETED", "PARTIALLY_REFUNDED"):
                raise NotRefundableError(f"PayPal capture {payment_id} is not completed")
            return payment_id, _money(capture.get("amount"))[1]

        captures = self._captures(order)
        completed = [c for c in captures if c.get("status") in ("COMPLETED", "PARTIALLY_REFUNDED")]
        if order.get("status") != "COMPLETED" or not completed:
            raise NotRefundableError(f"PayPal order {payment_id} has no completed capture")
        return completed[0]["id"], _money(completed[0].get("amount"))[1]

    # -------------------------------------------------------------------------
    # Mapping
    # -------------------------------------------------------------------------

    @staticmethod
    def _captures(order: dict) -> list[dict]:
        units = order.get("purchase_units") or [{}]
        return (units[0].get("payments") or {}).get("captures") or []

    def _order_status(self, order: dict) -> PaymentStatus:
        units = order.get("purchase_units") or [{}]
        amount, currency = _money(units[0].get("amount"))
        state = _ORDER_STATUS.get(order.get("status"), PaymentState.PENDING)

        captures = self._captures(order)
        capture = captures[0] if captures else None
        paid_amount = ZERO
        paid_at = None
        if capture is not None:
            capture_state = _CAPTURE_STATUS.get(capture.get("status"), PaymentState.PENDING)
            if capture_state == PaymentState.COMPLETED:
                paid_amount, currency = _money(capture.get("amount"))
                if not units[0].get("amount"):
                    amount = paid_amount
                paid_at = parse_iso(capture["create_time"]) if capture.get("create_time") else None
            elif state == PaymentState.COMPLETED:
                # Order closed but the capture itself is pending or declined
                state = capture_state

        return PaymentStatus(
            id=order.get("id", ""),
            status=state,
            amount=amount,
            currency=currency,
            paid_amount=paid_amount,
            payment_method="paypal",
            transaction_id=capture.get("id") if capture else None,
            paid_at=paid_at,
            metadata={"custom_id": units[0]["custom_id"]} if units[0].get("custom_id") else {},
        )
