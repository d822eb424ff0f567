"""
Tests for StripeGateway.

Checkout Session requests are form-encoded, so request bodies are parsed
with parse_qs. Webhooks are signed with a real Stripe-Signature header.
"""

import json
import time
from datetime import datetime, timezone
from decimal import Decimal
from urllib.parse import parse_qs
from uuid import uuid4

import pytest
import responses

from clients.gateways.base import hmac_sha256_hex
from clients.gateways.stripe_gateway import STRIPE_API_BASE, StripeGateway
from core.exceptions import (
    GatewayError, NotRefundableError, SignatureInvalidError, UnsupportedEventError,
)
from core.models import LinkStatus, PaymentLinkParams, PaymentState, RefundState

WEBHOOK_SECRET = "whsec_stripe_test"
INVOICE_ID = uuid4()


@pytest.fixture
def gateway():
    return StripeGateway(
        secret_key="sk_test_123",
        webhook_secret=WEBHOOK_SECRET,
        frontend_url="https://billing.acme.in",
    )


def _header(payload: bytes, timestamp: int | None = None, secret: str = WEBHOOK_SECRET) -> str:
    t = str(int(time.time()) if timestamp is None else timestamp)
    return f"t={t},v1={hmac_sha256_hex(secret, t.encode('utf-8') + b'.' + payload)}"


def _event(event_type: str, obj: dict, created: int | None = None) -> bytes:
    event = {"id": "evt_1", "type": event_type, "data": {"object": obj}}
    if created is not None:
        event["created"] = created
    return json.dumps(event).encode("utf-8")


def _session(**overrides) -> dict:
    session = {
        "id": "cs_test_1",
        "status": "complete",
        "payment_status": "paid",
        "amount_total": 1180000,
        "currency": "inr",
        "payment_intent": "pi_1",
        "payment_method_types": ["card"],
        "created": 1772344800,
        "metadata": {"invoice_id": str(INVOICE_ID)},
    }
    session.update(overrides)
    return session


def _form(request) -> dict:
    return {key: values[0] for key, values in parse_qs(request.body).items()}


class TestCreatePaymentLink:
    """Checkout Session creation."""

    @responses.activate
    def test_form_fields_and_auth(self, gateway):
        responses.add(
            responses.POST, f"{STRIPE_API_BASE}/v1/checkout/sessions",
            json={"id": "cs_test_1", "url": "https://checkout.stripe.com/c/pay/cs_test_1", "status": "open", "expires_at": 1772431200},
        )

        link = gateway.create_payment_link(PaymentLinkParams(
            amount=Decimal("11800.00"),
            description="Invoice INV-20260301-0001",
            invoice_id=INVOICE_ID,
            client_email="accounts@acme.in",
            client_name="Acme Studios",
            metadata={"invoice_number": "INV-20260301-0001"},
        ))

        request = responses.calls[0].request
        form = _form(request)
        assert request.headers["Authorization"] == "Bearer sk_test_123"
        assert form["mode"] == "payment"
        assert form["line_items[0][price_data][currency]"] == "inr"
        assert form["line_items[0][price_data][unit_amount]"] == "1180000"
        assert form["line_items[0][price_data][product_data][name]"] == "Invoice INV-20260301-0001"
        assert form["metadata[invoice_id]"] == str(INVOICE_ID)
        assert form["payment_intent_data[metadata][invoice_id]"] == str(INVOICE_ID)
        assert form["metadata[invoice_number]"] == "INV-20260301-0001"
        assert form["cancel_url"] == "https://billing.acme.in/payment/cancelled"

        assert link.id == "cs_test_1"
        assert link.status == LinkStatus.ACTIVE
        assert link.expires_at is not None

    @responses.activate
    def test_zero_decimal_currency_not_scaled(self, gateway):
        responses.add(
            responses.POST, f"{STRIPE_API_BASE}/v1/checkout/sessions",
            json={"id": "cs_test_2", "url": "https://checkout.stripe.com/c/pay/cs_test_2"},
        )

        gateway.create_payment_link(PaymentLinkParams(
            amount=Decimal("5000"), currency="JPY", description="x",
            client_email="a@acme.in", client_name="A",
        ))

        assert _form(responses.calls[0].request)["line_items[0][price_data][unit_amount]"] == "5000"

    @responses.activate
    def test_stripe_error_message_surfaces(self, gateway):
        responses.add(
            responses.POST, f"{STRIPE_API_BASE}/v1/checkout/sessions",
            json={"error": {"type": "invalid_request_error", "message": "Amount must convert to at least 50 cents."}},
            status=400,
        )

        with pytest.raises(GatewayError, match="at least 50 cents"):
            gateway.create_payment_link(PaymentLinkParams(
                amount=Decimal("1.00"), description="x",
                client_email="a@acme.in", client_name="A",
            ))


class TestSignature:
    """Stripe-Signature header verification."""

    def test_valid_header_accepted(self, gateway):
        payload = _event("checkout.session.completed", _session())

        gateway.verify_signature(payload, _header(payload))

    def test_any_matching_v1_accepted(self, gateway):
        """During secret rotation Stripe sends one v1 per secret."""
        payload = b"{}"
        valid = _header(payload)
        t = valid.split(",")[0]
        header = f"{t},v1=deadbeef,{valid.split(',')[1]}"

        gateway.verify_signature(payload, header)

    def test_stale_timestamp_rejected(self, gateway):
        payload = b"{}"
        header = _header(payload, timestamp=1_000_000)

        with pytest.raises(SignatureInvalidError, match="tolerance"):
            gateway.verify_signature(payload, header, now=1_000_301)

    def test_timestamp_within_tolerance_accepted(self, gateway):
        payload = b"{}"

        gateway.verify_signature(payload, _header(payload, timestamp=1_000_000), now=1_000_300)

    @pytest.mark.parametrize("header", [None, "", "v1=abc", "t=123", "t=abc,v1=def"])
    def test_malformed_headers_rejected(self, gateway, header):
        with pytest.raises(SignatureInvalidError):
            gateway.verify_signature(b"{}", header)

    def test_wrong_secret_rejected(self, gateway):
        payload = b"{}"

        with pytest.raises(SignatureInvalidError, match="mismatch"):
            gateway.verify_signature(payload, _header(payload, secret="whsec_other"))


class TestWebhookEvents:
    """Event type to normalized PaymentStatus."""

    def _process(self, gateway, event_type, obj):
        payload = _event(event_type, obj)
        return gateway.process_webhook(payload, _header(payload))

    def test_session_completed(self, gateway):
        status = self._process(gateway, "checkout.session.completed", _session())

        assert status.id == "cs_test_1"
        assert status.status == PaymentState.COMPLETED
        assert status.amount == Decimal("11800.00")
        assert status.paid_amount == Decimal("11800.00")
        assert status.transaction_id == "pi_1"
        assert status.payment_method == "card"
        assert status.metadata == {"invoice_id": str(INVOICE_ID)}
        assert status.event_type == "checkout.session.completed"

    def test_paid_at_is_event_time_not_session_creation(self, gateway):
        """Session created 1 Mar 2026, paid 5 Mar 2026."""
        payload = _event("checkout.session.completed", _session(), created=1772705400)

        status = gateway.process_webhook(payload, _header(payload))

        assert status.paid_at == datetime(2026, 3, 5, 10, 10, tzinfo=timezone.utc)

    def test_completed_session_awaiting_async_payment_is_processing(self, gateway):
        status = self._process(gateway, "checkout.session.completed", _session(payment_status="unpaid"))

        assert status.status == PaymentState.PROCESSING
        assert status.paid_amount == Decimal("0")

    def test_async_payment_failed(self, gateway):
        status = self._process(gateway, "checkout.session.async_payment_failed", _session(payment_status="unpaid"))

        assert status.status == PaymentState.FAILED

    def test_session_expired(self, gateway):
        status = self._process(
            gateway, "checkout.session.expired", _session(status="expired", payment_status="unpaid"),
        )

        assert status.status == PaymentState.CANCELLED

    def test_intent_failed_carries_reason(self, gateway):
        status = self._process(gateway, "payment_intent.payment_failed", {
            "id": "pi_1", "status": "requires_payment_method", "amount": 1180000, "currency": "inr",
            "last_payment_error": {"message": "Your card was declined."},
        })

        assert status.id == "pi_1"
        assert status.status == PaymentState.FAILED
        assert status.failure_reason == "Your card was declined."

    def test_partial_refund(self, gateway):
        status = self._process(gateway, "charge.refunded", {
            "id": "ch_1", "payment_intent": "pi_1", "amount": 1180000,
            "amount_refunded": 40000, "currency": "inr",
        })

        assert status.id == "pi_1"
        assert status.status == PaymentState.PARTIALLY_REFUNDED
        assert status.metadata == {"amount_refunded": "400.00"}

    def test_dispute_is_failure(self, gateway):
        status = self._process(gateway, "charge.dispute.created", {
            "id": "dp_1", "payment_intent": "pi_1", "amount": 1180000,
            "currency": "inr", "reason": "fraudulent",
        })

        assert status.status == PaymentState.FAILED
        assert status.failure_reason == "dispute: fraudulent"

    def test_unsupported_event(self, gateway):
        with pytest.raises(UnsupportedEventError, match="customer.created"):
            self._process(gateway, "customer.created", {"id": "cus_1"})

    def test_signature_checked_before_parsing(self, gateway):
        with pytest.raises(SignatureInvalidError):
            gateway.process_webhook(b"not json", "t=1,v1=abc")


class TestStatusAndRefund:
    """Lookups and refunds by session or intent id."""

    @responses.activate
    def test_status_by_session(self, gateway):
        responses.add(responses.GET, f"{STRIPE_API_BASE}/v1/checkout/sessions/cs_test_1", json=_session())

        status = gateway.get_payment_status("cs_test_1")

        assert status.status == PaymentState.COMPLETED
        assert status.paid_at is None

    @responses.activate
    def test_status_by_intent(self, gateway):
        responses.add(
            responses.GET, f"{STRIPE_API_BASE}/v1/payment_intents/pi_1",
            json={"id": "pi_1", "status": "processing", "amount": 1180000, "amount_received": 0, "currency": "inr"},
        )

        status = gateway.get_payment_status("pi_1")

        assert status.status == PaymentState.PROCESSING
        assert status.paid_at is None

    @responses.activate
    def test_partial_refund_of_session(self, gateway):
        responses.add(responses.GET, f"{STRIPE_API_BASE}/v1/checkout/sessions/cs_test_1", json=_session())
        responses.add(
            responses.POST, f"{STRIPE_API_BASE}/v1/refunds",
            json={"id": "re_1", "status": "succeeded", "amount": 40000},
        )

        result = gateway.refund_payment("cs_test_1", Decimal("400"))

        assert _form(responses.calls[1].request) == {"payment_intent": "pi_1", "amount": "40000"}
        assert result.status == RefundState.COMPLETED
        assert result.amount == Decimal("400.00")

    @responses.activate
    def test_unpaid_session_not_refundable(self, gateway):
        responses.add(
            responses.GET, f"{STRIPE_API_BASE}/v1/checkout/sessions/cs_test_1",
            json=_session(payment_status="unpaid", payment_intent=None),
        )

        with pytest.raises(NotRefundableError):
            gateway.refund_payment("cs_test_1")

        assert len(responses.calls) == 1
