"""Tests for the payment receipt handler.

On PaymentCompleted: email the client a receipt with the remaining balance.
"""

from decimal import Decimal

from core.events import PaymentCompleted
from core.handlers.payment_completed_handler import handle_payment_completed
from core.models import InvoiceStatus
from tests.fakes import make_invoice


class TestHandlePaymentCompleted:

    def test_partial_payment_receipt(self, invoice_service, invoice_store, stored_client, notifier):
        invoice = invoice_store.insert(make_invoice(
            client=stored_client, status=InvoiceStatus.SENT, paid_amount=Decimal("5000"),
        ))
        handler = handle_payment_completed(notifier, invoice_service)

        handler(PaymentCompleted(
            gateway="razorpay", payment_id="plink_1", invoice_id=invoice.id,
            amount=Decimal("5000"), transaction_id="pay_Q1",
        ))

        to, subject, body = notifier.send_email.call_args[0]
        assert to == stored_client.email
        assert subject == "Payment received - Invoice INV-20260301-0001"
        assert "We received INR 5,000.00 via razorpay" in body
        assert "(reference pay_Q1)" in body
        assert "Remaining balance: INR 6,800.00." in body

    def test_paid_in_full(self, invoice_service, invoice_store, stored_client, notifier):
        invoice = invoice_store.insert(make_invoice(
            client=stored_client, status=InvoiceStatus.PAID, paid_amount=Decimal("11800"),
        ))

        handle_payment_completed(notifier, invoice_service)(PaymentCompleted(
            gateway="stripe", payment_id="cs_1", invoice_id=invoice.id, amount=Decimal("11800"),
        ))

        body = notifier.send_email.call_args[0][2]
        assert "paid in full" in body
        assert "reference" not in body

    def test_payment_without_invoice_ignored(self, invoice_service, notifier):
        handle_payment_completed(notifier, invoice_service)(
            PaymentCompleted(gateway="paypal", payment_id="order_1", amount=Decimal("10"))
        )

        notifier.send_email.assert_not_called()

    def test_wired_through_event_bus(self, invoice_service, invoice_store, stored_client, notifier, event_bus):
        invoice = invoice_store.insert(make_invoice(client=stored_client, status=InvoiceStatus.SENT))
        event_bus.subscribe(PaymentCompleted, handle_payment_completed(notifier, invoice_service))

        event_bus.publish(PaymentCompleted(
            gateway="razorpay", payment_id="plink_1", invoice_id=invoice.id, amount=Decimal("100"),
        ))

        notifier.send_email.assert_called_once()
