"""Tests for the invoice state machine."""

from datetime import date
from decimal import Decimal

import pytest

from core import lifecycle
from core.exceptions import InvalidStateError, ValidationError
from core.models import InvoicePaymentStatus, InvoiceStatus, LineItem
from tests.fakes import SELLER_STATE, make_client, make_invoice

PAID_ON = date(2026, 3, 10)


class TestMarkAsSent:

    def test_draft_becomes_sent(self):
        sent = lifecycle.mark_as_sent(make_invoice())
        assert sent.status == InvoiceStatus.SENT

    @pytest.mark.parametrize("status", [InvoiceStatus.SENT, InvoiceStatus.OVERDUE, InvoiceStatus.CANCELLED])
    def test_only_draft_can_be_sent(self, status):
        with pytest.raises(InvalidStateError) as exc_info:
            lifecycle.mark_as_sent(make_invoice(status=status))
        assert exc_info.value.current_state == status.value


class TestRecordPayment:
    """Partial, full and rejected payments."""

    def test_partial_payment(self):
        invoice = make_invoice(status=InvoiceStatus.SENT)

        updated = lifecycle.record_payment(invoice, Decimal("5000"), PAID_ON, "upi")

        assert updated.paid_amount == Decimal("5000.00")
        assert updated.payment_status == InvoicePaymentStatus.PARTIAL
        assert updated.status == InvoiceStatus.SENT
        assert updated.payment_method == "upi"
        assert updated.payment_date == PAID_ON

    def test_payments_summing_to_total_mark_paid(self):
        invoice = make_invoice(status=InvoiceStatus.SENT)

        first = lifecycle.record_payment(invoice, Decimal("5000"), PAID_ON)
        second = lifecycle.record_payment(first, Decimal("6800"), PAID_ON)

        assert second.paid_amount == second.total_amount
        assert second.status == InvoiceStatus.PAID
        assert second.payment_status == InvoicePaymentStatus.PAID

    def test_overpayment_rejected_and_input_untouched(self):
        invoice = make_invoice(status=InvoiceStatus.SENT, paid_amount=Decimal("11000"))

        with pytest.raises(ValidationError, match="exceeds remaining balance"):
            lifecycle.record_payment(invoice, Decimal("801"), PAID_ON)

        assert invoice.paid_amount == Decimal("11000")

    def test_non_positive_amount_rejected(self):
        with pytest.raises(ValidationError, match="positive"):
            lifecycle.record_payment(make_invoice(status=InvoiceStatus.SENT), Decimal("0"), PAID_ON)

    def test_draft_accepts_payment(self):
        """Money can arrive before the invoice is formally sent."""
        updated = lifecycle.record_payment(make_invoice(), Decimal("100"), PAID_ON)
        assert updated.payment_status == InvoicePaymentStatus.PARTIAL

    @pytest.mark.parametrize("status", [InvoiceStatus.PAID, InvoiceStatus.CANCELLED])
    def test_terminal_invoice_rejected(self, status):
        with pytest.raises(InvalidStateError):
            lifecycle.record_payment(make_invoice(status=status), Decimal("100"), PAID_ON)


class TestMarkAsOverdue:

    def test_sent_past_due_becomes_overdue(self):
        invoice = make_invoice(status=InvoiceStatus.SENT, due_date=date(2026, 3, 31))

        overdue = lifecycle.mark_as_overdue(invoice, date(2026, 4, 1))

        assert overdue.status == InvoiceStatus.OVERDUE

    def test_on_due_date_is_not_overdue(self):
        invoice = make_invoice(status=InvoiceStatus.SENT, due_date=date(2026, 3, 31))

        with pytest.raises(InvalidStateError, match="not past due"):
            lifecycle.mark_as_overdue(invoice, date(2026, 3, 31))

    def test_draft_never_becomes_overdue(self):
        with pytest.raises(InvalidStateError):
            lifecycle.mark_as_overdue(make_invoice(), date(2026, 5, 1))


class TestCancel:

    @pytest.mark.parametrize("status", [InvoiceStatus.DRAFT, InvoiceStatus.SENT, InvoiceStatus.OVERDUE])
    def test_open_invoices_can_be_cancelled(self, status):
        assert lifecycle.cancel(make_invoice(status=status)).status == InvoiceStatus.CANCELLED

    def test_paid_cannot_be_cancelled(self):
        with pytest.raises(InvalidStateError, match="paid"):
            lifecycle.cancel(make_invoice(status=InvoiceStatus.PAID))

    def test_cancelling_twice_rejected(self):
        with pytest.raises(InvalidStateError, match="already cancelled"):
            lifecycle.cancel(make_invoice(status=InvoiceStatus.CANCELLED))


class TestProviderOutcomes:

    def test_failed_payment_moves_sent_to_overdue(self):
        failed = lifecycle.mark_payment_failed(make_invoice(status=InvoiceStatus.SENT))

        assert failed.payment_status == InvoicePaymentStatus.FAILED
        assert failed.status == InvoiceStatus.OVERDUE

    def test_failed_payment_keeps_draft_status(self):
        failed = lifecycle.mark_payment_failed(make_invoice())
        assert failed.status == InvoiceStatus.DRAFT

    def test_refund_keeps_lifecycle_status(self):
        invoice = make_invoice(status=InvoiceStatus.PAID, paid_amount=Decimal("11800"))

        refunded = lifecycle.mark_refunded(invoice)

        assert refunded.payment_status == InvoicePaymentStatus.REFUNDED
        assert refunded.status == InvoiceStatus.PAID


class TestRecalculateAmounts:
    """Line and discount edits."""

    def test_new_lines_retotal(self):
        client = make_client()
        invoice = make_invoice(client=client)
        lines = [LineItem(description="Bigger job", quantity=2, unit_price=Decimal("10000"))]

        updated = lifecycle.recalculate_amounts(invoice, SELLER_STATE, client, line_items=lines)

        assert updated.subtotal == Decimal("20000.00")
        assert updated.total_amount == Decimal("23600.00")

    def test_late_fee_survives_recalculation(self):
        client = make_client()
        invoice = make_invoice(
            client=client, status=InvoiceStatus.OVERDUE,
            late_fee_applied=Decimal("100"), total_amount=Decimal("11900"),
        )

        updated = lifecycle.recalculate_amounts(invoice, SELLER_STATE, client, discount_percentage=Decimal("10"))

        assert updated.discount_amount == Decimal("1000.00")
        assert updated.total_amount == Decimal("10720.00")

    def test_total_below_paid_rejected(self):
        client = make_client()
        invoice = make_invoice(client=client, status=InvoiceStatus.SENT, paid_amount=Decimal("5000"))
        lines = [LineItem(description="Smaller", quantity=1, unit_price=Decimal("100"))]

        with pytest.raises(ValidationError, match="below amount already paid"):
            lifecycle.recalculate_amounts(invoice, SELLER_STATE, client, line_items=lines)

    def test_paid_invoice_is_immutable(self):
        client = make_client()
        invoice = make_invoice(client=client, status=InvoiceStatus.PAID)

        with pytest.raises(InvalidStateError):
            lifecycle.recalculate_amounts(invoice, SELLER_STATE, client, discount_amount=Decimal("10"))
