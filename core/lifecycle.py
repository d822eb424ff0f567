"""
Invoice lifecycle state machine.

Pure transitions: each takes an Invoice and returns a new one, or raises
without touching the input.

    draft -> sent -> overdue
      |        |        |
      +--------+--------+--> paid (paid_amount == total_amount)
      +--------+--------+--> cancelled

paid and cancelled are terminal.
"""

from datetime import date, datetime
from decimal import Decimal

from core.exceptions import InvalidStateError, ValidationError
from core.models.client import Client
from core.models.invoice import (
    Invoice, InvoicePaymentStatus, InvoiceStatus, LineItem, TERMINAL_STATUSES,
)
from core.tax import compute_invoice_totals
from utils.money import ZERO, round2, to_decimal
from utils.timezone import now_utc


def ensure_mutable(invoice: Invoice) -> None:
    """Raise if the invoice is in a terminal state."""
    if invoice.status in TERMINAL_STATUSES:
        raise InvalidStateError(
            f"Invoice {invoice.invoice_number} is {invoice.status.value} and cannot be modified",
            current_state=invoice.status.value,
        )


def mark_as_sent(invoice: Invoice, now: datetime | None = None) -> Invoice:
    if invoice.status != InvoiceStatus.DRAFT:
        raise InvalidStateError(
            f"Only draft invoices can be sent (invoice {invoice.invoice_number} is {invoice.status.value})",
            current_state=invoice.status.value,
        )
    return invoice.evolve(status=InvoiceStatus.SENT, updated_at=now or now_utc())


def record_payment(
    invoice: Invoice,
    amount,
    payment_date: date,
    payment_method: str | None = None,
    now: datetime | None = None,
) -> Invoice:
    """
    Record money received against an invoice.

    Partial payments set payment_status=partial. The payment that settles the
    balance sets payment_status=paid and status=paid.

    Raises:
        InvalidStateError: Invoice is paid or cancelled
        ValidationError: amount <= 0 or amount > balance due
    """
    ensure_mutable(invoice)

    amount = round2(to_decimal(amount))
    if amount <= 0:
        raise ValidationError(
            "Payment amount must be positive",
            errors=[{"field": "amount", "message": "must be greater than 0"}],
        )
    if amount > invoice.balance_due:
        raise ValidationError(
            f"Payment amount {amount} exceeds remaining balance {invoice.balance_due}",
            errors=[{"field": "amount", "message": "exceeds remaining balance"}],
        )

    paid_amount = round2(invoice.paid_amount + amount)
    changes = {
        "paid_amount": paid_amount,
        "payment_date": payment_date,
        "payment_method": payment_method or invoice.payment_method,
        "updated_at": now or now_utc(),
    }
    if paid_amount >= invoice.total_amount:
        changes["payment_status"] = InvoicePaymentStatus.PAID
        changes["status"] = InvoiceStatus.PAID
    else:
        changes["payment_status"] = InvoicePaymentStatus.PARTIAL

    return invoice.evolve(**changes)


def mark_as_overdue(invoice: Invoice, today: date, now: datetime | None = None) -> Invoice:
    """Only a sent, unpaid invoice past its due date becomes overdue."""
    if invoice.status != InvoiceStatus.SENT:
        raise InvalidStateError(
            f"Only sent invoices can become overdue (invoice {invoice.invoice_number} is {invoice.status.value})",
            current_state=invoice.status.value,
        )
    if today <= invoice.due_date:
        raise InvalidStateError(
            f"Invoice {invoice.invoice_number} is not past due ({invoice.due_date.isoformat()})",
            current_state=invoice.status.value,
        )
    if invoice.is_fully_paid:
        raise InvalidStateError(
            f"Invoice {invoice.invoice_number} is fully paid",
            current_state=invoice.status.value,
        )
    return invoice.evolve(status=InvoiceStatus.OVERDUE, updated_at=now or now_utc())


def cancel(invoice: Invoice, now: datetime | None = None) -> Invoice:
    if invoice.status == InvoiceStatus.PAID:
        raise InvalidStateError(
            f"Invoice {invoice.invoice_number} is paid and cannot be cancelled",
            current_state=invoice.status.value,
        )
    if invoice.status == InvoiceStatus.CANCELLED:
        raise InvalidStateError(
            f"Invoice {invoice.invoice_number} is already cancelled",
            current_state=invoice.status.value,
        )
    return invoice.evolve(status=InvoiceStatus.CANCELLED, updated_at=now or now_utc())


def mark_payment_failed(invoice: Invoice, now: datetime | None = None) -> Invoice:
    """
    A provider reported a failed payment.

    A sent invoice moves to overdue so the collection sweep picks it up.
    Money already received is kept.
    """
    ensure_mutable(invoice)
    changes = {"payment_status": InvoicePaymentStatus.FAILED, "updated_at": now or now_utc()}
    if invoice.status == InvoiceStatus.SENT:
        changes["status"] = InvoiceStatus.OVERDUE
    return invoice.evolve(**changes)


def mark_refunded(invoice: Invoice, now: datetime | None = None) -> Invoice:
    """Provider refunded the full payment. Lifecycle status is left alone."""
    return invoice.evolve(
        payment_status=InvoicePaymentStatus.REFUNDED,
        updated_at=now or now_utc(),
    )


def recalculate_amounts(
    invoice: Invoice,
    seller_state_code: str | None,
    client: Client | None,
    line_items: list[LineItem] | None = None,
    discount_percentage: Decimal | None = None,
    discount_amount: Decimal | None = None,
    now: datetime | None = None,
) -> Invoice:
    """
    Recompute subtotal, tax and total, optionally with new lines or discount.

    Late fees already charged stay on the total.

    Raises:
        InvalidStateError: Invoice is paid or cancelled
        ValidationError: New total would be below what has been paid
    """
    ensure_mutable(invoice)

    items = line_items if line_items is not None else invoice.line_items
    pct = discount_percentage if discount_percentage is not None else invoice.discount_percentage
    if discount_amount is not None:
        amount = discount_amount
    elif discount_percentage is not None:
        # A new percentage replaces the previously resolved amount
        amount = ZERO
    else:
        amount = invoice.discount_amount if not invoice.discount_percentage else ZERO

    totals = compute_invoice_totals(
        items,
        seller_state_code,
        client.place_of_supply if client else None,
        discount_percentage=pct,
        discount_amount=amount,
        late_fee_applied=invoice.late_fee_applied,
    )
    if totals.total_amount < invoice.paid_amount:
        raise ValidationError(
            f"New total {totals.total_amount} is below amount already paid {invoice.paid_amount}",
            errors=[{"field": "line_items", "message": "total below paid amount"}],
        )

    return invoice.evolve(
        line_items=items,
        discount_percentage=pct,
        discount_amount=totals.discount_amount,
        subtotal=totals.subtotal,
        tax_breakdown=totals.tax_breakdown,
        total_amount=totals.total_amount,
        updated_at=now or now_utc(),
    )
