"""
Domain events for billing.

Immutable event objects that represent state changes. A service publishes
what happened, and handlers (receipts, late-fee notices) react without the
publisher knowing who's listening.

Event Categories:
- InvoiceEvent: Invoice lifecycle (sent, overdue, paid, late fee)
- PaymentEvent: Provider-reported payment outcomes
- ReminderEvent: Reminder delivery

Invoice events carry the full invoice so handlers don't need to re-fetch it.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from utils.timezone import now_utc


@dataclass(frozen=True, kw_only=True)
class BillingEvent:
    """Base class for all billing domain events."""
    event_id: str = field(default_factory=lambda: str(uuid4()))
    occurred_at: datetime = field(default_factory=now_utc)


# =============================================================================
# INVOICE EVENTS
# =============================================================================


@dataclass(frozen=True)
class InvoiceEvent(BillingEvent):
    """Events related to invoice lifecycle."""
    pass


@dataclass(frozen=True)
class InvoiceSent(InvoiceEvent):
    """Invoice was sent to the client."""
    invoice: Any = None  # Invoice (Any avoids a circular import)

    @classmethod
    def create(cls, invoice: Any) -> "InvoiceSent":
        return cls(invoice=invoice)


@dataclass(frozen=True)
class InvoiceOverdue(InvoiceEvent):
    """Invoice passed its due date unpaid."""
    invoice: Any = None

    @classmethod
    def create(cls, invoice: Any) -> "InvoiceOverdue":
        return cls(invoice=invoice)


@dataclass(frozen=True)
class InvoicePaid(InvoiceEvent):
    """Invoice was fully paid."""
    invoice: Any = None

    @classmethod
    def create(cls, invoice: Any) -> "InvoicePaid":
        return cls(invoice=invoice)


@dataclass(frozen=True)
class LateFeeApplied(InvoiceEvent):
    """A late fee was added to an overdue invoice."""
    invoice: Any = None
    amount: Decimal = Decimal("0")
    days_overdue: int = 0

    @classmethod
    def create(cls, invoice: Any, amount: Decimal, days_overdue: int) -> "LateFeeApplied":
        return cls(invoice=invoice, amount=amount, days_overdue=days_overdue)


# =============================================================================
# PAYMENT EVENTS
# =============================================================================


@dataclass(frozen=True)
class PaymentEvent(BillingEvent):
    """Events reported by a payment gateway."""
    gateway: str = ""
    payment_id: str = ""


@dataclass(frozen=True)
class PaymentCompleted(PaymentEvent):
    """Money was credited to an invoice from a provider payment."""
    invoice_id: UUID | None = None
    amount: Decimal = Decimal("0")
    transaction_id: str | None = None
    payment_method: str | None = None


@dataclass(frozen=True)
class PaymentFailed(PaymentEvent):
    """A provider reported a failed payment."""
    invoice_id: UUID | None = None
    reason: str | None = None


# =============================================================================
# REMINDER EVENTS
# =============================================================================


@dataclass(frozen=True)
class ReminderEvent(BillingEvent):
    """Events related to reminder delivery."""
    pass


@dataclass(frozen=True)
class ReminderSent(ReminderEvent):
    """A scheduled reminder was delivered."""
    rule: Any = None
    invoice: Any = None

    @classmethod
    def create(cls, rule: Any, invoice: Any) -> "ReminderSent":
        return cls(rule=rule, invoice=invoice)
