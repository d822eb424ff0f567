"""
Invoice service for billing and payments.

Wraps the pure lifecycle transitions with persistence, the audit trail and
domain events. Every mutation of one invoice runs under that invoice's lock,
so API edits, webhook reconciliation and scheduler sweeps never interleave.
"""

import logging
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID, uuid4

from core import lifecycle
from core.audit import AuditLogger, AuditAction, compute_changes
from core.config import BillingConfig
from core.event_bus import EventBus
from core.events import InvoiceOverdue, InvoicePaid, InvoiceSent, LateFeeApplied
from core.exceptions import NotFoundError, ValidationError
from core.locks import KeyedLock
from core.models import (
    Client, Invoice, InvoiceCreate, InvoiceStatus, InvoiceUpdate,
    LateFeeApplication, LateFeeRule, LateFeeType,
)
from core.stores import ClientStore, InvoiceStore, LateFeeStore
from core.tax import apply_late_fee, compute_invoice_totals
from utils.money import ZERO, to_decimal
from utils.timezone import local_date, now_utc

logger = logging.getLogger(__name__)


class InvoiceService:
    """Service for invoice operations."""

    def __init__(
        self,
        invoices: InvoiceStore,
        clients: ClientStore,
        audit: AuditLogger,
        event_bus: EventBus,
        config: BillingConfig,
        locks: KeyedLock | None = None,
        late_fees: LateFeeStore | None = None,
    ):
        self.invoices = invoices
        self.clients = clients
        self.audit = audit
        self.event_bus = event_bus
        self.config = config
        self.locks = locks or KeyedLock()
        self.late_fees = late_fees

    def today(self, now: datetime | None = None) -> date:
        """Business date in the configured timezone."""
        return local_date(now or now_utc(), self.config.timezone)

    def _generate_invoice_number(self, today: date) -> str:
        """
        Generate the next invoice number for a day.

        Format: INV-YYYYMMDD-XXXX where XXXX is a sequence number.
        """
        prefix = f"INV-{today.strftime('%Y%m%d')}-"

        existing = self.invoices.latest_number(prefix)
        if existing is None:
            sequence = 1
        else:
            try:
                sequence = int(existing.split("-")[-1]) + 1
            except (ValueError, IndexError):
                sequence = 1

        return f"{prefix}{sequence:04d}"

    def get_client(self, client_id: UUID) -> Client:
        client = self.clients.get(client_id)
        if client is None:
            raise NotFoundError("client", client_id)
        return client

    def _save(self, current: Invoice, updated: Invoice, actor: str) -> Invoice:
        """Persist a transition and audit the changed fields."""
        saved = self.invoices.update(updated)

        changes = compute_changes(
            current.model_dump(mode="json"),
            saved.model_dump(mode="json")
        )
        if changes:
            self.audit.log_change(
                entity_type="invoice",
                entity_id=saved.id,
                action=AuditAction.UPDATE,
                changes=changes,
                actor=actor
            )
        return saved

    # -------------------------------------------------------------------------
    # Create / read / edit
    # -------------------------------------------------------------------------

    def create(self, data: InvoiceCreate, actor: str = "api", now: datetime | None = None) -> Invoice:
        """
        Create a draft invoice with computed tax and totals.

        Tax is split by the client's place of supply against the seller's
        state code.

        Raises:
            NotFoundError: If the client does not exist
            ValidationError: If the due date is not after the issue date,
                or the discount exceeds the line items total
        """
        now = now or now_utc()
        client = self.get_client(data.client_id)

        issue_date = data.issue_date or self.today(now)
        if data.due_date <= issue_date:
            raise ValidationError(
                "Due date must be after issue date",
                errors=[{"field": "due_date", "message": "must be after issue_date"}],
            )

        totals = compute_invoice_totals(
            data.line_items,
            self.config.seller_state_code,
            client.place_of_supply,
            discount_percentage=data.discount_percentage,
            discount_amount=data.discount_amount,
        )

        with self.locks.hold("invoice-number"):
            invoice = Invoice(
                id=uuid4(),
                invoice_number=self._generate_invoice_number(issue_date),
                client_id=data.client_id,
                project_id=data.project_id,
                line_items=data.line_items,
                subtotal=totals.subtotal,
                tax_breakdown=totals.tax_breakdown,
                total_amount=totals.total_amount,
                currency=data.currency.upper(),
                discount_percentage=data.discount_percentage,
                discount_amount=totals.discount_amount,
                issue_date=issue_date,
                due_date=data.due_date,
                notes=data.notes,
                created_at=now,
                updated_at=now,
            )
            invoice = self.invoices.insert(invoice)

        self.audit.log_change(
            entity_type="invoice",
            entity_id=invoice.id,
            action=AuditAction.CREATE,
            changes={"created": invoice.model_dump(mode="json")},
            actor=actor
        )

        logger.info(
            f"Invoice {invoice.invoice_number} created for client {client.id}: "
            f"{invoice.currency} {invoice.total_amount}"
        )
        return invoice

    def get_by_id(self, invoice_id: UUID) -> Invoice:
        """
        Get invoice by ID.

        Raises:
            NotFoundError: If the invoice does not exist
        """
        invoice = self.invoices.get(invoice_id)
        if invoice is None:
            raise NotFoundError("invoice", invoice_id)
        return invoice

    def update(self, invoice_id: UUID, data: InvoiceUpdate, actor: str = "api") -> Invoice:
        """
        Edit lines, discount, due date or notes.

        Changing lines or discount recalculates tax and totals. Late fees
        already charged stay on the total.

        Raises:
            InvalidStateError: If the invoice is paid or cancelled
            ValidationError: If the new due date or total is invalid
        """
        with self.locks.hold(invoice_id):
            current = self.get_by_id(invoice_id)
            lifecycle.ensure_mutable(current)
            now = now_utc()

            updated = current
            if (
                data.line_items is not None
                or data.discount_percentage is not None
                or data.discount_amount is not None
            ):
                updated = lifecycle.recalculate_amounts(
                    current,
                    self.config.seller_state_code,
                    self.clients.get(current.client_id),
                    line_items=data.line_items,
                    discount_percentage=data.discount_percentage,
                    discount_amount=data.discount_amount,
                    now=now,
                )

            changes = {}
            if data.due_date is not None:
                if data.due_date <= current.issue_date:
                    raise ValidationError(
                        "Due date must be after issue date",
                        errors=[{"field": "due_date", "message": "must be after issue_date"}],
                    )
                changes["due_date"] = data.due_date
            if "notes" in data.model_fields_set:
                changes["notes"] = data.notes
            if changes:
                updated = updated.evolve(**changes, updated_at=now)

            if updated is current:
                return current
            return self._save(current, updated, actor)

    def list_open(self) -> list[Invoice]:
        """Sent and overdue invoices, oldest due date first."""
        return self.invoices.list_by_status([InvoiceStatus.SENT, InvoiceStatus.OVERDUE])

    def list_by_status(self, statuses: list[InvoiceStatus]) -> list[Invoice]:
        return self.invoices.list_by_status(statuses)

    def get_history(self, invoice_id: UUID) -> list[dict]:
        """Audit entries for an invoice, newest first."""
        self.get_by_id(invoice_id)
        return self.audit.get_entity_history("invoice", invoice_id)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def send(self, invoice_id: UUID, actor: str = "api") -> Invoice:
        """
        Send a draft invoice.

        Raises:
            NotFoundError: If the invoice does not exist
            InvalidStateError: If the invoice is not a draft
        """
        with self.locks.hold(invoice_id):
            current = self.get_by_id(invoice_id)
            updated = self._save(current, lifecycle.mark_as_sent(current), actor)

        logger.info(f"Invoice {updated.invoice_number} sent")
        self.event_bus.publish(InvoiceSent.create(invoice=updated))
        return updated

    def record_payment(
        self,
        invoice_id: UUID,
        amount,
        payment_date: date | None = None,
        payment_method: str | None = None,
        actor: str = "api",
    ) -> Invoice:
        """
        Record an offline payment (bank transfer, cheque, cash).

        Raises:
            InvalidStateError: If the invoice is paid or cancelled
            ValidationError: If amount <= 0 or exceeds the balance due
        """
        with self.locks.hold(invoice_id):
            current = self.get_by_id(invoice_id)
            updated = lifecycle.record_payment(
                current,
                amount,
                payment_date or self.today(),
                payment_method=payment_method,
            )
            updated = self._save(current, updated, actor)

        logger.info(
            f"Payment of {to_decimal(amount)} recorded on invoice {updated.invoice_number} "
            f"(balance {updated.balance_due})"
        )
        if updated.status == InvoiceStatus.PAID:
            self.event_bus.publish(InvoicePaid.create(invoice=updated))
        return updated

    def mark_overdue(self, invoice_id: UUID, today: date | None = None, actor: str = "scheduler") -> Invoice:
        """
        Raises:
            InvalidStateError: If the invoice is not sent, not yet due, or paid
        """
        with self.locks.hold(invoice_id):
            current = self.get_by_id(invoice_id)
            updated = lifecycle.mark_as_overdue(current, today or self.today())
            updated = self._save(current, updated, actor)

        logger.info(f"Invoice {updated.invoice_number} is overdue (due {updated.due_date})")
        self.event_bus.publish(InvoiceOverdue.create(invoice=updated))
        return updated

    def cancel(self, invoice_id: UUID, actor: str = "api") -> Invoice:
        """
        Raises:
            InvalidStateError: If the invoice is paid or already cancelled
        """
        with self.locks.hold(invoice_id):
            current = self.get_by_id(invoice_id)
            updated = self._save(current, lifecycle.cancel(current), actor)

        logger.info(f"Invoice {updated.invoice_number} cancelled")
        return updated

    # -------------------------------------------------------------------------
    # Late fees
    # -------------------------------------------------------------------------

    def apply_late_fee(
        self,
        invoice_id: UUID,
        rate: Decimal | None = None,
        max_amount: Decimal | None = None,
        actor: str = "api",
    ) -> tuple[Invoice, Decimal]:
        """
        Operator-triggered percentage late fee.

        Args:
            invoice_id: Overdue invoice
            rate: Percentage of the balance due (config default_late_fee_rate if omitted)
            max_amount: Optional cap on the fee

        Raises:
            InvalidStateError: If the invoice is not overdue
        """
        rule = LateFeeRule(
            id=uuid4(),
            name="manual",
            type=LateFeeType.PERCENTAGE,
            amount=to_decimal(rate) if rate is not None else self.config.default_late_fee_rate,
            max_amount=max_amount,
        )
        return self._charge_late_fee(invoice_id, rule, None, now_utc(), actor)

    def apply_rule_late_fee(
        self,
        invoice_id: UUID,
        rule: LateFeeRule,
        now: datetime | None = None,
        actor: str = "scheduler",
    ) -> tuple[Invoice, Decimal]:
        """Late fee under a stored rule. The application is recorded against the rule."""
        return self._charge_late_fee(invoice_id, rule, rule.id, now or now_utc(), actor)

    def _charge_late_fee(
        self,
        invoice_id: UUID,
        rule: LateFeeRule,
        rule_id: UUID | None,
        now: datetime,
        actor: str,
    ) -> tuple[Invoice, Decimal]:
        with self.locks.hold(invoice_id):
            current = self.get_by_id(invoice_id)
            updated, fee = apply_late_fee(current, rule, now)
            if fee == ZERO:
                return current, fee

            updated = self._save(current, updated, actor)
            days_overdue = updated.days_overdue(self.today(now))
            if self.late_fees is not None:
                self.late_fees.insert_application(
                    LateFeeApplication(
                        id=uuid4(),
                        invoice_id=updated.id,
                        rule_id=rule_id,
                        amount=fee,
                        days_overdue=days_overdue,
                        applied_at=now,
                    )
                )

        logger.info(
            f"Late fee {fee} ({rule.name}) applied to invoice {updated.invoice_number}, "
            f"{days_overdue} days overdue"
        )
        self.event_bus.publish(LateFeeApplied.create(updated, fee, days_overdue))
        return updated, fee

    # -------------------------------------------------------------------------
    # Provider-reported outcomes
    #
    # Called by PaymentService while it already holds the invoice lock. These
    # do not publish: the caller collects events and publishes once the lock
    # is released.
    # -------------------------------------------------------------------------

    def apply_provider_payment(
        self,
        invoice_id: UUID,
        amount: Decimal,
        payment_method: str | None,
        paid_on: date,
        actor: str,
    ) -> Invoice:
        with self.locks.hold(invoice_id):
            current = self.get_by_id(invoice_id)
            updated = lifecycle.record_payment(current, amount, paid_on, payment_method=payment_method)
            return self._save(current, updated, actor)

    def mark_payment_failed(self, invoice_id: UUID, actor: str) -> Invoice:
        with self.locks.hold(invoice_id):
            current = self.get_by_id(invoice_id)
            return self._save(current, lifecycle.mark_payment_failed(current), actor)

    def mark_refunded(self, invoice_id: UUID, actor: str) -> Invoice:
        with self.locks.hold(invoice_id):
            current = self.get_by_id(invoice_id)
            return self._save(current, lifecycle.mark_refunded(current), actor)
