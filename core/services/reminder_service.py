"""
Payment reminders and late fees.

Reminder rules are scheduled per invoice and fire once, inside their window:

    before_due  0 < days until due <= days_offset
    on_due      due today
    after_due   days overdue >= days_offset

Late-fee rules are global. Each active rule is charged once per overdue
invoice after its grace period; compounding rules are charged again after
every full compounding period, on the balance that already includes the
earlier fees.

All sweep operations take `now` so a sweep is reproducible, and all are safe
to run repeatedly on the same day.
"""

import logging
from datetime import date, datetime, timedelta
from decimal import Decimal
from uuid import UUID, uuid4

from clients.notification_client import NotificationGatewayClient, NotificationGatewayError
from core.event_bus import EventBus
from core.events import ReminderSent
from core.exceptions import InvalidStateError, NotFoundError
from core.models import (
    Client, DeliveryMethod, Invoice, InvoiceStatus, LateFeeRule, LateFeeRuleCreate,
    ReminderRule, ReminderRuleCreate, ReminderStatus, ReminderType,
)
from core.services.invoice_service import InvoiceService
from core.stores import LateFeeStore, ReminderStore
from core.tax import compounding_period
from utils.money import ZERO, round2
from utils.timezone import now_utc

logger = logging.getLogger(__name__)

DEFAULT_SCHEDULE = [
    (ReminderType.BEFORE_DUE, 3),
    (ReminderType.BEFORE_DUE, 1),
    (ReminderType.ON_DUE, 0),
    (ReminderType.AFTER_DUE, 1),
    (ReminderType.AFTER_DUE, 7),
    (ReminderType.AFTER_DUE, 14),
]

DEFAULT_TEMPLATES = {
    ReminderType.BEFORE_DUE: (
        "Dear {{client_name}},\n\n"
        "This is a friendly reminder that invoice {{invoice_number}} for {{amount}} "
        "is due on {{due_date}} ({{days}} days from today).\n\n"
        "Outstanding balance: {{balance}}\n\n"
        "Thank you for your business."
    ),
    ReminderType.ON_DUE: (
        "Dear {{client_name}},\n\n"
        "Invoice {{invoice_number}} for {{amount}} is due today ({{due_date}}).\n\n"
        "Outstanding balance: {{balance}}\n\n"
        "Thank you for your prompt payment."
    ),
    ReminderType.AFTER_DUE: (
        "Dear {{client_name}},\n\n"
        "Invoice {{invoice_number}} was due on {{due_date}} and is now {{days}} days overdue.\n\n"
        "Outstanding balance: {{balance}}\n\n"
        "Please arrange payment at your earliest convenience. Late fees may apply."
    ),
}

SUBJECTS = {
    ReminderType.BEFORE_DUE: "Payment Reminder - Invoice {invoice_number}",
    ReminderType.ON_DUE: "Payment Due Today - Invoice {invoice_number}",
    ReminderType.AFTER_DUE: "Overdue Payment - Invoice {invoice_number}",
}


def format_money(amount: Decimal, currency: str) -> str:
    return f"{currency} {round2(amount):,.2f}"


def reminder_date(invoice: Invoice, reminder_type: ReminderType, days_offset: int) -> date:
    """Calendar date a reminder becomes due."""
    if reminder_type == ReminderType.BEFORE_DUE:
        return invoice.due_date - timedelta(days=days_offset)
    if reminder_type == ReminderType.AFTER_DUE:
        return invoice.due_date + timedelta(days=days_offset)
    return invoice.due_date


def in_window(rule: ReminderRule, invoice: Invoice, today: date) -> bool:
    days_until_due = invoice.days_until_due(today)
    if rule.type == ReminderType.BEFORE_DUE:
        return 0 < days_until_due <= rule.days_offset
    if rule.type == ReminderType.ON_DUE:
        return days_until_due == 0
    return invoice.days_overdue(today) >= rule.days_offset


def render_template(template: str, rule: ReminderRule, invoice: Invoice, client: Client, today: date) -> str:
    """Fill {{placeholders}}. Unknown placeholders are left as they are."""
    if rule.type == ReminderType.BEFORE_DUE:
        days = invoice.days_until_due(today)
    elif rule.type == ReminderType.AFTER_DUE:
        days = invoice.days_overdue(today)
    else:
        days = 0

    values = {
        "client_name": client.name,
        "invoice_number": invoice.invoice_number,
        "amount": format_money(invoice.total_amount, invoice.currency),
        "balance": format_money(invoice.balance_due, invoice.currency),
        "due_date": invoice.due_date.strftime("%d %b %Y"),
        "days": str(days),
    }
    text = template
    for key, value in values.items():
        text = text.replace("{{" + key + "}}", value)
    return text


class ReminderService:
    """Service for reminder rules, late-fee rules and the periodic sweeps."""

    def __init__(
        self,
        reminders: ReminderStore,
        late_fees: LateFeeStore,
        invoices: InvoiceService,
        notifier: NotificationGatewayClient,
        event_bus: EventBus,
    ):
        self.reminders = reminders
        self.late_fees = late_fees
        self.invoices = invoices
        self.notifier = notifier
        self.event_bus = event_bus

    # -------------------------------------------------------------------------
    # Reminder rules
    # -------------------------------------------------------------------------

    def create_reminder_rule(self, data: ReminderRuleCreate, now: datetime | None = None) -> ReminderRule:
        """
        Schedule a reminder for an invoice.

        Raises:
            NotFoundError: If the invoice does not exist
        """
        invoice = self.invoices.get_by_id(data.invoice_id)
        rule = ReminderRule(
            id=uuid4(),
            invoice_id=invoice.id,
            type=data.type,
            days_offset=data.days_offset,
            template=data.template or DEFAULT_TEMPLATES[data.type],
            method=data.method,
            scheduled_for=reminder_date(invoice, data.type, data.days_offset),
            created_at=now or now_utc(),
        )
        rule = self.reminders.insert(rule)
        logger.info(
            f"Reminder {rule.type.value}/{rule.days_offset} scheduled for invoice "
            f"{invoice.invoice_number} on {rule.scheduled_for}"
        )
        return rule

    def schedule_default_reminders(self, invoice_id: UUID, now: datetime | None = None) -> list[ReminderRule]:
        """
        Standard reminder set: 3 and 1 days before due, on the due date, and
        1, 7 and 14 days after.

        Dates already past are skipped, as are (type, offset) pairs the
        invoice already has.
        """
        now = now or now_utc()
        today = self.invoices.today(now)
        invoice = self.invoices.get_by_id(invoice_id)
        existing = {(rule.type, rule.days_offset) for rule in self.reminders.list_for_invoice(invoice.id)}

        created = []
        for reminder_type, offset in DEFAULT_SCHEDULE:
            if (reminder_type, offset) in existing:
                continue
            if reminder_date(invoice, reminder_type, offset) < today:
                continue
            created.append(
                self.create_reminder_rule(
                    ReminderRuleCreate(invoice_id=invoice.id, type=reminder_type, days_offset=offset),
                    now=now,
                )
            )
        return created

    def list_reminders(self, invoice_id: UUID) -> list[ReminderRule]:
        return self.reminders.list_for_invoice(invoice_id)

    # -------------------------------------------------------------------------
    # Reminder sweep
    # -------------------------------------------------------------------------

    def process_reminders(self, now: datetime | None = None) -> dict[str, int]:
        """
        Send every scheduled reminder whose window is open today.

        A delivery failure marks the rule failed and moves on. A rule is
        never sent twice on the same date or after it has been sent.

        Returns:
            {"sent": n, "failed": n, "skipped": n}
        """
        now = now or now_utc()
        today = self.invoices.today(now)
        summary = {"sent": 0, "failed": 0, "skipped": 0}
        events = []

        for rule in self.reminders.list_scheduled():
            if rule.last_sent_on == today:
                summary["skipped"] += 1
                continue

            try:
                invoice = self.invoices.get_by_id(rule.invoice_id)
            except NotFoundError:
                logger.warning(f"Reminder {rule.id} references missing invoice {rule.invoice_id}")
                summary["skipped"] += 1
                continue

            if not invoice.is_open or not in_window(rule, invoice, today):
                summary["skipped"] += 1
                continue

            try:
                client = self.invoices.get_client(invoice.client_id)
            except NotFoundError:
                logger.warning(f"Reminder {rule.id} skipped: client {invoice.client_id} not found")
                summary["skipped"] += 1
                continue

            claimed = self.reminders.claim(rule.id, today)
            if claimed is None:
                logger.info(f"Reminder {rule.id} already taken by another sweep")
                summary["skipped"] += 1
                continue
            rule = claimed

            try:
                self._deliver(rule, invoice, client, today)
            except (NotificationGatewayError, ValueError) as e:
                logger.error(f"Reminder {rule.id} for invoice {invoice.invoice_number} failed: {e}")
                self.reminders.update(rule.model_copy(update={"status": ReminderStatus.FAILED}))
                summary["failed"] += 1
                continue

            sent = self.reminders.update(rule.model_copy(update={
                "status": ReminderStatus.SENT,
                "last_sent_on": today,
                "sent_at": now,
            }))
            events.append(ReminderSent.create(rule=sent, invoice=invoice))
            summary["sent"] += 1

        self.event_bus.publish_all(events)
        logger.info(
            f"Reminder sweep: {summary['sent']} sent, {summary['failed']} failed, "
            f"{summary['skipped']} skipped"
        )
        return summary

    def _deliver(self, rule: ReminderRule, invoice: Invoice, client: Client, today: date) -> None:
        body = render_template(rule.template, rule, invoice, client, today)
        subject = SUBJECTS[rule.type].format(invoice_number=invoice.invoice_number)

        if rule.method in (DeliveryMethod.EMAIL, DeliveryMethod.BOTH):
            self.notifier.send_email(client.email, subject, body, reference=invoice.invoice_number)
        if rule.method in (DeliveryMethod.SMS, DeliveryMethod.BOTH):
            self.notifier.send_sms(
                client.phone or "",
                f"{subject}. Balance {format_money(invoice.balance_due, invoice.currency)}",
                reference=invoice.invoice_number,
            )

    # -------------------------------------------------------------------------
    # Overdue sweep
    # -------------------------------------------------------------------------

    def process_overdue(self, now: datetime | None = None) -> int:
        """Mark sent invoices past their due date as overdue. Returns how many moved."""
        today = self.invoices.today(now)
        moved = 0

        for invoice in self.invoices.list_by_status([InvoiceStatus.SENT]):
            if invoice.is_fully_paid or today <= invoice.due_date:
                continue
            try:
                self.invoices.mark_overdue(invoice.id, today=today)
            except InvalidStateError as e:
                # Changed since it was listed
                logger.info(f"Invoice {invoice.invoice_number} not marked overdue: {e}")
                continue
            moved += 1

        if moved:
            logger.info(f"Overdue sweep: {moved} invoices marked overdue")
        return moved

    # -------------------------------------------------------------------------
    # Late fees
    # -------------------------------------------------------------------------

    def create_late_fee_rule(self, data: LateFeeRuleCreate, now: datetime | None = None) -> LateFeeRule:
        rule = LateFeeRule(id=uuid4(), created_at=now or now_utc(), **data.model_dump())
        rule = self.late_fees.insert_rule(rule)
        logger.info(f"Late fee rule '{rule.name}' created ({rule.type.value} {rule.amount})")
        return rule

    def list_late_fee_rules(self) -> list[LateFeeRule]:
        return self.late_fees.list_active_rules()

    def process_late_fees(self, now: datetime | None = None) -> dict:
        """
        Charge active late-fee rules against overdue invoices.

        Returns:
            {"applied": n, "total": Decimal}
        """
        now = now or now_utc()
        today = self.invoices.today(now)
        rules = self.late_fees.list_active_rules()
        summary = {"applied": 0, "total": ZERO}
        if not rules:
            return summary

        for invoice in self.invoices.list_by_status([InvoiceStatus.OVERDUE]):
            for rule in rules:
                if invoice.days_overdue(today) <= rule.grace_period_days:
                    continue
                with self.invoices.locks.hold(invoice.id):
                    if not self._rule_due(invoice.id, rule, now):
                        continue
                    try:
                        invoice, fee = self.invoices.apply_rule_late_fee(invoice.id, rule, now=now)
                    except InvalidStateError as e:
                        logger.info(f"Late fee '{rule.name}' skipped for {invoice.invoice_number}: {e}")
                        break
                if fee > 0:
                    summary["applied"] += 1
                    summary["total"] = round2(summary["total"] + fee)

        logger.info(f"Late fee sweep: {summary['applied']} fees totalling {summary['total']}")
        return summary

    def _rule_due(self, invoice_id: UUID, rule: LateFeeRule, now: datetime) -> bool:
        """First application, or a full compounding period since the last one."""
        last = self.late_fees.latest_application(invoice_id, rule.id)
        if last is None:
            return True
        period = compounding_period(rule.compounding_frequency)
        if period is None:
            return False
        return now - last.applied_at >= period
