"""
Payment orchestration across gateways.

Owns the gateway registry, screens link requests for fraud, records every
link it creates, and reconciles provider-reported payment state back onto
invoices.

Reconciliation is idempotent: a link remembers how much it has already
credited, and a webhook only credits the difference between what the
provider reports and that amount. Redelivered webhooks credit nothing.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from uuid import UUID

from clients.gateways.base import PaymentGateway
from core.audit import AuditLogger, AuditAction, compute_changes
from core.config import BillingConfig
from core.event_bus import EventBus
from core.events import BillingEvent, InvoicePaid, PaymentCompleted, PaymentFailed
from core.exceptions import FraudDeclinedError, InvalidStateError, UnknownGatewayError
from core.fraud import screen_payment
from core.models import (
    FraudCheckResult, FraudRecommendation, GatewayName, Invoice, InvoiceStatus,
    LinkStatus, PaymentAnalytics, PaymentLink, PaymentLinkParams, PaymentLinkRecord,
    PaymentState, PaymentStatus, RefundResult, RefundState, TERMINAL_STATUSES,
)
from core.services.invoice_service import InvoiceService
from core.stores import PaymentLinkStore
from utils.money import ZERO, round2
from utils.timezone import local_date, now_utc

logger = logging.getLogger(__name__)

FRAUD_WINDOW = timedelta(hours=24)
DEFAULT_ANALYTICS_PERIOD = timedelta(days=30)

_COLLECTED_STATES = frozenset({
    PaymentState.COMPLETED,
    PaymentState.REFUNDED,
    PaymentState.PARTIALLY_REFUNDED,
})


def _metadata_invoice_id(metadata: dict) -> UUID | None:
    try:
        return UUID(str(metadata["invoice_id"]))
    except (KeyError, TypeError, ValueError):
        return None


@dataclass
class WebhookOutcome:
    """What a webhook did: the normalized status plus anything it changed."""

    status: PaymentStatus
    link: PaymentLinkRecord | None = None
    invoice: Invoice | None = None
    events: list[BillingEvent] = field(default_factory=list)


class PaymentService:
    """Service for payment links, webhooks, refunds and analytics."""

    def __init__(
        self,
        gateways: dict[GatewayName, PaymentGateway],
        links: PaymentLinkStore,
        invoices: InvoiceService,
        audit: AuditLogger,
        event_bus: EventBus,
        config: BillingConfig,
    ):
        self.gateways = dict(gateways)
        self.links = links
        self.invoices = invoices
        self.audit = audit
        self.event_bus = event_bus
        self.config = config

    def available_gateways(self) -> list[GatewayName]:
        return list(self.gateways)

    def _gateway(self, name: GatewayName | str) -> PaymentGateway:
        """
        Raises:
            UnknownGatewayError: Name is not a known gateway, or it is not configured
        """
        try:
            name = GatewayName(name)
        except ValueError:
            raise UnknownGatewayError(name)

        gateway = self.gateways.get(name)
        if gateway is None:
            raise UnknownGatewayError(name)
        return gateway

    # -------------------------------------------------------------------------
    # Links
    # -------------------------------------------------------------------------

    def perform_fraud_detection(self, params: PaymentLinkParams, now: datetime | None = None) -> FraudCheckResult:
        """Score a link request against the configured thresholds."""
        now = now or now_utc()
        recent = self.links.count_recent_for_email(str(params.client_email), now - FRAUD_WINDOW)
        return screen_payment(
            params,
            recent_link_count=recent,
            high_amount_threshold=self.config.high_amount_threshold,
            rapid_payment_limit=self.config.rapid_payment_limit,
        )

    def create_payment_link(
        self,
        gateway: GatewayName | str,
        params: PaymentLinkParams,
        actor: str = "api",
        now: datetime | None = None,
    ) -> PaymentLink:
        """
        Create a hosted payment link after fraud screening.

        The link is stored before it is returned, so a webhook for it can
        always be reconciled.

        Raises:
            UnknownGatewayError: Gateway unknown or not configured
            FraudDeclinedError: Screening declined the request; no link was created
            GatewayError: Provider rejected the request
        """
        adapter = self._gateway(gateway)
        now = now or now_utc()

        result = self.perform_fraud_detection(params, now)
        if result.recommendation == FraudRecommendation.DECLINE:
            logger.warning(
                f"Payment link for {params.client_email} declined by fraud screening: "
                f"score={result.risk_score} flags={result.flags}"
            )
            raise FraudDeclinedError(result)

        link = adapter.create_payment_link(params)

        record = PaymentLinkRecord(
            id=link.id,
            gateway=adapter.name,
            url=link.url,
            status=link.status,
            amount=params.amount,
            currency=params.currency.upper(),
            description=params.description,
            invoice_id=params.invoice_id,
            client_email=str(params.client_email),
            client_name=params.client_name,
            allow_partial_payments=params.allow_partial_payments,
            metadata=dict(params.metadata),
            expires_at=link.expires_at or params.expires_at,
            created_at=now,
            updated_at=now,
        )
        record = self.links.insert(record)

        self.audit.log_change(
            entity_type="payment_link",
            entity_id=f"{record.gateway.value}:{record.id}",
            action=AuditAction.CREATE,
            changes={"created": record.model_dump(mode="json")},
            actor=actor
        )

        logger.info(
            f"{adapter.name.value} payment link {link.id} created for "
            f"{record.currency} {record.amount}"
            + (f" (invoice {record.invoice_id})" if record.invoice_id else "")
        )
        return link

    def create_invoice_payment_link(
        self,
        invoice_id: UUID,
        gateway: GatewayName | str,
        expires_at: datetime | None = None,
        allow_partial_payments: bool = False,
        actor: str = "api",
    ) -> PaymentLink:
        """
        Payment link for the balance due on a stored invoice.

        Raises:
            NotFoundError: If the invoice or its client does not exist
            InvalidStateError: If the invoice is paid or cancelled
        """
        invoice = self.invoices.get_by_id(invoice_id)
        if invoice.status in TERMINAL_STATUSES:
            raise InvalidStateError(
                f"Invoice {invoice.invoice_number} is {invoice.status.value}; no payment can be collected",
                current_state=invoice.status.value,
            )
        client = self.invoices.get_client(invoice.client_id)

        params = PaymentLinkParams(
            amount=invoice.balance_due,
            currency=invoice.currency,
            description=f"Invoice {invoice.invoice_number}",
            invoice_id=invoice.id,
            client_email=client.email,
            client_name=client.name,
            expires_at=expires_at,
            allow_partial_payments=allow_partial_payments,
            metadata={"invoice_number": invoice.invoice_number},
        )
        return self.create_payment_link(gateway, params, actor=actor)

    # -------------------------------------------------------------------------
    # Webhooks
    # -------------------------------------------------------------------------

    def process_webhook(
        self,
        gateway: GatewayName | str,
        payload: bytes,
        signature: str | None,
        now: datetime | None = None,
    ) -> WebhookOutcome:
        """
        Verify, decode and reconcile one provider webhook.

        Events are published after the invoice lock is released. Subscriber
        failures are logged by the event bus and never fail the webhook.

        Raises:
            UnknownGatewayError: Gateway unknown or not configured
            SignatureInvalidError: Authenticity could not be established
            UnsupportedEventError: Event type has no mapping
            GatewayError: Provider call made while handling the event failed
        """
        adapter = self._gateway(gateway)
        status = adapter.process_webhook(payload, signature)
        logger.info(
            f"{adapter.name.value} webhook {status.event_type}: payment {status.id} -> {status.status.value}"
        )

        outcome = self.reconcile(adapter.name, status, now)
        self.event_bus.publish_all(outcome.events)
        return outcome

    def _find_link(self, gateway: GatewayName, status: PaymentStatus) -> PaymentLinkRecord | None:
        """
        Stored link a provider status refers to.

        Failures and refunds are often reported against the underlying
        payment (pay_, pi_, capture ids) rather than the link. Those fall back
        to the invoice_id every link carries in provider metadata.
        """
        link = self.links.find_by_payment_id(gateway, status.id)
        if link is None and status.transaction_id and status.transaction_id != status.id:
            link = self.links.find_by_payment_id(gateway, status.transaction_id)
        if link is None:
            invoice_id = _metadata_invoice_id(status.metadata)
            if invoice_id is not None:
                link = self.links.find_latest_for_invoice(gateway, invoice_id)
                if link is not None:
                    logger.info(
                        f"{gateway.value} payment {status.id} matched to link {link.id} via invoice {invoice_id}"
                    )
        return link

    def reconcile(
        self,
        gateway: GatewayName,
        status: PaymentStatus,
        now: datetime | None = None,
    ) -> WebhookOutcome:
        """
        Apply a normalized payment status to the stored link and its invoice.

        Unknown payment ids are acknowledged and logged so the provider stops
        retrying. Returns the events to publish; does not publish them.
        """
        now = now or now_utc()

        link = self._find_link(gateway, status)
        if link is None:
            logger.warning(
                f"{gateway.value} reported {status.status.value} for unknown payment {status.id}; acknowledged"
            )
            return WebhookOutcome(status=status)

        lock_key = link.invoice_id or f"{gateway.value}:{link.id}"
        with self.invoices.locks.hold(lock_key):
            # Re-read under the lock: a concurrent delivery may have credited already
            link = self.links.get(gateway, link.id) or link
            actor = f"webhook:{gateway.value}"

            if status.status == PaymentState.COMPLETED:
                outcome = self._reconcile_completed(gateway, link, status, now, actor)
            elif status.status == PaymentState.FAILED:
                outcome = self._reconcile_failed(gateway, link, status, now, actor)
            elif status.status == PaymentState.CANCELLED:
                outcome = self._reconcile_cancelled(link, status, now, actor)
            elif status.status in (PaymentState.REFUNDED, PaymentState.PARTIALLY_REFUNDED):
                outcome = self._reconcile_refunded(link, status, now, actor)
            else:
                outcome = self._reconcile_pending(link, status, now, actor)

        return outcome

    def _reconcile_completed(
        self,
        gateway: GatewayName,
        link: PaymentLinkRecord,
        status: PaymentStatus,
        now: datetime,
        actor: str,
    ) -> WebhookOutcome:
        reported = status.paid_amount if status.paid_amount > 0 else status.amount
        delta = round2(reported - link.paid_amount)

        if delta <= 0 and link.payment_status in (PaymentState.REFUNDED, PaymentState.PARTIALLY_REFUNDED):
            logger.info(
                f"{gateway.value} completion for {status.id} redelivered after refund; link left {link.payment_status.value}"
            )
            return WebhookOutcome(status=status, link=link)
        events: list[BillingEvent] = []
        invoice = None

        if delta <= 0:
            logger.info(
                f"{gateway.value} payment {status.id} already reconciled "
                f"(reported {reported}, credited {link.paid_amount})"
            )
        elif link.invoice_id is not None:
            invoice = self.invoices.get_by_id(link.invoice_id)
            if invoice.status in TERMINAL_STATUSES:
                logger.warning(
                    f"{gateway.value} payment {status.id} of {delta} not credited: "
                    f"invoice {invoice.invoice_number} is {invoice.status.value}"
                )
            else:
                credit = min(delta, invoice.balance_due)
                if credit < delta:
                    logger.warning(
                        f"{gateway.value} payment {status.id} of {delta} capped at balance "
                        f"{credit} on invoice {invoice.invoice_number}"
                    )
                if credit > 0:
                    before = invoice
                    paid_on = local_date(status.paid_at or now, self.config.timezone)
                    invoice = self.invoices.apply_provider_payment(
                        invoice.id, credit, status.payment_method, paid_on, actor
                    )
                    events.append(self._completed_event(gateway, link, status, credit))
                    if invoice.status == InvoiceStatus.PAID and before.status != InvoiceStatus.PAID:
                        events.append(InvoicePaid.create(invoice=invoice))
        else:
            events.append(self._completed_event(gateway, link, status, delta))

        settled = reported >= link.amount
        updated = link.model_copy(update={
            "status": LinkStatus.COMPLETED if settled else link.status,
            "payment_status": PaymentState.COMPLETED,
            "paid_amount": max(link.paid_amount, round2(reported)),
            "transaction_id": status.transaction_id or link.transaction_id,
            "payment_method": status.payment_method or link.payment_method,
            "paid_at": status.paid_at or link.paid_at or now,
            "updated_at": now,
        })
        return WebhookOutcome(
            status=status,
            link=self._save_link(link, updated, actor),
            invoice=invoice,
            events=events,
        )

    @staticmethod
    def _completed_event(
        gateway: GatewayName,
        link: PaymentLinkRecord,
        status: PaymentStatus,
        amount: Decimal,
    ) -> PaymentCompleted:
        return PaymentCompleted(
            gateway=gateway.value,
            payment_id=link.id,
            invoice_id=link.invoice_id,
            amount=amount,
            transaction_id=status.transaction_id,
            payment_method=status.payment_method,
        )

    def _reconcile_failed(
        self,
        gateway: GatewayName,
        link: PaymentLinkRecord,
        status: PaymentStatus,
        now: datetime,
        actor: str,
    ) -> WebhookOutcome:
        invoice = None
        if link.invoice_id is not None:
            invoice = self.invoices.get_by_id(link.invoice_id)
            if invoice.status in TERMINAL_STATUSES:
                logger.info(
                    f"{gateway.value} failure for {status.id} ignored: "
                    f"invoice {invoice.invoice_number} is {invoice.status.value}"
                )
            else:
                invoice = self.invoices.mark_payment_failed(invoice.id, actor)

        updated = link
        if link.payment_status not in _COLLECTED_STATES:
            updated = link.model_copy(update={"payment_status": PaymentState.FAILED, "updated_at": now})

        event = PaymentFailed(
            gateway=gateway.value,
            payment_id=link.id,
            invoice_id=link.invoice_id,
            reason=status.failure_reason,
        )
        return WebhookOutcome(
            status=status,
            link=self._save_link(link, updated, actor),
            invoice=invoice,
            events=[event],
        )

    def _reconcile_cancelled(
        self,
        link: PaymentLinkRecord,
        status: PaymentStatus,
        now: datetime,
        actor: str,
    ) -> WebhookOutcome:
        changes = {"status": LinkStatus.EXPIRED, "updated_at": now}
        if link.payment_status not in _COLLECTED_STATES:
            changes["payment_status"] = PaymentState.CANCELLED
        updated = link.model_copy(update=changes)
        return WebhookOutcome(status=status, link=self._save_link(link, updated, actor))

    def _reconcile_refunded(
        self,
        link: PaymentLinkRecord,
        status: PaymentStatus,
        now: datetime,
        actor: str,
    ) -> WebhookOutcome:
        updated = link.model_copy(update={"payment_status": status.status, "updated_at": now})
        invoice = None
        if status.status == PaymentState.REFUNDED and link.invoice_id is not None:
            invoice = self.invoices.mark_refunded(link.invoice_id, actor)
        return WebhookOutcome(
            status=status,
            link=self._save_link(link, updated, actor),
            invoice=invoice,
        )

    def _reconcile_pending(
        self,
        link: PaymentLinkRecord,
        status: PaymentStatus,
        now: datetime,
        actor: str,
    ) -> WebhookOutcome:
        if link.payment_status in _COLLECTED_STATES:
            return WebhookOutcome(status=status, link=link)
        updated = link.model_copy(update={"payment_status": status.status, "updated_at": now})
        return WebhookOutcome(status=status, link=self._save_link(link, updated, actor))

    def _save_link(self, current: PaymentLinkRecord, updated: PaymentLinkRecord, actor: str) -> PaymentLinkRecord:
        if updated is current:
            return current

        saved = self.links.update(updated)
        changes = compute_changes(
            current.model_dump(mode="json"),
            saved.model_dump(mode="json")
        )
        if changes:
            self.audit.log_change(
                entity_type="payment_link",
                entity_id=f"{saved.gateway.value}:{saved.id}",
                action=AuditAction.UPDATE,
                changes=changes,
                actor=actor
            )
        return saved

    # -------------------------------------------------------------------------
    # Status & refunds
    # -------------------------------------------------------------------------

    def get_payment_status(self, gateway: GatewayName | str, payment_id: str) -> PaymentStatus:
        return self._gateway(gateway).get_payment_status(payment_id)

    def refund_payment(
        self,
        gateway: GatewayName | str,
        payment_id: str,
        amount: Decimal | None = None,
        actor: str = "api",
    ) -> RefundResult:
        """
        Refund all or part of a completed payment.

        The invoice itself is updated when the provider's refund webhook
        arrives.

        Raises:
            NotRefundableError: No completed payment exists for payment_id
            GatewayError: Provider rejected the refund
        """
        adapter = self._gateway(gateway)
        result = adapter.refund_payment(payment_id, amount)
        logger.info(
            f"{adapter.name.value} refund {result.id} for {payment_id}: "
            f"{result.amount} ({result.status.value})"
        )

        if result.status == RefundState.COMPLETED:
            link = self.links.find_by_payment_id(adapter.name, payment_id)
            if link is not None:
                full = amount is None or result.amount >= link.paid_amount
                updated = link.model_copy(update={
                    "payment_status": PaymentState.REFUNDED if full else PaymentState.PARTIALLY_REFUNDED,
                    "updated_at": now_utc(),
                })
                self._save_link(link, updated, actor)

        return result

    # -------------------------------------------------------------------------
    # Analytics
    # -------------------------------------------------------------------------

    def get_payment_analytics(
        self,
        gateway: GatewayName | str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[PaymentAnalytics]:
        """
        Collection statistics per gateway over [start, end].

        Defaults to the last 30 days. A link counts as successful once money
        was collected on it, even if later refunded.
        """
        end = end or now_utc()
        start = start or end - DEFAULT_ANALYTICS_PERIOD
        names = [self._gateway(gateway).name] if gateway is not None else self.available_gateways()

        return [self._analytics_for(name, start, end) for name in names]

    def _analytics_for(self, gateway: GatewayName, start: datetime, end: datetime) -> PaymentAnalytics:
        links = self.links.list_links(gateway=gateway, start=start, end=end)
        successful = [link for link in links if link.payment_status in _COLLECTED_STATES]
        failed = [link for link in links if link.payment_status == PaymentState.FAILED]

        total_amount = round2(sum((link.paid_amount for link in successful), ZERO))
        success_rate = round2(Decimal(len(successful)) * 100 / len(links)) if links else ZERO
        average_amount = round2(total_amount / len(successful)) if successful else ZERO

        durations = [
            Decimal(str((link.paid_at - link.created_at).total_seconds())) / 86400
            for link in successful
            if link.paid_at is not None
        ]
        average_days = round2(sum(durations, ZERO) / len(durations)) if durations else ZERO

        return PaymentAnalytics(
            gateway=gateway,
            total_transactions=len(links),
            successful_transactions=len(successful),
            failed_transactions=len(failed),
            success_rate=success_rate,
            total_amount=total_amount,
            average_payment_time_days=average_days,
            average_transaction_amount=average_amount,
            period_start=start,
            period_end=end,
        )
