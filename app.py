"""
Application entry point.

Builds every service once from configuration and injects them into the
routers. Run with:

    uvicorn app:create_app --factory
"""

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI

from api.errors import register_error_handlers
from api.invoices import create_invoices_router
from api.middleware import RequestIDMiddleware
from api.payments import create_payments_router
from clients.gateways import PayPalGateway, PaymentGateway, RazorpayGateway, StripeGateway
from clients.notification_client import NotificationGatewayClient
from clients.postgres_client import PostgresClient
from clients.valkey_client import ValkeyClient
from clients.vault_client import (
    get_database_url, get_gateway_config, get_notification_config, get_valkey_url,
)
from core.audit import AuditLogger
from core.config import BillingConfig
from core.event_bus import EventBus
from core.events import InvoiceSent, LateFeeApplied, PaymentCompleted
from core.handlers.invoice_sent_handler import handle_invoice_sent
from core.handlers.late_fee_handler import handle_late_fee_applied
from core.handlers.payment_completed_handler import handle_payment_completed
from core.locks import KeyedLock
from core.models import GatewayName
from core.scheduler import SweepScheduler
from core.services.invoice_service import InvoiceService
from core.services.payment_service import PaymentService
from core.services.reminder_service import ReminderService
from core.stores import ClientStore, InvoiceStore, LateFeeStore, PaymentLinkStore, ReminderStore

logger = logging.getLogger(__name__)


def build_gateways(config: BillingConfig) -> dict[GatewayName, PaymentGateway]:
    """Adapters for every gateway with credentials in Vault. Others are omitted."""
    gateways: dict[GatewayName, PaymentGateway] = {}
    timeout = config.gateway_timeout_seconds

    stripe = get_gateway_config(GatewayName.STRIPE)
    if stripe is not None:
        gateways[GatewayName.STRIPE] = StripeGateway(
            secret_key=stripe["secret_key"],
            webhook_secret=stripe["webhook_secret"],
            frontend_url=config.frontend_url,
            timeout=timeout,
        )

    paypal = get_gateway_config(GatewayName.PAYPAL)
    if paypal is not None:
        gateways[GatewayName.PAYPAL] = PayPalGateway(
            client_id=paypal["client_id"],
            client_secret=paypal["client_secret"],
            base_url=config.paypal_base_url,
            frontend_url=config.frontend_url,
            brand_name=config.business_name,
            timeout=timeout,
        )

    razorpay = get_gateway_config(GatewayName.RAZORPAY)
    if razorpay is not None:
        gateways[GatewayName.RAZORPAY] = RazorpayGateway(
            key_id=razorpay["key_id"],
            key_secret=razorpay["key_secret"],
            webhook_secret=razorpay.get("webhook_secret"),
            frontend_url=config.frontend_url,
            timeout=timeout,
        )

    if not gateways:
        logger.warning("No payment gateways configured")
    else:
        logger.info(f"Payment gateways: {', '.join(g.value for g in gateways)}")
    return gateways


def wire_handlers(
    event_bus: EventBus,
    notifier: NotificationGatewayClient,
    invoice_service: InvoiceService,
    reminder_service: ReminderService,
) -> None:
    event_bus.subscribe(InvoiceSent, handle_invoice_sent(reminder_service))
    event_bus.subscribe(PaymentCompleted, handle_payment_completed(notifier, invoice_service))
    event_bus.subscribe(LateFeeApplied, handle_late_fee_applied(notifier, invoice_service))


def build_services(config: BillingConfig | None = None) -> dict:
    """
    Construct infrastructure clients and services.

    Returns:
        Dict with "invoice", "payment", "reminder" and "scheduler" entries,
        plus the clients to close on shutdown.
    """
    config = config or BillingConfig.from_env()

    postgres = PostgresClient(get_database_url())
    valkey = ValkeyClient(get_valkey_url())
    notification = get_notification_config()
    notifier = NotificationGatewayClient(
        gateway_url=notification["gateway_url"],
        api_key=notification["api_key"],
        hmac_secret=notification["hmac_secret"],
    )

    audit = AuditLogger(postgres)
    event_bus = EventBus()
    late_fee_store = LateFeeStore(postgres)

    invoice_service = InvoiceService(
        InvoiceStore(postgres),
        ClientStore(postgres),
        audit,
        event_bus,
        config,
        locks=KeyedLock(),
        late_fees=late_fee_store,
    )
    payment_service = PaymentService(
        build_gateways(config),
        PaymentLinkStore(postgres),
        invoice_service,
        audit,
        event_bus,
        config,
    )
    reminder_service = ReminderService(
        ReminderStore(postgres),
        late_fee_store,
        invoice_service,
        notifier,
        event_bus,
    )
    wire_handlers(event_bus, notifier, invoice_service, reminder_service)

    scheduler = SweepScheduler(
        reminder_service,
        valkey,
        interval_seconds=config.sweep_interval_seconds,
        lease_seconds=config.sweep_lease_seconds,
    )

    return {
        "config": config,
        "invoice": invoice_service,
        "payment": payment_service,
        "reminder": reminder_service,
        "scheduler": scheduler,
        "postgres": postgres,
        "valkey": valkey,
    }


def create_app(services: dict | None = None, config: BillingConfig | None = None) -> FastAPI:
    """
    FastAPI app with error handlers and the invoice/payment routers.

    Pass services to skip infrastructure wiring (tests).
    """
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    services = services if services is not None else build_services(config)
    config = services.get("config") or config or BillingConfig()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        scheduler = services.get("scheduler")
        if scheduler is not None and config.scheduler_enabled:
            scheduler.start()
        yield
        if scheduler is not None:
            scheduler.stop()
        if services.get("valkey") is not None:
            services["valkey"].close()
        if services.get("postgres") is not None:
            services["postgres"].close()
        logger.info("Shutdown complete")

    app = FastAPI(title="GST Invoicing", version="0.1.0", lifespan=lifespan)
    app.add_middleware(RequestIDMiddleware)
    register_error_handlers(app)

    app.include_router(create_invoices_router(services))
    app.include_router(create_payments_router(services))

    return app
