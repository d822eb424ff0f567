"""API test fixtures: the real app over in-memory services and a mocked gateway."""

from unittest.mock import Mock

import pytest
from starlette.testclient import TestClient

from app import create_app
from clients.gateways.base import PaymentGateway
from core.models import GatewayName, InvoiceStatus, PaymentLink
from core.services.payment_service import PaymentService
from tests.fakes import make_invoice


@pytest.fixture
def razorpay():
    gateway = Mock(spec=PaymentGateway)
    gateway.name = GatewayName.RAZORPAY
    gateway.create_payment_link.return_value = PaymentLink(
        id="plink_api", url="https://rzp.io/i/plink_api",
    )
    return gateway


@pytest.fixture
def payment_service(razorpay, link_store, invoice_service, audit, event_bus, config):
    return PaymentService(
        {GatewayName.RAZORPAY: razorpay},
        link_store,
        invoice_service,
        audit,
        event_bus,
        config,
    )


@pytest.fixture
def services(config, invoice_service, payment_service, reminder_service):
    return {
        "config": config,
        "invoice": invoice_service,
        "payment": payment_service,
        "reminder": reminder_service,
    }


@pytest.fixture
def app(services):
    return create_app(services=services)


@pytest.fixture
def client(app):
    return TestClient(app, raise_server_exceptions=False)


@pytest.fixture
def sent_invoice(invoice_store, stored_client):
    return invoice_store.insert(make_invoice(client=stored_client, status=InvoiceStatus.SENT))
