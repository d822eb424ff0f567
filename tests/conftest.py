"""Shared test fixtures for the billing test suite."""

import pytest
from pathlib import Path
from unittest.mock import Mock

from dotenv import load_dotenv

# Load .env file BEFORE any other imports that might use env vars
# override=True ensures .env takes precedence over shell env vars
load_dotenv(Path(__file__).parent.parent / ".env", override=True)

# Reset vault client singleton to pick up env vars
import clients.vault_client as vault_module
vault_module._vault_client_instance = None
vault_module._secret_cache.clear()

from clients.notification_client import NotificationGatewayClient
from core.audit import AuditLogger
from core.config import BillingConfig
from core.event_bus import EventBus
from core.locks import KeyedLock
from core.services.invoice_service import InvoiceService
from core.services.reminder_service import ReminderService
from tests.fakes import (
    InMemoryClientStore, InMemoryInvoiceStore, InMemoryLateFeeStore,
    InMemoryPaymentLinkStore, InMemoryReminderStore, make_client,
)


@pytest.fixture(autouse=True)
def reset_vault_cache():
    """Secrets cached by one test never leak into the next."""
    vault_module._vault_client_instance = None
    vault_module._secret_cache.clear()
    yield
    vault_module._vault_client_instance = None
    vault_module._secret_cache.clear()


# =============================================================================
# CONFIG & COLLABORATORS
# =============================================================================


@pytest.fixture
def config() -> BillingConfig:
    return BillingConfig(seller_state_code="27", timezone="Asia/Kolkata")


@pytest.fixture
def audit():
    return Mock(spec=AuditLogger)


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def published(event_bus):
    """Every event published on the bus, in order."""
    events = []
    event_bus.subscribe("BillingEvent", events.append)
    return events


@pytest.fixture
def notifier():
    return Mock(spec=NotificationGatewayClient)


# =============================================================================
# IN-MEMORY STORES
# =============================================================================


@pytest.fixture
def invoice_store():
    return InMemoryInvoiceStore()


@pytest.fixture
def client_store():
    return InMemoryClientStore()


@pytest.fixture
def link_store():
    return InMemoryPaymentLinkStore()


@pytest.fixture
def reminder_store():
    return InMemoryReminderStore()


@pytest.fixture
def late_fee_store():
    return InMemoryLateFeeStore()


@pytest.fixture
def stored_client(client_store):
    """A stored client in the seller's state (intra-state supply)."""
    return client_store.add(make_client())


# =============================================================================
# SERVICES
# =============================================================================


@pytest.fixture
def invoice_service(invoice_store, client_store, audit, event_bus, config, late_fee_store):
    return InvoiceService(
        invoice_store,
        client_store,
        audit,
        event_bus,
        config,
        locks=KeyedLock(),
        late_fees=late_fee_store,
    )


@pytest.fixture
def reminder_service(reminder_store, late_fee_store, invoice_service, notifier, event_bus):
    return ReminderService(reminder_store, late_fee_store, invoice_service, notifier, event_bus)
