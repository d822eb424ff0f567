"""Tests for EventBus."""

import logging
from decimal import Decimal

import pytest

from core.event_bus import EventBus
from core.events import InvoicePaid, InvoiceSent, PaymentCompleted, PaymentFailed
from tests.fakes import make_invoice


@pytest.fixture
def _invoice():
    return make_invoice()


# =============================================================================
# SUBSCRIBE AND PUBLISH
# =============================================================================


class TestSubscribeAndPublish:

    def test_single_handler_receives_the_exact_event_object(self, _invoice):
        bus = EventBus()
        received = []
        bus.subscribe("InvoiceSent", received.append)

        event = InvoiceSent.create(invoice=_invoice)
        bus.publish(event)

        assert received == [event]
        assert received[0] is event

    def test_subscribe_by_class(self, _invoice):
        bus = EventBus()
        received = []
        bus.subscribe(InvoiceSent, received.append)

        bus.publish(InvoiceSent.create(invoice=_invoice))

        assert len(received) == 1

    def test_multiple_handlers_called_in_subscription_order(self, _invoice):
        bus = EventBus()
        order = []
        bus.subscribe("InvoicePaid", lambda e: order.append("A"))
        bus.subscribe("InvoicePaid", lambda e: order.append("B"))
        bus.subscribe("InvoicePaid", lambda e: order.append("C"))

        bus.publish(InvoicePaid.create(invoice=_invoice))

        assert order == ["A", "B", "C"]

    def test_type_isolation_only_matching_subscribers_called(self, _invoice):
        bus = EventBus()
        sent_calls = []
        paid_calls = []
        bus.subscribe("InvoiceSent", sent_calls.append)
        bus.subscribe("InvoicePaid", paid_calls.append)

        bus.publish(InvoiceSent.create(invoice=_invoice))

        assert len(sent_calls) == 1
        assert paid_calls == []

    def test_base_class_subscriber_receives_subclasses(self):
        bus = EventBus()
        received = []
        bus.subscribe("PaymentEvent", received.append)

        bus.publish(PaymentCompleted(gateway="stripe", payment_id="cs_1", amount=Decimal("10")))
        bus.publish(PaymentFailed(gateway="stripe", payment_id="cs_2"))

        assert [type(e).__name__ for e in received] == ["PaymentCompleted", "PaymentFailed"]

    def test_most_specific_subscribers_first(self, _invoice):
        bus = EventBus()
        order = []
        bus.subscribe("BillingEvent", lambda e: order.append("base"))
        bus.subscribe("InvoiceEvent", lambda e: order.append("invoice"))
        bus.subscribe("InvoiceSent", lambda e: order.append("sent"))

        bus.publish(InvoiceSent.create(invoice=_invoice))

        assert order == ["sent", "invoice", "base"]

    def test_no_subscribers_does_not_raise(self, _invoice):
        EventBus().publish(InvoiceSent.create(invoice=_invoice))

    def test_publish_all_preserves_order(self, _invoice):
        bus = EventBus()
        received = []
        bus.subscribe("BillingEvent", received.append)
        events = [
            PaymentCompleted(gateway="razorpay", payment_id="p1"),
            InvoicePaid.create(invoice=_invoice),
        ]

        bus.publish_all(events)

        assert received == events


# =============================================================================
# HANDLER ERROR ISOLATION
# =============================================================================


class TestHandlerErrorIsolation:

    def test_handler_exception_does_not_propagate(self, _invoice):
        bus = EventBus()
        bus.subscribe("InvoiceSent", lambda e: (_ for _ in ()).throw(RuntimeError("boom")))

        # Must not raise
        bus.publish(InvoiceSent.create(invoice=_invoice))

    def test_handler_exception_is_logged_with_event_type_and_event_id(self, _invoice, caplog):
        bus = EventBus()

        def failing_handler(event):
            raise ValueError("receipt failed")

        bus.subscribe("InvoicePaid", failing_handler)

        with caplog.at_level(logging.ERROR, logger="core.event_bus"):
            event = InvoicePaid.create(invoice=_invoice)
            bus.publish(event)

        assert "receipt failed" in caplog.text
        assert "InvoicePaid" in caplog.text
        assert event.event_id in caplog.text

    def test_all_handlers_run_even_if_multiple_fail(self, _invoice):
        bus = EventBus()
        results = []

        bus.subscribe("InvoicePaid", lambda e: (_ for _ in ()).throw(RuntimeError("fail 1")))
        bus.subscribe("InvoicePaid", lambda e: results.append("survived_1"))
        bus.subscribe("InvoicePaid", lambda e: (_ for _ in ()).throw(RuntimeError("fail 2")))
        bus.subscribe("InvoicePaid", lambda e: results.append("survived_2"))

        bus.publish(InvoicePaid.create(invoice=_invoice))

        assert results == ["survived_1", "survived_2"]
