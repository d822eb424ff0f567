"""Tests for the InvoiceSent handler.

Sending an invoice schedules its standard reminders.
"""

from datetime import datetime, timedelta, timezone

from core.events import InvoiceSent
from core.handlers.invoice_sent_handler import handle_invoice_sent
from core.models import ReminderType
from tests.fakes import make_invoice


class TestHandleInvoiceSent:

    def test_schedules_default_reminders(self, reminder_service, invoice_store, stored_client):
        invoice = invoice_store.insert(make_invoice(client=stored_client))
        event = InvoiceSent(invoice=invoice, occurred_at=datetime(2026, 3, 1, 5, 0, tzinfo=timezone.utc))

        handle_invoice_sent(reminder_service)(event)

        reminders = reminder_service.list_reminders(invoice.id)
        assert len(reminders) == 6
        assert {r.type for r in reminders} == set(ReminderType)

    def test_sending_through_service_schedules(self, invoice_service, reminder_service, invoice_store, stored_client, event_bus):
        """End to end: InvoiceService.send publishes, the handler reacts."""
        today = invoice_service.today()
        invoice = invoice_store.insert(make_invoice(
            client=stored_client, issue_date=today, due_date=today + timedelta(days=30),
        ))
        event_bus.subscribe(InvoiceSent, handle_invoice_sent(reminder_service))

        invoice_service.send(invoice.id)

        assert len(reminder_service.list_reminders(invoice.id)) == 6
