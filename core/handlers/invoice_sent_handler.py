"""
Handler for InvoiceSent events.

Schedules the standard reminder set for a freshly sent invoice.
"""

from typing import Callable

from core.events import InvoiceSent


def handle_invoice_sent(reminder_service) -> Callable:
    """
    Factory that returns an InvoiceSent handler.

    Args:
        reminder_service: ReminderService instance
    """

    def handler(event: InvoiceSent):
        reminder_service.schedule_default_reminders(event.invoice.id, now=event.occurred_at)

    return handler
