"""
Handler for LateFeeApplied events.

Tells the client a late fee was added and what they now owe.
"""

from typing import Callable

from core.events import LateFeeApplied
from core.services.reminder_service import format_money


def handle_late_fee_applied(notifier, invoice_service) -> Callable:
    """
    Factory that returns a LateFeeApplied handler.

    Args:
        notifier: NotificationGatewayClient instance
        invoice_service: InvoiceService instance (for the client lookup)
    """

    def handler(event: LateFeeApplied):
        invoice = event.invoice
        client = invoice_service.get_client(invoice.client_id)

        notifier.send_email(
            client.email,
            f"Late fee applied - Invoice {invoice.invoice_number}",
            f"Dear {client.name},\n\n"
            f"Invoice {invoice.invoice_number} is {event.days_overdue} days overdue. "
            f"A late fee of {format_money(event.amount, invoice.currency)} has been added.\n\n"
            f"Outstanding balance: {format_money(invoice.balance_due, invoice.currency)}",
            reference=invoice.invoice_number,
        )

    return handler
