"""
Handler for PaymentCompleted events.

On a reconciled gateway payment, emails the client a receipt.
"""

import logging
from typing import Callable

from core.events import PaymentCompleted
from core.services.reminder_service import format_money

logger = logging.getLogger(__name__)


def handle_payment_completed(notifier, invoice_service) -> Callable:
    """
    Factory that returns a PaymentCompleted handler.

    Args:
        notifier: NotificationGatewayClient instance
        invoice_service: InvoiceService instance

    Returns:
        Handler callable that sends a payment receipt
    """

    def handler(event: PaymentCompleted):
        if event.invoice_id is None:
            return

        invoice = invoice_service.get_by_id(event.invoice_id)
        client = invoice_service.get_client(invoice.client_id)

        if invoice.balance_due > 0:
            remaining = f"Remaining balance: {format_money(invoice.balance_due, invoice.currency)}."
        else:
            remaining = "This invoice is now paid in full."

        notifier.send_email(
            client.email,
            f"Payment received - Invoice {invoice.invoice_number}",
            f"Dear {client.name},\n\n"
            f"We received {format_money(event.amount, invoice.currency)} via {event.gateway} "
            f"for invoice {invoice.invoice_number}"
            + (f" (reference {event.transaction_id})" if event.transaction_id else "")
            + f".\n\n{remaining}\n\nThank you!",
            reference=invoice.invoice_number,
        )
        logger.info(f"Receipt sent for invoice {invoice.invoice_number} ({event.amount})")

    return handler
