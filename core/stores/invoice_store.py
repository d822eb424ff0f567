"""Invoice persistence. Line items and tax breakdown are stored as JSONB."""

import logging
from uuid import UUID

from psycopg2.extras import Json

from clients.postgres_client import PostgresClient
from core.exceptions import NotFoundError
from core.models import Invoice, InvoiceStatus

logger = logging.getLogger(__name__)


def _row_params(invoice: Invoice) -> dict:
    params = invoice.model_dump()
    data = invoice.model_dump(mode="json", include={"line_items", "tax_breakdown"})
    params["line_items"] = Json(data["line_items"])
    params["tax_breakdown"] = Json(data["tax_breakdown"])
    params["status"] = invoice.status.value
    params["payment_status"] = invoice.payment_status.value
    return params


class InvoiceStore:
    """SQL repository for invoices."""

    def __init__(self, postgres: PostgresClient):
        self.postgres = postgres

    def insert(self, invoice: Invoice) -> Invoice:
        row = self.postgres.execute_returning(
            """
            INSERT INTO invoices (
                id, invoice_number, client_id, project_id,
                line_items, subtotal, tax_breakdown, total_amount, currency,
                status, payment_status, paid_amount, payment_date, payment_method,
                discount_percentage, discount_amount, late_fee_applied,
                issue_date, due_date, notes, created_at, updated_at
            ) VALUES (
                %(id)s, %(invoice_number)s, %(client_id)s, %(project_id)s,
                %(line_items)s, %(subtotal)s, %(tax_breakdown)s, %(total_amount)s, %(currency)s,
                %(status)s, %(payment_status)s, %(paid_amount)s, %(payment_date)s, %(payment_method)s,
                %(discount_percentage)s, %(discount_amount)s, %(late_fee_applied)s,
                %(issue_date)s, %(due_date)s, %(notes)s, %(created_at)s, %(updated_at)s
            )
            RETURNING *
            """,
            _row_params(invoice)
        )[0]
        return Invoice.model_validate(row)

    def update(self, invoice: Invoice) -> Invoice:
        """
        Persist every mutable column.

        Raises:
            NotFoundError: If the invoice row does not exist
        """
        rows = self.postgres.execute_returning(
            """
            UPDATE invoices SET
                line_items = %(line_items)s,
                subtotal = %(subtotal)s,
                tax_breakdown = %(tax_breakdown)s,
                total_amount = %(total_amount)s,
                status = %(status)s,
                payment_status = %(payment_status)s,
                paid_amount = %(paid_amount)s,
                payment_date = %(payment_date)s,
                payment_method = %(payment_method)s,
                discount_percentage = %(discount_percentage)s,
                discount_amount = %(discount_amount)s,
                late_fee_applied = %(late_fee_applied)s,
                due_date = %(due_date)s,
                notes = %(notes)s,
                updated_at = %(updated_at)s
            WHERE id = %(id)s
            RETURNING *
            """,
            _row_params(invoice)
        )
        if not rows:
            raise NotFoundError("invoice", invoice.id)
        return Invoice.model_validate(rows[0])

    def get(self, invoice_id: UUID) -> Invoice | None:
        row = self.postgres.execute_single(
            "SELECT * FROM invoices WHERE id = %s",
            (invoice_id,)
        )
        if row is None:
            return None
        return Invoice.model_validate(row)

    def latest_number(self, prefix: str) -> str | None:
        """Highest invoice number starting with prefix, if any."""
        return self.postgres.execute_scalar(
            """
            SELECT invoice_number FROM invoices
            WHERE invoice_number LIKE %s
            ORDER BY invoice_number DESC
            LIMIT 1
            """,
            (f"{prefix}%",)
        )

    def list_by_status(self, statuses: list[InvoiceStatus], limit: int = 1000) -> list[Invoice]:
        """Invoices in any of the given statuses, oldest due date first."""
        rows = self.postgres.execute(
            """
            SELECT * FROM invoices
            WHERE status = ANY(%s)
            ORDER BY due_date ASC
            LIMIT %s
            """,
            ([s.value for s in statuses], limit)
        )
        return [Invoice.model_validate(row) for row in rows]
