"""Payment link persistence. Rows are keyed by (gateway, provider link id)."""

from datetime import datetime
from uuid import UUID

from psycopg2.extras import Json

from clients.postgres_client import PostgresClient
from core.exceptions import NotFoundError
from core.models import GatewayName, PaymentLinkRecord


def _row_params(record: PaymentLinkRecord) -> dict:
    params = record.model_dump()
    params["gateway"] = record.gateway.value
    params["status"] = record.status.value
    params["payment_status"] = record.payment_status.value
    params["metadata"] = Json(record.model_dump(mode="json", include={"metadata"})["metadata"])
    return params


class PaymentLinkStore:
    """SQL repository for payment links."""

    def __init__(self, postgres: PostgresClient):
        self.postgres = postgres

    def insert(self, record: PaymentLinkRecord) -> PaymentLinkRecord:
        row = self.postgres.execute_returning(
            """
            INSERT INTO payment_links (
                id, gateway, url, status, payment_status, amount, paid_amount, currency,
                description, invoice_id, client_email, client_name, allow_partial_payments,
                metadata, transaction_id, payment_method, expires_at, paid_at,
                created_at, updated_at
            ) VALUES (
                %(id)s, %(gateway)s, %(url)s, %(status)s, %(payment_status)s, %(amount)s,
                %(paid_amount)s, %(currency)s, %(description)s, %(invoice_id)s,
                %(client_email)s, %(client_name)s, %(allow_partial_payments)s,
                %(metadata)s, %(transaction_id)s, %(payment_method)s, %(expires_at)s,
                %(paid_at)s, %(created_at)s, %(updated_at)s
            )
            RETURNING *
            """,
            _row_params(record)
        )[0]
        return PaymentLinkRecord.model_validate(row)

    def update(self, record: PaymentLinkRecord) -> PaymentLinkRecord:
        rows = self.postgres.execute_returning(
            """
            UPDATE payment_links SET
                status = %(status)s,
                payment_status = %(payment_status)s,
                paid_amount = %(paid_amount)s,
                transaction_id = %(transaction_id)s,
                payment_method = %(payment_method)s,
                paid_at = %(paid_at)s,
                metadata = %(metadata)s,
                updated_at = %(updated_at)s
            WHERE gateway = %(gateway)s AND id = %(id)s
            RETURNING *
            """,
            _row_params(record)
        )
        if not rows:
            raise NotFoundError("payment link", record.id)
        return PaymentLinkRecord.model_validate(rows[0])

    def get(self, gateway: GatewayName, link_id: str) -> PaymentLinkRecord | None:
        row = self.postgres.execute_single(
            "SELECT * FROM payment_links WHERE gateway = %s AND id = %s",
            (gateway.value, link_id)
        )
        if row is None:
            return None
        return PaymentLinkRecord.model_validate(row)

    def find_by_payment_id(self, gateway: GatewayName, payment_id: str) -> PaymentLinkRecord | None:
        """Match on the link id or on the provider transaction id."""
        row = self.postgres.execute_single(
            """
            SELECT * FROM payment_links
            WHERE gateway = %s AND (id = %s OR transaction_id = %s)
            ORDER BY created_at DESC
            LIMIT 1
            """,
            (gateway.value, payment_id, payment_id)
        )
        if row is None:
            return None
        return PaymentLinkRecord.model_validate(row)

    def find_latest_for_invoice(self, gateway: GatewayName, invoice_id: UUID) -> PaymentLinkRecord | None:
        """Newest link issued for an invoice on one gateway."""
        row = self.postgres.execute_single(
            """
            SELECT * FROM payment_links
            WHERE gateway = %s AND invoice_id = %s
            ORDER BY created_at DESC
            LIMIT 1
            """,
            (gateway.value, invoice_id)
        )
        if row is None:
            return None
        return PaymentLinkRecord.model_validate(row)

    def count_recent_for_email(self, email: str, since: datetime) -> int:
        """Links created for an email address since a point in time, all gateways."""
        count = self.postgres.execute_scalar(
            """
            SELECT COUNT(*) FROM payment_links
            WHERE lower(client_email) = lower(%s) AND created_at >= %s
            """,
            (email, since)
        )
        return int(count or 0)

    def list_links(
        self,
        gateway: GatewayName | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[PaymentLinkRecord]:
        """Links created in [start, end], optionally for one gateway."""
        rows = self.postgres.execute(
            """
            SELECT * FROM payment_links
            WHERE (%(gateway)s::text IS NULL OR gateway = %(gateway)s)
              AND (%(start)s::timestamptz IS NULL OR created_at >= %(start)s)
              AND (%(end)s::timestamptz IS NULL OR created_at <= %(end)s)
            ORDER BY created_at ASC
            """,
            {"gateway": gateway.value if gateway else None, "start": start, "end": end}
        )
        return [PaymentLinkRecord.model_validate(row) for row in rows]
