"""Late-fee rules and the record of fees applied under them."""

from uuid import UUID

from clients.postgres_client import PostgresClient
from core.models import LateFeeApplication, LateFeeRule


class LateFeeStore:
    """SQL repository for late_fee_rules and late_fee_applications."""

    def __init__(self, postgres: PostgresClient):
        self.postgres = postgres

    def insert_rule(self, rule: LateFeeRule) -> LateFeeRule:
        row = self.postgres.execute_returning(
            """
            INSERT INTO late_fee_rules (
                id, name, type, amount, grace_period_days, max_amount,
                compounding_frequency, is_active, created_at
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING *
            """,
            (
                rule.id, rule.name, rule.type.value, rule.amount, rule.grace_period_days,
                rule.max_amount,
                rule.compounding_frequency.value if rule.compounding_frequency else None,
                rule.is_active, rule.created_at,
            )
        )[0]
        return LateFeeRule.model_validate(row)

    def list_active_rules(self) -> list[LateFeeRule]:
        rows = self.postgres.execute(
            "SELECT * FROM late_fee_rules WHERE is_active ORDER BY created_at ASC"
        )
        return [LateFeeRule.model_validate(row) for row in rows]

    def insert_application(self, application: LateFeeApplication) -> LateFeeApplication:
        row = self.postgres.execute_returning(
            """
            INSERT INTO late_fee_applications (id, invoice_id, rule_id, amount, days_overdue, applied_at)
            VALUES (%s, %s, %s, %s, %s, %s)
            RETURNING *
            """,
            (
                application.id, application.invoice_id, application.rule_id,
                application.amount, application.days_overdue, application.applied_at,
            )
        )[0]
        return LateFeeApplication.model_validate(row)

    def latest_application(self, invoice_id: UUID, rule_id: UUID) -> LateFeeApplication | None:
        row = self.postgres.execute_single(
            """
            SELECT * FROM late_fee_applications
            WHERE invoice_id = %s AND rule_id = %s
            ORDER BY applied_at DESC
            LIMIT 1
            """,
            (invoice_id, rule_id)
        )
        if row is None:
            return None
        return LateFeeApplication.model_validate(row)
