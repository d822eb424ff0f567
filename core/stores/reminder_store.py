"""Reminder rule persistence."""

from datetime import date
from uuid import UUID

from clients.postgres_client import PostgresClient
from core.exceptions import NotFoundError
from core.models import ReminderRule, ReminderStatus


def _row_params(rule: ReminderRule) -> dict:
    params = rule.model_dump()
    params["type"] = rule.type.value
    params["method"] = rule.method.value
    params["status"] = rule.status.value
    return params


class ReminderStore:
    """SQL repository for payment reminders."""

    def __init__(self, postgres: PostgresClient):
        self.postgres = postgres

    def insert(self, rule: ReminderRule) -> ReminderRule:
        row = self.postgres.execute_returning(
            """
            INSERT INTO payment_reminders (
                id, invoice_id, type, days_offset, template, method, status,
                scheduled_for, last_sent_on, sent_at, created_at
            ) VALUES (
                %(id)s, %(invoice_id)s, %(type)s, %(days_offset)s, %(template)s,
                %(method)s, %(status)s, %(scheduled_for)s, %(last_sent_on)s,
                %(sent_at)s, %(created_at)s
            )
            RETURNING *
            """,
            _row_params(rule)
        )[0]
        return ReminderRule.model_validate(row)

    def update(self, rule: ReminderRule) -> ReminderRule:
        rows = self.postgres.execute_returning(
            """
            UPDATE payment_reminders SET
                status = %(status)s,
                last_sent_on = %(last_sent_on)s,
                sent_at = %(sent_at)s
            WHERE id = %(id)s
            RETURNING *
            """,
            _row_params(rule)
        )
        if not rows:
            raise NotFoundError("reminder", rule.id)
        return ReminderRule.model_validate(rows[0])

    def list_scheduled(self) -> list[ReminderRule]:
        rows = self.postgres.execute(
            """
            SELECT * FROM payment_reminders
            WHERE status = %s
            ORDER BY scheduled_for ASC
            """,
            (ReminderStatus.SCHEDULED.value,)
        )
        return [ReminderRule.model_validate(row) for row in rows]

    def list_for_invoice(self, invoice_id: UUID) -> list[ReminderRule]:
        rows = self.postgres.execute(
            """
            SELECT * FROM payment_reminders
            WHERE invoice_id = %s
            ORDER BY scheduled_for ASC
            """,
            (invoice_id,)
        )
        return [ReminderRule.model_validate(row) for row in rows]

    def claim(self, rule_id: UUID, today: date) -> ReminderRule | None:
        """
        Reserve a scheduled rule for delivery today.

        Conditional on the row still being scheduled and not yet claimed
        today, so two overlapping sweeps cannot both deliver it. None when
        another sweep got there first.
        """
        row = self.postgres.execute_single(
            """
            UPDATE payment_reminders SET last_sent_on = %s
            WHERE id = %s AND status = %s
              AND (last_sent_on IS NULL OR last_sent_on <> %s)
            RETURNING *
            """,
            (today, rule_id, ReminderStatus.SCHEDULED.value, today)
        )
        if row is None:
            return None
        return ReminderRule.model_validate(row)
