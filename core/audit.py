"""
Append-only change log for invoices and payment links.

Rows are never updated or deleted. Each one records which entity changed,
who changed it ("api", "webhook:razorpay", "scheduler", ...) and a JSONB
payload whose shape depends on the action:

    create  {"created": {<entity as JSON>}}
    update  {"<field>": {"old": ..., "new": ...}, ...}

Payment links are keyed by "<gateway>:<provider id>" rather than a UUID.
"""

from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from psycopg2.extras import Json

from clients.postgres_client import PostgresClient
from utils.timezone import now_utc

DEFAULT_IGNORED_FIELDS = frozenset({"updated_at"})


class AuditAction(Enum):
    CREATE = "create"
    UPDATE = "update"


def compute_changes(
    old: dict[str, Any],
    new: dict[str, Any],
    exclude_fields: set[str] | None = None
) -> dict[str, dict[str, Any]]:
    """
    Field-level diff of two model_dump(mode="json") snapshots.

    Keys present on only one side count as changed (the other side is None).
    Returns {} when nothing but ignored fields moved.
    """
    ignored = DEFAULT_IGNORED_FIELDS if exclude_fields is None else exclude_fields
    return {
        field: {"old": old.get(field), "new": new.get(field)}
        for field in old.keys() | new.keys()
        if field not in ignored and old.get(field) != new.get(field)
    }


class AuditLogger:
    """Writes and reads audit_log rows."""

    def __init__(self, postgres: PostgresClient):
        self.postgres = postgres

    def log_change(
        self,
        entity_type: str,
        entity_id: UUID | str,
        action: AuditAction,
        changes: dict[str, Any],
        actor: str = "system"
    ) -> None:
        """Append one entry. `changes` must already be JSON-compatible."""
        self.postgres.execute(
            """
            INSERT INTO audit_log (id, actor, entity_type, entity_id, action, changes, created_at)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            """,
            (uuid4(), actor, entity_type, str(entity_id), action.value, Json(changes), now_utc())
        )

    def get_entity_history(self, entity_type: str, entity_id: UUID | str) -> list[dict[str, Any]]:
        """All entries for one entity, newest first."""
        return self.postgres.execute(
            """
            SELECT id, actor, entity_type, entity_id, action, changes, created_at
            FROM audit_log
            WHERE entity_type = %s AND entity_id = %s
            ORDER BY created_at DESC
            """,
            (entity_type, str(entity_id))
        )
