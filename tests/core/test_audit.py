"""Tests for the billing audit trail."""

from unittest.mock import Mock
from uuid import uuid4

from psycopg2.extras import Json

from clients.postgres_client import PostgresClient


class TestAuditAction:
    """Tests for AuditAction enum."""

    def test_values_match_stored_strings(self):
        from core.audit import AuditAction

        assert [a.value for a in AuditAction] == ["create", "update"]


class TestComputeChanges:
    """Tests for compute_changes utility function."""

    def test_detects_changed_fields(self):
        """Different values for same key detected."""
        from core.audit import compute_changes

        old = {"status": "draft", "total_amount": "11800.00"}
        new = {"status": "sent", "total_amount": "11800.00"}

        changes = compute_changes(old, new)

        assert changes == {"status": {"old": "draft", "new": "sent"}}

    def test_detects_added_and_removed_fields(self):
        from core.audit import compute_changes

        changes = compute_changes({"notes": "x"}, {"payment_method": "upi"})

        assert changes["notes"] == {"old": "x", "new": None}
        assert changes["payment_method"] == {"old": None, "new": "upi"}

    def test_excludes_updated_at_by_default(self):
        """updated_at not reported as change."""
        from core.audit import compute_changes

        changes = compute_changes(
            {"status": "sent", "updated_at": "2026-03-01T00:00:00Z"},
            {"status": "sent", "updated_at": "2026-03-02T00:00:00Z"},
        )

        assert changes == {}

    def test_custom_exclude_fields(self):
        """Can exclude additional fields."""
        from core.audit import compute_changes

        changes = compute_changes(
            {"status": "sent", "metadata": {"a": 1}},
            {"status": "paid", "metadata": {"a": 2}},
            exclude_fields={"updated_at", "metadata"},
        )

        assert list(changes) == ["status"]


class TestAuditLogger:
    """AuditLogger writes through PostgresClient."""

    def test_log_change_inserts_row(self):
        from core.audit import AuditAction, AuditLogger

        postgres = Mock(spec=PostgresClient)
        entity_id = uuid4()

        AuditLogger(postgres).log_change(
            entity_type="invoice",
            entity_id=entity_id,
            action=AuditAction.UPDATE,
            changes={"status": {"old": "sent", "new": "paid"}},
            actor="webhook:razorpay",
        )

        sql, params = postgres.execute.call_args[0]
        assert "INSERT INTO audit_log" in sql
        assert params[1] == "webhook:razorpay"
        assert params[2] == "invoice"
        assert params[3] == str(entity_id)
        assert params[4] == "update"
        assert isinstance(params[5], Json)
        assert params[5].adapted == {"status": {"old": "sent", "new": "paid"}}

    def test_actor_defaults_to_system(self):
        from core.audit import AuditAction, AuditLogger

        postgres = Mock(spec=PostgresClient)

        AuditLogger(postgres).log_change("late_fee_rule", uuid4(), AuditAction.CREATE, {"created": {}})

        params = postgres.execute.call_args[0][1]
        assert params[1] == "system"

    def test_string_entity_ids_kept(self):
        """Payment links are keyed by provider id."""
        from core.audit import AuditAction, AuditLogger

        postgres = Mock(spec=PostgresClient)

        AuditLogger(postgres).log_change("payment_link", "stripe:cs_123", AuditAction.CREATE, {"created": {}})

        assert postgres.execute.call_args[0][1][3] == "stripe:cs_123"

    def test_get_entity_history_queries_newest_first(self):
        from core.audit import AuditLogger

        postgres = Mock(spec=PostgresClient)
        postgres.execute.return_value = [{"action": "update"}, {"action": "create"}]
        entity_id = uuid4()

        history = AuditLogger(postgres).get_entity_history("invoice", entity_id)

        sql, params = postgres.execute.call_args[0]
        assert "ORDER BY created_at DESC" in sql
        assert params == ("invoice", str(entity_id))
        assert [h["action"] for h in history] == ["update", "create"]
