"""Tests for core domain models - custom validators and derived values."""

import pytest
from datetime import date
from decimal import Decimal
from pydantic import ValidationError
from uuid import uuid4

from tests.fakes import make_client, make_invoice


class TestLineItem:
    """Derived totals are always recomputed."""

    def test_derives_total_and_tax(self):
        from core.models import LineItem

        item = LineItem(description="Consulting", quantity=Decimal("3"), unit_price=Decimal("333.335"), tax_rate=Decimal("18"))

        assert item.total_price == Decimal("1000.01")
        assert item.tax_amount == Decimal("180.00")

    def test_ignores_caller_supplied_totals(self):
        """A stale total_price in the input is overwritten."""
        from core.models import LineItem

        item = LineItem(
            description="Hosting",
            quantity=Decimal("2"),
            unit_price=Decimal("500"),
            total_price=Decimal("1"),
            tax_amount=Decimal("1"),
        )

        assert item.total_price == Decimal("1000.00")
        assert item.tax_amount == Decimal("180.00")

    def test_default_rate_is_eighteen(self):
        from core.models import LineItem

        assert LineItem(description="x", quantity=1, unit_price=100).tax_rate == Decimal("18")

    def test_rejects_zero_quantity(self):
        from core.models import LineItem

        with pytest.raises(ValidationError, match="quantity"):
            LineItem(description="x", quantity=0, unit_price=100)

    def test_rejects_rate_above_hundred(self):
        from core.models import LineItem

        with pytest.raises(ValidationError, match="tax_rate"):
            LineItem(description="x", quantity=1, unit_price=100, tax_rate=101)

    def test_is_frozen(self):
        from core.models import LineItem

        item = LineItem(description="x", quantity=1, unit_price=100)
        with pytest.raises(ValidationError):
            item.quantity = Decimal("2")


class TestTaxBreakdown:
    """Component exclusivity and total consistency."""

    def test_rejects_mixed_components(self):
        from core.models import TaxBreakdown

        with pytest.raises(ValidationError, match="inter-state"):
            TaxBreakdown(
                cgst_amount=Decimal("9"), igst_amount=Decimal("18"),
                total_tax_amount=Decimal("27"), is_inter_state=True,
            )

    def test_rejects_wrong_total(self):
        from core.models import TaxBreakdown

        with pytest.raises(ValidationError, match="sum of components"):
            TaxBreakdown(
                cgst_amount=Decimal("9"), sgst_amount=Decimal("9"),
                total_tax_amount=Decimal("20"),
            )


class TestInvoice:
    """Construction invariants and derived properties."""

    def test_due_date_must_follow_issue_date(self):
        with pytest.raises(ValidationError, match="due_date"):
            make_invoice(issue_date=date(2026, 3, 1), due_date=date(2026, 3, 1))

    def test_total_below_subtotal_plus_tax_rejected(self):
        with pytest.raises(ValidationError, match="below subtotal"):
            make_invoice(total_amount=Decimal("100"))

    def test_paid_above_total_rejected(self):
        with pytest.raises(ValidationError, match="paid_amount"):
            make_invoice(paid_amount=Decimal("999999"))

    def test_balance_and_flags(self):
        invoice = make_invoice(paid_amount=Decimal("1800"))

        assert invoice.total_amount == Decimal("11800.00")
        assert invoice.balance_due == Decimal("10000.00")
        assert not invoice.is_fully_paid

    def test_days_until_due_and_overdue(self):
        invoice = make_invoice(due_date=date(2026, 3, 31))

        assert invoice.days_until_due(date(2026, 3, 29)) == 2
        assert invoice.days_overdue(date(2026, 3, 29)) == 0
        assert invoice.days_overdue(date(2026, 4, 5)) == 5

    def test_evolve_revalidates(self):
        """evolve cannot produce an invoice that breaks its invariants."""
        invoice = make_invoice()

        with pytest.raises(ValidationError):
            invoice.evolve(paid_amount=invoice.total_amount + 1)

    def test_json_round_trip_is_identical(self):
        """Dump to JSON and back reproduces the same value, lines in order."""
        from core.models import Invoice, LineItem

        invoice = make_invoice(line_items=[
            LineItem(description="First", quantity=Decimal("1.5"), unit_price=Decimal("200"), hsn_sac="998314"),
            LineItem(description="Second", quantity=Decimal("2"), unit_price=Decimal("75.25"), tax_rate=Decimal("5")),
        ])

        restored = Invoice.model_validate(invoice.model_dump(mode="json"))

        assert restored == invoice
        assert [i.description for i in restored.line_items] == ["First", "Second"]


class TestClient:
    """GSTIN validation and place of supply."""

    def test_valid_gstin_accepted(self):
        from core.models import ClientCreate

        c = ClientCreate(name="Acme", email="a@acme.in", gstin="27AAPFU0939F1ZV")
        assert c.gstin == "27AAPFU0939F1ZV"

    def test_bad_check_digit_rejected(self):
        from core.models import ClientCreate

        with pytest.raises(ValidationError, match="GSTIN"):
            ClientCreate(name="Acme", email="a@acme.in", gstin="27AAPFU0939F1ZA")

    def test_place_of_supply_prefers_state_code(self):
        client = make_client(state_code="29", gstin="27AAPFU0939F1ZV")
        assert client.place_of_supply == "29"

    def test_place_of_supply_falls_back_to_gstin(self):
        client = make_client(state_code=None, gstin="27AAPFU0939F1ZV")
        assert client.place_of_supply == "27"


class TestRules:
    """Rule create validators."""

    def test_percentage_late_fee_capped_at_hundred(self):
        from core.models import LateFeeRuleCreate, LateFeeType

        with pytest.raises(ValidationError, match="exceed 100"):
            LateFeeRuleCreate(name="Too much", type=LateFeeType.PERCENTAGE, amount=Decimal("150"))

    def test_fixed_late_fee_may_exceed_hundred(self):
        from core.models import LateFeeRuleCreate, LateFeeType

        rule = LateFeeRuleCreate(name="Flat", type=LateFeeType.FIXED, amount=Decimal("500"))
        assert rule.amount == Decimal("500")

    def test_reminder_offset_bounds(self):
        from core.models import ReminderRuleCreate, ReminderType

        with pytest.raises(ValidationError, match="days_offset"):
            ReminderRuleCreate(invoice_id=uuid4(), type=ReminderType.AFTER_DUE, days_offset=-1)


class TestPaymentLinkParams:
    """Link request validation."""

    def test_rejects_non_positive_amount(self):
        from core.models import PaymentLinkParams

        with pytest.raises(ValidationError, match="amount"):
            PaymentLinkParams(
                amount=Decimal("0"), description="x",
                client_email="a@acme.in", client_name="A",
            )

    def test_rejects_bad_email(self):
        from core.models import PaymentLinkParams

        with pytest.raises(ValidationError, match="client_email"):
            PaymentLinkParams(
                amount=Decimal("10"), description="x",
                client_email="not-an-email", client_name="A",
            )
