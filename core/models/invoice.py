"""
Invoice domain models.

All amounts are Decimal rupees with two places (ROUND_HALF_UP after every
operation). Tax rates are percentages (18 = 18%).

subtotal is the taxable value: the sum of line totals after discount.
total_amount = subtotal + total tax + late fees applied.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from utils.money import ZERO, round2


class InvoiceStatus(str, Enum):
    """Invoice lifecycle status."""

    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({InvoiceStatus.PAID, InvoiceStatus.CANCELLED})


class InvoicePaymentStatus(str, Enum):
    """Money state of an invoice, independent of its lifecycle status."""

    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class LineItem(BaseModel):
    """
    One billable line. Immutable.

    total_price and tax_amount are always derived from the inputs, whatever
    the caller passed, so a stored line can never disagree with its own
    quantity, price and rate.
    """

    description: str = Field(..., min_length=1, max_length=500)
    quantity: Decimal = Field(..., gt=0)
    unit_price: Decimal = Field(..., ge=0)
    tax_rate: Decimal = Field(Decimal("18"), ge=0, le=100)
    hsn_sac: str | None = Field(None, max_length=8)
    total_price: Decimal = ZERO
    tax_amount: Decimal = ZERO

    model_config = {"frozen": True, "from_attributes": True}

    @model_validator(mode="before")
    @classmethod
    def derive_totals(cls, data):
        from core.tax import compute_line_totals

        if not isinstance(data, dict):
            return data
        try:
            total_price, tax_amount = compute_line_totals(
                data["quantity"], data["unit_price"], data.get("tax_rate", Decimal("18"))
            )
        except (KeyError, TypeError, ArithmeticError):
            # Field validation reports the bad input
            return data
        return {**data, "total_price": total_price, "tax_amount": tax_amount}


class TaxBreakdown(BaseModel):
    """
    GST split for an invoice.

    Intra-state supplies carry CGST + SGST, inter-state supplies carry IGST.
    The two are mutually exclusive.
    """

    cgst_rate: Decimal = ZERO
    cgst_amount: Decimal = ZERO
    sgst_rate: Decimal = ZERO
    sgst_amount: Decimal = ZERO
    igst_rate: Decimal = ZERO
    igst_amount: Decimal = ZERO
    total_tax_amount: Decimal = ZERO
    is_inter_state: bool = False

    model_config = {"frozen": True, "from_attributes": True}

    @model_validator(mode="after")
    def check_components(self) -> "TaxBreakdown":
        if self.is_inter_state and (self.cgst_amount or self.sgst_amount):
            raise ValueError("inter-state breakdown cannot carry CGST/SGST")
        if not self.is_inter_state and self.igst_amount:
            raise ValueError("intra-state breakdown cannot carry IGST")
        expected = round2(self.cgst_amount + self.sgst_amount + self.igst_amount)
        if round2(self.total_tax_amount) != expected:
            raise ValueError(
                f"total_tax_amount {self.total_tax_amount} != sum of components {expected}"
            )
        return self


class InvoiceCreate(BaseModel):
    """Data required to create an invoice."""

    client_id: UUID
    project_id: UUID | None = None
    line_items: list[LineItem] = Field(..., min_length=1)
    discount_percentage: Decimal = Field(ZERO, ge=0, le=100)
    discount_amount: Decimal = Field(ZERO, ge=0)
    currency: str = Field("INR", min_length=3, max_length=3)
    issue_date: date | None = None
    due_date: date
    notes: str | None = Field(None, max_length=2000)


class InvoiceUpdate(BaseModel):
    """Editable invoice fields. All optional."""

    line_items: list[LineItem] | None = Field(None, min_length=1)
    discount_percentage: Decimal | None = Field(None, ge=0, le=100)
    discount_amount: Decimal | None = Field(None, ge=0)
    due_date: date | None = None
    notes: str | None = Field(None, max_length=2000)


class Invoice(BaseModel):
    """Full invoice entity as stored."""

    id: UUID
    invoice_number: str
    client_id: UUID
    project_id: UUID | None = None
    line_items: list[LineItem] = Field(..., min_length=1)
    subtotal: Decimal
    tax_breakdown: TaxBreakdown
    total_amount: Decimal
    currency: str = "INR"
    status: InvoiceStatus = InvoiceStatus.DRAFT
    payment_status: InvoicePaymentStatus = InvoicePaymentStatus.PENDING
    paid_amount: Decimal = ZERO
    payment_date: date | None = None
    payment_method: str | None = None
    discount_percentage: Decimal = ZERO
    discount_amount: Decimal = ZERO
    late_fee_applied: Decimal = ZERO
    issue_date: date
    due_date: date
    notes: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @model_validator(mode="after")
    def check_invariants(self) -> "Invoice":
        if self.due_date <= self.issue_date:
            raise ValueError("due_date must be after issue_date")
        floor = round2(self.subtotal + self.tax_breakdown.total_tax_amount)
        if self.total_amount < floor:
            raise ValueError(
                f"total_amount {self.total_amount} is below subtotal + tax {floor}"
            )
        if self.paid_amount < 0 or self.paid_amount > self.total_amount:
            raise ValueError(
                f"paid_amount {self.paid_amount} outside 0..{self.total_amount}"
            )
        return self

    @property
    def balance_due(self) -> Decimal:
        """Remaining amount to be paid."""
        return round2(self.total_amount - self.paid_amount)

    @property
    def is_fully_paid(self) -> bool:
        return self.paid_amount >= self.total_amount

    @property
    def is_open(self) -> bool:
        """Sent or overdue with money still owed."""
        return (
            self.status in (InvoiceStatus.SENT, InvoiceStatus.OVERDUE)
            and not self.is_fully_paid
        )

    def days_until_due(self, today: date) -> int:
        return (self.due_date - today).days

    def days_overdue(self, today: date) -> int:
        """Days past due, zero when not yet due."""
        return max(0, (today - self.due_date).days)

    def evolve(self, **changes) -> "Invoice":
        """
        Copy with changes applied, re-running every invariant.

        pydantic's model_copy skips validation, so transitions go through here.
        """
        return type(self).model_validate({**self.model_dump(), **changes})
