"""Reminder and late-fee rule models driven by the scheduler."""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from utils.money import ZERO


class ReminderType(str, Enum):
    BEFORE_DUE = "before_due"
    ON_DUE = "on_due"
    AFTER_DUE = "after_due"


class DeliveryMethod(str, Enum):
    EMAIL = "email"
    SMS = "sms"
    BOTH = "both"


class ReminderStatus(str, Enum):
    SCHEDULED = "scheduled"
    SENT = "sent"
    FAILED = "failed"


class ReminderRuleCreate(BaseModel):
    """Data required to schedule a reminder for an invoice."""

    invoice_id: UUID
    type: ReminderType
    days_offset: int = Field(0, ge=0, le=365)
    template: str | None = Field(None, max_length=5000)
    method: DeliveryMethod = DeliveryMethod.EMAIL


class ReminderRule(BaseModel):
    """
    A reminder scheduled against one invoice.

    Fires at most once: status moves scheduled -> sent (or failed) and
    last_sent_on records the business date it went out.
    """

    id: UUID
    invoice_id: UUID
    type: ReminderType
    days_offset: int
    template: str
    method: DeliveryMethod
    status: ReminderStatus = ReminderStatus.SCHEDULED
    scheduled_for: date
    last_sent_on: date | None = None
    sent_at: datetime | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class LateFeeType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class CompoundingFrequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class LateFeeRuleCreate(BaseModel):
    """Data required to define a late-fee rule."""

    name: str = Field(..., min_length=1, max_length=255)
    type: LateFeeType
    amount: Decimal = Field(..., gt=0)
    grace_period_days: int = Field(0, ge=0, le=365)
    max_amount: Decimal | None = Field(None, gt=0)
    compounding_frequency: CompoundingFrequency | None = None
    is_active: bool = True

    @model_validator(mode="after")
    def percentage_in_range(self) -> "LateFeeRuleCreate":
        if self.type == LateFeeType.PERCENTAGE and self.amount > 100:
            raise ValueError("percentage late fee cannot exceed 100")
        return self


class LateFeeRule(BaseModel):
    """Full late-fee rule as stored."""

    id: UUID
    name: str
    type: LateFeeType
    amount: Decimal
    grace_period_days: int = 0
    max_amount: Decimal | None = None
    compounding_frequency: CompoundingFrequency | None = None
    is_active: bool = True
    created_at: datetime | None = None

    model_config = {"from_attributes": True}


class LateFeeApplication(BaseModel):
    """One fee charged to one invoice. rule_id is None for operator-applied fees."""

    id: UUID
    invoice_id: UUID
    rule_id: UUID | None = None
    amount: Decimal = ZERO
    days_overdue: int = 0
    applied_at: datetime

    model_config = {"from_attributes": True}
