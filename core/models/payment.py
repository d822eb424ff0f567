"""
Payment domain models shared by the gateway adapters and the orchestrator.

Amounts are Decimal major units. Adapters convert provider-native units
(paise, cents, decimal strings) at the boundary.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field, EmailStr

from utils.money import ZERO


class GatewayName(str, Enum):
    """Closed set of supported payment providers."""

    STRIPE = "stripe"
    PAYPAL = "paypal"
    RAZORPAY = "razorpay"


class LinkStatus(str, Enum):
    """State of a hosted payment link."""

    ACTIVE = "active"
    EXPIRED = "expired"
    COMPLETED = "completed"


class PaymentState(str, Enum):
    """Normalized payment status across providers."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"


class PaymentLinkParams(BaseModel):
    """What the caller wants a payment link for."""

    amount: Decimal = Field(..., gt=0, decimal_places=2)
    currency: str = Field("INR", min_length=3, max_length=3)
    description: str = Field(..., min_length=1, max_length=500)
    invoice_id: UUID | None = None
    client_email: EmailStr
    client_name: str = Field(..., min_length=1, max_length=255)
    expires_at: datetime | None = None
    allow_partial_payments: bool = False
    metadata: dict[str, str] = Field(default_factory=dict)


class PaymentLink(BaseModel):
    """Provider-hosted payment page."""

    id: str
    url: str
    status: LinkStatus = LinkStatus.ACTIVE
    expires_at: datetime | None = None


class PaymentStatus(BaseModel):
    """
    Result of a webhook or a status query.

    paid_amount is the cumulative amount the provider reports as collected
    for this payment id. amount is what was asked for.
    """

    id: str
    status: PaymentState
    amount: Decimal = ZERO
    currency: str = "INR"
    paid_amount: Decimal = ZERO
    payment_method: str | None = None
    transaction_id: str | None = None
    paid_at: datetime | None = None
    failure_reason: str | None = None
    event_type: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class RefundState(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class RefundResult(BaseModel):
    id: str
    status: RefundState
    amount: Decimal
    reason: str | None = None


class PaymentLinkRecord(BaseModel):
    """
    Orchestrator's stored row for a link.

    paid_amount is what has already been credited to the invoice from this
    link. Webhook reconciliation credits only the difference between the
    provider-reported total and this value.
    """

    id: str
    gateway: GatewayName
    url: str
    status: LinkStatus = LinkStatus.ACTIVE
    payment_status: PaymentState = PaymentState.PENDING
    amount: Decimal
    paid_amount: Decimal = ZERO
    currency: str = "INR"
    description: str
    invoice_id: UUID | None = None
    client_email: str
    client_name: str
    allow_partial_payments: bool = False
    metadata: dict[str, Any] = Field(default_factory=dict)
    transaction_id: str | None = None
    payment_method: str | None = None
    expires_at: datetime | None = None
    paid_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class FraudRiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class FraudRecommendation(str, Enum):
    APPROVE = "approve"
    REVIEW = "review"
    DECLINE = "decline"


class FraudCheckResult(BaseModel):
    risk_score: int = Field(..., ge=0)
    risk_level: FraudRiskLevel
    flags: list[str] = Field(default_factory=list)
    recommendation: FraudRecommendation


class PaymentAnalytics(BaseModel):
    """Per-gateway collection statistics over a period."""

    gateway: GatewayName
    total_transactions: int
    successful_transactions: int
    failed_transactions: int
    success_rate: Decimal
    total_amount: Decimal
    average_payment_time_days: Decimal
    average_transaction_amount: Decimal
    period_start: datetime
    period_end: datetime
