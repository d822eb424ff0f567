"""Core domain models."""

from core.models.invoice import (
    Invoice, InvoiceCreate, InvoiceUpdate, InvoiceStatus, InvoicePaymentStatus,
    LineItem, TaxBreakdown, TERMINAL_STATUSES,
)
from core.models.client import Client, ClientCreate
from core.models.payment import (
    GatewayName, LinkStatus, PaymentState, PaymentLinkParams, PaymentLink,
    PaymentStatus, PaymentLinkRecord, RefundState, RefundResult,
    FraudRiskLevel, FraudRecommendation, FraudCheckResult, PaymentAnalytics,
)
from core.models.rules import (
    ReminderType, DeliveryMethod, ReminderStatus, ReminderRule, ReminderRuleCreate,
    LateFeeType, CompoundingFrequency, LateFeeRule, LateFeeRuleCreate, LateFeeApplication,
)

__all__ = [
    # Invoice
    "Invoice", "InvoiceCreate", "InvoiceUpdate", "InvoiceStatus", "InvoicePaymentStatus",
    "LineItem", "TaxBreakdown", "TERMINAL_STATUSES",
    # Client
    "Client", "ClientCreate",
    # Payment
    "GatewayName", "LinkStatus", "PaymentState", "PaymentLinkParams", "PaymentLink",
    "PaymentStatus", "PaymentLinkRecord", "RefundState", "RefundResult",
    "FraudRiskLevel", "FraudRecommendation", "FraudCheckResult", "PaymentAnalytics",
    # Rules
    "ReminderType", "DeliveryMethod", "ReminderStatus", "ReminderRule", "ReminderRuleCreate",
    "LateFeeType", "CompoundingFrequency", "LateFeeRule", "LateFeeRuleCreate", "LateFeeApplication",
]
