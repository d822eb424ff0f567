"""
Rule-based fraud screening for payment link requests.

Scoring:
    +20 high_amount       amount above the configured threshold
    +30 suspicious_email  disposable/temporary mailbox
    +25 rapid_payments    more than N links for the same email in 24 hours

score < 30 is low risk, < 60 medium, otherwise high. Any flag declines.
"""

from decimal import Decimal

from core.models.payment import (
    FraudCheckResult, FraudRecommendation, FraudRiskLevel, PaymentLinkParams,
)

HIGH_AMOUNT_SCORE = 20
SUSPICIOUS_EMAIL_SCORE = 30
RAPID_PAYMENTS_SCORE = 25

_DISPOSABLE_MARKERS = ("temp", "disposable")
_DISPOSABLE_DOMAINS = frozenset({
    "mailinator.com",
    "guerrillamail.com",
    "10minutemail.com",
    "trashmail.com",
    "yopmail.com",
    "sharklasers.com",
})


def is_suspicious_email(email: str) -> bool:
    email = email.lower()
    if any(marker in email for marker in _DISPOSABLE_MARKERS):
        return True
    domain = email.rsplit("@", 1)[-1]
    return domain in _DISPOSABLE_DOMAINS


def screen_payment(
    params: PaymentLinkParams,
    recent_link_count: int,
    high_amount_threshold: Decimal,
    rapid_payment_limit: int,
) -> FraudCheckResult:
    """
    Score a payment request.

    Args:
        params: The link being requested
        recent_link_count: Links already created for this email in the last 24h
        high_amount_threshold: Amounts strictly above this are flagged
        rapid_payment_limit: Counts strictly above this are flagged
    """
    score = 0
    flags = []

    if params.amount > high_amount_threshold:
        score += HIGH_AMOUNT_SCORE
        flags.append("high_amount")

    if is_suspicious_email(params.client_email):
        score += SUSPICIOUS_EMAIL_SCORE
        flags.append("suspicious_email")

    if recent_link_count > rapid_payment_limit:
        score += RAPID_PAYMENTS_SCORE
        flags.append("rapid_payments")

    if score < 30:
        level, recommendation = FraudRiskLevel.LOW, FraudRecommendation.APPROVE
    elif score < 60:
        level, recommendation = FraudRiskLevel.MEDIUM, FraudRecommendation.REVIEW
    else:
        level, recommendation = FraudRiskLevel.HIGH, FraudRecommendation.DECLINE

    # Any flag is a decline, whatever the band says
    if flags:
        recommendation = FraudRecommendation.DECLINE

    return FraudCheckResult(
        risk_score=score,
        risk_level=level,
        flags=flags,
        recommendation=recommendation,
    )
