"""Billing configuration."""

import os
from decimal import Decimal

from pydantic import BaseModel, Field


class BillingConfig(BaseModel):
    """
    Non-secret billing configuration.

    Secrets (database, gateway keys, notification gateway) live in Vault.
    Everything here can come from the environment via from_env().
    """

    # Seller
    seller_state_code: str = Field(
        default="27",
        description="Two-digit GST state code of the seller (place of supply origin)",
        pattern=r"^\d{2}$",
    )
    business_name: str = Field(
        default="Invoicing",
        description="Name shown on reminder and receipt messages",
    )
    timezone: str = Field(
        default="Asia/Kolkata",
        description="IANA timezone that due dates are calendar dates in",
    )
    currency: str = Field(
        default="INR",
        description="Default invoice currency",
        min_length=3,
        max_length=3,
    )

    # Fraud screening
    high_amount_threshold: Decimal = Field(
        default=Decimal("100000"),
        description="Amounts above this are flagged high_amount",
        gt=0,
    )
    rapid_payment_limit: int = Field(
        default=5,
        description="More links than this per email in 24h are flagged rapid_payments",
        ge=1,
    )

    # Gateways
    gateway_timeout_seconds: float = Field(
        default=15.0,
        description="Upper bound on every provider HTTP call",
        gt=0,
        le=120,
    )
    frontend_url: str = Field(
        default="http://localhost:3000",
        description="Base URL for payment success/cancel redirects",
    )
    paypal_base_url: str = Field(
        default="https://api-m.sandbox.paypal.com",
        description="PayPal REST API base URL (sandbox or live)",
    )

    # Late fees
    default_late_fee_rate: Decimal = Field(
        default=Decimal("1.5"),
        description="Percentage used when an operator applies a late fee without a rate",
        gt=0,
        le=100,
    )

    # Scheduler
    scheduler_enabled: bool = Field(
        default=True,
        description="Run the reminder/late-fee sweep in a background thread",
    )
    sweep_interval_seconds: int = Field(
        default=3600,
        description="Seconds between sweeps",
        ge=60,
    )
    sweep_lease_seconds: int = Field(
        default=900,
        description="How long one process holds the sweep lease",
        ge=30,
    )

    @classmethod
    def from_env(cls) -> "BillingConfig":
        """
        Build from BILLING_* environment variables.

        Unset variables keep their defaults.
        """
        values = {}
        for name in cls.model_fields:
            raw = os.getenv(f"BILLING_{name.upper()}")
            if raw is not None:
                values[name] = raw
        return cls(**values)
