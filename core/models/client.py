"""Client (bill-to party) domain model. Read-only from the billing core."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field, EmailStr, field_validator

from core.gstin import validate_gstin


class ClientCreate(BaseModel):
    """Data required to register a client."""

    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    phone: str | None = Field(None, max_length=50)
    gstin: str | None = Field(None, min_length=15, max_length=15)
    state_code: str | None = Field(None, pattern=r"^\d{2}$")

    @field_validator("gstin")
    @classmethod
    def check_gstin(cls, value: str | None) -> str | None:
        if value is not None and not validate_gstin(value):
            raise ValueError("Invalid GSTIN format")
        return value


class Client(BaseModel):
    """Full client entity as stored."""

    id: UUID
    name: str
    email: str
    phone: str | None = None
    gstin: str | None = None
    state_code: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @property
    def place_of_supply(self) -> str | None:
        """Two-digit GST state code, from the explicit field or the GSTIN prefix."""
        if self.state_code:
            return self.state_code
        if self.gstin:
            return self.gstin[:2]
        return None
