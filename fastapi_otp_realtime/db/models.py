"""Storage-neutral records returned by database adapters."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

TransactionType = Literal["income", "expense"]


class OtpChallenge(BaseModel):
    """
    A pending one-time code for an email address.

    Only the hash of the code is stored. There is at most one challenge per
    email; issuing a new one replaces the old.
    """

    email: str = Field(..., description="Lower-cased email address")
    code_hash: str = Field(..., description="SHA-256 hex digest of the code")
    expires_at: datetime = Field(..., description="When the code stops working")
    attempts: int = Field(default=0, description="Failed verification attempts")
    created_at: datetime | None = Field(default=None)


class UserRecord(BaseModel):
    """An account, created on first successful OTP verification."""

    id: str
    email: str
    name: str | None = None
    family_id: str | None = None


class TransactionRecord(BaseModel):
    """A budget entry owned by a single user."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    description: str
    amount: float
    category: str
    type: TransactionType
    date: datetime
    created_at: datetime | None = None
    updated_at: datetime | None = None


class TransactionFilter(BaseModel):
    """Optional filters for listing a user's transactions."""

    category: str | None = None
    type: TransactionType | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    min_amount: float | None = None
    max_amount: float | None = None
    search: str | None = Field(
        default=None, description="Case-insensitive text in description or category"
    )
