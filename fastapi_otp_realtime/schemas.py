"""Pydantic schemas for request/response models."""

from datetime import datetime
from typing import Annotated

from pydantic import BaseModel, EmailStr, Field, StringConstraints  # type: ignore[import-untyped]

from fastapi_otp_realtime.db.models import TransactionType
from fastapi_otp_realtime.otp import UserSummary

Description = Annotated[
    str, StringConstraints(strip_whitespace=True, min_length=1, max_length=100)
]
Category = Annotated[
    str, StringConstraints(strip_whitespace=True, min_length=1, max_length=100)
]


class OTPRequest(BaseModel):
    """Request schema for OTP generation."""

    email: EmailStr = Field(..., description="Email address to send OTP code to")


class OTPVerify(BaseModel):
    """Request schema for OTP verification."""

    email: EmailStr = Field(..., description="Email address the code was sent to")
    code: str = Field(..., min_length=1, max_length=10, description="OTP code to verify")
    name: str | None = Field(
        default=None, max_length=100, description="Display name for first sign-in"
    )


class MessageResponse(BaseModel):
    """Generic message response schema."""

    message: str = Field(..., description="Response message")


class UserResponse(BaseModel):
    """The signed-in user, or null."""

    user: UserSummary | None


class TransactionCreate(BaseModel):
    """Request schema for creating a transaction."""

    description: Description
    amount: float
    category: Category
    type: TransactionType
    date: datetime | None = None


class TransactionUpdate(BaseModel):
    """Partial update; omitted fields are left unchanged."""

    description: Description | None = None
    amount: float | None = None
    category: Category | None = None
    type: TransactionType | None = None
    date: datetime | None = None


class DeletedResponse(BaseModel):
    msg: str
    id: str
