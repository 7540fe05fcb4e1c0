"""Declarative mixins for the SQLAlchemy adapter."""

from datetime import UTC, datetime
from typing import Generic, TypeVar

from sqlalchemy import Float, Integer, String
from sqlalchemy.orm import Mapped, mapped_column  # type: ignore[import-untyped]

from fastapi_otp_realtime.db.sqlalchemy.types import UTCDateTime


def _utcnow() -> datetime:
    return datetime.now(UTC)


ID = TypeVar("ID")


class BaseUserTable(Generic[ID]):
    """
    Base class for user models.

    Generic type parameter ID allows for different primary key types (int, UUID, etc.).

    Example:
        ```python
        from sqlalchemy.orm import DeclarativeBase

        class Base(DeclarativeBase):
            pass

        class User(BaseUserTable[int], Base):
            __tablename__ = "users"

            id: Mapped[int] = mapped_column(Integer, primary_key=True)
        ```
    """

    email: Mapped[str] = mapped_column(
        String(255), unique=True, index=True, nullable=False
    )
    name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    family_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=_utcnow, nullable=False
    )


class BaseOtpChallengeTable:
    """
    Base class for pending OTP challenges, one row per email.

    Example:
        ```python
        class OtpChallenge(BaseOtpChallengeTable, Base):
            __tablename__ = "otp_codes"

            id: Mapped[int] = mapped_column(Integer, primary_key=True)
        ```
    """

    email: Mapped[str] = mapped_column(
        String(255), unique=True, index=True, nullable=False
    )
    code_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=_utcnow, nullable=False
    )


class BaseTransactionTable:
    """
    Base class for budget transactions.

    ``user_id`` holds the owner's id as a string, so the table works with any
    user primary key type.
    """

    user_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    description: Mapped[str] = mapped_column(String(100), nullable=False)
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[str] = mapped_column(String(10), nullable=False)
    date: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=_utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=_utcnow, onupdate=_utcnow, nullable=False
    )
