"""SQLAlchemy adapter for challenges, users and transactions."""

import contextlib
import typing
from collections.abc import AsyncIterator
from datetime import UTC, datetime

from sqlalchemy import delete, inspect, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from fastapi_otp_realtime.db.models import (
    OtpChallenge,
    TransactionFilter,
    TransactionRecord,
    UserRecord,
)
from fastapi_otp_realtime.exceptions import PersistenceError


@contextlib.asynccontextmanager
async def _storage_errors(session: AsyncSession) -> AsyncIterator[None]:
    try:
        yield
    except SQLAlchemyError as e:
        await session.rollback()
        raise PersistenceError() from e


def _coerce_id(model: type[typing.Any], value: str) -> typing.Any:  # noqa: ANN401
    """Convert a string id to the python type of the model's primary key."""
    column = inspect(model).primary_key[0]
    try:
        python_type = column.type.python_type
    except NotImplementedError:
        return value
    try:
        return python_type(value)
    except (TypeError, ValueError):
        return None


class SQLAlchemyAdapter:
    """
    SQLAlchemy implementation of the DatabaseAdapter protocol.

    Wraps an AsyncSession. Atomicity of attempt counting and single-use
    consumption comes from issuing UPDATE and DELETE statements with the
    conditions in the WHERE clause instead of read-modify-write in Python.

    Example:
        ```python
        from sqlalchemy.ext.asyncio import AsyncSession
        from fastapi import Depends

        async def get_db(
            session: AsyncSession = Depends(get_async_session)
        ) -> SQLAlchemyAdapter:
            return SQLAlchemyAdapter(session, User, OtpChallenge, Transaction)
        ```
    """

    def __init__(
        self,
        session: AsyncSession,
        user_model: type[typing.Any],
        challenge_model: type[typing.Any],
        transaction_model: type[typing.Any],
    ) -> None:
        """
        Initialize the database adapter.

        Args:
            session: SQLAlchemy async session
            user_model: User model class inheriting from BaseUserTable
            challenge_model: Challenge model class inheriting from BaseOtpChallengeTable
            transaction_model: Transaction model class inheriting from BaseTransactionTable
        """
        self.session = session
        self.user_model = user_model
        self.challenge_model = challenge_model
        self.transaction_model = transaction_model

    # ------------------------------------------------------------------
    # OTP challenges
    # ------------------------------------------------------------------

    async def replace_challenge(
        self, email: str, code_hash: str, expires_at: datetime
    ) -> OtpChallenge:
        model = self.challenge_model
        now = datetime.now(UTC)
        async with _storage_errors(self.session):
            await self.session.execute(delete(model).where(model.email == email))
            self.session.add(
                model(
                    email=email,
                    code_hash=code_hash,
                    expires_at=expires_at,
                    attempts=0,
                    created_at=now,
                )
            )
            await self.session.commit()
        return OtpChallenge(
            email=email,
            code_hash=code_hash,
            expires_at=expires_at,
            attempts=0,
            created_at=now,
        )

    async def get_challenge(self, email: str) -> OtpChallenge | None:
        model = self.challenge_model
        async with _storage_errors(self.session):
            result = await self.session.execute(
                select(
                    model.email,
                    model.code_hash,
                    model.expires_at,
                    model.attempts,
                    model.created_at,
                )
                .where(model.email == email)
                .limit(1)
            )
            row = result.one_or_none()
        if row is None:
            return None
        return OtpChallenge.model_validate(row._asdict())

    async def increment_challenge_attempts(
        self, email: str, code_hash: str, max_attempts: int
    ) -> bool:
        model = self.challenge_model
        async with _storage_errors(self.session):
            result = await self.session.execute(
                update(model)
                .where(
                    model.email == email,
                    model.code_hash == code_hash,
                    model.attempts < max_attempts,
                )
                .values(attempts=model.attempts + 1)
            )
            await self.session.commit()
        return result.rowcount == 1

    async def consume_challenge(self, email: str, code_hash: str) -> bool:
        model = self.challenge_model
        async with _storage_errors(self.session):
            result = await self.session.execute(
                delete(model).where(model.email == email, model.code_hash == code_hash)
            )
            await self.session.commit()
        return result.rowcount == 1

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    @staticmethod
    def _to_user(row: typing.Any) -> UserRecord | None:  # noqa: ANN401
        if row is None:
            return None
        return UserRecord(
            id=str(row.id), email=row.email, name=row.name, family_id=row.family_id
        )

    async def get_user_by_email(self, email: str) -> UserRecord | None:
        statement = select(self.user_model).where(self.user_model.email == email)
        async with _storage_errors(self.session):
            result = await self.session.execute(statement)
            return self._to_user(result.scalar_one_or_none())

    async def get_user_by_id(self, user_id: str) -> UserRecord | None:
        key = _coerce_id(self.user_model, user_id)
        if key is None:
            return None
        async with _storage_errors(self.session):
            return self._to_user(await self.session.get(self.user_model, key))

    async def create_user(self, email: str, name: str | None) -> UserRecord:
        user = self.user_model(email=email, name=name)
        async with _storage_errors(self.session):
            self.session.add(user)
            await self.session.commit()
            await self.session.refresh(user)
        return self._to_user(user)  # type: ignore[return-value]

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @staticmethod
    def _to_transaction(row: typing.Any) -> TransactionRecord:  # noqa: ANN401
        return TransactionRecord(
            id=str(row.id),
            user_id=row.user_id,
            description=row.description,
            amount=row.amount,
            category=row.category,
            type=row.type,
            date=row.date,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    async def _get_owned(self, user_id: str, transaction_id: str) -> typing.Any:  # noqa: ANN401
        model = self.transaction_model
        key = _coerce_id(model, transaction_id)
        if key is None:
            return None
        result = await self.session.execute(
            select(model).where(model.id == key, model.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def list_transactions(
        self, user_id: str, filters: TransactionFilter
    ) -> list[TransactionRecord]:
        model = self.transaction_model
        statement = select(model).where(model.user_id == user_id)

        if filters.category:
            statement = statement.where(model.category == filters.category)
        if filters.type:
            statement = statement.where(model.type == filters.type)
        if filters.start_date:
            statement = statement.where(model.date >= filters.start_date)
        if filters.end_date:
            statement = statement.where(model.date <= filters.end_date)
        if filters.min_amount is not None:
            statement = statement.where(model.amount >= filters.min_amount)
        if filters.max_amount is not None:
            statement = statement.where(model.amount <= filters.max_amount)
        if filters.search:
            statement = statement.where(
                or_(
                    model.description.icontains(filters.search, autoescape=True),
                    model.category.icontains(filters.search, autoescape=True),
                )
            )

        statement = statement.order_by(model.date.desc())
        async with _storage_errors(self.session):
            result = await self.session.execute(statement)
            return [self._to_transaction(row) for row in result.scalars().all()]

    async def create_transaction(
        self, user_id: str, data: dict[str, typing.Any]
    ) -> TransactionRecord:
        now = datetime.now(UTC)
        values = {**data, "date": data.get("date") or now}
        row = self.transaction_model(
            user_id=user_id, created_at=now, updated_at=now, **values
        )
        async with _storage_errors(self.session):
            self.session.add(row)
            await self.session.commit()
            await self.session.refresh(row)
        return self._to_transaction(row)

    async def update_transaction(
        self, user_id: str, transaction_id: str, changes: dict[str, typing.Any]
    ) -> TransactionRecord | None:
        async with _storage_errors(self.session):
            row = await self._get_owned(user_id, transaction_id)
            if row is None:
                return None
            for field, value in changes.items():
                setattr(row, field, value)
            row.updated_at = datetime.now(UTC)
            await self.session.commit()
            await self.session.refresh(row)
        return self._to_transaction(row)

    async def delete_transaction(self, user_id: str, transaction_id: str) -> bool:
        async with _storage_errors(self.session):
            row = await self._get_owned(user_id, transaction_id)
            if row is None:
                return False
            await self.session.delete(row)
            await self.session.commit()
        return True
