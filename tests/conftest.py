"""Test configuration and fixtures."""

import re
from collections.abc import Iterator
from datetime import UTC, datetime, timedelta

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from mongomock_motor import AsyncMongoMockClient
from sqlalchemy import Integer
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from fastapi_otp_realtime.app import create_app
from fastapi_otp_realtime.config import OTPRealtimeConfig
from fastapi_otp_realtime.db.mongodb.adapter import MongoDBAdapter
from fastapi_otp_realtime.db.sqlalchemy.adapter import SQLAlchemyAdapter
from fastapi_otp_realtime.db.sqlalchemy.models import (
    BaseOtpChallengeTable,
    BaseTransactionTable,
    BaseUserTable,
)
from fastapi_otp_realtime.realtime import RealtimeHub
from fastapi_otp_realtime.throttle import InMemoryThrottle

TEST_SECRET = "test-secret-key-minimum-32-chars-long"

# ============================================================================
# Database Models for Testing
# ============================================================================


class Base(DeclarativeBase):
    """Base class for test database models."""


class User(BaseUserTable[int], Base):
    """Test user model."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)


class OtpChallengeRow(BaseOtpChallengeTable, Base):
    """Test challenge model."""

    __tablename__ = "otp_codes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)


class TransactionRow(BaseTransactionTable, Base):
    """Test transaction model."""

    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)


# ============================================================================
# Test Doubles
# ============================================================================


class RecordingMailer:
    """Stores sent messages instead of delivering them."""

    def __init__(self) -> None:
        self.sent: list[dict[str, str]] = []
        self.fail = False

    async def send(self, to: str, subject: str, text: str, html: str) -> None:
        if self.fail:
            raise ConnectionError("SMTP server unreachable")
        self.sent.append({"to": to, "subject": subject, "text": text, "html": html})

    def last_code(self, email: str) -> str:
        """Extract the most recent code mailed to ``email``."""
        for message in reversed(self.sent):
            if message["to"] == email:
                match = re.search(r"\b(\d{6})\b", message["text"])
                assert match, message["text"]
                return match.group(1)
        raise AssertionError(f"No code was sent to {email}")


class FakeClock:
    """Controllable UTC clock for expiry tests."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime.now(UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta


class FakeMonotonic:
    """Controllable monotonic clock for throttle tests."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ============================================================================
# Basic Fixtures
# ============================================================================


@pytest.fixture
def test_config() -> OTPRealtimeConfig:
    """Provide a non-production test configuration."""
    return OTPRealtimeConfig(environment="test", secret_key=TEST_SECRET)


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def throttle() -> InMemoryThrottle:
    return InMemoryThrottle(window=30)


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
def mongo_db():  # type: ignore[no-untyped-def]
    """Create mock MongoDB database."""
    return AsyncMongoMockClient()["test_db"]


@pytest.fixture
def mongo_adapter(mongo_db) -> MongoDBAdapter:  # type: ignore[no-untyped-def]
    """Create MongoDB adapter instance."""
    return MongoDBAdapter(mongo_db)


@pytest.fixture
async def async_engine():  # type: ignore[no-untyped-def]
    """Create an async SQLite engine for testing."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def async_session(async_engine) -> AsyncSession:  # type: ignore[no-untyped-def]
    """Create an async database session."""
    async_session_maker = async_sessionmaker(
        async_engine, class_=AsyncSession, expire_on_commit=False
    )
    async with async_session_maker() as session:
        yield session


@pytest.fixture
async def sql_adapter(async_session: AsyncSession) -> SQLAlchemyAdapter:
    """Create a SQLAlchemyAdapter instance."""
    return SQLAlchemyAdapter(async_session, User, OtpChallengeRow, TransactionRow)


# ============================================================================
# Application Fixtures
# ============================================================================


@pytest.fixture
def hub(test_config: OTPRealtimeConfig) -> RealtimeHub:
    return RealtimeHub(test_config)


@pytest.fixture
def app(
    test_config: OTPRealtimeConfig,
    mongo_adapter: MongoDBAdapter,
    mailer: RecordingMailer,
    throttle: InMemoryThrottle,
    hub: RealtimeHub,
) -> FastAPI:
    """Create the application backed by mock MongoDB."""

    def get_db() -> MongoDBAdapter:
        return mongo_adapter

    return create_app(
        test_config, get_db, mailer=mailer, throttle=throttle, hub=hub
    )


@pytest.fixture
def client(app: FastAPI) -> Iterator[TestClient]:
    """Create test client sharing one event loop across requests and sockets."""
    with TestClient(app) as test_client:
        yield test_client


def sign_in(
    client: TestClient, mailer: RecordingMailer, email: str, name: str | None = None
) -> dict:
    """Run the full OTP flow and return the user from the response."""
    response = client.post("/auth/request-otp", json={"email": email})
    assert response.status_code == 200, response.text

    body = {"email": email, "code": mailer.last_code(email)}
    if name is not None:
        body["name"] = name
    response = client.post("/auth/verify-otp", json=body)
    assert response.status_code == 200, response.text
    return response.json()["user"]
