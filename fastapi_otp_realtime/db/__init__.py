"""Database models and adapters for fastapi-otp-realtime."""

from fastapi_otp_realtime.db.models import (
    OtpChallenge,
    TransactionFilter,
    TransactionRecord,
    UserRecord,
)
from fastapi_otp_realtime.db.protocols import DatabaseAdapter
from fastapi_otp_realtime.db.sqlalchemy.adapter import SQLAlchemyAdapter
from fastapi_otp_realtime.db.sqlalchemy.models import (
    BaseOtpChallengeTable,
    BaseTransactionTable,
    BaseUserTable,
)
from fastapi_otp_realtime.db.sqlalchemy.types import UTCDateTime

__all__ = [
    "BaseOtpChallengeTable",
    "BaseTransactionTable",
    "BaseUserTable",
    "DatabaseAdapter",
    "OtpChallenge",
    "SQLAlchemyAdapter",
    "TransactionFilter",
    "TransactionRecord",
    "UTCDateTime",
    "UserRecord",
]

# Conditionally export MongoDB classes if motor is installed
try:
    from fastapi_otp_realtime.db.mongodb.adapter import MongoDBAdapter

    __all__ += ["MongoDBAdapter"]
except ImportError:
    # MongoDB support not installed
    pass
