"""FastAPI OTP Realtime - passwordless email sign-in with per-user realtime events."""

from fastapi_otp_realtime.app import create_app, create_mongo_app
from fastapi_otp_realtime.config import OTPRealtimeConfig
from fastapi_otp_realtime.db import (
    DatabaseAdapter,
    SQLAlchemyAdapter,
)
from fastapi_otp_realtime.dependencies import (
    get_current_user_dependency,
    get_optional_user_dependency,
)
from fastapi_otp_realtime.mailer import ConsoleMailer, SMTPMailer, build_mailer
from fastapi_otp_realtime.otp import CodeStore, OtpAuthenticator, VerifyStatus
from fastapi_otp_realtime.realtime import ConnectionRegistry, RealtimeHub
from fastapi_otp_realtime.router import get_auth_router
from fastapi_otp_realtime.throttle import InMemoryThrottle, Throttle, ThrottleDecision
from fastapi_otp_realtime.transactions import get_transactions_router

__version__ = "0.1.0"

__all__ = [
    "CodeStore",
    "ConnectionRegistry",
    "ConsoleMailer",
    "DatabaseAdapter",
    "InMemoryThrottle",
    "OTPRealtimeConfig",
    "OtpAuthenticator",
    "RealtimeHub",
    "SMTPMailer",
    "SQLAlchemyAdapter",
    "Throttle",
    "ThrottleDecision",
    "VerifyStatus",
    "build_mailer",
    "create_app",
    "create_mongo_app",
    "get_auth_router",
    "get_current_user_dependency",
    "get_optional_user_dependency",
    "get_transactions_router",
]

# Conditionally export MongoDB classes if motor is installed
try:
    from fastapi_otp_realtime.db import MongoDBAdapter

    __all__ += ["MongoDBAdapter"]
except ImportError:
    # MongoDB support not installed
    pass
