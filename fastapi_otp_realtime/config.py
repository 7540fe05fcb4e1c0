"""Configuration class for OTP authentication and realtime delivery."""

import logging
import os
import re
from datetime import timedelta
from pathlib import Path

from dotenv import load_dotenv

from fastapi_otp_realtime.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEV_SECRET_KEY = "dev_jwt_secret_change_me"

_LOCALHOST_ORIGIN = re.compile(r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$")


class OTPRealtimeConfig:
    """
    Configuration for OTP authentication, session cookies and realtime events.

    Values can be set via class attributes (subclassing) or loaded from the
    environment with ``from_env``.

    Example:
        ```python
        class MyConfig(OTPRealtimeConfig):
            secret_key = "your-secret-key-here"
            environment = "production"
            allowed_origins = ["https://app.example.com"]
        ```
    """

    secret_key: str = DEV_SECRET_KEY
    environment: str = "development"
    algorithm: str = "HS256"

    # Session
    session_lifetime: timedelta = timedelta(days=7)
    cookie_name: str = "token"

    # OTP configuration
    otp_expiry: timedelta = timedelta(minutes=10)
    max_otp_attempts: int = 5
    otp_cooldown_seconds: int = 30

    # HTTP
    port: int = 5000
    allowed_origins: list[str] = [
        "http://localhost:3000",
        "http://localhost:3001",
        "http://127.0.0.1:3000",
        "http://localhost:4005",
        "http://127.0.0.1:4005",
    ]

    # Storage
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_database: str = "budget-tracker"

    # Mail
    app_name: str = "Budget Tracker"
    smtp_host: str | None = None
    smtp_port: int | None = None
    smtp_user: str | None = None
    smtp_password: str | None = None
    email_user: str | None = None
    email_password: str | None = None
    email_provider_host: str = "smtp.gmail.com"
    mail_from: str | None = None

    # Realtime
    connection_queue_size: int = 100

    def __init__(self, **overrides: object) -> None:
        """Apply overrides and validate configuration."""
        for name, value in overrides.items():
            if not hasattr(type(self), name) or isinstance(
                getattr(type(self), name), property
            ):
                raise ConfigurationError(f"Unknown configuration option: {name}")
            setattr(self, name, value)
        self.validate_secret()

    @classmethod
    def from_env(cls, env_file: str | Path | None = ".env") -> "OTPRealtimeConfig":
        """
        Build configuration from environment variables.

        A ``.env`` file is loaded first when present; variables already set in
        the process environment take precedence.
        """
        if env_file is not None:
            load_dotenv(env_file)

        overrides: dict[str, object] = {}
        env_map = {
            "ENVIRONMENT": "environment",
            "JWT_SECRET": "secret_key",
            "MONGODB_URI": "mongodb_uri",
            "MONGODB_DATABASE": "mongodb_database",
            "SMTP_HOST": "smtp_host",
            "SMTP_USER": "smtp_user",
            "SMTP_PASS": "smtp_password",
            "EMAIL_USER": "email_user",
            "EMAIL_PASS": "email_password",
            "EMAIL_PROVIDER_HOST": "email_provider_host",
            "SMTP_FROM": "mail_from",
            "APP_NAME": "app_name",
        }
        for env_name, attr in env_map.items():
            value = os.getenv(env_name)
            if value:
                overrides[attr] = value

        for env_name, attr in (("PORT", "port"), ("SMTP_PORT", "smtp_port")):
            value = os.getenv(env_name)
            if value:
                try:
                    overrides[attr] = int(value)
                except ValueError as e:
                    raise ConfigurationError(f"{env_name} must be an integer") from e

        origins = os.getenv("CORS_ORIGINS")
        if origins:
            overrides["allowed_origins"] = [
                origin.strip() for origin in origins.split(",") if origin.strip()
            ]

        return cls(**overrides)

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @property
    def cookie_secure(self) -> bool:
        """Whether to set the 'Secure' flag on the session cookie."""
        return self.is_production

    @property
    def cookie_samesite(self) -> str:
        return "none" if self.is_production else "lax"

    @property
    def expose_error_detail(self) -> bool:
        """Whether 500 responses may include the underlying error message."""
        return not self.is_production

    @property
    def localhost_origin_regex(self) -> str | None:
        """Origin pattern accepted in addition to ``allowed_origins``."""
        return None if self.is_production else _LOCALHOST_ORIGIN.pattern

    def is_origin_allowed(self, origin: str | None) -> bool:
        """
        Check a browser origin against the CORS policy.

        Requests without an origin (same-origin or non-browser) are allowed.
        """
        if not origin:
            return True
        if origin in self.allowed_origins:
            return True
        return not self.is_production and bool(_LOCALHOST_ORIGIN.match(origin))

    def validate_secret(self) -> None:
        """
        Validate that the signing secret is usable.

        The development default is accepted only when ``environment`` is
        ``development``.

        Raises:
            ConfigurationError: if the secret is empty, or is the development
                default outside development
        """
        if not self.secret_key:
            raise ConfigurationError(
                "secret_key must be set. Generate with: openssl rand -hex 32"
            )

        if self.secret_key == DEV_SECRET_KEY:
            if not self.is_development:
                raise ConfigurationError(
                    "JWT_SECRET is still the development default; "
                    f"set a real secret for the '{self.environment}' environment"
                )
            logger.warning("Using the development JWT secret; do not deploy this")
