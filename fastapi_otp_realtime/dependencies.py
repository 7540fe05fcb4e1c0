"""FastAPI dependencies resolving the session cookie."""

from collections.abc import Callable
from typing import Any

from fastapi import Depends, Request, Response  # type: ignore[import-untyped]

from fastapi_otp_realtime.config import OTPRealtimeConfig
from fastapi_otp_realtime.db.models import UserRecord
from fastapi_otp_realtime.db.protocols import DatabaseAdapter
from fastapi_otp_realtime.exceptions import UnauthenticatedError
from fastapi_otp_realtime.security import decode_session_token


def set_session_cookie(response: Response, token: str, config: OTPRealtimeConfig) -> None:
    """Attach the session token as an http-only cookie covering the whole site."""
    response.set_cookie(
        key=config.cookie_name,
        value=token,
        max_age=int(config.session_lifetime.total_seconds()),
        path="/",
        httponly=True,
        secure=config.cookie_secure,
        samesite=config.cookie_samesite,
    )


def clear_session_cookie(response: Response, config: OTPRealtimeConfig) -> None:
    response.delete_cookie(
        key=config.cookie_name,
        path="/",
        httponly=True,
        secure=config.cookie_secure,
        samesite=config.cookie_samesite,
    )


def get_current_user_dependency(
    get_db: Callable[[], DatabaseAdapter],
    config: OTPRealtimeConfig,
) -> Callable[..., Any]:
    """
    Create a dependency for getting the current authenticated user.

    Args:
        get_db: Callable that returns a DatabaseAdapter instance
        config: Application configuration

    Returns:
        FastAPI dependency function

    Example:
        ```python
        current_user = Depends(get_current_user_dependency(get_db, config))

        @app.get("/protected")
        async def protected_route(user: UserRecord = current_user):
            return {"user_id": user.id}
        ```
    """

    async def get_current_user(
        request: Request,
        db: DatabaseAdapter = Depends(get_db),
    ) -> UserRecord:
        """
        Dependency that validates the session cookie and returns the user.

        Raises:
            UnauthenticatedError: cookie missing, token invalid or user gone
        """
        token = request.cookies.get(config.cookie_name)
        if not token:
            raise UnauthenticatedError()

        claims = decode_session_token(token, config.secret_key, config.algorithm)

        user = await db.get_user_by_id(claims.user_id)
        if user is None:
            raise UnauthenticatedError()

        return user

    return get_current_user


def get_optional_user_dependency(
    get_db: Callable[[], DatabaseAdapter],
    config: OTPRealtimeConfig,
) -> Callable[..., Any]:
    """
    Create a dependency that returns the current user or None.

    Used by identity lookups: an absent, invalid or expired session degrades
    to None instead of an error.
    """
    get_current_user = get_current_user_dependency(get_db, config)

    async def get_optional_user(
        request: Request,
        db: DatabaseAdapter = Depends(get_db),
    ) -> UserRecord | None:
        try:
            return await get_current_user(request, db)
        except UnauthenticatedError:
            return None

    return get_optional_user
