"""API router for OTP authentication endpoints."""

import logging
from collections.abc import Callable

from fastapi import (  # type: ignore[import-untyped]
    APIRouter,
    Depends,
    Request,
    Response,
    status,
)

from fastapi_otp_realtime.config import OTPRealtimeConfig
from fastapi_otp_realtime.db.protocols import DatabaseAdapter
from fastapi_otp_realtime.dependencies import (
    clear_session_cookie,
    get_optional_user_dependency,
    set_session_cookie,
)
from fastapi_otp_realtime.exceptions import PersistenceError
from fastapi_otp_realtime.mailer import Mailer
from fastapi_otp_realtime.otp import OtpAuthenticator, UserSummary
from fastapi_otp_realtime.schemas import (
    MessageResponse,
    OTPRequest,
    OTPVerify,
    UserResponse,
)
from fastapi_otp_realtime.throttle import Throttle

logger = logging.getLogger(__name__)


def get_auth_router(
    get_db: Callable[[], DatabaseAdapter],
    config: OTPRealtimeConfig,
    throttle: Throttle,
    mailer: Mailer,
) -> APIRouter:
    """
    Create an APIRouter with OTP authentication endpoints.

    Args:
        get_db: Callable that returns a DatabaseAdapter instance
        config: Application configuration
        throttle: Issuance throttle shared by all requests
        mailer: Mail collaborator delivering codes

    Returns:
        Configured APIRouter instance

    Example:
        ```python
        from fastapi import FastAPI

        app = FastAPI()
        config = OTPRealtimeConfig.from_env()
        throttle = InMemoryThrottle(window=config.otp_cooldown_seconds)

        auth_router = get_auth_router(get_db, config, throttle, build_mailer(config))
        app.include_router(auth_router, prefix="/auth", tags=["auth"])
        ```
    """
    router = APIRouter()
    get_optional_user = get_optional_user_dependency(get_db, config)

    def get_authenticator(db: DatabaseAdapter = Depends(get_db)) -> OtpAuthenticator:
        return OtpAuthenticator(db=db, config=config, throttle=throttle, mailer=mailer)

    @router.post(
        "/request-otp",
        response_model=MessageResponse,
        status_code=status.HTTP_200_OK,
        summary="Request OTP code",
        description="Generate and send an OTP code to the given email",
    )
    async def request_otp(
        body: OTPRequest,
        request: Request,
        authenticator: OtpAuthenticator = Depends(get_authenticator),
    ) -> MessageResponse:
        """
        Request an OTP code to be sent to the user's email.

        Raises:
            ThrottledError: 429 if requested again within the cooldown
            DeliveryError: 500 if the code could not be mailed
        """
        await authenticator.request_otp(
            body.email,
            forwarded_for=request.headers.get("x-forwarded-for"),
            peer_host=request.client.host if request.client else None,
        )
        return MessageResponse(message="OTP sent")

    @router.post(
        "/verify-otp",
        response_model=UserResponse,
        status_code=status.HTTP_200_OK,
        summary="Verify OTP code",
        description="Verify an OTP code; sets the session cookie and creates "
        "the account on first sign-in",
    )
    async def verify_otp(
        body: OTPVerify,
        response: Response,
        authenticator: OtpAuthenticator = Depends(get_authenticator),
    ) -> UserResponse:
        """
        Verify OTP code and issue the session cookie.

        Raises:
            AuthChallengeError: 400 if the code is invalid, expired or exhausted
        """
        token, user = await authenticator.verify_otp(body.email, body.code, body.name)
        set_session_cookie(response, token, config)
        return UserResponse(user=user)

    @router.get(
        "/me",
        response_model=UserResponse,
        status_code=status.HTTP_200_OK,
        summary="Current user",
        description="Return the signed-in user, or null without an error",
    )
    async def me(request: Request, db: DatabaseAdapter = Depends(get_db)) -> UserResponse:
        try:
            user = await get_optional_user(request, db)
        except PersistenceError:
            logger.exception("Could not load current user")
            user = None
        return UserResponse(user=UserSummary.from_record(user) if user else None)

    @router.post(
        "/logout",
        response_model=MessageResponse,
        status_code=status.HTTP_200_OK,
        summary="Logout user",
        description="Clear the session cookie",
    )
    async def logout(response: Response) -> MessageResponse:
        """
        Clear the session cookie.

        Tokens are stateless: a copy of the token kept elsewhere stays valid
        until it expires.
        """
        clear_session_cookie(response, config)
        return MessageResponse(message="Logged out")

    return router
