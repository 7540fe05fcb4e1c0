"""Error taxonomy and the handlers that turn it into HTTP responses."""

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = "Something went wrong, please try again"


class ConfigurationError(Exception):
    """Raised at startup when configuration is missing or unsafe."""


class OTPRealtimeError(Exception):
    """Base class for errors that map to an HTTP status."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    message: str = GENERIC_ERROR_MESSAGE

    def __init__(self, message: str | None = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)


class ValidationError(OTPRealtimeError):
    """Missing or malformed input."""

    status_code = status.HTTP_400_BAD_REQUEST
    message = "Invalid request"


class ThrottledError(OTPRealtimeError):
    """OTP requested again before the cooldown elapsed."""

    status_code = status.HTTP_429_TOO_MANY_REQUESTS

    def __init__(self, retry_after: int) -> None:
        self.retry_after = retry_after
        super().__init__(
            f"Please wait {retry_after}s before requesting a new code."
        )


class AuthChallengeError(OTPRealtimeError):
    """OTP verification failed; ``reason`` names the internal outcome."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, reason: str, message: str) -> None:
        self.reason = reason
        super().__init__(message)


class UnauthenticatedError(OTPRealtimeError):
    """Missing, invalid or expired session."""

    status_code = status.HTTP_401_UNAUTHORIZED
    message = "Unauthorized"


class NotFoundOrNotOwnedError(OTPRealtimeError):
    """Record does not exist or belongs to another user."""

    status_code = status.HTTP_404_NOT_FOUND
    message = "Transaction not found"


class DeliveryError(OTPRealtimeError):
    """Mail transport failed to deliver the code."""

    message = "Failed to send OTP"


class PersistenceError(OTPRealtimeError):
    """Storage collaborator failed."""


def register_exception_handlers(app: FastAPI, expose_detail: bool) -> None:
    """
    Install handlers converting the taxonomy into ``{"message": ...}`` bodies.

    Args:
        app: Application to configure
        expose_detail: Include the underlying error text on 500 responses
    """

    @app.exception_handler(OTPRealtimeError)
    async def handle_domain_error(
        request: Request, exc: OTPRealtimeError
    ) -> JSONResponse:
        content: dict[str, object] = {"message": exc.message}
        headers: dict[str, str] = {}

        if isinstance(exc, ThrottledError):
            headers["Retry-After"] = str(exc.retry_after)

        if exc.status_code >= 500:
            cause = exc.__cause__ or exc
            logger.error(
                "%s %s failed: %s",
                request.method,
                request.url.path,
                cause,
                exc_info=(type(cause), cause, cause.__traceback__),
            )
            if expose_detail:
                content["error"] = str(cause)

        return JSONResponse(
            status_code=exc.status_code, content=content, headers=headers or None
        )

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(
        _request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        fields = sorted(
            {
                str(error["loc"][-1])
                for error in exc.errors()
                if error.get("loc")
            }
        )
        message = (
            f"Invalid or missing fields: {', '.join(fields)}"
            if fields
            else "Invalid request"
        )
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST, content={"message": message}
        )

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        content: dict[str, object] = {"message": GENERIC_ERROR_MESSAGE}
        if expose_detail:
            content["error"] = str(exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=content
        )
