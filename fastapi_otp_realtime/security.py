"""Security utilities for OTP generation and session token management."""

import hashlib
import secrets
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from jose import JWTError, jwt  # type: ignore[import-untyped]
from jose.utils import base64url_decode, base64url_encode  # type: ignore[import-untyped]

from fastapi_otp_realtime.exceptions import UnauthenticatedError

OTP_MIN = 100000
OTP_MAX = 999999


@dataclass(frozen=True)
class SessionClaims:
    """Verified contents of a session token."""

    user_id: str
    email: str
    issued_at: datetime
    expires_at: datetime


def generate_otp() -> str:
    """
    Generate a cryptographically secure 6-digit OTP code.

    The code is drawn uniformly from [100000, 999999], so it never has a
    leading zero.

    Example:
        >>> generate_otp()
        '482913'
    """
    return str(OTP_MIN + secrets.randbelow(OTP_MAX - OTP_MIN + 1))


def hash_otp_code(code: str) -> str:
    """
    Hash an OTP code for storage.

    Surrounding whitespace is stripped first, so a code pasted as
    ``" 482913 "`` matches ``"482913"``. Codes are short-lived and
    single-use, so an unsalted SHA-256 digest is enough to keep the
    plaintext out of the database.

    Args:
        code: Plaintext OTP code

    Returns:
        Hex-encoded SHA-256 digest
    """
    return hashlib.sha256(str(code).strip().encode("utf-8")).hexdigest()


def create_session_token(
    user_id: Any,  # noqa: ANN401
    email: str,
    secret_key: str,
    algorithm: str,
    lifetime: timedelta,
) -> str:
    """
    Create a signed session token.

    Args:
        user_id: User identifier, stored as the ``sub`` claim
        email: User's email address
        secret_key: Secret key for signing token
        algorithm: JWT algorithm (e.g., 'HS256')
        lifetime: Token lifetime

    Returns:
        Encoded JWT token string

    Example:
        >>> token = create_session_token(
        ...     user_id="64f1c0ffee",
        ...     email="a@x.com",
        ...     secret_key="secret",
        ...     algorithm="HS256",
        ...     lifetime=timedelta(days=7),
        ... )
    """
    now = datetime.now(UTC)
    claims = {
        "sub": str(user_id),
        "email": email,
        "iat": now,
        "exp": now + lifetime,
    }
    return jwt.encode(claims, secret_key, algorithm=algorithm)


def _has_canonical_signature(token: str) -> bool:
    """
    Check that the signature segment is the one encoding of its bytes.

    The last base64url character of a signature carries unused low bits, so
    several spellings decode to the same digest. Only the spelling produced
    when signing is accepted.
    """
    parts = token.split(".")
    if len(parts) != 3:
        return False
    signature = parts[2].encode("ascii", "replace")
    try:
        return base64url_encode(base64url_decode(signature)) == signature
    except ValueError:
        return False


def decode_session_token(token: str, secret_key: str, algorithm: str) -> SessionClaims:
    """
    Decode and verify a session token.

    Every failure (malformed token, bad signature, expiry, missing claims)
    raises the same error so callers cannot tell them apart.

    Args:
        token: JWT token string
        secret_key: Secret key for verification
        algorithm: Expected JWT algorithm

    Returns:
        Verified session claims

    Raises:
        UnauthenticatedError: If token is invalid or expired
    """
    if not token or not _has_canonical_signature(token):
        raise UnauthenticatedError()

    try:
        claims = jwt.decode(
            token,
            secret_key,
            algorithms=[algorithm],
            options={
                "verify_signature": True,
                "verify_exp": True,
                "require_exp": True,
                "require_iat": True,
                "require_sub": True,
            },
        )
    except JWTError as e:
        raise UnauthenticatedError() from e

    user_id = claims.get("sub")
    email = claims.get("email")
    if not user_id or not isinstance(email, str):
        raise UnauthenticatedError()

    return SessionClaims(
        user_id=str(user_id),
        email=email,
        issued_at=datetime.fromtimestamp(claims["iat"], UTC),
        expires_at=datetime.fromtimestamp(claims["exp"], UTC),
    )
