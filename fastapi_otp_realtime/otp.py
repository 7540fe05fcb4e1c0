"""OTP challenge storage and the passwordless sign-in flow."""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel

from fastapi_otp_realtime.config import OTPRealtimeConfig
from fastapi_otp_realtime.db.models import UserRecord
from fastapi_otp_realtime.db.protocols import DatabaseAdapter
from fastapi_otp_realtime.exceptions import (
    AuthChallengeError,
    DeliveryError,
    OTPRealtimeError,
    ThrottledError,
    ValidationError,
)
from fastapi_otp_realtime.mailer import Mailer
from fastapi_otp_realtime.security import (
    create_session_token,
    generate_otp,
    hash_otp_code,
)
from fastapi_otp_realtime.throttle import Throttle, throttle_key

logger = logging.getLogger(__name__)


class VerifyStatus(StrEnum):
    SUCCESS = "success"
    EXPIRED = "expired"
    NOT_FOUND = "not_found"
    TOO_MANY_ATTEMPTS = "too_many_attempts"
    MISMATCH = "mismatch"


# NOT_FOUND and MISMATCH share a message so callers cannot tell which emails
# have a pending code.
REJECTION_MESSAGES = {
    VerifyStatus.NOT_FOUND: "Invalid code",
    VerifyStatus.MISMATCH: "Invalid code",
    VerifyStatus.EXPIRED: "Code expired, please request a new one",
    VerifyStatus.TOO_MANY_ATTEMPTS: "Too many attempts, please request a new code",
}


@dataclass(frozen=True)
class IssuedCode:
    """A freshly issued challenge; ``code`` is the only copy of the plaintext."""

    email: str
    code: str
    expires_at: datetime


class UserSummary(BaseModel):
    """Public view of a user."""

    id: str
    email: str
    name: str | None = None

    @classmethod
    def from_record(cls, user: UserRecord) -> "UserSummary":
        return cls(id=user.id, email=user.email, name=user.name)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


class CodeStore:
    """
    Issues and checks one-time codes on top of a storage adapter.

    One live challenge per email. Verification order is: missing, expired,
    exhausted, then the hash comparison.
    """

    def __init__(
        self,
        db: DatabaseAdapter,
        config: OTPRealtimeConfig,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.db = db
        self.config = config
        self._clock = clock or _utcnow

    async def issue(self, email: str) -> IssuedCode:
        """
        Replace any challenge for ``email`` with a new one.

        Returns:
            The issued code; the plaintext is not persisted anywhere
        """
        code = generate_otp()
        expires_at = self._clock() + self.config.otp_expiry
        await self.db.replace_challenge(email, hash_otp_code(code), expires_at)
        return IssuedCode(email=email, code=code, expires_at=expires_at)

    async def verify(self, email: str, code: str) -> VerifyStatus:
        """
        Check ``code`` against the challenge for ``email``.

        A mismatch increments the attempt counter, never past the limit.
        A mismatch that loses the race for the last attempt is reported as
        TOO_MANY_ATTEMPTS. A match consumes the challenge; if a concurrent
        call consumed or replaced it first, the result is NOT_FOUND. An
        expired challenge is left in place.
        """
        challenge = await self.db.get_challenge(email)
        if challenge is None:
            return VerifyStatus.NOT_FOUND

        if self._clock() >= challenge.expires_at:
            return VerifyStatus.EXPIRED

        if challenge.attempts >= self.config.max_otp_attempts:
            return VerifyStatus.TOO_MANY_ATTEMPTS

        submitted_hash = hash_otp_code(code)
        if submitted_hash != challenge.code_hash:
            recorded = await self.db.increment_challenge_attempts(
                email, challenge.code_hash, self.config.max_otp_attempts
            )
            if recorded:
                return VerifyStatus.MISMATCH
            current = await self.db.get_challenge(email)
            if current is None or current.code_hash != challenge.code_hash:
                return VerifyStatus.NOT_FOUND
            return VerifyStatus.TOO_MANY_ATTEMPTS

        if not await self.db.consume_challenge(email, submitted_hash):
            return VerifyStatus.NOT_FOUND

        return VerifyStatus.SUCCESS


class OtpAuthenticator:
    """
    Orchestrates the passwordless flow.

    Example:
        ```python
        authenticator = OtpAuthenticator(
            db=adapter,
            config=config,
            throttle=InMemoryThrottle(window=config.otp_cooldown_seconds),
            mailer=build_mailer(config),
        )
        await authenticator.request_otp("a@x.com", peer_host="10.0.0.5")
        token, user = await authenticator.verify_otp("a@x.com", "123456")
        ```
    """

    def __init__(
        self,
        db: DatabaseAdapter,
        config: OTPRealtimeConfig,
        throttle: Throttle,
        mailer: Mailer,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.db = db
        self.config = config
        self.throttle = throttle
        self.mailer = mailer
        self.codes = CodeStore(db, config, clock)

    async def request_otp(
        self,
        email: str | None,
        forwarded_for: str | None = None,
        peer_host: str | None = None,
    ) -> None:
        """
        Issue a code for ``email`` and mail it.

        The throttle is consulted first and records the attempt even when
        delivery later fails, so a failing mail server cannot be hammered.

        Raises:
            ValidationError: email is empty
            ThrottledError: requested again inside the cooldown window
            DeliveryError: the mailer failed
        """
        email = normalize_email(email)
        if not email:
            raise ValidationError("Email is required")

        decision = self.throttle.check_and_record(
            throttle_key(email, forwarded_for, peer_host),
            self.config.otp_cooldown_seconds,
        )
        if not decision.allowed:
            logger.info("OTP request for %s throttled (%ss)", email, decision.retry_after)
            raise ThrottledError(decision.retry_after)

        issued = await self.codes.issue(email)

        minutes = int(self.config.otp_expiry.total_seconds() // 60)
        subject = f"Your {self.config.app_name} OTP Code"
        text = f"Your OTP code is {issued.code}. It expires in {minutes} minutes."
        html = (
            f"<p>Your OTP code is <b>{issued.code}</b>. "
            f"It expires in {minutes} minutes.</p>"
        )
        try:
            await self.mailer.send(to=email, subject=subject, text=text, html=html)
        except Exception as e:
            raise DeliveryError() from e

        logger.info("OTP issued for %s", email)

    async def verify_otp(
        self, email: str | None, code: str | None, name: str | None = None
    ) -> tuple[str, UserSummary]:
        """
        Verify a code and sign the user in, creating the account if needed.

        Args:
            email: Address the code was sent to
            code: Submitted code
            name: Display name used only when the account is created

        Returns:
            Session token and the user's public summary

        Raises:
            ValidationError: email or code is empty
            AuthChallengeError: the code was not accepted
        """
        email = normalize_email(email)
        code = (code or "").strip()
        if not email or not code:
            raise ValidationError("Email and code are required")

        status = await self.codes.verify(email, code)
        if status is not VerifyStatus.SUCCESS:
            logger.info("OTP verification for %s rejected: %s", email, status)
            raise AuthChallengeError(reason=status, message=REJECTION_MESSAGES[status])

        user = await self.db.get_user_by_email(email)
        if user is None:
            display_name = (name or "").strip() or email.split("@")[0]
            user = await self._create_user(email, display_name)

        token = create_session_token(
            user_id=user.id,
            email=user.email,
            secret_key=self.config.secret_key,
            algorithm=self.config.algorithm,
            lifetime=self.config.session_lifetime,
        )
        return token, UserSummary.from_record(user)

    async def _create_user(self, email: str, name: str) -> UserRecord:
        try:
            user = await self.db.create_user(email, name)
        except OTPRealtimeError:
            # Lost a signup race on the unique email index
            existing = await self.db.get_user_by_email(email)
            if existing is None:
                raise
            return existing
        logger.info("Created user %s for %s", user.id, email)
        return user
