"""Tests for the code store and the passwordless sign-in flow."""

import asyncio
from datetime import timedelta

import pytest

from fastapi_otp_realtime.config import OTPRealtimeConfig
from fastapi_otp_realtime.db.models import OtpChallenge
from fastapi_otp_realtime.db.mongodb.adapter import MongoDBAdapter
from fastapi_otp_realtime.db.sqlalchemy.adapter import SQLAlchemyAdapter
from fastapi_otp_realtime.exceptions import (
    AuthChallengeError,
    DeliveryError,
    ThrottledError,
    ValidationError,
)
from fastapi_otp_realtime.otp import (
    CodeStore,
    OtpAuthenticator,
    VerifyStatus,
    normalize_email,
)
from fastapi_otp_realtime.security import decode_session_token, hash_otp_code
from fastapi_otp_realtime.throttle import InMemoryThrottle
from tests.conftest import TEST_SECRET, FakeClock, RecordingMailer

EMAIL = "a@x.com"

# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def codes(
    mongo_adapter: MongoDBAdapter, test_config: OTPRealtimeConfig, clock: FakeClock
) -> CodeStore:
    return CodeStore(mongo_adapter, test_config, clock)


@pytest.fixture
def authenticator(
    mongo_adapter: MongoDBAdapter,
    test_config: OTPRealtimeConfig,
    throttle: InMemoryThrottle,
    mailer: RecordingMailer,
    clock: FakeClock,
) -> OtpAuthenticator:
    return OtpAuthenticator(mongo_adapter, test_config, throttle, mailer, clock)


class RacingAdapter:
    """Holds the first ``parties`` challenge reads until all of them have read."""

    def __init__(self, inner: MongoDBAdapter, parties: int) -> None:
        self.inner = inner
        self.parties = parties
        self.held = 0
        self.barrier = asyncio.Barrier(parties)

    async def get_challenge(self, email: str) -> OtpChallenge | None:
        challenge = await self.inner.get_challenge(email)
        if self.held < self.parties:
            self.held += 1
            await self.barrier.wait()
        return challenge

    def __getattr__(self, name: str):  # type: ignore[no-untyped-def]
        return getattr(self.inner, name)


# ============================================================================
# Code Store Tests
# ============================================================================


class TestCodeStore:
    """Test suite for issuing and verifying codes."""

    @pytest.mark.asyncio
    async def test_issue_stores_only_hash(
        self, codes: CodeStore, mongo_adapter: MongoDBAdapter
    ) -> None:
        issued = await codes.issue(EMAIL)

        challenge = await mongo_adapter.get_challenge(EMAIL)
        assert challenge is not None
        assert challenge.code_hash == hash_otp_code(issued.code)
        assert challenge.code_hash != issued.code
        assert challenge.attempts == 0

    @pytest.mark.asyncio
    async def test_issue_sets_ten_minute_expiry(
        self, codes: CodeStore, clock: FakeClock
    ) -> None:
        issued = await codes.issue(EMAIL)

        assert issued.expires_at == clock.now + timedelta(minutes=10)

    @pytest.mark.asyncio
    async def test_correct_code_succeeds(self, codes: CodeStore) -> None:
        issued = await codes.issue(EMAIL)

        assert await codes.verify(EMAIL, issued.code) is VerifyStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_code_with_surrounding_whitespace_succeeds(
        self, codes: CodeStore
    ) -> None:
        issued = await codes.issue(EMAIL)

        assert await codes.verify(EMAIL, f" {issued.code}\n") is VerifyStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_code_is_single_use(self, codes: CodeStore) -> None:
        """A second verification with the same code should find nothing."""
        issued = await codes.issue(EMAIL)
        await codes.verify(EMAIL, issued.code)

        assert await codes.verify(EMAIL, issued.code) is VerifyStatus.NOT_FOUND

    @pytest.mark.asyncio
    async def test_unknown_email_not_found(self, codes: CodeStore) -> None:
        assert await codes.verify("nobody@x.com", "123456") is VerifyStatus.NOT_FOUND

    @pytest.mark.asyncio
    async def test_wrong_code_counts_attempt(
        self, codes: CodeStore, mongo_adapter: MongoDBAdapter
    ) -> None:
        await codes.issue(EMAIL)

        assert await codes.verify(EMAIL, "000000") is VerifyStatus.MISMATCH

        challenge = await mongo_adapter.get_challenge(EMAIL)
        assert challenge is not None
        assert challenge.attempts == 1

    @pytest.mark.asyncio
    async def test_exhausted_challenge_rejects_correct_code(
        self, codes: CodeStore
    ) -> None:
        """Five wrong guesses should lock out even the right code."""
        issued = await codes.issue(EMAIL)
        for _ in range(5):
            assert await codes.verify(EMAIL, "000000") is VerifyStatus.MISMATCH

        status = await codes.verify(EMAIL, issued.code)

        assert status is VerifyStatus.TOO_MANY_ATTEMPTS

    @pytest.mark.asyncio
    async def test_expired_code_rejected(
        self, codes: CodeStore, clock: FakeClock
    ) -> None:
        issued = await codes.issue(EMAIL)
        clock.advance(timedelta(minutes=10))

        assert await codes.verify(EMAIL, issued.code) is VerifyStatus.EXPIRED

    @pytest.mark.asyncio
    async def test_expiry_checked_before_attempts(
        self, codes: CodeStore, clock: FakeClock
    ) -> None:
        issued = await codes.issue(EMAIL)
        for _ in range(5):
            await codes.verify(EMAIL, "000000")
        clock.advance(timedelta(minutes=11))

        assert await codes.verify(EMAIL, issued.code) is VerifyStatus.EXPIRED

    @pytest.mark.asyncio
    async def test_reissue_replaces_previous_code(self, codes: CodeStore) -> None:
        """Only the most recent code should work."""
        first = await codes.issue(EMAIL)
        second = await codes.issue(EMAIL)
        if first.code == second.code:
            pytest.skip("generated the same code twice")

        assert await codes.verify(EMAIL, first.code) is VerifyStatus.MISMATCH
        assert await codes.verify(EMAIL, second.code) is VerifyStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_reissue_resets_attempts(
        self, codes: CodeStore, mongo_adapter: MongoDBAdapter
    ) -> None:
        await codes.issue(EMAIL)
        for _ in range(5):
            await codes.verify(EMAIL, "000000")

        issued = await codes.issue(EMAIL)

        assert await codes.verify(EMAIL, issued.code) is VerifyStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_concurrent_verifications_succeed_once(
        self, mongo_adapter: MongoDBAdapter, test_config: OTPRealtimeConfig
    ) -> None:
        """Two racing verifications of one code should yield one success."""
        racing = RacingAdapter(mongo_adapter, parties=2)
        store = CodeStore(racing, test_config)  # type: ignore[arg-type]
        issued = await store.issue(EMAIL)

        results = await asyncio.gather(
            store.verify(EMAIL, issued.code), store.verify(EMAIL, issued.code)
        )

        assert sorted(results) == sorted([VerifyStatus.SUCCESS, VerifyStatus.NOT_FOUND])

    @pytest.mark.asyncio
    async def test_concurrent_wrong_guesses_respect_attempt_limit(
        self, mongo_adapter: MongoDBAdapter, test_config: OTPRealtimeConfig
    ) -> None:
        """Wrong guesses that all read the challenge before any of them
        writes should still be counted at most max_otp_attempts times."""
        racing = RacingAdapter(mongo_adapter, parties=20)
        store = CodeStore(racing, test_config)  # type: ignore[arg-type]
        issued = await store.issue(EMAIL)
        wrong = "000000" if issued.code != "000000" else "111111"

        results = await asyncio.gather(
            *(store.verify(EMAIL, wrong) for _ in range(20))
        )

        assert results.count(VerifyStatus.MISMATCH) == test_config.max_otp_attempts
        assert results.count(VerifyStatus.TOO_MANY_ATTEMPTS) == 20 - test_config.max_otp_attempts
        challenge = await mongo_adapter.get_challenge(EMAIL)
        assert challenge is not None
        assert challenge.attempts == test_config.max_otp_attempts
        assert await store.verify(EMAIL, issued.code) is VerifyStatus.TOO_MANY_ATTEMPTS

    @pytest.mark.asyncio
    async def test_mismatch_after_replacement_not_found(
        self, mongo_adapter: MongoDBAdapter, test_config: OTPRealtimeConfig
    ) -> None:
        """A wrong guess against a challenge replaced mid-flight should not
        count against the new code."""
        store = CodeStore(mongo_adapter, test_config)
        await store.issue(EMAIL)
        original_get = mongo_adapter.get_challenge

        async def read_then_replace(email: str) -> OtpChallenge | None:
            challenge = await original_get(email)
            mongo_adapter.get_challenge = original_get  # type: ignore[method-assign]
            assert challenge is not None
            await mongo_adapter.replace_challenge(
                email, hash_otp_code("999999"), challenge.expires_at
            )
            return challenge

        mongo_adapter.get_challenge = read_then_replace  # type: ignore[method-assign]

        assert await store.verify(EMAIL, "999998") is VerifyStatus.NOT_FOUND
        current = await mongo_adapter.get_challenge(EMAIL)
        assert current is not None
        assert current.attempts == 0

    @pytest.mark.asyncio
    async def test_works_with_sqlalchemy(
        self, sql_adapter: SQLAlchemyAdapter, test_config: OTPRealtimeConfig
    ) -> None:
        store = CodeStore(sql_adapter, test_config)
        issued = await store.issue(EMAIL)

        assert await store.verify(EMAIL, "000000") is VerifyStatus.MISMATCH
        assert await store.verify(EMAIL, issued.code) is VerifyStatus.SUCCESS
        assert await store.verify(EMAIL, issued.code) is VerifyStatus.NOT_FOUND


# ============================================================================
# Authenticator Tests
# ============================================================================


class TestRequestOtp:
    """Test suite for OtpAuthenticator.request_otp."""

    @pytest.mark.asyncio
    async def test_mails_code(
        self, authenticator: OtpAuthenticator, mailer: RecordingMailer
    ) -> None:
        await authenticator.request_otp(EMAIL, peer_host="10.0.0.5")

        assert len(mailer.sent) == 1
        message = mailer.sent[0]
        assert message["to"] == EMAIL
        assert message["subject"] == "Your Budget Tracker OTP Code"
        assert "expires in 10 minutes" in message["text"]
        assert mailer.last_code(EMAIL) in message["html"]

    @pytest.mark.asyncio
    async def test_email_is_normalized(
        self, authenticator: OtpAuthenticator, mongo_adapter: MongoDBAdapter
    ) -> None:
        await authenticator.request_otp("  A@X.Com ")

        assert await mongo_adapter.get_challenge(EMAIL) is not None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("email", [None, "", "   "])
    async def test_missing_email_rejected(
        self, authenticator: OtpAuthenticator, email: str | None
    ) -> None:
        with pytest.raises(ValidationError):
            await authenticator.request_otp(email)

    @pytest.mark.asyncio
    async def test_repeat_request_throttled(
        self, authenticator: OtpAuthenticator, mailer: RecordingMailer
    ) -> None:
        await authenticator.request_otp(EMAIL, peer_host="10.0.0.5")

        with pytest.raises(ThrottledError) as exc_info:
            await authenticator.request_otp(EMAIL, peer_host="10.0.0.5")

        assert 0 < exc_info.value.retry_after <= 30
        assert len(mailer.sent) == 1

    @pytest.mark.asyncio
    async def test_other_address_not_throttled(
        self, authenticator: OtpAuthenticator
    ) -> None:
        await authenticator.request_otp(EMAIL, peer_host="10.0.0.5")
        await authenticator.request_otp(EMAIL, peer_host="10.0.0.6")

    @pytest.mark.asyncio
    async def test_delivery_failure_raises_and_still_throttles(
        self, authenticator: OtpAuthenticator, mailer: RecordingMailer
    ) -> None:
        """A failing mailer should not let the caller retry immediately."""
        mailer.fail = True

        with pytest.raises(DeliveryError):
            await authenticator.request_otp(EMAIL, peer_host="10.0.0.5")

        mailer.fail = False
        with pytest.raises(ThrottledError):
            await authenticator.request_otp(EMAIL, peer_host="10.0.0.5")


class TestVerifyOtp:
    """Test suite for OtpAuthenticator.verify_otp."""

    @pytest.mark.asyncio
    async def test_first_sign_in_creates_user(
        self,
        authenticator: OtpAuthenticator,
        mailer: RecordingMailer,
        mongo_adapter: MongoDBAdapter,
    ) -> None:
        await authenticator.request_otp(EMAIL)

        token, user = await authenticator.verify_otp(
            EMAIL, mailer.last_code(EMAIL), name="Ann"
        )

        assert user.email == EMAIL
        assert user.name == "Ann"
        stored = await mongo_adapter.get_user_by_email(EMAIL)
        assert stored is not None
        assert stored.id == user.id

        claims = decode_session_token(token, TEST_SECRET, "HS256")
        assert claims.user_id == user.id
        assert claims.email == EMAIL

    @pytest.mark.asyncio
    async def test_name_defaults_to_local_part(
        self, authenticator: OtpAuthenticator, mailer: RecordingMailer
    ) -> None:
        await authenticator.request_otp("jane.doe@x.com")

        _, user = await authenticator.verify_otp(
            "jane.doe@x.com", mailer.last_code("jane.doe@x.com")
        )

        assert user.name == "jane.doe"

    @pytest.mark.asyncio
    async def test_returning_user_keeps_name(
        self,
        authenticator: OtpAuthenticator,
        mailer: RecordingMailer,
        throttle: InMemoryThrottle,
    ) -> None:
        await authenticator.request_otp(EMAIL)
        _, first = await authenticator.verify_otp(
            EMAIL, mailer.last_code(EMAIL), name="Ann"
        )

        throttle.reset()
        await authenticator.request_otp(EMAIL)
        _, second = await authenticator.verify_otp(
            EMAIL, mailer.last_code(EMAIL), name="Someone Else"
        )

        assert second.id == first.id
        assert second.name == "Ann"

    @pytest.mark.asyncio
    async def test_wrong_code_rejected(
        self, authenticator: OtpAuthenticator, mailer: RecordingMailer
    ) -> None:
        await authenticator.request_otp(EMAIL)
        wrong = "111111" if mailer.last_code(EMAIL) != "111111" else "222222"

        with pytest.raises(AuthChallengeError) as exc_info:
            await authenticator.verify_otp(EMAIL, wrong)

        assert exc_info.value.reason == VerifyStatus.MISMATCH
        assert exc_info.value.message == "Invalid code"

    @pytest.mark.asyncio
    async def test_unknown_email_indistinguishable_from_mismatch(
        self, authenticator: OtpAuthenticator
    ) -> None:
        with pytest.raises(AuthChallengeError) as exc_info:
            await authenticator.verify_otp("nobody@x.com", "123456")

        assert exc_info.value.message == "Invalid code"

    @pytest.mark.asyncio
    async def test_expired_code_message(
        self,
        authenticator: OtpAuthenticator,
        mailer: RecordingMailer,
        clock: FakeClock,
    ) -> None:
        await authenticator.request_otp(EMAIL)
        clock.advance(timedelta(minutes=10, seconds=1))

        with pytest.raises(AuthChallengeError) as exc_info:
            await authenticator.verify_otp(EMAIL, mailer.last_code(EMAIL))

        assert exc_info.value.message == "Code expired, please request a new one"

    @pytest.mark.asyncio
    async def test_missing_code_rejected(self, authenticator: OtpAuthenticator) -> None:
        with pytest.raises(ValidationError):
            await authenticator.verify_otp(EMAIL, "  ")


def test_normalize_email() -> None:
    assert normalize_email("  Foo@Example.COM ") == "foo@example.com"
    assert normalize_email(None) == ""
