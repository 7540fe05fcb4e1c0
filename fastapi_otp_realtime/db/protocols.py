"""Protocol defining the storage interface used by the service layer."""

from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from fastapi_otp_realtime.db.models import (
    OtpChallenge,
    TransactionFilter,
    TransactionRecord,
    UserRecord,
)


@runtime_checkable
class DatabaseAdapter(Protocol):
    """
    Storage operations for OTP challenges, users and transactions.

    Implementations must:
        - make ``increment_challenge_attempts`` a conditional increment that
          never raises ``attempts`` past the cap, even under concurrent calls
        - make ``consume_challenge`` a conditional delete that succeeds for at
          most one caller
        - raise ``PersistenceError`` for driver failures
    """

    async def replace_challenge(
        self, email: str, code_hash: str, expires_at: datetime
    ) -> OtpChallenge:
        """Replace any challenge for ``email`` with a fresh one."""
        ...

    async def get_challenge(self, email: str) -> OtpChallenge | None:
        """Return the live challenge for ``email``, if any."""
        ...

    async def increment_challenge_attempts(
        self, email: str, code_hash: str, max_attempts: int
    ) -> bool:
        """
        Add one failed attempt to the challenge for ``email``.

        Only a challenge still holding ``code_hash`` with fewer than
        ``max_attempts`` attempts is updated. Returns True if this call
        recorded the attempt.
        """
        ...

    async def consume_challenge(self, email: str, code_hash: str) -> bool:
        """Delete the challenge if it still matches; True if this call deleted it."""
        ...

    async def get_user_by_email(self, email: str) -> UserRecord | None: ...

    async def get_user_by_id(self, user_id: str) -> UserRecord | None: ...

    async def create_user(self, email: str, name: str | None) -> UserRecord: ...

    async def list_transactions(
        self, user_id: str, filters: TransactionFilter
    ) -> list[TransactionRecord]:
        """Return the user's transactions matching ``filters``, newest first."""
        ...

    async def create_transaction(
        self, user_id: str, data: dict[str, Any]
    ) -> TransactionRecord: ...

    async def update_transaction(
        self, user_id: str, transaction_id: str, changes: dict[str, Any]
    ) -> TransactionRecord | None:
        """Apply ``changes``; None when missing or owned by someone else."""
        ...

    async def delete_transaction(self, user_id: str, transaction_id: str) -> bool:
        """Delete an owned transaction; False when missing or not owned."""
        ...
