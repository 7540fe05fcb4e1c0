"""Column types for the SQLAlchemy adapter."""

from datetime import UTC, datetime

from sqlalchemy import types
from sqlalchemy.engine import Dialect


class UTCDateTime(types.TypeDecorator):
    """
    DateTime column that always hands back timezone-aware UTC values.

    Challenge expiry and transaction dates are compared against
    ``datetime.now(UTC)``, so values read back from backends without timezone
    support (SQLite) must not come back naive.

    Example:
        ```python
        expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
        ```
    """

    impl = types.DateTime
    cache_ok = True

    def process_bind_param(
        self, value: datetime | None, _dialect: Dialect
    ) -> datetime | None:
        """Store as naive UTC; naive input is assumed to be UTC already."""
        if value is None or value.tzinfo is None:
            return value
        return value.astimezone(UTC).replace(tzinfo=None)

    def process_result_value(
        self, value: datetime | None, _dialect: Dialect
    ) -> datetime | None:
        """Attach UTC to naive values, convert aware ones."""
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)
