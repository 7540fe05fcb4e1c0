"""MongoDB adapter for challenges, users and transactions."""

import contextlib
import re
from collections.abc import Iterator
from datetime import UTC, datetime
from typing import Any

try:
    from bson import ObjectId  # type: ignore[import-untyped]
    from bson.errors import InvalidId  # type: ignore[import-untyped]
    from motor.motor_asyncio import AsyncIOMotorDatabase  # type: ignore[import-untyped]
    from pymongo import ASCENDING, DESCENDING, ReturnDocument
    from pymongo.errors import PyMongoError
except ImportError as e:
    raise ImportError(
        "MongoDB support requires motor and pymongo. "
        "Install with: pip install fastapi-otp-realtime[mongodb]"
    ) from e

from fastapi_otp_realtime.db.models import (
    OtpChallenge,
    TransactionFilter,
    TransactionRecord,
    UserRecord,
)
from fastapi_otp_realtime.exceptions import PersistenceError

_DATETIME_FIELDS = ("expires_at", "created_at", "updated_at", "date")


@contextlib.contextmanager
def _storage_errors() -> Iterator[None]:
    try:
        yield
    except PyMongoError as e:
        raise PersistenceError() from e


def _as_utc(doc: dict[str, Any]) -> dict[str, Any]:
    # Motor returns naive datetimes unless the client is tz_aware
    for field in _DATETIME_FIELDS:
        value = doc.get(field)
        if isinstance(value, datetime) and value.tzinfo is None:
            doc[field] = value.replace(tzinfo=UTC)
    return doc


def _bson_datetime(value: datetime) -> datetime:
    """BSON dates carry no zone; query with naive UTC."""
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def _object_id(value: str) -> ObjectId | None:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


class MongoDBAdapter:
    """
    MongoDB implementation of the DatabaseAdapter protocol.

    Wraps a Motor AsyncIOMotorDatabase. Call ``create_indexes`` once at
    startup to get the unique email index and the TTL index that reaps
    expired challenges.

    Example:
        ```python
        from motor.motor_asyncio import AsyncIOMotorClient

        client = AsyncIOMotorClient("mongodb://localhost:27017")
        adapter = MongoDBAdapter(client["budget-tracker"])
        await adapter.create_indexes()
        ```
    """

    def __init__(
        self,
        database: AsyncIOMotorDatabase,
        challenge_collection_name: str = "otp_codes",
        user_collection_name: str = "users",
        transaction_collection_name: str = "transactions",
    ) -> None:
        """
        Initialize the MongoDB adapter.

        Args:
            database: Motor AsyncIOMotorDatabase instance
            challenge_collection_name: Name of the OTP challenge collection
            user_collection_name: Name of the users collection
            transaction_collection_name: Name of the transactions collection
        """
        self.database = database
        self.challenges = database[challenge_collection_name]
        self.users = database[user_collection_name]
        self.transactions = database[transaction_collection_name]

    async def create_indexes(self) -> None:
        """Create the indexes the adapter relies on."""
        with _storage_errors():
            await self.challenges.create_index("email", unique=True)
            await self.challenges.create_index("expires_at", expireAfterSeconds=0)
            await self.users.create_index("email", unique=True)
            await self.transactions.create_index(
                [("user_id", ASCENDING), ("date", DESCENDING)]
            )

    # ------------------------------------------------------------------
    # OTP challenges
    # ------------------------------------------------------------------

    async def replace_challenge(
        self, email: str, code_hash: str, expires_at: datetime
    ) -> OtpChallenge:
        doc = {
            "email": email,
            "code_hash": code_hash,
            "expires_at": expires_at,
            "attempts": 0,
            "created_at": datetime.now(UTC),
        }
        stored = {**doc, "expires_at": _bson_datetime(expires_at)}
        with _storage_errors():
            await self.challenges.replace_one({"email": email}, stored, upsert=True)
        return OtpChallenge.model_validate(doc)

    async def get_challenge(self, email: str) -> OtpChallenge | None:
        with _storage_errors():
            doc = await self.challenges.find_one({"email": email})
        if doc is None:
            return None
        doc.pop("_id", None)
        return OtpChallenge.model_validate(_as_utc(doc))

    async def increment_challenge_attempts(
        self, email: str, code_hash: str, max_attempts: int
    ) -> bool:
        with _storage_errors():
            result = await self.challenges.update_one(
                {
                    "email": email,
                    "code_hash": code_hash,
                    "attempts": {"$lt": max_attempts},
                },
                {"$inc": {"attempts": 1}},
            )
        return result.modified_count == 1

    async def consume_challenge(self, email: str, code_hash: str) -> bool:
        with _storage_errors():
            result = await self.challenges.delete_one(
                {"email": email, "code_hash": code_hash}
            )
        return result.deleted_count == 1

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    @staticmethod
    def _deserialize_user(doc: dict[str, Any] | None) -> UserRecord | None:
        if doc is None:
            return None
        family_id = doc.get("family_id")
        return UserRecord(
            id=str(doc["_id"]),
            email=doc["email"],
            name=doc.get("name"),
            family_id=str(family_id) if family_id is not None else None,
        )

    async def get_user_by_email(self, email: str) -> UserRecord | None:
        with _storage_errors():
            doc = await self.users.find_one({"email": email})
        return self._deserialize_user(doc)

    async def get_user_by_id(self, user_id: str) -> UserRecord | None:
        query_id = _object_id(user_id)
        if query_id is None:
            return None
        with _storage_errors():
            doc = await self.users.find_one({"_id": query_id})
        return self._deserialize_user(doc)

    async def create_user(self, email: str, name: str | None) -> UserRecord:
        now = datetime.now(UTC)
        doc = {"email": email, "name": name, "created_at": now, "updated_at": now}
        with _storage_errors():
            result = await self.users.insert_one(doc)
        return UserRecord(id=str(result.inserted_id), email=email, name=name)

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @staticmethod
    def _deserialize_transaction(doc: dict[str, Any]) -> TransactionRecord:
        doc = _as_utc(dict(doc))
        doc["id"] = str(doc.pop("_id"))
        return TransactionRecord.model_validate(doc)

    async def list_transactions(
        self, user_id: str, filters: TransactionFilter
    ) -> list[TransactionRecord]:
        query: dict[str, Any] = {"user_id": user_id}
        if filters.category:
            query["category"] = filters.category
        if filters.type:
            query["type"] = filters.type

        date_range: dict[str, datetime] = {}
        if filters.start_date:
            date_range["$gte"] = _bson_datetime(filters.start_date)
        if filters.end_date:
            date_range["$lte"] = _bson_datetime(filters.end_date)
        if date_range:
            query["date"] = date_range

        amount_range: dict[str, float] = {}
        if filters.min_amount is not None:
            amount_range["$gte"] = filters.min_amount
        if filters.max_amount is not None:
            amount_range["$lte"] = filters.max_amount
        if amount_range:
            query["amount"] = amount_range

        if filters.search:
            pattern = {"$regex": re.escape(filters.search), "$options": "i"}
            query["$or"] = [{"description": pattern}, {"category": pattern}]

        with _storage_errors():
            cursor = self.transactions.find(query).sort("date", DESCENDING)
            docs = await cursor.to_list(length=None)
        return [self._deserialize_transaction(doc) for doc in docs]

    async def create_transaction(
        self, user_id: str, data: dict[str, Any]
    ) -> TransactionRecord:
        now = datetime.now(UTC)
        doc = {
            **data,
            "user_id": user_id,
            "date": _bson_datetime(data.get("date") or now),
            "created_at": now,
            "updated_at": now,
        }
        with _storage_errors():
            result = await self.transactions.insert_one(doc)
        doc["_id"] = result.inserted_id
        return self._deserialize_transaction(doc)

    async def update_transaction(
        self, user_id: str, transaction_id: str, changes: dict[str, Any]
    ) -> TransactionRecord | None:
        query_id = _object_id(transaction_id)
        if query_id is None:
            return None
        update = {**changes, "updated_at": datetime.now(UTC)}
        if update.get("date") is not None:
            update["date"] = _bson_datetime(update["date"])
        with _storage_errors():
            doc = await self.transactions.find_one_and_update(
                {"_id": query_id, "user_id": user_id},
                {"$set": update},
                return_document=ReturnDocument.AFTER,
            )
        if doc is None:
            return None
        return self._deserialize_transaction(doc)

    async def delete_transaction(self, user_id: str, transaction_id: str) -> bool:
        query_id = _object_id(transaction_id)
        if query_id is None:
            return False
        with _storage_errors():
            result = await self.transactions.delete_one(
                {"_id": query_id, "user_id": user_id}
            )
        return result.deleted_count == 1
