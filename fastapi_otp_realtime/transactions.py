"""Transaction CRUD routes scoped to the signed-in user.

Every write publishes a ``transaction:*`` event to the owner's realtime scope.
"""

import logging
from collections.abc import Callable

from fastapi import APIRouter, Depends, status  # type: ignore[import-untyped]

from fastapi_otp_realtime.config import OTPRealtimeConfig
from fastapi_otp_realtime.db.models import (
    TransactionFilter,
    TransactionRecord,
    UserRecord,
)
from fastapi_otp_realtime.db.protocols import DatabaseAdapter
from fastapi_otp_realtime.dependencies import get_current_user_dependency
from fastapi_otp_realtime.exceptions import NotFoundOrNotOwnedError
from fastapi_otp_realtime.realtime import RealtimeHub
from fastapi_otp_realtime.schemas import (
    DeletedResponse,
    TransactionCreate,
    TransactionUpdate,
)

logger = logging.getLogger(__name__)

TRANSACTION_CREATED = "transaction:created"
TRANSACTION_UPDATED = "transaction:updated"
TRANSACTION_DELETED = "transaction:deleted"


def get_transactions_router(
    get_db: Callable[[], DatabaseAdapter],
    config: OTPRealtimeConfig,
    hub: RealtimeHub,
) -> APIRouter:
    """
    Create an APIRouter with the transaction endpoints.

    Records belonging to other users behave exactly like missing ones (404).
    """
    router = APIRouter()
    current_user = Depends(get_current_user_dependency(get_db, config))

    @router.get(
        "",
        response_model=list[TransactionRecord],
        summary="List transactions",
        description="The caller's transactions, newest first",
    )
    async def list_transactions(
        filters: TransactionFilter = Depends(),
        user: UserRecord = current_user,
        db: DatabaseAdapter = Depends(get_db),
    ) -> list[TransactionRecord]:
        return await db.list_transactions(user.id, filters)

    @router.post(
        "",
        response_model=TransactionRecord,
        status_code=status.HTTP_200_OK,
        summary="Create transaction",
    )
    async def create_transaction(
        body: TransactionCreate,
        user: UserRecord = current_user,
        db: DatabaseAdapter = Depends(get_db),
    ) -> TransactionRecord:
        record = await db.create_transaction(user.id, body.model_dump(exclude_none=True))
        hub.publish(user.id, TRANSACTION_CREATED, record)
        return record

    @router.put(
        "/{transaction_id}",
        response_model=TransactionRecord,
        summary="Update transaction",
    )
    async def update_transaction(
        transaction_id: str,
        body: TransactionUpdate,
        user: UserRecord = current_user,
        db: DatabaseAdapter = Depends(get_db),
    ) -> TransactionRecord:
        changes = body.model_dump(exclude_unset=True, exclude_none=True)
        record = await db.update_transaction(user.id, transaction_id, changes)
        if record is None:
            raise NotFoundOrNotOwnedError()
        hub.publish(user.id, TRANSACTION_UPDATED, record)
        return record

    @router.delete(
        "/{transaction_id}",
        response_model=DeletedResponse,
        summary="Delete transaction",
    )
    async def delete_transaction(
        transaction_id: str,
        user: UserRecord = current_user,
        db: DatabaseAdapter = Depends(get_db),
    ) -> DeletedResponse:
        if not await db.delete_transaction(user.id, transaction_id):
            raise NotFoundOrNotOwnedError()
        hub.publish(user.id, TRANSACTION_DELETED, {"id": transaction_id})
        logger.info("User %s deleted transaction %s", user.id, transaction_id)
        return DeletedResponse(msg="Transaction removed", id=transaction_id)

    return router
