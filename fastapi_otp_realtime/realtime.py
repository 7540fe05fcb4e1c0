"""Per-user realtime event delivery over WebSockets."""

import asyncio
import contextlib
import logging
import threading
from enum import StrEnum
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status
from fastapi.encoders import jsonable_encoder

from fastapi_otp_realtime.config import OTPRealtimeConfig
from fastapi_otp_realtime.exceptions import UnauthenticatedError
from fastapi_otp_realtime.security import SessionClaims, decode_session_token

logger = logging.getLogger(__name__)

CONNECTED_EVENT = "socket:connected"


class ConnectionState(StrEnum):
    CONNECTING = "connecting"
    AUTHENTICATED = "authenticated"
    REJECTED = "rejected"
    CLOSED = "closed"


def scope_name(user_id: str) -> str:
    return f"user:{user_id}"


class Connection:
    """
    An authenticated WebSocket with its own bounded outbound queue.

    ``offer`` never waits: when a slow client lets its queue fill up, further
    events for that client are dropped.
    """

    def __init__(
        self, websocket: WebSocket, user_id: str, queue_size: int = 100
    ) -> None:
        self.websocket = websocket
        self.user_id = user_id
        self.state = ConnectionState.AUTHENTICATED
        self.queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=queue_size)

    @property
    def scope(self) -> str:
        return scope_name(self.user_id)

    def offer(self, event: str, data: Any) -> bool:  # noqa: ANN401
        """Queue an event frame; False if the queue is full or the socket closed."""
        if self.state is not ConnectionState.AUTHENTICATED:
            return False
        try:
            self.queue.put_nowait({"event": event, "data": data})
        except asyncio.QueueFull:
            logger.warning("Dropping %s for %s: outbound queue full", event, self.scope)
            return False
        return True

    async def pump(self) -> None:
        """Forward queued frames to the socket until it closes."""
        try:
            while True:
                frame = await self.queue.get()
                await self.websocket.send_json(frame)
        except (WebSocketDisconnect, RuntimeError) as e:
            # Client went away between queueing and sending
            logger.debug("Stopped sending to %s: %r", self.scope, e)


class ConnectionRegistry:
    """Maps user ids to their live connections."""

    def __init__(self) -> None:
        self._scopes: dict[str, set[Connection]] = {}
        self._lock = threading.Lock()

    def add(self, connection: Connection) -> None:
        with self._lock:
            self._scopes.setdefault(connection.user_id, set()).add(connection)

    def discard(self, connection: Connection) -> None:
        with self._lock:
            members = self._scopes.get(connection.user_id)
            if members is None:
                return
            members.discard(connection)
            if not members:
                del self._scopes[connection.user_id]

    def connections(self, user_id: str) -> list[Connection]:
        """Snapshot of the user's connections, safe to iterate while others join."""
        with self._lock:
            return list(self._scopes.get(user_id, ()))

    def count(self, user_id: str | None = None) -> int:
        with self._lock:
            if user_id is not None:
                return len(self._scopes.get(user_id, ()))
            return sum(len(members) for members in self._scopes.values())


class RealtimeHub:
    """
    Authenticates WebSocket handshakes and fans events out per user.

    A handshake is accepted only with a valid session cookie (and, when the
    browser sends one, an allowed ``Origin``). Accepted connections join the
    scope ``user:<id>`` and receive a ``socket:connected`` frame. Events are
    delivered at most once, only while connected.
    """

    def __init__(
        self, config: OTPRealtimeConfig, registry: ConnectionRegistry | None = None
    ) -> None:
        self.config = config
        self.registry = registry if registry is not None else ConnectionRegistry()

    def authenticate(self, websocket: WebSocket) -> SessionClaims:
        """
        Resolve the handshake to session claims.

        Raises:
            UnauthenticatedError: bad origin, missing cookie or invalid token
        """
        if not self.config.is_origin_allowed(websocket.headers.get("origin")):
            raise UnauthenticatedError("Origin not allowed")
        token = websocket.cookies.get(self.config.cookie_name)
        if not token:
            raise UnauthenticatedError()
        return decode_session_token(token, self.config.secret_key, self.config.algorithm)

    async def serve(self, websocket: WebSocket) -> ConnectionState:
        """Run one connection from handshake to disconnect."""
        try:
            claims = self.authenticate(websocket)
        except UnauthenticatedError as e:
            logger.info("Rejected socket handshake: %s", e.message)
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return ConnectionState.REJECTED

        await websocket.accept()
        connection = Connection(
            websocket, claims.user_id, self.config.connection_queue_size
        )
        await websocket.send_json({"event": CONNECTED_EVENT, "data": {"ok": True}})

        self.registry.add(connection)
        sender = asyncio.create_task(connection.pump())
        logger.info("Socket connected to %s", connection.scope)
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
        finally:
            connection.state = ConnectionState.CLOSED
            self.registry.discard(connection)
            sender.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sender
            logger.info("Socket disconnected from %s", connection.scope)

        return connection.state

    def publish(self, user_id: str, event: str, data: Any) -> int:  # noqa: ANN401
        """
        Deliver ``event`` to every live connection of ``user_id``.

        Never blocks; returns how many connections accepted the event.
        """
        payload = jsonable_encoder(data)
        delivered = 0
        for connection in self.registry.connections(str(user_id)):
            if connection.offer(event, payload):
                delivered += 1
        logger.debug(
            "Published %s to %s (%d connections)", event, scope_name(user_id), delivered
        )
        return delivered


def get_realtime_router(hub: RealtimeHub, path: str = "/ws") -> APIRouter:
    """
    Create an APIRouter exposing the hub's WebSocket endpoint.

    Example:
        ```python
        hub = RealtimeHub(config)
        app.include_router(get_realtime_router(hub))
        ```
    """
    router = APIRouter()

    @router.websocket(path)
    async def realtime_socket(websocket: WebSocket) -> None:
        await hub.serve(websocket)

    return router
