"""Application factory and entry point."""

import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from fastapi_otp_realtime.config import OTPRealtimeConfig
from fastapi_otp_realtime.db.protocols import DatabaseAdapter
from fastapi_otp_realtime.exceptions import register_exception_handlers
from fastapi_otp_realtime.mailer import Mailer, build_mailer
from fastapi_otp_realtime.realtime import RealtimeHub, get_realtime_router
from fastapi_otp_realtime.router import get_auth_router
from fastapi_otp_realtime.throttle import InMemoryThrottle, Throttle
from fastapi_otp_realtime.transactions import get_transactions_router

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: int | str = logging.INFO) -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT)


def create_app(
    config: OTPRealtimeConfig,
    get_db: Callable[[], DatabaseAdapter],
    mailer: Mailer | None = None,
    throttle: Throttle | None = None,
    hub: RealtimeHub | None = None,
    lifespan: Callable[[FastAPI], AbstractAsyncContextManager[None]] | None = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        config: Application configuration
        get_db: Dependency returning the storage adapter for a request
        mailer: Mail collaborator; chosen from ``config`` when omitted
        throttle: Issuance throttle; a fresh in-memory one when omitted
        hub: Realtime hub; a fresh one when omitted
        lifespan: Optional FastAPI lifespan (startup/shutdown) handler

    Returns:
        Configured FastAPI instance. The hub is available as ``app.state.hub``
        so other event producers can publish to it.
    """
    if mailer is None:
        mailer = build_mailer(config)
    if throttle is None:
        throttle = InMemoryThrottle(window=config.otp_cooldown_seconds)
    if hub is None:
        hub = RealtimeHub(config)

    app = FastAPI(title=f"{config.app_name} API", lifespan=lifespan)
    app.state.config = config
    app.state.hub = hub
    app.state.throttle = throttle

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.allowed_origins,
        allow_origin_regex=config.localhost_origin_regex,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
        allow_headers=[
            "Content-Type",
            "Authorization",
            "X-Requested-With",
            "Accept",
            "Origin",
        ],
        expose_headers=["Content-Range", "X-Content-Range", "X-Total-Count", "Retry-After"],
        max_age=86400,
    )

    @app.middleware("http")
    async def log_requests(
        request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        started = time.perf_counter()
        response = await call_next(request)
        logger.info(
            "%s %s -> %s (%.1f ms)",
            request.method,
            request.url.path,
            response.status_code,
            (time.perf_counter() - started) * 1000,
        )
        return response

    register_exception_handlers(app, expose_detail=config.expose_error_detail)

    app.include_router(
        get_auth_router(get_db, config, throttle, mailer), prefix="/auth", tags=["auth"]
    )
    app.include_router(
        get_transactions_router(get_db, config, hub),
        prefix="/transactions",
        tags=["transactions"],
    )
    app.include_router(get_realtime_router(hub), tags=["realtime"])

    @app.get("/", tags=["health"])
    async def root() -> dict[str, str]:
        return {"message": f"{config.app_name} API is running"}

    return app


def create_mongo_app(config: OTPRealtimeConfig) -> FastAPI:
    """
    Build the application backed by MongoDB at ``config.mongodb_uri``.

    Indexes are created on startup and the client is closed on shutdown.
    """
    from motor.motor_asyncio import AsyncIOMotorClient  # type: ignore[import-untyped]

    from fastapi_otp_realtime.db.mongodb.adapter import MongoDBAdapter

    client: AsyncIOMotorClient = AsyncIOMotorClient(config.mongodb_uri)
    adapter = MongoDBAdapter(client[config.mongodb_database])

    def get_db() -> DatabaseAdapter:
        return adapter

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        await adapter.create_indexes()
        logger.info("MongoDB connected: %s", config.mongodb_database)
        yield
        client.close()

    return create_app(config, get_db, lifespan=lifespan)


def main() -> None:
    """Run the MongoDB-backed server with uvicorn."""
    import uvicorn

    configure_logging()
    config = OTPRealtimeConfig.from_env()
    app = create_mongo_app(config)
    uvicorn.run(app, host="0.0.0.0", port=config.port)


if __name__ == "__main__":
    main()
