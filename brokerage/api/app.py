"""
FastAPI application factory.

* Registers routes for trips, requests, drivers, notifications and admin.
* Builds the database engine and the notification sink via lifespan events
  (unless a session factory / sink is injected, as the tests do).
* Maps workflow errors to HTTP status codes.
* Applies rate-limiting middleware.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from brokerage.api.middleware import limiter
from brokerage.api.routes import admin, drivers, notifications, requests, trips
from brokerage.config import settings
from brokerage.domain.errors import (
    Conflict,
    Forbidden,
    InvalidState,
    NotFound,
    ValidationError,
    WorkflowError,
)
from brokerage.infrastructure.database import build_engine, build_session_factory
from brokerage.infrastructure.redis_client import build_redis
from brokerage.services.notifications import (
    DatabaseNotificationSink,
    NotificationSink,
    NullNotificationSink,
    RedisNotificationSink,
)

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

# Workflow error kind -> HTTP status
ERROR_STATUS: dict[type[WorkflowError], int] = {
    NotFound: 404,
    Forbidden: 403,
    InvalidState: 409,
    Conflict: 409,
    ValidationError: 422,
}


def status_for(exc: WorkflowError) -> int:
    for kind, status_code in ERROR_STATUS.items():
        if isinstance(exc, kind):
            return status_code
    return 400


async def workflow_error_handler(request: Request, exc: WorkflowError) -> JSONResponse:
    status_code = status_for(exc)
    logger.info(
        "%s %s -> %d %s: %s",
        request.method,
        request.url.path,
        status_code,
        exc.error_code,
        exc.message,
    )
    return JSONResponse(
        status_code=status_code,
        content={
            "error_code": exc.error_code,
            "message": exc.message,
            "details": jsonable_encoder(exc.details),
        },
    )


def build_notifier(
    backend: str, session_factory: async_sessionmaker[AsyncSession]
) -> tuple[NotificationSink, Optional[object]]:
    """Return the sink for *backend* and the Redis client to close, if any."""
    if backend == "redis":
        client = build_redis()
        return RedisNotificationSink(client, settings.notification_channel_prefix), client
    if backend == "none":
        return NullNotificationSink(), None
    if backend != "database":
        raise ValueError(f"Unknown notification backend: {backend}")
    return DatabaseNotificationSink(session_factory), None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Wire the store and the notification sink; dispose them on shutdown."""
    engine = None
    redis_client = None

    if getattr(app.state, "session_factory", None) is None:
        engine = build_engine()
        app.state.session_factory = build_session_factory(engine)
    if getattr(app.state, "notifier", None) is None:
        app.state.notifier, redis_client = build_notifier(
            settings.notification_backend, app.state.session_factory
        )
    logger.info(
        "Brokerage API started (notifications: %s)", type(app.state.notifier).__name__
    )

    yield

    if redis_client is not None:
        await redis_client.aclose()
    if engine is not None:
        await engine.dispose()


def create_app(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    notifier: Optional[NotificationSink] = None,
) -> FastAPI:
    app = FastAPI(
        title="Transport Brokerage API",
        description=(
            "Brokers transport trips between companies and independent "
            "drivers: availability matching, directional trip requests, "
            "assignment, reassignment and trip execution."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.session_factory = session_factory
    app.state.notifier = notifier

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # Workflow errors
    app.add_exception_handler(WorkflowError, workflow_error_handler)

    # Routers
    app.include_router(trips.router, prefix="/api/v1")
    app.include_router(requests.router, prefix="/api/v1")
    app.include_router(drivers.router, prefix="/api/v1")
    app.include_router(notifications.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")

    return app
