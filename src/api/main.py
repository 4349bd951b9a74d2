"""
FastAPI application factory and configuration.

This module creates the FastAPI application instance,
configures exception handlers, and lifespan events.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from psycopg import errors
from psycopg_pool import AsyncConnectionPool, PoolTimeout

from src.adapters.factory import build_job_tracker, build_notification_service, build_sink
from src.adapters.queue import create_celery_app
from src.adapters.repository.postgres import PostgresUserRepository, run_migrations
from src.adapters.store import RedisEphemeralStore
from src.api.cache import cached
from src.api.error_handlers import register_error_handlers
from src.api.v1 import router as v1_router
from src.config.logging import configure_logging
from src.config.settings import get_settings
from src.domain.exceptions import StoreUnavailable
from src.domain.machine_identity import MachineIdentityRegistry
from src.domain.notifications import SynchronousSink
from src.domain.otp import OtpService
from src.domain.rate_limit import RateLimiter
from src.domain.registration import RegistrationService

logger = logging.getLogger(__name__)

# OpenAPI tags for documentation grouping
tags_metadata = [
    {
        "name": "v1",
        "description": "Staged Registration API v1 - Register and verify email and mobile",
    },
]


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    FastAPI lifespan context manager.

    Manages application startup and shutdown:
    - Creates the redis store and the database connection pool
    - Runs migrations
    - Wires the notification sink and domain services onto app.state
    - Drains in-flight deliveries and closes connections on shutdown
    """
    settings = get_settings()
    configure_logging(settings.log_level)

    logger.info("Starting application...")
    store = RedisEphemeralStore.from_url(settings.redis_url, settings.store_timeout_seconds)

    logger.info("Connecting to database...")
    pool = AsyncConnectionPool(
        conninfo=settings.database_url,
        min_size=settings.pool_min_size,
        max_size=settings.pool_max_size,
        open=False,
    )
    await pool.open()

    logger.info("Running database migrations...")
    await run_migrations(pool)

    notifier = build_notification_service(settings)
    tracker = None
    celery_app = None
    if settings.notification_mode == "queued":
        tracker = build_job_tracker(settings)
        celery_app = create_celery_app(settings, lambda: notifier, tracker)
    sink = build_sink(settings, notifier, celery_app, tracker)

    app.state.settings = settings
    app.state.store = store
    app.state.pool = pool
    app.state.sink = sink
    app.state.machine_registry = MachineIdentityRegistry(store, settings.machine_id_ttl_seconds)
    app.state.rate_limiter = RateLimiter(
        store, prefix=settings.rate_limit_prefix, fail_closed=settings.rate_limit_fail_closed
    )
    app.state.registration_service = RegistrationService(
        store=store,
        users=PostgresUserRepository(pool),
        otp=OtpService(store, settings.otp_length, settings.otp_ttl_seconds),
        notifier=notifier,
        sink=sink,
        policy=settings.registration_policy(),
    )

    logger.info(
        "Application startup complete",
        extra={"notification_mode": settings.notification_mode},
    )

    yield

    # Shutdown
    logger.info("Shutting down application...")
    if isinstance(sink, SynchronousSink):
        await sink.drain()
    await pool.close()
    await store.close()
    logger.info("Connections closed")


app = FastAPI(
    title="stagedreg",
    description="Staged Registration API - two-channel OTP verification before account creation",
    version="0.1.0",
    openapi_tags=tags_metadata,
    lifespan=lifespan,
)

register_error_handlers(app)

# Include v1 API routes
app.include_router(v1_router, prefix="/v1")


async def database_ok(pool: AsyncConnectionPool) -> bool:
    """Run SELECT 1 on the pool; any database or pool error counts as down."""
    try:
        async with pool.connection() as conn:
            await conn.execute("SELECT 1")
    except (errors.Error, PoolTimeout) as e:
        logger.warning("Database health check failed: %s", e)
        return False
    return True


@cached(
    store=lambda request: request.app.state.store,
    key_builder=lambda request: "health",
    ttl=get_settings().health_cache_seconds,
)
async def health_payload(request: Request) -> dict[str, Any]:
    """
    Collect store and database reachability and, in queued mode, queue metrics.

    Status is "unhealthy" when the store or the database is unreachable and "degraded"
    when failed or waiting jobs exceed the configured thresholds.
    """
    settings = request.app.state.settings
    store_ok = await request.app.state.store.ping()
    db_ok = await database_ok(request.app.state.pool)
    payload: dict[str, Any] = {
        "status": "healthy" if store_ok and db_ok else "unhealthy",
        "store": "up" if store_ok else "down",
        "database": "up" if db_ok else "down",
        "notification_mode": settings.notification_mode,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    metrics_source = getattr(request.app.state.sink, "metrics", None)
    if metrics_source is not None:
        try:
            metrics = await metrics_source()
        except StoreUnavailable:
            payload["status"] = "unhealthy"
            payload["queue"] = None
        else:
            payload["queue"] = metrics
            over = (
                metrics["failed"] > settings.queue_degraded_failed_threshold
                or metrics["waiting"] > settings.queue_degraded_waiting_threshold
            )
            if over and payload["status"] == "healthy":
                payload["status"] = "degraded"
    return payload


@app.get("/health")
async def health_check(request: Request) -> JSONResponse:
    """
    Health check endpoint with store, database and queue validation.

    Returns 200 OK when healthy and 503 when degraded or unhealthy.
    """
    payload = await health_payload(request)
    healthy = payload["status"] == "healthy"
    return JSONResponse(
        status_code=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"success": healthy, "data": payload},
    )
