"""lvtodo - gamified team task manager."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from lvtodo.core import scheduler_tracker
from lvtodo.core.config import settings
from lvtodo.core.db_client import close_connection, init_db
from lvtodo.core.logging import configure_logfire, instrument_fastapi
from lvtodo.core.redis_client import redis_client
from lvtodo.core.scheduler import JOB_NAMES, start_scheduler, stop_scheduler
from lvtodo.interface.api_router import install_error_handlers, router as api_router


logger = logging.getLogger(__name__)


async def check_redis_connectivity() -> None:
    """Log whether the optional Redis cache is reachable. Never fails startup."""
    if not redis_client.is_available:
        logger.info("startup_validation", extra={"service": "redis", "status": "disabled"})
        return

    if await redis_client.ping():
        logger.info("startup_validation", extra={"service": "redis", "status": "ok"})
    else:
        logger.warning("startup_validation", extra={"service": "redis", "status": "unavailable"})


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan context manager."""
    # Configure logging first so startup logs are captured
    configure_logfire()

    await init_db()
    logger.info("Database initialized")

    await check_redis_connectivity()

    if settings.enable_scheduler:
        start_scheduler()
    else:
        logger.info("Scheduler disabled, sweeps run only through /internal/sweeps/*")
    yield
    # Shutdown
    stop_scheduler()
    await redis_client.close()
    await close_connection()


app = FastAPI(
    title="lvtodo",
    description="Gamified team task manager",
    version="0.1.0",
    lifespan=lifespan,
)

# Instrument FastAPI with Logfire
instrument_fastapi(app)

install_error_handlers(app)
app.include_router(api_router)


@app.get("/health")
async def health_check() -> JSONResponse:
    """Liveness check, with the Redis client status attached."""
    return JSONResponse(content={"status": "healthy", "redis": redis_client.get_health_status()}, status_code=200)


@app.get("/health/scheduler")
async def scheduler_health_check() -> JSONResponse:
    """Scheduler health check endpoint with job statuses."""
    tracker = scheduler_tracker.job_tracker
    job_statuses = {job_name: await tracker.get_job_status(job_name) for job_name in JOB_NAMES}

    dlq = tracker.get_dead_letter_queue()

    has_failures = any(job_status["consecutive_failures"] > 0 for job_status in job_statuses.values())

    overall_status = "degraded" if has_failures else "healthy"
    if len(dlq) > 0:
        overall_status = "critical"

    return JSONResponse(
        content={
            "status": overall_status,
            "jobs": job_statuses,
            "dead_letter_queue_size": len(dlq),
            "dead_letter_queue": dlq,
        },
        status_code=200 if overall_status == "healthy" else 503,
    )
