"""Job execution tracking, overlap locks, and retries for scheduled sweeps."""

import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

from lvtodo.core.config import Constants
from lvtodo.core.redis_client import redis_client


logger = logging.getLogger(__name__)

_STATUS_TTL_SECONDS = 86400 * 7
_DLQ_TTL_SECONDS = 86400 * 30
CONSECUTIVE_FAILURE_THRESHOLD = 3


def _key(job_name: str, field: str) -> str:
    return f"lvtodo:scheduler:job:{job_name}:{field}"


class JobTracker:
    """Track job execution history and health status.

    State lives in Redis when it is configured so that several API replicas
    share it; otherwise an in-process dictionary is used.
    """

    def __init__(self) -> None:
        self._memory_storage: dict[str, dict[str, Any]] = {}
        self._running: set[str] = set()
        self._dead_letter_queue: deque[tuple[str, str, str]] = deque(
            maxlen=Constants.TRACKER_DEAD_LETTER_QUEUE_MAXLEN
        )

    def _job(self, job_name: str) -> dict[str, Any]:
        return self._memory_storage.setdefault(job_name, {})

    async def acquire_lock(self, job_name: str, ttl_seconds: int = Constants.JOB_LOCK_TTL_SECONDS) -> bool:
        """Claim the named job for this run. Returns False if another run holds it.

        Falls back to the in-process lock when Redis is configured but unreachable.
        """
        if redis_client.is_available:
            acquired = await redis_client.set_if_not_exists(
                _key(job_name, "lock"), datetime.now(UTC).isoformat(), ttl_seconds=ttl_seconds
            )
            if acquired is not None:
                return acquired
            logger.warning("Redis lock for %s unavailable, using in-process lock", job_name)
        if job_name in self._running:
            return False
        self._running.add(job_name)
        return True

    async def release_lock(self, job_name: str) -> None:
        if redis_client.is_available:
            await redis_client.delete(_key(job_name, "lock"))
        self._running.discard(job_name)

    async def record_job_start(self, job_name: str) -> None:
        now = datetime.now(UTC).isoformat()
        if redis_client.is_available:
            await redis_client.set(_key(job_name, "current_run"), now, ttl_seconds=3600)
        else:
            self._job(job_name)["current_run"] = now

    async def record_job_success(self, job_name: str) -> None:
        now = datetime.now(UTC).isoformat()

        if redis_client.is_available:
            await redis_client.set(_key(job_name, "last_success"), now, ttl_seconds=_STATUS_TTL_SECONDS)
            await redis_client.set(_key(job_name, "consecutive_failures"), "0", ttl_seconds=_STATUS_TTL_SECONDS)
            await redis_client.increment(_key(job_name, "success_count"))
            await redis_client.expire(_key(job_name, "success_count"), _STATUS_TTL_SECONDS)
            await redis_client.delete(_key(job_name, "current_run"))
            return

        job = self._job(job_name)
        job["last_success"] = now
        job["consecutive_failures"] = 0
        job["success_count"] = job.get("success_count", 0) + 1
        job.pop("current_run", None)

    async def record_job_failure(self, job_name: str, error: str) -> int | None:
        """Record a failed run and return the number of consecutive failures."""
        now = datetime.now(UTC).isoformat()

        if redis_client.is_available:
            await redis_client.set(_key(job_name, "last_failure"), now, ttl_seconds=_STATUS_TTL_SECONDS)
            await redis_client.set(_key(job_name, "last_error"), error[:500], ttl_seconds=_STATUS_TTL_SECONDS)
            consecutive_failures = await redis_client.increment(_key(job_name, "consecutive_failures"))
            await redis_client.expire(_key(job_name, "consecutive_failures"), _STATUS_TTL_SECONDS)
            await redis_client.increment(_key(job_name, "failure_count"))
            await redis_client.expire(_key(job_name, "failure_count"), _STATUS_TTL_SECONDS)
            await redis_client.delete(_key(job_name, "current_run"))
            return consecutive_failures

        job = self._job(job_name)
        job["last_failure"] = now
        job["last_error"] = error[:500]
        job["consecutive_failures"] = job.get("consecutive_failures", 0) + 1
        job["failure_count"] = job.get("failure_count", 0) + 1
        job.pop("current_run", None)
        return job["consecutive_failures"]

    async def get_job_status(self, job_name: str) -> dict[str, Any]:
        """Get job execution status for the health endpoint."""
        if redis_client.is_available:
            fields = {
                field: await redis_client.get(_key(job_name, field))
                for field in (
                    "last_success",
                    "last_failure",
                    "last_error",
                    "consecutive_failures",
                    "success_count",
                    "failure_count",
                    "current_run",
                )
            }
        else:
            fields = self._job(job_name)

        return {
            "job_name": job_name,
            "last_success": fields.get("last_success"),
            "last_failure": fields.get("last_failure"),
            "last_error": fields.get("last_error"),
            "consecutive_failures": int(fields.get("consecutive_failures") or 0),
            "success_count": int(fields.get("success_count") or 0),
            "failure_count": int(fields.get("failure_count") or 0),
            "currently_running": fields.get("current_run") is not None,
            "current_run_started": fields.get("current_run"),
        }

    async def add_to_dead_letter_queue(self, job_name: str, error: str, context: str) -> None:
        """Add a persistently failing job to the dead letter queue."""
        timestamp = datetime.now(UTC).isoformat()
        self._dead_letter_queue.append((job_name, error, context))

        logger.error(
            "Job added to dead letter queue",
            extra={"job_name": job_name, "error": error, "context": context, "timestamp": timestamp},
        )

        if redis_client.is_available:
            await redis_client.set(
                f"lvtodo:scheduler:dlq:{job_name}:{timestamp}", f"{error} | {context}", ttl_seconds=_DLQ_TTL_SECONDS
            )

    def get_dead_letter_queue(self) -> list[dict[str, str]]:
        return [
            {"job_name": job_name, "error": error, "context": context}
            for job_name, error, context in self._dead_letter_queue
        ]


# Global job tracker instance
job_tracker = JobTracker()


async def retry_job_with_backoff(
    job_func: Callable[[], Awaitable[Any]],
    job_name: str,
    max_retries: int = 3,
    base_delay: float = 2.0,
) -> None:
    """Execute a job with skip-if-running semantics, retries, and exponential backoff.

    Args:
        job_func: Async function to execute
        job_name: Name of the job for tracking and locking
        max_retries: Maximum number of attempts
        base_delay: Base delay in seconds for exponential backoff
    """
    if not await job_tracker.acquire_lock(job_name):
        logger.info("%s is still running, skipping this invocation", job_name)
        return

    try:
        await job_tracker.record_job_start(job_name)

        last_error = None
        for attempt in range(max_retries):
            try:
                logger.info("Executing %s (attempt %d/%d)", job_name, attempt + 1, max_retries)
                await job_func()
            except Exception as e:
                last_error = str(e)
                logger.exception("%s failed on attempt %d/%d", job_name, attempt + 1, max_retries)
                if attempt < max_retries - 1:
                    delay = base_delay**attempt
                    logger.info("Retrying %s in %ss", job_name, delay)
                    await asyncio.sleep(delay)
                continue

            await job_tracker.record_job_success(job_name)
            logger.info("%s completed successfully", job_name)
            return

        error_msg = f"Failed after {max_retries} attempts: {last_error}"
        consecutive_failures = await job_tracker.record_job_failure(job_name, error_msg)
        logger.error(
            "%s failed after all retry attempts",
            job_name,
            extra={"error": error_msg, "consecutive_failures": consecutive_failures},
        )

        if consecutive_failures and consecutive_failures >= CONSECUTIVE_FAILURE_THRESHOLD:
            await job_tracker.add_to_dead_letter_queue(
                job_name=job_name,
                error=last_error or "Unknown error",
                context=f"Failed {consecutive_failures} consecutive times",
            )
    finally:
        await job_tracker.release_lock(job_name)
