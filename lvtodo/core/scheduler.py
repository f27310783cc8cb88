"""Scheduler for the periodic deadline sweeps."""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from lvtodo.core.config import settings
from lvtodo.core.scheduler_tracker import retry_job_with_backoff
from lvtodo.services import deadline_service


logger = logging.getLogger(__name__)

REMINDER_SWEEP_JOB = "reminder_sweep"
OVERDUE_SWEEP_JOB = "overdue_sweep"
JOB_NAMES = [REMINDER_SWEEP_JOB, OVERDUE_SWEEP_JOB]

# Global scheduler instance
scheduler = AsyncIOScheduler()


async def reminder_sweep_job() -> None:
    await deadline_service.run_reminder_sweep()


async def overdue_sweep_job() -> None:
    await deadline_service.run_overdue_sweep()


def start_scheduler() -> None:
    """Register the sweep jobs and start the scheduler.

    This should be called during FastAPI app startup.
    """
    logger.info("Starting scheduler")

    scheduler.add_job(
        retry_job_with_backoff,
        trigger=IntervalTrigger(minutes=settings.reminder_sweep_interval_minutes),
        args=[reminder_sweep_job, REMINDER_SWEEP_JOB],
        id=REMINDER_SWEEP_JOB,
        name="Send Deadline Reminders",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )
    logger.info("Scheduled reminder sweep: every %d minutes", settings.reminder_sweep_interval_minutes)

    scheduler.add_job(
        retry_job_with_backoff,
        trigger=IntervalTrigger(minutes=settings.overdue_sweep_interval_minutes),
        args=[overdue_sweep_job, OVERDUE_SWEEP_JOB],
        id=OVERDUE_SWEEP_JOB,
        name="Mark Overdue Tasks",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )
    logger.info("Scheduled overdue sweep: every %d minutes", settings.overdue_sweep_interval_minutes)

    scheduler.start()
    logger.info("Scheduler started successfully")


def stop_scheduler() -> None:
    """Stop the scheduler.

    This should be called during FastAPI app shutdown.
    """
    if not scheduler.running:
        return
    logger.info("Stopping scheduler")
    scheduler.shutdown(wait=True)
    logger.info("Scheduler stopped")
