"""Deadline sweeps: reminder thresholds and overdue transitions.

Both sweeps scan the active tasks (``pending`` or ``in_progress``), act on each
task independently, and report a SweepResult. A failure on one task is logged
and counted; the sweep moves on to the next task.
"""

import logging
from datetime import datetime, timedelta

from lvtodo.core import db_client
from lvtodo.core.clock import parse_iso, to_iso, utc_now
from lvtodo.core.config import Constants, settings
from lvtodo.core.logging import span
from lvtodo.domain.task import ACTIVE_STATUSES, Task, flag_for_threshold
from lvtodo.models.service_models import SweepResult
from lvtodo.services import notification_service, reward_calculator, task_service


logger = logging.getLogger(__name__)

_ACTIVE_FILTER = "(" + " || ".join(f'status = "{status}"' for status in sorted(ACTIVE_STATUSES)) + ")"


def due_thresholds(task: Task, now: datetime, interval: timedelta) -> list[float]:
    """Reminder thresholds the task has crossed within the last sweep window and not yet sent.

    The window is the sweep interval as a fraction of the task's total
    duration, never smaller than MIN_REMINDER_WINDOW.
    """
    created_at = parse_iso(task.created_at)
    deadline = parse_iso(task.deadline)
    total_seconds = (deadline - created_at).total_seconds()
    if total_seconds <= 0:
        return []

    remaining = reward_calculator.time_remaining_fraction(created_at, deadline, now)
    window = max(interval.total_seconds() / total_seconds, Constants.MIN_REMINDER_WINDOW)
    flags = task.notifications_sent.model_dump()
    return [
        threshold
        for threshold in Constants.REMINDER_THRESHOLDS
        if not flags[flag_for_threshold(threshold)] and threshold - window < remaining <= threshold
    ]


async def _active_tasks(extra_filter: str = "") -> list[Task]:
    filter_query = " && ".join(part for part in (_ACTIVE_FILTER, extra_filter) if part)
    records = await db_client.list_all_records(
        collection="tasks",
        filter_query=filter_query,
        sort="deadline ASC",
        page_size=Constants.SWEEP_PAGE_SIZE,
    )
    return [Task.model_validate(r) for r in records]


async def _claim_reminders(*, task_id: str, now: datetime, interval: timedelta) -> tuple[Task | None, list[float]]:
    """Re-read the task and set the flags of every due threshold in one transaction.

    Only thresholds claimed here are sent, so each fires at most once even when
    sweeps run concurrently.
    """
    async with db_client.transaction():
        task = await task_service.get_task(task_id=task_id)
        if task.status not in ACTIVE_STATUSES:
            return None, []
        thresholds = due_thresholds(task, now, interval)
        if not thresholds:
            return task, []

        flags = task.notifications_sent.model_copy(
            update={flag_for_threshold(threshold): True for threshold in thresholds}
        )
        record = await db_client.update_record(
            collection="tasks", record_id=task.id, data={"notifications_sent": flags.model_dump()}
        )
        return Task.model_validate(record), thresholds


async def run_reminder_sweep(*, now: datetime | None = None, interval: timedelta | None = None) -> SweepResult:
    """Send each reminder threshold crossed since the previous sweep, once per task."""
    with span("deadline_service.run_reminder_sweep"):
        now = now or utc_now()
        interval = interval or timedelta(minutes=settings.reminder_sweep_interval_minutes)
        result = SweepResult(sweep="reminders", started_at=to_iso(now))

        for task in await _active_tasks():
            result.scanned += 1
            if not due_thresholds(task, now, interval):
                continue
            try:
                claimed, thresholds = await _claim_reminders(task_id=task.id, now=now, interval=interval)
                for threshold in thresholds:
                    sent = await notification_service.notify_deadline_reminder(task=claimed, threshold=threshold)
                    if not sent.success:
                        logger.warning("Reminder for task %s was not delivered: %s", task.id, sent.error)
                    result.acted += 1
            except Exception:
                result.failed += 1
                logger.exception("Reminder sweep failed for task %s", task.id)

        result.finished_at = to_iso(utc_now())
        logger.info(
            "Reminder sweep finished: %d scanned, %d reminders, %d failed",
            result.scanned,
            result.acted,
            result.failed,
        )
        return result


async def run_overdue_sweep(*, now: datetime | None = None) -> SweepResult:
    """Move every active task whose deadline has passed to ``overdue``."""
    with span("deadline_service.run_overdue_sweep"):
        now = now or utc_now()
        result = SweepResult(sweep="overdue", started_at=to_iso(now))

        for task in await _active_tasks(f'deadline < "{to_iso(now)}"'):
            result.scanned += 1
            try:
                if await task_service.mark_task_overdue(task=task, now=now) is not None:
                    result.acted += 1
            except Exception:
                result.failed += 1
                logger.exception("Overdue sweep failed for task %s", task.id)

        result.finished_at = to_iso(utc_now())
        logger.info(
            "Overdue sweep finished: %d scanned, %d marked overdue, %d failed",
            result.scanned,
            result.acted,
            result.failed,
        )
        return result
