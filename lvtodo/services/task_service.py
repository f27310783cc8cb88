"""Task lifecycle service: creation, transitions, and reward settlement.

Every status change is a compare-and-swap on the ``status`` and ``version``
the caller observed, executed inside a store transaction together with the
history record (and, for confirmation, the balance credit). A concurrent or
repeated request therefore fails with InvalidTransitionError instead of
settling twice.
"""

import logging
from datetime import datetime
from typing import Any

from pydantic import ValidationError

from lvtodo.core import db_client
from lvtodo.core.clock import parse_iso, to_iso, utc_now
from lvtodo.core.errors import ForbiddenError, InputValidationError, InvalidTransitionError, NotFoundError
from lvtodo.core.logging import span
from lvtodo.domain.create_models import TaskCreate, TaskUpdate
from lvtodo.domain.group import Group
from lvtodo.domain.history import HistoryAction, HistoryMetadata
from lvtodo.domain.task import Difficulty, NotificationFlags, Task, TaskStatus
from lvtodo.services import (
    achievement_service,
    analytics_service,
    history_service,
    notification_service,
    reward_calculator,
    user_service,
)
from lvtodo.services.task_state_machine import TaskAction, check_transition, next_status


logger = logging.getLogger(__name__)


async def get_task(*, task_id: str) -> Task:
    """Fetch a task.

    Raises:
        NotFoundError: If the task does not exist
    """
    try:
        record = await db_client.get_record(collection="tasks", record_id=task_id)
    except KeyError as e:
        msg = f"Task not found: {task_id}"
        raise NotFoundError(msg) from e
    return Task.model_validate(record)


async def _get_group(group_id: str) -> Group:
    try:
        record = await db_client.get_record(collection="groups", record_id=group_id)
    except KeyError as e:
        msg = f"Group not found: {group_id}"
        raise NotFoundError(msg) from e
    return Group.model_validate(record)


async def _apply_transition(
    *,
    task: Task,
    action: TaskAction,
    actor_id: str | None,
    now: datetime,
    extra: dict[str, Any] | None = None,
) -> Task:
    """Validate and persist one status transition. Must run inside a transaction."""
    check_transition(task, action, actor_id)
    new_status = next_status(task, action, now)

    updated = await db_client.update_record_if(
        collection="tasks",
        record_id=task.id,
        expected={"status": task.status, "version": task.version},
        data={"status": new_status, "version": task.version + 1, **(extra or {})},
    )
    if updated is None:
        msg = f"Cannot {action}: task {task.id} was changed concurrently"
        raise InvalidTransitionError(msg)

    logger.info("Task %s: %s -> %s", task.id, task.status, new_status)
    return Task.model_validate(updated)


async def create_task(
    *,
    title: str,
    difficulty: Difficulty | str,
    assigned_to: str,
    assigned_by: str,
    group_id: str,
    deadline: datetime,
    description: str = "",
    now: datetime | None = None,
) -> Task:
    """Create a pending task and snapshot its reward.

    Raises:
        InputValidationError: If the input is malformed or the deadline is not in the future
        NotFoundError: If the group does not exist
        ForbiddenError: If the assigner or assignee is not a member of the group
    """
    with span("task_service.create_task"):
        now = now or utc_now()
        try:
            payload = TaskCreate(
                title=title,
                description=description,
                difficulty=difficulty,
                assigned_to=assigned_to,
                group_id=group_id,
                deadline=deadline,
            )
        except ValidationError as e:
            raise InputValidationError(str(e)) from e

        deadline_utc = parse_iso(payload.deadline)
        if deadline_utc <= now:
            msg = f"Deadline must be in the future (got {to_iso(deadline_utc)})"
            raise InputValidationError(msg)

        group = await _get_group(group_id)
        if assigned_by not in group.member_ids:
            msg = f"User {assigned_by} is not a member of group {group_id}"
            raise ForbiddenError(msg)
        if assigned_to not in group.member_ids:
            msg = f"Assignee {assigned_to} is not a member of group {group_id}"
            raise ForbiddenError(msg)

        async with db_client.transaction():
            record = await db_client.create_record(
                collection="tasks",
                data={
                    "title": payload.title,
                    "description": payload.description,
                    "difficulty": payload.difficulty,
                    "points": reward_calculator.task_points(payload.difficulty),
                    "xp": reward_calculator.task_xp(payload.difficulty),
                    "assigned_to": assigned_to,
                    "assigned_by": assigned_by,
                    "group_id": group_id,
                    "deadline": to_iso(deadline_utc),
                    "status": TaskStatus.PENDING,
                    "notifications_sent": NotificationFlags().model_dump(),
                    "version": 0,
                    "created_at": to_iso(now),
                },
            )
            task = Task.model_validate(record)
            await history_service.append(task=task, user_id=assigned_to, action=HistoryAction.CREATED, timestamp=now)

        logger.info("Created task %s '%s' for %s in group %s", task.id, task.title, assigned_to, group_id)

    await notification_service.notify_task_assigned(task=task)
    return task


async def start_task(*, task_id: str, actor_id: str, now: datetime | None = None) -> Task:
    """Assignee starts working: ``pending -> in_progress``."""
    with span("task_service.start_task"):
        now = now or utc_now()
        async with db_client.transaction():
            task = await get_task(task_id=task_id)
            task = await _apply_transition(
                task=task, action=TaskAction.START, actor_id=actor_id, now=now, extra={"started_at": to_iso(now)}
            )
            await history_service.append(task=task, user_id=task.assigned_to, action=HistoryAction.STARTED, timestamp=now)
        return task


async def complete_task(*, task_id: str, actor_id: str, now: datetime | None = None) -> Task:
    """Assignee reports completion; the status becomes ``late`` when past the deadline.

    No reward is granted here. If the group opted out of confirmation, the
    task is confirmed on the assigner's behalf right away.
    """
    with span("task_service.complete_task"):
        now = now or utc_now()
        async with db_client.transaction():
            task = await get_task(task_id=task_id)
            task = await _apply_transition(
                task=task,
                action=TaskAction.COMPLETE,
                actor_id=actor_id,
                now=now,
                extra={"completed_at": to_iso(now)},
            )
            is_late = task.status == TaskStatus.LATE
            await history_service.append(
                task=task,
                user_id=task.assigned_to,
                action=HistoryAction.LATE if is_late else HistoryAction.COMPLETED,
                timestamp=now,
                metadata=HistoryMetadata(is_late=is_late),
            )

    try:
        group = await _get_group(task.group_id)
    except NotFoundError:
        group = None
    if group is not None and not group.settings.require_task_confirmation:
        logger.info("Group %s skips confirmation, auto-confirming task %s", group.id, task.id)
        return await confirm_task(task_id=task.id, actor_id=task.assigned_by, now=now)

    await notification_service.notify_task_completed(task=task, is_late=is_late)
    return task


async def confirm_task(*, task_id: str, actor_id: str, now: datetime | None = None) -> Task:
    """Assigner accepts the work and the assignee is paid exactly once.

    Late tasks pay half the point snapshot (rounded down) and the full XP.

    Raises:
        NotFoundError: If the task does not exist
        InvalidTransitionError: If the task is not awaiting confirmation (including a repeated confirm)
        ForbiddenError: If the actor is not the assigner
    """
    with span("task_service.confirm_task"):
        now = now or utc_now()
        async with db_client.transaction():
            task = await get_task(task_id=task_id)
            is_late = task.status == TaskStatus.LATE
            points = reward_calculator.apply_late_penalty(task.points) if is_late else task.points
            xp = task.xp

            task = await _apply_transition(
                task=task,
                action=TaskAction.CONFIRM,
                actor_id=actor_id,
                now=now,
                extra={"confirmed_at": to_iso(now), "confirmed_by": actor_id},
            )
            await user_service.increment_balance(user_id=task.assigned_to, points=points, xp=xp)
            await history_service.append(
                task=task,
                user_id=task.assigned_to,
                action=HistoryAction.CONFIRMED,
                timestamp=now,
                metadata=HistoryMetadata(points=points, xp=xp, is_late=is_late),
            )

        logger.info("Settled task %s: user %s earned %d points, %d xp", task.id, task.assigned_to, points, xp)

    await analytics_service.invalidate_leaderboard_cache(group_id=task.group_id)
    await achievement_service.evaluate_achievements_safely(user_id=task.assigned_to, now=now)
    await notification_service.notify_task_confirmed(task=task, points=points, xp=xp, is_late=is_late)
    return task


async def dispute_task(*, task_id: str, actor_id: str, now: datetime | None = None) -> Task:
    """Assigner rejects the work: the task goes back to ``pending`` with no reward."""
    with span("task_service.dispute_task"):
        now = now or utc_now()
        async with db_client.transaction():
            task = await get_task(task_id=task_id)
            task = await _apply_transition(
                task=task,
                action=TaskAction.DISPUTE,
                actor_id=actor_id,
                now=now,
                extra={"completed_at": None, "started_at": None},
            )
            await history_service.append(
                task=task, user_id=task.assigned_to, action=HistoryAction.DISPUTED, timestamp=now
            )

    await notification_service.notify_task_disputed(task=task)
    return task


async def mark_task_overdue(*, task: Task, now: datetime | None = None) -> Task | None:
    """Move an active task past its deadline to ``overdue``.

    Returns None when the task changed since it was read (nothing to do).
    """
    now = now or utc_now()
    async with db_client.transaction():
        try:
            updated = await _apply_transition(task=task, action=TaskAction.MARK_OVERDUE, actor_id=None, now=now)
        except InvalidTransitionError:
            logger.info("Task %s left the active states before it could be marked overdue", task.id)
            return None
        await history_service.append(
            task=updated, user_id=updated.assigned_to, action=HistoryAction.OVERDUE, timestamp=now
        )

    await notification_service.notify_task_overdue(task=updated)
    return updated


async def update_task_details(
    *,
    task_id: str,
    actor_id: str,
    title: str | None = None,
    description: str | None = None,
    difficulty: Difficulty | str | None = None,
    deadline: datetime | None = None,
    now: datetime | None = None,
) -> Task:
    """Assigner edits a pending task. The reward snapshot is never recomputed.

    Changing the deadline re-arms the reminder thresholds.
    """
    with span("task_service.update_task_details"):
        now = now or utc_now()
        try:
            changes = TaskUpdate(title=title, description=description, difficulty=difficulty, deadline=deadline)
        except ValidationError as e:
            raise InputValidationError(str(e)) from e

        data: dict[str, Any] = changes.model_dump(exclude_none=True)
        if not data:
            msg = "Nothing to update"
            raise InputValidationError(msg)
        if changes.deadline is not None:
            deadline_utc = parse_iso(changes.deadline)
            if deadline_utc <= now:
                msg = f"Deadline must be in the future (got {to_iso(deadline_utc)})"
                raise InputValidationError(msg)
            data["deadline"] = to_iso(deadline_utc)
            data["notifications_sent"] = NotificationFlags().model_dump()

        async with db_client.transaction():
            task = await get_task(task_id=task_id)
            check_transition(task, TaskAction.EDIT, actor_id)
            updated = await db_client.update_record_if(
                collection="tasks",
                record_id=task.id,
                expected={"status": task.status, "version": task.version},
                data=data,
            )
            if updated is None:
                msg = f"Cannot edit: task {task.id} was changed concurrently"
                raise InvalidTransitionError(msg)

        logger.info("Updated details of task %s: %s", task.id, sorted(data))
        return Task.model_validate(updated)


async def list_tasks(
    *,
    assigned_to: str | None = None,
    assigned_by: str | None = None,
    group_id: str | None = None,
    status: TaskStatus | None = None,
) -> list[Task]:
    """List tasks matching every given filter, ordered by deadline."""
    with span("task_service.list_tasks"):
        filters = []
        if assigned_to:
            filters.append(f'assigned_to = "{db_client.sanitize_param(assigned_to)}"')
        if assigned_by:
            filters.append(f'assigned_by = "{db_client.sanitize_param(assigned_by)}"')
        if group_id:
            filters.append(f'group_id = "{db_client.sanitize_param(group_id)}"')
        if status:
            filters.append(f'status = "{status}"')

        records = await db_client.list_all_records(
            collection="tasks", filter_query=" && ".join(filters), sort="deadline ASC"
        )
        return [Task.model_validate(r) for r in records]
