"""Pure transition rules for the task lifecycle.

The service layer persists what these functions decide; nothing here touches
the store. Status is checked before the actor so that an operation which is
impossible from the current status reports InvalidTransitionError no matter
who asked.
"""

from datetime import datetime
from enum import StrEnum

from lvtodo.core.clock import parse_iso
from lvtodo.core.errors import ForbiddenError, InvalidTransitionError
from lvtodo.domain.task import ACTIVE_STATUSES, AWAITING_CONFIRMATION, Task, TaskStatus


class TaskAction(StrEnum):
    START = "start"
    COMPLETE = "complete"
    CONFIRM = "confirm"
    DISPUTE = "dispute"
    MARK_OVERDUE = "mark_overdue"
    EDIT = "edit"


# Statuses each action may be applied from
ALLOWED_FROM: dict[TaskAction, frozenset[TaskStatus]] = {
    TaskAction.START: frozenset({TaskStatus.PENDING}),
    TaskAction.COMPLETE: frozenset({TaskStatus.IN_PROGRESS, TaskStatus.OVERDUE}),
    TaskAction.CONFIRM: AWAITING_CONFIRMATION,
    TaskAction.DISPUTE: AWAITING_CONFIRMATION,
    TaskAction.MARK_OVERDUE: ACTIVE_STATUSES,
    TaskAction.EDIT: frozenset({TaskStatus.PENDING}),
}

# Which side of the assignment may perform the action (None: system only)
_ACTOR_FIELD: dict[TaskAction, str | None] = {
    TaskAction.START: "assigned_to",
    TaskAction.COMPLETE: "assigned_to",
    TaskAction.CONFIRM: "assigned_by",
    TaskAction.DISPUTE: "assigned_by",
    TaskAction.MARK_OVERDUE: None,
    TaskAction.EDIT: "assigned_by",
}


def check_transition(task: Task, action: TaskAction, actor_id: str | None = None) -> None:
    """Raise if ``action`` is not valid for ``task`` and ``actor_id``.

    Raises:
        InvalidTransitionError: If the action is impossible from the task's status
        ForbiddenError: If the actor is not the party allowed to act
    """
    if task.status not in ALLOWED_FROM[action]:
        msg = f"Cannot {action}: task {task.id} is {task.status}"
        raise InvalidTransitionError(msg)

    actor_field = _ACTOR_FIELD[action]
    if actor_field is not None and getattr(task, actor_field) != actor_id:
        role = "assignee" if actor_field == "assigned_to" else "assigner"
        msg = f"Only the {role} can {action} task {task.id}"
        raise ForbiddenError(msg)


def is_late(task: Task, now: datetime) -> bool:
    return now > parse_iso(task.deadline)


def next_status(task: Task, action: TaskAction, now: datetime) -> TaskStatus:
    """Return the status ``task`` moves to when ``action`` is applied at ``now``."""
    match action:
        case TaskAction.START:
            return TaskStatus.IN_PROGRESS
        case TaskAction.COMPLETE:
            return TaskStatus.LATE if is_late(task, now) else TaskStatus.COMPLETED
        case TaskAction.CONFIRM:
            return TaskStatus.CONFIRMED
        case TaskAction.DISPUTE:
            return TaskStatus.PENDING
        case TaskAction.MARK_OVERDUE:
            return TaskStatus.OVERDUE
        case TaskAction.EDIT:
            return task.status
    msg = f"Unknown task action: {action}"
    raise ValueError(msg)
