"""Append-only task history."""

import logging
from datetime import datetime

from lvtodo.core import db_client
from lvtodo.core.clock import to_iso
from lvtodo.domain.history import HistoryAction, HistoryMetadata, TaskHistory
from lvtodo.domain.task import Task


logger = logging.getLogger(__name__)


async def append(
    *,
    task: Task,
    user_id: str,
    action: HistoryAction,
    timestamp: datetime,
    metadata: HistoryMetadata | None = None,
) -> TaskHistory:
    """Write one immutable history record for ``task``."""
    record = await db_client.create_record(
        collection="task_history",
        data={
            "task_id": task.id,
            "user_id": user_id,
            "group_id": task.group_id,
            "action": action,
            "timestamp": to_iso(timestamp),
            "metadata": (metadata or HistoryMetadata()).model_dump(exclude_none=True),
        },
    )
    logger.debug("History %s recorded for task %s", action, task.id)
    return TaskHistory.model_validate(record)


async def list_for_user(*, user_id: str, action: HistoryAction | None = None) -> list[TaskHistory]:
    filter_query = f'user_id = "{db_client.sanitize_param(user_id)}"'
    if action is not None:
        filter_query += f' && action = "{action}"'
    records = await db_client.list_all_records(
        collection="task_history", filter_query=filter_query, sort="timestamp ASC"
    )
    return [TaskHistory.model_validate(r) for r in records]


async def list_for_group(*, group_id: str, action: HistoryAction, since: datetime) -> list[TaskHistory]:
    filter_query = (
        f'group_id = "{db_client.sanitize_param(group_id)}" && action = "{action}" && timestamp >= "{to_iso(since)}"'
    )
    records = await db_client.list_all_records(
        collection="task_history", filter_query=filter_query, sort="timestamp ASC"
    )
    return [TaskHistory.model_validate(r) for r in records]


async def list_for_task(*, task_id: str) -> list[TaskHistory]:
    records = await db_client.list_all_records(
        collection="task_history",
        filter_query=f'task_id = "{db_client.sanitize_param(task_id)}"',
        sort="timestamp ASC",
    )
    return [TaskHistory.model_validate(r) for r in records]
