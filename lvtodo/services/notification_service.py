"""Notification service: fire-and-forget push notifications for task and wish events.

Every function here swallows its own failures after logging them. A lost
notification must never fail the operation that triggered it.
"""

import logging

from lvtodo.core import db_client, message_templates
from lvtodo.core.logging import span
from lvtodo.core.message_templates import Message
from lvtodo.domain.task import Task
from lvtodo.domain.wish import Wish
from lvtodo.interface import push_sender
from lvtodo.models.service_models import AchievementUnlock, NotificationResult


logger = logging.getLogger(__name__)


async def send(*, target: str, title: str, body: str) -> NotificationResult:
    """Send one notification. ``target`` is a user id or an explicit ``user_``/``group_`` topic."""
    topic = target if target.startswith(("user_", "group_")) else push_sender.user_topic(target)
    try:
        result = await push_sender.send_push(topic=topic, title=title, body=body)
    except Exception as e:
        logger.exception("Notification to %s raised", topic)
        return NotificationResult(target=topic, success=False, error=str(e))

    if result.success:
        logger.info("Notification sent to %s: %s", topic, title)
    else:
        logger.warning("Notification to %s failed: %s", topic, result.error)
    return NotificationResult(target=topic, success=result.success, error=result.error)


async def _send_message(target: str, message: Message) -> NotificationResult:
    return await send(target=target, title=message.subject, body=message.body)


async def _display_name(user_id: str) -> str:
    try:
        user = await db_client.get_record(collection="users", record_id=user_id)
    except KeyError:
        logger.warning("User %s not found while rendering notification", user_id)
        return "Someone"
    return user.get("display_name") or "Someone"


async def notify_task_assigned(*, task: Task) -> NotificationResult | None:
    with span("notification_service.notify_task_assigned"):
        try:
            message = message_templates.task_assigned(
                assigner_name=await _display_name(task.assigned_by),
                task_title=task.title,
                deadline=task.deadline,
                points=task.points,
                xp=task.xp,
            )
            return await _send_message(task.assigned_to, message)
        except Exception:
            logger.exception("Failed to notify assignment of task %s", task.id)
            return None


async def notify_task_completed(*, task: Task, is_late: bool) -> NotificationResult | None:
    with span("notification_service.notify_task_completed"):
        try:
            message = message_templates.task_completed(
                assignee_name=await _display_name(task.assigned_to),
                task_title=task.title,
                is_late=is_late,
            )
            return await _send_message(task.assigned_by, message)
        except Exception:
            logger.exception("Failed to notify completion of task %s", task.id)
            return None


async def notify_task_confirmed(*, task: Task, points: int, xp: int, is_late: bool) -> NotificationResult | None:
    with span("notification_service.notify_task_confirmed"):
        try:
            message = message_templates.task_confirmed(task_title=task.title, points=points, xp=xp, is_late=is_late)
            return await _send_message(task.assigned_to, message)
        except Exception:
            logger.exception("Failed to notify confirmation of task %s", task.id)
            return None


async def notify_task_disputed(*, task: Task) -> NotificationResult | None:
    with span("notification_service.notify_task_disputed"):
        try:
            message = message_templates.task_disputed(
                assigner_name=await _display_name(task.assigned_by), task_title=task.title
            )
            return await _send_message(task.assigned_to, message)
        except Exception:
            logger.exception("Failed to notify dispute of task %s", task.id)
            return None


async def notify_deadline_reminder(*, task: Task, threshold: float) -> NotificationResult:
    """Send a threshold reminder to the assignee.

    Unlike the other notifiers this one lets delivery errors surface in the
    result so the reminder sweep can count them.
    """
    message = message_templates.deadline_reminder(task_title=task.title, percent_remaining=round(threshold * 100))
    return await _send_message(task.assigned_to, message)


async def notify_task_overdue(*, task: Task) -> NotificationResult | None:
    with span("notification_service.notify_task_overdue"):
        try:
            return await _send_message(task.assigned_to, message_templates.task_overdue(task_title=task.title))
        except Exception:
            logger.exception("Failed to notify overdue task %s", task.id)
            return None


async def notify_wish_proposed(*, wish: Wish, member_ids: list[str]) -> list[NotificationResult]:
    """Ask every group member except the creator to approve and price the wish."""
    with span("notification_service.notify_wish_proposed"):
        results: list[NotificationResult] = []
        try:
            message = message_templates.wish_proposed(
                creator_name=await _display_name(wish.created_by), wish_title=wish.title
            )
            for member_id in member_ids:
                if member_id == wish.created_by:
                    continue
                results.append(await _send_message(member_id, message))
        except Exception:
            logger.exception("Failed to notify proposal of wish %s", wish.id)

        logger.info(
            "Sent %d wish proposal notifications (%d successful)",
            len(results),
            sum(1 for r in results if r.success),
        )
        return results


async def notify_wish_activated(*, wish: Wish) -> NotificationResult | None:
    with span("notification_service.notify_wish_activated"):
        try:
            message = message_templates.wish_activated(wish_title=wish.title, cost=wish.cost)
            return await _send_message(wish.created_by, message)
        except Exception:
            logger.exception("Failed to notify activation of wish %s", wish.id)
            return None


async def notify_achievement_unlocked(*, user_id: str, unlock: AchievementUnlock) -> NotificationResult | None:
    try:
        message = message_templates.achievement_unlocked(title=unlock.title, points=unlock.points, xp=unlock.xp)
        return await _send_message(user_id, message)
    except Exception:
        logger.exception("Failed to notify achievement %s for user %s", unlock.achievement_id, user_id)
        return None
