"""Centralized message templates for push and email notifications.

Every template returns a ``(subject, body)`` pair; push notifications use the
subject as title, email uses both as-is.
"""

from typing import NamedTuple


class Message(NamedTuple):
    subject: str
    body: str


def task_assigned(*, assigner_name: str, task_title: str, deadline: str, points: int, xp: int) -> Message:
    return Message(
        "New task",
        f"{assigner_name} assigned you *{task_title}* (due {deadline[:16].replace('T', ' ')} UTC). "
        f"Reward: {points} points, {xp} XP.",
    )


def task_completed(*, assignee_name: str, task_title: str, is_late: bool) -> Message:
    suffix = " after the deadline" if is_late else ""
    return Message(
        "Task awaiting confirmation",
        f"{assignee_name} finished *{task_title}*{suffix}. Confirm it or send it back.",
    )


def task_confirmed(*, task_title: str, points: int, xp: int, is_late: bool) -> Message:
    body = f"*{task_title}* was confirmed. You earned {points} points and {xp} XP."
    if is_late:
        body += " Late completion halved the points."
    return Message("Task confirmed", body)


def task_disputed(*, assigner_name: str, task_title: str) -> Message:
    return Message(
        "Task sent back",
        f"{assigner_name} did not accept *{task_title}*. It is back in your pending list.",
    )


def deadline_reminder(*, task_title: str, percent_remaining: int) -> Message:
    if percent_remaining <= 5:  # noqa: PLR2004
        return Message("Deadline almost here", f"Only {percent_remaining}% of the time is left for *{task_title}*!")
    return Message("Deadline reminder", f"{percent_remaining}% of the time is left for *{task_title}*.")


def task_overdue(*, task_title: str) -> Message:
    return Message(
        "Task overdue",
        f"The deadline for *{task_title}* has passed. You can still finish it for half the points.",
    )


def wish_proposed(*, creator_name: str, wish_title: str) -> Message:
    return Message(
        "New wish",
        f"{creator_name} wishes for *{wish_title}*. Approve it and suggest a price in points.",
    )


def wish_activated(*, wish_title: str, cost: int) -> Message:
    return Message(
        "Wish approved",
        f"Your wish *{wish_title}* was approved. It costs {cost} points.",
    )


def achievement_unlocked(*, title: str, points: int, xp: int) -> Message:
    rewards = [f"{points} points" if points else "", f"{xp} XP" if xp else ""]
    reward_text = " and ".join(r for r in rewards if r)
    return Message("Achievement unlocked", f"You unlocked *{title}*! Bonus: {reward_text}.")
