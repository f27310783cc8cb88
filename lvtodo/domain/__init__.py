"""Domain models and DTOs."""

from lvtodo.domain.achievement import ACHIEVEMENTS, Achievement, ConditionType
from lvtodo.domain.create_models import GroupCreate, TaskCreate, TaskUpdate, UserCreate, WishCreate
from lvtodo.domain.group import Group, GroupSettings
from lvtodo.domain.history import HistoryAction, TaskHistory
from lvtodo.domain.task import Difficulty, NotificationFlags, Task, TaskStatus
from lvtodo.domain.user import User
from lvtodo.domain.wish import CostVote, Wish, WishStatus


__all__ = [
    "ACHIEVEMENTS",
    "Achievement",
    "ConditionType",
    "CostVote",
    "Difficulty",
    "Group",
    "GroupCreate",
    "GroupSettings",
    "HistoryAction",
    "NotificationFlags",
    "Task",
    "TaskCreate",
    "TaskHistory",
    "TaskStatus",
    "TaskUpdate",
    "User",
    "UserCreate",
    "Wish",
    "WishCreate",
    "WishStatus",
]
