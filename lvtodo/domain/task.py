"""Task domain models and enums."""

from enum import StrEnum

from pydantic import BaseModel, Field


class TaskStatus(StrEnum):
    """Task lifecycle state."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    LATE = "late"
    CONFIRMED = "confirmed"
    OVERDUE = "overdue"


ACTIVE_STATUSES: frozenset[TaskStatus] = frozenset({TaskStatus.PENDING, TaskStatus.IN_PROGRESS})
AWAITING_CONFIRMATION: frozenset[TaskStatus] = frozenset({TaskStatus.COMPLETED, TaskStatus.LATE})


class Difficulty(StrEnum):
    EASY = "easy"
    HARD = "hard"


class NotificationFlags(BaseModel):
    """Which reminder thresholds have already fired for a task."""

    percent80: bool = False
    percent50: bool = False
    percent30: bool = False
    percent5: bool = False


def flag_for_threshold(threshold: float) -> str:
    """Map a remaining-time threshold (e.g. 0.05) to its flag name (``percent5``)."""
    return f"percent{round(threshold * 100)}"


class Task(BaseModel):
    """Task data transfer object."""

    id: str = Field(..., description="Unique task ID")
    title: str = Field(..., description="Task title")
    description: str = Field(default="", description="Detailed task description")
    difficulty: Difficulty = Field(..., description="Reward tier")
    points: int = Field(..., description="Point reward snapshot taken at creation")
    xp: int = Field(..., description="XP reward snapshot taken at creation")
    assigned_to: str = Field(..., description="Assignee user ID")
    assigned_by: str = Field(..., description="Assigner user ID, who confirms or disputes")
    group_id: str = Field(..., description="Owning group ID")
    deadline: str = Field(..., description="Deadline (UTC ISO)")
    status: TaskStatus = Field(default=TaskStatus.PENDING, description="Current lifecycle state")
    notifications_sent: NotificationFlags = Field(default_factory=NotificationFlags)
    version: int = Field(default=0, description="Incremented by every status transition")
    created_at: str = Field(..., description="Creation timestamp (UTC ISO)")
    started_at: str | None = None
    completed_at: str | None = None
    confirmed_at: str | None = None
    confirmed_by: str | None = None
