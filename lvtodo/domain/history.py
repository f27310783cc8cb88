"""Task history domain models.

History records are append-only: nothing updates or deletes them, group
deletion included. Streaks and completion rates are derived from them.
"""

from enum import StrEnum

from pydantic import BaseModel, Field


class HistoryAction(StrEnum):
    """Lifecycle event recorded for a task."""

    CREATED = "created"
    STARTED = "started"
    COMPLETED = "completed"
    LATE = "late"
    CONFIRMED = "confirmed"
    DISPUTED = "disputed"
    OVERDUE = "overdue"


class HistoryMetadata(BaseModel):
    points: int | None = None
    xp: int | None = None
    is_late: bool | None = None


class TaskHistory(BaseModel):
    """Immutable task history record."""

    id: str = Field(..., description="Unique record ID")
    task_id: str
    user_id: str = Field(..., description="User the event is about (the assignee for rewards)")
    group_id: str
    action: HistoryAction
    timestamp: str = Field(..., description="Event time (UTC ISO)")
    metadata: HistoryMetadata = Field(default_factory=HistoryMetadata)
