"""Pydantic models for service layer return types.

These models provide type safety at service boundaries, converting database
dictionaries into typed objects with validation.
"""

from pydantic import BaseModel


class NotificationResult(BaseModel):
    """Result of sending a notification."""

    target: str
    success: bool
    error: str | None = None


class SweepResult(BaseModel):
    """Summary of one Deadline Scheduler sweep."""

    sweep: str
    scanned: int = 0
    acted: int = 0
    failed: int = 0
    started_at: str
    finished_at: str | None = None


class LevelProgress(BaseModel):
    level: int
    xp: int
    xp_for_next_level: int
    progress_percent: float


class LeaderboardEntry(BaseModel):
    """Member entry in a group's points leaderboard."""

    user_id: str
    display_name: str
    points_earned: int
    tasks_completed: int
    rank: int


class UserStatistics(BaseModel):
    """Statistics derived from a user's task history."""

    user_id: str
    display_name: str
    level: int
    xp: int
    points: int
    tasks_completed: int
    tasks_late: int
    on_time_percentage: float
    points_earned: int
    xp_earned: int
    current_streak: int
    longest_streak: int
    wishes_completed: int


class AchievementUnlock(BaseModel):
    achievement_id: str
    title: str
    points: int
    xp: int
