"""Achievement catalogue."""

from enum import StrEnum

from pydantic import BaseModel, Field


class ConditionType(StrEnum):
    TASKS_COMPLETED = "tasks_completed"
    LEVEL_REACHED = "level_reached"
    POINTS_EARNED = "points_earned"
    STREAK_DAYS = "streak_days"
    WISHES_PURCHASED = "wishes_purchased"


class AchievementReward(BaseModel):
    points: int = 0
    xp: int = 0


class Achievement(BaseModel):
    id: str
    title: str
    description: str
    condition_type: ConditionType
    threshold: int = Field(..., gt=0)
    reward: AchievementReward


ACHIEVEMENTS: tuple[Achievement, ...] = (
    Achievement(
        id="first_task",
        title="First Step",
        description="Complete your first task",
        condition_type=ConditionType.TASKS_COMPLETED,
        threshold=1,
        reward=AchievementReward(xp=50, points=10),
    ),
    Achievement(
        id="task_master_10",
        title="Task Master",
        description="Complete 10 tasks",
        condition_type=ConditionType.TASKS_COMPLETED,
        threshold=10,
        reward=AchievementReward(xp=100, points=25),
    ),
    Achievement(
        id="task_master_50",
        title="Task Expert",
        description="Complete 50 tasks",
        condition_type=ConditionType.TASKS_COMPLETED,
        threshold=50,
        reward=AchievementReward(xp=300, points=75),
    ),
    Achievement(
        id="level_5",
        title="Rookie",
        description="Reach level 5",
        condition_type=ConditionType.LEVEL_REACHED,
        threshold=5,
        reward=AchievementReward(points=50),
    ),
    Achievement(
        id="level_10",
        title="Professional",
        description="Reach level 10",
        condition_type=ConditionType.LEVEL_REACHED,
        threshold=10,
        reward=AchievementReward(points=100),
    ),
    Achievement(
        id="points_1000",
        title="Tycoon",
        description="Earn 1000 points from tasks",
        condition_type=ConditionType.POINTS_EARNED,
        threshold=1000,
        reward=AchievementReward(xp=200),
    ),
    Achievement(
        id="streak_7",
        title="Weekly Streak",
        description="Complete tasks 7 days in a row",
        condition_type=ConditionType.STREAK_DAYS,
        threshold=7,
        reward=AchievementReward(xp=150, points=50),
    ),
    Achievement(
        id="streak_30",
        title="Monthly Streak",
        description="Complete tasks 30 days in a row",
        condition_type=ConditionType.STREAK_DAYS,
        threshold=30,
        reward=AchievementReward(xp=500, points=200),
    ),
    Achievement(
        id="wish_fulfilled",
        title="Wish Maker",
        description="Redeem your first wish",
        condition_type=ConditionType.WISHES_PURCHASED,
        threshold=1,
        reward=AchievementReward(xp=100),
    ),
)

ACHIEVEMENTS_BY_ID: dict[str, Achievement] = {a.id: a for a in ACHIEVEMENTS}
