"""Achievement unlocking.

An achievement is granted at most once per user: the id is added to the
user's ``achievement_ids`` set and the bonus credited in the same
transaction, and a lost race on the set add skips the credit.
"""

import logging
from datetime import datetime

from lvtodo.core import db_client
from lvtodo.core.logging import span
from lvtodo.domain.achievement import ACHIEVEMENTS, Achievement, ConditionType
from lvtodo.models.service_models import AchievementUnlock, UserStatistics
from lvtodo.services import analytics_service, notification_service, reward_calculator, user_service


logger = logging.getLogger(__name__)


def _progress_value(achievement: Achievement, stats: UserStatistics) -> int:
    match achievement.condition_type:
        case ConditionType.TASKS_COMPLETED:
            return stats.tasks_completed
        case ConditionType.LEVEL_REACHED:
            return reward_calculator.level(stats.xp)
        case ConditionType.POINTS_EARNED:
            return stats.points_earned
        case ConditionType.STREAK_DAYS:
            return stats.longest_streak
        case ConditionType.WISHES_PURCHASED:
            return stats.wishes_completed
    return 0


def satisfied_achievements(stats: UserStatistics, held: set[str]) -> list[Achievement]:
    """Catalogue entries whose condition holds and that the user does not have yet."""
    return [a for a in ACHIEVEMENTS if a.id not in held and _progress_value(a, stats) >= a.threshold]


async def _unlock(*, user_id: str, achievement: Achievement) -> AchievementUnlock | None:
    async with db_client.transaction():
        added = await db_client.add_to_set(
            collection="users", record_id=user_id, field="achievement_ids", value=achievement.id
        )
        if not added:
            return None
        await user_service.increment_balance(
            user_id=user_id, points=achievement.reward.points, xp=achievement.reward.xp
        )

    logger.info("User %s unlocked achievement %s", user_id, achievement.id)
    return AchievementUnlock(
        achievement_id=achievement.id,
        title=achievement.title,
        points=achievement.reward.points,
        xp=achievement.reward.xp,
    )


async def evaluate_achievements(*, user_id: str, now: datetime | None = None) -> list[AchievementUnlock]:
    """Unlock every satisfied achievement the user does not hold yet.

    Bonus XP can itself satisfy a level achievement, so evaluation repeats
    until a pass unlocks nothing.
    """
    with span("achievement_service.evaluate_achievements"):
        unlocked: list[AchievementUnlock] = []
        for _ in range(len(ACHIEVEMENTS)):
            stats = await analytics_service.get_user_statistics(user_id=user_id, now=now)
            user = await user_service.get_user(user_id=user_id)
            pending = satisfied_achievements(stats, set(user.achievement_ids))
            if not pending:
                break
            for achievement in pending:
                unlock = await _unlock(user_id=user_id, achievement=achievement)
                if unlock is not None:
                    unlocked.append(unlock)
                    await notification_service.notify_achievement_unlocked(user_id=user_id, unlock=unlock)
        return unlocked


async def evaluate_achievements_safely(*, user_id: str, now: datetime | None = None) -> list[AchievementUnlock]:
    """Run evaluate_achievements after a settlement; failures are logged, never raised."""
    try:
        return await evaluate_achievements(user_id=user_id, now=now)
    except Exception:
        logger.exception("Achievement evaluation failed for user %s", user_id)
        return []
