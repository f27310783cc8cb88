"""Unit tests for achievement unlocking."""

from datetime import timedelta

import pytest

from lvtodo.domain.task import Difficulty
from lvtodo.models.service_models import UserStatistics
from lvtodo.services import achievement_service, task_service, user_service


def stats(**overrides) -> UserStatistics:
    values = {
        "user_id": "1",
        "display_name": "Bob",
        "level": 1,
        "xp": 0,
        "points": 0,
        "tasks_completed": 0,
        "tasks_late": 0,
        "on_time_percentage": 0.0,
        "points_earned": 0,
        "xp_earned": 0,
        "current_streak": 0,
        "longest_streak": 0,
        "wishes_completed": 0,
    }
    values.update(overrides)
    return UserStatistics(**values)


async def settle_task(team, now):
    task = await task_service.create_task(
        title="Water the plants",
        difficulty=Difficulty.EASY,
        assigned_to=team.bob.id,
        assigned_by=team.alice.id,
        group_id=team.group.id,
        deadline=now + timedelta(days=1),
        now=now,
    )
    await task_service.start_task(task_id=task.id, actor_id=team.bob.id, now=now)
    await task_service.complete_task(task_id=task.id, actor_id=team.bob.id, now=now)
    return await task_service.confirm_task(task_id=task.id, actor_id=team.alice.id, now=now)


@pytest.mark.unit
class TestSatisfiedAchievements:
    def test_nothing_for_a_new_user(self):
        assert achievement_service.satisfied_achievements(stats(), set()) == []

    def test_threshold_reached(self):
        ids = [a.id for a in achievement_service.satisfied_achievements(stats(tasks_completed=10), set())]
        assert ids == ["first_task", "task_master_10"]

    def test_held_achievements_are_skipped(self):
        ids = [a.id for a in achievement_service.satisfied_achievements(stats(tasks_completed=10), {"first_task"})]
        assert ids == ["task_master_10"]

    def test_streak_uses_longest_run(self):
        ids = [a.id for a in achievement_service.satisfied_achievements(stats(longest_streak=7), set())]
        assert ids == ["streak_7"]

    def test_level_is_derived_from_xp(self):
        ids = [a.id for a in achievement_service.satisfied_achievements(stats(xp=400), set())]
        assert ids == ["level_5"]


@pytest.mark.unit
class TestEvaluateAchievements:
    async def test_first_confirmation_unlocks_first_task(self, team, now, pushes):
        await settle_task(team, now)

        bob = await user_service.get_user(user_id=team.bob.id)
        assert bob.achievement_ids == ["first_task"]
        assert bob.points == 10 + 10
        assert bob.xp == 15 + 50
        assert any("First Step" in call.body for call in pushes.calls)

    async def test_same_achievement_is_never_granted_twice(self, team, now):
        await settle_task(team, now)
        await settle_task(team, now)
        again = await achievement_service.evaluate_achievements(user_id=team.bob.id, now=now)

        bob = await user_service.get_user(user_id=team.bob.id)
        assert again == []
        assert bob.achievement_ids == ["first_task"]
        assert bob.points == 10 + 10 + 10

    async def test_bonus_xp_can_unlock_a_level_achievement(self, team, now):
        await user_service.increment_balance(user_id=team.bob.id, xp=335)

        await settle_task(team, now)

        bob = await user_service.get_user(user_id=team.bob.id)
        assert bob.achievement_ids == ["first_task", "level_5"]
        assert bob.xp == 400
        assert bob.points == 10 + 10 + 50

    async def test_safe_wrapper_swallows_failures(self, team, now, monkeypatch):
        async def broken(**_kwargs):
            raise RuntimeError("history unavailable")

        monkeypatch.setattr(achievement_service.analytics_service, "get_user_statistics", broken)

        assert await achievement_service.evaluate_achievements_safely(user_id=team.bob.id, now=now) == []
