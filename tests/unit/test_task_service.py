"""Unit tests for task_service module."""

import asyncio
from datetime import timedelta

import pytest

from lvtodo.core.errors import ForbiddenError, InputValidationError, InvalidTransitionError, NotFoundError
from lvtodo.domain.history import HistoryAction
from lvtodo.domain.task import Difficulty, TaskStatus
from lvtodo.interface.push_sender import user_topic
from lvtodo.services import group_service, history_service, task_service, user_service


@pytest.fixture
def no_achievements(monkeypatch):
    """Keep balances equal to task rewards by skipping achievement bonuses."""

    async def _skip(**_kwargs):
        return []

    monkeypatch.setattr("lvtodo.services.achievement_service.evaluate_achievements_safely", _skip)


async def assign(team, now, *, difficulty=Difficulty.EASY, hours=2, title="Take out the trash"):
    """Alice assigns a task to Bob."""
    return await task_service.create_task(
        title=title,
        difficulty=difficulty,
        assigned_to=team.bob.id,
        assigned_by=team.alice.id,
        group_id=team.group.id,
        deadline=now + timedelta(hours=hours),
        now=now,
    )


@pytest.mark.unit
class TestCreateTask:
    async def test_creates_pending_task_with_reward_snapshot(self, team, now, pushes):
        task = await assign(team, now, difficulty=Difficulty.HARD)

        assert task.status == TaskStatus.PENDING
        assert task.points == 25
        assert task.xp == 40
        assert task.version == 0
        assert not any(task.notifications_sent.model_dump().values())

        history = await history_service.list_for_task(task_id=task.id)
        assert [h.action for h in history] == [HistoryAction.CREATED]
        assert pushes.topics() == [user_topic(team.bob.id)]

    @pytest.mark.parametrize("offset", [timedelta(0), timedelta(minutes=-1)])
    async def test_deadline_must_be_in_the_future(self, team, now, offset):
        with pytest.raises(InputValidationError, match="future"):
            await task_service.create_task(
                title="Too late",
                difficulty=Difficulty.EASY,
                assigned_to=team.bob.id,
                assigned_by=team.alice.id,
                group_id=team.group.id,
                deadline=now + offset,
                now=now,
            )

    async def test_blank_title_rejected(self, team, now):
        with pytest.raises(InputValidationError):
            await assign(team, now, title="   ")

    async def test_assignee_must_be_member(self, team, now):
        outsider = await user_service.create_user(display_name="Oscar")
        with pytest.raises(ForbiddenError):
            await task_service.create_task(
                title="Water plants",
                difficulty=Difficulty.EASY,
                assigned_to=outsider.id,
                assigned_by=team.alice.id,
                group_id=team.group.id,
                deadline=now + timedelta(hours=1),
                now=now,
            )

    async def test_assigner_must_be_member(self, team, now):
        outsider = await user_service.create_user(display_name="Oscar")
        with pytest.raises(ForbiddenError):
            await task_service.create_task(
                title="Water plants",
                difficulty=Difficulty.EASY,
                assigned_to=team.bob.id,
                assigned_by=outsider.id,
                group_id=team.group.id,
                deadline=now + timedelta(hours=1),
                now=now,
            )

    async def test_missing_group(self, team, now):
        with pytest.raises(NotFoundError):
            await task_service.create_task(
                title="Water plants",
                difficulty=Difficulty.EASY,
                assigned_to=team.bob.id,
                assigned_by=team.alice.id,
                group_id="999999",
                deadline=now + timedelta(hours=1),
                now=now,
            )


@pytest.mark.unit
@pytest.mark.usefixtures("no_achievements")
class TestLifecycle:
    async def test_on_time_completion_and_confirmation(self, team, now, pushes):
        task = await assign(team, now)

        task = await task_service.start_task(task_id=task.id, actor_id=team.bob.id, now=now + timedelta(minutes=5))
        assert task.status == TaskStatus.IN_PROGRESS
        assert task.started_at is not None

        pushes.clear()
        task = await task_service.complete_task(task_id=task.id, actor_id=team.bob.id, now=now + timedelta(hours=1))
        assert task.status == TaskStatus.COMPLETED
        assert pushes.topics() == [user_topic(team.alice.id)]

        # No reward before confirmation
        assert (await user_service.get_user(user_id=team.bob.id)).points == 0

        task = await task_service.confirm_task(task_id=task.id, actor_id=team.alice.id, now=now + timedelta(hours=2))
        assert task.status == TaskStatus.CONFIRMED
        assert task.confirmed_by == team.alice.id

        bob = await user_service.get_user(user_id=team.bob.id)
        assert (bob.points, bob.xp) == (10, 15)

        history = await history_service.list_for_task(task_id=task.id)
        assert [h.action for h in history] == [
            HistoryAction.CREATED,
            HistoryAction.STARTED,
            HistoryAction.COMPLETED,
            HistoryAction.CONFIRMED,
        ]
        assert history[-1].metadata.points == 10
        assert history[-1].metadata.is_late is False
        assert all(h.user_id == team.bob.id for h in history)

    async def test_late_completion_pays_half_points_and_full_xp(self, team, now):
        task = await assign(team, now, hours=2)
        await task_service.start_task(task_id=task.id, actor_id=team.bob.id, now=now)

        task = await task_service.complete_task(task_id=task.id, actor_id=team.bob.id, now=now + timedelta(hours=3))
        assert task.status == TaskStatus.LATE

        await task_service.confirm_task(task_id=task.id, actor_id=team.alice.id, now=now + timedelta(hours=4))
        bob = await user_service.get_user(user_id=team.bob.id)
        assert (bob.points, bob.xp) == (5, 15)

        confirmations = await history_service.list_for_user(user_id=team.bob.id, action=HistoryAction.CONFIRMED)
        assert confirmations[0].metadata.is_late is True

    async def test_completing_a_pending_task_is_invalid_for_anyone(self, team, now):
        task = await assign(team, now)
        for actor in (team.bob.id, team.alice.id, "stranger"):
            with pytest.raises(InvalidTransitionError):
                await task_service.complete_task(task_id=task.id, actor_id=actor, now=now)

    async def test_only_assignee_starts_and_only_assigner_confirms(self, team, now):
        task = await assign(team, now)
        with pytest.raises(ForbiddenError):
            await task_service.start_task(task_id=task.id, actor_id=team.alice.id, now=now)

        await task_service.start_task(task_id=task.id, actor_id=team.bob.id, now=now)
        await task_service.complete_task(task_id=task.id, actor_id=team.bob.id, now=now)
        with pytest.raises(ForbiddenError):
            await task_service.confirm_task(task_id=task.id, actor_id=team.bob.id, now=now)
        with pytest.raises(ForbiddenError):
            await task_service.confirm_task(task_id=task.id, actor_id=team.carol.id, now=now)

    async def test_repeated_confirmation_credits_once(self, team, now):
        task = await assign(team, now)
        await task_service.start_task(task_id=task.id, actor_id=team.bob.id, now=now)
        await task_service.complete_task(task_id=task.id, actor_id=team.bob.id, now=now)
        await task_service.confirm_task(task_id=task.id, actor_id=team.alice.id, now=now)

        with pytest.raises(InvalidTransitionError):
            await task_service.confirm_task(task_id=task.id, actor_id=team.alice.id, now=now)

        assert (await user_service.get_user(user_id=team.bob.id)).points == 10

    async def test_concurrent_confirmations_credit_once(self, team, now):
        task = await assign(team, now)
        await task_service.start_task(task_id=task.id, actor_id=team.bob.id, now=now)
        await task_service.complete_task(task_id=task.id, actor_id=team.bob.id, now=now)

        results = await asyncio.gather(
            task_service.confirm_task(task_id=task.id, actor_id=team.alice.id, now=now),
            task_service.confirm_task(task_id=task.id, actor_id=team.alice.id, now=now),
            return_exceptions=True,
        )

        assert sum(1 for r in results if isinstance(r, InvalidTransitionError)) == 1
        assert (await user_service.get_user(user_id=team.bob.id)).points == 10
        confirmations = await history_service.list_for_user(user_id=team.bob.id, action=HistoryAction.CONFIRMED)
        assert len(confirmations) == 1

    async def test_failed_credit_rolls_back_the_transition(self, team, now, patched_db):
        task = await assign(team, now)
        await task_service.start_task(task_id=task.id, actor_id=team.bob.id, now=now)
        await task_service.complete_task(task_id=task.id, actor_id=team.bob.id, now=now)
        await patched_db.delete_record("users", team.bob.id)

        with pytest.raises(NotFoundError):
            await task_service.confirm_task(task_id=task.id, actor_id=team.alice.id, now=now)

        task = await task_service.get_task(task_id=task.id)
        assert task.status == TaskStatus.COMPLETED
        history = await history_service.list_for_task(task_id=task.id)
        assert HistoryAction.CONFIRMED not in [h.action for h in history]

    async def test_dispute_sends_task_back_without_reward(self, team, now, pushes):
        task = await assign(team, now)
        await task_service.start_task(task_id=task.id, actor_id=team.bob.id, now=now)
        await task_service.complete_task(task_id=task.id, actor_id=team.bob.id, now=now)

        pushes.clear()
        task = await task_service.dispute_task(task_id=task.id, actor_id=team.alice.id, now=now)
        assert task.status == TaskStatus.PENDING
        assert task.completed_at is None
        assert pushes.topics() == [user_topic(team.bob.id)]
        assert (await user_service.get_user(user_id=team.bob.id)).points == 0

        # The task can go around the loop again
        await task_service.start_task(task_id=task.id, actor_id=team.bob.id, now=now)
        task = await task_service.complete_task(task_id=task.id, actor_id=team.bob.id, now=now)
        assert task.status == TaskStatus.COMPLETED

    async def test_overdue_task_completes_late(self, team, now):
        task = await assign(team, now, difficulty=Difficulty.HARD, hours=1)
        overdue = await task_service.mark_task_overdue(task=task, now=now + timedelta(hours=2))
        assert overdue is not None
        assert overdue.status == TaskStatus.OVERDUE

        task = await task_service.complete_task(task_id=task.id, actor_id=team.bob.id, now=now + timedelta(hours=3))
        assert task.status == TaskStatus.LATE
        await task_service.confirm_task(task_id=task.id, actor_id=team.alice.id, now=now + timedelta(hours=3))

        bob = await user_service.get_user(user_id=team.bob.id)
        assert (bob.points, bob.xp) == (12, 40)

    async def test_mark_overdue_with_stale_snapshot_is_a_no_op(self, team, now):
        stale = await assign(team, now)
        await task_service.start_task(task_id=stale.id, actor_id=team.bob.id, now=now)

        assert await task_service.mark_task_overdue(task=stale, now=now + timedelta(hours=5)) is None
        assert (await task_service.get_task(task_id=stale.id)).status == TaskStatus.IN_PROGRESS

    async def test_group_without_confirmation_settles_on_completion(self, team, now):
        await group_service.update_group_settings(
            group_id=team.group.id, actor_id=team.alice.id, require_task_confirmation=False
        )
        task = await assign(team, now)
        await task_service.start_task(task_id=task.id, actor_id=team.bob.id, now=now)

        task = await task_service.complete_task(task_id=task.id, actor_id=team.bob.id, now=now)

        assert task.status == TaskStatus.CONFIRMED
        assert task.confirmed_by == team.alice.id
        assert (await user_service.get_user(user_id=team.bob.id)).points == 10


@pytest.mark.unit
class TestUpdateTaskDetails:
    async def test_assigner_edits_pending_task_without_touching_reward(self, team, now):
        task = await assign(team, now, difficulty=Difficulty.EASY)

        updated = await task_service.update_task_details(
            task_id=task.id,
            actor_id=team.alice.id,
            title="Take out recycling",
            difficulty=Difficulty.HARD,
            now=now,
        )

        assert updated.title == "Take out recycling"
        assert updated.difficulty == Difficulty.HARD
        assert (updated.points, updated.xp) == (10, 15)

    async def test_new_deadline_rearms_reminders(self, team, now, patched_db):
        task = await assign(team, now)
        await patched_db.update_record("tasks", task.id, {"notifications_sent": {"percent80": True}})

        new_deadline = now + timedelta(days=1)
        updated = await task_service.update_task_details(
            task_id=task.id, actor_id=team.alice.id, deadline=new_deadline, now=now
        )

        assert updated.notifications_sent.percent80 is False
        assert updated.deadline.startswith("2026-03-03T09:00:00")

    async def test_past_deadline_rejected(self, team, now):
        task = await assign(team, now)
        with pytest.raises(InputValidationError):
            await task_service.update_task_details(
                task_id=task.id, actor_id=team.alice.id, deadline=now - timedelta(hours=1), now=now
            )

    async def test_only_assigner_may_edit(self, team, now):
        task = await assign(team, now)
        with pytest.raises(ForbiddenError):
            await task_service.update_task_details(task_id=task.id, actor_id=team.bob.id, title="Mine now", now=now)

    async def test_started_task_is_locked(self, team, now):
        task = await assign(team, now)
        await task_service.start_task(task_id=task.id, actor_id=team.bob.id, now=now)
        with pytest.raises(InvalidTransitionError):
            await task_service.update_task_details(task_id=task.id, actor_id=team.alice.id, title="Renamed", now=now)

    async def test_empty_update_rejected(self, team, now):
        task = await assign(team, now)
        with pytest.raises(InputValidationError):
            await task_service.update_task_details(task_id=task.id, actor_id=team.alice.id, now=now)


@pytest.mark.unit
class TestQueries:
    async def test_get_missing_task(self, patched_db):
        with pytest.raises(NotFoundError):
            await task_service.get_task(task_id="424242")

    async def test_list_tasks_by_role_ordered_by_deadline(self, team, now):
        later = await assign(team, now, hours=10, title="Later")
        sooner = await assign(team, now, hours=1, title="Sooner")

        assigned = await task_service.list_tasks(assigned_to=team.bob.id)
        assert [t.id for t in assigned] == [sooner.id, later.id]

        created = await task_service.list_tasks(assigned_by=team.alice.id)
        assert {t.id for t in created} == {sooner.id, later.id}
        assert await task_service.list_tasks(assigned_by=team.bob.id) == []

    async def test_list_tasks_by_group_and_status(self, team, now):
        first = await assign(team, now)
        second = await assign(team, now, hours=3)
        await task_service.start_task(task_id=second.id, actor_id=team.bob.id, now=now)

        pending = await task_service.list_tasks(group_id=team.group.id, status=TaskStatus.PENDING)
        assert [t.id for t in pending] == [first.id]
