"""Unit tests for group_service module."""

from datetime import timedelta

import pytest

from lvtodo.core.config import settings
from lvtodo.core.errors import AlreadyMemberError, ForbiddenError, InputValidationError, NotFoundError
from lvtodo.domain.task import Difficulty
from lvtodo.services import group_service, history_service, task_service, user_service, wish_service


@pytest.fixture
def no_achievements(monkeypatch):
    async def _none(**_kwargs):
        return []

    monkeypatch.setattr("lvtodo.services.achievement_service.evaluate_achievements_safely", _none)


@pytest.mark.unit
class TestInviteCodes:
    def test_generated_code_shape(self):
        for _ in range(50):
            code = group_service.generate_invite_code()
            assert len(code) == 6
            assert code.isalnum()
            assert code == code.upper()

    def test_normalize(self):
        assert group_service.normalize_invite_code("  ab12cd ") == "AB12CD"

    async def test_collision_is_retried(self, team, monkeypatch):
        codes = iter([team.group.invite_code, "NEW123"])
        monkeypatch.setattr(group_service, "generate_invite_code", lambda: next(codes))

        group = await group_service.create_group(name="Book club", created_by=team.bob.id)
        assert group.invite_code == "NEW123"

    async def test_gives_up_after_max_attempts(self, team, monkeypatch):
        monkeypatch.setattr(settings, "invite_code_max_attempts", 3)
        monkeypatch.setattr(group_service, "generate_invite_code", lambda: team.group.invite_code)

        with pytest.raises(group_service.InviteCodeExhaustedError):
            await group_service.create_group(name="Book club", created_by=team.bob.id)

        bob = await user_service.get_user(user_id=team.bob.id)
        assert bob.group_ids == [team.group.id]


@pytest.mark.unit
class TestCreateAndJoin:
    async def test_creator_is_first_member(self, patched_db):
        alice = await user_service.create_user(display_name="Alice")
        group = await group_service.create_group(name="  Flatmates ", created_by=alice.id)

        assert group.name == "Flatmates"
        assert group.member_ids == [alice.id]
        assert group.created_by == alice.id
        assert group.settings.allow_wishes is True
        assert group.settings.require_task_confirmation is True
        assert (await user_service.get_user(user_id=alice.id)).group_ids == [group.id]

    async def test_unknown_creator(self, patched_db):
        with pytest.raises(NotFoundError):
            await group_service.create_group(name="Ghosts", created_by="424242")

    async def test_blank_name_rejected(self, patched_db):
        alice = await user_service.create_user(display_name="Alice")
        with pytest.raises(InputValidationError):
            await group_service.create_group(name="   ", created_by=alice.id)

    async def test_join_is_case_insensitive_and_symmetric(self, team):
        assert team.group.member_ids == [team.alice.id, team.bob.id, team.carol.id]
        carol = await user_service.get_user(user_id=team.carol.id)
        assert carol.group_ids == [team.group.id]

    async def test_join_twice_is_rejected(self, team):
        with pytest.raises(AlreadyMemberError):
            await group_service.join_group(user_id=team.bob.id, invite_code=team.group.invite_code)

        group = await group_service.get_group(group_id=team.group.id)
        assert group.member_ids.count(team.bob.id) == 1

    async def test_unknown_code(self, team):
        dave = await user_service.create_user(display_name="Dave")
        with pytest.raises(NotFoundError):
            await group_service.join_group(user_id=dave.id, invite_code="ZZZZZZ")

    async def test_lookup_by_code(self, team):
        found = await group_service.get_group_by_invite_code(invite_code=team.group.invite_code.lower())
        assert found is not None
        assert found.id == team.group.id
        assert await group_service.get_group_by_invite_code(invite_code="NOPE00") is None

    @pytest.mark.parametrize("code", ["AB'C", "AB\"CDE", "ABC", "ABCDEFG", "AB-CD1"])
    async def test_malformed_code_is_not_found(self, team, code):
        assert await group_service.get_group_by_invite_code(invite_code=code) is None
        with pytest.raises(NotFoundError):
            await group_service.join_group(user_id=team.carol.id, invite_code=code)


@pytest.mark.unit
class TestLeaveGroup:
    async def test_member_leaves(self, team):
        await group_service.leave_group(user_id=team.bob.id, group_id=team.group.id)

        group = await group_service.get_group(group_id=team.group.id)
        assert team.bob.id not in group.member_ids
        assert (await user_service.get_user(user_id=team.bob.id)).group_ids == []

    async def test_creator_cannot_leave(self, team):
        with pytest.raises(ForbiddenError):
            await group_service.leave_group(user_id=team.alice.id, group_id=team.group.id)

    async def test_non_member_cannot_leave(self, team):
        dave = await user_service.create_user(display_name="Dave")
        with pytest.raises(NotFoundError):
            await group_service.leave_group(user_id=dave.id, group_id=team.group.id)

    async def test_rejoin_after_leaving(self, team):
        await group_service.leave_group(user_id=team.bob.id, group_id=team.group.id)
        group = await group_service.join_group(user_id=team.bob.id, invite_code=team.group.invite_code)
        assert team.bob.id in group.member_ids


@pytest.mark.unit
class TestGroupSettings:
    async def test_creator_toggles_one_setting(self, team):
        group = await group_service.update_group_settings(
            group_id=team.group.id, actor_id=team.alice.id, require_task_confirmation=False
        )
        assert group.settings.require_task_confirmation is False
        assert group.settings.allow_wishes is True

    async def test_member_cannot_change_settings(self, team):
        with pytest.raises(ForbiddenError):
            await group_service.update_group_settings(group_id=team.group.id, actor_id=team.bob.id, allow_wishes=False)


@pytest.mark.unit
class TestDeleteGroup:
    async def test_cascade_keeps_balances_and_history(self, team, now, no_achievements):
        task = await task_service.create_task(
            title="Take out the bins",
            difficulty=Difficulty.EASY,
            assigned_to=team.bob.id,
            assigned_by=team.alice.id,
            group_id=team.group.id,
            deadline=now + timedelta(days=1),
            now=now,
        )
        await task_service.start_task(task_id=task.id, actor_id=team.bob.id, now=now)
        await task_service.complete_task(task_id=task.id, actor_id=team.bob.id, now=now)
        await task_service.confirm_task(task_id=task.id, actor_id=team.alice.id, now=now)
        wish = await wish_service.propose_wish(title="Pizza night", group_id=team.group.id, created_by=team.carol.id)

        await group_service.delete_group(group_id=team.group.id, actor_id=team.alice.id)

        for member in (team.alice, team.bob, team.carol):
            user = await user_service.get_user(user_id=member.id)
            assert team.group.id not in user.group_ids
        with pytest.raises(NotFoundError):
            await group_service.get_group(group_id=team.group.id)
        with pytest.raises(NotFoundError):
            await task_service.get_task(task_id=task.id)
        with pytest.raises(NotFoundError):
            await wish_service.get_wish(wish_id=wish.id)

        assert (await user_service.get_user(user_id=team.bob.id)).points == 10
        assert len(await history_service.list_for_task(task_id=task.id)) == 4

    async def test_only_creator_deletes(self, team):
        with pytest.raises(ForbiddenError):
            await group_service.delete_group(group_id=team.group.id, actor_id=team.bob.id)
        assert (await group_service.get_group(group_id=team.group.id)).member_ids

    async def test_other_groups_untouched(self, team):
        other = await group_service.create_group(name="Book club", created_by=team.bob.id)
        await group_service.delete_group(group_id=team.group.id, actor_id=team.alice.id)

        bob = await user_service.get_user(user_id=team.bob.id)
        assert bob.group_ids == [other.id]
        assert [g.id for g in await group_service.get_user_groups(user_id=team.bob.id)] == [other.id]


@pytest.mark.unit
class TestGroupQueries:
    async def test_members(self, team):
        members = await group_service.get_group_members(group_id=team.group.id)
        assert [m.display_name for m in members] == ["Alice", "Bob", "Carol"]

    async def test_missing_group(self, patched_db):
        with pytest.raises(NotFoundError):
            await group_service.get_group(group_id="999999")
