"""Unit tests for user_service module."""

import pytest

from lvtodo.core.errors import InputValidationError, InsufficientFundsError, NotFoundError
from lvtodo.domain.user import User
from lvtodo.services import reward_calculator, user_service


@pytest.mark.unit
class TestCreateUser:
    async def test_starts_with_empty_balances(self, patched_db):
        user = await user_service.create_user(display_name="  Alice ", email="alice@example.com")

        assert user.display_name == "Alice"
        assert user.email == "alice@example.com"
        assert (user.points, user.xp, user.level) == (0, 0, 1)
        assert user.group_ids == []
        assert user.achievement_ids == []

    @pytest.mark.parametrize("name", ["", "   ", "x" * 51, "Robert'); DROP TABLE users;--"])
    async def test_unusable_names_rejected(self, patched_db, name):
        with pytest.raises(InputValidationError):
            await user_service.create_user(display_name=name)

    async def test_unicode_names_allowed(self, patched_db):
        user = await user_service.create_user(display_name="José O'Neil-Müller")
        assert user.display_name == "José O'Neil-Müller"

    async def test_malformed_email_rejected(self, patched_db):
        with pytest.raises(InputValidationError):
            await user_service.create_user(display_name="Alice", email="not-an-email")


@pytest.mark.unit
class TestGetUser:
    async def test_missing_user(self, patched_db):
        with pytest.raises(NotFoundError):
            await user_service.get_user(user_id="999999")

    async def test_get_users_skips_missing(self, patched_db):
        alice = await user_service.create_user(display_name="Alice")
        users = await user_service.get_users(user_ids=[alice.id, "999999"])
        assert [u.id for u in users] == [alice.id]


@pytest.mark.unit
class TestIncrementBalance:
    async def test_credit(self, patched_db):
        user = await user_service.create_user(display_name="Bob")

        user = await user_service.increment_balance(user_id=user.id, points=25, xp=40)

        assert (user.points, user.xp) == (25, 40)

    async def test_debit_within_balance(self, patched_db):
        user = await user_service.create_user(display_name="Bob")
        await user_service.increment_balance(user_id=user.id, points=25)

        user = await user_service.increment_balance(user_id=user.id, points=-25)

        assert user.points == 0

    async def test_overdraft_rejected_and_balance_unchanged(self, patched_db):
        user = await user_service.create_user(display_name="Bob")
        await user_service.increment_balance(user_id=user.id, points=10, xp=15)

        with pytest.raises(InsufficientFundsError):
            await user_service.increment_balance(user_id=user.id, points=-11)

        user = await user_service.get_user(user_id=user.id)
        assert (user.points, user.xp) == (10, 15)

    async def test_xp_never_decreases(self, patched_db):
        user = await user_service.create_user(display_name="Bob")
        with pytest.raises(InputValidationError):
            await user_service.increment_balance(user_id=user.id, xp=-1)

    async def test_missing_user(self, patched_db):
        with pytest.raises(NotFoundError):
            await user_service.increment_balance(user_id="999999", points=5)


@pytest.mark.unit
class TestLevelProgress:
    async def test_progress_within_level(self, patched_db):
        user = await user_service.create_user(display_name="Carol")
        await user_service.increment_balance(user_id=user.id, xp=150)

        progress = await user_service.get_level_progress(user_id=user.id)

        assert progress.level == 2
        assert progress.xp == 150
        assert progress.xp_for_next_level == 200
        assert progress.progress_percent == 50.0

    @pytest.mark.parametrize("xp", [0, 99, 100, 150, 9_999, 1_000_000])
    def test_user_level_matches_calculator(self, xp):
        user = User(id="1", display_name="Dave", xp=xp)

        assert user.level == reward_calculator.level(xp)
