"""User service: user documents and point/XP balance mutations."""

import logging

from pydantic import ValidationError

from lvtodo.core import db_client
from lvtodo.core.clock import to_iso, utc_now
from lvtodo.core.errors import InputValidationError, InsufficientFundsError, NotFoundError
from lvtodo.core.logging import span
from lvtodo.domain.create_models import UserCreate
from lvtodo.domain.user import User
from lvtodo.models.service_models import LevelProgress
from lvtodo.services import reward_calculator


logger = logging.getLogger(__name__)


async def create_user(*, display_name: str, email: str = "") -> User:
    """Register a user with empty balances and no groups.

    Raises:
        InputValidationError: If the display name or email is unusable
    """
    with span("user_service.create_user"):
        try:
            payload = UserCreate(display_name=display_name, email=email)
        except ValidationError as e:
            raise InputValidationError(str(e)) from e

        record = await db_client.create_record(
            collection="users",
            data={
                "display_name": payload.display_name,
                "email": payload.email,
                "points": 0,
                "xp": 0,
                "group_ids": [],
                "achievement_ids": [],
                "created_at": to_iso(utc_now()),
            },
        )
        logger.info("Created user %s (%s)", record["id"], payload.display_name)
        return User.model_validate(record)


async def get_user(*, user_id: str) -> User:
    """Fetch a user.

    Raises:
        NotFoundError: If the user does not exist
    """
    try:
        record = await db_client.get_record(collection="users", record_id=user_id)
    except KeyError as e:
        msg = f"User not found: {user_id}"
        raise NotFoundError(msg) from e
    return User.model_validate(record)


async def get_users(*, user_ids: list[str]) -> list[User]:
    """Fetch several users, skipping ids that no longer exist."""
    users = []
    for user_id in user_ids:
        try:
            users.append(await get_user(user_id=user_id))
        except NotFoundError:
            logger.warning("Skipping missing user %s", user_id)
    return users


async def increment_balance(*, user_id: str, points: int = 0, xp: int = 0) -> User:
    """Apply a relative change to a user's balances.

    Points may go down (wish redemption) but never below zero; XP only goes up.

    Raises:
        InputValidationError: If ``xp`` is negative
        InsufficientFundsError: If the debit would make points negative
        NotFoundError: If the user does not exist
    """
    if xp < 0:
        msg = "XP can only increase"
        raise InputValidationError(msg)

    try:
        record = await db_client.increment_record(
            collection="users",
            record_id=user_id,
            deltas={"points": points, "xp": xp},
            min_values={"points": 0},
        )
    except KeyError as e:
        msg = f"User not found: {user_id}"
        raise NotFoundError(msg) from e

    if record is None:
        msg = f"User {user_id} cannot afford {-points} points"
        raise InsufficientFundsError(msg)

    logger.info("Balance of user %s changed by %+d points, %+d xp", user_id, points, xp)
    return User.model_validate(record)


async def get_level_progress(*, user_id: str) -> LevelProgress:
    user = await get_user(user_id=user_id)
    return LevelProgress(
        level=reward_calculator.level(user.xp),
        xp=user.xp,
        xp_for_next_level=reward_calculator.xp_for_next_level(user.xp),
        progress_percent=reward_calculator.level_progress_percent(user.xp),
    )
