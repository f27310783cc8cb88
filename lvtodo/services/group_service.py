"""Group membership service: invite codes, join/leave, settings, cascading delete."""

import logging
import secrets

from pydantic import ValidationError

from lvtodo.core import db_client
from lvtodo.core.clock import to_iso, utc_now
from lvtodo.core.config import Constants, settings
from lvtodo.core.errors import AlreadyMemberError, ForbiddenError, InputValidationError, NotFoundError
from lvtodo.core.logging import span
from lvtodo.domain.create_models import GroupCreate
from lvtodo.domain.group import Group, GroupSettings
from lvtodo.domain.user import User
from lvtodo.services import analytics_service, user_service


logger = logging.getLogger(__name__)


class InviteCodeExhaustedError(RuntimeError):
    """No unused invite code was found within the configured number of attempts."""


def generate_invite_code() -> str:
    """Random 6-character uppercase alphanumeric code."""
    return "".join(secrets.choice(Constants.INVITE_CODE_ALPHABET) for _ in range(Constants.INVITE_CODE_LENGTH))


def normalize_invite_code(code: str) -> str:
    return code.strip().upper()


def is_well_formed_invite_code(code: str) -> bool:
    return len(code) == Constants.INVITE_CODE_LENGTH and all(c in Constants.INVITE_CODE_ALPHABET for c in code)


async def get_group(*, group_id: str) -> Group:
    """Fetch a group.

    Raises:
        NotFoundError: If the group does not exist
    """
    try:
        record = await db_client.get_record(collection="groups", record_id=group_id)
    except KeyError as e:
        msg = f"Group not found: {group_id}"
        raise NotFoundError(msg) from e
    return Group.model_validate(record)


async def get_group_by_invite_code(*, invite_code: str) -> Group | None:
    code = normalize_invite_code(invite_code)
    if not is_well_formed_invite_code(code):
        return None
    record = await db_client.get_first_record(
        collection="groups", filter_query=f'invite_code = "{db_client.sanitize_param(code)}"'
    )
    return Group.model_validate(record) if record else None


async def _unused_invite_code() -> str:
    for attempt in range(1, settings.invite_code_max_attempts + 1):
        code = generate_invite_code()
        if await get_group_by_invite_code(invite_code=code) is None:
            return code
        logger.info("Invite code collision on attempt %d, retrying", attempt)

    msg = f"Could not generate an unused invite code after {settings.invite_code_max_attempts} attempts"
    raise InviteCodeExhaustedError(msg)


async def create_group(*, name: str, created_by: str, description: str = "") -> Group:
    """Create a group with the creator as its only member.

    Raises:
        InputValidationError: If the name is unusable
        NotFoundError: If the creator does not exist
    """
    with span("group_service.create_group"):
        try:
            payload = GroupCreate(name=name, description=description)
        except ValidationError as e:
            raise InputValidationError(str(e)) from e

        async with db_client.transaction():
            await user_service.get_user(user_id=created_by)
            code = await _unused_invite_code()
            record = await db_client.create_record(
                collection="groups",
                data={
                    "name": payload.name,
                    "description": payload.description,
                    "invite_code": code,
                    "member_ids": [created_by],
                    "created_by": created_by,
                    "settings": GroupSettings().model_dump(),
                    "created_at": to_iso(utc_now()),
                },
            )
            await db_client.add_to_set(collection="users", record_id=created_by, field="group_ids", value=record["id"])

        logger.info("User %s created group %s '%s'", created_by, record["id"], payload.name)
        return Group.model_validate(record)


async def join_group(*, user_id: str, invite_code: str) -> Group:
    """Join the group behind an invite code (case-insensitive).

    Raises:
        NotFoundError: If no group has this code or the user does not exist
        AlreadyMemberError: If the user is already a member
    """
    with span("group_service.join_group"):
        async with db_client.transaction():
            await user_service.get_user(user_id=user_id)
            group = await get_group_by_invite_code(invite_code=invite_code)
            if group is None:
                msg = f"No group with invite code {normalize_invite_code(invite_code)}"
                raise NotFoundError(msg)
            if user_id in group.member_ids:
                msg = f"User {user_id} is already a member of group {group.id}"
                raise AlreadyMemberError(msg)

            await db_client.add_to_set(collection="groups", record_id=group.id, field="member_ids", value=user_id)
            await db_client.add_to_set(collection="users", record_id=user_id, field="group_ids", value=group.id)
            group = await get_group(group_id=group.id)

        logger.info("User %s joined group %s", user_id, group.id)
        return group


async def leave_group(*, user_id: str, group_id: str) -> None:
    """Leave a group. The creator cannot leave; they delete the group instead.

    Raises:
        NotFoundError: If the group does not exist or the user is not a member
        ForbiddenError: If the user is the creator
    """
    with span("group_service.leave_group"):
        async with db_client.transaction():
            group = await get_group(group_id=group_id)
            if user_id not in group.member_ids:
                msg = f"User {user_id} is not a member of group {group_id}"
                raise NotFoundError(msg)
            if user_id == group.created_by:
                msg = "The creator cannot leave the group"
                raise ForbiddenError(msg)

            await db_client.remove_from_set(collection="groups", record_id=group_id, field="member_ids", value=user_id)
            try:
                await db_client.remove_from_set(collection="users", record_id=user_id, field="group_ids", value=group_id)
            except KeyError:
                logger.warning("Member %s of group %s has no user record", user_id, group_id)

        logger.info("User %s left group %s", user_id, group_id)

    await analytics_service.invalidate_leaderboard_cache(group_id=group_id)


async def update_group_settings(
    *,
    group_id: str,
    actor_id: str,
    allow_wishes: bool | None = None,
    require_task_confirmation: bool | None = None,
) -> Group:
    """Creator toggles group settings; unspecified settings are kept."""
    with span("group_service.update_group_settings"):
        async with db_client.transaction():
            group = await get_group(group_id=group_id)
            if actor_id != group.created_by:
                msg = "Only the creator can change group settings"
                raise ForbiddenError(msg)

            changes = {
                key: value
                for key, value in {
                    "allow_wishes": allow_wishes,
                    "require_task_confirmation": require_task_confirmation,
                }.items()
                if value is not None
            }
            new_settings = group.settings.model_copy(update=changes)
            record = await db_client.update_record(
                collection="groups", record_id=group_id, data={"settings": new_settings.model_dump()}
            )

        logger.info("Group %s settings updated: %s", group_id, changes)
        return Group.model_validate(record)


async def delete_group(*, group_id: str, actor_id: str) -> None:
    """Creator deletes the group, its tasks and its wishes.

    Member balances and task history are kept.

    Raises:
        NotFoundError: If the group does not exist
        ForbiddenError: If the actor is not the creator
    """
    with span("group_service.delete_group"):
        async with db_client.transaction():
            group = await get_group(group_id=group_id)
            if actor_id != group.created_by:
                msg = "Only the creator can delete the group"
                raise ForbiddenError(msg)

            for member_id in group.member_ids:
                try:
                    await db_client.remove_from_set(
                        collection="users", record_id=member_id, field="group_ids", value=group_id
                    )
                except KeyError:
                    logger.warning("Member %s of group %s has no user record", member_id, group_id)

            group_filter = f'group_id = "{db_client.sanitize_param(group_id)}"'
            tasks_deleted = await db_client.delete_records(collection="tasks", filter_query=group_filter)
            wishes_deleted = await db_client.delete_records(collection="wishes", filter_query=group_filter)
            await db_client.delete_record(collection="groups", record_id=group_id)

        logger.info(
            "Deleted group %s (%d members, %d tasks, %d wishes)",
            group_id,
            len(group.member_ids),
            tasks_deleted,
            wishes_deleted,
        )

    await analytics_service.invalidate_leaderboard_cache(group_id=group_id)


async def get_user_groups(*, user_id: str) -> list[Group]:
    """Groups the user belongs to, skipping ids whose group no longer exists."""
    user = await user_service.get_user(user_id=user_id)
    groups = []
    for group_id in user.group_ids:
        try:
            groups.append(await get_group(group_id=group_id))
        except NotFoundError:
            logger.warning("User %s references missing group %s", user_id, group_id)
    return groups


async def get_group_members(*, group_id: str) -> list[User]:
    group = await get_group(group_id=group_id)
    return await user_service.get_users(user_ids=group.member_ids)
