"""Wish approval engine: proposal, quorum cost negotiation, redemption, cancellation."""

import logging
from datetime import datetime

from pydantic import ValidationError

from lvtodo.core import db_client
from lvtodo.core.clock import to_iso, utc_now
from lvtodo.core.config import Constants
from lvtodo.core.errors import (
    DuplicateVoteError,
    ForbiddenError,
    InputValidationError,
    InsufficientFundsError,
    InvalidTransitionError,
    NotFoundError,
)
from lvtodo.core.logging import span
from lvtodo.domain.create_models import WishCreate
from lvtodo.domain.group import Group
from lvtodo.domain.wish import CostVote, Wish, WishStatus
from lvtodo.services import achievement_service, notification_service, reward_calculator, user_service


logger = logging.getLogger(__name__)


async def get_wish(*, wish_id: str) -> Wish:
    """Fetch a wish.

    Raises:
        NotFoundError: If the wish does not exist
    """
    try:
        record = await db_client.get_record(collection="wishes", record_id=wish_id)
    except KeyError as e:
        msg = f"Wish not found: {wish_id}"
        raise NotFoundError(msg) from e
    return Wish.model_validate(record)


async def _get_group(group_id: str) -> Group:
    try:
        record = await db_client.get_record(collection="groups", record_id=group_id)
    except KeyError as e:
        msg = f"Group not found: {group_id}"
        raise NotFoundError(msg) from e
    return Group.model_validate(record)


async def _swap(*, wish: Wish, data: dict, action: str) -> Wish:
    """Compare-and-swap on the observed status and version."""
    updated = await db_client.update_record_if(
        collection="wishes",
        record_id=wish.id,
        expected={"status": wish.status, "version": wish.version},
        data={"version": wish.version + 1, **data},
    )
    if updated is None:
        msg = f"Cannot {action}: wish {wish.id} was changed concurrently"
        raise InvalidTransitionError(msg)
    return Wish.model_validate(updated)


async def propose_wish(
    *,
    title: str,
    group_id: str,
    created_by: str,
    description: str = "",
    now: datetime | None = None,
) -> Wish:
    """Create a wish awaiting approval with cost 0.

    Raises:
        InputValidationError: If the title is unusable
        NotFoundError: If the group does not exist
        ForbiddenError: If the proposer is not a member or the group disabled wishes
    """
    with span("wish_service.propose_wish"):
        now = now or utc_now()
        try:
            payload = WishCreate(title=title, description=description, group_id=group_id)
        except ValidationError as e:
            raise InputValidationError(str(e)) from e

        group = await _get_group(group_id)
        if created_by not in group.member_ids:
            msg = f"User {created_by} is not a member of group {group_id}"
            raise ForbiddenError(msg)
        if not group.settings.allow_wishes:
            msg = f"Group {group_id} does not allow wishes"
            raise ForbiddenError(msg)

        record = await db_client.create_record(
            collection="wishes",
            data={
                "title": payload.title,
                "description": payload.description,
                "cost": 0,
                "created_by": created_by,
                "group_id": group_id,
                "status": WishStatus.PENDING_APPROVAL,
                "approved_by": [],
                "cost_votes": [],
                "version": 0,
                "created_at": to_iso(now),
            },
        )
        wish = Wish.model_validate(record)
        logger.info("User %s proposed wish %s '%s' in group %s", created_by, wish.id, wish.title, group_id)

    await notification_service.notify_wish_proposed(wish=wish, member_ids=group.member_ids)
    return wish


async def approve_wish(
    *,
    wish_id: str,
    approver_id: str,
    suggested_cost: int,
    now: datetime | None = None,
) -> Wish:
    """Record an approval with a cost suggestion; activate the wish at quorum.

    At quorum the cost becomes the mean of all suggestions rounded half-up.

    Raises:
        InputValidationError: If the suggested cost is not a positive integer
        NotFoundError: If the wish does not exist
        InvalidTransitionError: If the wish is no longer awaiting approval
        ForbiddenError: If the approver is the creator or not a group member
        DuplicateVoteError: If the approver already voted
    """
    if isinstance(suggested_cost, bool) or not isinstance(suggested_cost, int) or suggested_cost <= 0:
        msg = f"Suggested cost must be a positive integer (got {suggested_cost!r})"
        raise InputValidationError(msg)

    with span("wish_service.approve_wish"):
        now = now or utc_now()
        async with db_client.transaction():
            wish = await get_wish(wish_id=wish_id)
            if wish.status != WishStatus.PENDING_APPROVAL:
                msg = f"Cannot approve: wish {wish.id} is {wish.status}"
                raise InvalidTransitionError(msg)
            if approver_id == wish.created_by:
                msg = "The creator cannot approve their own wish"
                raise ForbiddenError(msg)
            if approver_id in wish.approved_by:
                msg = f"User {approver_id} already approved wish {wish.id}"
                raise DuplicateVoteError(msg)
            group = await _get_group(wish.group_id)
            if approver_id not in group.member_ids:
                msg = f"User {approver_id} is not a member of group {wish.group_id}"
                raise ForbiddenError(msg)

            votes = [*wish.cost_votes, CostVote(user_id=approver_id, suggested_cost=suggested_cost)]
            data: dict = {
                "approved_by": [*wish.approved_by, approver_id],
                "cost_votes": [v.model_dump() for v in votes],
            }
            activated = len(data["approved_by"]) >= Constants.WISH_APPROVAL_QUORUM
            if activated:
                data["cost"] = reward_calculator.average_cost([v.suggested_cost for v in votes])
                data["status"] = WishStatus.ACTIVE
                data["approved_at"] = to_iso(now)

            wish = await _swap(wish=wish, data=data, action="approve")

        logger.info(
            "User %s approved wish %s (%d/%d)",
            approver_id,
            wish.id,
            len(wish.approved_by),
            Constants.WISH_APPROVAL_QUORUM,
        )

    if activated:
        logger.info("Wish %s activated at cost %d", wish.id, wish.cost)
        await notification_service.notify_wish_activated(wish=wish)
    return wish


async def complete_wish(*, wish_id: str, actor_id: str, now: datetime | None = None) -> Wish:
    """Creator redeems an active wish; its cost is debited atomically.

    Raises:
        NotFoundError: If the wish does not exist
        InvalidTransitionError: If the wish is not active
        ForbiddenError: If the actor is not the creator
        InsufficientFundsError: If the creator cannot afford the cost (nothing is debited)
    """
    with span("wish_service.complete_wish"):
        now = now or utc_now()
        async with db_client.transaction():
            wish = await get_wish(wish_id=wish_id)
            if wish.status != WishStatus.ACTIVE:
                msg = f"Cannot complete: wish {wish.id} is {wish.status}"
                raise InvalidTransitionError(msg)
            if actor_id != wish.created_by:
                msg = "Only the creator can redeem a wish"
                raise ForbiddenError(msg)

            creator = await user_service.get_user(user_id=actor_id)
            if creator.points < wish.cost:
                msg = f"Wish costs {wish.cost} points but user {actor_id} has {creator.points}"
                raise InsufficientFundsError(msg)

            wish = await _swap(
                wish=wish,
                data={"status": WishStatus.COMPLETED, "completed_at": to_iso(now)},
                action="complete",
            )
            await user_service.increment_balance(user_id=actor_id, points=-wish.cost)

        logger.info("User %s redeemed wish %s for %d points", actor_id, wish.id, wish.cost)

    await achievement_service.evaluate_achievements_safely(user_id=actor_id, now=now)
    return wish


async def cancel_wish(*, wish_id: str, actor_id: str, now: datetime | None = None) -> Wish:
    """Creator withdraws a wish that is still awaiting approval, whatever votes it has.

    Raises:
        NotFoundError: If the wish does not exist
        InvalidTransitionError: If the wish is not awaiting approval
        ForbiddenError: If the actor is not the creator
    """
    with span("wish_service.cancel_wish"):
        now = now or utc_now()
        async with db_client.transaction():
            wish = await get_wish(wish_id=wish_id)
            if wish.status != WishStatus.PENDING_APPROVAL:
                msg = f"Cannot cancel: wish {wish.id} is {wish.status}"
                raise InvalidTransitionError(msg)
            if actor_id != wish.created_by:
                msg = "Only the creator can cancel a wish"
                raise ForbiddenError(msg)

            wish = await _swap(
                wish=wish,
                data={"status": WishStatus.CANCELLED, "cancelled_at": to_iso(now)},
                action="cancel",
            )

        logger.info("User %s cancelled wish %s with %d vote(s)", actor_id, wish.id, len(wish.approved_by))
        return wish


async def list_wishes(
    *,
    group_id: str | None = None,
    created_by: str | None = None,
    status: WishStatus | None = None,
) -> list[Wish]:
    """List wishes matching every given filter, newest first."""
    filters = []
    if group_id:
        filters.append(f'group_id = "{db_client.sanitize_param(group_id)}"')
    if created_by:
        filters.append(f'created_by = "{db_client.sanitize_param(created_by)}"')
    if status:
        filters.append(f'status = "{status}"')
    records = await db_client.list_all_records(
        collection="wishes", filter_query=" && ".join(filters), sort="created_at DESC"
    )
    return [Wish.model_validate(r) for r in records]


async def list_wishes_awaiting_vote(*, group_id: str, voter_id: str) -> list[Wish]:
    """Wishes in the group the voter may still approve (not their own, not yet voted)."""
    pending = await list_wishes(group_id=group_id, status=WishStatus.PENDING_APPROVAL)
    return [w for w in pending if w.created_by != voter_id and voter_id not in w.approved_by]
