"""Analytics service for user statistics and group leaderboards.

Key Concepts:
- Completion: a ``confirmed`` history record. Completed-but-unconfirmed tasks
  do not count, since the assigner may still dispute them.
- Streak: consecutive UTC calendar days with at least one confirmation. The
  current streak stays alive through today if the user's last confirmation
  was yesterday.
- Leaderboard: group members ranked by points earned from confirmations in
  the period, cached in Redis and invalidated on every confirmation.
"""

import json
import logging
from datetime import date, datetime, timedelta

from pydantic import ValidationError

from lvtodo.core import db_client
from lvtodo.core.clock import parse_iso, utc_now
from lvtodo.core.config import Constants
from lvtodo.core.errors import NotFoundError
from lvtodo.core.logging import span
from lvtodo.core.redis_client import redis_client
from lvtodo.domain.history import HistoryAction
from lvtodo.domain.wish import WishStatus
from lvtodo.models.service_models import LeaderboardEntry, UserStatistics
from lvtodo.services import history_service, reward_calculator, user_service


logger = logging.getLogger(__name__)

_CACHE_KEY_PREFIX = "lvtodo:leaderboard"


def compute_streaks(days: set[date], today: date) -> tuple[int, int]:
    """Return ``(current_streak, longest_streak)`` for a set of active days."""
    if not days:
        return 0, 0

    longest = 0
    run = 0
    previous: date | None = None
    for day in sorted(days):
        run = run + 1 if previous is not None and day - previous == timedelta(days=1) else 1
        longest = max(longest, run)
        previous = day

    anchor = today if today in days else today - timedelta(days=1)
    current = 0
    while anchor in days:
        current += 1
        anchor -= timedelta(days=1)

    return current, longest


async def count_completed_wishes(*, user_id: str) -> int:
    records = await db_client.list_all_records(
        collection="wishes",
        filter_query=f'created_by = "{db_client.sanitize_param(user_id)}" && status = "{WishStatus.COMPLETED}"',
    )
    return len(records)


async def get_user_statistics(*, user_id: str, now: datetime | None = None) -> UserStatistics:
    """Derive completion, lateness, earnings and streak statistics from history.

    Raises:
        NotFoundError: If the user does not exist
    """
    with span("analytics_service.get_user_statistics"):
        now = now or utc_now()
        user = await user_service.get_user(user_id=user_id)
        confirmations = await history_service.list_for_user(user_id=user_id, action=HistoryAction.CONFIRMED)

        tasks_completed = len(confirmations)
        tasks_late = sum(1 for h in confirmations if h.metadata.is_late)
        on_time_percentage = (tasks_completed - tasks_late) / tasks_completed * 100 if tasks_completed else 0.0
        days = {parse_iso(h.timestamp).date() for h in confirmations}
        current_streak, longest_streak = compute_streaks(days, now.date())

        return UserStatistics(
            user_id=user.id,
            display_name=user.display_name,
            level=reward_calculator.level(user.xp),
            xp=user.xp,
            points=user.points,
            tasks_completed=tasks_completed,
            tasks_late=tasks_late,
            on_time_percentage=round(on_time_percentage, 1),
            points_earned=sum(h.metadata.points or 0 for h in confirmations),
            xp_earned=sum(h.metadata.xp or 0 for h in confirmations),
            current_streak=current_streak,
            longest_streak=longest_streak,
            wishes_completed=await count_completed_wishes(user_id=user_id),
        )


async def invalidate_leaderboard_cache(*, group_id: str | None = None) -> None:
    """Drop cached leaderboards for one group (or all groups).

    Failures are logged but never raised; a stale leaderboard for up to the
    cache TTL is acceptable.
    """
    try:
        pattern = f"{_CACHE_KEY_PREFIX}:{group_id or '*'}:*"
        keys = await redis_client.keys(pattern)
        if not keys:
            logger.debug("No leaderboard cache entries to invalidate")
            return
        if await redis_client.delete_with_retry(*keys):
            logger.info("Invalidated %d leaderboard cache entries", len(keys))
        else:
            logger.warning("Failed to invalidate %d cache entries, queued for retry", len(keys))
    except Exception as e:
        logger.warning("Failed to invalidate leaderboard cache: %s", e)


async def _read_cached_leaderboard(cache_key: str) -> list[LeaderboardEntry] | None:
    cached_value = await redis_client.get(cache_key)
    if not cached_value:
        return None
    try:
        return [LeaderboardEntry(**entry) for entry in json.loads(cached_value)]
    except (json.JSONDecodeError, ValidationError) as e:
        logger.warning("Failed to deserialize cached leaderboard: %s", e)
        return None


async def get_group_leaderboard(
    *,
    group_id: str,
    period_days: int = 30,
    now: datetime | None = None,
) -> list[LeaderboardEntry]:
    """Rank the group's members by points earned from confirmations in the period.

    Raises:
        NotFoundError: If the group does not exist
    """
    cache_key = f"{_CACHE_KEY_PREFIX}:{group_id}:{period_days}"
    cached = await _read_cached_leaderboard(cache_key)
    if cached is not None:
        logger.debug("Returning cached leaderboard for group %s (%d days)", group_id, period_days)
        return cached

    with span("analytics_service.get_group_leaderboard"):
        try:
            group = await db_client.get_record(collection="groups", record_id=group_id)
        except KeyError as e:
            msg = f"Group not found: {group_id}"
            raise NotFoundError(msg) from e

        cutoff = (now or utc_now()) - timedelta(days=period_days)
        confirmations = await history_service.list_for_group(
            group_id=group_id, action=HistoryAction.CONFIRMED, since=cutoff
        )

        points_by_user: dict[str, int] = dict.fromkeys(group["member_ids"], 0)
        completions_by_user: dict[str, int] = dict.fromkeys(group["member_ids"], 0)
        for entry in confirmations:
            if entry.user_id not in points_by_user:
                continue  # former member
            points_by_user[entry.user_id] += entry.metadata.points or 0
            completions_by_user[entry.user_id] += 1

        members = await user_service.get_users(user_ids=list(points_by_user))
        ranked = sorted(members, key=lambda u: (-points_by_user[u.id], -completions_by_user[u.id], u.display_name))
        leaderboard = [
            LeaderboardEntry(
                user_id=user.id,
                display_name=user.display_name,
                points_earned=points_by_user[user.id],
                tasks_completed=completions_by_user[user.id],
                rank=rank,
            )
            for rank, user in enumerate(ranked, start=1)
        ]

    payload = json.dumps([entry.model_dump() for entry in leaderboard])
    await redis_client.set(cache_key, payload, ttl_seconds=Constants.CACHE_TTL_LEADERBOARD_SECONDS)
    return leaderboard
