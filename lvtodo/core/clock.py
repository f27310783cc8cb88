"""Timestamp helpers.

All timestamps are stored as timezone-aware UTC ISO-8601 strings with a fixed
microsecond precision so that lexicographic order matches chronological order
in store filters and sorts.
"""

from datetime import UTC, datetime


def utc_now() -> datetime:
    return datetime.now(UTC)


def to_iso(value: datetime) -> str:
    """Serialize a datetime as a UTC ISO string (naive values are taken as UTC)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def parse_iso(value: str | datetime) -> datetime:
    """Parse an ISO string (``Z`` suffix accepted) into an aware UTC datetime."""
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)
