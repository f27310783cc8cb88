"""Pytest configuration and fixtures for unit tests."""

from dataclasses import dataclass
from datetime import UTC, datetime

import pytest

from lvtodo.domain.group import Group
from lvtodo.domain.user import User
from lvtodo.interface.push_sender import SendMessageResult
from lvtodo.services import group_service, user_service
from tests.unit.mocks import InMemoryDBClient


@pytest.fixture
def in_memory_db():
    """Provides a fresh InMemoryDBClient for each test."""
    return InMemoryDBClient()


@dataclass
class PushCall:
    topic: str
    title: str
    body: str


class PushRecorder:
    """Stands in for the push gateway and records every notification."""

    def __init__(self) -> None:
        self.calls: list[PushCall] = []
        self.fail = False

    async def send_push(self, *, topic: str, title: str, body: str, **_kwargs) -> SendMessageResult:
        self.calls.append(PushCall(topic=topic, title=title, body=body))
        if self.fail:
            return SendMessageResult(success=False, error="gateway down")
        return SendMessageResult(success=True, message_id=f"mock_{len(self.calls)}")

    def topics(self) -> list[str]:
        return [call.topic for call in self.calls]

    def clear(self) -> None:
        self.calls.clear()


async def _mock_invalidate_cache(**_kwargs) -> None:
    """Mock cache invalidation that does nothing."""


@pytest.fixture
def pushes():
    return PushRecorder()


@pytest.fixture
def patched_db(monkeypatch, in_memory_db, pushes):
    """Patches lvtodo.core.db_client functions to use InMemoryDBClient.

    Also patches the push gateway and leaderboard cache invalidation to avoid
    real HTTP calls and Redis round trips in unit tests.
    """
    for name in (
        "create_record",
        "get_record",
        "update_record",
        "update_record_if",
        "increment_record",
        "delete_record",
        "delete_records",
        "list_records",
        "get_first_record",
        "transaction",
    ):
        monkeypatch.setattr(f"lvtodo.core.db_client.{name}", getattr(in_memory_db, name))

    monkeypatch.setattr("lvtodo.interface.push_sender.send_push", pushes.send_push)
    monkeypatch.setattr(
        "lvtodo.services.analytics_service.invalidate_leaderboard_cache",
        _mock_invalidate_cache,
    )

    return in_memory_db


@pytest.fixture
def now() -> datetime:
    """Fixed reference time used as "now" by tests that pass explicit timestamps."""
    return datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


@dataclass
class Team:
    alice: User
    bob: User
    carol: User
    group: Group


@pytest.fixture
async def team(patched_db, pushes) -> Team:
    """Alice's group with Bob and Carol as members. Setup notifications are cleared."""
    alice = await user_service.create_user(display_name="Alice", email="alice@example.com")
    bob = await user_service.create_user(display_name="Bob", email="bob@example.com")
    carol = await user_service.create_user(display_name="Carol")

    group = await group_service.create_group(name="Flatmates", created_by=alice.id)
    await group_service.join_group(user_id=bob.id, invite_code=group.invite_code)
    group = await group_service.join_group(user_id=carol.id, invite_code=group.invite_code.lower())

    pushes.clear()
    return Team(alice=alice, bob=bob, carol=carol, group=group)
