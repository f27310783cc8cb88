"""Pytest configuration and fixtures for integration tests against a real SQLite file."""

import pytest

from lvtodo.core import db_client
from lvtodo.core.config import settings


async def _noop_invalidate(**_kwargs) -> None:
    pass


@pytest.fixture
async def sqlite_db(tmp_path, monkeypatch):
    """Fresh SQLite database per test; push and cache side effects are disabled."""
    monkeypatch.setattr(settings, "sqlite_db_path", str(tmp_path / "lvtodo.db"))
    monkeypatch.setattr(settings, "push_gateway_url", None)
    monkeypatch.setattr("lvtodo.services.analytics_service.invalidate_leaderboard_cache", _noop_invalidate)

    await db_client.init_db()
    yield
    await db_client.close_connection()
