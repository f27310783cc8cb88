"""Tests for the push gateway sender using httpx."""

from collections.abc import Generator
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from lvtodo.core.config import settings
from lvtodo.interface.push_sender import RateLimiter, group_topic, send_push, user_topic


@pytest.fixture(autouse=True)
def mock_asyncio_sleep() -> Generator[AsyncMock, None, None]:
    """Mock asyncio.sleep to avoid actual delays in retry tests."""
    with patch("lvtodo.interface.push_sender.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
        yield mock_sleep


@pytest.fixture(autouse=True)
def gateway(monkeypatch):
    monkeypatch.setattr(settings, "push_gateway_url", "http://push.test")
    monkeypatch.setattr(settings, "push_gateway_api_key", "key-123")


def _response(status_code: int, *, json_body: dict | None = None, text: str = "") -> MagicMock:
    response = MagicMock(spec=httpx.Response)
    response.status_code = status_code
    response.is_success = 200 <= status_code < 300
    response.content = b"{}" if json_body is not None else b""
    response.json.return_value = json_body
    response.text = text
    return response


@pytest.mark.unit
class TestTopics:
    def test_topic_names(self) -> None:
        assert user_topic("42") == "user_42"
        assert group_topic("7") == "group_7"


@pytest.mark.unit
class TestRateLimiter:
    def test_can_send_when_under_limit(self) -> None:
        limiter = RateLimiter()
        for _ in range(5):
            limiter.record_request("user_1")
        assert limiter.can_send("user_1") is True

    def test_limit_is_per_topic(self) -> None:
        limiter = RateLimiter()
        for _ in range(60):
            limiter.record_request("user_1")

        assert limiter.can_send("user_1") is False
        assert limiter.can_send("user_2") is True


@pytest.mark.unit
class TestSendPush:
    async def test_success(self) -> None:
        with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as mock_post:
            mock_post.return_value = _response(200, json_body={"id": "msg_1"})

            result = await send_push(topic="user_100", title="New task", body="Hello")

        assert result.success is True
        assert result.message_id == "msg_1"
        assert mock_post.call_args.args[0] == "http://push.test/api/notify"
        assert mock_post.call_args.kwargs["json"] == {"topic": "user_100", "title": "New task", "body": "Hello"}
        assert mock_post.call_args.kwargs["headers"]["X-Api-Key"] == "key-123"

    async def test_client_error_is_not_retried(self) -> None:
        with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as mock_post:
            mock_post.return_value = _response(400, text="Bad Request")

            result = await send_push(topic="user_101", title="t", body="b")

        assert result.success is False
        assert "Bad Request" in result.error
        assert mock_post.call_count == 1

    async def test_server_error_is_retried(self, mock_asyncio_sleep) -> None:
        with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as mock_post:
            mock_post.return_value = _response(503)

            result = await send_push(topic="user_102", title="t", body="b", max_retries=3, retry_delay=1.0)

        assert result.success is False
        assert result.error == "Server error: 503"
        assert mock_post.call_count == 3
        assert [c.args[0] for c in mock_asyncio_sleep.call_args_list] == [1.0, 2.0]

    async def test_transport_error_is_retried(self) -> None:
        with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as mock_post:
            mock_post.side_effect = httpx.ConnectError("refused")

            result = await send_push(topic="user_103", title="t", body="b", max_retries=2)

        assert result.success is False
        assert result.error.startswith("Failed after retries")
        assert mock_post.call_count == 2

    async def test_unconfigured_gateway_drops_notification(self, monkeypatch) -> None:
        monkeypatch.setattr(settings, "push_gateway_url", None)
        with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as mock_post:
            result = await send_push(topic="user_104", title="t", body="b")

        assert result.success is False
        mock_post.assert_not_called()

    @patch("lvtodo.interface.push_sender.rate_limiter")
    async def test_rate_limited(self, mock_rate_limiter: MagicMock) -> None:
        mock_rate_limiter.can_send.return_value = False

        result = await send_push(topic="user_105", title="t", body="b")

        assert result.success is False
        assert "Rate limit exceeded" in result.error
