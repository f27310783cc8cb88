"""Push/email gateway sender with rate limiting and retry logic."""

import asyncio
import logging
from collections import defaultdict
from datetime import datetime, timedelta

import httpx
from pydantic import BaseModel, Field

from lvtodo.core.config import constants, settings


logger = logging.getLogger(__name__)


# HTTP status code constants for error handling
HTTP_CLIENT_ERROR_START = 400
HTTP_CLIENT_ERROR_END = 500


class SendMessageResult(BaseModel):
    """Result of handing a notification to the gateway."""

    success: bool = Field(..., description="Whether the gateway accepted the notification")
    message_id: str | None = Field(None, description="Gateway message ID if accepted")
    error: str | None = Field(None, description="Error message if failed")


class RateLimiter:
    """In-memory per-topic rate limiter for gateway calls."""

    def __init__(self) -> None:
        self._requests: dict[str, list[datetime]] = defaultdict(list)

    def can_send(self, topic: str) -> bool:
        cutoff = datetime.now() - timedelta(minutes=1)
        self._requests[topic] = [ts for ts in self._requests[topic] if ts > cutoff]
        return len(self._requests[topic]) < constants.MAX_REQUESTS_PER_MINUTE

    def record_request(self, topic: str) -> None:
        self._requests[topic].append(datetime.now())


# Global rate limiter instance (in-memory)
rate_limiter = RateLimiter()


def user_topic(user_id: str) -> str:
    return f"user_{user_id}"


def group_topic(group_id: str) -> str:
    return f"group_{group_id}"


async def _post_notification(
    *,
    payload: dict[str, str],
    max_retries: int,
    retry_delay: float,
) -> SendMessageResult:
    """Core send logic: 4xx is final, 5xx and transport errors are retried."""
    url = f"{settings.push_gateway_url}/api/notify"
    headers = {"Content-Type": "application/json"}
    if settings.push_gateway_api_key:
        headers["X-Api-Key"] = settings.push_gateway_api_key

    last_error = "Max retries exceeded"
    for attempt in range(max_retries):
        try:
            async with httpx.AsyncClient(timeout=constants.API_TIMEOUT_SECONDS) as client:
                response = await client.post(url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            last_error = f"Failed after retries: {e!s}"
        else:
            if response.is_success:
                body = response.json() if response.content else {}
                return SendMessageResult(success=True, message_id=body.get("id"))
            if HTTP_CLIENT_ERROR_START <= response.status_code < HTTP_CLIENT_ERROR_END:
                return SendMessageResult(success=False, error=f"Client error: {response.text}")
            last_error = f"Server error: {response.status_code}"

        if attempt < max_retries - 1:
            await asyncio.sleep(retry_delay * (2**attempt))

    return SendMessageResult(success=False, error=last_error)


async def send_push(
    *,
    topic: str,
    title: str,
    body: str,
    max_retries: int = 3,
    retry_delay: float = 1.0,
) -> SendMessageResult:
    """Send a notification to a topic (``user_<id>`` or ``group_<id>``)."""
    if not settings.push_gateway_url:
        logger.debug("Push gateway not configured, dropping notification for %s", topic)
        return SendMessageResult(success=False, error="Push gateway not configured")

    if not rate_limiter.can_send(topic):
        return SendMessageResult(success=False, error="Rate limit exceeded. Please try again later.")

    rate_limiter.record_request(topic)
    payload = {"topic": topic, "title": title, "body": body}
    return await _post_notification(payload=payload, max_retries=max_retries, retry_delay=retry_delay)
