"""Redis client for leaderboard caching and scheduler job locks."""

import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any, TypeVar

from redis.asyncio import Redis
from redis.asyncio.connection import ConnectionPool
from redis.exceptions import RedisError

from lvtodo.core.config import Constants, settings


logger = logging.getLogger(__name__)

T = TypeVar("T")


async def _with_retry(operation: Callable[[], Awaitable[T]], *, max_retries: int = 3, base_delay: float = 0.1) -> T:
    """Run a Redis operation, retrying RedisError with exponential backoff."""
    for attempt in range(max_retries):
        try:
            return await operation()
        except RedisError as e:
            if attempt == max_retries - 1:
                logger.error("Redis operation failed after %d attempts: %s", max_retries, e)
                raise
            delay = base_delay * (2**attempt)
            logger.warning(
                "Redis operation failed (attempt %d/%d): %s. Retrying in %.2fs", attempt + 1, max_retries, e, delay
            )
            await asyncio.sleep(delay)
    msg = "max_retries must be positive"
    raise ValueError(msg)


class RedisClient:
    """Async Redis client wrapper; every call degrades to a no-op when Redis is not configured."""

    def __init__(self, url: str | None = None) -> None:
        self._client: Redis | None = None
        self._pool: ConnectionPool | None = None
        self._url = url if url is not None else settings.redis_url
        self._enabled = bool(self._url)

        self._last_successful_operation: datetime | None = None
        self._failure_count = 0
        self._total_operations = 0

        # Cache invalidations that could not be applied while Redis was down
        self._invalidation_queue: deque[tuple[str, ...]] = deque(maxlen=Constants.REDIS_INVALIDATION_QUEUE_MAXLEN)

        if self._enabled and self._url:
            try:
                self._pool = ConnectionPool.from_url(
                    self._url,
                    decode_responses=True,
                    max_connections=Constants.REDIS_MAX_CONNECTIONS,
                )
                self._client = Redis(connection_pool=self._pool)
                logger.info("Redis client initialized with URL: %s", self._url)
            except RedisError as e:
                logger.warning("Failed to initialize Redis client: %s. Running without cache.", e)
                self._enabled = False
                self._client = None
                self._pool = None
        else:
            logger.info("Redis URL not configured. Running without cache.")

    @property
    def is_available(self) -> bool:
        """Check if Redis is available."""
        return self._enabled and self._client is not None

    def get_health_status(self) -> dict[str, Any]:
        return {
            "enabled": self._enabled,
            "connected": self.is_available,
            "last_successful_operation": self._last_successful_operation.isoformat()
            if self._last_successful_operation
            else None,
            "failure_count": self._failure_count,
            "total_operations": self._total_operations,
            "pending_invalidations": len(self._invalidation_queue),
        }

    async def _run(self, name: str, key: str, operation: Callable[[Redis], Awaitable[T]], default: T) -> T:
        """Execute one command, tracking health and returning ``default`` on any Redis failure."""
        if not self.is_available or not self._client:
            return default

        self._total_operations += 1
        try:
            result = await operation(self._client)
        except RedisError as e:
            self._failure_count += 1
            logger.warning("Redis %s error for key %s: %s", name, key, e)
            return default
        self._last_successful_operation = datetime.now(UTC)
        return result

    async def get(self, key: str) -> str | None:
        return await self._run("GET", key, lambda c: c.get(key), None)

    async def set(self, key: str, value: str, ttl_seconds: int) -> bool:
        """Set value with TTL. Returns True if successful."""
        return await self._run("SET", key, lambda c: _truthy(c.setex(key, ttl_seconds, value)), False)

    async def set_if_not_exists(self, key: str, value: str, ttl_seconds: int) -> bool | None:
        """Atomic SET NX EX.

        Returns True if this call created the key, False if it already existed,
        and None when Redis could not be reached.
        """
        return await self._run("SETNX", key, lambda c: _truthy(c.set(key, value, ex=ttl_seconds, nx=True)), None)

    async def delete(self, *keys: str) -> bool:
        if not keys:
            return False
        return await self._run("DELETE", ",".join(keys), lambda c: _truthy(c.delete(*keys), always=True), False)

    async def increment(self, key: str) -> int | None:
        return await self._run("INCR", key, lambda c: c.incr(key), None)

    async def expire(self, key: str, ttl_seconds: int) -> bool:
        return await self._run("EXPIRE", key, lambda c: _truthy(c.expire(key, ttl_seconds), always=True), False)

    async def keys(self, pattern: str) -> list[str]:
        """Find keys matching a pattern (e.g., 'lvtodo:leaderboard:7:*')."""
        found = await self._run("KEYS", pattern, lambda c: c.keys(pattern), [])
        return [k.decode() if isinstance(k, bytes) else k for k in found]

    async def delete_with_retry(self, *keys: str) -> bool:
        """Delete keys with retries; queue them for later when Redis stays unreachable."""
        if not keys:
            return False
        if not self.is_available or not self._client:
            self._invalidation_queue.append(keys)
            logger.info("Redis unavailable, queued %d key(s) for invalidation", len(keys))
            return False

        client = self._client
        try:
            await _with_retry(lambda: client.delete(*keys))
        except RedisError as e:
            self._failure_count += 1
            self._invalidation_queue.append(keys)
            logger.error("Redis DELETE failed after retries: %s. Queued for later.", e)
            return False

        self._last_successful_operation = datetime.now(UTC)
        await self._process_invalidation_queue()
        return True

    async def _process_invalidation_queue(self) -> None:
        processed = 0
        while self._invalidation_queue and self._client:
            keys = self._invalidation_queue.popleft()
            try:
                await self._client.delete(*keys)
            except RedisError as e:
                self._invalidation_queue.appendleft(keys)
                logger.warning("Failed to process queued invalidation: %s", e)
                break
            processed += 1
        if processed:
            logger.info("Processed %d queued cache invalidations", processed)

    async def ping(self) -> bool:
        return await self._run("PING", "-", lambda c: _truthy(c.ping()), False)

    async def close(self) -> None:
        """Close Redis connection."""
        if self._client:
            await self._client.aclose()
            logger.info("Redis client closed")


async def _truthy(awaitable: Awaitable[Any], *, always: bool = False) -> bool:
    result = await awaitable
    return True if always else bool(result)


# Global Redis client instance
redis_client = RedisClient()
