"""Per-user rate limiting for payment initiation.

The counter store is a small capability (``incr``/``reset``) with an
in-process implementation for single-instance deployments and tests, and a
Redis one for anything running more than one worker. The application holds
one store on ``app.state.rate_limit_store``.
"""

import logging
import time
from typing import Protocol

import redis.asyncio as redis
from fastapi import Depends, HTTPException, Request, status
from redis.exceptions import RedisError

from paperhub.auth.dependencies import get_current_active_user
from paperhub.config import settings
from paperhub.models.user import User

logger = logging.getLogger(__name__)


class RateLimitStore(Protocol):
    async def incr(self, key: str, window_seconds: int) -> int:
        """Increment ``key`` and return the new count. The window starts on the first hit."""
        ...

    async def reset(self, key: str) -> None: ...

    async def expire(self, key: str, seconds: int) -> None: ...


class InMemoryRateLimitStore:
    """Fixed-window counters kept in process memory."""

    max_keys = 10_000

    def __init__(self) -> None:
        self._counters: dict[str, tuple[int, float]] = {}

    async def incr(self, key: str, window_seconds: int) -> int:
        now = time.monotonic()
        if len(self._counters) > self.max_keys:
            self._evict_expired(now)
        count, expires_at = self._counters.get(key, (0, 0.0))
        if expires_at <= now:
            count, expires_at = 0, now + window_seconds
        count += 1
        self._counters[key] = (count, expires_at)
        return count

    async def reset(self, key: str) -> None:
        self._counters.pop(key, None)

    async def expire(self, key: str, seconds: int) -> None:
        if key in self._counters:
            count, _ = self._counters[key]
            self._counters[key] = (count, time.monotonic() + seconds)

    def _evict_expired(self, now: float) -> None:
        for key in [k for k, (_, expires_at) in self._counters.items() if expires_at <= now]:
            del self._counters[key]


class RedisRateLimitStore:
    """Fixed-window counters shared across workers through Redis."""

    def __init__(self, url: str) -> None:
        self._client = redis.Redis.from_url(url, decode_responses=True)

    async def incr(self, key: str, window_seconds: int) -> int:
        current = await self._client.incr(key)
        if current == 1:
            await self.expire(key, window_seconds)
        return current

    async def reset(self, key: str) -> None:
        await self._client.delete(key)

    async def expire(self, key: str, seconds: int) -> None:
        await self._client.expire(key, seconds)

    async def close(self) -> None:
        await self._client.aclose()


def create_rate_limit_store(backend: str, redis_url: str | None = None) -> RateLimitStore:
    if backend == "redis":
        logger.info("Using Redis rate limit store")
        return RedisRateLimitStore(redis_url or settings.redis_url)
    return InMemoryRateLimitStore()


class RateLimiter:
    """Dependency that allows ``attempts`` calls per user per window, then returns 429.

    Redis outages fail open so payments keep working.
    """

    def __init__(self, scope: str, attempts: int | None = None, window_seconds: int | None = None):
        self.scope = scope
        self.attempts = attempts
        self.window_seconds = window_seconds

    async def __call__(
        self,
        request: Request,
        user: User = Depends(get_current_active_user),
    ) -> None:
        attempts = self.attempts or settings.rate_limit_payment_attempts
        window = self.window_seconds or settings.rate_limit_window_seconds
        store: RateLimitStore = request.app.state.rate_limit_store
        key = f"rate:{self.scope}:{user.id}"

        try:
            current = await store.incr(key, window)
        except RedisError as e:
            logger.warning("Rate limit store unavailable, allowing request: %s", e)
            return

        if current > attempts:
            logger.warning("Rate limited user %s on %s (%s attempts)", user.id, self.scope, current)
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail={
                    "message": "Too many payment attempts. Please wait before trying again.",
                    "retry_after_seconds": window,
                },
                headers={"Retry-After": str(window)},
            )


payment_rate_limit = RateLimiter("payment")
