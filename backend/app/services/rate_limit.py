"""Fixed-window rate limiters for per-user endpoint quotas.

Keys are ``"{user_id}:{route}"``. The in-memory limiter is per process, so with
N instances the effective quota is N times the configured limit. The Redis
limiter shares one counter between instances.
"""

import logging
import math
import time
from typing import Callable, Protocol

import redis.asyncio as redis
from pydantic import BaseModel

from app.config import get_settings

logger = logging.getLogger(__name__)


class RateLimitDecision(BaseModel):
    allowed: bool
    retry_after: int = 0  # seconds until the window resets


class RateLimiter(Protocol):
    async def hit(self, key: str, limit: int, window_seconds: int) -> RateLimitDecision: ...


class InMemoryRateLimiter:
    """Process-local fixed window: the first hit opens a window, it resets on expiry."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._windows: dict[str, tuple[int, float]] = {}

    async def hit(self, key: str, limit: int, window_seconds: int) -> RateLimitDecision:
        now = self._clock()
        self._purge(now)

        count, reset_at = self._windows.get(key, (0, now + window_seconds))
        if count >= limit:
            return RateLimitDecision(allowed=False, retry_after=max(1, math.ceil(reset_at - now)))

        self._windows[key] = (count + 1, reset_at)
        return RateLimitDecision(allowed=True)

    def reset(self) -> None:
        self._windows.clear()

    def _purge(self, now: float) -> None:
        expired = [key for key, (_, reset_at) in self._windows.items() if reset_at <= now]
        for key in expired:
            del self._windows[key]


class RedisRateLimiter:
    """Fixed window shared between instances via ``INCR`` + ``EXPIRE``."""

    def __init__(self, redis_url: str | None = None, prefix: str = "ratelimit"):
        self.redis_url = redis_url or get_settings().redis_url
        self.prefix = prefix
        self._redis: redis.Redis | None = None

    async def _get_redis(self) -> redis.Redis:
        if self._redis is None:
            self._redis = redis.from_url(self.redis_url, decode_responses=True)
        return self._redis

    async def hit(self, key: str, limit: int, window_seconds: int) -> RateLimitDecision:
        r = await self._get_redis()
        redis_key = f"{self.prefix}:{key}"

        pipe = r.pipeline()
        pipe.incr(redis_key)
        pipe.ttl(redis_key)
        count, ttl = await pipe.execute()

        if ttl is None or ttl < 0:
            # First hit in this window (or the key lost its expiry)
            await r.expire(redis_key, window_seconds)
            ttl = window_seconds

        if count > limit:
            return RateLimitDecision(allowed=False, retry_after=max(1, int(ttl)))
        return RateLimitDecision(allowed=True)

    async def close(self):
        if self._redis:
            await self._redis.close()


_default_limiter: RateLimiter | None = None


def get_rate_limiter() -> RateLimiter:
    """FastAPI dependency returning the configured limiter (one per process)."""
    global _default_limiter
    if _default_limiter is None:
        backend = get_settings().rate_limit_backend
        if backend == "redis":
            _default_limiter = RedisRateLimiter()
        else:
            if backend != "memory":
                logger.warning("Unknown rate_limit_backend %r, using in-memory limiter", backend)
            _default_limiter = InMemoryRateLimiter()
    return _default_limiter
