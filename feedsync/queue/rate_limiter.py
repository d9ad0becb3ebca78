"""Sliding-window rate limiting shared by every worker of a queue."""

import asyncio
import logging
from typing import Optional
from uuid import uuid4

from .models import RateLimit, now_ms

logger = logging.getLogger(__name__)


class RateLimiter:
    """Grant at most ``limit.max`` permits per ``limit.duration_ms`` window.

    Permits are members of a sorted set scored by grant time, so every
    process pointed at the same Redis shares the budget.
    """

    def __init__(self, redis, key: str, limit: RateLimit) -> None:
        """Initialize rate limiter."""
        self.redis = redis
        self.key = key
        self.limit = limit

    async def try_acquire(self) -> tuple:
        """Return ``(permit, 0)`` on success or ``(None, wait_ms)`` when saturated."""
        now = now_ms()
        permit = f"{now}-{uuid4().hex}"

        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.zremrangebyscore(self.key, 0, now - self.limit.duration_ms)
            pipe.zadd(self.key, {permit: now})
            pipe.zcard(self.key)
            pipe.pexpire(self.key, self.limit.duration_ms)
            _, _, count, _ = await pipe.execute()

        if count <= self.limit.max:
            return permit, 0

        await self.redis.zrem(self.key, permit)
        oldest = await self.redis.zrange(self.key, 0, 0, withscores=True)
        if not oldest:
            return None, 1
        _, oldest_score = oldest[0]
        return None, max(1, int(oldest_score) + self.limit.duration_ms - now)

    async def acquire(self, stop_event: Optional[asyncio.Event] = None) -> Optional[str]:
        """Wait for a permit; None if ``stop_event`` fires first."""
        while True:
            permit, wait_ms = await self.try_acquire()
            if permit is not None:
                return permit

            logger.debug("Rate limit reached on %s, waiting %dms", self.key, wait_ms)
            if stop_event is None:
                await asyncio.sleep(wait_ms / 1000)
                continue
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=wait_ms / 1000)
                return None
            except asyncio.TimeoutError:
                continue

    async def release(self, permit: str) -> None:
        """Return an unused permit to the window."""
        await self.redis.zrem(self.key, permit)
