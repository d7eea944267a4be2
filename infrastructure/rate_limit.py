"""
限流器与幂等标记实现

- 进程内：滑动窗口（deque 记录命中时间），asyncio.Lock 保护
- Redis：固定窗口计数器（INCR + EXPIRE），多副本共享
"""
from __future__ import annotations

import asyncio
import math
import time
from collections import deque
from typing import Callable, Deque, Dict

from application.ports.rate_limiter import (
    IdempotencyStorePort,
    RateLimitDecision,
    RateLimiterPort,
)
from core.logging_config import get_logger
from infrastructure.external.cache import RedisClient


logger = get_logger(__name__)


class InMemorySlidingWindowRateLimiter(RateLimiterPort):
    """单进程滑动窗口限流"""

    def __init__(
        self,
        limit: int,
        window_seconds: int = 60,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._limit = limit
        self._window = window_seconds
        self._clock = clock
        self._hits: Dict[str, Deque[float]] = {}
        self._lock = asyncio.Lock()

    async def hit(self, key: str) -> RateLimitDecision:
        now = self._clock()
        async with self._lock:
            bucket = self._hits.setdefault(key, deque())
            while bucket and bucket[0] <= now - self._window:
                bucket.popleft()
            if len(bucket) >= self._limit:
                retry_after = max(1, math.ceil(bucket[0] + self._window - now))
                return RateLimitDecision(False, self._limit, 0, retry_after)
            bucket.append(now)
            self._prune(now)
            return RateLimitDecision(True, self._limit, self._limit - len(bucket))

    def _prune(self, now: float) -> None:
        # 清理整窗无命中的来源，避免长期运行时字典无限增长
        stale = [k for k, b in self._hits.items() if not b or b[-1] <= now - self._window]
        for k in stale:
            del self._hits[k]


class RedisFixedWindowRateLimiter(RateLimiterPort):
    """跨副本固定窗口限流"""

    def __init__(self, redis: RedisClient, limit: int, window_seconds: int = 60, prefix: str = "ratelimit") -> None:
        self._redis = redis
        self._limit = limit
        self._window = window_seconds
        self._prefix = prefix

    async def hit(self, key: str) -> RateLimitDecision:
        counter_key = f"{self._prefix}:{key}"
        count = await self._redis.incr(counter_key, ttl=self._window)
        if count > self._limit:
            ttl = await self._redis.ttl(counter_key)
            retry_after = ttl if ttl > 0 else self._window
            return RateLimitDecision(False, self._limit, 0, retry_after)
        return RateLimitDecision(True, self._limit, self._limit - count)


class InMemoryIdempotencyStore(IdempotencyStorePort):
    """单进程幂等标记，带过期时间"""

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._expires: Dict[str, float] = {}
        self._lock = asyncio.Lock()

    async def claim(self, key: str, ttl_seconds: int) -> bool:
        now = self._clock()
        async with self._lock:
            expires_at = self._expires.get(key)
            if expires_at is not None and expires_at > now:
                return False
            self._expires[key] = now + ttl_seconds
            if len(self._expires) > 10000:
                self._expires = {k: v for k, v in self._expires.items() if v > now}
            return True

    async def release(self, key: str) -> None:
        async with self._lock:
            self._expires.pop(key, None)


class RedisIdempotencyStore(IdempotencyStorePort):
    """基于 SET NX EX 的幂等标记"""

    def __init__(self, redis: RedisClient, prefix: str = "idem") -> None:
        self._redis = redis
        self._prefix = prefix

    async def claim(self, key: str, ttl_seconds: int) -> bool:
        claimed = await self._redis.set(f"{self._prefix}:{key}", 1, ttl=ttl_seconds, nx=True)
        if not claimed:
            logger.debug("idempotency_key_exists", key=key)
        return claimed

    async def release(self, key: str) -> None:
        await self._redis.delete(f"{self._prefix}:{key}")


__all__ = [
    "InMemorySlidingWindowRateLimiter",
    "RedisFixedWindowRateLimiter",
    "InMemoryIdempotencyStore",
    "RedisIdempotencyStore",
]
