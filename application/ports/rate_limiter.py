"""
Rate limiter and idempotency store ports.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    retry_after: int = 0


class RateLimiterPort(Protocol):
    """Counts hits per key inside a window of ``window_seconds``."""

    async def hit(self, key: str) -> RateLimitDecision: ...


class IdempotencyStorePort(Protocol):
    """Claim-once markers with a TTL.

    ``claim`` returns True only for the first caller of a key within the TTL;
    ``release`` lets a failed attempt be retried.
    """

    async def claim(self, key: str, ttl_seconds: int) -> bool: ...

    async def release(self, key: str) -> None: ...


__all__ = ["RateLimitDecision", "RateLimiterPort", "IdempotencyStorePort"]
