import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from infrastructure.external.cache.redis_client import RedisClient
from infrastructure.rate_limit import (
    InMemoryIdempotencyStore,
    InMemorySlidingWindowRateLimiter,
    RedisFixedWindowRateLimiter,
    RedisIdempotencyStore,
)


class _Clock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.mark.asyncio
async def test_sliding_window_limits_per_key():
    clock = _Clock()
    limiter = InMemorySlidingWindowRateLimiter(3, 60, clock=clock)

    decisions = [await limiter.hit("a") for _ in range(3)]
    assert [d.remaining for d in decisions] == [2, 1, 0]

    blocked = await limiter.hit("a")
    assert not blocked.allowed
    assert blocked.retry_after == 60
    assert (await limiter.hit("b")).allowed


@pytest.mark.asyncio
async def test_sliding_window_frees_slots_as_time_passes():
    clock = _Clock()
    limiter = InMemorySlidingWindowRateLimiter(2, 60, clock=clock)
    await limiter.hit("a")
    clock.now += 30
    await limiter.hit("a")

    clock.now += 20
    blocked = await limiter.hit("a")
    assert not blocked.allowed
    assert blocked.retry_after == 10

    clock.now += 10
    assert (await limiter.hit("a")).allowed


@pytest.mark.asyncio
async def test_idempotency_claim_expires_and_releases():
    clock = _Clock()
    store = InMemoryIdempotencyStore(clock=clock)

    assert await store.claim("k", 10)
    assert not await store.claim("k", 10)
    clock.now += 11
    assert await store.claim("k", 10)

    await store.release("k")
    assert await store.claim("k", 10)


class _StubRedis:
    """Just enough of redis.asyncio.Redis: string keys, counters with TTLs, and publish."""

    def __init__(self, *, down: bool = False):
        self.values = {}
        self.ttls = {}
        self.published = []
        self.down = down

    def _check(self):
        if self.down:
            raise RedisConnectionError("connection refused")

    async def set(self, key, value, ex=None, nx=False):
        self._check()
        if nx and key in self.values:
            return None
        self.values[key] = value
        if ex:
            self.ttls[key] = ex
        return True

    async def ttl(self, key):
        if key not in self.values:
            return -2
        return self.ttls.get(key, -1)

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.values.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed

    async def publish(self, channel, message):
        self._check()
        self.published.append((channel, message))
        return 1

    def pipeline(self, transaction=True):
        return _StubPipeline(self)


class _StubPipeline:
    def __init__(self, redis: _StubRedis):
        self._redis = redis
        self._commands = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        self._commands.clear()

    def incrby(self, key, amount):
        self._commands.append(("incrby", key, amount))

    def expire(self, key, seconds, nx=False):
        self._commands.append(("expire", key, seconds, nx))

    async def execute(self):
        self._redis._check()
        results = []
        for command in self._commands:
            if command[0] == "incrby":
                _, key, amount = command
                value = int(self._redis.values.get(key, 0)) + amount
                self._redis.values[key] = value
                results.append(value)
            else:
                _, key, seconds, nx = command
                if nx and key in self._redis.ttls:
                    results.append(False)
                else:
                    self._redis.ttls[key] = seconds
                    results.append(True)
        return results


@pytest.mark.asyncio
async def test_redis_fixed_window_blocks_over_limit():
    raw = _StubRedis()
    limiter = RedisFixedWindowRateLimiter(RedisClient(raw, namespace="test"), 2, 60)

    assert [(await limiter.hit("10.0.0.1")).remaining for _ in range(2)] == [1, 0]
    raw.ttls["test:ratelimit:10.0.0.1"] = 42

    blocked = await limiter.hit("10.0.0.1")
    assert not blocked.allowed
    assert blocked.retry_after == 42
    assert raw.values["test:ratelimit:10.0.0.1"] == 3
    assert (await limiter.hit("10.0.0.2")).allowed


@pytest.mark.asyncio
async def test_redis_fixed_window_falls_back_to_window_without_ttl():
    raw = _StubRedis()
    limiter = RedisFixedWindowRateLimiter(RedisClient(raw), 1, 30)
    await limiter.hit("a")
    raw.ttls.pop("ratelimit:a")

    assert (await limiter.hit("a")).retry_after == 30


@pytest.mark.asyncio
async def test_redis_idempotency_claim_and_release():
    raw = _StubRedis()
    store = RedisIdempotencyStore(RedisClient(raw, namespace="test"))

    assert await store.claim("order-1:200:150000.00", 3600)
    assert raw.ttls["test:idem:order-1:200:150000.00"] == 3600
    assert not await store.claim("order-1:200:150000.00", 3600)

    await store.release("order-1:200:150000.00")
    assert await store.claim("order-1:200:150000.00", 3600)


@pytest.mark.asyncio
async def test_redis_errors_propagate_to_callers():
    client = RedisClient(_StubRedis(down=True))

    with pytest.raises(RedisConnectionError):
        await RedisIdempotencyStore(client).claim("k", 60)
    with pytest.raises(RedisConnectionError):
        await RedisFixedWindowRateLimiter(client, 5, 60).hit("k")
    with pytest.raises(RedisConnectionError):
        await client.publish("orders", {"order_id": "order-1"})
