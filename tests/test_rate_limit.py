import asyncio

import pytest

from bookmind.ai_feature.rate_limit import RateLimiter
from bookmind.core import background
from bookmind.core.cache import BoundedCache, MemoryCacheStore


class HangingIncrementStore(MemoryCacheStore):
    async def incr(self, key, ttl):
        await asyncio.sleep(0.3)
        return 999


@pytest.mark.asyncio
async def test_exactly_ceiling_calls_are_admitted():
    limiter = RateLimiter(BoundedCache(MemoryCacheStore()), max_calls=4, window_seconds=60)

    decisions = [await limiter.admit(7) for _ in range(6)]

    assert decisions == [True, True, True, True, False, False]


@pytest.mark.asyncio
async def test_budgets_are_per_principal():
    limiter = RateLimiter(BoundedCache(MemoryCacheStore()), max_calls=1, window_seconds=60)

    assert await limiter.admit(1) is True
    assert await limiter.admit(1) is False
    assert await limiter.admit(2) is True


@pytest.mark.asyncio
async def test_window_resets_when_counter_expires():
    now = [0.0]
    store = MemoryCacheStore(clock=lambda: now[0])
    limiter = RateLimiter(BoundedCache(store), max_calls=2, window_seconds=60)

    assert [await limiter.admit(1) for _ in range(3)] == [True, True, False]

    now[0] += 61
    assert await limiter.admit(1) is True


@pytest.mark.asyncio
async def test_fails_open_when_cache_is_slow(caplog):
    limiter = RateLimiter(
        BoundedCache(HangingIncrementStore(), timeout_seconds=0.02),
        max_calls=1,
        window_seconds=60,
    )

    # The store would say 999, but it answers too late to count
    assert await limiter.admit(1) is True
    assert await limiter.admit(1) is True
    assert "allowing request" in caplog.text
    await background.drain()


@pytest.mark.asyncio
async def test_uses_rate_key_for_principal():
    store = MemoryCacheStore()
    limiter = RateLimiter(BoundedCache(store), max_calls=4, window_seconds=60)

    await limiter.admit(42)

    assert await store.get("rate:42") == "1"
