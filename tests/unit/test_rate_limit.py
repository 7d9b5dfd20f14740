"""Unit tests for the shared token-bucket RateLimiter."""
import asyncio

import pytest

from src.core.data.rate_limit import RateLimiter


class TestRateLimiter:

    def test_rejects_non_positive_budget(self):
        with pytest.raises(ValueError):
            RateLimiter(0)

    @pytest.mark.asyncio
    async def test_burst_up_to_capacity_is_immediate(self):
        limiter = RateLimiter(5, 60)
        for _ in range(5):
            await asyncio.wait_for(limiter.acquire(), timeout=0.5)
        assert limiter.has_capacity() is False

    @pytest.mark.asyncio
    async def test_acquire_suspends_when_bucket_is_empty(self):
        limiter = RateLimiter(2, 60)
        await limiter.acquire()
        await limiter.acquire()

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(limiter.acquire(), timeout=0.1)

    @pytest.mark.asyncio
    async def test_refills_over_time(self):
        limiter = RateLimiter(10, 1)  # one token per 0.1s
        async with limiter:
            pass
        for _ in range(9):
            await limiter.acquire()
        await asyncio.wait_for(limiter.acquire(), timeout=0.5)
