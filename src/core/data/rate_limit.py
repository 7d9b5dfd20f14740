"""Token-bucket guard for a rate-constrained upstream.

One RateLimiter models one physical budget. Build it once per process and
hand the same instance to every adapter that spends that budget.
"""
from aiolimiter import AsyncLimiter


class RateLimiter:

    def __init__(self, calls_per_period: int, period_seconds: float = 60.0):
        if calls_per_period <= 0:
            raise ValueError(f"calls_per_period must be positive, got {calls_per_period}")
        self.calls_per_period = calls_per_period
        self.period_seconds = period_seconds
        # capacity == calls_per_period; refills continuously
        self._bucket = AsyncLimiter(calls_per_period, period_seconds)

    def has_capacity(self, amount: float = 1) -> bool:
        return self._bucket.has_capacity(amount)

    async def acquire(self, amount: float = 1) -> None:
        """Suspend until `amount` tokens are available, then take them."""
        await self._bucket.acquire(amount)

    async def __aenter__(self) -> None:
        await self.acquire()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        return None
