"""Abstract ProviderAdapter — every upstream market data source implements this.

An adapter operation is always: cache lookup → (on miss) exactly one upstream
call → normalise → write-through → return. A cache hit never touches the
network or the rate limiter.
"""
import asyncio
from abc import ABC, abstractmethod
from typing import Any

import aiohttp
import structlog
from pydantic import BaseModel

from src.core.data.cache.store import CacheStore
from src.core.data.models import Quote
from src.core.data.rate_limit import RateLimiter
from src.core.errors import MalformedCache, ProviderUnavailable, RateLimited

logger = structlog.get_logger()

RATE_LIMIT_STATUSES = {418, 429}


class ProviderAdapter(ABC):

    def __init__(
        self,
        cache: CacheStore,
        api_key: str = "",
        base_url: str = "",
        timeout_seconds: float = 10.0,
        limiter: RateLimiter | None = None,
    ):
        self._cache = cache
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._limiter = limiter

    @property
    @abstractmethod
    def name(self) -> str:
        """Short key used in cache keys: 'av', 'finnhub', 'binance'"""
        ...

    @property
    @abstractmethod
    def source(self) -> str:
        """Tag stamped on every payload: 'ALPHAVANTAGE', 'FINNHUB', ..."""
        ...

    @abstractmethod
    async def get_quote(self, symbol: str) -> Quote:
        ...

    async def get_overview(self, symbol: str) -> dict | None:
        return None

    # ── cache ────────────────────────────────────────────────────────────

    async def _cached(self, key: str, model: type[BaseModel] | None = None) -> Any:
        """Fresh cached payload, or None. Staleness is TTL-only."""
        entry = await self._cache.get(key)
        if entry is None or entry.is_stale:
            return None
        try:
            value = entry.decode(model)
        except MalformedCache as e:
            logger.warning("cache.malformed", key=key, error=str(e))
            return None
        logger.debug("cache.hit", key=key)
        return value

    async def _store(self, key: str, payload: Any, ttl_seconds: int) -> None:
        if isinstance(payload, BaseModel):
            payload = payload.model_dump(mode="json", by_alias=True)
        await self._cache.set(key, payload, ttl_seconds, self.source)

    # ── network ──────────────────────────────────────────────────────────

    async def _get_json(self, url: str, params: dict[str, Any] | None = None) -> Any:
        if self._limiter is None:
            return await self._request(url, params)
        async with self._limiter:
            return await self._request(url, params)

    async def _request(self, url: str, params: dict[str, Any] | None) -> Any:
        try:
            async with aiohttp.ClientSession(timeout=self._timeout) as session:
                async with session.get(url, params=params) as resp:
                    if resp.status in RATE_LIMIT_STATUSES:
                        raise RateLimited(self.name, f"HTTP {resp.status}")
                    if resp.status >= 400:
                        raise ProviderUnavailable(self.name, f"HTTP {resp.status}")
                    return await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise ProviderUnavailable(self.name, str(e) or type(e).__name__) from e
