"""Redis-backed key→payload cache with TTL-derived staleness.

Each key is a Redis hash {payload, expires_at, source}. Nothing is given a
Redis-side expiry: a stale entry stays readable so callers can still serve it
when every upstream is down.
"""
import time
from typing import Any, Callable

import msgpack
import redis.asyncio as redis
import structlog

from src.core.data.models import CacheEntry

logger = structlog.get_logger()


class CacheStore:

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379",
        client: Any = None,
        clock: Callable[[], float] = time.time,
    ):
        self.client = client if client is not None else redis.from_url(redis_url)
        self._clock = clock

    async def get(self, key: str) -> CacheEntry | None:
        try:
            raw = await self.client.hgetall(key)
        except redis.RedisError as e:
            logger.warning("cache.unavailable", op="get", key=key, error=str(e))
            return None
        if not raw:
            return None

        fields = {_text(k): v for k, v in raw.items()}
        try:
            return CacheEntry(
                key=key,
                payload=bytes(fields["payload"]),
                expires_at=float(_text(fields["expires_at"])),
                source=_text(fields.get("source", b"")),
                now=self._clock(),
            )
        except (KeyError, ValueError, TypeError) as e:
            logger.warning("cache.bad_envelope", key=key, error=str(e))
            return None

    async def set(self, key: str, payload: Any, ttl_seconds: int, source: str) -> None:
        mapping = {
            "payload": msgpack.packb(payload, use_bin_type=True),
            "expires_at": repr(self._clock() + ttl_seconds),
            "source": source,
        }
        try:
            await self.client.hset(key, mapping=mapping)
        except redis.RedisError as e:
            logger.warning("cache.unavailable", op="set", key=key, error=str(e))

    async def close(self) -> None:
        await self.client.aclose()


def _text(value: bytes | str) -> str:
    return value.decode() if isinstance(value, bytes) else value
