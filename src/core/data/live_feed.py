"""LiveFeedManager — owns the single Binance websocket connection.

State machine:
    DISCONNECTED → CONNECTING → CONNECTED → DISCONNECTED (close/error)
    → wait reconnect_delay → CONNECTING ...

Every CONNECTED entry re-subscribes the full tracked set in one batch, so a
reconnect restores exactly the symbols tracked before the drop. Ticker
messages land in the in-process hot cache immediately and are persisted to
the CacheStore at most once per symbol per persist_interval.

All state is mutated on the event loop between awaits; no locks.
"""
from __future__ import annotations

import asyncio
import json
import time
from enum import Enum
from typing import AsyncIterator, Callable, Protocol

import aiohttp
import structlog

from src.core.data.cache.store import CacheStore
from src.core.data.models import Quote
from src.core.data.providers.binance import BinanceProvider, quote_cache_key
from src.core.errors import AggregateFailure, MalformedCache, MarketDataError
from src.core.markets.registry import AssetType

logger = structlog.get_logger()

BINANCE_WS_BASE = "wss://stream.binance.com:9443"
PERSIST_TTL = 60
WS_SOURCE = "BINANCE_WS"


class FeedState(str, Enum):
    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"


class FeedConnection(Protocol):
    async def send_json(self, data: dict) -> None: ...

    def __aiter__(self) -> AsyncIterator[str]: ...

    async def close(self) -> None: ...


class FeedTransport(Protocol):
    async def connect(self, url: str) -> FeedConnection: ...


class _AiohttpConnection:

    def __init__(self, session: aiohttp.ClientSession, ws: aiohttp.ClientWebSocketResponse):
        self._session = session
        self._ws = ws

    async def send_json(self, data: dict) -> None:
        try:
            await self._ws.send_json(data)
        except (aiohttp.ClientError, RuntimeError) as e:
            raise ConnectionError(str(e)) from e

    async def __aiter__(self) -> AsyncIterator[str]:
        async for msg in self._ws:
            if msg.type == aiohttp.WSMsgType.TEXT:
                yield msg.data
            elif msg.type == aiohttp.WSMsgType.ERROR:
                raise ConnectionError(str(self._ws.exception()))
            else:
                break

    async def close(self) -> None:
        await self._ws.close()
        await self._session.close()


class AiohttpFeedTransport:

    def __init__(self, connect_timeout: float = 10.0, heartbeat: float = 30.0):
        self._timeout = aiohttp.ClientTimeout(total=None, connect=connect_timeout)
        self._heartbeat = heartbeat

    async def connect(self, url: str) -> FeedConnection:
        session = aiohttp.ClientSession(timeout=self._timeout)
        try:
            ws = await session.ws_connect(url, heartbeat=self._heartbeat)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            await session.close()
            raise ConnectionError(str(e) or type(e).__name__) from e
        return _AiohttpConnection(session, ws)


class LiveFeedManager:

    def __init__(
        self,
        rest: BinanceProvider,
        cache: CacheStore,
        transport: FeedTransport | None = None,
        ws_base_url: str = BINANCE_WS_BASE,
        reconnect_delay: float = 5.0,
        persist_interval: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._rest = rest
        self._cache = cache
        self._transport = transport or AiohttpFeedTransport()
        self._url = f"{ws_base_url.rstrip('/')}/ws"
        self._reconnect_delay = reconnect_delay
        self._persist_interval = persist_interval
        self._clock = clock

        self._state = FeedState.DISCONNECTED
        self._conn: FeedConnection | None = None
        self._task: asyncio.Task | None = None
        self._wake = asyncio.Event()
        self._stopping = False
        # set by stop(), cleared only by start(): tracking never revives a stopped feed
        self._closed = False
        self._request_id = 1

        self._tracked: set[str] = set()
        self._hot: dict[str, Quote] = {}
        self._hot_at: dict[str, float] = {}
        self._persisted_at: dict[str, float] = {}

    # ── lifecycle ────────────────────────────────────────────────────────

    @property
    def state(self) -> FeedState:
        return self._state

    @property
    def tracked_symbols(self) -> frozenset[str]:
        return frozenset(self._tracked)

    async def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._stopping = False
        self._closed = False
        self._task = asyncio.create_task(self._run(), name="binance-live-feed")

    async def stop(self) -> None:
        self._stopping = True
        self._closed = True
        self._wake.set()
        task, self._task = self._task, None
        if self._conn is not None:
            await self._conn.close()
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._state = FeedState.DISCONNECTED

    async def _run(self) -> None:
        while not self._stopping:
            self._state = FeedState.CONNECTING
            try:
                conn = await self._transport.connect(self._url)
            except (OSError, asyncio.TimeoutError) as e:
                logger.warning("feed.connect_failed", url=self._url, error=str(e))
            else:
                await self._serve(conn)

            self._state = FeedState.DISCONNECTED
            if self._stopping:
                break
            logger.info("feed.reconnecting", delay=self._reconnect_delay)
            await self._wait_reconnect()

    async def _serve(self, conn: FeedConnection) -> None:
        self._conn = conn
        self._state = FeedState.CONNECTED
        logger.info("feed.connected", tracked=len(self._tracked))
        try:
            await self._subscribe(sorted(self._tracked), request_id=1)
            async for raw in conn:
                await self._handle_message(raw)
        except (OSError, asyncio.TimeoutError) as e:
            logger.warning("feed.error", error=str(e))
        finally:
            self._conn = None
            await conn.close()
            logger.info("feed.disconnected")

    async def _wait_reconnect(self) -> None:
        self._wake.clear()
        try:
            await asyncio.wait_for(self._wake.wait(), timeout=self._reconnect_delay)
        except asyncio.TimeoutError:
            pass

    # ── subscriptions ────────────────────────────────────────────────────

    async def track_symbol(self, symbol: str) -> None:
        """Idempotent. New symbols are subscribed now or on the next connect."""
        if symbol in self._tracked:
            return
        self._tracked.add(symbol)

        if self._state is FeedState.CONNECTED:
            self._request_id += 1
            try:
                await self._subscribe([symbol], request_id=self._request_id)
            except (OSError, asyncio.TimeoutError) as e:
                # the reconnect batch will include it
                logger.warning("feed.subscribe_failed", symbol=symbol, error=str(e))
        elif self._state is FeedState.DISCONNECTED and not self._closed:
            if self._task is None or self._task.done():
                await self.start()
            else:
                self._wake.set()

    async def _subscribe(self, symbols: list[str], request_id: int) -> None:
        if not symbols or self._conn is None:
            return
        await self._conn.send_json(
            {
                "method": "SUBSCRIBE",
                "params": [f"{s.lower()}@ticker" for s in symbols],
                "id": request_id,
            }
        )
        logger.debug("feed.subscribed", symbols=symbols)

    # ── messages ─────────────────────────────────────────────────────────

    async def _handle_message(self, raw: str) -> None:
        try:
            msg = json.loads(raw)
        except ValueError:
            logger.debug("feed.unparseable", raw=raw[:80])
            return
        if not isinstance(msg, dict) or msg.get("e") != "24hrTicker":
            return

        try:
            quote = Quote(
                symbol=msg["s"],
                asset_type=AssetType.CRYPTO,
                price=float(msg["c"]),
                change_abs=float(msg["p"]),
                change_pct=float(msg["P"]),
                timestamp=int(msg["E"]),
                source=WS_SOURCE,
            )
        except (KeyError, TypeError, ValueError):
            logger.debug("feed.bad_ticker", raw=raw[:80])
            return

        now = self._clock()
        self._hot[quote.symbol] = quote
        self._hot_at[quote.symbol] = now

        last = self._persisted_at.get(quote.symbol)
        if last is None or now - last >= self._persist_interval:
            self._persisted_at[quote.symbol] = now
            await self._cache.set(
                quote_cache_key(quote.symbol),
                quote.model_dump(mode="json", by_alias=True),
                PERSIST_TTL,
                WS_SOURCE,
            )

    # ── reads ────────────────────────────────────────────────────────────

    def hot_quote(self, symbol: str) -> Quote | None:
        return self._hot.get(symbol)

    async def get_quote(self, symbol: str) -> Quote:
        """Fresh hot tick → persisted cache → one REST call → newest stale value.

        A hot tick older than PERSIST_TTL (the feed has gone quiet) no longer
        answers directly; it is only served, flagged stale, when REST fails.
        """
        await self.track_symbol(symbol)

        hot = self._hot.get(symbol)
        if hot is not None and self._clock() - self._hot_at[symbol] <= PERSIST_TTL:
            return hot

        try:
            return await self._rest.get_quote(symbol)
        except MarketDataError as e:
            rest_error = e

        stale = await self._stale_quote(symbol)
        if hot is not None and (stale is None or hot.timestamp >= stale.timestamp):
            stale = hot.model_copy(update={"is_stale": True})
        if stale is not None:
            logger.warning("feed.serving_stale", symbol=symbol, error=str(rest_error))
            return stale
        raise AggregateFailure("quote", symbol, [rest_error])

    async def _stale_quote(self, symbol: str) -> Quote | None:
        entry = await self._cache.get(quote_cache_key(symbol))
        if entry is None:
            return None
        try:
            quote = entry.decode(Quote)
        except MalformedCache:
            return None
        return quote.model_copy(update={"is_stale": True})
