"""MarketDataRouter — selects and fails-over between adapters per asset type.

Provider order per data kind comes from ASSET_REGISTRY, and so does the
split between required kinds (exhausting them raises AggregateFailure) and
optional ones (degrade to None, [] or an error series).
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, TypeVar

import structlog

from src.core.data.live_feed import LiveFeedManager
from src.core.data.models import CandleSeries, Quote
from src.core.data.providers.alphavantage import AlphaVantageProvider
from src.core.data.providers.binance import BinanceProvider
from src.core.data.providers.finnhub import FinnhubProvider
from src.core.errors import AggregateFailure, MarketDataError
from src.core.markets.registry import (
    AssetConfig,
    AssetType,
    DataKind,
    get_asset,
    provider_order,
)

logger = structlog.get_logger()

T = TypeVar("T")

DEFAULT_RANGE = "6m"
NEWS_LOOKBACK_DAYS = 7
INTRADAY_RANGES = frozenset({"1d", "1w"})


@dataclass(frozen=True)
class CryptoRange:
    interval: str
    limit: int


CRYPTO_RANGES: dict[str, CryptoRange] = {
    "1d": CryptoRange("15m", 96),
    "5d": CryptoRange("1d", 5),
    "1w": CryptoRange("1h", 168),
    "1m": CryptoRange("4h", 180),
    "3m": CryptoRange("1d", 90),
    "6m": CryptoRange("1d", 180),
    "1y": CryptoRange("1d", 365),
    "2y": CryptoRange("1d", 730),
}

# Finnhub fallback window in days for daily ranges; intraday is handled apart
STOCK_FALLBACK_DAYS: dict[str, int] = {
    "5d": 5,
    "1m": 30,
    "1y": 365,
    "2y": 730,
}
STOCK_FALLBACK_DEFAULT_DAYS = 180
STOCK_INTRADAY_DAYS = 7


def crypto_range(range_token: str) -> CryptoRange:
    return CRYPTO_RANGES.get(range_token, CRYPTO_RANGES[DEFAULT_RANGE])


def stock_fallback_window(range_token: str) -> tuple[str, int]:
    """(Finnhub resolution, window in days) for a range token."""
    if range_token in INTRADAY_RANGES:
        return "60", STOCK_INTRADAY_DAYS
    return "D", STOCK_FALLBACK_DAYS.get(range_token, STOCK_FALLBACK_DEFAULT_DAYS)


class MarketDataRouter:

    def __init__(
        self,
        alphavantage: AlphaVantageProvider,
        finnhub: FinnhubProvider,
        binance: BinanceProvider,
        feed: LiveFeedManager,
        clock: Callable[[], datetime] | None = None,
    ):
        self._av = alphavantage
        self._finnhub = finnhub
        self._binance = binance
        self._feed = feed
        self._adapters = {"alphavantage": alphavantage, "finnhub": finnhub, "binance": binance}
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def _first_success(
        self,
        kind: DataKind,
        symbol: str,
        asset_type: AssetType,
        calls: dict[str, Callable[[], Awaitable[T]]],
    ) -> T:
        errors: list[Exception] = []
        for pname in provider_order(asset_type, kind):
            call = calls.get(pname)
            if call is None:
                continue
            try:
                result = await call()
                logger.debug("provider.ok", provider=pname, kind=kind.value, symbol=symbol)
                return result
            except MarketDataError as e:
                logger.warning(
                    "provider.failed",
                    provider=pname,
                    kind=kind.value,
                    symbol=symbol,
                    error=str(e),
                )
                # the live feed runs its own chain; keep its per-provider causes
                errors.extend(e.errors if isinstance(e, AggregateFailure) else [e])
        raise AggregateFailure(kind.value, symbol, errors)

    def _primary_source(self, asset_type: AssetType, kind: DataKind) -> str:
        return self._adapters[provider_order(asset_type, kind)[0]].source

    async def _fetch(
        self,
        kind: DataKind,
        symbol: str,
        asset: AssetConfig,
        calls: dict[str, Callable[[], Awaitable[T]]],
        default: T,
    ) -> T:
        """Required kinds raise AggregateFailure when exhausted; the rest degrade to default."""
        try:
            return await self._first_success(kind, symbol, asset.asset_type, calls)
        except AggregateFailure:
            if kind in asset.required:
                raise
            return default

    async def get_quote(self, symbol: str, asset_type: AssetType | str) -> Quote:
        asset = get_asset(asset_type)
        quote = await self._fetch(
            DataKind.QUOTE,
            symbol,
            asset,
            {
                "alphavantage": lambda: self._av.get_quote(symbol),
                "finnhub": lambda: self._finnhub.get_quote(symbol),
                # hot tick → REST → stale, all inside the feed
                "binance_ws": lambda: self._feed.get_quote(symbol),
            },
            None,
        )
        if quote is None:
            raise AggregateFailure(DataKind.QUOTE.value, symbol)
        return quote.normalized()

    async def get_candles(
        self, symbol: str, asset_type: AssetType | str, range_token: str = DEFAULT_RANGE
    ) -> CandleSeries:
        asset = get_asset(asset_type)
        window = crypto_range(range_token)
        resolution, days = stock_fallback_window(range_token)
        end = self._clock()
        start = end - timedelta(days=days)
        return await self._fetch(
            DataKind.CANDLES,
            symbol,
            asset,
            {
                "alphavantage": lambda: self._av.get_candles(
                    symbol, intraday=range_token in INTRADAY_RANGES
                ),
                "finnhub": lambda: self._finnhub.get_candles(symbol, resolution, start, end),
                "binance": lambda: self._binance.get_candles(symbol, window.interval, window.limit),
            },
            CandleSeries.error(self._primary_source(asset.asset_type, DataKind.CANDLES)),
        )

    async def get_overview(self, symbol: str, asset_type: AssetType | str) -> dict | None:
        return await self._fetch(
            DataKind.OVERVIEW,
            symbol,
            get_asset(asset_type),
            {
                "alphavantage": lambda: self._av.get_overview(symbol),
                "finnhub": lambda: self._finnhub.get_profile(symbol),
            },
            None,
        )

    async def get_news(self, symbol: str, asset_type: AssetType | str) -> list[dict]:
        end = self._clock().date()
        start = end - timedelta(days=NEWS_LOOKBACK_DAYS)
        return await self._fetch(
            DataKind.NEWS,
            symbol,
            get_asset(asset_type),
            {"finnhub": lambda: self._finnhub.get_news(symbol, start, end)},
            [],
        )

    async def get_metrics(self, symbol: str, asset_type: AssetType | str) -> dict | None:
        return await self._fetch(
            DataKind.METRICS,
            symbol,
            get_asset(asset_type),
            {"finnhub": lambda: self._finnhub.get_metrics(symbol)},
            None,
        )
