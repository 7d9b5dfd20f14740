"""Finnhub provider — secondary US equities source.

Quote/candle fallback for Alpha Vantage, and the only source for news,
metrics and the profile fallback. Every call spends the shared Finnhub budget.
"""
from datetime import date, datetime

from src.core.data.models import CandleSeries, Quote
from src.core.data.providers.base import ProviderAdapter
from src.core.errors import NoDataFound, ProviderUnavailable, RateLimited
from src.core.markets.registry import AssetType

FINNHUB_BASE = "https://finnhub.io/api/v1"

QUOTE_TTL = 900
CANDLE_TTL = 900
PROFILE_TTL = 7 * 86400
NEWS_TTL = 1800
METRICS_TTL = 86400


class FinnhubProvider(ProviderAdapter):

    def __init__(self, cache, api_key: str = "", base_url: str = FINNHUB_BASE, **kwargs):
        super().__init__(cache, api_key=api_key, base_url=base_url, **kwargs)

    @property
    def name(self) -> str:
        return "finnhub"

    @property
    def source(self) -> str:
        return "FINNHUB"

    async def _call(self, path: str, **params) -> dict | list:
        data = await self._get_json(f"{self._base_url}{path}", {**params, "token": self._api_key})
        if isinstance(data, dict) and "error" in data:
            message = str(data["error"])
            if "limit" in message.lower():
                raise RateLimited(self.name, message[:120])
            raise ProviderUnavailable(self.name, message[:120])
        return data

    async def get_quote(self, symbol: str) -> Quote:
        key = f"quote:{self.name}:{symbol}"
        cached = await self._cached(key, Quote)
        if cached is not None:
            return cached

        data = await self._call("/quote", symbol=symbol)
        # Unknown symbols come back as zeros with d/dp = null
        if not isinstance(data, dict) or data.get("c") is None or data.get("d") is None:
            raise NoDataFound(self.name, f"no quote for {symbol}")

        quote = Quote(
            symbol=symbol,
            asset_type=AssetType.STOCK,
            price=float(data["c"]),
            change_abs=float(data["d"]),
            change_pct=float(data.get("dp") or 0.0),
            timestamp=int(data.get("t") or 0),
            source=self.source,
        )
        await self._store(key, quote, QUOTE_TTL)
        return quote

    async def get_candles(
        self, symbol: str, resolution: str, start: datetime, end: datetime
    ) -> CandleSeries:
        span_days = max(1, round((end - start).total_seconds() / 86400))
        key = f"candle:{self.name}:{symbol}:{resolution}:{span_days}"
        cached = await self._cached(key, CandleSeries)
        if cached is not None:
            return cached

        data = await self._call(
            "/stock/candle",
            symbol=symbol,
            resolution=resolution,
            **{"from": str(int(start.timestamp())), "to": str(int(end.timestamp()))},
        )
        if not isinstance(data, dict) or data.get("s") != "ok" or not data.get("c"):
            raise NoDataFound(self.name, f"no candles for {symbol} ({resolution})")

        try:
            series = CandleSeries(
                time=data["t"],
                open=data["o"],
                high=data["h"],
                low=data["l"],
                close=data["c"],
                volume=data["v"],
                source=self.source,
            )
        except (KeyError, ValueError) as e:
            raise NoDataFound(self.name, f"bad candle arrays for {symbol}: {e}") from e

        await self._store(key, series, CANDLE_TTL)
        return series

    async def get_profile(self, symbol: str) -> dict:
        key = f"profile:{self.name}:{symbol}"
        cached = await self._cached(key)
        if cached is not None:
            return cached

        data = await self._call("/stock/profile2", symbol=symbol)
        if not isinstance(data, dict) or not data:
            raise NoDataFound(self.name, f"no profile for {symbol}")

        await self._store(key, data, PROFILE_TTL)
        return data

    async def get_overview(self, symbol: str) -> dict:
        return await self.get_profile(symbol)

    async def get_news(self, symbol: str, start: date, end: date) -> list[dict]:
        key = f"news:{self.name}:{symbol}:{start.isoformat()}:{end.isoformat()}"
        cached = await self._cached(key)
        if cached is not None:
            return cached

        data = await self._call(
            "/company-news", symbol=symbol, **{"from": start.isoformat(), "to": end.isoformat()}
        )
        if not isinstance(data, list):
            raise NoDataFound(self.name, f"no news list for {symbol}")

        await self._store(key, data, NEWS_TTL)
        return data

    async def get_metrics(self, symbol: str) -> dict:
        key = f"metrics:{self.name}:{symbol}"
        cached = await self._cached(key)
        if cached is not None:
            return cached

        data = await self._call("/stock/metric", symbol=symbol, metric="all")
        if not isinstance(data, dict) or not data.get("metric"):
            raise NoDataFound(self.name, f"no metrics for {symbol}")

        await self._store(key, data, METRICS_TTL)
        return data
