"""Alpha Vantage provider — primary US equities source."""
from datetime import datetime
from zoneinfo import ZoneInfo

import polars as pl

from src.core.data.models import CandleSeries, Quote
from src.core.data.providers.base import ProviderAdapter
from src.core.errors import NoDataFound, RateLimited
from src.core.markets.registry import AssetType

AV_BASE = "https://www.alphavantage.co/query"
ET = ZoneInfo("America/New_York")

QUOTE_TTL = 900            # 15 min; the daily call budget is tiny
CANDLE_INTRADAY_TTL = 1800
CANDLE_DAILY_TTL = 86400
OVERVIEW_TTL = 7 * 86400   # fundamentals rarely move intraday

# Alpha Vantage answers HTTP 200 with one of these keys when the quota is gone
RATE_LIMIT_MARKERS = ("Note", "Information")


class AlphaVantageProvider(ProviderAdapter):

    def __init__(self, cache, api_key: str = "", base_url: str = AV_BASE, **kwargs):
        super().__init__(cache, api_key=api_key, base_url=base_url, **kwargs)

    @property
    def name(self) -> str:
        return "av"

    @property
    def source(self) -> str:
        return "ALPHAVANTAGE"

    async def _query(self, function: str, symbol: str, **extra: str) -> dict:
        params = {"function": function, "symbol": symbol, "apikey": self._api_key, **extra}
        data = await self._get_json(self._base_url, params)
        if not isinstance(data, dict):
            raise NoDataFound(self.name, f"unexpected {type(data).__name__} body for {function}")
        for marker in RATE_LIMIT_MARKERS:
            if marker in data:
                raise RateLimited(self.name, str(data[marker])[:120])
        if "Error Message" in data:
            raise NoDataFound(self.name, str(data["Error Message"])[:120])
        return data

    async def get_quote(self, symbol: str) -> Quote:
        key = f"quote:{self.name}:{symbol}"
        cached = await self._cached(key, Quote)
        if cached is not None:
            return cached

        data = await self._query("GLOBAL_QUOTE", symbol)
        raw = data.get("Global Quote") or {}
        if not raw.get("05. price"):
            raise NoDataFound(self.name, f"no quote for {symbol}")

        try:
            quote = Quote(
                symbol=symbol,
                asset_type=AssetType.STOCK,
                price=float(raw["05. price"]),
                change_abs=float(raw.get("09. change") or 0.0),
                change_pct=float(str(raw.get("10. change percent") or "0").rstrip("%")),
                timestamp=_day_to_epoch(raw["07. latest trading day"]),
                source=self.source,
            )
        except (KeyError, ValueError) as e:
            raise NoDataFound(self.name, f"bad quote fields for {symbol}: {e}") from e

        await self._store(key, quote, QUOTE_TTL)
        return quote

    async def get_candles(self, symbol: str, intraday: bool = False) -> CandleSeries:
        key = f"candle:{self.name}:{symbol}:{'intraday' if intraday else 'daily'}"
        cached = await self._cached(key, CandleSeries)
        if cached is not None:
            return cached

        if intraday:
            data = await self._query(
                "TIME_SERIES_INTRADAY", symbol, interval="60min", outputsize="full"
            )
        else:
            data = await self._query("TIME_SERIES_DAILY_ADJUSTED", symbol, outputsize="full")

        series_key = next((k for k in data if "Time Series" in k), None)
        if series_key is None or not data[series_key]:
            raise NoDataFound(self.name, f"no time series for {symbol}")

        try:
            series = _normalise_series(data[series_key], self.source)
        except (KeyError, ValueError, TypeError) as e:
            raise NoDataFound(self.name, f"bad bar fields for {symbol}: {e}") from e

        await self._store(key, series, CANDLE_INTRADAY_TTL if intraday else CANDLE_DAILY_TTL)
        return series

    async def get_overview(self, symbol: str) -> dict:
        key = f"overview:{self.name}:{symbol}"
        cached = await self._cached(key)
        if cached is not None:
            return cached

        data = await self._query("OVERVIEW", symbol)
        if not data:
            raise NoDataFound(self.name, f"no overview for {symbol}")

        await self._store(key, data, OVERVIEW_TTL)
        return data


def _day_to_epoch(stamp: str) -> int:
    """'2024-01-05' or '2024-01-05 15:00:00' in New York time → epoch seconds."""
    return int(datetime.fromisoformat(stamp).replace(tzinfo=ET).timestamp())


def _normalise_series(bars: dict[str, dict[str, str]], source: str) -> CandleSeries:
    # Daily-adjusted puts volume under "6. volume", intraday under "5. volume"
    rows = [
        {
            "time": _day_to_epoch(stamp),
            "open": float(bar["1. open"]),
            "high": float(bar["2. high"]),
            "low": float(bar["3. low"]),
            "close": float(bar.get("4. close") or bar["5. adjusted close"]),
            "volume": float(bar.get("6. volume") or bar["5. volume"]),
        }
        for stamp, bar in bars.items()
    ]
    return CandleSeries.from_frame(pl.DataFrame(rows), source)
