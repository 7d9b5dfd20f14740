"""Binance provider — crypto spot via the public REST API.

The streaming side lives in src.core.data.live_feed; this adapter is the
polling path behind it and the only source of crypto candles.
"""
import polars as pl

from src.core.data.models import CandleSeries, Quote
from src.core.data.providers.base import ProviderAdapter
from src.core.errors import NoDataFound
from src.core.markets.registry import AssetType

BINANCE_REST_BASE = "https://api.binance.com"

QUOTE_TTL = 60
CANDLE_TTL = 300


def quote_cache_key(symbol: str) -> str:
    """Shared by the REST path and the websocket persistence path."""
    return f"quote:binance:{symbol}"


class BinanceProvider(ProviderAdapter):

    def __init__(self, cache, base_url: str = BINANCE_REST_BASE, **kwargs):
        super().__init__(cache, base_url=base_url, **kwargs)

    @property
    def name(self) -> str:
        return "binance"

    @property
    def source(self) -> str:
        return "BINANCE_REST"

    async def get_quote(self, symbol: str) -> Quote:
        key = quote_cache_key(symbol)
        cached = await self._cached(key, Quote)
        if cached is not None:
            return cached

        data = await self._get_json(f"{self._base_url}/api/v3/ticker/24hr", {"symbol": symbol})
        if not isinstance(data, dict) or data.get("lastPrice") is None:
            raise NoDataFound(self.name, f"no ticker for {symbol}")

        try:
            quote = Quote(
                symbol=data.get("symbol", symbol),
                asset_type=AssetType.CRYPTO,
                price=float(data["lastPrice"]),
                change_abs=float(data["priceChange"]),
                change_pct=float(data["priceChangePercent"]),
                timestamp=int(data["closeTime"]),   # ms; the router normalises
                source=self.source,
            )
        except (KeyError, ValueError) as e:
            raise NoDataFound(self.name, f"bad ticker fields for {symbol}: {e}") from e

        await self._store(key, quote, QUOTE_TTL)
        return quote

    async def get_candles(self, symbol: str, interval: str, limit: int = 180) -> CandleSeries:
        key = f"candle:{self.name}:{symbol}:{interval}:{limit}"
        cached = await self._cached(key, CandleSeries)
        if cached is not None:
            return cached

        data = await self._get_json(
            f"{self._base_url}/api/v3/klines",
            {"symbol": symbol, "interval": interval, "limit": str(limit)},
        )
        if not isinstance(data, list) or not data:
            raise NoDataFound(self.name, f"no klines for {symbol} ({interval})")

        # kline: [openTime, open, high, low, close, volume, closeTime, ...]
        try:
            df = pl.DataFrame(
                {
                    "time": [int(k[0]) // 1000 for k in data],
                    "open": [float(k[1]) for k in data],
                    "high": [float(k[2]) for k in data],
                    "low": [float(k[3]) for k in data],
                    "close": [float(k[4]) for k in data],
                    "volume": [float(k[5]) for k in data],
                }
            )
        except (IndexError, TypeError, ValueError) as e:
            raise NoDataFound(self.name, f"bad klines for {symbol}: {e}") from e

        series = CandleSeries.from_frame(df, self.source)
        await self._store(key, series, CANDLE_TTL)
        return series
