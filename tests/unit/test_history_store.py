"""Unit tests for HistoryStore against a throwaway SQLite database."""
import asyncio
from datetime import date, datetime, timedelta, timezone

import pytest

from src.core.data.models import CandleSeries
from src.core.errors import AggregateFailure
from src.core.history.store import HistoryStore, live_range_for
from src.core.markets.registry import AssetType

TODAY = date(2024, 3, 1)


def _daily_series(start: date, n: int, source: str = "ALPHAVANTAGE", base: float = 100.0) -> CandleSeries:
    days = [start + timedelta(days=i) for i in range(n)]
    times = [int(datetime(d.year, d.month, d.day, tzinfo=timezone.utc).timestamp()) for d in days]
    return CandleSeries(
        time=times,
        open=[base + i for i in range(n)],
        high=[base + i + 1 for i in range(n)],
        low=[base + i - 1 for i in range(n)],
        close=[base + i + 0.5 for i in range(n)],
        volume=[1000.0 + i for i in range(n)],
        source=source,
    )


class StubRouter:
    """Scripted get_candles; backfill-range calls can be held on a gate."""

    def __init__(self, series=None, error: Exception | None = None):
        self.series = series
        self.error = error
        self.calls: list[tuple[str, AssetType, str]] = []
        self.gate: asyncio.Event | None = None

    async def get_candles(self, symbol, asset_type, range_token="6m"):
        self.calls.append((symbol, asset_type, range_token))
        if range_token == "2y" and self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.series

    def ranges(self) -> list[str]:
        return [c[2] for c in self.calls]


def _store(engine, router) -> HistoryStore:
    return HistoryStore(engine, router, today=lambda: TODAY)


class TestBackfill:

    @pytest.mark.asyncio
    async def test_backfill_is_idempotent(self, engine):
        router = StubRouter(_daily_series(date(2024, 1, 1), 25))
        history = _store(engine, router)

        first = await history.backfill_symbol("AAPL", "STOCK")
        second = await history.backfill_symbol("AAPL", AssetType.STOCK)

        assert first == second == 25
        assert await history.get_candle_count("AAPL") == 25
        assert router.ranges() == ["2y", "2y"]

    @pytest.mark.asyncio
    async def test_rerun_overwrites_values(self, engine):
        router = StubRouter(_daily_series(date(2024, 2, 1), 25, base=100.0))
        history = _store(engine, router)
        await history.backfill_symbol("AAPL", "STOCK")

        router.series = _daily_series(date(2024, 2, 1), 25, base=200.0)
        await history.backfill_symbol("AAPL", "STOCK")

        series = await history.get_candles("AAPL", "STOCK", 60)
        assert series.source == "HISTORY"
        assert series.close[0] == 200.5
        assert await history.get_candle_count("AAPL") == 25

    @pytest.mark.asyncio
    async def test_bad_rows_are_skipped(self, engine):
        good = _daily_series(date(2024, 1, 1), 4)
        close = list(good.close)
        close[1] = None
        broken = CandleSeries.model_construct(
            status="ok",
            time=good.time,
            open=good.open,
            high=good.high,
            low=good.low,
            close=close,
            volume=good.volume,
            source="FINNHUB",
        )
        history = _store(engine, StubRouter(broken))

        written = await history.backfill_symbol("MSFT", "STOCK")

        assert written == 3
        assert await history.get_candle_count("MSFT") == 3

    @pytest.mark.asyncio
    async def test_upstream_failure_writes_nothing(self, engine):
        history = _store(engine, StubRouter(error=AggregateFailure("candles", "AAPL")))
        assert await history.backfill_symbol("AAPL", "STOCK") == 0

    @pytest.mark.asyncio
    async def test_error_series_writes_nothing(self, engine):
        history = _store(engine, StubRouter(CandleSeries.error("BINANCE_REST")))
        assert await history.backfill_symbol("BTCUSDT", "CRYPTO") == 0

    @pytest.mark.asyncio
    async def test_append_latest_only_upserts_last_bar(self, engine):
        router = StubRouter(_daily_series(date(2024, 2, 26), 5))
        history = _store(engine, router)

        day = await history.append_latest_candle("BTCUSDT", "CRYPTO")

        assert day == date(2024, 3, 1)
        assert router.ranges() == ["5d"]
        assert await history.get_candle_count("BTCUSDT") == 1

    @pytest.mark.asyncio
    async def test_append_latest_failure_returns_none(self, engine):
        history = _store(engine, StubRouter(error=AggregateFailure("candles", "AAPL")))
        assert await history.append_latest_candle("AAPL", "STOCK") is None


class TestReads:

    @pytest.mark.asyncio
    async def test_enough_rows_served_from_table(self, engine):
        router = StubRouter(_daily_series(date(2024, 2, 1), 25))
        history = _store(engine, router)
        await history.backfill_symbol("AAPL", "STOCK")
        router.calls.clear()

        series = await history.get_candles("AAPL", "STOCK", 60)

        assert router.calls == []
        assert series.source == "HISTORY"
        assert len(series) == 25
        assert series.time == sorted(series.time)
        first = datetime.fromtimestamp(series.time[0], tz=timezone.utc)
        assert (first.date(), first.hour) == (date(2024, 2, 1), 16)

    @pytest.mark.asyncio
    async def test_window_cutoff_applies(self, engine):
        # 40 rows, but only 25 fall within the last 25 days
        router = StubRouter(_daily_series(date(2024, 1, 21), 40))
        history = _store(engine, router)
        await history.backfill_symbol("AAPL", "STOCK")

        series = await history.get_candles("AAPL", "STOCK", 25)

        assert series.source == "HISTORY"
        assert datetime.fromtimestamp(series.time[0], tz=timezone.utc).date() == date(2024, 2, 5)

    @pytest.mark.asyncio
    async def test_sparse_table_returns_live_without_waiting_for_backfill(self, engine):
        live = _daily_series(date(2023, 12, 1), 90, source="FINNHUB")
        router = StubRouter(live)
        history = _store(engine, router)
        router.series = _daily_series(date(2024, 2, 25), 5)
        await history.backfill_symbol("AAPL", "STOCK")
        router.series = live
        router.calls.clear()
        router.gate = asyncio.Event()

        result = await asyncio.wait_for(history.get_candles("AAPL", "STOCK", 30), timeout=1.0)
        again = await asyncio.wait_for(history.get_candles("AAPL", "STOCK", 30), timeout=1.0)
        await asyncio.sleep(0)

        assert result is live and again is live
        assert router.ranges().count("3m") == 2
        assert router.ranges().count("2y") == 1  # second read joined the pending backfill

        router.gate.set()
        await history.drain()
        # 90 live days end 2024-02-28 and overlap the four earlier rows
        assert await history.get_candle_count("AAPL") == 91

    @pytest.mark.asyncio
    async def test_sparse_table_and_live_failure_is_none(self, engine):
        history = _store(engine, StubRouter(error=AggregateFailure("candles", "ZZZZ")))
        assert await history.get_candles("ZZZZ", "STOCK", 30) is None

    @pytest.mark.asyncio
    async def test_cached_symbols_and_assets(self, engine):
        router = StubRouter(_daily_series(date(2024, 1, 1), 3))
        history = _store(engine, router)
        await history.backfill_symbol("MSFT", "STOCK")
        await history.backfill_symbol("BTCUSDT", "CRYPTO")
        await history.backfill_symbol("AAPL", "STOCK")

        assert await history.get_cached_symbols() == ["AAPL", "BTCUSDT", "MSFT"]
        assert await history.get_cached_assets() == [
            ("AAPL", AssetType.STOCK),
            ("BTCUSDT", AssetType.CRYPTO),
            ("MSFT", AssetType.STOCK),
        ]
        assert await history.get_candle_count("NOPE") == 0


def test_live_range_for():
    assert live_range_for(30) == "3m"
    assert live_range_for(179) == "3m"
    assert live_range_for(180) == "6m"
    assert live_range_for(365) == "2y"
