"""HistoryStore — durable daily OHLCV rows per symbol.

Rows are upserted one at a time keyed (symbol, date), so re-running a
backfill converges to the same table and a bad row never sinks the batch.
Reads below MIN_ROWS fall back to the live Router and schedule a background
backfill, at most one in flight per symbol.
"""
from __future__ import annotations

import asyncio
from datetime import date, datetime, time, timedelta, timezone
from typing import Callable

import polars as pl
import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from src.core.data.models import CandleSeries
from src.core.data.providers.router import MarketDataRouter
from src.core.db.models import PriceHistory
from src.core.db.session import session_factory, upsert
from src.core.errors import MarketDataError
from src.core.markets.registry import AssetType, get_asset

logger = structlog.get_logger()

HISTORY_SOURCE = "HISTORY"
MIN_ROWS = 20
BACKFILL_RANGE = "2y"
LATEST_RANGE = "5d"
# stored rows are dated by calendar day; expose them at the US close
ROW_TIME = time(16, 0, tzinfo=timezone.utc)

_PRICE_FIELDS = ("open", "high", "low", "close", "volume")


def live_range_for(days: int) -> str:
    if days >= 365:
        return "2y"
    if days >= 180:
        return "6m"
    return "3m"


def bar_date(ts: int) -> date:
    return datetime.fromtimestamp(ts, tz=timezone.utc).date()


class HistoryStore:

    def __init__(
        self,
        engine: AsyncEngine,
        router: MarketDataRouter,
        today: Callable[[], date] | None = None,
    ):
        self._engine = engine
        self._sessions = session_factory(engine)
        self._router = router
        self._today = today or (lambda: datetime.now(timezone.utc).date())
        self._backfills: dict[str, asyncio.Task] = {}

    # ── writes ───────────────────────────────────────────────────────────

    async def backfill_symbol(self, symbol: str, asset_type: AssetType | str) -> int:
        """Fetch ~2y of daily bars and upsert each. Returns rows written."""
        asset_type = get_asset(asset_type).asset_type
        try:
            series = await self._router.get_candles(symbol, asset_type, BACKFILL_RANGE)
        except MarketDataError as e:
            logger.warning("history.backfill_failed", symbol=symbol, error=str(e))
            return 0
        if not series.is_ok:
            logger.warning("history.no_data", symbol=symbol, source=series.source)
            return 0

        written = 0
        for i, bar in enumerate(series.to_frame().iter_rows(named=True)):
            if await self._upsert_bar(symbol, asset_type, bar, i):
                written += 1
        logger.info("history.backfilled", symbol=symbol, rows=written, received=len(series))
        return written

    async def append_latest_candle(self, symbol: str, asset_type: AssetType | str) -> date | None:
        asset_type = get_asset(asset_type).asset_type
        try:
            series = await self._router.get_candles(symbol, asset_type, LATEST_RANGE)
        except MarketDataError as e:
            logger.warning("history.append_failed", symbol=symbol, error=str(e))
            return None
        if not series.is_ok:
            return None

        i = series.last_index
        bar = series.to_frame().row(i, named=True)
        if not await self._upsert_bar(symbol, asset_type, bar, i):
            return None
        day = bar_date(bar["time"])
        logger.info("history.appended", symbol=symbol, date=day.isoformat())
        return day

    async def _upsert_bar(
        self, symbol: str, asset_type: AssetType, bar: dict, i: int
    ) -> bool:
        try:
            values = {
                "symbol": symbol,
                "asset_type": asset_type.value,
                "date": bar_date(bar["time"]),
                **{f: float(bar[f]) for f in _PRICE_FIELDS},
            }
        except (KeyError, TypeError, ValueError, OverflowError, OSError) as e:
            logger.debug("history.row_skipped", symbol=symbol, index=i, error=str(e))
            return False

        stmt = upsert(self._engine, PriceHistory.__table__).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["symbol", "date"],
            set_={f: stmt.excluded[f] for f in ("asset_type", *_PRICE_FIELDS)},
        )
        async with self._sessions() as session:
            try:
                await session.execute(stmt)
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                logger.debug("history.row_skipped", symbol=symbol, index=i, error=str(e))
                return False
        return True

    # ── reads ────────────────────────────────────────────────────────────

    async def get_candles(
        self, symbol: str, asset_type: AssetType | str, days: int
    ) -> CandleSeries | None:
        asset_type = get_asset(asset_type).asset_type
        cutoff = self._today() - timedelta(days=days)
        query = (
            select(PriceHistory)
            .where(PriceHistory.symbol == symbol, PriceHistory.date >= cutoff)
            .order_by(PriceHistory.date.asc())
        )
        try:
            async with self._sessions() as session:
                rows = list((await session.scalars(query)).all())
        except SQLAlchemyError as e:
            logger.warning("history.read_failed", symbol=symbol, error=str(e))
            rows = []

        if len(rows) >= MIN_ROWS:
            return _rows_to_series(rows)

        logger.info("history.miss", symbol=symbol, rows=len(rows), days=days)
        try:
            series = await self._router.get_candles(symbol, asset_type, live_range_for(days))
        except MarketDataError as e:
            logger.warning("history.live_failed", symbol=symbol, error=str(e))
            return None
        if not series.is_ok:
            return None

        self._schedule_backfill(symbol, asset_type)
        return series

    def _schedule_backfill(self, symbol: str, asset_type: AssetType) -> None:
        pending = self._backfills.get(symbol)
        if pending is not None and not pending.done():
            return
        task = asyncio.create_task(
            self.backfill_symbol(symbol, asset_type), name=f"backfill-{symbol}"
        )
        self._backfills[symbol] = task
        task.add_done_callback(lambda t: self._backfill_done(symbol, t))

    def _backfill_done(self, symbol: str, task: asyncio.Task) -> None:
        if self._backfills.get(symbol) is task:
            del self._backfills[symbol]
        if not task.cancelled() and task.exception() is not None:
            logger.error("history.backfill_crashed", symbol=symbol, error=str(task.exception()))

    async def drain(self) -> None:
        """Await background backfills still in flight."""
        pending = [t for t in self._backfills.values() if not t.done()]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def get_candle_count(self, symbol: str) -> int:
        query = select(func.count()).select_from(PriceHistory).where(PriceHistory.symbol == symbol)
        async with self._sessions() as session:
            return int(await session.scalar(query) or 0)

    async def get_cached_symbols(self) -> list[str]:
        query = select(PriceHistory.symbol).distinct().order_by(PriceHistory.symbol)
        async with self._sessions() as session:
            return list((await session.scalars(query)).all())

    async def get_cached_assets(self) -> list[tuple[str, AssetType]]:
        query = (
            select(PriceHistory.symbol, PriceHistory.asset_type)
            .distinct()
            .order_by(PriceHistory.symbol)
        )
        async with self._sessions() as session:
            result = await session.execute(query)
            return [(symbol, AssetType(kind)) for symbol, kind in result.all()]


def _rows_to_series(rows: list[PriceHistory]) -> CandleSeries:
    df = pl.DataFrame(
        {
            "time": [int(datetime.combine(r.date, ROW_TIME).timestamp()) for r in rows],
            **{f: [getattr(r, f) for r in rows] for f in _PRICE_FIELDS},
        }
    )
    return CandleSeries.from_frame(df, HISTORY_SOURCE)
