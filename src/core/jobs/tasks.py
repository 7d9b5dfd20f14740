"""Batch job bodies and the nightly scheduler that launches them."""
from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Callable

import structlog
from sqlalchemy.exc import SQLAlchemyError

from src.core.data.universe.symbols import get_universe
from src.core.errors import JobAlreadyRunning
from src.core.history.store import HistoryStore
from src.core.jobs.coordinator import JobCoordinator

logger = structlog.get_logger()

DAILY_JOB_ID = "daily"


async def run_daily(history: HistoryStore) -> dict:
    """Append the latest bar for every asset already in the history table."""
    assets = await history.get_cached_assets()
    updated, skipped = 0, []
    for symbol, asset_type in assets:
        day = await history.append_latest_candle(symbol, asset_type)
        if day is None:
            skipped.append(symbol)
        else:
            updated += 1
    logger.info("daily.complete", total=len(assets), updated=updated, skipped=len(skipped))
    return {"total": len(assets), "updated": updated, "skipped": skipped}


async def run_universe_sync(history: HistoryStore, universe: str) -> dict:
    """Backfill every symbol of a universe."""
    asset_type, symbols = get_universe(universe)
    rows, empty = 0, []
    for i, symbol in enumerate(symbols):
        written = await history.backfill_symbol(symbol, asset_type)
        if written:
            rows += written
        else:
            empty.append(symbol)
        logger.debug("sync.progress", universe=universe, done=i + 1, total=len(symbols))
    logger.info("sync.complete", universe=universe, total=len(symbols), rows=rows, empty=len(empty))
    return {"total": len(symbols), "rows": rows, "empty": empty}


def next_run_at(hour_utc: int, now: datetime) -> datetime:
    """The first hour_utc:00 strictly after now."""
    target = now.replace(hour=hour_utc, minute=0, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    return target


class NightlyScheduler:
    """Launches the `daily` job once a day at hour_utc."""

    def __init__(
        self,
        coordinator: JobCoordinator,
        history: HistoryStore,
        hour_utc: int = 22,
        clock: Callable[[], datetime] | None = None,
    ):
        if not 0 <= hour_utc <= 23:
            raise ValueError(f"hour_utc must be within 0..23, got {hour_utc}")
        self._coordinator = coordinator
        self._history = history
        self._hour = hour_utc
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name="nightly-scheduler")
        logger.info("scheduler.started", hour_utc=self._hour)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        # only the wait loop is cancelled; a launched job keeps running
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _loop(self) -> None:
        # the next target is never earlier than a day after the last one
        target = next_run_at(self._hour, self._clock())
        while True:
            delay = max(0.0, (target - self._clock()).total_seconds())
            logger.debug("scheduler.sleeping", seconds=round(delay), target=target.isoformat())
            await asyncio.sleep(delay)
            await self.fire()
            target = max(target + timedelta(days=1), next_run_at(self._hour, self._clock()))

    async def fire(self) -> asyncio.Task | None:
        try:
            return await self._coordinator.launch(DAILY_JOB_ID, lambda: run_daily(self._history))
        except JobAlreadyRunning:
            logger.warning("scheduler.skipped", job_id=DAILY_JOB_ID, reason="already running")
            return None
        except SQLAlchemyError as e:
            logger.error("scheduler.claim_failed", job_id=DAILY_JOB_ID, error=str(e))
            return None
