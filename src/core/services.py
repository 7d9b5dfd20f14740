"""Service container — one instance of every long-lived engine component.

Everything is constructed explicitly from Settings, so the app and the tests
can each own an isolated graph instead of sharing module singletons.
"""
from __future__ import annotations

from dataclasses import dataclass

import structlog
from sqlalchemy.ext.asyncio import AsyncEngine

from src.core.config import Settings
from src.core.data.cache.store import CacheStore
from src.core.data.live_feed import LiveFeedManager
from src.core.data.providers.alphavantage import AlphaVantageProvider
from src.core.data.providers.binance import BinanceProvider
from src.core.data.providers.finnhub import FinnhubProvider
from src.core.data.providers.router import MarketDataRouter
from src.core.data.rate_limit import RateLimiter
from src.core.db.session import create_engine, init_schema
from src.core.history.store import HistoryStore
from src.core.jobs.coordinator import JobCoordinator
from src.core.jobs.tasks import NightlyScheduler

logger = structlog.get_logger()


@dataclass
class MarketDataServices:
    engine: AsyncEngine
    cache: CacheStore
    finnhub_limiter: RateLimiter
    alphavantage: AlphaVantageProvider
    finnhub: FinnhubProvider
    binance: BinanceProvider
    feed: LiveFeedManager
    router: MarketDataRouter
    history: HistoryStore
    jobs: JobCoordinator
    scheduler: NightlyScheduler | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> MarketDataServices:
        engine = create_engine(settings.database_url)
        cache = CacheStore(settings.redis_url)
        timeout = settings.http_timeout_seconds

        # one bucket for the whole process: every Finnhub call spends it
        finnhub_limiter = RateLimiter(settings.finnhub_calls_per_minute, 60)

        alphavantage = AlphaVantageProvider(
            cache,
            api_key=settings.alphavantage_api_key,
            base_url=settings.alphavantage_base_url,
            timeout_seconds=timeout,
        )
        finnhub = FinnhubProvider(
            cache,
            api_key=settings.finnhub_api_key,
            base_url=settings.finnhub_base_url,
            timeout_seconds=timeout,
            limiter=finnhub_limiter,
        )
        binance = BinanceProvider(
            cache, base_url=settings.binance_rest_base_url, timeout_seconds=timeout
        )
        feed = LiveFeedManager(
            binance,
            cache,
            ws_base_url=settings.binance_ws_base_url,
            reconnect_delay=settings.feed_reconnect_delay_seconds,
            persist_interval=settings.feed_persist_interval_seconds,
        )
        router = MarketDataRouter(alphavantage, finnhub, binance, feed)
        history = HistoryStore(engine, router)
        jobs = JobCoordinator(engine)
        scheduler = (
            NightlyScheduler(jobs, history, hour_utc=settings.daily_job_hour_utc)
            if settings.scheduler_enabled
            else None
        )
        return cls(
            engine=engine,
            cache=cache,
            finnhub_limiter=finnhub_limiter,
            alphavantage=alphavantage,
            finnhub=finnhub,
            binance=binance,
            feed=feed,
            router=router,
            history=history,
            jobs=jobs,
            scheduler=scheduler,
        )

    async def start(self) -> None:
        await init_schema(self.engine)
        await self.jobs.recover()
        await self.feed.start()
        if self.scheduler is not None:
            self.scheduler.start()
        logger.info("services.started", scheduler=self.scheduler is not None)

    async def stop(self) -> None:
        if self.scheduler is not None:
            await self.scheduler.stop()
        await self.feed.stop()
        await self.jobs.drain()
        await self.history.drain()
        await self.cache.close()
        await self.engine.dispose()
        logger.info("services.stopped")
