"""FastAPI application — marketdata-engine v2."""
from contextlib import asynccontextmanager

import structlog
from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.api.v2 import assets, data, history, jobs, universes
from src.api.v2.deps import get_services
from src.api.v2.errors import (
    aggregate_failure_handler,
    job_already_running_handler,
    value_error_handler,
)
from src.api.v2.models import Health
from src.core.config import settings
from src.core.errors import AggregateFailure, JobAlreadyRunning
from src.core.logging import configure_logging
from src.core.services import MarketDataServices

logger = structlog.get_logger()

VERSION = "2.0.0"


def create_app(services: MarketDataServices | None = None) -> FastAPI:
    """Build the app. Injected services are owned by the caller and not started here."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = services is None
        if owned:
            configure_logging(settings.log_level, json=settings.log_json)
            app.state.services = MarketDataServices.from_settings(settings)
            await app.state.services.start()
        logger.info("startup", version=VERSION)
        yield
        if owned:
            await app.state.services.stop()
        logger.info("shutdown")

    app = FastAPI(
        title="Market Data Engine API",
        version=VERSION,
        description="Aggregated, cached market data for US equities and crypto",
        lifespan=lifespan,
    )
    if services is not None:
        app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(assets.router, prefix="/api/v2")
    app.include_router(data.router, prefix="/api/v2")
    app.include_router(history.router, prefix="/api/v2")
    app.include_router(jobs.router, prefix="/api/v2")
    app.include_router(universes.router, prefix="/api/v2")

    app.add_exception_handler(ValueError, value_error_handler)
    app.add_exception_handler(AggregateFailure, aggregate_failure_handler)
    app.add_exception_handler(JobAlreadyRunning, job_already_running_handler)

    @app.get("/health", response_model=Health)
    async def health(services: MarketDataServices = Depends(get_services)):
        return Health(
            version=VERSION,
            feed_state=services.feed.state.value,
            tracked_symbols=sorted(services.feed.tracked_symbols),
        )

    return app


app = create_app()
