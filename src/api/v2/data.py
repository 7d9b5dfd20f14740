"""Data endpoints — quotes, candles and optional fundamentals via the Router."""
from fastapi import APIRouter, Depends, Query

from src.api.v2.deps import get_services
from src.api.v2.models import MetricsResponse, NewsResponse, ProfileResponse
from src.core.data.models import CandleSeries, Quote
from src.core.services import MarketDataServices

router = APIRouter(tags=["Data"])


@router.get("/data/quote", response_model=Quote)
async def get_quote(
    symbol: str = Query(...),
    asset_type: str = Query("STOCK", alias="assetType"),
    services: MarketDataServices = Depends(get_services),
):
    """Latest quote; 502 when every provider failed."""
    return await services.router.get_quote(symbol.upper(), asset_type)


@router.get("/data/candles", response_model=CandleSeries)
async def get_candles(
    symbol: str = Query(...),
    asset_type: str = Query("STOCK", alias="assetType"),
    range_token: str = Query("6m", alias="range"),
    services: MarketDataServices = Depends(get_services),
):
    """OHLCV series for a range token (1d, 1w, 1m, 3m, 6m, 1y)."""
    return await services.router.get_candles(symbol.upper(), asset_type, range_token)


@router.get("/data/profile", response_model=ProfileResponse)
async def get_profile(
    symbol: str = Query(...),
    asset_type: str = Query("STOCK", alias="assetType"),
    services: MarketDataServices = Depends(get_services),
):
    profile = await services.router.get_overview(symbol.upper(), asset_type)
    return ProfileResponse(symbol=symbol.upper(), profile=profile)


@router.get("/data/metrics", response_model=MetricsResponse)
async def get_metrics(
    symbol: str = Query(...),
    asset_type: str = Query("STOCK", alias="assetType"),
    services: MarketDataServices = Depends(get_services),
):
    metrics = await services.router.get_metrics(symbol.upper(), asset_type)
    return MetricsResponse(symbol=symbol.upper(), metrics=metrics)


@router.get("/data/news", response_model=NewsResponse)
async def get_news(
    symbol: str = Query(...),
    asset_type: str = Query("STOCK", alias="assetType"),
    services: MarketDataServices = Depends(get_services),
):
    articles = await services.router.get_news(symbol.upper(), asset_type)
    return NewsResponse(symbol=symbol.upper(), articles=articles)
