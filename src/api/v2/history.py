"""History endpoints — durable daily candles and cache introspection."""
from fastapi import APIRouter, Depends, HTTPException, Query

from src.api.v2.deps import get_services
from src.api.v2.models import CandleCount
from src.core.data.models import CandleSeries
from src.core.services import MarketDataServices

router = APIRouter(tags=["History"])


@router.get("/history/candles", response_model=CandleSeries)
async def get_history_candles(
    symbol: str = Query(...),
    asset_type: str = Query("STOCK", alias="assetType"),
    days: int = Query(365, ge=1, le=3650),
    services: MarketDataServices = Depends(get_services),
):
    """Stored daily bars, or the live series while the store is still warming."""
    series = await services.history.get_candles(symbol.upper(), asset_type, days)
    if series is None:
        raise HTTPException(status_code=404, detail=f"No candles for {symbol.upper()!r}")
    return series


@router.get("/history/symbols", response_model=list[str])
async def list_history_symbols(services: MarketDataServices = Depends(get_services)):
    return await services.history.get_cached_symbols()


@router.get("/history/{symbol}/count", response_model=CandleCount)
async def get_history_count(symbol: str, services: MarketDataServices = Depends(get_services)):
    count = await services.history.get_candle_count(symbol.upper())
    return CandleCount(symbol=symbol.upper(), count=count)
