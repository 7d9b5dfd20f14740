"""Assets endpoint."""
from fastapi import APIRouter

from src.api.v2.models import Asset
from src.core.markets.registry import list_assets

router = APIRouter(tags=["Assets"])


@router.get("/assets", response_model=list[Asset])
async def get_assets():
    """List supported asset types and their provider order."""
    return list_assets()
