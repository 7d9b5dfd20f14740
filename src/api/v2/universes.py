"""Universes endpoint — symbol lists the backfill job can walk."""
from fastapi import APIRouter

from src.api.v2.models import Universe
from src.core.data.universe.symbols import list_universes

router = APIRouter(tags=["Universes"])


@router.get("/universes", response_model=list[Universe])
async def get_universes():
    """List defined universes with their asset type and size."""
    return list_universes()
