"""Request-scoped access to the service container held on app.state."""
from fastapi import Request

from src.core.services import MarketDataServices


def get_services(request: Request) -> MarketDataServices:
    return request.app.state.services
