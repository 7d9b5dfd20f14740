"""Hardcoded symbol lists per universe — the batch backfill job walks these."""
from src.core.markets.registry import AssetType

UNIVERSE_SYMBOLS: dict[str, list[str]] = {
    "SP500": [
        "AAPL","MSFT","GOOGL","AMZN","NVDA","META","TSLA","JPM","V","XOM",
        "UNH","JNJ","WMT","MA","PG","HD","CVX","MRK","LLY","ABBV",
    ],
    "NASDAQ100": [
        "AAPL","MSFT","NVDA","AMZN","META","GOOGL","TSLA","AVGO","COST","NFLX",
        "ADBE","AMD","QCOM","INTC","INTU","CSCO","CMCSA","PEP","AMAT","MU",
    ],
    "CRYPTO": [
        "BTCUSDT","ETHUSDT","BNBUSDT","SOLUSDT","XRPUSDT",
        "ADAUSDT","DOGEUSDT","AVAXUSDT","DOTUSDT","LINKUSDT",
    ],
}

UNIVERSE_ASSET_TYPES: dict[str, AssetType] = {
    "SP500": AssetType.STOCK,
    "NASDAQ100": AssetType.STOCK,
    "CRYPTO": AssetType.CRYPTO,
}


def get_universe(name: str) -> tuple[AssetType, list[str]]:
    """Asset type and symbols for a universe; ValueError when unknown."""
    key = name.upper()
    if key not in UNIVERSE_SYMBOLS:
        raise ValueError(f"Unknown universe '{name}'. Valid: {sorted(UNIVERSE_SYMBOLS)}")
    return UNIVERSE_ASSET_TYPES[key], list(UNIVERSE_SYMBOLS[key])


def list_universes() -> list[dict]:
    return [
        {"name": name, "asset_type": UNIVERSE_ASSET_TYPES[name].value, "size": len(syms)}
        for name, syms in UNIVERSE_SYMBOLS.items()
    ]
