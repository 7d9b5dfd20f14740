"""
Asset Registry — single source of truth for per-asset-class provider ordering.
The router walks these lists in order; the first provider that answers wins.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum


class AssetType(str, Enum):
    STOCK = "STOCK"
    CRYPTO = "CRYPTO"


class DataKind(str, Enum):
    QUOTE = "quote"
    CANDLES = "candles"
    OVERVIEW = "overview"
    NEWS = "news"
    METRICS = "metrics"


@dataclass(frozen=True)
class AssetConfig:
    asset_type:        AssetType
    name:              str
    has_fundamentals:  bool
    # preferred order per data kind; an empty list means "not available"
    providers:         dict[DataKind, list[str]] = field(default_factory=dict)
    # kinds the caller cannot do without; exhausting these raises
    required:          frozenset[DataKind] = frozenset()


ASSET_REGISTRY: dict[AssetType, AssetConfig] = {

    AssetType.STOCK: AssetConfig(
        asset_type=AssetType.STOCK,
        name="US equities",
        has_fundamentals=True,
        providers={
            DataKind.QUOTE:    ["alphavantage", "finnhub"],
            DataKind.CANDLES:  ["alphavantage", "finnhub"],
            DataKind.OVERVIEW: ["alphavantage", "finnhub"],
            DataKind.NEWS:     ["finnhub"],
            DataKind.METRICS:  ["finnhub"],
        },
        required=frozenset({DataKind.QUOTE, DataKind.CANDLES}),
    ),

    AssetType.CRYPTO: AssetConfig(
        asset_type=AssetType.CRYPTO,
        name="Crypto spot",
        has_fundamentals=False,
        providers={
            # the feed itself falls back to Binance REST, then a stale entry
            DataKind.QUOTE:    ["binance_ws"],
            DataKind.CANDLES:  ["binance"],
            DataKind.OVERVIEW: [],
            DataKind.NEWS:     [],
            DataKind.METRICS:  [],
        },
        required=frozenset({DataKind.QUOTE}),
    ),
}


def get_asset(code: str | AssetType) -> AssetConfig:
    try:
        return ASSET_REGISTRY[AssetType(str(getattr(code, "value", code)).upper())]
    except (ValueError, KeyError):
        valid = [a.value for a in ASSET_REGISTRY]
        raise ValueError(f"Unknown asset type '{code}'. Valid: {valid}")


def provider_order(asset_type: AssetType, kind: DataKind) -> list[str]:
    return list(ASSET_REGISTRY[asset_type].providers.get(kind, []))


def list_assets() -> list[dict]:
    """Serialisable list for /api/v2/assets endpoint."""
    return [
        {
            "asset_type":       a.asset_type.value,
            "name":             a.name,
            "has_fundamentals": a.has_fundamentals,
            "providers":        {k.value: v for k, v in a.providers.items()},
        }
        for a in ASSET_REGISTRY.values()
    ]
