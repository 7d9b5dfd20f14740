"""Data layer — cache-first provider access.

Design: every read goes through MarketDataRouter, which walks the adapters
in ASSET_REGISTRY order. Each adapter checks the Redis CacheStore first and
only on a miss (or stale entry) spends an upstream call. This means:
  • Repeated reads within a TTL never touch the network or the rate limiter.
  • Crypto quotes are served from the websocket hot cache when streaming.
  • A stale persisted crypto quote still answers when Binance is down.

Components are wired explicitly by src.core.services.MarketDataServices.
"""
