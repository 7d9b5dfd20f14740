"""Error taxonomy for the market data layer.

Adapter-level errors (ProviderError subclasses) are caught by the router and
drive fallback. Only AggregateFailure and JobAlreadyRunning reach API callers.
"""


class MarketDataError(Exception):
    """Base class for every failure raised by the data layer."""


class ProviderError(MarketDataError):

    def __init__(self, provider: str, message: str):
        self.provider = provider
        super().__init__(f"{provider}: {message}")


class ProviderUnavailable(ProviderError):
    """Network failure, timeout, non-success HTTP status or undecodable body."""


class RateLimited(ProviderError):
    """Upstream signalled quota exhaustion."""


class NoDataFound(ProviderError):
    """Well-formed response without the fields we need."""


class MalformedCache(MarketDataError):

    def __init__(self, key: str, reason: str = ""):
        self.key = key
        super().__init__(f"Malformed cache entry {key!r}: {reason}")


class JobAlreadyRunning(MarketDataError):

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job {job_id!r} is already running")


class AggregateFailure(MarketDataError):
    """Every provider in the fallback chain failed."""

    def __init__(self, kind: str, symbol: str, errors: list[Exception] | None = None):
        self.kind = kind
        self.symbol = symbol
        self.errors = list(errors or [])
        detail = "; ".join(str(e) for e in self.errors) or "no provider answered"
        super().__init__(f"All providers failed for {kind} {symbol}: {detail}")
