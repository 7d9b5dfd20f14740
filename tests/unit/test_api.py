"""API endpoint tests — FastAPI TestClient over stubbed services."""
from types import SimpleNamespace

from fastapi.testclient import TestClient

from src.api.v2.app import create_app
from src.core.data.live_feed import FeedState
from src.core.data.models import CandleSeries, Quote
from src.core.db.models import JobState, JobStatus
from src.core.errors import AggregateFailure, JobAlreadyRunning, ProviderUnavailable
from src.core.markets.registry import get_asset


class StubRouter:

    def __init__(self):
        self.candle_calls = []

    async def get_quote(self, symbol, asset_type):
        asset = get_asset(asset_type)
        if symbol == "FAIL":
            raise AggregateFailure("quote", symbol, [ProviderUnavailable("av", "HTTP 500")])
        return Quote(
            symbol=symbol,
            asset_type=asset.asset_type,
            price=190.5,
            change_abs=-1.25,
            change_pct=-0.65,
            timestamp=1704488400,
            source="ALPHAVANTAGE",
        )

    async def get_candles(self, symbol, asset_type, range_token="6m"):
        get_asset(asset_type)
        self.candle_calls.append((symbol, range_token))
        return CandleSeries(
            time=[1, 2], open=[1, 2], high=[1, 2], low=[1, 2], close=[1, 2], volume=[1, 2],
            source="FINNHUB",
        )

    async def get_overview(self, symbol, asset_type):
        return {"Name": "Apple Inc"} if get_asset(asset_type).has_fundamentals else None

    async def get_news(self, symbol, asset_type):
        return []

    async def get_metrics(self, symbol, asset_type):
        return None


class StubHistory:

    async def get_candles(self, symbol, asset_type, days):
        if symbol == "NONE":
            return None
        return CandleSeries(
            time=[1], open=[1], high=[1], low=[1], close=[1], volume=[1], source="HISTORY"
        )

    async def get_cached_symbols(self):
        return ["AAPL", "BTCUSDT"]

    async def get_candle_count(self, symbol):
        return 504 if symbol == "AAPL" else 0


class StubJobs:

    def __init__(self):
        self.running: set[str] = set()

    async def launch(self, job_id, body):
        if job_id in self.running:
            raise JobAlreadyRunning(job_id)
        self.running.add(job_id)

    async def get_state(self, job_id):
        if job_id not in self.running:
            return None
        return JobState(id=job_id, status=JobStatus.RUNNING)


services = SimpleNamespace(
    router=StubRouter(),
    history=StubHistory(),
    jobs=StubJobs(),
    feed=SimpleNamespace(state=FeedState.CONNECTED, tracked_symbols=frozenset({"ETHUSDT", "BTCUSDT"})),
)
client = TestClient(create_app(services))


def test_health():
    r = client.get("/health")
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "ok"
    assert body["feed_state"] == "CONNECTED"
    assert body["tracked_symbols"] == ["BTCUSDT", "ETHUSDT"]


def test_quote_is_camel_case():
    r = client.get("/api/v2/data/quote?symbol=aapl&assetType=STOCK")
    assert r.status_code == 200
    body = r.json()
    assert body["symbol"] == "AAPL"
    assert body["assetType"] == "STOCK"
    assert body["changePct"] == -0.65
    assert body["isStale"] is False


def test_quote_all_providers_failed_is_502():
    r = client.get("/api/v2/data/quote?symbol=FAIL&assetType=STOCK")
    assert r.status_code == 502
    body = r.json()
    assert body["code"] == "UPSTREAM_UNAVAILABLE"
    assert body["details"]["providers"] == ["av"]


def test_unknown_asset_type_is_422():
    r = client.get("/api/v2/data/quote?symbol=AAPL&assetType=FOREX")
    assert r.status_code == 422
    assert r.json()["code"] == "VALIDATION_ERROR"


def test_candles_pass_range_token():
    r = client.get("/api/v2/data/candles?symbol=BTCUSDT&assetType=CRYPTO&range=1w")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"
    assert services.router.candle_calls[-1] == ("BTCUSDT", "1w")


def test_optional_data_endpoints():
    assert client.get("/api/v2/data/profile?symbol=AAPL").json()["profile"] == {"Name": "Apple Inc"}
    assert client.get("/api/v2/data/profile?symbol=BTCUSDT&assetType=CRYPTO").json()["profile"] is None
    assert client.get("/api/v2/data/news?symbol=AAPL").json()["articles"] == []
    assert client.get("/api/v2/data/metrics?symbol=AAPL").json()["metrics"] is None


def test_history_candles():
    r = client.get("/api/v2/history/candles?symbol=AAPL&days=365")
    assert r.status_code == 200
    assert r.json()["source"] == "HISTORY"


def test_history_candles_missing_is_404():
    r = client.get("/api/v2/history/candles?symbol=NONE")
    assert r.status_code == 404


def test_history_introspection():
    assert client.get("/api/v2/history/symbols").json() == ["AAPL", "BTCUSDT"]
    assert client.get("/api/v2/history/aapl/count").json() == {"symbol": "AAPL", "count": 504}


def test_daily_job_conflict():
    first = client.post("/api/v2/jobs/daily")
    second = client.post("/api/v2/jobs/daily")
    assert first.status_code == 202
    assert first.json()["job_id"] == "daily"
    assert second.status_code == 409
    assert second.json()["code"] == "JOB_RUNNING"


def test_screener_job():
    r = client.post("/api/v2/jobs/screener/nasdaq100")
    assert r.status_code == 202
    assert r.json()["job_id"] == "NASDAQ100"

    state = client.get("/api/v2/jobs/NASDAQ100")
    assert state.status_code == 200
    assert state.json()["status"] == "RUNNING"


def test_screener_unknown_universe_is_422():
    r = client.post("/api/v2/jobs/screener/FTSE100")
    assert r.status_code == 422


def test_unknown_job_is_404():
    assert client.get("/api/v2/jobs/nope").status_code == 404


def test_list_universes():
    r = client.get("/api/v2/universes")
    assert r.status_code == 200
    names = {u["name"]: u for u in r.json()}
    assert set(names) == {"SP500", "NASDAQ100", "CRYPTO"}
    assert names["CRYPTO"]["asset_type"] == "CRYPTO"


def test_list_assets():
    r = client.get("/api/v2/assets")
    assert r.status_code == 200
    by_type = {a["asset_type"]: a for a in r.json()}
    assert by_type["STOCK"]["providers"]["quote"] == ["alphavantage", "finnhub"]
    assert by_type["CRYPTO"]["has_fundamentals"] is False
