import pytest
import pytest_asyncio

from src.core.data.cache.store import CacheStore
from src.core.db.session import create_engine, init_schema
from tests.fakes import FakeClock, FakeRedis


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(fake_redis, clock) -> CacheStore:
    return CacheStore(client=fake_redis, clock=clock)


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path}/test.db")
    await init_schema(engine)
    yield engine
    await engine.dispose()
