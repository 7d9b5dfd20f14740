"""Async engine / session factory and the dialect-aware upsert helper."""
from sqlalchemy import Table
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from src.core.db.models import Base


def create_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    return create_async_engine(database_url, echo=echo)


def session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


async def init_schema(engine: AsyncEngine) -> None:
    """create_all for dev and tests; no migrations are managed here."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def upsert(engine: AsyncEngine, table: Table):
    """INSERT builder supporting on_conflict_do_update for the engine's dialect."""
    dialect = engine.dialect.name
    if dialect == "postgresql":
        return postgresql.insert(table)
    if dialect == "sqlite":
        return sqlite.insert(table)
    raise ValueError(f"Unsupported database dialect for upsert: {dialect}")
