# dosewatch/db/session.py
from __future__ import annotations

import uuid

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool

from dosewatch import config
from dosewatch.db.models import metadata

_engine: AsyncEngine | None = None


def _create(url: str) -> AsyncEngine:
    if url.startswith("sqlite"):
        # one shared connection, otherwise every checkout of :memory: is a new database
        return create_async_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            echo=False,
        )
    return create_async_engine(
        url,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=0,
        echo=False,
    )


def engine() -> AsyncEngine:
    """
    Lazily create a singleton AsyncEngine from config.get_database_url().
    MySQL goes through 'mysql+aiomysql' with utf8mb4; tests and local runs use 'sqlite+aiosqlite'.
    """
    global _engine
    if _engine is None:
        _engine = _create(config.get_database_url())
    return _engine


def configure(url: str) -> AsyncEngine:
    """Replace the singleton (tests, CLI --database-url)."""
    global _engine
    _engine = _create(url)
    return _engine


async def init_models() -> None:
    async with engine().begin() as conn:
        await conn.run_sync(metadata.create_all)


async def dispose() -> None:
    global _engine
    if _engine is not None:
        await _engine.dispose()
        _engine = None


def new_id() -> str:
    return str(uuid.uuid4())
