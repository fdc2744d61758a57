import asyncio
from contextlib import asynccontextmanager
from typing import AsyncContextManager, Callable, Tuple

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine,
)

from .. import config

Gated = Callable[[], AsyncContextManager[None]]

_ASYNC_DRIVERS = (
    ("sqlite://", "sqlite+aiosqlite://"),
    ("postgresql://", "postgresql+asyncpg://"),
    ("postgres://", "postgresql+asyncpg://"),
)


def async_url(database_url: str) -> str:
    """Swap a plain sqlite/postgres URL for its async driver."""
    for plain, driver in _ASYNC_DRIVERS:
        if database_url.startswith(plain):
            return driver + database_url[len(plain):]
    return database_url


def _is_sqlite(url: str) -> bool:
    return url.startswith("sqlite+aiosqlite://")


def _install_sqlite_pragmas(engine: AsyncEngine) -> None:
    @event.listens_for(engine.sync_engine, "connect")
    def _pragmas(dbapi_connection, _):
        cur = dbapi_connection.cursor()
        cur.execute("PRAGMA journal_mode=WAL;")
        cur.execute(f"PRAGMA busy_timeout={config.SQLITE_BUSY_TIMEOUT_MS};")
        cur.execute("PRAGMA synchronous=NORMAL;")
        cur.close()


def make_gate(limit: int) -> Tuple[asyncio.Semaphore, Gated]:
    """Semaphore bounding concurrent sessions, plus ``async with gated():``."""
    sem = asyncio.Semaphore(max(1, limit))

    @asynccontextmanager
    async def gated():
        async with sem:
            yield

    return sem, gated


def make_async_engine(database_url: str, gate_limit: int = 0):
    """Returns ``(engine, SessionAsync, db_gate, gated)``."""
    url = async_url(database_url)
    kw = dict(future=True, pool_pre_ping=True)
    if not _is_sqlite(url):
        kw.update(
            pool_size=config.DB_POOL_SIZE,
            max_overflow=config.DB_MAX_OVERFLOW,
            pool_timeout=config.DB_POOL_TIMEOUT,
        )

    engine = create_async_engine(url, **kw)
    if _is_sqlite(url):
        _install_sqlite_pragmas(engine)

    SessionAsync = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    db_gate, gated = make_gate(gate_limit or config.DB_GATE_LIMIT)
    return engine, SessionAsync, db_gate, gated


async def create_schema(engine: AsyncEngine, metadata) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)
