"""Async SQLAlchemy engine, session and transaction helpers."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .config import ServiceSettings

_ENGINE_CACHE: dict[str, AsyncEngine] = {}
_SESSION_FACTORY_CACHE: dict[str, async_sessionmaker[AsyncSession]] = {}


def is_sqlite_url(database_url: str) -> bool:
    return make_url(database_url).get_backend_name() == "sqlite"


def _install_sqlite_transaction_hooks(engine: AsyncEngine) -> None:
    """Make every SQLite transaction take the write lock up front.

    The driver's own deferred BEGIN is switched off so that SAVEPOINT works and
    concurrent writers queue on the database lock instead of failing mid-way.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_begin(dbapi_connection, _connection_record) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(connection) -> None:
        connection.exec_driver_sql("BEGIN IMMEDIATE")


def create_engine(
    database_url: str,
    *,
    echo: bool = False,
    busy_timeout_seconds: float = 30.0,
    **kwargs: Any,
) -> AsyncEngine:
    """Create or reuse a cached AsyncEngine for the given URL."""

    if database_url in _ENGINE_CACHE:
        return _ENGINE_CACHE[database_url]

    sqlite = is_sqlite_url(database_url)
    if sqlite:
        connect_args = dict(kwargs.pop("connect_args", {}))
        connect_args.setdefault("timeout", busy_timeout_seconds)
        kwargs["connect_args"] = connect_args

    engine = create_async_engine(database_url, pool_pre_ping=True, echo=echo, **kwargs)
    if sqlite:
        _install_sqlite_transaction_hooks(engine)
    _ENGINE_CACHE[database_url] = engine
    return engine


def get_session_factory(
    database_url: str,
    *,
    echo: bool = False,
    busy_timeout_seconds: float = 30.0,
) -> async_sessionmaker[AsyncSession]:
    """Return an async_sessionmaker bound to the cached engine."""

    if database_url in _SESSION_FACTORY_CACHE:
        return _SESSION_FACTORY_CACHE[database_url]

    engine = create_engine(database_url, echo=echo, busy_timeout_seconds=busy_timeout_seconds)
    session_factory = async_sessionmaker(engine, expire_on_commit=False)
    _SESSION_FACTORY_CACHE[database_url] = session_factory
    return session_factory


@asynccontextmanager
async def transactional_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    """Yield a session whose work is committed on success and rolled back otherwise.

    Rollback also covers task cancellation, so an abandoned request leaves no
    partial writes behind.
    """

    session = session_factory()
    try:
        yield session
        await session.commit()
    except BaseException:
        await session.rollback()
        raise
    finally:
        await session.close()


def resolve_database_url(settings: ServiceSettings, fallback: str) -> str:
    """Pick database URL from settings or fallback."""

    return settings.database_url or fallback


async def dispose_engines() -> None:
    """Dispose all cached engines (used on shutdown or tests)."""

    for engine in _ENGINE_CACHE.values():
        await engine.dispose()
    _ENGINE_CACHE.clear()
    _SESSION_FACTORY_CACHE.clear()
