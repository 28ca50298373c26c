"""Declarative base and async engine/session factory construction."""

from __future__ import annotations

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool


class Base(DeclarativeBase):
    """Base class for all ORM models."""


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:  # type: ignore[no-untyped-def]
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine.

    SQLite does not enforce foreign keys unless asked to on every connection,
    so the pragma is switched on for sqlite URLs. In-memory SQLite keeps a
    single shared connection, otherwise every session would see an empty
    database.
    """
    kwargs = {}
    if database_url.startswith("sqlite") and ":memory:" in database_url:
        kwargs = {"poolclass": StaticPool}
    engine = create_async_engine(database_url, echo=echo, future=True, **kwargs)
    if database_url.startswith("sqlite"):
        event.listen(engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create the session factory handed to units of work."""
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


class Database:
    """Process-wide database handle.

    Built once in the application lifespan and disposed on shutdown. The
    session factory is passed explicitly into the pipeline and routers.
    """

    def __init__(self, database_url: str, echo: bool = False):
        self.url = database_url
        self.engine = create_engine(database_url, echo=echo)
        self.session_factory = create_session_factory(self.engine)

    async def create_all(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def drop_all(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

    async def dispose(self) -> None:
        await self.engine.dispose()
