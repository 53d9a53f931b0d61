"""Async database engine and session management."""

from pathlib import Path
from typing import Optional

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


class Database:
    """Owns the async engine and session factory for one process.

    Constructed explicitly and passed to repositories; nothing connects
    until ``initialize`` is awaited.
    """

    def __init__(self, url: str, echo: bool = False):
        self.url = url
        self.echo = echo
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker[AsyncSession]] = None

    @property
    def is_sqlite(self) -> bool:
        return make_url(self.url).get_backend_name() == "sqlite"

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("Database is not initialized")
        return self._engine

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            raise RuntimeError("Database is not initialized")
        return self._session_factory

    async def initialize(self, create_tables: bool = True) -> None:
        """Create the engine and, optionally, any missing tables."""
        if self._engine is not None:
            return

        kwargs: dict = {"echo": self.echo}
        if self.is_sqlite:
            database = make_url(self.url).database
            if database and database != ":memory:":
                Path(database).parent.mkdir(parents=True, exist_ok=True)
            # Each worker process and each asyncio.run() loop gets fresh
            # connections; pooled aiosqlite connections are loop-bound.
            kwargs["poolclass"] = NullPool
            kwargs["connect_args"] = {"timeout": 30}

        self._engine = create_async_engine(self.url, **kwargs)
        self._session_factory = async_sessionmaker(self._engine, expire_on_commit=False)

        if create_tables:
            # Import models so they register on Base.metadata
            from hlsforge.modules.upload import models  # noqa: F401

            async with self._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)

    async def shutdown(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
        self._engine = None
        self._session_factory = None

