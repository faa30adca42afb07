"""Database engine and session management."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    async_sessionmaker,
    AsyncEngine,
    AsyncSession,
    create_async_engine,
)

from deployguard.config import DatabaseSettings
from deployguard.infrastructure.persistence.models import Base


logger = structlog.get_logger(__name__)


class DatabaseManager:
    """Manages async database connections with connection pooling."""

    def __init__(self, settings: DatabaseSettings, url: str | None = None) -> None:
        self._settings = settings
        self._url = url or settings.async_url
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    async def initialize(self, create_schema: bool = True) -> None:
        options = {"pool_pre_ping": True, "echo": False}
        if self._url.startswith("postgresql"):
            options.update(
                pool_size=self._settings.pool_size,
                max_overflow=self._settings.max_overflow,
                pool_timeout=self._settings.pool_timeout,
            )
        self._engine = create_async_engine(self._url, **options)
        self._session_factory = async_sessionmaker(
            bind=self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )
        if create_schema:
            async with self._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        logger.info("database_initialized", dialect=self._engine.dialect.name)

    async def ping(self) -> None:
        """Round-trip a trivial query; raises when the database is unreachable."""
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

    async def close(self) -> None:
        if self._engine:
            await self._engine.dispose()

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        if self._session_factory is None:
            raise RuntimeError("Database not initialized. Call initialize() first.")
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("Database not initialized.")
        return self._engine
