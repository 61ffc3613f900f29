from __future__ import annotations

"""Database setup for SQLAlchemy with the async psycopg driver."""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import Any, Optional

from sqlalchemy import create_engine, event, inspect, text
from sqlalchemy.engine.url import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.schema import CreateColumn

from libs.core.settings import get_settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Base class for all ORM models."""


def _enable_sqlite_foreign_keys(dbapi_conn, _record) -> None:
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Database:
    """Owns the async engine and hands out transactional sessions."""

    def __init__(self, url: str, **engine_kwargs: Any) -> None:
        self.url = url
        self._engine_kwargs = engine_kwargs
        self._engine: Optional[AsyncEngine] = None
        self._sessionmaker: Optional[async_sessionmaker[AsyncSession]] = None

    @property
    def is_sqlite(self) -> bool:
        return make_url(self.url).drivername.startswith("sqlite")

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            kwargs = dict(self._engine_kwargs)
            if not self.is_sqlite:
                # Survive Postgres restarts: validate and recycle pooled connections
                kwargs.setdefault("pool_pre_ping", True)
                kwargs.setdefault("pool_recycle", 1800)
            self._engine = create_async_engine(self.url, echo=False, **kwargs)
            if self.is_sqlite:
                event.listen(
                    self._engine.sync_engine, "connect", _enable_sqlite_foreign_keys
                )
        return self._engine

    @property
    def sessionmaker(self) -> async_sessionmaker[AsyncSession]:
        if self._sessionmaker is None:
            self._sessionmaker = async_sessionmaker(self.engine, expire_on_commit=False)
        return self._sessionmaker

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Provide a transactional scope around a series of operations."""

        async with self.sessionmaker() as session:
            try:
                yield session
                await session.commit()
            except BaseException:
                await session.rollback()
                raise

    async def init_db(self, max_attempts: int = 5, delay: float = 5) -> None:
        """Create tables and add missing columns if necessary.

        Connects up to ``max_attempts`` times with ``delay`` seconds between
        attempts. If all attempts fail, the last exception is propagated.
        """

        from . import models  # noqa: F401

        def sync_init(sync_conn):  # type: ignore[override]
            Base.metadata.create_all(sync_conn)
            inspector = inspect(sync_conn)
            for table in Base.metadata.tables.values():
                existing = {col["name"] for col in inspector.get_columns(table.name)}
                for column in table.columns:
                    if column.name not in existing:
                        col_ddl = CreateColumn(column.copy()).compile(
                            dialect=sync_conn.dialect
                        )
                        sync_conn.execute(
                            text(f"ALTER TABLE {table.name} ADD COLUMN {col_ddl}")
                        )

        self._ensure_database_exists()

        last_exc: SQLAlchemyError | None = None
        for attempt in range(1, max_attempts + 1):
            try:
                async with self.engine.begin() as conn:
                    await conn.run_sync(sync_init)
                logger.info("DB schema ensured (attempt %d)", attempt)
                return
            except SQLAlchemyError as exc:  # pragma: no cover - best effort
                last_exc = exc
                if attempt == max_attempts:
                    break
                logger.warning(
                    "DB init attempt %d failed: %s. Retrying in %ss", attempt, exc, delay
                )
                await asyncio.sleep(delay)

        logger.error("DB init failed after %d attempts", max_attempts)
        if last_exc is not None:
            raise last_exc

    def _ensure_database_exists(self) -> None:
        url = make_url(self.url)
        if not url.drivername.startswith("postgresql"):
            return
        try:
            maint_engine = create_engine(url.set(database="postgres"))
            with maint_engine.connect() as conn:
                exists = conn.execute(
                    text("SELECT 1 FROM pg_database WHERE datname=:db"),
                    {"db": url.database},
                ).scalar()
                if exists != 1:
                    # CREATE DATABASE must run outside a transaction block
                    conn.execution_options(isolation_level="AUTOCOMMIT").execute(
                        text(f'CREATE DATABASE "{url.database}"')
                    )
                    logger.info("Created missing database '%s'", url.database)
            maint_engine.dispose()
        except SQLAlchemyError as exc:  # pragma: no cover - best effort
            logger.warning("Could not verify database existence: %s", exc)

    async def dispose(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._sessionmaker = None


@lru_cache
def get_database() -> Database:
    """Return the process-wide database configured from settings."""
    return Database(get_settings().postgres_uri)


__all__ = ["Base", "Database", "get_database"]
