import logging
from typing import AsyncIterator, Optional

from fastapi import Request
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import declarative_base, sessionmaker

logger = logging.getLogger(__name__)

Base = declarative_base()


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    # SQLite ignores ON DELETE CASCADE unless this is set per connection
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Database:
    """Owns the engine and session factory for one process.

    Opened once at startup, shared by every request, closed at shutdown.
    """

    def __init__(self, url: str, *, echo: bool = False, pool_timeout: Optional[float] = None):
        self.url = url
        self.echo = echo
        self.pool_timeout = pool_timeout
        self.engine: Optional[AsyncEngine] = None
        self._session_maker: Optional[sessionmaker] = None

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name if self.engine is not None else self.url.split(":", 1)[0].split("+", 1)[0]

    def open(self) -> "Database":
        if self.engine is not None:
            return self
        kwargs = {"echo": self.echo, "future": True}
        if not self.is_sqlite and self.pool_timeout:
            kwargs["pool_timeout"] = self.pool_timeout
        self.engine = create_async_engine(self.url, **kwargs)
        if self.is_sqlite:
            event.listen(self.engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
        self._session_maker = sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
        )
        logger.info("Database opened (%s)", self.dialect_name)
        return self

    def session(self) -> AsyncSession:
        if self._session_maker is None:
            raise RuntimeError("Database is not open")
        return self._session_maker()

    async def create_all(self) -> None:
        from . import models  # noqa: F401  registers every table on Base.metadata

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        if self.engine is None:
            return
        await self.engine.dispose()
        self.engine = None
        self._session_maker = None
        logger.info("Database closed")


def get_database(request: Request) -> Database:
    return request.app.state.db


async def get_db(request: Request) -> AsyncIterator[AsyncSession]:
    async with get_database(request).session() as session:
        yield session
