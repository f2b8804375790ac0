"""
Async database access using asyncpg (NO ORM).

The pool is owned by a single ``Database`` instance created in the FastAPI
lifespan and stored on ``app.state.db``. Routes receive one connection per
request through ``get_db``; background work acquires its own connection from
the same ``Database``.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncGenerator, AsyncIterator

import asyncpg
from fastapi import Request

from workshop.core.config import Settings
from workshop.core.exceptions import TransientStoreError
from workshop.core.logging_config import get_logger

logger = get_logger(__name__)

# Connection-level failures that a caller can retry with backoff
TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
    asyncpg.exceptions.PostgresConnectionError,
    asyncpg.exceptions.ConnectionDoesNotExistError,
    asyncpg.exceptions.TooManyConnectionsError,
    asyncpg.exceptions.CannotConnectNowError,
    ConnectionError,
    asyncio.TimeoutError,
)


class Database:
    """Owns the asyncpg connection pool for the lifetime of the process."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self._pool: asyncpg.Pool | None = None

    @property
    def pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise RuntimeError("Database pool not initialized. Call connect() first.")
        return self._pool

    async def connect(self) -> None:
        """
        Initialize the connection pool on startup.

        Call this in the FastAPI lifespan event.
        """
        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.settings.DATABASE_URL,
                min_size=self.settings.DB_POOL_MIN_SIZE,
                max_size=self.settings.DB_POOL_MAX_SIZE,
                max_inactive_connection_lifetime=300,  # Close idle connections after 5 minutes
                timeout=self.settings.DB_ACQUIRE_TIMEOUT,
                command_timeout=self.settings.DB_COMMAND_TIMEOUT,
            )
        except TRANSIENT_ERRORS as e:
            raise TransientStoreError() from e
        logger.info(
            f"Database pool initialized: {self._pool.get_size()} / {self._pool.get_max_size()} connections"
        )

    async def close(self) -> None:
        """Close the pool on shutdown."""
        if self._pool:
            await self._pool.close()
            self._pool = None
            logger.info("Database pool closed")

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[asyncpg.Connection]:
        """
        Get a database connection from the pool.

        The connection is returned to the pool on every exit path. Connection
        failures (while acquiring or mid-query) surface as TransientStoreError.

        Usage:
            async with db.connection() as conn:
                row = await conn.fetchrow("SELECT * FROM users WHERE id = $1", user_id)
        """
        try:
            async with self.pool.acquire(timeout=self.settings.DB_ACQUIRE_TIMEOUT) as conn:
                yield conn
        except TRANSIENT_ERRORS as e:
            logger.warning(f"Datastore unavailable: {e!r}")
            raise TransientStoreError() from e

    def pool_stats(self) -> dict[str, int]:
        if self._pool is None:
            return {}
        size = self._pool.get_size()
        idle = self._pool.get_idle_size()
        return {
            "size": size,
            "max": self._pool.get_max_size(),
            "idle": idle,
            "active": size - idle,
        }


def get_database(request: Request) -> Database:
    """FastAPI dependency returning the process-wide Database."""
    return request.app.state.db


async def get_db(request: Request) -> AsyncGenerator[asyncpg.Connection, None]:
    """
    FastAPI dependency for database connections.

    Usage in routes:
        @router.get("/sessions")
        async def list_sessions(conn: asyncpg.Connection = Depends(get_db)):
            ...
    """
    async with get_database(request).connection() as conn:
        yield conn


# Helper functions to convert asyncpg.Record to dict
def record_to_dict(record: asyncpg.Record | None) -> dict | None:
    """Convert asyncpg Record to dictionary."""
    if record is None:
        return None
    return dict(record)


def records_to_list(records: list[asyncpg.Record]) -> list[dict]:
    """Convert list of asyncpg Records to list of dictionaries."""
    return [dict(record) for record in records]


def affected_rows(status: str | None) -> int:
    """Parse the row count from an asyncpg command status such as 'DELETE 3'."""
    if not status:
        return 0
    try:
        return int(status.split()[-1])
    except ValueError:
        return 0
