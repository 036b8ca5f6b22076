"""
PostgreSQL pool for the digest store.

The pool is created lazily by connect(); startup tolerates a database
that is still coming up by retrying with exponential backoff.
"""

import asyncio
import logging
from types import TracebackType
from typing import Any

import asyncpg

from src.config.settings import get_settings
from src.scheduler.backoff import retry_delay

logger = logging.getLogger(__name__)


class Database:
    """
    asyncpg pool wrapper used by PostgresDigestRepository.

    Usage:
        async with Database() as db:
            row = await db.fetchrow("SELECT * FROM digests WHERE id = $1", digest_id)
    """

    def __init__(
        self,
        database_url: str | None = None,
        min_size: int | None = None,
        max_size: int | None = None,
        connect_attempts: int = 3,
        command_timeout: float = 30.0,
    ):
        settings = get_settings()

        self._database_url = database_url or str(settings.database_url)
        self._min_size = min_size or settings.db_pool_min_size
        self._max_size = max_size or settings.db_pool_max_size
        self._connect_attempts = max(1, connect_attempts)
        self._command_timeout = command_timeout

        self._pool: asyncpg.Pool | None = None

    @property
    def is_connected(self) -> bool:
        return self._pool is not None

    async def connect(self) -> None:
        """
        Create the connection pool.

        Retries OSError and connection-level asyncpg errors up to
        connect_attempts times; the last error is re-raised.
        """
        if self._pool is not None:
            return

        for attempt in range(1, self._connect_attempts + 1):
            try:
                self._pool = await asyncpg.create_pool(
                    self._database_url,
                    min_size=self._min_size,
                    max_size=self._max_size,
                    command_timeout=self._command_timeout,
                )
                break
            except (OSError, asyncpg.PostgresConnectionError) as e:
                if attempt == self._connect_attempts:
                    logger.error(f"Failed to connect to database after {attempt} attempts: {e}")
                    raise
                delay = retry_delay(attempt, base_delay=0.5, multiplier=2.0, max_delay=5.0)
                logger.warning(
                    f"Database connect attempt {attempt} failed ({e}), retrying in {delay:.1f}s"
                )
                await asyncio.sleep(delay)

        logger.info(f"Database connected (pool: {self._min_size}-{self._max_size})")

    async def close(self) -> None:
        if self._pool:
            await self._pool.close()
            self._pool = None
            logger.info("Database connection closed")

    async def __aenter__(self) -> "Database":
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    @property
    def pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._pool

    async def execute(self, query: str, *args: Any) -> str:
        return await self.pool.execute(query, *args)

    async def fetch(self, query: str, *args: Any) -> list[asyncpg.Record]:
        return await self.pool.fetch(query, *args)

    async def fetchrow(self, query: str, *args: Any) -> asyncpg.Record | None:
        return await self.pool.fetchrow(query, *args)

    async def fetchval(self, query: str, *args: Any) -> Any:
        return await self.pool.fetchval(query, *args)

    async def health_check(self) -> bool:
        """True if the pool is connected and answers SELECT 1."""
        if self._pool is None:
            return False
        try:
            return await self.fetchval("SELECT 1") == 1
        except (OSError, asyncpg.PostgresError) as e:
            logger.warning(f"Database health check failed: {e}")
            return False
