"""Shared asyncpg pool for the article database.

Connection management
- The pool is created on ``connect()`` (service startup) and closed on
  ``close()`` (shutdown); calls made before ``connect()`` create it lazily
- Queries are funneled through ``_run`` for uniform error handling
- ``transaction()`` yields a connection inside a single DB transaction
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, List, Optional

import asyncpg
from asyncpg import Connection, Pool, Record
import structlog

logger = structlog.get_logger("common.db")


class DatabaseError(Exception):
    """Base exception for article database operations."""
    pass


class DatabaseConnectionError(DatabaseError):
    """Could not reach the article database."""
    pass


class Database:
    """Owns the asyncpg pool used by the repositories."""

    def __init__(
        self,
        dsn: str,
        min_size: int = 1,
        max_size: int = 10,
        command_timeout: float = 30.0,
    ):
        """Configure the pool.

        Parameters
        - dsn: PostgreSQL DSN including database and credentials
        - min_size / max_size: Pool bounds
        - command_timeout: Seconds to allow per DB command
        """
        self.dsn = dsn
        self.min_size = min_size
        self.max_size = max_size
        self.command_timeout = command_timeout
        self._pool: Optional[Pool] = None

    async def connect(self) -> Pool:
        """Get or create the connection pool."""
        if self._pool is None:
            try:
                self._pool = await asyncpg.create_pool(
                    self.dsn,
                    min_size=self.min_size,
                    max_size=self.max_size,
                    command_timeout=self.command_timeout,
                )
                logger.info("Created database pool", max_size=self.max_size)
            except (OSError, asyncpg.PostgresError) as e:
                logger.error("Failed to create database pool", error=str(e))
                raise DatabaseConnectionError(f"Failed to create connection pool: {e}") from e

        return self._pool

    async def close(self) -> None:
        """Close the connection pool."""
        if self._pool:
            await self._pool.close()
            self._pool = None
            logger.info("Closed database pool")

    async def _run(self, method: str, query: str, *args: Any) -> Any:
        pool = await self.connect()
        try:
            async with pool.acquire() as conn:
                return await getattr(conn, method)(query, *args)
        except asyncpg.PostgresError as e:
            logger.error("Query execution failed", query=query, error=str(e))
            raise DatabaseError(f"Query failed: {e}") from e

    async def fetch(self, query: str, *args: Any) -> List[Record]:
        return await self._run("fetch", query, *args)

    async def fetchrow(self, query: str, *args: Any) -> Optional[Record]:
        return await self._run("fetchrow", query, *args)

    async def fetchval(self, query: str, *args: Any) -> Any:
        return await self._run("fetchval", query, *args)

    async def execute(self, query: str, *args: Any) -> str:
        return await self._run("execute", query, *args)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Connection]:
        """Yield a connection with an open transaction.

        The transaction commits when the block exits normally and rolls back
        on any exception, which is re-raised as ``DatabaseError`` when it
        originates from PostgreSQL.
        """
        pool = await self.connect()
        async with pool.acquire() as conn:
            try:
                async with conn.transaction():
                    yield conn
            except asyncpg.PostgresError as e:
                logger.error("Transaction failed", error=str(e))
                raise DatabaseError(f"Transaction failed: {e}") from e

    async def health_check(self) -> bool:
        """Check if the database is reachable."""
        try:
            await self.fetchval("SELECT 1")
            return True
        except DatabaseError as e:
            logger.error("Health check failed", error=str(e))
            return False
