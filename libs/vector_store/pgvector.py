"""PgVector implementation of vector store.

This implementation reads article vectors stored in PostgreSQL using the
pgvector extension. Each collection is one table (see ``scripts/init_db.py``)
holding ``article_id``, ``tenant_id``, ``vector``, ``document`` and ``meta``.

Similarity per distance metric
- ``cosine``: ``1 - (vector <=> query)``
- ``l2``: ``1 - (vector <-> query)``
- ``ip``: ``-(vector <#> query)``, i.e. the raw inner product

Connection management
- A private asyncpg pool is created on demand and reused across calls
- Queries are funneled through ``_execute_query`` for uniform error handling
"""

import json
import re
from typing import Any, Dict, Iterable, List, Optional, Sequence

import asyncpg
from asyncpg import Connection, Pool
import numpy as np
from pgvector.asyncpg import register_vector
import structlog

from .base import (
    VectorHit,
    VectorStore,
    VectorStoreConnectionError,
    VectorStoreQueryError,
)

logger = structlog.get_logger("vector_store.pgvector")

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}$")

_DISTANCE_OPERATORS = {
    "cosine": "<=>",
    "l2": "<->",
    "ip": "<#>",
}


class PgVectorStore(VectorStore):
    """PgVector implementation of vector store."""

    def __init__(
        self,
        dsn: str,
        collection: str = "article_embeddings",
        distance_metric: str = "cosine",
        pool_size: int = 5,
        command_timeout: float = 30.0,
        vector_dimension: Optional[int] = None,
    ):
        """Configure a PgVector-backed vector store.

        Parameters
        - dsn: PostgreSQL DSN including database and credentials
        - collection: Table holding the collection's vectors
        - distance_metric: ``cosine``, ``l2`` or ``ip``
        - pool_size: Max size of asyncpg connection pool
        - command_timeout: Seconds to allow per DB command
        - vector_dimension: Expected dimensionality of query vectors
        """
        if not _IDENTIFIER.match(collection):
            raise ValueError(f"Invalid collection name: {collection!r}")
        if distance_metric not in _DISTANCE_OPERATORS:
            raise ValueError(f"Unsupported distance metric: {distance_metric!r}")

        self.dsn = dsn
        self.collection = collection
        self.distance_metric = distance_metric
        self.pool_size = pool_size
        self.command_timeout = command_timeout
        self.vector_dimension = vector_dimension
        self._pool: Optional[Pool] = None

    async def _init_connection(self, conn: Connection) -> None:
        """Register pgvector codec for asyncpg connections."""
        await register_vector(conn)

    async def _get_pool(self) -> Pool:
        """Get or create connection pool.

        Lazily initializes an asyncpg pool so callers don't pay startup cost
        unless/until they make a call that requires the database.
        """
        if self._pool is None:
            try:
                self._pool = await asyncpg.create_pool(
                    self.dsn,
                    min_size=1,
                    max_size=self.pool_size,
                    command_timeout=self.command_timeout,
                    init=self._init_connection,
                )
                logger.info(
                    "Created PgVector connection pool",
                    collection=self.collection,
                    pool_size=self.pool_size
                )
            except (OSError, asyncpg.PostgresError) as e:
                logger.error("Failed to create PgVector connection pool", error=str(e))
                raise VectorStoreConnectionError(f"Failed to create connection pool: {e}") from e

        return self._pool

    async def _execute_query(self, query: str, *args: Any) -> List[asyncpg.Record]:
        """Execute a read query with error handling.

        All PostgreSQL failures are wrapped in ``VectorStoreQueryError``.
        """
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                return await conn.fetch(query, *args)
        except (OSError, asyncpg.PostgresError) as e:
            logger.error("Query execution failed", collection=self.collection, error=str(e))
            raise VectorStoreQueryError(f"Query failed: {e}") from e

    def build_query(self, has_filter: bool) -> str:
        """Render the nearest-neighbour SQL for this collection and metric."""
        op = _DISTANCE_OPERATORS[self.distance_metric]
        if self.distance_metric == "ip":
            score_sql = f"-(vector {op} $1)"
        else:
            score_sql = f"1 - (vector {op} $1)"

        where = "tenant_id = $2"
        if has_filter:
            where += " AND meta @> $4::jsonb"

        return f"""
            SELECT id, article_id, {score_sql} AS score, document, meta
            FROM {self.collection}
            WHERE {where}
            ORDER BY vector {op} $1
            LIMIT $3
        """

    async def query(
        self,
        tenant_id: int,
        vector: Sequence[float],
        k: int,
        filter: Optional[Dict[str, Any]] = None,
    ) -> List[VectorHit]:
        """Search the collection for nearest neighbours of ``vector``."""
        vector_array = self._ensure_vector_dimension(vector)

        args: List[Any] = [vector_array, tenant_id, k]
        if filter:
            args.append(json.dumps(filter))

        rows = await self._execute_query(self.build_query(bool(filter)), *args)

        hits = [self._row_to_hit(row) for row in rows]

        logger.debug(
            "Vector similarity search completed",
            collection=self.collection,
            tenant_id=tenant_id,
            k=k,
            results_count=len(hits)
        )
        return hits

    @staticmethod
    def _row_to_hit(row: Any) -> VectorHit:
        meta = row["meta"] or {}
        if isinstance(meta, str):
            meta = json.loads(meta)

        raw_id = row["article_id"] if row["article_id"] is not None else meta.get("article_id")
        try:
            article_id = int(raw_id or 0)
        except (TypeError, ValueError):
            article_id = 0

        return VectorHit(
            id=str(row["id"]),
            article_id=article_id,
            score=float(row["score"]) if row["score"] is not None else 0.0,
            document=row["document"] or "",
            metadata=meta,
        )

    async def health_check(self) -> bool:
        """Check if the vector store is healthy."""
        try:
            await self._execute_query("SELECT 1")
            return True
        except (VectorStoreConnectionError, VectorStoreQueryError) as e:
            logger.error("Health check failed", collection=self.collection, error=str(e))
            return False

    async def close(self) -> None:
        """Close the connection pool."""
        if self._pool:
            await self._pool.close()
            self._pool = None
            logger.info("Closed PgVector connection pool", collection=self.collection)

    def _ensure_vector_dimension(self, vector: Iterable[float]) -> np.ndarray:
        """Ensure a vector matches the expected dimensionality."""
        array = np.asarray(vector, dtype=np.float32)
        if array.ndim != 1:
            raise VectorStoreQueryError("Vector must be one-dimensional")

        if self.vector_dimension is not None and array.shape[0] != self.vector_dimension:
            raise VectorStoreQueryError(
                f"Expected vector dimension {self.vector_dimension}, "
                f"got {array.shape[0]}"
            )
        return array
