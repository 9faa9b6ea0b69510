#!/usr/bin/env python3
"""Create the vector collection and related-article cache tables.

The article tables (``articles``, ``rss_sources``, ``settings``,
``llm_configs``) belong to the ingestion application and are not touched.
"""

import asyncio
import re

import asyncpg

from libs.common.config import BaseConfig
from libs.common.logging import configure_logging, get_logger

logger = get_logger("scripts.init_db")

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

_INDEX_OPS = {
    "cosine": "vector_cosine_ops",
    "l2": "vector_l2_ops",
    "ip": "vector_ip_ops",
}


def collection_statements(collection: str, vector_dimension: int, distance_metric: str = "cosine"):
    """DDL for one embedding collection table."""
    if not _IDENTIFIER.match(collection):
        raise ValueError(f"Invalid collection name: {collection!r}")
    ops = _INDEX_OPS[distance_metric]

    return [
        f"""
        CREATE TABLE IF NOT EXISTS {collection} (
            id BIGSERIAL PRIMARY KEY,
            article_id BIGINT NOT NULL,
            tenant_id BIGINT NOT NULL,
            vector vector({vector_dimension}) NOT NULL,
            document TEXT NOT NULL DEFAULT '',
            meta JSONB NOT NULL DEFAULT '{{}}'::jsonb,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
            UNIQUE(tenant_id, article_id)
        );
        """,
        f"CREATE INDEX IF NOT EXISTS idx_{collection}_tenant ON {collection}(tenant_id);",
        f"CREATE INDEX IF NOT EXISTS idx_{collection}_meta ON {collection} USING gin(meta);",
        f"CREATE INDEX IF NOT EXISTS idx_{collection}_vector ON {collection} USING ivfflat (vector {ops});",
    ]


RELATED_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS article_related (
        article_id BIGINT NOT NULL,
        related_article_id BIGINT NOT NULL,
        score DOUBLE PRECISION NOT NULL,
        created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
        PRIMARY KEY (article_id, related_article_id)
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_article_related_updated ON article_related(updated_at);",
    "CREATE INDEX IF NOT EXISTS idx_article_related_score ON article_related(article_id, score DESC);",
]


async def init_database() -> None:
    config = BaseConfig()
    configure_logging("init-db", config.lit_log_level, "console")

    logger.info(
        "Initializing vector collection",
        collection=config.lit_vector_collection,
        vector_dimension=config.lit_vector_dimension,
    )
    conn = await asyncpg.connect(config.lit_vector_db_dsn)
    try:
        await conn.execute("CREATE EXTENSION IF NOT EXISTS vector;")
        for statement in collection_statements(
            config.lit_vector_collection,
            config.lit_vector_dimension,
            config.lit_vector_distance_metric,
        ):
            await conn.execute(statement)
        logger.info("Vector collection ready", collection=config.lit_vector_collection)
    finally:
        await conn.close()

    conn = await asyncpg.connect(config.lit_db_dsn)
    try:
        for statement in RELATED_STATEMENTS:
            await conn.execute(statement)
        logger.info("article_related table ready")
    finally:
        await conn.close()

    logger.info("Database initialization completed")


if __name__ == "__main__":
    asyncio.run(init_database())
