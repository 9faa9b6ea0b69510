"""Persisted related-article lists (``article_related``).

For a source article the stored rows are always exactly the most recently
computed list. ``replace`` deletes and re-inserts inside one transaction, so a
failed write leaves the previous rows untouched. Writes are scoped to the
tenant that owns the source article.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Sequence

import structlog

from libs.common.db import Database
from ..models import RelatedCacheEntry, SearchResult
from .articles import row_to_metadata

logger = structlog.get_logger("search_service.storage.related_cache")

_ELIGIBLE = """
    rss_sources.user_id = $1
    AND articles.filter_status = 'passed'
    AND articles.process_status = 'completed'
"""


class RelatedCacheRepository:
    """Read, replace and inspect cached related-article lists."""

    def __init__(self, db: Database):
        self.db = db

    async def get_cached(self, tenant_id: int, article_id: int, limit: int) -> List[SearchResult]:
        """Cached related articles for ``article_id``, best first.

        Rows pointing at articles that are no longer tenant-owned, passed and
        completed are skipped. Equal scores are ordered by newer publication.
        """
        rows = await self.db.fetch(
            """
            SELECT
                article_related.related_article_id AS id,
                article_related.score,
                articles.title,
                articles.url,
                articles.summary,
                articles.published_at,
                rss_sources.name AS source_name
            FROM article_related
            JOIN articles ON articles.id = article_related.related_article_id
            JOIN rss_sources ON rss_sources.id = articles.rss_source_id
            WHERE article_related.article_id = $2
              AND rss_sources.user_id = $1
              AND articles.filter_status = 'passed'
              AND articles.process_status = 'completed'
            ORDER BY article_related.score DESC, articles.published_at DESC NULLS LAST
            LIMIT $3
            """,
            tenant_id,
            article_id,
            limit,
        )
        return [
            SearchResult(
                article_id=row["id"],
                score=row["score"],
                semantic_score=row["score"],
                metadata=row_to_metadata(row),
            )
            for row in rows
        ]

    async def replace(self, tenant_id: int, article_id: int, results: Sequence[SearchResult]) -> None:
        """Make ``results`` the stored list for ``article_id``.

        An empty sequence clears the list. Both statements only touch rows of
        a source article owned by ``tenant_id``.
        """
        now = datetime.now(timezone.utc)
        entries = [
            RelatedCacheEntry(
                article_id=article_id,
                related_article_id=result.article_id,
                score=float(result.score),
                created_at=now,
                updated_at=now,
            )
            for result in results
        ]

        async with self.db.transaction() as conn:
            await conn.execute(
                """
                DELETE FROM article_related
                USING articles, rss_sources
                WHERE article_related.article_id = $1
                  AND articles.id = article_related.article_id
                  AND rss_sources.id = articles.rss_source_id
                  AND rss_sources.user_id = $2
                """,
                article_id,
                tenant_id,
            )
            if entries:
                await conn.executemany(
                    """
                    INSERT INTO article_related
                        (article_id, related_article_id, score, created_at, updated_at)
                    SELECT $1::bigint, $2::bigint, $3::double precision, $4::timestamptz, $5::timestamptz
                    WHERE EXISTS (
                        SELECT 1
                        FROM articles
                        JOIN rss_sources ON rss_sources.id = articles.rss_source_id
                        WHERE articles.id = $1 AND rss_sources.user_id = $6
                    )
                    """,
                    [
                        (e.article_id, e.related_article_id, e.score, e.created_at, e.updated_at, tenant_id)
                        for e in entries
                    ],
                )

        logger.debug("Replaced related cache", tenant_id=tenant_id, article_id=article_id, count=len(entries))

    async def find_stale_articles(self, tenant_id: int, stale_before: datetime, limit: int) -> List[int]:
        """Source ids whose cached list was written before ``stale_before``.

        Only eligible source articles are returned, oldest cache first.
        """
        rows = await self.db.fetch(
            f"""
            SELECT article_related.article_id, MIN(article_related.updated_at) AS updated_at
            FROM article_related
            JOIN articles ON articles.id = article_related.article_id
            JOIN rss_sources ON rss_sources.id = articles.rss_source_id
            WHERE {_ELIGIBLE}
              AND article_related.updated_at < $2
            GROUP BY article_related.article_id
            ORDER BY updated_at ASC
            LIMIT $3
            """,
            tenant_id,
            stale_before,
            limit,
        )
        return [row["article_id"] for row in rows]

    async def get_stats(self, tenant_id: int, stale_before: datetime) -> Dict[str, int]:
        """Cache freshness counts over the tenant's eligible articles.

        ``fresh`` articles have a list written at or after ``stale_before``,
        ``stale`` ones only an older list, and ``missing`` ones no list at all.
        """
        row: Any = await self.db.fetchrow(
            f"""
            SELECT
                COUNT(*) AS total,
                COUNT(cache.article_id) AS cached,
                COUNT(cache.article_id) FILTER (WHERE cache.updated_at >= $2) AS fresh
            FROM articles
            JOIN rss_sources ON rss_sources.id = articles.rss_source_id
            LEFT JOIN (
                SELECT article_id, MAX(updated_at) AS updated_at
                FROM article_related
                GROUP BY article_id
            ) AS cache ON cache.article_id = articles.id
            WHERE {_ELIGIBLE}
            """,
            tenant_id,
            stale_before,
        )

        total = int(row["total"] or 0) if row else 0
        cached = int(row["cached"] or 0) if row else 0
        fresh = int(row["fresh"] or 0) if row else 0
        return {
            "total": total,
            "fresh": fresh,
            "stale": cached - fresh,
            "missing": total - cached,
        }
