"""Read-only access to articles owned by a tenant.

Articles belong to a tenant through ``rss_sources.user_id``. Every query here
joins on that column, and only articles that passed the LLM filter are ever
returned. This module never writes to the article tables.
"""

from typing import Any, Dict, List, Optional, Sequence

import structlog

from libs.common.db import Database
from ..models import ArticleMetadata, SourceArticle

logger = structlog.get_logger("search_service.storage.articles")

_METADATA_COLUMNS = """
    articles.id,
    articles.title,
    articles.url,
    articles.summary,
    articles.published_at,
    rss_sources.name AS source_name
"""


def escape_like(term: str) -> str:
    """Escape LIKE wildcards so a term matches literally."""
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def row_to_metadata(row: Any) -> ArticleMetadata:
    return ArticleMetadata(
        title=row["title"] or "",
        url=row["url"] or "",
        summary=row["summary"],
        published_at=row["published_at"],
        source_name=row["source_name"],
    )


class ArticleRepository:
    """Tenant-scoped article queries used by the retrievers."""

    def __init__(self, db: Database):
        self.db = db

    async def get_source_article(self, tenant_id: int, article_id: int) -> Optional[SourceArticle]:
        """Load the title and content of a tenant-owned article."""
        row = await self.db.fetchrow(
            """
            SELECT articles.id, articles.title, articles.content, articles.markdown_content
            FROM articles
            JOIN rss_sources ON rss_sources.id = articles.rss_source_id
            WHERE articles.id = $1 AND rss_sources.user_id = $2
            """,
            article_id,
            tenant_id,
        )
        if row is None:
            return None
        return SourceArticle(
            id=row["id"],
            title=row["title"] or "",
            content=row["content"],
            markdown_content=row["markdown_content"],
        )

    async def search_by_terms(self, tenant_id: int, terms: Sequence[str], limit: int) -> List[Dict[str, Any]]:
        """Newest passed articles whose title or content contains every term.

        Returns dicts with ``id`` plus the ``ArticleMetadata`` fields.
        """
        args: List[Any] = [tenant_id]
        clauses = []
        for term in terms:
            args.append(f"%{escape_like(term)}%")
            idx = len(args)
            clauses.append(
                f"(articles.title ILIKE ${idx} ESCAPE '\\' "
                f"OR articles.markdown_content ILIKE ${idx} ESCAPE '\\')"
            )

        where = ""
        if clauses:
            where = " AND " + " AND ".join(clauses)

        args.append(limit)
        query = f"""
            SELECT {_METADATA_COLUMNS}
            FROM articles
            JOIN rss_sources ON rss_sources.id = articles.rss_source_id
            WHERE rss_sources.user_id = $1
              AND articles.filter_status = 'passed'{where}
            ORDER BY articles.published_at DESC NULLS LAST
            LIMIT ${len(args)}
        """

        rows = await self.db.fetch(query, *args)
        return [dict(row) for row in rows]

    async def fetch_metadata(
        self,
        tenant_id: int,
        article_ids: Sequence[int],
        require_completed: bool = False,
    ) -> Dict[int, ArticleMetadata]:
        """Metadata for the ids that are tenant-owned and passed.

        With ``require_completed`` the article must also have finished
        processing. Ids that do not qualify are absent from the result.
        """
        if not article_ids:
            return {}

        completed = " AND articles.process_status = 'completed'" if require_completed else ""
        rows = await self.db.fetch(
            f"""
            SELECT {_METADATA_COLUMNS}
            FROM articles
            JOIN rss_sources ON rss_sources.id = articles.rss_source_id
            WHERE rss_sources.user_id = $1
              AND articles.filter_status = 'passed'{completed}
              AND articles.id = ANY($2::bigint[])
            """,
            tenant_id,
            list(article_ids),
        )
        return {row["id"]: row_to_metadata(row) for row in rows}
