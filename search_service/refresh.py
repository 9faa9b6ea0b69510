"""Keeping cached related-article lists current.

Two strategies:
- Periodic: refresh articles whose cached list is older than N days
  (``refresh_stale``), driven by an external scheduler or the refresh API.
- Incremental: after a new article is processed, refresh the articles most
  similar to it so it can appear in their lists (``refresh_neighbours``).

Each article refresh is independent; one failure never aborts a batch.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Sequence

import structlog

from .hybrid.search_manager import SearchManager
from .models import SearchMode, SearchRequest, SearchResponse
from .related.engine import build_query_text
from .retrievers.semantic import SemanticRetriever
from .storage.articles import ArticleRepository
from .storage.related_cache import RelatedCacheRepository

logger = structlog.get_logger("search_service.refresh")


@dataclass
class RefreshResult:
    """Outcome of refreshing one article's related list."""
    article_id: int
    success: bool
    error: Optional[str] = None


def stale_cutoff(stale_days: int, now: Optional[datetime] = None) -> datetime:
    """Cache rows written before the returned time are stale."""
    now = now or datetime.now(timezone.utc)
    return now - timedelta(days=stale_days)


class RelatedRefresher:
    """Recomputes related-article caches through ``SearchManager``."""

    def __init__(
        self,
        search_manager: SearchManager,
        cache: RelatedCacheRepository,
        articles: ArticleRepository,
        retriever: SemanticRetriever,
        related_limit: int = 5,
        concurrency: int = 3,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.search_manager = search_manager
        self.cache = cache
        self.articles = articles
        self.retriever = retriever
        self.related_limit = related_limit
        self.concurrency = concurrency
        self._clock = clock

    async def refresh_article(self, article_id: int, tenant_id: int, limit: Optional[int] = None) -> SearchResponse:
        """Recompute and persist one article's related list."""
        return await self.search_manager.search(SearchRequest(
            mode=SearchMode.RELATED,
            tenant_id=tenant_id,
            article_id=article_id,
            limit=limit or self.related_limit,
            use_cache=False,
            refresh_cache=True,
        ))

    async def find_stale_articles(self, tenant_id: int, stale_days: int, limit: int) -> List[int]:
        return await self.cache.find_stale_articles(tenant_id, stale_cutoff(stale_days, self._clock()), limit)

    async def refresh_stale(self, tenant_id: int, stale_days: int = 7, limit: int = 50) -> List[RefreshResult]:
        """Refresh up to ``limit`` articles with stale caches, oldest first."""
        article_ids = await self.find_stale_articles(tenant_id, stale_days, limit)
        if not article_ids:
            logger.info("No articles need refresh", tenant_id=tenant_id)
            return []

        results = await self.refresh_many(article_ids, tenant_id)
        logger.info(
            "Batch refresh complete",
            tenant_id=tenant_id,
            total=len(results),
            successful=sum(1 for r in results if r.success),
            failed=sum(1 for r in results if not r.success),
        )
        return results

    async def refresh_neighbours(
        self,
        article_id: int,
        tenant_id: int,
        top_n: int = 10,
        min_score: float = 0.5,
    ) -> List[int]:
        """Refresh the articles most similar to ``article_id``.

        Returns the ids whose caches were refreshed successfully.
        """
        source = await self.articles.get_source_article(tenant_id, article_id)
        if source is None:
            return []

        text = build_query_text(source)
        if not text:
            return []

        candidates = await self.retriever.retrieve_candidates(text, tenant_id, top_n * 2, exclude_id=article_id)
        neighbour_ids = [c.article_id for c in candidates if c.score >= min_score]
        if not neighbour_ids:
            logger.debug("No similar articles found", tenant_id=tenant_id, article_id=article_id)
            return []

        results = await self.refresh_many(neighbour_ids, tenant_id)
        refreshed = [r.article_id for r in results if r.success]
        logger.info(
            "Incremental refresh complete",
            tenant_id=tenant_id,
            article_id=article_id,
            refreshed=len(refreshed),
            failed=len(results) - len(refreshed),
        )
        return refreshed

    async def refresh_many(self, article_ids: Sequence[int], tenant_id: int) -> List[RefreshResult]:
        """Refresh several articles with bounded concurrency, preserving order."""
        semaphore = asyncio.Semaphore(max(self.concurrency, 1))

        async def refresh_one(article_id: int) -> RefreshResult:
            async with semaphore:
                try:
                    await self.refresh_article(article_id, tenant_id)
                    return RefreshResult(article_id=article_id, success=True)
                except Exception as e:
                    logger.warning("Failed to refresh related articles", article_id=article_id, error=str(e))
                    return RefreshResult(article_id=article_id, success=False, error=str(e))

        return list(await asyncio.gather(*(refresh_one(article_id) for article_id in article_ids)))

    async def get_stats(self, tenant_id: int, stale_days: int = 7) -> Dict[str, int]:
        return await self.cache.get_stats(tenant_id, stale_cutoff(stale_days, self._clock()))
