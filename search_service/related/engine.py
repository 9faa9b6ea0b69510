"""Related-article computation and caching.

Related articles are the semantic neighbours of a source article's own text.
Results are sized by confidence: when enough neighbours clear the similarity
threshold only those are returned (up to the high-confidence cap), otherwise
a short list of the best neighbours is returned (up to the low-confidence
cap). Every computed list is persisted to ``article_related``.
"""

import time
from datetime import datetime, timezone
from typing import List, Optional, Sequence, Tuple

import structlog

from libs.common.metrics import MetricsCollector
from ..models import SearchCandidate, SearchMode, SearchResponse, SearchResult, SourceArticle
from ..retrievers.semantic import SemanticRetriever
from ..storage.articles import ArticleRepository
from ..storage.related_cache import RelatedCacheRepository

logger = structlog.get_logger("search_service.related")

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def build_query_text(article: SourceArticle) -> str:
    """Text an article is embedded as: title and content, blank parts omitted."""
    parts = []
    title = (article.title or "").strip()
    if title:
        parts.append(f"TITLE: {title}")

    content = (article.markdown_content or article.content or "").strip()
    if content:
        parts.append(f"CONTENT: {content}")

    return "\n".join(parts)


def select_related(
    candidates: Sequence[SearchCandidate],
    limit: int,
    similarity_threshold: float = 0.5,
    min_high_confidence: int = 3,
    high_confidence_cap: int = 5,
    low_confidence_cap: int = 3,
) -> Tuple[List[SearchCandidate], int]:
    """Pick the related list from score-ordered candidates.

    Returns the selection and the effective limit it was sized to.
    """
    ranked = sorted(candidates, key=lambda c: c.score, reverse=True)
    high = [c for c in ranked if c.score > similarity_threshold]

    if len(high) >= min_high_confidence:
        effective_limit = min(limit, high_confidence_cap)
        return high[:effective_limit], effective_limit

    effective_limit = min(limit, low_confidence_cap)
    return ranked[:effective_limit], effective_limit


def _published_key(result: SearchResult) -> datetime:
    published = result.metadata.published_at if result.metadata else None
    if published is None:
        return _EPOCH
    if published.tzinfo is None:
        return published.replace(tzinfo=timezone.utc)
    return published


class RelatedArticleEngine:
    """Computes, caches and serves related-article lists."""

    def __init__(
        self,
        retriever: SemanticRetriever,
        articles: ArticleRepository,
        cache: RelatedCacheRepository,
        similarity_threshold: float = 0.5,
        min_high_confidence: int = 3,
        high_confidence_cap: int = 5,
        low_confidence_cap: int = 3,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.retriever = retriever
        self.articles = articles
        self.cache = cache
        self.similarity_threshold = similarity_threshold
        self.min_high_confidence = min_high_confidence
        self.high_confidence_cap = high_confidence_cap
        self.low_confidence_cap = low_confidence_cap
        self.metrics = metrics

    async def search(
        self,
        tenant_id: int,
        article_id: int,
        limit: int,
        use_cache: bool = True,
    ) -> SearchResponse:
        """Related articles for ``article_id``.

        With ``use_cache`` a non-empty cached list is returned as is.
        Otherwise the list is computed and written back, replacing any
        previous rows. Upstream errors during computation propagate.
        """
        if use_cache:
            cached = await self.cache.get_cached(tenant_id, article_id, limit)
            if cached:
                self._record_cache(hit=True)
                return SearchResponse(
                    results=cached,
                    mode=SearchMode.RELATED,
                    total=len(cached),
                    limit=limit,
                    cached=True,
                )
            self._record_cache(hit=False)

        start_time = time.time()
        results = await self.compute(tenant_id, article_id, limit)
        if results is None:
            # Not this tenant's article: nothing to compute and nothing to write
            return SearchResponse(
                results=[],
                mode=SearchMode.RELATED,
                total=0,
                limit=limit,
                cached=False,
            )

        try:
            await self.cache.replace(tenant_id, article_id, results)
        except Exception as e:
            logger.warning("Failed to save related articles cache", article_id=article_id, error=str(e))

        logger.info(
            "Related articles computed",
            tenant_id=tenant_id,
            article_id=article_id,
            result_count=len(results),
            duration_ms=round((time.time() - start_time) * 1000, 2),
        )
        return SearchResponse(
            results=results,
            mode=SearchMode.RELATED,
            total=len(results),
            limit=limit,
            cached=False,
        )

    async def compute(self, tenant_id: int, article_id: int, limit: int) -> Optional[List[SearchResult]]:
        """Related list for a tenant-owned article.

        Returns None when the tenant does not own ``article_id``; an owned
        article with no usable neighbours yields an empty list.
        """
        source = await self.articles.get_source_article(tenant_id, article_id)
        if source is None:
            logger.debug("Source article not found", tenant_id=tenant_id, article_id=article_id)
            return None

        text = build_query_text(source)
        if not text:
            return []

        candidates = await self.retriever.retrieve_candidates(
            text,
            tenant_id,
            self.retriever.candidate_count(limit),
            exclude_id=article_id,
        )
        if not candidates:
            return []

        selected, effective_limit = select_related(
            candidates,
            limit,
            similarity_threshold=self.similarity_threshold,
            min_high_confidence=self.min_high_confidence,
            high_confidence_cap=self.high_confidence_cap,
            low_confidence_cap=self.low_confidence_cap,
        )

        enriched = await self.retriever.enrich(tenant_id, selected, require_completed=True)
        enriched = [r for r in enriched if r.article_id != article_id]

        # Two passes: newer first, then stable by score
        enriched.sort(key=_published_key, reverse=True)
        enriched.sort(key=lambda r: r.score, reverse=True)
        return enriched[:effective_limit]

    def _record_cache(self, hit: bool) -> None:
        if not self.metrics:
            return
        if hit:
            self.metrics.record_cache_hit()
        else:
            self.metrics.record_cache_miss()
