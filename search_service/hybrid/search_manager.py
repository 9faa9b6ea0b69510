"""Search manager: one entry point for every search mode.

Dispatches a ``SearchRequest`` to semantic, keyword or hybrid search over
free text, or to the related-article engine. Text modes are fail-soft: an
unexpected failure is logged and an empty response is returned. The one
exception is hybrid search with fallback disabled, which raises
``SemanticUnavailableError`` when the semantic half fails.
"""

import time
from typing import List, Optional, Tuple

import structlog

from libs.common.logging import log_performance
from libs.common.metrics import MetricsCollector
from ..errors import SearchValidationError, SemanticUnavailableError
from ..models import SearchMode, SearchRequest, SearchResponse, SearchResult
from ..ranking.fusion import fuse_hybrid
from ..related.engine import RelatedArticleEngine
from ..retrievers.keyword import KeywordRetriever
from ..retrievers.semantic import SemanticRetriever

logger = structlog.get_logger("search_service.search_manager")

TEXT_MODES = (SearchMode.SEMANTIC, SearchMode.KEYWORD, SearchMode.HYBRID)


def validate_request(request: SearchRequest) -> None:
    """Raise ``SearchValidationError`` if the request cannot be served."""
    if request.limit < 1:
        raise SearchValidationError("limit must be at least 1")
    if request.offset < 0:
        raise SearchValidationError("offset must not be negative")

    if request.mode == SearchMode.RELATED:
        if request.article_id is None or request.article_id <= 0:
            raise SearchValidationError("article_id is required for related mode")
    elif request.mode in TEXT_MODES and not (request.query or "").strip():
        raise SearchValidationError(f"query is required for {request.mode.value} mode")


class SearchManager:
    """Mode dispatcher over the retrievers and the related engine."""

    def __init__(
        self,
        semantic: SemanticRetriever,
        keyword: KeywordRetriever,
        related: RelatedArticleEngine,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.semantic = semantic
        self.keyword = keyword
        self.related = related
        self.metrics = metrics

    async def search(self, request: SearchRequest) -> SearchResponse:
        """Run a search.

        Raises ``SearchValidationError`` for bad input and
        ``SemanticUnavailableError`` for hybrid without fallback; every other
        text-mode failure yields an empty response.
        """
        validate_request(request)
        start_time = time.time()

        if request.mode == SearchMode.RELATED:
            response = await self.related.search(
                tenant_id=request.tenant_id,
                article_id=request.article_id,
                limit=request.limit,
                use_cache=request.use_cache and not request.refresh_cache,
            )
            self._finish(request, response, start_time)
            return response

        query = request.query.strip()
        try:
            results, fallback = await self._search_text(request, query)
        except SemanticUnavailableError:
            raise
        except Exception as e:
            logger.warning(
                "Search failed, returning empty results",
                tenant_id=request.tenant_id,
                mode=request.mode.value,
                query=query,
                error=str(e),
            )
            return SearchResponse(
                results=[],
                mode=request.mode,
                query=query,
                total=0,
                page=1,
                limit=request.limit,
                cached=False,
                fallback=False,
            )

        response = SearchResponse(
            results=results[request.offset:request.offset + request.limit],
            mode=request.mode,
            query=query,
            total=len(results),
            page=request.offset // request.limit + 1,
            limit=request.limit,
            cached=False,
            fallback=fallback,
        )
        self._finish(request, response, start_time)
        return response

    async def _search_text(self, request: SearchRequest, query: str) -> Tuple[List[SearchResult], bool]:
        if request.mode == SearchMode.SEMANTIC:
            return await self.semantic.search(query, request.tenant_id, request.limit), False
        if request.mode == SearchMode.KEYWORD:
            return await self.keyword.search(query, request.tenant_id, request.limit), False
        return await self.hybrid_search(request, query)

    async def hybrid_search(self, request: SearchRequest, query: str) -> Tuple[List[SearchResult], bool]:
        """Semantic and keyword search merged by weighted score.

        Returns the merged results and whether keyword-only fallback was used.
        """
        semantic_results: List[SearchResult] = []
        semantic_error: Optional[Exception] = None
        try:
            semantic_results = await self.semantic.search(query, request.tenant_id, request.limit)
        except Exception as e:
            semantic_error = e
            logger.warning("Semantic search failed in hybrid mode", tenant_id=request.tenant_id, error=str(e))

        keyword_results = await self.keyword.search(query, request.tenant_id, request.limit)

        if semantic_error is not None:
            if not request.fallback_enabled:
                raise SemanticUnavailableError("Semantic search failed and fallback is disabled") from semantic_error

            logger.info("Using keyword-only results", tenant_id=request.tenant_id, result_count=len(keyword_results))
            if self.metrics:
                self.metrics.record_fallback()
            return keyword_results, True

        fused = fuse_hybrid(
            semantic_results,
            keyword_results,
            request.limit,
            semantic_weight=request.semantic_weight,
            keyword_weight=request.keyword_weight,
            normalize=request.normalize_scores,
        )
        return fused, False

    def _finish(self, request: SearchRequest, response: SearchResponse, start_time: float) -> None:
        duration = time.time() - start_time
        if self.metrics:
            self.metrics.record_search(request.mode.value, duration)
        log_performance(
            "search",
            duration * 1000,
            tenant_id=request.tenant_id,
            mode=request.mode.value,
            result_count=len(response.results),
            cached=response.cached,
            fallback=response.fallback,
        )
