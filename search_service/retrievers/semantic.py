"""Vector similarity retrieval with optional reranking."""

import math
from typing import List, Optional, Sequence

import structlog

from libs.common.metrics import MetricsCollector
from libs.vector_store.base import VectorStoreError
from libs.vector_store.registry import VectorStoreRegistry
from ..clients.embedding import EmbeddingClient
from ..clients.reranker import Reranked, RerankerClient
from ..errors import RerankError, UpstreamError, VectorSearchError
from ..models import SearchCandidate, SearchResult
from ..ranking.fusion import apply_rerank
from ..storage.articles import ArticleRepository

logger = structlog.get_logger("search_service.retrievers.semantic")


def _valid_article_id(article_id: object) -> bool:
    if isinstance(article_id, bool) or not isinstance(article_id, (int, float)):
        return False
    return math.isfinite(article_id) and article_id > 0


class SemanticRetriever:
    """Embeds text and queries the tenant's vector collection.

    Embedding and vector store failures propagate as ``UpstreamError``
    subclasses. Rerank failures never do: the vector order is kept.
    """

    def __init__(
        self,
        embedding_client: EmbeddingClient,
        vector_stores: VectorStoreRegistry,
        reranker: RerankerClient,
        articles: ArticleRepository,
        candidate_multiplier: int = 3,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.embedding_client = embedding_client
        self.vector_stores = vector_stores
        self.reranker = reranker
        self.articles = articles
        self.candidate_multiplier = candidate_multiplier
        self.metrics = metrics

    def candidate_count(self, limit: int) -> int:
        return max(limit * self.candidate_multiplier, limit)

    async def retrieve_candidates(
        self,
        text: str,
        tenant_id: int,
        k: int,
        exclude_id: Optional[int] = None,
    ) -> List[SearchCandidate]:
        """Nearest neighbours of ``text`` in vector order.

        Hits without a positive article id, and hits for ``exclude_id``, are
        dropped.
        """
        try:
            vector = await self.embedding_client.embed_text(text, tenant_id)
        except UpstreamError as e:
            self._record_upstream_error(e.dependency)
            raise

        try:
            store = await self.vector_stores.get_store(tenant_id)
            hits = await store.query(tenant_id, vector, k, filter={"user_id": tenant_id})
        except VectorStoreError as e:
            self._record_upstream_error(VectorSearchError.dependency)
            logger.warning("Vector query failed", tenant_id=tenant_id, error=str(e))
            raise VectorSearchError(str(e)) from e

        candidates = []
        for hit in hits:
            if not _valid_article_id(hit.article_id):
                continue
            article_id = int(hit.article_id)
            if exclude_id is not None and article_id == exclude_id:
                continue
            candidates.append(SearchCandidate(article_id=article_id, score=hit.score, document=hit.document))
        return candidates

    async def search(self, query: str, tenant_id: int, limit: int) -> List[SearchResult]:
        """Semantic search for a free-text query.

        Candidates are reranked when the tenant has a rerank provider, then
        enriched with article metadata.
        """
        candidates = await self.retrieve_candidates(query, tenant_id, self.candidate_count(limit))

        final = candidates[:limit]
        if candidates:
            final = await self._rerank(query, candidates, tenant_id, limit)

        return await self.enrich(tenant_id, final)

    async def _rerank(
        self,
        query: str,
        candidates: Sequence[SearchCandidate],
        tenant_id: int,
        limit: int,
    ) -> List[SearchCandidate]:
        try:
            outcome = await self.reranker.rerank(
                query,
                [c.document for c in candidates],
                tenant_id,
                top_n=min(limit, len(candidates)),
            )
        except Exception as e:
            logger.warning("Rerank failed, keeping vector order", tenant_id=tenant_id, error=str(e))
            self._record_rerank("failed")
            self._record_upstream_error(RerankError.dependency)
            return list(candidates[:limit])

        if isinstance(outcome, Reranked):
            self._record_rerank("reranked")
            return apply_rerank(candidates, outcome.ordering, limit)

        self._record_rerank("unavailable")
        return list(candidates[:limit])

    async def enrich(
        self,
        tenant_id: int,
        candidates: Sequence[SearchCandidate],
        require_completed: bool = False,
    ) -> List[SearchResult]:
        """Attach metadata, dropping candidates that no longer qualify."""
        if not candidates:
            return []

        metadata = await self.articles.fetch_metadata(
            tenant_id,
            [c.article_id for c in candidates],
            require_completed=require_completed,
        )
        return [
            SearchResult(
                article_id=c.article_id,
                score=c.score,
                semantic_score=c.score,
                metadata=metadata[c.article_id],
            )
            for c in candidates
            if c.article_id in metadata
        ]

    def _record_rerank(self, outcome: str) -> None:
        if self.metrics:
            self.metrics.record_rerank(outcome)

    def _record_upstream_error(self, dependency: str) -> None:
        if self.metrics:
            self.metrics.record_upstream_error(dependency)
