"""Tests for semantic retrieval, rerank handling and enrichment."""

import pytest

from libs.common.metrics import MetricsCollector
from search_service.clients.reranker import Reranked, RerankItem, RerankUnavailable
from search_service.errors import EmbeddingError, VectorSearchError
from tests.conftest import TENANT, Article, FakeReranker, build_stack, hit


def articles(*ids, **kwargs):
    return [Article(i, f"Article {i}", **kwargs) for i in ids]


@pytest.mark.asyncio
async def test_semantic_search_queries_three_times_limit_with_tenant_filter():
    stack = await build_stack(articles(1, 2, 3), [hit(1, 0.9), hit(2, 0.8), hit(3, 0.7)])

    results = await stack.semantic.search("protein folding", TENANT, 2)

    assert stack.store.queries == [{"tenant_id": TENANT, "k": 6, "filter": {"user_id": TENANT}}]
    assert [r.article_id for r in results] == [1, 2]
    assert results[0].semantic_score == 0.9


@pytest.mark.asyncio
async def test_semantic_search_drops_invalid_article_ids():
    stack = await build_stack(articles(4), [hit(0, 0.99), hit(-3, 0.98), hit(float("nan"), 0.97), hit(4, 0.5)])

    results = await stack.semantic.search("q", TENANT, 5)

    assert [r.article_id for r in results] == [4]


@pytest.mark.asyncio
async def test_semantic_search_applies_rerank_ordering():
    reranker = FakeReranker(Reranked([RerankItem(index=2, score=0.95), RerankItem(index=0, score=0.4)]))
    stack = await build_stack(articles(1, 2, 3), [hit(1, 0.9), hit(2, 0.8), hit(3, 0.7)], reranker=reranker)

    results = await stack.semantic.search("q", TENANT, 3)

    assert [r.article_id for r in results] == [3, 1, 2]
    assert results[0].score == 0.95
    assert reranker.calls[0]["top_n"] == 3
    assert reranker.calls[0]["documents"] == ["doc 1", "doc 2", "doc 3"]


@pytest.mark.asyncio
async def test_semantic_search_keeps_vector_order_when_rerank_unavailable():
    stack = await build_stack(
        articles(1, 2),
        [hit(1, 0.9), hit(2, 0.8)],
        reranker=FakeReranker(RerankUnavailable("disabled")),
    )
    results = await stack.semantic.search("q", TENANT, 5)
    assert [r.article_id for r in results] == [1, 2]


@pytest.mark.asyncio
async def test_semantic_search_keeps_vector_order_when_rerank_fails(rerank_down):
    metrics = MetricsCollector("test-service")
    stack = await build_stack(articles(1, 2), [hit(1, 0.9), hit(2, 0.8)], reranker=rerank_down, metrics=metrics)

    results = await stack.semantic.search("q", TENANT, 5)

    assert [r.article_id for r in results] == [1, 2]
    assert 'rerank_outcomes_total{outcome="failed"} 1.0' in metrics.get_metrics()


@pytest.mark.asyncio
async def test_semantic_search_skips_rerank_without_candidates():
    reranker = FakeReranker()
    stack = await build_stack(hits=[], reranker=reranker)

    assert await stack.semantic.search("q", TENANT, 5) == []
    assert reranker.calls == []


@pytest.mark.asyncio
async def test_enrichment_drops_articles_that_do_not_qualify():
    stack = await build_stack(
        [Article(1, "Mine"), Article(2, "Other tenant", tenant_id=99), Article(3, "Rejected", filter_status="rejected")],
        [hit(1, 0.9), hit(2, 0.8), hit(3, 0.7), hit(4, 0.6)],
    )
    results = await stack.semantic.search("q", TENANT, 10)
    assert [r.article_id for r in results] == [1]


@pytest.mark.asyncio
async def test_embedding_failure_propagates(embedding_down):
    stack = await build_stack(articles(1), [hit(1, 0.9)], embedding=embedding_down)
    with pytest.raises(EmbeddingError):
        await stack.semantic.search("q", TENANT, 5)


@pytest.mark.asyncio
async def test_vector_store_failure_is_wrapped(vector_store_down):
    stack = await build_stack(articles(1), store=vector_store_down)
    with pytest.raises(VectorSearchError):
        await stack.semantic.search("q", TENANT, 5)


@pytest.mark.asyncio
async def test_retrieve_candidates_excludes_given_id():
    stack = await build_stack(hits=[hit(7, 0.99), hit(8, 0.5)])
    candidates = await stack.semantic.retrieve_candidates("text", TENANT, 5, exclude_id=7)
    assert [c.article_id for c in candidates] == [8]
