"""Tests for rerank reordering and hybrid score fusion."""

import pytest

from search_service.clients.reranker import RerankItem
from search_service.models import SearchCandidate, SearchResult
from search_service.ranking.fusion import WeightedScoreFusion, apply_rerank, fuse_hybrid


def candidates(*scores):
    return [SearchCandidate(article_id=i + 1, score=s, document=f"d{i + 1}") for i, s in enumerate(scores)]


def test_apply_rerank_empty_ordering_keeps_vector_order():
    cands = candidates(0.9, 0.8, 0.7)
    assert [c.article_id for c in apply_rerank(cands, [], 2)] == [1, 2]


def test_apply_rerank_puts_referenced_first_with_rerank_scores():
    cands = candidates(0.9, 0.8, 0.7, 0.6)
    ordering = [RerankItem(index=2, score=0.99), RerankItem(index=0, score=0.5)]

    reordered = apply_rerank(cands, ordering, 4)

    assert [c.article_id for c in reordered] == [3, 1, 2, 4]
    assert reordered[0].score == 0.99
    assert reordered[1].score == 0.5
    # Unreferenced candidates keep their vector score
    assert reordered[2].score == 0.8


def test_apply_rerank_skips_out_of_range_indices():
    cands = candidates(0.9, 0.8)
    ordering = [RerankItem(index=7, score=1.0), RerankItem(index=-1, score=1.0), RerankItem(index=1, score=0.3)]

    reordered = apply_rerank(cands, ordering, 5)

    assert [c.article_id for c in reordered] == [2, 1]


def test_apply_rerank_truncates_to_limit():
    cands = candidates(0.9, 0.8, 0.7, 0.6)
    ordering = [RerankItem(index=3, score=0.9)]
    assert [c.article_id for c in apply_rerank(cands, ordering, 2)] == [4, 1]


def sem(article_id, score):
    return SearchResult(article_id=article_id, score=score, semantic_score=score)


def kw(article_id, score):
    return SearchResult(article_id=article_id, score=score, keyword_score=score)


def test_fusion_normalizes_top_semantic_contribution_to_one():
    fused = fuse_hybrid([sem(1, 0.8), sem(2, 0.4)], [kw(1, 1.0)], limit=10)

    top = fused[0]
    assert top.article_id == 1
    assert top.score == pytest.approx(1.0 * 0.7 + 1.0 * 0.3)
    assert top.semantic_score == 0.8
    assert top.keyword_score == 1.0


def test_fusion_without_normalization_uses_raw_semantic_score():
    fused = fuse_hybrid([sem(1, 0.8)], [kw(1, 0.7)], limit=10, normalize=False)
    assert fused[0].score == pytest.approx(0.8 * 0.7 + 0.7 * 0.3)


def test_fusion_floors_semantic_max():
    fused = fuse_hybrid([sem(1, 0.001)], [kw(1, 0.0)], limit=10)
    assert fused[0].score == pytest.approx(0.001 / 0.01 * 0.7)


def test_fusion_keeps_single_source_scores():
    fused = fuse_hybrid([sem(1, 0.6)], [kw(2, 0.7)], limit=10)

    by_id = {r.article_id: r for r in fused}
    assert by_id[1].score == 0.6
    assert by_id[1].keyword_score is None
    assert by_id[2].score == 0.7
    assert by_id[2].keyword_score == 0.7
    assert [r.article_id for r in fused] == [2, 1]


def test_fusion_respects_limit_and_weights():
    fusion = WeightedScoreFusion(semantic_weight=0.5, keyword_weight=0.5)
    fused = fusion.fuse_results([sem(1, 0.9), sem(2, 0.3)], [kw(2, 1.0), kw(3, 0.2)], limit=2)

    assert len(fused) == 2
    assert fused[0].article_id == 1
    assert fused[1].article_id == 2
    assert fused[1].score == pytest.approx(0.3 / 0.9 * 0.5 + 0.5)


def test_fusion_with_no_semantic_results_returns_keyword_results():
    fused = fuse_hybrid([], [kw(5, 1.0), kw(6, 0.7)], limit=10)
    assert [r.article_id for r in fused] == [5, 6]
