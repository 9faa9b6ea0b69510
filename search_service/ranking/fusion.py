"""Result fusion for hybrid search and rerank reordering."""

from typing import Dict, List, Sequence

import structlog

from ..clients.reranker import RerankItem
from ..models import SearchCandidate, SearchResult

logger = structlog.get_logger("search_service.fusion")

# Floor for the semantic max used in normalization
MIN_SEMANTIC_MAX = 0.01


def apply_rerank(
    candidates: Sequence[SearchCandidate],
    ordering: Sequence[RerankItem],
    limit: int,
) -> List[SearchCandidate]:
    """Reorder candidates by a rerank response.

    Referenced candidates come first in the provider's order, carrying the
    rerank score. Out-of-range and repeated indices are skipped. Candidates
    the provider did not reference follow in their original order.
    """
    if not ordering:
        return list(candidates[:limit])

    picked = set()
    reordered: List[SearchCandidate] = []
    for item in ordering:
        if item.index < 0 or item.index >= len(candidates) or item.index in picked:
            continue
        picked.add(item.index)
        candidate = candidates[item.index]
        reordered.append(SearchCandidate(
            article_id=candidate.article_id,
            score=item.score,
            document=candidate.document,
        ))

    for index, candidate in enumerate(candidates):
        if index not in picked:
            reordered.append(candidate)

    return reordered[:limit]


class WeightedScoreFusion:
    """Weighted merge of semantic and keyword results.

    Semantic results seed the merge. A keyword hit for an article already
    present combines both scores; a keyword-only hit keeps its keyword score.
    With ``normalize`` the semantic score is divided by the best semantic
    score (floored at ``MIN_SEMANTIC_MAX``) before weighting.
    """

    def __init__(self, semantic_weight: float = 0.7, keyword_weight: float = 0.3, normalize: bool = True):
        self.semantic_weight = semantic_weight
        self.keyword_weight = keyword_weight
        self.normalize = normalize

    def fuse_results(
        self,
        semantic_results: Sequence[SearchResult],
        keyword_results: Sequence[SearchResult],
        limit: int,
    ) -> List[SearchResult]:
        merged: Dict[int, SearchResult] = {}
        for result in semantic_results:
            merged[result.article_id] = result.model_copy(update={"semantic_score": result.score})

        max_semantic = max(
            [r.semantic_score if r.semantic_score is not None else r.score for r in semantic_results]
            + [MIN_SEMANTIC_MAX]
        )

        overlap = 0
        for result in keyword_results:
            keyword_score = result.keyword_score if result.keyword_score is not None else result.score
            existing = merged.get(result.article_id)
            if existing is None:
                merged[result.article_id] = result.model_copy(update={"keyword_score": keyword_score})
                continue

            overlap += 1
            semantic_score = existing.semantic_score if existing.semantic_score is not None else existing.score
            if self.normalize:
                semantic_score = semantic_score / max_semantic
            merged[result.article_id] = existing.model_copy(update={
                "score": semantic_score * self.semantic_weight + keyword_score * self.keyword_weight,
                "keyword_score": keyword_score,
            })

        fused = sorted(merged.values(), key=lambda r: r.score, reverse=True)[:limit]

        logger.debug(
            "Weighted score fusion completed",
            semantic_count=len(semantic_results),
            keyword_count=len(keyword_results),
            overlap=overlap,
            fused_count=len(fused),
        )
        return fused


def fuse_hybrid(
    semantic_results: Sequence[SearchResult],
    keyword_results: Sequence[SearchResult],
    limit: int,
    semantic_weight: float = 0.7,
    keyword_weight: float = 0.3,
    normalize: bool = True,
) -> List[SearchResult]:
    """Convenience wrapper around ``WeightedScoreFusion``."""
    return WeightedScoreFusion(semantic_weight, keyword_weight, normalize).fuse_results(
        semantic_results, keyword_results, limit
    )
