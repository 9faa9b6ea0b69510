"""Substring keyword search over article titles and content."""

from typing import List

import structlog

from ..models import SearchResult
from ..storage.articles import ArticleRepository, row_to_metadata

logger = structlog.get_logger("search_service.retrievers.keyword")

CONTAINS_SCORE = 0.7
PREFIX_BONUS = 0.3


def score_title(title: str, query: str) -> float:
    """Relevance of a title to the whole query, in [0, 1]."""
    lowered_title = (title or "").lower()
    lowered_query = query.lower()

    score = 0.0
    if lowered_query in lowered_title:
        score += CONTAINS_SCORE
    if lowered_title.startswith(lowered_query):
        score += PREFIX_BONUS
    return min(score, 1.0)


class KeywordRetriever:
    """Matches every whitespace-separated term, then ranks by title."""

    def __init__(self, articles: ArticleRepository, candidate_multiplier: int = 3):
        self.articles = articles
        self.candidate_multiplier = candidate_multiplier

    async def search(self, query: str, tenant_id: int, limit: int) -> List[SearchResult]:
        terms = query.split()
        rows = await self.articles.search_by_terms(tenant_id, terms, limit * self.candidate_multiplier)

        results = []
        for row in rows:
            score = score_title(row["title"], query)
            results.append(SearchResult(
                article_id=row["id"],
                score=score,
                keyword_score=score,
                metadata=row_to_metadata(row),
            ))

        # Stable sort: ties stay newest first
        results = sorted(results, key=lambda r: r.score, reverse=True)[:limit]
        logger.debug("Keyword search completed", tenant_id=tenant_id, terms=len(terms), result_count=len(results))
        return results
