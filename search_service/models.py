"""Request, response and internal record types for the search service."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class SearchMode(str, Enum):
    """Supported search modes."""
    SEMANTIC = "semantic"
    KEYWORD = "keyword"
    HYBRID = "hybrid"
    RELATED = "related"


class ArticleMetadata(BaseModel):
    """Display fields joined from the article tables."""
    title: str = Field(..., description="Article title")
    url: str = Field(..., description="Article URL")
    summary: Optional[str] = Field(None, description="Article summary")
    published_at: Optional[datetime] = Field(None, description="Publication time")
    source_name: Optional[str] = Field(None, description="RSS source name")


class SearchResult(BaseModel):
    """One ranked article."""
    article_id: int = Field(..., description="Article ID")
    score: float = Field(..., description="Final ranking score")
    semantic_score: Optional[float] = Field(None, description="Vector or rerank score")
    keyword_score: Optional[float] = Field(None, description="Title keyword score")
    metadata: Optional[ArticleMetadata] = Field(None, description="Article metadata")


class SearchRequest(BaseModel):
    """Input of ``SearchManager.search``.

    Mode-specific requirements (``query`` for text modes, ``article_id`` for
    ``related``) are checked by the dispatcher, not by the model.
    """
    mode: SearchMode
    tenant_id: int
    query: Optional[str] = None
    article_id: Optional[int] = None
    limit: int = 10
    offset: int = 0
    semantic_weight: float = 0.7
    keyword_weight: float = 0.3
    normalize_scores: bool = True
    use_cache: bool = True
    refresh_cache: bool = False
    fallback_enabled: bool = True


class SearchResponse(BaseModel):
    """Output of ``SearchManager.search``."""
    results: List[SearchResult] = Field(default_factory=list)
    mode: SearchMode
    query: Optional[str] = None
    total: int = 0
    page: Optional[int] = None
    limit: Optional[int] = None
    cached: bool = False
    fallback: Optional[bool] = None


@dataclass
class SearchCandidate:
    """Transient (article, score) pair produced before enrichment."""
    article_id: int
    score: float
    document: str = ""


@dataclass
class SourceArticle:
    """The article a related-article lookup starts from."""
    id: int
    title: str
    content: Optional[str] = None
    markdown_content: Optional[str] = None


@dataclass
class RelatedCacheEntry:
    """A persisted related-article row."""
    article_id: int
    related_article_id: int
    score: float
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
