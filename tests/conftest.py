"""Shared fakes for search service tests.

The fakes keep the same async interfaces as the real repositories and
clients, backed by in-memory data, so the retrievers, the related engine and
the dispatcher can be exercised without PostgreSQL or HTTP providers.
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

import pytest

from libs.vector_store.base import VectorHit, VectorStore, VectorStoreQueryError, VectorStoreSettings
from libs.vector_store.registry import VectorStoreRegistry
from search_service.clients.reranker import RerankUnavailable
from search_service.errors import EmbeddingError, RerankError
from search_service.hybrid.search_manager import SearchManager
from search_service.models import ArticleMetadata, SearchResult, SourceArticle
from search_service.related.engine import RelatedArticleEngine
from search_service.retrievers.keyword import KeywordRetriever
from search_service.retrievers.semantic import SemanticRetriever

TENANT = 1


@dataclass
class Article:
    id: int
    title: str
    tenant_id: int = TENANT
    url: str = ""
    content: Optional[str] = None
    markdown_content: Optional[str] = None
    summary: Optional[str] = None
    published_at: Optional[datetime] = None
    source_name: str = "Journal"
    filter_status: str = "passed"
    process_status: str = "completed"

    def metadata(self) -> ArticleMetadata:
        return ArticleMetadata(
            title=self.title,
            url=self.url or f"https://example.org/{self.id}",
            summary=self.summary,
            published_at=self.published_at,
            source_name=self.source_name,
        )


class FakeArticleRepository:
    """In-memory ``ArticleRepository``."""

    def __init__(self, articles: Sequence[Article] = ()):
        self.articles: Dict[int, Article] = {a.id: a for a in articles}
        self.metadata_calls: List[Dict[str, Any]] = []

    def add(self, *articles: Article) -> None:
        for article in articles:
            self.articles[article.id] = article

    async def get_source_article(self, tenant_id: int, article_id: int) -> Optional[SourceArticle]:
        article = self.articles.get(article_id)
        if article is None or article.tenant_id != tenant_id:
            return None
        return SourceArticle(
            id=article.id,
            title=article.title,
            content=article.content,
            markdown_content=article.markdown_content,
        )

    async def search_by_terms(self, tenant_id: int, terms: Sequence[str], limit: int) -> List[Dict[str, Any]]:
        def matches(article: Article) -> bool:
            haystacks = [article.title.lower(), (article.markdown_content or "").lower()]
            return all(any(term.lower() in h for h in haystacks) for term in terms)

        eligible = [
            a for a in self.articles.values()
            if a.tenant_id == tenant_id and a.filter_status == "passed" and matches(a)
        ]
        eligible.sort(key=_published_sort_key, reverse=True)
        return [
            {"id": a.id, **a.metadata().model_dump()}
            for a in eligible[:limit]
        ]

    async def fetch_metadata(
        self,
        tenant_id: int,
        article_ids: Sequence[int],
        require_completed: bool = False,
    ) -> Dict[int, ArticleMetadata]:
        self.metadata_calls.append({"ids": list(article_ids), "require_completed": require_completed})
        found = {}
        for article_id in article_ids:
            article = self.articles.get(article_id)
            if article is None or article.tenant_id != tenant_id or article.filter_status != "passed":
                continue
            if require_completed and article.process_status != "completed":
                continue
            found[article_id] = article.metadata()
        return found


def _published_sort_key(article: Article) -> datetime:
    return article.published_at or datetime.min.replace(tzinfo=timezone.utc)


class FakeRelatedCache:
    """In-memory ``RelatedCacheRepository``."""

    def __init__(self, articles: FakeArticleRepository):
        self.articles = articles
        self.rows: Dict[int, List[Dict[str, Any]]] = {}
        self.replace_calls: List[int] = []
        self.fail_writes = False

    async def get_cached(self, tenant_id: int, article_id: int, limit: int) -> List[SearchResult]:
        results = []
        for row in self.rows.get(article_id, []):
            article = self.articles.articles.get(row["related_article_id"])
            if article is None or article.tenant_id != tenant_id:
                continue
            results.append(SearchResult(
                article_id=article.id,
                score=row["score"],
                semantic_score=row["score"],
                metadata=article.metadata(),
            ))
        results.sort(key=lambda r: r.score, reverse=True)
        return results[:limit]

    async def replace(self, tenant_id: int, article_id: int, results: Sequence[SearchResult]) -> None:
        self.replace_calls.append(article_id)
        if self.fail_writes:
            raise RuntimeError("cache write failed")
        source = self.articles.articles.get(article_id)
        if source is None or source.tenant_id != tenant_id:
            return
        now = datetime.now(timezone.utc)
        self.rows[article_id] = [
            {"related_article_id": r.article_id, "score": r.score, "updated_at": now}
            for r in results
        ]

    async def find_stale_articles(self, tenant_id: int, stale_before: datetime, limit: int) -> List[int]:
        stale = [
            (min(r["updated_at"] for r in rows), article_id)
            for article_id, rows in self.rows.items()
            if rows and min(r["updated_at"] for r in rows) < stale_before
        ]
        return [article_id for _, article_id in sorted(stale)][:limit]

    async def get_stats(self, tenant_id: int, stale_before: datetime) -> Dict[str, int]:
        return {"total": 0, "fresh": 0, "stale": 0, "missing": 0}


class FakeEmbeddingClient:
    def __init__(self, vector: Optional[List[float]] = None, error: Optional[Exception] = None):
        self.vector = vector or [0.1, 0.2, 0.3]
        self.error = error
        self.calls: List[str] = []

    async def embed_text(self, text: str, tenant_id: int) -> List[float]:
        self.calls.append(text)
        if self.error is not None:
            raise self.error
        return list(self.vector)


class FakeVectorStore(VectorStore):
    def __init__(self, hits: Sequence[VectorHit] = (), error: Optional[Exception] = None):
        self.hits = list(hits)
        self.error = error
        self.queries: List[Dict[str, Any]] = []
        self.closed = False

    async def query(self, tenant_id, vector, k, filter=None):
        self.queries.append({"tenant_id": tenant_id, "k": k, "filter": filter})
        if self.error is not None:
            raise self.error
        return self.hits[:k]

    async def health_check(self) -> bool:
        return True

    async def close(self) -> None:
        self.closed = True


class FakeReranker:
    def __init__(self, outcome: Any = None, error: Optional[Exception] = None):
        self.outcome = outcome if outcome is not None else RerankUnavailable()
        self.error = error
        self.calls: List[Dict[str, Any]] = []

    async def rerank(self, query, documents, tenant_id, top_n=None):
        self.calls.append({"query": query, "documents": list(documents), "top_n": top_n})
        if self.error is not None:
            raise self.error
        return self.outcome


DEFAULT_VECTOR_SETTINGS = VectorStoreSettings(
    host="localhost",
    port=5432,
    collection="article_embeddings",
)


def hit(article_id: Any, score: float, document: str = "") -> VectorHit:
    return VectorHit(
        id=f"vec-{article_id}",
        article_id=article_id,
        score=score,
        document=document or f"doc {article_id}",
    )


@dataclass
class Stack:
    """A fully wired search stack over fakes."""
    articles: FakeArticleRepository
    cache: FakeRelatedCache
    embedding: FakeEmbeddingClient
    store: FakeVectorStore
    reranker: FakeReranker
    registry: VectorStoreRegistry
    semantic: SemanticRetriever
    keyword: KeywordRetriever
    related: RelatedArticleEngine
    manager: SearchManager
    extras: Dict[str, Any] = field(default_factory=dict)


async def build_stack(
    articles: Sequence[Article] = (),
    hits: Sequence[VectorHit] = (),
    reranker: Optional[FakeReranker] = None,
    embedding: Optional[FakeEmbeddingClient] = None,
    store: Optional[FakeVectorStore] = None,
    metrics=None,
) -> Stack:
    article_repo = FakeArticleRepository(articles)
    cache = FakeRelatedCache(article_repo)
    embedding = embedding or FakeEmbeddingClient()
    store = store or FakeVectorStore(hits)
    reranker = reranker or FakeReranker()

    async def settings_provider(tenant_id: int) -> VectorStoreSettings:
        return DEFAULT_VECTOR_SETTINGS

    registry = VectorStoreRegistry(settings_provider, lambda settings: store)
    await registry.startup()

    semantic = SemanticRetriever(embedding, registry, reranker, article_repo, metrics=metrics)
    keyword = KeywordRetriever(article_repo)
    related = RelatedArticleEngine(semantic, article_repo, cache, metrics=metrics)
    manager = SearchManager(semantic, keyword, related, metrics=metrics)
    return Stack(
        articles=article_repo,
        cache=cache,
        embedding=embedding,
        store=store,
        reranker=reranker,
        registry=registry,
        semantic=semantic,
        keyword=keyword,
        related=related,
        manager=manager,
    )


@pytest.fixture
def embedding_down() -> FakeEmbeddingClient:
    return FakeEmbeddingClient(error=EmbeddingError("provider unreachable"))


@pytest.fixture
def rerank_down() -> FakeReranker:
    return FakeReranker(error=RerankError("HTTP 502"))


@pytest.fixture
def vector_store_down() -> FakeVectorStore:
    return FakeVectorStore(error=VectorStoreQueryError("relation does not exist"))


class FakeConnection:
    """Records statements executed inside ``FakeDatabase.transaction()``."""

    def __init__(self, fail_on: Optional[str] = None):
        self.executed: List[Any] = []
        self.fail_on = fail_on

    async def execute(self, query: str, *args: Any) -> str:
        self._maybe_fail(query)
        self.executed.append(("execute", query, args))
        return "OK"

    async def executemany(self, query: str, records: Sequence[Any]) -> None:
        self._maybe_fail(query)
        self.executed.append(("executemany", query, list(records)))

    def _maybe_fail(self, query: str) -> None:
        if self.fail_on and self.fail_on in query:
            raise RuntimeError(f"failed on {self.fail_on}")


class FakeDatabase:
    """Stands in for ``libs.common.db.Database`` in repository tests."""

    def __init__(self, rows: Optional[List[Any]] = None, row: Any = None, fail_on: Optional[str] = None):
        self.rows = rows or []
        self.row = row
        self.calls: List[Any] = []
        self.connection = FakeConnection(fail_on=fail_on)
        self.committed = False
        self.rolled_back = False

    async def fetch(self, query: str, *args: Any) -> List[Any]:
        self.calls.append(("fetch", query, args))
        return self.rows

    async def fetchrow(self, query: str, *args: Any) -> Any:
        self.calls.append(("fetchrow", query, args))
        return self.row

    async def fetchval(self, query: str, *args: Any) -> Any:
        self.calls.append(("fetchval", query, args))
        return 1

    async def execute(self, query: str, *args: Any) -> str:
        self.calls.append(("execute", query, args))
        return "OK"

    @asynccontextmanager
    async def transaction(self):
        try:
            yield self.connection
        except Exception:
            self.rolled_back = True
            raise
        self.committed = True
