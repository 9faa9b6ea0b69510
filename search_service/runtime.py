"""Process-owned resources of the search service.

``SearchRuntime`` builds the database pool, the vector store registry, the
shared HTTP client and everything layered on them, and tears them down again.
The FastAPI lifespan owns one instance; scripts may create their own.
"""

from typing import Optional

import httpx
import structlog

from libs.common.circuit_breaker import CircuitBreakerRegistry
from libs.common.config import SearchConfig
from libs.common.db import Database
from libs.common.metrics import MetricsCollector
from libs.vector_store.registry import (
    VectorStoreRegistry,
    default_settings_from_dsn,
    pgvector_store_factory,
)
from .clients.embedding import EmbeddingClient
from .clients.reranker import RerankerClient
from .errors import EmbeddingError
from .hybrid.search_manager import SearchManager
from .refresh import RelatedRefresher
from .related.engine import RelatedArticleEngine
from .retrievers.keyword import KeywordRetriever
from .retrievers.semantic import SemanticRetriever
from .storage.articles import ArticleRepository
from .storage.provider_settings import KeyDecryptor, ProviderSettingsRepository
from .storage.related_cache import RelatedCacheRepository

logger = structlog.get_logger("search_service.runtime")


class SearchRuntime:
    """Wires and owns the search service's dependencies."""

    def __init__(
        self,
        config: SearchConfig,
        metrics: Optional[MetricsCollector] = None,
        decrypt_key: Optional[KeyDecryptor] = None,
    ):
        self.config = config
        self.metrics = metrics
        self.decrypt_key = decrypt_key

        self.db: Optional[Database] = None
        self.http_client: Optional[httpx.AsyncClient] = None
        self.vector_stores: Optional[VectorStoreRegistry] = None
        self.search_manager: Optional[SearchManager] = None
        self.refresher: Optional[RelatedRefresher] = None
        self.related_cache: Optional[RelatedCacheRepository] = None

    async def initialize(self) -> None:
        """Create pools and clients, then assemble the search stack."""
        config = self.config

        self.db = Database(
            config.lit_db_dsn,
            min_size=config.lit_db_pool_min,
            max_size=config.lit_db_pool_max,
            command_timeout=config.lit_db_command_timeout,
        )
        await self.db.connect()

        provider_settings_kwargs = {}
        if self.decrypt_key is not None:
            provider_settings_kwargs["decrypt_key"] = self.decrypt_key
        provider_settings = ProviderSettingsRepository(
            self.db,
            default_settings_from_dsn(
                config.lit_vector_db_dsn,
                config.lit_vector_collection,
                config.lit_vector_distance_metric,
            ),
            **provider_settings_kwargs,
        )

        self.vector_stores = VectorStoreRegistry(
            provider_settings.get_vector_settings,
            pgvector_store_factory(
                config.lit_vector_db_dsn,
                pool_size=config.lit_vector_pool_size,
                command_timeout=config.lit_vector_command_timeout,
                vector_dimension=config.lit_vector_dimension,
            ),
        )
        await self.vector_stores.startup()

        self.http_client = httpx.AsyncClient(timeout=config.lit_embedding_timeout)

        breakers = CircuitBreakerRegistry(
            failure_threshold=config.lit_embedding_breaker_threshold,
            recovery_timeout=config.lit_embedding_breaker_recovery,
            expected_exception=EmbeddingError,
        )
        embedding_client = EmbeddingClient(
            self.http_client,
            provider_settings,
            breakers,
            default_timeout=config.lit_embedding_timeout,
        )
        reranker = RerankerClient(self.http_client, provider_settings, default_timeout=config.lit_rerank_timeout)

        articles = ArticleRepository(self.db)
        self.related_cache = RelatedCacheRepository(self.db)

        semantic = SemanticRetriever(
            embedding_client,
            self.vector_stores,
            reranker,
            articles,
            candidate_multiplier=config.lit_search_candidate_multiplier,
            metrics=self.metrics,
        )
        keyword = KeywordRetriever(articles, candidate_multiplier=config.lit_search_candidate_multiplier)
        related = RelatedArticleEngine(
            semantic,
            articles,
            self.related_cache,
            similarity_threshold=config.lit_related_similarity_threshold,
            min_high_confidence=config.lit_related_min_high_confidence,
            high_confidence_cap=config.lit_related_high_confidence_cap,
            low_confidence_cap=config.lit_related_low_confidence_cap,
            metrics=self.metrics,
        )

        self.search_manager = SearchManager(semantic, keyword, related, metrics=self.metrics)
        self.refresher = RelatedRefresher(
            self.search_manager,
            self.related_cache,
            articles,
            semantic,
            related_limit=config.lit_related_high_confidence_cap,
            concurrency=config.lit_refresh_concurrency,
        )

        logger.info("Search runtime initialized")

    async def health_check(self) -> bool:
        """The article database must answer; vector stores are per tenant."""
        if self.db is None:
            return False
        return await self.db.health_check()

    async def cleanup(self) -> None:
        """Close everything ``initialize`` opened, in reverse order."""
        if self.http_client is not None:
            await self.http_client.aclose()
            self.http_client = None

        if self.vector_stores is not None:
            await self.vector_stores.shutdown()
            self.vector_stores = None

        if self.db is not None:
            await self.db.close()
            self.db = None

        logger.info("Search runtime cleanup completed")
