"""Exceptions raised by the search service."""


class SearchError(Exception):
    """Base exception for search operations."""
    pass


class SearchValidationError(SearchError, ValueError):
    """The request is missing an input its mode requires."""
    pass


class UpstreamError(SearchError):
    """An upstream dependency (embedding, vector store, rerank) failed."""

    dependency = "upstream"


class EmbeddingError(UpstreamError):
    """Embedding provider missing, unreachable or returned bad data."""

    dependency = "embedding"


class RerankError(UpstreamError):
    """Rerank provider call failed."""

    dependency = "rerank"


class SemanticUnavailableError(SearchError):
    """Semantic search failed in hybrid mode and fallback is disabled."""
    pass


class VectorSearchError(UpstreamError):
    """Vector store query failed."""

    dependency = "vector_store"
