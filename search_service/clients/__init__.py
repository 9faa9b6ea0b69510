"""HTTP clients for tenant-configured model providers."""

from .embedding import EmbeddingClient
from .reranker import Reranked, RerankerClient, RerankItem, RerankOutcome, RerankUnavailable

__all__ = [
    "EmbeddingClient",
    "Reranked",
    "RerankerClient",
    "RerankItem",
    "RerankOutcome",
    "RerankUnavailable",
]
