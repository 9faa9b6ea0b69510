"""Client for tenant-configured OpenAI-compatible embedding endpoints."""

from typing import Any, List, Optional, Sequence

import httpx
import structlog

from libs.common.circuit_breaker import CircuitBreakerError, CircuitBreakerRegistry
from ..errors import EmbeddingError
from ..storage.provider_settings import ProviderConfig, ProviderSettingsRepository

logger = structlog.get_logger("search_service.clients.embedding")


class EmbeddingClient:
    """Turns text into vectors using the tenant's ``embedding`` provider.

    Calls for each tenant go through their own circuit breaker, so a dead
    provider is rejected without waiting for the HTTP timeout. There are no
    retries: every failure surfaces as ``EmbeddingError``.
    """

    config_type = "embedding"

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        provider_settings: ProviderSettingsRepository,
        breakers: CircuitBreakerRegistry,
        default_timeout: float = 30.0,
    ):
        self.http_client = http_client
        self.provider_settings = provider_settings
        self.breakers = breakers
        self.default_timeout = default_timeout

    async def embed_text(self, text: str, tenant_id: int) -> List[float]:
        """Embed a single text."""
        vectors = await self.embed_batch([text], tenant_id)
        return vectors[0]

    async def embed_batch(self, texts: Sequence[str], tenant_id: int) -> List[List[float]]:
        """Embed several texts in one request, preserving order."""
        if not texts:
            return []

        config = await self.provider_settings.get_provider_config(tenant_id, self.config_type)
        if config is None:
            raise EmbeddingError(f"No embedding provider configured for tenant {tenant_id}")

        breaker = self.breakers.get_breaker(f"embedding:{tenant_id}")
        try:
            return await breaker.call(self._request, config, list(texts))
        except CircuitBreakerError as e:
            raise EmbeddingError(str(e)) from e

    async def _request(self, config: ProviderConfig, texts: List[str]) -> List[List[float]]:
        timeout = config.timeout or self.default_timeout
        try:
            response = await self.http_client.post(
                f"{config.base_url}/embeddings",
                json={"model": config.model, "input": texts},
                headers={"Authorization": f"Bearer {config.api_key}"},
                timeout=timeout,
            )
        except httpx.HTTPError as e:
            logger.warning("Embedding request failed", error=str(e), model=config.model)
            raise EmbeddingError(f"Embedding request failed: {e}") from e

        if response.status_code != 200:
            logger.warning(
                "Embedding provider returned error",
                status_code=response.status_code,
                model=config.model,
            )
            raise EmbeddingError(f"Embedding request failed: HTTP {response.status_code}")

        vectors = _parse_vectors(response)
        if len(vectors) != len(texts):
            raise EmbeddingError(
                f"Embedding provider returned {len(vectors)} vectors for {len(texts)} inputs"
            )
        return vectors


def _parse_vectors(response: httpx.Response) -> List[List[float]]:
    try:
        data: Any = response.json()
    except ValueError as e:
        raise EmbeddingError("Embedding provider returned invalid JSON") from e

    items: Optional[list] = data.get("data") if isinstance(data, dict) else None
    if not isinstance(items, list):
        return []
    return [
        [float(x) for x in item["embedding"]]
        for item in items
        if isinstance(item, dict) and isinstance(item.get("embedding"), list)
    ]
