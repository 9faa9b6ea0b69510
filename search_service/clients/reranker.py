"""Client for tenant-configured rerank endpoints.

``rerank`` returns a tagged value: ``Reranked`` carries the provider's
ordering, ``RerankUnavailable`` means the tenant has no enabled rerank
provider. Transport and protocol failures raise ``RerankError``.
"""

import math
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence, Union

import httpx
import structlog

from ..errors import RerankError
from ..storage.provider_settings import ProviderSettingsRepository

logger = structlog.get_logger("search_service.clients.reranker")


@dataclass(frozen=True)
class RerankItem:
    """Position of a document in the request and its relevance score."""
    index: int
    score: float


@dataclass
class Reranked:
    ordering: List[RerankItem] = field(default_factory=list)


@dataclass(frozen=True)
class RerankUnavailable:
    reason: str = "not_configured"


RerankOutcome = Union[Reranked, RerankUnavailable]


class RerankerClient:
    """Reorders candidate documents with the tenant's ``rerank`` provider."""

    config_type = "rerank"

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        provider_settings: ProviderSettingsRepository,
        default_timeout: float = 30.0,
    ):
        self.http_client = http_client
        self.provider_settings = provider_settings
        self.default_timeout = default_timeout

    async def rerank(
        self,
        query: str,
        documents: Sequence[str],
        tenant_id: int,
        top_n: Optional[int] = None,
    ) -> RerankOutcome:
        config = await self.provider_settings.get_provider_config(tenant_id, self.config_type)
        if config is None:
            return RerankUnavailable("not_configured")
        if not config.enabled:
            return RerankUnavailable("disabled")

        body = {
            "model": config.model,
            "query": query,
            "documents": list(documents),
            "top_n": top_n if top_n is not None else len(documents),
        }

        try:
            response = await self.http_client.post(
                f"{config.base_url}/rerank",
                json=body,
                headers={"Authorization": f"Bearer {config.api_key}"},
                timeout=config.timeout or self.default_timeout,
            )
        except httpx.HTTPError as e:
            raise RerankError(f"Rerank request failed: {e}") from e

        if response.status_code != 200:
            raise RerankError(f"Rerank request failed: HTTP {response.status_code}")

        try:
            data: Any = response.json()
        except ValueError as e:
            raise RerankError("Rerank provider returned invalid JSON") from e

        return Reranked(_parse_ordering(data))


def _parse_ordering(data: Any) -> List[RerankItem]:
    results = data.get("results") if isinstance(data, dict) else None
    if not isinstance(results, list):
        return []

    ordering = []
    for item in results:
        if not isinstance(item, dict):
            continue
        try:
            index = int(item["index"])
        except (KeyError, TypeError, ValueError):
            continue

        score = item.get("relevance_score")
        if not isinstance(score, (int, float)):
            score = item.get("score")
        if not isinstance(score, (int, float)) or isinstance(score, bool) or not math.isfinite(score):
            score = 0.0
        ordering.append(RerankItem(index=index, score=float(score)))
    return ordering
