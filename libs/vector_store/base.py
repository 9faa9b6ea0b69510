"""Base vector store interface.

Defines the read contract the search service depends on, independent of the
backing implementation. Writing vectors belongs to the indexing pipeline and
is not part of this interface.

All methods are asynchronous to support high-throughput services.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

DISTANCE_METRICS = ("cosine", "l2", "ip")


@dataclass(frozen=True)
class VectorStoreSettings:
    """Connection settings for one tenant's vector collection.

    Two settings compare equal only when every field matches; the registry
    uses this to decide whether a cached store is still valid.
    """

    host: str
    port: int
    collection: str
    distance_metric: str = "cosine"

    def __post_init__(self) -> None:
        if self.distance_metric not in DISTANCE_METRICS:
            raise ValueError(
                f"Unsupported distance metric {self.distance_metric!r}, "
                f"expected one of {', '.join(DISTANCE_METRICS)}"
            )


@dataclass
class VectorHit:
    """One nearest-neighbour match.

    ``score`` is a similarity (higher is better); ``article_id`` is ``0`` when
    the stored metadata does not carry a usable id.
    """

    id: str
    article_id: int
    score: float
    document: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)


class VectorStore(ABC):
    """Abstract base class for vector stores.

    Implementations must scope every query to the given tenant and return
    hits sorted by descending similarity.
    """

    @abstractmethod
    async def query(
        self,
        tenant_id: int,
        vector: Sequence[float],
        k: int,
        filter: Optional[Dict[str, Any]] = None,
    ) -> List[VectorHit]:
        """Return up to ``k`` nearest neighbours of ``vector``.

        Parameters
        - tenant_id: Owner of the vectors searched
        - vector: Query embedding
        - k: Maximum number of hits
        - filter: Optional metadata equality filter
        """
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if the vector store is healthy."""
        pass

    async def close(self) -> None:
        """Release connections held by the store."""
        return None


class VectorStoreError(Exception):
    """Base exception for vector store operations."""
    pass


class VectorStoreConnectionError(VectorStoreError):
    """Connection error to vector store."""
    pass


class VectorStoreQueryError(VectorStoreError):
    """Query error in vector store."""
    pass
