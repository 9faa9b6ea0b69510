"""Per-tenant vector store registry.

Each tenant may point at its own vector database host/port and collection.
``VectorStoreRegistry`` lazily creates one ``VectorStore`` per tenant, keeps
it while the tenant's ``VectorStoreSettings`` stay the same, and replaces it
when they change. The registry is owned by the service process: create it at
startup and call ``shutdown()`` to close every store.
"""

from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional
from urllib.parse import urlsplit, urlunsplit

import structlog

from .base import VectorStore, VectorStoreConnectionError, VectorStoreSettings
from .pgvector import PgVectorStore

logger = structlog.get_logger("vector_store.registry")

SettingsProvider = Callable[[int], Awaitable[VectorStoreSettings]]
StoreFactory = Callable[[VectorStoreSettings], VectorStore]


def build_dsn(base_dsn: str, host: str, port: int) -> str:
    """Return ``base_dsn`` with its host and port replaced.

    Credentials, database name and query parameters are kept.
    """
    parts = urlsplit(base_dsn)
    userinfo = ""
    if "@" in parts.netloc:
        userinfo = parts.netloc.rsplit("@", 1)[0] + "@"
    if ":" in host and not host.startswith("["):
        host = f"[{host}]"
    return urlunsplit((parts.scheme, f"{userinfo}{host}:{port}", parts.path, parts.query, parts.fragment))


def default_settings_from_dsn(dsn: str, collection: str, distance_metric: str = "cosine") -> VectorStoreSettings:
    """Derive default settings from the service-wide vector DSN."""
    parts = urlsplit(dsn)
    return VectorStoreSettings(
        host=parts.hostname or "localhost",
        port=parts.port or 5432,
        collection=collection,
        distance_metric=distance_metric,
    )


def pgvector_store_factory(
    base_dsn: str,
    pool_size: int = 5,
    command_timeout: float = 30.0,
    vector_dimension: Optional[int] = None,
) -> StoreFactory:
    """Build a ``StoreFactory`` creating ``PgVectorStore`` instances."""

    def create(settings: VectorStoreSettings) -> VectorStore:
        return PgVectorStore(
            dsn=build_dsn(base_dsn, settings.host, settings.port),
            collection=settings.collection,
            distance_metric=settings.distance_metric,
            pool_size=pool_size,
            command_timeout=command_timeout,
            vector_dimension=vector_dimension,
        )

    return create


@dataclass
class _Entry:
    settings: VectorStoreSettings
    store: VectorStore


class VectorStoreRegistry:
    """Tenant-keyed cache of vector store clients."""

    def __init__(self, settings_provider: SettingsProvider, store_factory: StoreFactory):
        """Create a registry.

        Parameters
        - settings_provider: Async callable returning a tenant's current settings
        - store_factory: Builds a store for a given settings value
        """
        self._settings_provider = settings_provider
        self._store_factory = store_factory
        self._entries: Dict[int, _Entry] = {}
        self._running = False

    async def startup(self) -> None:
        self._running = True
        logger.info("Vector store registry started")

    async def shutdown(self) -> None:
        """Close and forget every tenant store."""
        self._running = False
        entries: List[_Entry] = list(self._entries.values())
        self._entries.clear()
        for entry in entries:
            await entry.store.close()
        logger.info("Vector store registry shut down", closed=len(entries))

    async def get_store(self, tenant_id: int) -> VectorStore:
        """Return the tenant's store, recreating it if its settings changed."""
        if not self._running:
            raise VectorStoreConnectionError("Vector store registry is not running")

        settings = await self._settings_provider(tenant_id)

        entry = self._entries.get(tenant_id)
        if entry is not None and entry.settings == settings:
            return entry.store

        # No await between the lookup above and this assignment
        store = self._store_factory(settings)
        self._entries[tenant_id] = _Entry(settings=settings, store=store)

        if entry is not None:
            logger.info(
                "Vector store settings changed, replacing client",
                tenant_id=tenant_id,
                host=settings.host,
                port=settings.port,
                collection=settings.collection
            )
            await entry.store.close()
        else:
            logger.debug("Vector store client created", tenant_id=tenant_id, collection=settings.collection)

        return store

    async def invalidate(self, tenant_id: int) -> None:
        """Drop a tenant's cached store (e.g. after its settings were edited)."""
        entry = self._entries.pop(tenant_id, None)
        if entry is not None:
            await entry.store.close()
            logger.debug("Vector store client closed", tenant_id=tenant_id)

    def __len__(self) -> int:
        return len(self._entries)
