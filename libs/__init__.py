"""Shared libraries for the literature search service.

Subpackages:
- ``libs.common``: configuration, logging, metrics, database pool and
  circuit breakers.
- ``libs.vector_store``: vector store interface, pgvector backend and the
  per-tenant store registry.

Notes:
- Keep search-specific logic in ``search_service``; modules here stay reusable.
"""
