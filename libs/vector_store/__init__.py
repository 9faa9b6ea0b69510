"""Vector store adapters and utilities.

Primary components:
- ``base``: abstract ``VectorStore`` interface, ``VectorHit``,
  ``VectorStoreSettings`` and common exceptions.
- ``pgvector``: PostgreSQL/pgvector implementation of the interface.
- ``registry``: per-tenant store cache with startup/shutdown lifecycle.

Guidance:
- Services obtain stores through ``VectorStoreRegistry.get_store(tenant_id)``
  so tenant connection settings are honoured without callers knowing them.
"""
