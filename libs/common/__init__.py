"""Common utilities shared by the service and scripts.

Includes:
- ``config``: Pydantic-based configuration from environment variables.
- ``logging``: structured logging setup with structlog.
- ``metrics``: Prometheus metrics helpers.
- ``db``: asyncpg pool wrapper for the article database.
- ``circuit_breaker``: breaker for upstream provider calls.

Import pattern:
- from libs.common.config import SearchConfig
- from libs.common.logging import configure_logging
"""
