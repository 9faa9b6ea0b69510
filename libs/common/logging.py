"""structlog setup for the search service and its scripts.

Every event is a key/value record. Besides the event text, search code logs a
small, stable set of fields so aggregated logs can be filtered per tenant and
per mode:

- ``service``: bound once by ``configure_logging``
- ``tenant_id`` / ``mode``: bound per request by ``search_context``
- ``article_id``, ``result_count``, ``duration_ms``, ``error``: per event

``json`` output is meant for deployed services, ``console`` for local runs and
scripts.
"""

import logging
import sys
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

import structlog
from structlog.stdlib import LoggerFactory, add_logger_name

LOG_FORMATS = ("json", "console")


def _processors(log_format: str) -> List[Any]:
    processors: List[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        add_logger_name,
        structlog.processors.format_exc_info,
    ]
    if log_format == "console":
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))
    else:
        processors.append(structlog.processors.JSONRenderer())
    return processors


def configure_logging(
    service_name: str,
    log_level: str = "INFO",
    log_format: str = "json",
) -> None:
    """Route structlog through stdlib logging on stdout.

    An unknown ``log_level`` falls back to INFO; an unknown ``log_format``
    raises ``ValueError`` so a typo in ``LIT_LOG_FORMAT`` fails at startup.
    """
    if log_format not in LOG_FORMATS:
        raise ValueError(f"log_format must be one of {LOG_FORMATS}, got {log_format!r}")

    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level, force=True)

    structlog.configure(
        processors=_processors(log_format),
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(service=service_name)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


@contextmanager
def search_context(tenant_id: int, mode: Optional[str] = None) -> Iterator[None]:
    """Attach ``tenant_id`` (and ``mode``) to every event logged in the block."""
    fields: Dict[str, Any] = {"tenant_id": tenant_id}
    if mode is not None:
        fields["mode"] = mode
    with structlog.contextvars.bound_contextvars(**fields):
        yield


def log_performance(operation: str, duration_ms: float, **kwargs: Any) -> None:
    """Emit one timing event for ``operation`` with extra dimensions."""
    get_logger("search_service.performance").info(
        "Operation completed",
        operation=operation,
        duration_ms=round(duration_ms, 2),
        **kwargs
    )
