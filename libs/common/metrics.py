"""Metrics collection for the search service.

Provides a thin convenience wrapper around ``prometheus_client`` so the
service can consistently record HTTP, search, cache, rerank and upstream
failure metrics.

Design notes
- Metrics and labels are predeclared to avoid cardinality explosions
- A single registry is kept per collector (can be injected for tests)
- Tenant ids are never used as labels
"""

from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest
import structlog

logger = structlog.get_logger("metrics")


class MetricsCollector:
    """Centralized metrics collection for the search service.

    Parameters
    - service_name: Logical name used for scoping/labels if desired
    - registry: Optional custom ``CollectorRegistry`` (e.g. for testing)

    Exposes typed helpers for common events to keep label sets consistent.
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry or CollectorRegistry()

        self.request_count = Counter(
            'http_requests_total',
            'Total HTTP requests',
            ['method', 'endpoint', 'status'],
            registry=self.registry
        )

        self.request_duration = Histogram(
            'http_request_duration_seconds',
            'HTTP request duration',
            ['method', 'endpoint'],
            registry=self.registry
        )

        self.search_requests = Counter(
            'search_requests_total',
            'Total search requests',
            ['mode'],
            registry=self.registry
        )

        self.search_duration = Histogram(
            'search_duration_seconds',
            'Search duration',
            ['mode'],
            registry=self.registry
        )

        self.search_fallbacks = Counter(
            'search_fallbacks_total',
            'Hybrid searches answered with keyword-only results',
            registry=self.registry
        )

        self.related_cache_hits = Counter(
            'related_cache_hits_total',
            'Related-article lookups served from the cache',
            registry=self.registry
        )

        self.related_cache_misses = Counter(
            'related_cache_misses_total',
            'Related-article lookups that recomputed the list',
            registry=self.registry
        )

        self.rerank_outcomes = Counter(
            'rerank_outcomes_total',
            'Rerank attempts by outcome',
            ['outcome'],
            registry=self.registry
        )

        self.upstream_errors = Counter(
            'upstream_errors_total',
            'Failed calls to upstream dependencies',
            ['dependency'],
            registry=self.registry
        )

    def record_http_request(
        self,
        method: str,
        endpoint: str,
        status: int,
        duration: float
    ) -> None:
        """Record HTTP request metrics.

        duration is expected in seconds to match Prometheus histogram units.
        """
        self.request_count.labels(method=method, endpoint=endpoint, status=status).inc()
        self.request_duration.labels(method=method, endpoint=endpoint).observe(duration)

    def record_search(self, mode: str, duration: float) -> None:
        """Record search metrics."""
        self.search_requests.labels(mode=mode).inc()
        self.search_duration.labels(mode=mode).observe(duration)

    def record_fallback(self) -> None:
        self.search_fallbacks.inc()

    def record_cache_hit(self) -> None:
        """Record related-article cache hit."""
        self.related_cache_hits.inc()

    def record_cache_miss(self) -> None:
        """Record related-article cache miss."""
        self.related_cache_misses.inc()

    def record_rerank(self, outcome: str) -> None:
        """Record a rerank outcome: ``reranked``, ``unavailable`` or ``failed``."""
        self.rerank_outcomes.labels(outcome=outcome).inc()

    def record_upstream_error(self, dependency: str) -> None:
        self.upstream_errors.labels(dependency=dependency).inc()

    def get_metrics(self) -> str:
        """Get metrics in Prometheus exposition format for scraping."""
        return generate_latest(self.registry).decode('utf-8')
