"""Metrics collection for the talent index.

Provides a thin convenience wrapper around ``prometheus_client`` so the
search service and the reindex listener record HTTP, embedding, search, and
reindex metrics with consistent label sets.

Design notes
- Metrics and labels are predeclared to avoid cardinality explosions
- A single registry is kept per process (can be injected for tests)
"""

from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest
import structlog

logger = structlog.get_logger("metrics")


class MetricsCollector:
    """Centralized metrics collection.

    Parameters
    - service_name: Logical name used for scoping
    - registry: Optional custom ``CollectorRegistry`` (e.g. for testing)
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

        # Embedding metrics
        self.embedding_requests = Counter(
            'talent_embedding_requests_total',
            'Embedding provider calls partitioned by outcome',
            ['model_name', 'status'],
            registry=self.registry
        )

        self.embedding_duration = Histogram(
            'talent_embedding_duration_seconds',
            'Embedding provider call duration',
            ['model_name'],
            registry=self.registry
        )

        self.cache_hits = Counter(
            'talent_cache_hits_total',
            'Total cache hits',
            ['cache_type'],
            registry=self.registry
        )

        self.cache_misses = Counter(
            'talent_cache_misses_total',
            'Total cache misses',
            ['cache_type'],
            registry=self.registry
        )

        # Search metrics
        self.search_requests = Counter(
            'talent_search_requests_total',
            'Total search requests',
            ['entity_type', 'mode'],
            registry=self.registry
        )

        self.search_duration = Histogram(
            'talent_search_duration_seconds',
            'Search duration',
            ['entity_type', 'mode'],
            registry=self.registry
        )

        self.search_fallbacks = Counter(
            'talent_search_fallbacks_total',
            'Searches answered by the lexical fallback',
            ['entity_type', 'reason'],
            registry=self.registry
        )

        # Reindex metrics
        self.reindex_passes = Counter(
            'talent_reindex_passes_total',
            'Reindex passes partitioned by trigger and status',
            ['entity_type', 'trigger', 'status'],
            registry=self.registry
        )

        self.reindex_duration = Histogram(
            'talent_reindex_duration_seconds',
            'Reindex pass duration',
            ['entity_type'],
            registry=self.registry
        )

        self.reindex_coalesced = Counter(
            'talent_reindex_coalesced_events_total',
            'Change events merged into an already pending reindex',
            ['entity_type'],
            registry=self.registry
        )

        self.reindex_pending = Gauge(
            'talent_reindex_pending_records',
            'Records with a pending or running reindex',
            registry=self.registry
        )

        self.notifications_dropped = Counter(
            'talent_notifications_dropped_total',
            'Change notifications dropped or ignored',
            ['reason'],
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

    def record_embedding(
        self,
        model_name: str,
        status: str,
        duration: Optional[float] = None
    ) -> None:
        """Record an embedding provider call."""
        self.embedding_requests.labels(model_name=model_name, status=status).inc()
        if duration is not None:
            self.embedding_duration.labels(model_name=model_name).observe(duration)

    def record_cache_hit(self, cache_type: str) -> None:
        """Record cache hit."""
        self.cache_hits.labels(cache_type=cache_type).inc()

    def record_cache_miss(self, cache_type: str) -> None:
        """Record cache miss."""
        self.cache_misses.labels(cache_type=cache_type).inc()

    def record_search(self, entity_type: str, mode: str, duration: float) -> None:
        """Record search metrics."""
        self.search_requests.labels(entity_type=entity_type, mode=mode).inc()
        self.search_duration.labels(entity_type=entity_type, mode=mode).observe(duration)

    def record_search_fallback(self, entity_type: str, reason: str) -> None:
        self.search_fallbacks.labels(entity_type=entity_type, reason=reason).inc()

    def record_reindex(
        self,
        entity_type: str,
        trigger: str,
        status: str,
        duration: Optional[float] = None
    ) -> None:
        """Record the outcome of one reindex pass."""
        self.reindex_passes.labels(entity_type=entity_type, trigger=trigger, status=status).inc()
        if duration is not None:
            self.reindex_duration.labels(entity_type=entity_type).observe(duration)

    def record_coalesced_event(self, entity_type: str) -> None:
        self.reindex_coalesced.labels(entity_type=entity_type).inc()

    def set_pending_reindexes(self, count: int) -> None:
        self.reindex_pending.set(count)

    def record_dropped_notification(self, reason: str) -> None:
        self.notifications_dropped.labels(reason=reason).inc()

    def get_metrics(self) -> str:
        """Get metrics in Prometheus exposition format for scraping."""
        return generate_latest(self.registry).decode('utf-8')


# Global metrics collector instance
_metrics_collector: Optional[MetricsCollector] = None


def get_metrics_collector(service_name: str) -> MetricsCollector:
    """Get or create the metrics collector.

    Returns a process-wide singleton to avoid duplicate collectors/labels.
    """
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector(service_name)
    return _metrics_collector
