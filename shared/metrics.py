"""
Shared metrics configuration for the API cache layer.
"""

import threading
from typing import Any, Dict, Optional

from prometheus_client import CollectorRegistry, Counter, Histogram, Info, REGISTRY


class MetricsCollector:
    """Centralized metrics collector for services."""

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = REGISTRY):
        self.service_name = service_name
        self.registry = registry
        self._metrics: Dict[str, Any] = {}
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up common metrics for the service."""

        # Service info
        self._metrics["service_info"] = Info(
            "service_info",
            "Service information",
            registry=self.registry
        )
        self._metrics["service_info"].info({
            "service": self.service_name,
            "version": "1.0.0"
        })

        # HTTP metrics
        self._metrics["http_requests_total"] = Counter(
            "http_requests_total",
            "Total HTTP requests",
            ["method", "endpoint", "status_code"],
            registry=self.registry
        )

        self._metrics["http_request_duration_seconds"] = Histogram(
            "http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["method", "endpoint"],
            registry=self.registry
        )

        # Health check metrics
        self._metrics["health_check_total"] = Counter(
            "health_check_total",
            "Total health check requests",
            ["status"],
            registry=self.registry
        )

        self._setup_cache_metrics()

    def _setup_cache_metrics(self):
        """Set up response cache and rate limit metrics."""
        self._metrics["api_cache_lookups_total"] = Counter(
            "api_cache_lookups_total",
            "Total cache lookups",
            ["client", "result"],
            registry=self.registry
        )

        self._metrics["api_cache_stores_total"] = Counter(
            "api_cache_stores_total",
            "Total responses written to the cache",
            ["client"],
            registry=self.registry
        )

        self._metrics["api_cache_rate_limit_decisions_total"] = Counter(
            "api_cache_rate_limit_decisions_total",
            "Total rate limit admission decisions",
            ["client", "decision"],
            registry=self.registry
        )

        self._metrics["api_cache_upstream_requests_total"] = Counter(
            "api_cache_upstream_requests_total",
            "Total upstream API requests",
            ["client", "status_class"],
            registry=self.registry
        )

        self._metrics["api_cache_upstream_request_duration_seconds"] = Histogram(
            "api_cache_upstream_request_duration_seconds",
            "Upstream API request duration in seconds",
            ["client"],
            registry=self.registry
        )

    def get_metric(self, name: str):
        """Get a metric by name."""
        return self._metrics.get(name)

    def record_http_request(self, method: str, endpoint: str, status_code: int, duration: float):
        """Record HTTP request metrics."""
        self._metrics["http_requests_total"].labels(
            method=method,
            endpoint=endpoint,
            status_code=str(status_code)
        ).inc()

        self._metrics["http_request_duration_seconds"].labels(
            method=method,
            endpoint=endpoint
        ).observe(duration)

    def record_health_check(self, status: str):
        """Record health check metrics."""
        self._metrics["health_check_total"].labels(status=status).inc()

    def record_cache_lookup(self, client: str, hit: bool):
        self._metrics["api_cache_lookups_total"].labels(
            client=client,
            result="hit" if hit else "miss"
        ).inc()

    def record_cache_store(self, client: str):
        self._metrics["api_cache_stores_total"].labels(client=client).inc()

    def record_rate_limit_decision(self, client: str, allowed: bool):
        self._metrics["api_cache_rate_limit_decisions_total"].labels(
            client=client,
            decision="allowed" if allowed else "denied"
        ).inc()

    def record_upstream_request(self, client: str, status_code: Optional[int], duration: float):
        """Record an upstream call; ``status_code`` is None when the transport failed."""
        status_class = f"{status_code // 100}xx" if status_code else "error"
        self._metrics["api_cache_upstream_requests_total"].labels(
            client=client,
            status_class=status_class
        ).inc()
        self._metrics["api_cache_upstream_request_duration_seconds"].labels(client=client).observe(duration)


_collectors: Dict[str, MetricsCollector] = {}
_collectors_lock = threading.Lock()


def get_metrics_collector(service_name: str) -> MetricsCollector:
    """Get the process-wide metrics collector for a service registered on the default registry."""
    with _collectors_lock:
        collector = _collectors.get(service_name)
        if collector is None:
            collector = MetricsCollector(service_name)
            _collectors[service_name] = collector
        return collector
