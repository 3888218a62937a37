"""Request metrics aggregate backed by prometheus_client."""

from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest
from prometheus_client.exposition import CONTENT_TYPE_LATEST

DURATION_BUCKETS = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)
METRIC_LABELS = ("method", "status")


class RequestMetrics:
    """Counters and latency histograms for the primary listener.

    Each instance owns its own registry so tests and multiple servers in one
    process never share samples.
    """

    content_type = CONTENT_TYPE_LATEST

    def __init__(self, registry: Optional[CollectorRegistry] = None) -> None:
        self.registry = registry if registry is not None else CollectorRegistry()
        self._requests = Counter(
            "requests",
            "Total HTTP requests handled",
            METRIC_LABELS,
            registry=self.registry,
        )
        self._duration = Histogram(
            "request_duration_seconds",
            "HTTP request latency in seconds",
            METRIC_LABELS,
            registry=self.registry,
            buckets=DURATION_BUCKETS,
        )

    def record(self, method: str, status_class: str, duration_seconds: float) -> None:
        """Count one request and observe its latency."""
        self._requests.labels(method=method, status=status_class).inc()
        self._duration.labels(method=method, status=status_class).observe(
            duration_seconds
        )

    def request_count(self, method: str, status_class: str) -> float:
        value = self.registry.get_sample_value(
            "requests_total", {"method": method, "status": status_class}
        )
        return value or 0.0

    def render(self) -> bytes:
        """Return a text exposition snapshot of every metric."""
        return generate_latest(self.registry)
