"""Prometheus-backed HttpMetrics.

Every instance registers its collectors in its own ``CollectorRegistry``
(unless one is passed in), so two servers in one process, or one server and
the default global registry, never collide on metric names.
"""

from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram

# Bytes; 100B up to 1MB.
RESPONSE_SIZE_BUCKETS = (100, 500, 1_000, 5_000, 10_000, 50_000, 100_000, 500_000, 1_000_000)


class PrometheusHttpMetrics:
    """Request count, latency, concurrency and response size per route."""

    def __init__(self, registry: Optional[CollectorRegistry] = None, namespace: str = "webserver") -> None:
        self._registry = registry if registry is not None else CollectorRegistry()
        self.namespace = namespace

        route_labels = ("method", "endpoint")
        self._requests = Counter(
            "http_requests",
            "Finished HTTP requests",
            (*route_labels, "status_code"),
            namespace=namespace,
            registry=self._registry,
        )
        self._latency = Histogram(
            "http_request_duration_seconds",
            "Time spent handling a request",
            route_labels,
            namespace=namespace,
            registry=self._registry,
        )
        self._concurrent = Gauge(
            "http_requests_in_progress",
            "Requests currently being handled",
            ("method",),
            namespace=namespace,
            registry=self._registry,
        )
        self._sizes = Histogram(
            "http_response_size_bytes",
            "Response body size",
            route_labels,
            buckets=RESPONSE_SIZE_BUCKETS,
            namespace=namespace,
            registry=self._registry,
        )

    @property
    def registry(self) -> CollectorRegistry:
        return self._registry

    def inc_in_progress(self, method: str) -> None:
        self._concurrent.labels(method).inc()

    def dec_in_progress(self, method: str) -> None:
        self._concurrent.labels(method).dec()

    def observe_request(self, method: str, endpoint: str, status_code: str, duration: float) -> None:
        self._requests.labels(method, endpoint, status_code).inc()
        self._latency.labels(method, endpoint).observe(duration)

    def observe_response_size(self, method: str, endpoint: str, size: int) -> None:
        self._sizes.labels(method, endpoint).observe(size)
