"""Prometheus exposition of a CollectorRegistry."""

from prometheus_client import CollectorRegistry
from prometheus_client.exposition import choose_encoder


class PrometheusMetricsRenderer:
    """Renders one registry, in OpenMetrics when the scraper asks for it."""

    def __init__(self, registry: CollectorRegistry) -> None:
        self._registry = registry

    def render(self, accept: str = "") -> tuple[bytes, str]:
        encoder, content_type = choose_encoder(accept)
        return encoder(self._registry), content_type
