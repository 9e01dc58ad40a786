"""Core protocols for the server's pluggable collaborators."""

from webserver.core.protocols.http_metrics import HttpMetrics
from webserver.core.protocols.metrics_registry import MetricsRegistry
from webserver.core.protocols.metrics_renderer import MetricsRenderer

__all__ = [
    "HttpMetrics",
    "MetricsRegistry",
    "MetricsRenderer",
]
