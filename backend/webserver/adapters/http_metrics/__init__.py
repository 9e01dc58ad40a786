"""HTTP metrics adapters."""

from webserver.adapters.http_metrics.fake import FakeHttpMetrics
from webserver.adapters.http_metrics.prometheus import PrometheusHttpMetrics

__all__ = ["PrometheusHttpMetrics", "FakeHttpMetrics"]
