"""Metrics renderer adapters."""

from webserver.adapters.metrics_renderer.fake import FakeMetricsRenderer
from webserver.adapters.metrics_renderer.prometheus import PrometheusMetricsRenderer

__all__ = ["PrometheusMetricsRenderer", "FakeMetricsRenderer"]
