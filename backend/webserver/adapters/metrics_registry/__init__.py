"""Metrics registry adapters."""

from webserver.adapters.metrics_registry.expvar import ExpvarMetricsRegistry

__all__ = ["ExpvarMetricsRegistry"]
