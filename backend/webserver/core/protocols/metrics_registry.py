"""MetricsRegistry protocol for published server metrics.

The registry maps metric names to lazily-read values. ``/debug/vars``
serializes ``snapshot()``; production uses the in-memory expvar registry.
"""

from typing import Any, Optional, Protocol, runtime_checkable

from webserver.core.metrics import Var


@runtime_checkable
class MetricsRegistry(Protocol):
    """Protocol for a name → value metrics registry."""

    def publish(self, name: str, value: Var) -> None:
        """Publish ``value`` under ``name``.

        Raises:
            MetricAlreadyPublishedError: If ``name`` is taken.
        """
        ...

    def get(self, name: str) -> Optional[Var]:
        """Return the published var, or ``None``."""
        ...

    def snapshot(self) -> dict[str, Any]:
        """Read every published var and return name → current value."""
        ...
