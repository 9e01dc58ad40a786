"""In-memory expvar-style implementation of the MetricsRegistry protocol.

Each server owns its registry, so two servers in one process never share
metric names.
"""

import threading
from typing import Any, Optional

from webserver.core.exceptions import MetricAlreadyPublishedError
from webserver.core.metrics import Var
from webserver.core.protocols.metrics_registry import MetricsRegistry


class ExpvarMetricsRegistry(MetricsRegistry):
    """Ordered, lock-guarded map of published vars."""

    def __init__(self) -> None:
        self._vars: dict[str, Var] = {}
        self._lock = threading.Lock()

    def publish(self, name: str, value: Var) -> None:
        with self._lock:
            if name in self._vars:
                raise MetricAlreadyPublishedError(name)
            self._vars[name] = value

    def get(self, name: str) -> Optional[Var]:
        with self._lock:
            return self._vars.get(name)

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            items = sorted(self._vars.items())
        # Read outside the lock: FuncVar providers may be slow.
        return {name: var.value() for name, var in items}
