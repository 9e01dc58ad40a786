"""Built-in handlers."""

from webserver.api.handlers.handler import Handler, add_handlers, new_handler
from webserver.api.handlers.liveness import liveness
from webserver.api.handlers.metrics import debug_vars, prometheus_metrics
from webserver.api.handlers.ok import ok
from webserver.api.handlers.readiness import readiness
from webserver.api.handlers.stop import stop

__all__ = [
    "Handler",
    "add_handlers",
    "debug_vars",
    "liveness",
    "new_handler",
    "ok",
    "prometheus_metrics",
    "readiness",
    "stop",
]
