"""HTTP server lifecycle manager.

- Graceful, bounded shutdown on SIGINT/SIGTERM or a remote stop request
- Layered timeouts: request deadline, connection read/write deadlines,
  in-flight drain and shutdown tasks
- Readiness aggregated from any number of determiners
- HTTP server powered by aiohttp
- Observability: logging, OpenTelemetry tracing, expvar-style and
  Prometheus metrics
"""

from webserver.server import LifecycleState, Server, new, new_default

__all__ = ["LifecycleState", "Server", "new", "new_default"]
