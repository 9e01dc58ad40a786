"""HttpMetrics protocol fed by the HTTP metrics middleware."""

from typing import Protocol, runtime_checkable


@runtime_checkable
class HttpMetrics(Protocol):
    """Request instrumentation sink.

    ``endpoint`` is always the route template (``/items/{id}``), never the raw
    path, so label cardinality stays bounded. Unmatched requests are reported
    as ``unmatched``.
    """

    def inc_in_progress(self, method: str) -> None: ...

    def dec_in_progress(self, method: str) -> None: ...

    def observe_request(self, method: str, endpoint: str, status_code: str, duration: float) -> None:
        """Count one finished request and record its latency in seconds."""
        ...

    def observe_response_size(self, method: str, endpoint: str, size: int) -> None:
        """Record the body size in bytes, when it is known up front."""
        ...
