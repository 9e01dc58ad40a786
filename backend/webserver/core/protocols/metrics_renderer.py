"""MetricsRenderer protocol: turns collected metrics into a scrape payload."""

from typing import Protocol, runtime_checkable


@runtime_checkable
class MetricsRenderer(Protocol):
    """Serializes metrics for ``GET /metrics``."""

    def render(self, accept: str = "") -> tuple[bytes, str]:
        """Return the payload and its content type.

        ``accept`` is the scraper's ``Accept`` header; renderers supporting
        several exposition formats pick one from it.
        """
        ...
