"""In-memory HttpMetrics spy for middleware tests."""

from dataclasses import dataclass


@dataclass
class RequestRecord:
    method: str
    endpoint: str
    status_code: str
    duration: float


@dataclass
class ResponseSizeRecord:
    method: str
    endpoint: str
    size: int


class FakeHttpMetrics:
    """Records every call instead of exporting it.

    ``peak_in_progress`` keeps the highest concurrent count seen per method,
    which is what in-progress assertions usually need once requests are done.
    """

    def __init__(self) -> None:
        self.in_progress: dict[str, int] = {}
        self.peak_in_progress: dict[str, int] = {}
        self.requests: list[RequestRecord] = []
        self.response_sizes: list[ResponseSizeRecord] = []

    def inc_in_progress(self, method: str) -> None:
        current = self.in_progress.get(method, 0) + 1
        self.in_progress[method] = current
        self.peak_in_progress[method] = max(current, self.peak_in_progress.get(method, 0))

    def dec_in_progress(self, method: str) -> None:
        self.in_progress[method] = self.in_progress.get(method, 0) - 1

    def observe_request(self, method: str, endpoint: str, status_code: str, duration: float) -> None:
        self.requests.append(RequestRecord(method, endpoint, status_code, duration))

    def observe_response_size(self, method: str, endpoint: str, size: int) -> None:
        self.response_sizes.append(ResponseSizeRecord(method, endpoint, size))

    def endpoints(self) -> list[str]:
        """Endpoints of the recorded requests, in order."""
        return [r.endpoint for r in self.requests]

    def clear(self) -> None:
        self.in_progress.clear()
        self.peak_in_progress.clear()
        self.requests.clear()
        self.response_sizes.clear()
