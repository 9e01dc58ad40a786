"""Canned MetricsRenderer for handler tests."""

FAKE_PAYLOAD = b"# fake metrics\n"


class FakeMetricsRenderer:
    """Returns a fixed payload and remembers the ``Accept`` headers it saw."""

    def __init__(self, content_type: str = "text/plain") -> None:
        self.content_type = content_type
        self.accepts: list[str] = []

    def render(self, accept: str = "") -> tuple[bytes, str]:
        self.accepts.append(accept)
        return FAKE_PAYLOAD, self.content_type
