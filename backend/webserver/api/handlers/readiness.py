"""Readiness handler.

Aggregates any number of ``ReadinessDeterminer`` instances: the server is
ready only if all of them are. Every call re-reads the determiners, so a
flipped flag is visible on the very next check.
"""

from typing import Sequence

from aiohttp import web

from webserver.api.handlers.handler import Handler, ok_response, text_response
from webserver.core.readiness import ReadinessDeterminer

READINESS_PATH = "/readiness"


def failed_determiners(determiners: Sequence[ReadinessDeterminer]) -> list[str]:
    """Names of the determiners currently not ready, in registration order."""
    return [d.name for d in determiners if not d.ready]


def readiness(*determiners: ReadinessDeterminer) -> Handler:
    """Build the ``/readiness`` handler for a fixed set of determiners.

    Returns ``200 OK`` when the set is empty or every determiner is ready,
    ``503`` listing the failing determiners otherwise.
    """
    captured = tuple(determiners)

    async def _readiness(request: web.Request) -> web.Response:
        failed = failed_determiners(captured)
        if failed:
            return text_response(
                f"server isn't ready. {', '.join(failed)} failed readiness",
                status=503,
            )
        return ok_response()

    return Handler(method="GET", path=READINESS_PATH, handler=_readiness)
