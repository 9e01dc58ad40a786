"""Liveness handler."""

from aiohttp import web

from webserver.api.handlers.handler import Handler, ok_response


async def _liveness(request: web.Request) -> web.Response:
    return ok_response()


def liveness() -> Handler:
    """Liveness check: the process is up and serving, always ``200 OK``."""
    return Handler(method="GET", path="/liveness", handler=_liveness)
