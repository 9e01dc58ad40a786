"""Root handler."""

from aiohttp import web

from webserver.api.handlers.handler import Handler, ok_response


async def _ok(request: web.Request) -> web.Response:
    return ok_response()


def ok() -> Handler:
    """Answer ``200 OK`` at the router root."""
    return Handler(method="GET", path="/", handler=_ok)
