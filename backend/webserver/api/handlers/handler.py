"""Handler definition: an aiohttp handler bound to a method and path."""

from dataclasses import dataclass

from aiohttp import web

from webserver.api.router import HandlerFunc, Router
from webserver.content_type import CHARSET_UTF8, MIME_PLAIN
from webserver.core.exceptions import ConfigValidationError

OK_BODY = "OK\n"


@dataclass(frozen=True)
class Handler:
    """A pre-loaded handler registered on the server router at build time."""

    method: str
    path: str
    handler: HandlerFunc


def new_handler(method: str, path: str, handler: HandlerFunc) -> Handler:
    """Validated ``Handler`` factory.

    Raises:
        ConfigValidationError: If a field is missing.
    """
    missing = [
        field
        for field, value in (("method", method), ("path", path), ("handler", handler))
        if not value
    ]
    if missing:
        raise ConfigValidationError(f"invalid handler: {', '.join(missing)} required")
    return Handler(method=method.upper(), path=path, handler=handler)


def add_handlers(router: Router, *handlers: Handler) -> None:
    """Register ``handlers`` on ``router``."""
    for h in handlers:
        router.add(h.method, h.path, h.handler)


def text_response(text: str, status: int = 200) -> web.Response:
    """Plain-text response, newline-terminated like the built-in handlers."""
    if not text.endswith("\n"):
        text = f"{text}\n"
    return web.Response(text=text, status=status, content_type=MIME_PLAIN, charset=CHARSET_UTF8)


def ok_response() -> web.Response:
    return text_response(OK_BODY)
