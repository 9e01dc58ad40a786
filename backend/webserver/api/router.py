"""Router with method + path registration and sub-router mounting.

Routes are collected here and installed into the aiohttp application when the
server starts, so handlers can still be added after the server is built:

    router = Router()
    v1 = router.subrouter("/api").subrouter("/v1")
    v1.get("/items", list_items)          # served at /api/v1/items
"""

from dataclasses import dataclass
from typing import Awaitable, Callable, Iterator

from aiohttp import web

HandlerFunc = Callable[[web.Request], Awaitable[web.StreamResponse]]


@dataclass(frozen=True)
class Route:
    """A resolved route: full path, method and handler."""

    method: str
    path: str
    handler: HandlerFunc


def _join(prefix: str, path: str) -> str:
    if not path.startswith("/"):
        path = f"/{path}"
    return f"{prefix}{path}" if prefix else path


class Router:
    """Tree of route prefixes.

    A sub-router shares nothing but its prefix with its parent; ``routes()``
    walks the whole tree.
    """

    def __init__(self, prefix: str = ""):
        self.prefix = prefix.rstrip("/")
        self._routes: list[Route] = []
        self._children: list["Router"] = []
        self._root: "Router" = self

    def subrouter(self, prefix: str) -> "Router":
        """Mount a child router at ``prefix`` relative to this router."""
        child = Router(_join(self.prefix, prefix))
        child._root = self._root
        self._children.append(child)
        return child

    def add(self, method: str, path: str, handler: HandlerFunc) -> Route:
        """Register ``handler`` for ``method`` at ``path`` under this prefix."""
        route = Route(method=method.upper(), path=_join(self.prefix, path), handler=handler)
        self._routes.append(route)
        return route

    def get(self, path: str, handler: HandlerFunc) -> Route:
        return self.add("GET", path, handler)

    def post(self, path: str, handler: HandlerFunc) -> Route:
        return self.add("POST", path, handler)

    @property
    def root(self) -> "Router":
        """The top of the tree this router was mounted from."""
        return self._root

    def routes(self) -> Iterator[Route]:
        """Yield this router's routes, then its children's, depth first."""
        yield from self._routes
        for child in self._children:
            yield from child.routes()

    def install(self, app: web.Application) -> None:
        """Register every route of the whole tree on ``app``."""
        for route in self.root.routes():
            app.router.add_route(route.method, route.path, route.handler)
