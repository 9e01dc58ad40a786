"""Metrics handlers: expvar-style ``/debug/vars`` and Prometheus ``/metrics``."""

import dataclasses
import json
from functools import partial
from typing import Any

from aiohttp import web
from pydantic import BaseModel

from webserver.api.handlers.handler import Handler
from webserver.core.protocols.metrics_registry import MetricsRegistry
from webserver.core.protocols.metrics_renderer import MetricsRenderer


def _jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    return str(value)


_dumps = partial(json.dumps, default=_jsonable, indent=1)


def debug_vars(registry: MetricsRegistry) -> Handler:
    """Serve every published metric as a JSON object, read at request time."""

    async def _debug_vars(request: web.Request) -> web.Response:
        return web.json_response(registry.snapshot(), dumps=_dumps)

    return Handler(method="GET", path="/debug/vars", handler=_debug_vars)


def prometheus_metrics(renderer: MetricsRenderer) -> Handler:
    """Serve collected HTTP metrics in the renderer's exposition format."""

    async def _metrics(request: web.Request) -> web.Response:
        body, content_type = renderer.render(request.headers.get("Accept", ""))
        response = web.Response(body=body)
        response.headers["Content-Type"] = content_type
        return response

    return Handler(method="GET", path="/metrics", handler=_metrics)
