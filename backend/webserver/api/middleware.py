"""Middlewares of the server handler chain.

Applied outermost first:

    in-flight tracking → request logging → tracing → HTTP metrics
        → write deadline → request timeout → router

Each factory closes over the collaborators it needs; nothing is looked up
from globals at request time.
"""

import asyncio
import time
from datetime import datetime, timezone
from typing import Any, Optional

from aiohttp import web
from opentelemetry import propagate, trace
from opentelemetry.trace import SpanKind, Status, StatusCode

from webserver.core.logging import ContextualLogger
from webserver.core.protocols.http_metrics import HttpMetrics

REQUEST_TIMEOUT_MESSAGE = "failed to finish request, timed out"
REQUEST_TIMEOUT_STATUS = 503

# Set when the request deadline fires; handlers may poll it to stop early.
DEADLINE_EXCEEDED_KEY = web.RequestKey("deadline_exceeded", asyncio.Event)

# The timeout response, the only one allowed out once the deadline fired.
TIMEOUT_RESPONSE_KEY = web.RequestKey("timeout_response", web.StreamResponse)

# Whatever response the handler started sending before the deadline.
STARTED_RESPONSE_KEY = web.RequestKey("started_response", web.StreamResponse)

LOGGER_KEY = web.AppKey("logger", ContextualLogger)


# ---------------------------------------------------------------------------
# In-flight tracking
# ---------------------------------------------------------------------------


class InFlightTracker:
    """Counts requests currently being handled.

    ``wait_idle()`` resolves once the count drops to zero, which is what the
    drain phase of shutdown waits on.
    """

    def __init__(self) -> None:
        self._count = 0
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def count(self) -> int:
        return self._count

    def enter(self) -> None:
        self._count += 1
        self._idle.clear()

    def leave(self) -> None:
        self._count -= 1
        if self._count <= 0:
            self._count = 0
            self._idle.set()

    async def wait_idle(self) -> None:
        await self._idle.wait()

    def middleware(self) -> Any:
        @web.middleware
        async def in_flight_middleware(request: web.Request, handler: Any) -> web.StreamResponse:
            self.enter()
            try:
                return await handler(request)
            finally:
                self.leave()

        return in_flight_middleware


# ---------------------------------------------------------------------------
# Request logging
# ---------------------------------------------------------------------------


def _combined_log_line(request: web.Request, status: int, size: Optional[int]) -> str:
    """Apache Combined Log Format line."""
    remote = request.remote or "-"
    when = datetime.now(timezone.utc).strftime("%d/%b/%Y:%H:%M:%S %z")
    version = f"HTTP/{request.version.major}.{request.version.minor}"
    referer = request.headers.get("Referer", "")
    agent = request.headers.get("User-Agent", "")
    length = "-" if size is None else str(size)
    return (
        f'{remote} - - [{when}] "{request.method} {request.path_qs} {version}" '
        f'{status} {length} "{referer}" "{agent}"'
    )


def logging_middleware(logger: ContextualLogger, level: int) -> Any:
    """Log every request in Apache Combined Log Format at ``level``."""

    @web.middleware
    async def request_logging_middleware(request: web.Request, handler: Any) -> web.StreamResponse:
        try:
            response = await handler(request)
        except web.HTTPException as exc:
            logger.log(level, _combined_log_line(request, exc.status, None))
            raise
        logger.log(level, _combined_log_line(request, response.status, response.content_length))
        return response

    return request_logging_middleware


# ---------------------------------------------------------------------------
# Tracing
# ---------------------------------------------------------------------------


def _route_template(request: web.Request) -> Optional[str]:
    resource = request.match_info.route.resource
    if resource is None:
        return None
    return resource.canonical


def tracing_middleware(tracer: trace.Tracer) -> Any:
    """Wrap each request in a server span, continuing any incoming trace."""

    @web.middleware
    async def request_tracing_middleware(request: web.Request, handler: Any) -> web.StreamResponse:
        route = _route_template(request)
        name = f"{request.method} {route}" if route else request.method
        ctx = propagate.extract(request.headers)

        with tracer.start_as_current_span(name, context=ctx, kind=SpanKind.SERVER) as span:
            span.set_attribute("http.request.method", request.method)
            span.set_attribute("url.path", request.path)
            if route:
                span.set_attribute("http.route", route)
            try:
                response = await handler(request)
            except web.HTTPException as exc:
                span.set_attribute("http.response.status_code", exc.status)
                if exc.status >= 500:
                    span.set_status(Status(StatusCode.ERROR))
                raise
            span.set_attribute("http.response.status_code", response.status)
            if response.status >= 500:
                span.set_status(Status(StatusCode.ERROR))
            return response

    return request_tracing_middleware


# ---------------------------------------------------------------------------
# HTTP metrics
# ---------------------------------------------------------------------------


def http_metrics_middleware(metrics: HttpMetrics, skip_paths: frozenset[str] = frozenset()) -> Any:
    """Record request count, latency, in-progress and response size."""

    @web.middleware
    async def request_metrics_middleware(request: web.Request, handler: Any) -> web.StreamResponse:
        if request.path in skip_paths:
            return await handler(request)

        method = request.method
        endpoint = _route_template(request) or "unmatched"
        status_code = "500"
        size: Optional[int] = None

        metrics.inc_in_progress(method)
        start = time.perf_counter()
        try:
            response = await handler(request)
            status_code = str(response.status)
            size = response.content_length
            return response
        except web.HTTPException as exc:
            status_code = str(exc.status)
            raise
        finally:
            metrics.dec_in_progress(method)
            metrics.observe_request(method, endpoint, status_code, time.perf_counter() - start)
            if size is not None:
                metrics.observe_response_size(method, endpoint, size)

    return request_metrics_middleware


# ---------------------------------------------------------------------------
# Write deadline
# ---------------------------------------------------------------------------


async def _transmit(request: web.Request, response: web.StreamResponse) -> None:
    await response.prepare(request)
    await response.write_eof()


def write_deadline_middleware(timeout: float, logger: ContextualLogger) -> Any:
    """Bound the time spent sending each response.

    On expiry the connection is aborted; the client sees a reset instead of a
    truncated body.
    """

    @web.middleware
    async def response_write_deadline_middleware(
        request: web.Request, handler: Any
    ) -> web.StreamResponse:
        response = await handler(request)
        if response.prepared:
            return response

        try:
            await asyncio.wait_for(_transmit(request, response), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Write deadline of {timeout}s exceeded for {request.method} {request.path}")
            if request.transport is not None:
                request.transport.abort()
        except ConnectionError as e:
            logger.debug(f"Client went away during {request.method} {request.path}: {e}")
        return response

    return response_write_deadline_middleware


# ---------------------------------------------------------------------------
# Request timeout
# ---------------------------------------------------------------------------


def _log_orphan_result(logger: ContextualLogger, request: web.Request, task: "asyncio.Task[Any]") -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None and not isinstance(exc, web.HTTPException):
        logger.debug(f"Timed out handler for {request.method} {request.path} later failed: {exc!r}")


def request_timeout_middleware(timeout: float, logger: ContextualLogger) -> Any:
    """Answer ``503`` if a request isn't handled within ``timeout``.

    The handler runs in its own task. When the deadline fires the handler is
    left running (cancellation is cooperative, see ``DEADLINE_EXCEEDED_KEY``)
    but whatever it returns afterwards is discarded, so the timeout response
    is the only one the client gets. The timeout response closes the
    connection. Install ``discard_late_response`` as an ``on_response_prepare``
    hook so a handler preparing its own response late can't write either.
    """

    @web.middleware
    async def request_deadline_middleware(request: web.Request, handler: Any) -> web.StreamResponse:
        deadline_exceeded = asyncio.Event()
        request[DEADLINE_EXCEEDED_KEY] = deadline_exceeded

        task = asyncio.ensure_future(handler(request))
        try:
            done, _ = await asyncio.wait({task}, timeout=timeout)
        except asyncio.CancelledError:
            task.cancel()
            raise

        if task in done:
            return task.result()

        deadline_exceeded.set()
        task.add_done_callback(lambda t: _log_orphan_result(logger, request, t))
        logger.warning(f"Request {request.method} {request.path} timed out after {timeout}s")

        if STARTED_RESPONSE_KEY in request and request.transport is not None:
            # Headers of the handler's own response are already out; a 503
            # can't follow them on the same connection.
            request.transport.abort()

        response = web.Response(
            status=REQUEST_TIMEOUT_STATUS,
            text=REQUEST_TIMEOUT_MESSAGE,
            content_type="text/plain",
        )
        response.force_close()
        request[TIMEOUT_RESPONSE_KEY] = response
        return response

    return request_deadline_middleware


async def discard_late_response(request: web.Request, response: web.StreamResponse) -> None:
    """``on_response_prepare`` hook refusing any response but the timeout one after the deadline.

    Raises:
        ConnectionResetError: Into the timed out handler, which is the only
            caller that can prepare a response at that point.
    """
    deadline_exceeded = request.get(DEADLINE_EXCEEDED_KEY)
    if deadline_exceeded is None:
        return

    if not deadline_exceeded.is_set():
        request[STARTED_RESPONSE_KEY] = response
        return

    if response is not request.get(TIMEOUT_RESPONSE_KEY):
        raise ConnectionResetError(f"request {request.method} {request.path} already timed out")
