"""HTTP server with a graceful, bounded shutdown.

``Server.start()`` serves until a termination signal arrives, then walks the
shutdown sequence:

    IDLE → SERVING → DRAINING → STOPPED | KILLED_HARD

Draining closes the listener, disables keep-alive and waits up to
``shutdown_in_flight_timeout`` for in-flight requests. If they don't make it,
every connection is closed hard. A second signal during shutdown is left to
the OS default action, which kills the process.
"""

import asyncio
import os
import signal
from enum import Enum
from typing import Optional

from aiohttp import web

from webserver.adapters.http_metrics import PrometheusHttpMetrics
from webserver.adapters.metrics_registry import ExpvarMetricsRegistry
from webserver.adapters.metrics_renderer import PrometheusMetricsRenderer
from webserver.api.handlers import (
    add_handlers,
    debug_vars,
    liveness,
    ok,
    prometheus_metrics,
    readiness,
    stop,
)
from webserver.api.handlers.readiness import READINESS_PATH
from webserver.api.middleware import (
    LOGGER_KEY,
    InFlightTracker,
    discard_late_response,
    http_metrics_middleware,
    logging_middleware,
    request_timeout_middleware,
    tracing_middleware,
    write_deadline_middleware,
)
from webserver.api.router import Router
from webserver.core.config import ServerConfig
from webserver.core.exceptions import (
    ForcedCloseError,
    LifecycleError,
    ServeError,
    ShutdownError,
    ShutdownTimeoutError,
    StartupError,
)
from webserver.core.logging import ContextualLogger, LoggerConfigurator, level_from_string
from webserver.core.metrics import Metric, command_line, memory_stats, server_info
from webserver.core.options import (
    Option,
    ServerConfigBuilder,
    with_handlers,
    with_logging,
    with_metrics,
    with_router,
    with_telemetry,
)
from webserver.core.protocols.http_metrics import HttpMetrics
from webserver.core.protocols.metrics_registry import MetricsRegistry
from webserver.core.signals import HANDLED_SIGNALS, deliver_signal
from webserver.core.telemetry import Telemetry, stdout_provider

CTRL_C_MESSAGE = "press ctrl+c to stop anyway"

# Time handlers get to react to cancellation when connections are closed hard.
FORCE_CLOSE_GRACE = 0.01


class LifecycleState(str, Enum):
    """Server lifecycle states; transitions only move forward."""

    IDLE = "idle"
    SERVING = "serving"
    DRAINING = "draining"
    STOPPED = "stopped"
    KILLED_HARD = "killed_hard"


class Server:
    """aiohttp-based server owning the listener, signals and shutdown sequence."""

    def __init__(
        self,
        config: ServerConfig,
        *,
        logger: ContextualLogger,
        metrics_registry: Optional[MetricsRegistry] = None,
        http_metrics: Optional[HttpMetrics] = None,
        metrics_handler_paths: frozenset[str] = frozenset(),
    ):
        """Initialize the server.

        Prefer ``new()`` which builds the logger, telemetry and metrics from
        the configuration.

        Args:
            config: Validated server configuration.
            logger: Server logger.
            metrics_registry: Registry served at ``/debug/vars``.
            http_metrics: Collector fed by the HTTP metrics middleware.
            metrics_handler_paths: Paths excluded from HTTP metrics.
        """
        self.config = config
        self.logger = logger.with_context(server=config.name)
        self._metrics_registry = metrics_registry
        self._http_metrics = http_metrics
        self._metrics_handler_paths = metrics_handler_paths

        self._state = LifecycleState.IDLE
        self._in_flight = InFlightTracker()
        self._runner: Optional[web.AppRunner] = None
        self._site: Optional[web.TCPSite] = None
        self._closed: Optional[asyncio.Future[None]] = None
        self._serving = asyncio.Event()

    # -- accessors ------------------------------------------------------------

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def in_flight(self) -> int:
        """Number of requests currently being handled."""
        return self._in_flight.count

    def get_logger(self) -> ContextualLogger:
        return self.logger

    def get_router(self) -> Router:
        """The base router; add your own routes before calling ``start()``."""
        return self.config.router

    def get_telemetry(self) -> Optional[Telemetry]:
        return self.config.telemetry

    def get_metrics_registry(self) -> Optional[MetricsRegistry]:
        return self._metrics_registry

    async def wait_serving(self) -> None:
        """Block until the listener is bound."""
        await self._serving.wait()

    # -- application ----------------------------------------------------------

    def build_app(self) -> web.Application:
        """Build the aiohttp application with the full middleware chain."""
        timeout = self.config.timeout

        middlewares = [
            self._in_flight.middleware(),
            logging_middleware(self.logger, level_from_string(self.config.logging.request_level)),
        ]
        if self.config.enable_telemetry and self.config.telemetry is not None:
            middlewares.append(tracing_middleware(self.config.telemetry.new_tracer(self.config.name)))
        if self._http_metrics is not None:
            middlewares.append(http_metrics_middleware(self._http_metrics, self._metrics_handler_paths))
        middlewares.append(write_deadline_middleware(timeout.write_timeout, self.logger))
        middlewares.append(request_timeout_middleware(timeout.request_timeout, self.logger))

        app = web.Application(middlewares=middlewares)
        app.on_response_prepare.append(discard_late_response)
        app[LOGGER_KEY] = self.logger
        self.config.router.install(app)
        return app

    # -- lifecycle ------------------------------------------------------------

    async def _serve(self) -> None:
        """Bind and serve until ``_closed`` resolves. Bind errors end the task."""
        self.logger.debug(f"Server is about to start @ {self.config.address}")

        runner = web.AppRunner(
            self.build_app(),
            handle_signals=False,
            access_log=None,
            keepalive_timeout=self.config.timeout.read_timeout,
            shutdown_timeout=FORCE_CLOSE_GRACE,
        )
        self._runner = runner
        await runner.setup()
        try:
            site = web.TCPSite(runner, host=self.config.host, port=self.config.port)
            await site.start()
        except BaseException:
            self._runner = None
            await runner.cleanup()
            raise

        self._site = site
        self._state = LifecycleState.SERVING
        self._serving.set()
        self.logger.info(f"Server listening on http://{self.config.address}")

        assert self._closed is not None
        await self._closed

    async def start(self) -> None:
        """Serve until a termination signal, then shut down.

        Cancelling the call closes the listener and leaves the server STOPPED.

        Raises:
            LifecycleError: If the server was already started.
            StartupError: If serving failed before any signal arrived.
            ShutdownTimeoutError: If in-flight requests outlived the drain
                budget and the server was stopped hard.
            ShutdownError: If graceful shutdown failed for another reason.
            ForcedCloseError: If stopping hard failed as well.
            ServeError: If the serving task ended with an unexpected error.
        """
        if self._state is not LifecycleState.IDLE or self._closed is not None:
            raise LifecycleError(f"server {self.config.name!r} was already started")

        loop = asyncio.get_running_loop()
        self._closed = loop.create_future()
        received: asyncio.Future[signal.Signals] = loop.create_future()

        def _on_signal(sig: signal.Signals) -> None:
            if not received.done():
                received.set_result(sig)

        # Subscribe before serving so no signal can slip through.
        for sig in HANDLED_SIGNALS:
            loop.add_signal_handler(sig, _on_signal, sig)

        serve_task = asyncio.ensure_future(self._serve())
        try:
            await asyncio.wait({serve_task, received}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            self._remove_signal_handlers(loop)
            await asyncio.shield(self._abandon(serve_task))
            raise

        if not received.done():
            # Serving errors don't require graceful shutdown.
            self._remove_signal_handlers(loop)
            self._state = LifecycleState.STOPPED
            err = serve_task.exception()
            raise StartupError(str(err), address=self.config.address) from err

        sig = received.result()
        self.logger.trace(f"Got {sig.name} signal, gracefully shutting down")

        # Let the OS terminate the program if we get that signal again.
        loop.remove_signal_handler(sig)
        signal.signal(sig, signal.SIG_DFL)

        try:
            await self._shutdown(serve_task)
        finally:
            self._remove_signal_handlers(loop)

    async def _abandon(self, serve_task: "asyncio.Future[None]") -> None:
        """Release the listener when the caller gives up on ``start()``."""
        if not self._serving.is_set():
            serve_task.cancel()
        self._release()
        await asyncio.gather(serve_task, return_exceptions=True)
        try:
            await self._close()
        finally:
            self._state = LifecycleState.STOPPED

    async def _shutdown(self, serve_task: "asyncio.Future[None]") -> None:
        timeout = self.config.timeout
        self._state = LifecycleState.DRAINING

        if not self._serving.is_set():
            # Signal arrived before the listener was bound.
            serve_task.cancel()
            await asyncio.gather(serve_task, return_exceptions=True)

        self.logger.trace(
            f"Waiting {timeout.shutdown_in_flight_timeout}s for in-flight requests to finish, "
            f"{CTRL_C_MESSAGE}"
        )

        shutdown_error: Optional[ShutdownError] = None
        try:
            await asyncio.wait_for(self._drain(), timeout=timeout.shutdown_in_flight_timeout)
        except asyncio.TimeoutError as e:
            shutdown_error = ShutdownTimeoutError(timeout.shutdown_in_flight_timeout)
            shutdown_error.__cause__ = e
        except Exception as e:
            shutdown_error = ShutdownError(f"failed to gracefully shut down: {e}")
            shutdown_error.__cause__ = e

        if shutdown_error is not None:
            await self._kill_hard(serve_task, shutdown_error)
            raise shutdown_error

        await self._close()

        # Reserved for tasks such as flushing caches, files and telemetry.
        self.logger.trace(f"Waiting {timeout.shutdown_task_timeout}s for tasks, {CTRL_C_MESSAGE}")
        await asyncio.sleep(timeout.shutdown_task_timeout)

        await self._collect(serve_task)
        self._state = LifecycleState.STOPPED
        self.logger.info("Server stopped")

    async def _kill_hard(self, serve_task: "asyncio.Future[None]", shutdown_error: ShutdownError) -> None:
        """Close everything now; the shutdown error is what gets reported."""
        self.logger.warning(shutdown_error.message)
        self._state = LifecycleState.KILLED_HARD

        try:
            await self._close()
        except Exception as e:
            raise ForcedCloseError(e) from shutdown_error
        finally:
            self._release()
            await asyncio.gather(serve_task, return_exceptions=True)

    async def _drain(self) -> None:
        """Close the listener, disable keep-alive and wait for in-flight requests."""
        if self._site is not None:
            await self._site.stop()
            self._site = None

        if self._runner is not None and self._runner.server is not None:
            for conn in self._runner.server.connections:
                conn.close()

        await self._in_flight.wait_idle()

    async def _close(self) -> None:
        """Close every connection, cutting off whatever is still running."""
        if self._runner is not None:
            runner, self._runner = self._runner, None
            await runner.cleanup()

    def _release(self) -> None:
        if self._closed is not None and not self._closed.done():
            self._closed.set_result(None)

    async def _collect(self, serve_task: "asyncio.Future[None]") -> None:
        """Let the serving task finish so its terminal error isn't lost."""
        self._release()
        try:
            await serve_task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            raise ServeError(f"server {self.config.name!r} failed while serving: {e}") from e

    def _remove_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> None:
        for sig in HANDLED_SIGNALS:
            loop.remove_signal_handler(sig)

    def stop(self, sig: signal.Signals = signal.SIGINT) -> None:
        """Deliver ``sig`` to this process, triggering the same shutdown as an OS signal.

        Raises:
            SignalDeliveryError: If the signal couldn't be delivered.
        """
        deliver_signal(sig)


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


def _has_route(router: Router, method: str, path: str) -> bool:
    full_path = f"{router.prefix}{path}"
    return any(r.method == method and r.path == full_path for r in router.root.routes())


def new(name: str, address: str, *options: Option) -> Server:
    """Build a server without pre-loaded handlers, metrics or telemetry.

    Raises:
        ConfigValidationError: If the configuration is invalid.
        MetricAlreadyPublishedError: If two metrics share a name.
    """
    builder = ServerConfigBuilder(name, address).apply(*options)

    draft = builder.draft
    if draft["enable_telemetry"] and draft["telemetry"] is None:
        draft["telemetry"] = stdout_provider(draft["name"])

    config = builder.build()

    logger = LoggerConfigurator.configure_logger(
        config.name,
        level=config.logging.console_level,
        filepath=config.logging.filepath,
    )

    router = config.router
    add_handlers(router, *config.handlers)

    if not _has_route(router, "GET", READINESS_PATH):
        add_handlers(router, readiness(*config.readiness_determiners))

    registry: Optional[MetricsRegistry] = None
    http_metrics: Optional[PrometheusHttpMetrics] = None
    skip_paths: frozenset[str] = frozenset()

    if config.enable_metrics:
        registry = ExpvarMetricsRegistry()
        for m in config.metrics:
            registry.publish(m.name, m.value)

        http_metrics = PrometheusHttpMetrics()
        vars_handler = debug_vars(registry)
        prom_handler = prometheus_metrics(PrometheusMetricsRenderer(http_metrics.registry))
        add_handlers(router, vars_handler, prom_handler)
        skip_paths = frozenset(f"{router.prefix}{h.path}" for h in (vars_handler, prom_handler))

    return Server(
        config,
        logger=logger,
        metrics_registry=registry,
        http_metrics=http_metrics,
        metrics_handler_paths=skip_paths,
    )


def new_default(name: str, address: str) -> Server:
    """Build a server with observability and the built-in handlers.

    - Metrics: ``cmdline``, ``memstats`` and ``server``
    - Telemetry: ``stdout`` provider
    - Logging: ``error``, no file
    - Handlers: liveness, OK and stop
    - Router mounted at ``/api/v1``
    """
    versioned = Router().subrouter("/api").subrouter("/v1")

    return new(
        name,
        address,
        with_handlers(liveness(), ok(), stop()),
        with_metrics(
            Metric("cmdline", command_line()),
            Metric("memstats", memory_stats()),
            Metric("server", server_info(address, name, os.getpid())),
        ),
        with_logging("error", "error", ""),
        with_router(versioned),
        with_telemetry(stdout_provider(name)),
    )
