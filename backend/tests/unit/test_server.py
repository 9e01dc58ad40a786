"""Unit tests for the server factories and the assembled application."""

import asyncio
import time

import pytest
from aiohttp import web
from aiohttp.test_utils import TestClient, TestServer

from webserver import LifecycleState, new, new_default
from webserver.api.handlers import new_handler
from webserver.api.middleware import REQUEST_TIMEOUT_MESSAGE, discard_late_response
from webserver.api.router import Router
from webserver.core.config import WebserverSettings
from webserver.core.exceptions import ConfigValidationError, MetricAlreadyPublishedError
from webserver.core.metrics import IntVar, Metric
from webserver.core.options import (
    with_handlers,
    with_metrics,
    with_readiness,
    with_router,
    with_settings,
    with_telemetry,
    with_timeout,
)
from webserver.core.readiness import ReadinessDeterminer
from webserver.core.telemetry import stdout_provider

ADDRESS = "127.0.0.1:8080"


def _paths(server) -> set[tuple[str, str]]:
    return {(r.method, r.path) for r in server.get_router().root.routes()}


class TestNew:
    def test_bare_server_has_readiness_only(self):
        server = new("test-server", ADDRESS)

        assert _paths(server) == {("GET", "/readiness")}
        assert server.state is LifecycleState.IDLE
        assert server.in_flight == 0
        assert server.get_metrics_registry() is None
        assert server.get_telemetry() is None

    def test_invalid_config(self):
        with pytest.raises(ConfigValidationError):
            new("ab", ADDRESS)

    def test_logger_carries_server_name(self):
        server = new("test-server", ADDRESS)
        assert server.get_logger().dimensions == {"server": "test-server"}

    def test_user_readiness_route_is_kept(self):
        async def custom(request: web.Request) -> web.Response:
            return web.Response(text="custom")

        handler = new_handler("GET", "/readiness", custom)
        server = new("test-server", ADDRESS, with_handlers(handler))

        readiness_routes = [r for r in server.get_router().root.routes() if r.path == "/readiness"]
        assert [r.handler for r in readiness_routes] == [custom]

    def test_metrics_handlers(self):
        server = new("test-server", ADDRESS, with_metrics(Metric("counter", IntVar())))

        assert ("GET", "/debug/vars") in _paths(server)
        assert ("GET", "/metrics") in _paths(server)
        assert server.get_metrics_registry().get("counter") is not None

    def test_duplicate_metric_names(self):
        with pytest.raises(MetricAlreadyPublishedError):
            new(
                "test-server",
                ADDRESS,
                with_metrics(Metric("counter", IntVar()), Metric("counter", IntVar())),
            )

    def test_handlers_mounted_under_router_prefix(self):
        async def items(request: web.Request) -> web.Response:
            return web.Response()

        router = Router().subrouter("/api")
        server = new(
            "test-server",
            ADDRESS,
            with_router(router),
            with_handlers(new_handler("GET", "/items", items)),
        )

        assert _paths(server) == {("GET", "/api/items"), ("GET", "/api/readiness")}

    def test_telemetry_enabled(self):
        telemetry = stdout_provider("test-server", set_global=False)
        try:
            server = new("test-server", ADDRESS, with_telemetry(telemetry))
            assert server.get_telemetry() is telemetry
        finally:
            telemetry.shutdown()

    def test_settings_name_used_for_logger_and_telemetry(self, monkeypatch):
        monkeypatch.setenv("WEBSERVER_NAME", "env-server")
        monkeypatch.setenv("WEBSERVER_ENABLE_TELEMETRY", "true")

        server = new("test-server", ADDRESS, with_settings(WebserverSettings(_env_file=None)))
        try:
            assert server.config.name == "env-server"
            assert server.get_logger().logger.name == "env-server"
            assert server.get_logger().dimensions == {"server": "env-server"}
            assert server.get_telemetry().name == "env-server"
        finally:
            server.get_telemetry().shutdown()


class TestNewDefault:
    def test_routes(self):
        server = new_default("test-server", ADDRESS)
        try:
            assert _paths(server) == {
                ("GET", "/api/v1/liveness"),
                ("GET", "/api/v1/"),
                ("GET", "/api/v1/stop"),
                ("GET", "/api/v1/readiness"),
                ("GET", "/api/v1/debug/vars"),
                ("GET", "/api/v1/metrics"),
            }
            assert server.config.logging.console_level == "error"
            assert server.config.enable_telemetry is True
        finally:
            server.get_telemetry().shutdown()

    @pytest.mark.asyncio
    async def test_debug_vars_builtins(self):
        server = new_default("test-server", ADDRESS)
        try:
            async with TestClient(TestServer(server.build_app())) as client:
                data = await (await client.get("/api/v1/debug/vars")).json()
        finally:
            server.get_telemetry().shutdown()

        assert set(data) == {"cmdline", "memstats", "server"}
        assert data["server"]["Name"] == "test-server"
        assert data["server"]["Address"] == ADDRESS


class TestAssembledApp:
    """The full middleware chain, served in-process."""

    def test_late_responses_are_refused(self):
        app = new("test-server", ADDRESS).build_app()
        assert discard_late_response in app.on_response_prepare

    @pytest.mark.asyncio
    async def test_readiness_end_to_end(self):
        db, cache = ReadinessDeterminer("db"), ReadinessDeterminer("cache")
        db.ready = True
        server = new("test-server", ADDRESS, with_readiness(db, cache))

        async with TestClient(TestServer(server.build_app())) as client:
            resp = await client.get("/readiness")
            body = await resp.text()
            assert resp.status == 503
            assert "cache" in body
            assert "db" not in body

            cache.ready = True
            resp = await client.get("/readiness")
            assert resp.status == 200
            assert await resp.text() == "OK\n"

    @pytest.mark.asyncio
    async def test_request_timeout(self):
        finished = asyncio.Event()

        async def slow(request: web.Request) -> web.Response:
            await asyncio.sleep(3)
            finished.set()
            return web.Response(text="finally")

        server = new(
            "test-server",
            ADDRESS,
            with_timeout(3, 1, 3, 0, 3),
            with_handlers(new_handler("GET", "/slow", slow)),
        )

        async with TestClient(TestServer(server.build_app())) as client:
            start = time.monotonic()
            resp = await client.get("/slow")
            body = await resp.text()

            assert time.monotonic() - start < 2.5
            assert resp.status == 503
            assert body == REQUEST_TIMEOUT_MESSAGE
            assert not finished.is_set()

    @pytest.mark.asyncio
    async def test_metrics_skip_their_own_endpoints(self):
        server = new("test-server", ADDRESS, with_metrics())

        async with TestClient(TestServer(server.build_app())) as client:
            await client.get("/readiness")
            await client.get("/debug/vars")
            scrape = await (await client.get("/metrics")).text()

        assert 'endpoint="/readiness"' in scrape
        assert 'endpoint="/debug/vars"' not in scrape
        assert 'endpoint="/metrics"' not in scrape
