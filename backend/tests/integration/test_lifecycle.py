"""Lifecycle tests against a real listener and real signals.

Each test starts the server on a free loopback port and drives shutdown by
sending SIGTERM/SIGINT to this very process, exactly like an orchestrator
would. ``restore_signals`` puts pytest's handlers back afterwards since a
handled signal is reset to its default action.
"""

import asyncio
import os
import signal
import socket
import sys
import textwrap
import time
from pathlib import Path
from unittest.mock import AsyncMock, patch

import aiohttp
import pytest
from aiohttp import web

from webserver import LifecycleState, new
from webserver.api.handlers import new_handler, stop
from webserver.core.exceptions import (
    ForcedCloseError,
    LifecycleError,
    ShutdownTimeoutError,
    StartupError,
)
from webserver.core.options import with_handlers, with_timeout

pytestmark = pytest.mark.usefixtures("restore_signals")

BACKEND_DIR = Path(__file__).parents[2]


async def _wait_for(predicate, timeout: float = 2.0) -> None:
    async def _poll():
        while not predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(_poll(), timeout=timeout)


def _slow_handler(delay: float):
    async def slow(request: web.Request) -> web.Response:
        await asyncio.sleep(delay)
        return web.Response(text="done")

    return new_handler("GET", "/slow", slow)


class TestGracefulShutdown:
    @pytest.mark.asyncio
    async def test_in_flight_request_completes(self, port):
        server = new(
            "test-server",
            f"127.0.0.1:{port}",
            with_timeout(3, 2, 3, 0, 3),
            with_handlers(_slow_handler(0.5)),
        )
        serving = asyncio.ensure_future(server.start())
        await server.wait_serving()
        assert server.state is LifecycleState.SERVING

        async with aiohttp.ClientSession() as session:
            request = asyncio.ensure_future(session.get(f"http://127.0.0.1:{port}/slow"))
            await _wait_for(lambda: server.in_flight == 1)

            server.stop(signal.SIGTERM)
            await _wait_for(lambda: server.state is LifecycleState.DRAINING)

            resp = await request
            assert resp.status == 200
            assert await resp.text() == "done"

        await asyncio.wait_for(serving, timeout=5)
        assert server.state is LifecycleState.STOPPED

        # The handled signal is left to the OS default from now on.
        assert signal.getsignal(signal.SIGTERM) == signal.SIG_DFL

    @pytest.mark.asyncio
    async def test_listener_closed_while_draining(self, port):
        server = new(
            "test-server",
            f"127.0.0.1:{port}",
            with_timeout(3, 2, 3, 0, 3),
            with_handlers(_slow_handler(0.5)),
        )
        serving = asyncio.ensure_future(server.start())
        await server.wait_serving()

        async with aiohttp.ClientSession() as session:
            request = asyncio.ensure_future(session.get(f"http://127.0.0.1:{port}/slow"))
            await _wait_for(lambda: server.in_flight == 1)
            server.stop(signal.SIGINT)
            await _wait_for(lambda: server.state is LifecycleState.DRAINING)
            await asyncio.sleep(0.1)

            with pytest.raises(aiohttp.ClientConnectionError):
                async with aiohttp.ClientSession() as fresh:
                    await fresh.get(f"http://127.0.0.1:{port}/readiness")

            assert (await request).status == 200

        await asyncio.wait_for(serving, timeout=5)

    @pytest.mark.asyncio
    async def test_remote_stop(self, port):
        server = new("test-server", f"127.0.0.1:{port}", with_timeout(3, 1, 3, 0, 3), with_handlers(stop()))
        serving = asyncio.ensure_future(server.start())
        await server.wait_serving()

        async with aiohttp.ClientSession() as session:
            resp = await session.get(f"http://127.0.0.1:{port}/stop")
            assert resp.status == 200

        await asyncio.wait_for(serving, timeout=5)
        assert server.state is LifecycleState.STOPPED

    @pytest.mark.asyncio
    async def test_cannot_start_twice(self, port):
        server = new("test-server", f"127.0.0.1:{port}", with_timeout(3, 1, 3, 0, 3))
        serving = asyncio.ensure_future(server.start())
        await server.wait_serving()
        server.stop()
        await asyncio.wait_for(serving, timeout=5)

        with pytest.raises(LifecycleError):
            await server.start()

    @pytest.mark.asyncio
    async def test_waits_for_shutdown_tasks(self, port):
        server = new("test-server", f"127.0.0.1:{port}", with_timeout(3, 1, 3, 0.5, 3))
        serving = asyncio.ensure_future(server.start())
        await server.wait_serving()

        server.stop(signal.SIGTERM)
        await _wait_for(lambda: server.state is LifecycleState.DRAINING)
        drained_at = time.monotonic()

        # No requests in flight: draining is immediate, the task budget is not.
        await asyncio.sleep(0.2)
        assert not serving.done()
        assert server.state is LifecycleState.DRAINING

        await asyncio.wait_for(serving, timeout=5)
        assert time.monotonic() - drained_at >= 0.45
        assert server.state is LifecycleState.STOPPED


class TestCancelledStart:
    @pytest.mark.asyncio
    async def test_cancel_while_serving_releases_listener(self, port):
        server = new("test-server", f"127.0.0.1:{port}", with_timeout(3, 1, 3, 0, 3))
        serving = asyncio.ensure_future(server.start())
        await server.wait_serving()

        serving.cancel()
        with pytest.raises(asyncio.CancelledError):
            await serving

        assert server.state is LifecycleState.STOPPED
        with pytest.raises(aiohttp.ClientConnectionError):
            async with aiohttp.ClientSession() as session:
                await session.get(f"http://127.0.0.1:{port}/readiness")

        # The port is free again.
        rebind = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            rebind.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            rebind.bind(("127.0.0.1", port))
        finally:
            rebind.close()

    @pytest.mark.asyncio
    async def test_cancel_before_serving(self, port):
        server = new("test-server", f"127.0.0.1:{port}")
        serving = asyncio.ensure_future(server.start())
        await asyncio.sleep(0)

        serving.cancel()
        with pytest.raises(asyncio.CancelledError):
            await serving

        assert server.state is LifecycleState.STOPPED


class TestHardShutdown:
    @pytest.mark.asyncio
    async def test_drain_timeout_kills_hard(self, port):
        server = new(
            "test-server",
            f"127.0.0.1:{port}",
            with_timeout(5, 4, 0.3, 0, 3),
            with_handlers(_slow_handler(2)),
        )
        serving = asyncio.ensure_future(server.start())
        await server.wait_serving()

        async with aiohttp.ClientSession() as session:
            request = asyncio.ensure_future(session.get(f"http://127.0.0.1:{port}/slow"))
            await _wait_for(lambda: server.in_flight == 1)
            server.stop(signal.SIGTERM)

            with pytest.raises(ShutdownTimeoutError) as exc_info:
                await asyncio.wait_for(serving, timeout=5)

            with pytest.raises(aiohttp.ClientError):
                await request

        assert server.state is LifecycleState.KILLED_HARD
        assert exc_info.value.timeout == 0.3
        assert "timeout reached" in exc_info.value.message
        assert isinstance(exc_info.value.__cause__, asyncio.TimeoutError)

    @pytest.mark.asyncio
    async def test_force_close_failure(self, port):
        server = new(
            "test-server",
            f"127.0.0.1:{port}",
            with_timeout(5, 4, 0.3, 0, 3),
            with_handlers(_slow_handler(2)),
        )
        serving = asyncio.ensure_future(server.start())
        await server.wait_serving()
        runner = server._runner
        close_failure = RuntimeError("cleanup failed")

        async with aiohttp.ClientSession() as session:
            request = asyncio.ensure_future(session.get(f"http://127.0.0.1:{port}/slow"))
            await _wait_for(lambda: server.in_flight == 1)

            with patch.object(type(runner), "cleanup", AsyncMock(side_effect=close_failure)):
                server.stop(signal.SIGTERM)
                with pytest.raises(ForcedCloseError) as exc_info:
                    await asyncio.wait_for(serving, timeout=5)

            # Release what the failed close left behind.
            await runner.cleanup()
            await asyncio.gather(request, return_exceptions=True)

        assert server.state is LifecycleState.KILLED_HARD
        assert exc_info.value.close_error is close_failure
        assert isinstance(exc_info.value.__cause__, ShutdownTimeoutError)
        assert "cleanup failed" in exc_info.value.message


class TestStartupFailure:
    @pytest.mark.asyncio
    async def test_port_in_use(self, port):
        occupier = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        occupier.bind(("127.0.0.1", port))
        occupier.listen()
        try:
            server = new("test-server", f"127.0.0.1:{port}")
            with pytest.raises(StartupError) as exc_info:
                await asyncio.wait_for(server.start(), timeout=5)
        finally:
            occupier.close()

        assert server.state is LifecycleState.STOPPED
        assert exc_info.value.address == f"127.0.0.1:{port}"
        assert isinstance(exc_info.value.__cause__, OSError)
        # Signal subscriptions are released on startup failure.
        assert signal.getsignal(signal.SIGTERM) == signal.SIG_DFL


# ---------------------------------------------------------------------------
# Second signal
# ---------------------------------------------------------------------------

_CHILD = textwrap.dedent(
    """
    import asyncio
    import sys

    from webserver import LifecycleState, new
    from webserver.core.options import with_timeout


    async def main(port):
        # Long task budget so the process is still shutting down on the second signal.
        server = new("child-server", f"127.0.0.1:{port}", with_timeout(3, 1, 3, 30, 3))
        serving = asyncio.ensure_future(server.start())
        await server.wait_serving()
        print("serving", flush=True)
        while server.state is not LifecycleState.DRAINING:
            await asyncio.sleep(0.01)
        print("draining", flush=True)
        await serving


    asyncio.run(main(int(sys.argv[1])))
    """
)


@pytest.mark.asyncio
@pytest.mark.parametrize("sig", [signal.SIGTERM, signal.SIGINT])
async def test_second_signal_kills_process(port, sig):
    env = {**os.environ, "PYTHONPATH": str(BACKEND_DIR)}
    proc = await asyncio.create_subprocess_exec(
        sys.executable, "-c", _CHILD, str(port), stdout=asyncio.subprocess.PIPE, env=env
    )
    try:
        assert await asyncio.wait_for(proc.stdout.readline(), timeout=10) == b"serving\n"
        proc.send_signal(sig)
        assert await asyncio.wait_for(proc.stdout.readline(), timeout=5) == b"draining\n"

        proc.send_signal(sig)
        returncode = await asyncio.wait_for(proc.wait(), timeout=5)
    finally:
        if proc.returncode is None:
            proc.kill()
            await proc.wait()

    assert returncode == -sig
