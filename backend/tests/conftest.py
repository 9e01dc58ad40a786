"""Shared fixtures."""

import signal

import pytest
from aiohttp.test_utils import unused_port


@pytest.fixture
def port() -> int:
    return unused_port()


@pytest.fixture
def restore_signals():
    """Put SIGINT/SIGTERM dispositions back after a lifecycle test."""
    saved = {sig: signal.getsignal(sig) for sig in (signal.SIGINT, signal.SIGTERM)}
    yield
    for sig, handler in saved.items():
        signal.signal(sig, handler)
