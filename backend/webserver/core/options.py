"""Functional options over the server configuration.

An ``Option`` mutates the in-progress draft of a ``ServerConfig``. Options are
applied in order, so when two of them target the same field the last one
wins. ``ServerConfigBuilder.build()`` validates once at the end:

    config = (
        ServerConfigBuilder("my-server", "0.0.0.0:8080")
        .apply(with_timeout(3, 1, 3, 10, 3), with_readiness(db))
        .build()
    )
"""

from typing import Any, Callable

from pydantic import ValidationError

from webserver.api.handlers.handler import Handler
from webserver.api.router import Router
from webserver.core.config import (
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_SHUTDOWN_TASK_TIMEOUT,
    DEFAULT_TIMEOUT,
    ServerConfig,
    WebserverSettings,
)
from webserver.core.exceptions import ConfigValidationError
from webserver.core.metrics import Metric
from webserver.core.readiness import ReadinessDeterminer
from webserver.core.telemetry import Telemetry

Draft = dict[str, Any]
Option = Callable[[Draft], None]


def _defaults(name: str, address: str) -> Draft:
    return {
        "name": name,
        "address": address,
        "enable_metrics": False,
        "enable_telemetry": False,
        "logging": {"console_level": "none", "request_level": "none", "filepath": ""},
        "timeout": {
            "read_timeout": DEFAULT_TIMEOUT,
            "request_timeout": DEFAULT_REQUEST_TIMEOUT,
            "shutdown_in_flight_timeout": DEFAULT_TIMEOUT,
            "shutdown_task_timeout": DEFAULT_SHUTDOWN_TASK_TIMEOUT,
            "write_timeout": DEFAULT_TIMEOUT,
        },
        "handlers": [],
        "metrics": [],
        "readiness_determiners": [],
        "router": Router(),
        "telemetry": None,
    }


class ServerConfigBuilder:
    """Accumulates options over the defaults and validates on ``build()``."""

    def __init__(self, name: str, address: str):
        self._draft = _defaults(name, address)

    @property
    def draft(self) -> Draft:
        """The in-progress, unvalidated configuration."""
        return self._draft

    def apply(self, *options: Option) -> "ServerConfigBuilder":
        for opt in options:
            opt(self._draft)
        return self

    def build(self) -> ServerConfig:
        """Validate the draft.

        Raises:
            ConfigValidationError: If the configuration is invalid.
        """
        try:
            return ServerConfig.model_validate(self._draft)
        except ValidationError as e:
            raise ConfigValidationError(f"invalid server configuration: {e}") from e


# ---------------------------------------------------------------------------
# Server
# ---------------------------------------------------------------------------


def with_router(router: Router) -> Option:
    """Set the base router."""

    def _opt(draft: Draft) -> None:
        draft["router"] = router

    return _opt


def with_timeout(read: float, request: float, in_flight: float, tasks: float, write: float) -> Option:
    """Set every timeout, in seconds."""

    def _opt(draft: Draft) -> None:
        draft["timeout"] = {
            "read_timeout": read,
            "request_timeout": request,
            "shutdown_in_flight_timeout": in_flight,
            "shutdown_task_timeout": tasks,
            "write_timeout": write,
        }

    return _opt


# ---------------------------------------------------------------------------
# Telemetry
# ---------------------------------------------------------------------------


def with_telemetry(telemetry: Telemetry) -> Option:
    """Enable telemetry with the given provider.

    Use ``telemetry.new_telemetry`` to bring your own provider.
    """

    def _opt(draft: Draft) -> None:
        draft["enable_telemetry"] = True
        draft["telemetry"] = telemetry

    return _opt


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------


def with_metrics(*metrics: Metric) -> Option:
    """Enable metrics and set the pre-loaded ones.

    Use ``metrics.new_metric`` to bring your own.
    """

    def _opt(draft: Draft) -> None:
        draft["enable_metrics"] = True
        draft["metrics"] = list(metrics)

    return _opt


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


def with_logging(console: str, request: str, filepath: str = "") -> Option:
    """Set console and request log levels; ``filepath=""`` disables file output."""

    def _opt(draft: Draft) -> None:
        draft["logging"] = {"console_level": console, "request_level": request, "filepath": filepath}

    return _opt


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


def with_readiness(*determiners: ReadinessDeterminer) -> Option:
    """Set the readiness determiners; the server is ready only if all are."""

    def _opt(draft: Draft) -> None:
        draft["readiness_determiners"] = list(determiners)

    return _opt


def with_handlers(*handlers: Handler) -> Option:
    """Set the pre-loaded handlers.

    Use ``handlers.new_handler`` to bring your own.
    """

    def _opt(draft: Draft) -> None:
        draft["handlers"] = list(handlers)

    return _opt


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------

_TIMEOUT_SETTINGS = {
    "READ_TIMEOUT": "read_timeout",
    "REQUEST_TIMEOUT": "request_timeout",
    "SHUTDOWN_IN_FLIGHT_TIMEOUT": "shutdown_in_flight_timeout",
    "SHUTDOWN_TASK_TIMEOUT": "shutdown_task_timeout",
    "WRITE_TIMEOUT": "write_timeout",
}

_LOGGING_SETTINGS = {
    "LOG_CONSOLE_LEVEL": "console_level",
    "LOG_REQUEST_LEVEL": "request_level",
    "LOG_FILEPATH": "filepath",
}

_TOP_LEVEL_SETTINGS = {
    "NAME": "name",
    "ADDRESS": "address",
    "ENABLE_METRICS": "enable_metrics",
    "ENABLE_TELEMETRY": "enable_telemetry",
}


def with_settings(settings: WebserverSettings) -> Option:
    """Apply every value set in ``settings``; unset values are left alone."""

    def _opt(draft: Draft) -> None:
        for attr, key in _TOP_LEVEL_SETTINGS.items():
            value = getattr(settings, attr)
            if value is not None:
                draft[key] = value

        for attr, key in _TIMEOUT_SETTINGS.items():
            value = getattr(settings, attr)
            if value is not None:
                draft["timeout"] = {**draft["timeout"], key: value}

        for attr, key in _LOGGING_SETTINGS.items():
            value = getattr(settings, attr)
            if value is not None:
                draft["logging"] = {**draft["logging"], key: value}

    return _opt
