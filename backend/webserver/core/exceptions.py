"""Exceptions raised by the webserver lifecycle.

Only listener-scoped and shutdown-scoped failures escape ``Server.start()``.
Request-scoped failures (including request timeouts) are answered on the
wire and never raised at process level.
"""

from typing import Optional


class WebserverException(Exception):
    """Base class for every error raised by this package."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ConfigValidationError(WebserverException):
    """The assembled configuration is invalid (raised before any bind)."""


class LifecycleError(WebserverException):
    """An operation was attempted in the wrong lifecycle state."""


class StartupError(WebserverException):
    """The listener failed before any termination signal was received.

    The raw serving error is available as ``__cause__``.
    """

    def __init__(self, message: str, *, address: str):
        self.address = address
        super().__init__(f"failed to start server @ {address}: {message}")


class ServeError(WebserverException):
    """The serving task ended with an unexpected error after shutdown."""


class ShutdownError(WebserverException):
    """Graceful shutdown failed and the server was stopped hard."""


class ShutdownTimeoutError(ShutdownError):
    """In-flight requests did not finish within the drain budget."""

    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(
            f"failed to gracefully shut down, timeout reached ({timeout}s). Stopping hard..."
        )


class ForcedCloseError(WebserverException):
    """Force-closing the server failed after a failed graceful shutdown.

    ``__cause__`` is the ``ShutdownError`` that triggered the force close and
    ``close_error`` is the error raised by the force close itself.
    """

    def __init__(self, close_error: Optional[BaseException] = None):
        self.close_error = close_error
        super().__init__(f"failed to hard shut down the server: {close_error}")


class SignalDeliveryError(WebserverException):
    """A termination signal could not be delivered to the process."""


class MetricAlreadyPublishedError(WebserverException):
    """A metric with the same name is already published in the registry."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"metric {name!r} is already published")
