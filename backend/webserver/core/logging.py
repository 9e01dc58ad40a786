"""Logging for the webserver.

``LoggerConfigurator.configure_logger`` builds a ``ContextualLogger`` from the
configured console level and optional file output. ``with_context`` derives a
child logger that renders extra dimensions into every line:

    logger = LoggerConfigurator.configure_logger("my-server", level="info")
    logger.with_context(operation="shutdown").info("draining")
"""

import logging
import sys
from typing import Any, MutableMapping, Optional

TRACE = 5
NONE = logging.CRITICAL + 10

logging.addLevelName(TRACE, "TRACE")
logging.addLevelName(NONE, "NONE")

LOG_LEVELS: dict[str, int] = {
    "none": NONE,
    "fatal": logging.CRITICAL,
    "error": logging.ERROR,
    "warn": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
    "trace": TRACE,
}

_FORMAT = "%(asctime)s [%(name)s] %(levelname)s %(message)s"


def level_from_string(level: str) -> int:
    """Map a level name (``none`` ... ``trace``) to a ``logging`` level.

    Raises:
        ValueError: If the level name is unknown.
    """
    try:
        return LOG_LEVELS[level.lower()]
    except KeyError:
        raise ValueError(f"unknown log level {level!r}, expected one of {sorted(LOG_LEVELS)}")


class ContextualLogger(logging.LoggerAdapter):
    """Logger adapter carrying key/value dimensions."""

    def __init__(self, logger: logging.Logger, dimensions: Optional[dict[str, Any]] = None):
        super().__init__(logger, dict(dimensions or {}))

    @property
    def dimensions(self) -> dict[str, Any]:
        return dict(self.extra)

    def with_context(self, **dimensions: Any) -> "ContextualLogger":
        """Return a new logger with ``dimensions`` merged over the current ones."""
        merged = {**self.extra, **{k: v for k, v in dimensions.items() if v is not None}}
        return ContextualLogger(self.logger, merged)

    def trace(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self.log(TRACE, msg, *args, **kwargs)

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        if self.extra:
            context = " ".join(f"{k}={v}" for k, v in self.extra.items())
            msg = f"{msg} [{context}]"
        return msg, kwargs


class LoggerConfigurator:
    """Builds configured ``ContextualLogger`` instances."""

    @staticmethod
    def configure_logger(
        name: str,
        *,
        level: str = "info",
        filepath: str = "",
        dimensions: Optional[dict[str, Any]] = None,
    ) -> ContextualLogger:
        """Configure the named logger and wrap it.

        Args:
            name: Logger name, usually the server name.
            level: Console level, one of ``none fatal error warn info debug trace``.
            filepath: Optional log file. ``"-"`` writes the file output to
                stdout and replaces the console output.
            dimensions: Initial context dimensions.

        Returns:
            ContextualLogger: The configured logger.
        """
        numeric_level = level_from_string(level)

        base = logging.getLogger(name)
        for handler in list(base.handlers):
            base.removeHandler(handler)
            handler.close()

        formatter = logging.Formatter(_FORMAT)

        if filepath == "-":
            handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
        else:
            handlers = [logging.StreamHandler(sys.stderr)]
            if filepath:
                handlers.append(logging.FileHandler(filepath))

        for handler in handlers:
            handler.setFormatter(formatter)
            handler.setLevel(numeric_level)
            base.addHandler(handler)

        base.setLevel(numeric_level)
        base.propagate = False

        return ContextualLogger(base, dimensions)


logger = LoggerConfigurator.configure_logger("webserver", level="warn")
