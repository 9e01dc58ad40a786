"""Server configuration models.

``ServerConfig`` is assembled by ``ServerConfigBuilder`` (see ``options.py``)
and validated once; it is frozen afterwards. ``WebserverSettings`` reads the
same knobs from ``WEBSERVER_*`` environment variables.
"""

import ipaddress
import re
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from webserver.api.handlers.handler import Handler
from webserver.api.router import Router
from webserver.core.metrics import Metric
from webserver.core.readiness import ReadinessDeterminer
from webserver.core.telemetry import Telemetry

DEFAULT_TIMEOUT = 3.0
DEFAULT_REQUEST_TIMEOUT = 1.0
DEFAULT_SHUTDOWN_TASK_TIMEOUT = 10.0

LogLevel = Literal["none", "fatal", "error", "warn", "info", "debug", "trace"]

_HOSTNAME_RE = re.compile(
    r"^(?=.{1,253}$)([a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)(\.[a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*$"
)


def split_address(address: str) -> tuple[str, int]:
    """Split ``host:port`` into its parts.

    The host may be empty (all interfaces) or a bracketed IPv6 address.

    Raises:
        ValueError: If the address isn't a valid ``host:port``.
    """
    host, sep, port_str = address.rpartition(":")
    if not sep:
        raise ValueError(f"address {address!r} must be host:port")

    if not port_str.isdigit() or not 0 < int(port_str) < 65536:
        raise ValueError(f"address {address!r} has an invalid port")

    if host.startswith("[") and host.endswith("]"):
        try:
            ipaddress.IPv6Address(host[1:-1])
        except ValueError:
            raise ValueError(f"address {address!r} has an invalid IPv6 host")
        host = host[1:-1]
    elif host and not _HOSTNAME_RE.match(host):
        raise ValueError(f"address {address!r} has an invalid host")

    return host, int(port_str)


class TimeoutConfig(BaseModel):
    """Timeouts in seconds.

    ``request_timeout`` must be smaller than ``read_timeout``, otherwise the
    connection read deadline would abort the request before the timeout
    response could be written.
    """

    model_config = ConfigDict(frozen=True)

    # Max duration for reading the request, and idle keep-alive connections.
    read_timeout: float = Field(default=DEFAULT_TIMEOUT, gt=0)

    # Max duration before answering a request with the timeout response.
    request_timeout: float = Field(default=DEFAULT_REQUEST_TIMEOUT, gt=0)

    # Max duration to wait for in-flight requests on shutdown.
    shutdown_in_flight_timeout: float = Field(default=DEFAULT_TIMEOUT, gt=0)

    # Time reserved for tasks such as flushing caches, files and telemetry.
    shutdown_task_timeout: float = Field(default=DEFAULT_SHUTDOWN_TASK_TIMEOUT, ge=0)

    # Max duration for writing the response.
    write_timeout: float = Field(default=DEFAULT_TIMEOUT, gt=0)

    @model_validator(mode="after")
    def _request_before_read(self) -> "TimeoutConfig":
        if self.request_timeout >= self.read_timeout:
            raise ValueError(
                f"request_timeout ({self.request_timeout}s) must be smaller than "
                f"read_timeout ({self.read_timeout}s)"
            )
        return self


class LoggingConfig(BaseModel):
    """Logging fine-control."""

    model_config = ConfigDict(frozen=True)

    console_level: LogLevel = "none"
    request_level: LogLevel = "none"

    # "" disables file output, "-" sends the file output to stdout.
    filepath: str = ""

    @field_validator("filepath")
    @classmethod
    def _filepath(cls, v: str) -> str:
        if v not in ("", "-") and len(v) < 3:
            raise ValueError("filepath must be empty, '-' or at least 3 characters")
        return v


class ServerConfig(BaseModel):
    """Validated, immutable server configuration."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str = Field(min_length=3)
    address: str
    enable_metrics: bool = False
    enable_telemetry: bool = False
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    timeout: TimeoutConfig = Field(default_factory=TimeoutConfig)
    handlers: tuple[Handler, ...] = ()
    metrics: tuple[Metric, ...] = ()
    readiness_determiners: tuple[ReadinessDeterminer, ...] = ()
    router: Router = Field(default_factory=Router)
    telemetry: Optional[Telemetry] = None

    @field_validator("address")
    @classmethod
    def _address(cls, v: str) -> str:
        split_address(v)
        return v

    @property
    def host(self) -> Optional[str]:
        """Bind host, ``None`` for all interfaces."""
        return split_address(self.address)[0] or None

    @property
    def port(self) -> int:
        return split_address(self.address)[1]


class WebserverSettings(BaseSettings):
    """Server settings read from the environment.

    Unset values leave the corresponding configuration untouched when applied
    with ``with_settings``.
    """

    model_config = SettingsConfigDict(env_prefix="WEBSERVER_", env_file=".env", extra="ignore")

    NAME: Optional[str] = None
    ADDRESS: Optional[str] = None

    READ_TIMEOUT: Optional[float] = None
    REQUEST_TIMEOUT: Optional[float] = None
    SHUTDOWN_IN_FLIGHT_TIMEOUT: Optional[float] = None
    SHUTDOWN_TASK_TIMEOUT: Optional[float] = None
    WRITE_TIMEOUT: Optional[float] = None

    LOG_CONSOLE_LEVEL: Optional[LogLevel] = None
    LOG_REQUEST_LEVEL: Optional[LogLevel] = None
    LOG_FILEPATH: Optional[str] = None

    ENABLE_METRICS: Optional[bool] = None
    ENABLE_TELEMETRY: Optional[bool] = None
