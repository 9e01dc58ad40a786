"""Published server metrics.

A ``Metric`` pairs a name with a ``Var``. Vars are read lazily: the registry
calls ``value()`` each time ``/debug/vars`` is served, so ``FuncVar`` providers
always report current state.
"""

import gc
import resource
import sys
import threading
from dataclasses import dataclass
from typing import Any, Callable, Protocol, runtime_checkable

from webserver.core.exceptions import ConfigValidationError


@runtime_checkable
class Var(Protocol):
    """A readable metric value."""

    def value(self) -> Any: ...


class IntVar:
    """Thread-safe integer counter."""

    def __init__(self, initial: int = 0):
        self._value = initial
        self._lock = threading.Lock()

    def add(self, delta: int) -> None:
        with self._lock:
            self._value += delta

    def set(self, value: int) -> None:
        with self._lock:
            self._value = value

    def value(self) -> int:
        with self._lock:
            return self._value


class FloatVar:
    """Thread-safe float gauge."""

    def __init__(self, initial: float = 0.0):
        self._value = initial
        self._lock = threading.Lock()

    def add(self, delta: float) -> None:
        with self._lock:
            self._value += delta

    def set(self, value: float) -> None:
        with self._lock:
            self._value = value

    def value(self) -> float:
        with self._lock:
            return self._value


class StringVar:
    """Thread-safe string value."""

    def __init__(self, initial: str = ""):
        self._value = initial
        self._lock = threading.Lock()

    def set(self, value: str) -> None:
        with self._lock:
            self._value = value

    def value(self) -> str:
        with self._lock:
            return self._value


class FuncVar:
    """Value computed by calling ``func`` on every read."""

    def __init__(self, func: Callable[[], Any]):
        self._func = func

    def value(self) -> Any:
        return self._func()


@dataclass(frozen=True)
class Metric:
    """A named metric to publish when metrics are enabled."""

    name: str
    value: Var


def new_metric(name: str, value: Var) -> Metric:
    """Validated ``Metric`` factory.

    Raises:
        ConfigValidationError: If the name is empty or the value isn't a ``Var``.
    """
    if not name:
        raise ConfigValidationError("invalid metric: name is required")
    if not isinstance(value, Var):
        raise ConfigValidationError(f"invalid metric {name!r}: value must provide value()")
    return Metric(name=name, value=value)


# ---------------------------------------------------------------------------
# Built-in metrics
# ---------------------------------------------------------------------------


def command_line() -> FuncVar:
    """The process command line."""
    return FuncVar(lambda: list(sys.argv))


def memory_stats() -> FuncVar:
    """Resource usage and garbage-collector counters of the process."""

    def _stats() -> dict[str, Any]:
        usage = resource.getrusage(resource.RUSAGE_SELF)
        return {
            "max_rss": usage.ru_maxrss,
            "user_time": usage.ru_utime,
            "system_time": usage.ru_stime,
            "gc_counts": list(gc.get_count()),
            "gc_collections": [gen["collections"] for gen in gc.get_stats()],
        }

    return FuncVar(_stats)


def server_info(address: str, name: str, pid: int) -> FuncVar:
    """Static server identity."""
    return FuncVar(lambda: {"Address": address, "Name": name, "PID": pid})
