"""Telemetry powered by OpenTelemetry.

``Telemetry`` owns a tracer provider and a map of named tracers. A global
tracer named after the server is always available; ``get_tracer`` falls back
to it when a named tracer hasn't been created.

Usage:
    telemetry = stdout_provider("my-server")
    tracer = telemetry.new_tracer("db")

    with tracer.start_as_current_span("query"):
        ...
"""

import threading
from typing import Sequence

from opentelemetry import trace
from opentelemetry.baggage.propagation import W3CBaggagePropagator
from opentelemetry.propagate import set_global_textmap
from opentelemetry.propagators.composite import CompositePropagator
from opentelemetry.propagators.textmap import TextMapPropagator
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.sdk.trace.sampling import ALWAYS_ON
from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator

GLOBAL_TRACER_NAME = "global"


class Telemetry:
    """Tracer registry bound to one ``TracerProvider``."""

    def __init__(
        self,
        name: str,
        provider: trace.TracerProvider,
        propagators: Sequence[TextMapPropagator] = (),
        *,
        set_global: bool = True,
    ):
        """Initialize telemetry.

        Args:
            name: Instrumentation name of the global tracer.
            provider: Provider all tracers are created from.
            propagators: Propagators composed into the global text map.
            set_global: Install ``provider`` and the propagators process-wide.
        """
        self.name = name
        self.provider = provider
        self.propagator = CompositePropagator(list(propagators))
        self._tracers: dict[str, trace.Tracer] = {}
        self._lock = threading.Lock()

        self._tracers[GLOBAL_TRACER_NAME] = provider.get_tracer(name)

        if set_global:
            trace.set_tracer_provider(provider)
            set_global_textmap(self.propagator)

    def new_tracer(self, name: str) -> trace.Tracer:
        """Create a tracer from the current provider and register it."""
        tracer = self.provider.get_tracer(name)
        with self._lock:
            self._tracers[name] = tracer
        return tracer

    def get_tracer(self, name: str) -> trace.Tracer:
        """Return the named tracer, or the global tracer if it doesn't exist."""
        with self._lock:
            tracer = self._tracers.get(name)
            if tracer is None:
                tracer = self._tracers[GLOBAL_TRACER_NAME]
        return tracer

    def get_global_tracer(self) -> trace.Tracer:
        return self.get_tracer(GLOBAL_TRACER_NAME)

    def shutdown(self) -> None:
        """Flush and stop the provider, if it supports it."""
        shutdown = getattr(self.provider, "shutdown", None)
        if shutdown is not None:
            shutdown()


def stdout_provider(name: str, *, set_global: bool = True) -> Telemetry:
    """Telemetry exporting every span to stdout."""
    provider = TracerProvider(sampler=ALWAYS_ON)
    provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))

    return Telemetry(
        name,
        provider,
        (TraceContextTextMapPropagator(), W3CBaggagePropagator()),
        set_global=set_global,
    )


def new_telemetry(
    name: str,
    provider: trace.TracerProvider,
    *propagators: TextMapPropagator,
    set_global: bool = True,
) -> Telemetry:
    """Bring-your-own-provider telemetry factory."""
    return Telemetry(name, provider, propagators, set_global=set_global)
