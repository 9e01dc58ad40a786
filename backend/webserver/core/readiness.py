"""Readiness determiners.

A determiner is a named flag for one precondition of overall readiness. The
``/readiness`` handler reads every determiner on each call; the server is
ready only when all of them are.
"""

import threading


class ReadinessDeterminer:
    """Named, thread-safe readiness flag.

    Starts not ready. Each instance owns its lock so independent determiners
    never contend.
    """

    def __init__(self, name: str):
        self._name = name
        self._ready = False
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        with self._lock:
            return self._name

    @name.setter
    def name(self, value: str) -> None:
        with self._lock:
            self._name = value

    @property
    def ready(self) -> bool:
        with self._lock:
            return self._ready

    @ready.setter
    def ready(self, value: bool) -> None:
        with self._lock:
            self._ready = bool(value)

    def __repr__(self) -> str:
        return f"ReadinessDeterminer(name={self.name!r}, ready={self.ready})"
