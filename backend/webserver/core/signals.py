"""Termination signals understood by the server."""

import os
import signal

from webserver.core.exceptions import SignalDeliveryError

# Catchable termination signals; SIGKILL can't be handled.
HANDLED_SIGNALS: tuple[signal.Signals, ...] = (signal.SIGINT, signal.SIGTERM)


def deliver_signal(sig: signal.Signals) -> None:
    """Send ``sig`` to the current process.

    Raises:
        SignalDeliveryError: If the signal could not be delivered.
    """
    try:
        os.kill(os.getpid(), sig)
    except (OSError, ValueError) as e:
        raise SignalDeliveryError(f"failed to deliver signal {getattr(sig, 'name', sig)}: {e}") from e
