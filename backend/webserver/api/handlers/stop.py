"""Remote stop handler."""

import signal

from aiohttp import web

from webserver.api.handlers.handler import Handler, ok_response, text_response
from webserver.api.middleware import LOGGER_KEY
from webserver.core.exceptions import SignalDeliveryError
from webserver.core.logging import logger as default_logger
from webserver.core.signals import deliver_signal


async def _stop(request: web.Request) -> web.Response:
    logger = request.app.get(LOGGER_KEY, default_logger)
    hard = request.query.get("hard") == "true"
    sig = signal.SIGKILL if hard else signal.SIGINT

    logger.info(f"Remote stop requested (hard={hard}), sending {sig.name}")
    try:
        deliver_signal(sig)
    except SignalDeliveryError as e:
        logger.error(f"Remote stop failed: {e}")
        return text_response(e.message, status=500)

    return ok_response()


def stop() -> Handler:
    """Stop the server remotely through the same path as an OS signal.

    ``?hard=true`` sends SIGKILL instead of SIGINT.
    """
    return Handler(method="GET", path="/stop", handler=_stop)
