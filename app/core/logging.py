"""
Logging — Root logger setup and request correlation.

Modules keep using logging.getLogger(__name__); this module only installs
the handler and format once at startup and injects the current request ID
into every record so log lines from one request can be grepped together.
"""

import logging
import sys
from contextvars import ContextVar

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s [%(request_id)s] %(message)s"

# Set by the request-id middleware in app.main for the duration of a request.
request_id_var: ContextVar[str] = ContextVar("request_id", default="-")


class RequestIdFilter(logging.Filter):
    """Attach the active request ID to each log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            record.request_id = request_id_var.get()
        return True


def configure_logging(level: str = "INFO") -> None:
    """
    Install a single stream handler on the root logger.

    Safe to call more than once (e.g. from the app lifespan and the
    migration CLI): an existing handler installed here is reused.
    """
    root = logging.getLogger()
    root.setLevel(level.upper())

    for handler in root.handlers:
        if getattr(handler, "_nifya_handler", False):
            handler.setLevel(level.upper())
            return

    handler = logging.StreamHandler(sys.stdout)
    handler._nifya_handler = True
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(RequestIdFilter())
    root.addHandler(handler)

    # Quiet chatty client libraries unless we are debugging.
    if level.upper() != "DEBUG":
        for noisy in ("httpx", "httpcore", "hpack", "urllib3"):
            logging.getLogger(noisy).setLevel(logging.WARNING)


def short_id(user_id: str | None) -> str:
    """Truncate an identifier for log output."""
    return (user_id or "")[:8]
