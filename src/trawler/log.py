"""Logging setup for the CLI and the queue worker.

Library modules only call ``logging.getLogger(__name__)``; handlers are
installed here, once, on the ``trawler`` logger.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone

from rich.console import Console
from rich.logging import RichHandler

_ROOT_LOGGER = "trawler"

# LogRecord attributes that are not user-supplied extras.
_RESERVED = frozenset(
    {
        "name", "msg", "args", "levelname", "levelno", "pathname", "filename",
        "module", "exc_info", "exc_text", "stack_info", "lineno", "funcName",
        "created", "msecs", "relativeCreated", "thread", "threadName",
        "processName", "process", "taskName", "message",
    }
)


class JSONFormatter(logging.Formatter):
    """One JSON object per line, including any ``extra={...}`` fields."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        for key, value in record.__dict__.items():
            if key not in _RESERVED and not key.startswith("_"):
                entry[key] = value
        return json.dumps(entry, default=str)


def setup_logging(level: str = "INFO", json_format: bool = False) -> logging.Logger:
    """Configure the ``trawler`` logger and return it.

    Calling this again replaces the handler installed by the previous call,
    so the CLI and tests can reconfigure freely.

    Args:
        level: Standard level name (DEBUG, INFO, WARNING, ...).
        json_format: Emit JSON lines on stderr instead of rich console output.
    """
    logger = logging.getLogger(_ROOT_LOGGER)
    logger.setLevel(level.upper())

    for handler in list(logger.handlers):
        if getattr(handler, "_trawler_handler", False):
            logger.removeHandler(handler)

    if json_format:
        handler: logging.Handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(JSONFormatter())
    else:
        handler = RichHandler(console=Console(stderr=True), show_path=False, rich_tracebacks=True)
        handler.setFormatter(logging.Formatter("%(message)s"))

    handler._trawler_handler = True  # type: ignore[attr-defined]
    logger.addHandler(handler)
    logger.propagate = False
    return logger
