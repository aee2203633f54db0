"""Structured JSON logging for the query service and its command-line shell.

Fields passed through ``extra=`` (for example the provider request path and
params) are emitted under ``context`` after redaction, so an API key carried
in request params never reaches the log stream.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from typing import IO, Any

from .redaction import sanitize_for_logging, sanitize_text

_RECORD_ATTRS = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", (), None).__dict__
) | {"message", "asctime", "taskName"}


def _record_context(record: logging.LogRecord) -> dict[str, Any]:
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _RECORD_ATTRS and not key.startswith("_")
    }


class JsonConsoleFormatter(logging.Formatter):
    """One JSON object per line: ts, level, logger, message, context, exception."""

    def format(self, record: logging.LogRecord) -> str:
        event: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": sanitize_text(record.getMessage()),
        }
        context = _record_context(record)
        if context:
            event["context"] = sanitize_for_logging(context)
        if record.exc_info:
            event["exception"] = sanitize_text(self.formatException(record.exc_info))
        return json.dumps(event, default=str)


def setup_logger(
    name: str = "weather_activity_service",
    level: int | str = logging.INFO,
    stream: IO[str] | None = None,
) -> logging.Logger:
    """Return the named logger with a single JSON handler on ``stream`` (stderr)."""
    logger = logging.getLogger(name)
    logger.setLevel(level)
    logger.propagate = False
    if logger.handlers:
        return logger

    handler = logging.StreamHandler(stream)
    handler.setFormatter(JsonConsoleFormatter())
    logger.addHandler(handler)
    return logger
