"""Structured logging setup for Sluice."""

from __future__ import annotations

from datetime import datetime, timezone
import json
import logging
import sys
from typing import Any, TextIO


# Attributes every LogRecord carries; anything else came in through `extra`.
_RESERVED = set(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "taskName"}


class _JsonFormatter(logging.Formatter):
    """Emit one JSON object per log record."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key, value in record.__dict__.items():
            if key in _RESERVED or key.startswith("_"):
                continue
            payload[key] = value

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, sort_keys=True, default=str)


class _StderrHandler(logging.StreamHandler):
    """Stream handler bound to whatever `sys.stderr` is when a record is written."""

    @property  # type: ignore[override]
    def stream(self) -> TextIO:
        return sys.stderr

    @stream.setter
    def stream(self, value: TextIO) -> None:
        pass


def configure_logging(level: str | None = None) -> logging.Logger:
    """Configure and return the root Sluice logger.

    Logs go to stderr so that stdout stays free for pipeline output.
    """

    logger = logging.getLogger("sluice")
    if not logger.handlers:
        handler = _StderrHandler()
        handler.setFormatter(_JsonFormatter())
        logger.addHandler(handler)
        logger.setLevel("INFO")
        logger.propagate = False
    if level is not None:
        logger.setLevel(level.upper())
    return logger


def get_logger(name: str = "sluice") -> logging.Logger:
    """Return a logger under the configured Sluice namespace."""

    configure_logging()
    return logging.getLogger(name)


def log_event(
    logger: logging.Logger,
    event: str,
    *,
    level: int = logging.INFO,
    **fields: Any,
) -> None:
    """Emit a structured event log line."""

    logger.log(level, event, extra={"event": event, **fields})
