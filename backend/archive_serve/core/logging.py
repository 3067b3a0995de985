"""Logging setup for archive-serve.

Records carry structured context through ``extra`` keys prefixed with
``ctx_``. The JSON formatter nests them under ``"ctx"``; the plain formatter
appends them as ``key=value`` pairs.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Any

import orjson

from archive_serve.core.errors import ArchiveError

_DEFAULT_LEVEL = os.environ.get("ARCS_LOG_LEVEL", "INFO")
_CTX_PREFIX = "ctx_"
_QUIET_LOGGERS = ("watchdog", "uvicorn.access")


def _context(record: logging.LogRecord) -> dict[str, Any]:
    return {
        key[len(_CTX_PREFIX) :]: value
        for key, value in record.__dict__.items()
        if key.startswith(_CTX_PREFIX) and value is not None
    }


class JsonFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        ctx = _context(record)
        if ctx:
            payload["ctx"] = ctx
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return orjson.dumps(payload, default=str).decode("utf-8")


class PlainFormatter(logging.Formatter):
    def __init__(self) -> None:
        super().__init__("%(asctime)s %(levelname)s %(name)s: %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        ctx = _context(record)
        if not ctx:
            return line
        return line + " " + " ".join(f"{key}={value}" for key, value in ctx.items())


def error_context(exc: ArchiveError) -> dict[str, Any]:
    """``extra`` mapping describing a failed archive lookup."""
    return {
        "ctx_error": exc.kind,
        "ctx_container": exc.path,
        "ctx_entry": exc.name,
    }


def configure_logging(level: str | int = _DEFAULT_LEVEL, use_json: bool = True) -> None:
    """Send every record to stderr so ``arcs cat`` keeps stdout for entry bytes."""
    logging.captureWarnings(True)
    root = logging.getLogger()
    root.setLevel(level.upper() if isinstance(level, str) else level)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JsonFormatter() if use_json else PlainFormatter())
    root.handlers = [handler]
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str = "archive_serve") -> logging.Logger:
    """Return a named logger, configuring the root logger on first use."""
    if not logging.getLogger().handlers:
        configure_logging()
    return logging.getLogger(name)


__all__ = ["JsonFormatter", "PlainFormatter", "error_context", "configure_logging", "get_logger"]
