"""Structured logging for the API process and the device CLI."""

import contextvars
import logging
import sys
from typing import Any, TextIO

from pythonjsonlogger import jsonlogger

from safetrust.core.config import settings

# Set by RequestIDMiddleware for the lifetime of one HTTP request.
request_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar("request_id", default=None)

TEXT_FORMAT = "%(asctime)s %(levelname)-7s %(name)s [%(request_id)s] %(message)s"


class RequestContextFilter(logging.Filter):
    """Stamp every record with the current request id, if any."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "request_id", None):
            record.request_id = request_id_var.get() or "-"
        return True


class SafetrustJsonFormatter(jsonlogger.JsonFormatter):
    def add_fields(self, log_record: dict[str, Any], record: logging.LogRecord, message_dict: dict) -> None:
        super().add_fields(log_record, record, message_dict)

        log_record["timestamp"] = self.formatTime(record, self.datefmt)
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["event"] = record.getMessage()
        if record.name.startswith("safetrust.offline"):
            log_record["component"] = "offline"
        elif record.name.startswith("safetrust."):
            log_record["component"] = "trust"

        log_record.pop("message", None)
        log_record.pop("asctime", None)


def setup_logging(level: str | None = None, stream: TextIO | None = None) -> None:
    """
    Install a single root handler.

    The API logs JSON to stdout. The CLI passes stderr so command output on
    stdout stays machine readable.
    """
    root_logger = logging.getLogger()
    level_name = (level or settings.LOG_LEVEL).upper()
    root_logger.setLevel(getattr(logging, level_name, logging.INFO))
    root_logger.handlers.clear()

    handler = logging.StreamHandler(stream or sys.stdout)
    if settings.LOG_FORMAT == "text":
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))
    else:
        handler.setFormatter(
            SafetrustJsonFormatter("%(timestamp)s %(level)s %(logger)s", datefmt="%Y-%m-%dT%H:%M:%S")
        )
    handler.addFilter(RequestContextFilter())
    root_logger.addHandler(handler)

    for noisy in ("uvicorn.access", "httpx", "httpcore", "aiosqlite"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
