"""Logging configuration for the static file server.

Every record is rendered either as one sorted JSON object per line or as a
plain text line. Only whitelisted ``extra`` fields reach the JSON output.
"""

import json
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from webserver.telemetry.tracing import SpanLoggerAdapter

LOGGER_NAME = "webserver"
TEXT_FORMAT = "%(asctime)s %(levelname)s [%(request_id)s] %(component)s :: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
MAX_BYTES = 10 * 1024 * 1024
BACKUP_COUNT = 5

REQUEST_FIELDS = (
    "client",
    "listener",
    "method",
    "path",
    "status_code",
    "outcome",
    "error_kind",
    "duration_ms",
    "timeout_ms",
    "bytes_out",
    "error_type",
    "streamed",
)
STARTUP_FIELDS = (
    "host",
    "port",
    "directory",
    "metrics_enabled",
    "log_destination",
    "log_level",
)
SHUTDOWN_FIELDS = ("grace_seconds", "remaining_workers", "signal", "state")
EXTRA_KEYS = frozenset(("event",) + REQUEST_FIELDS + STARTUP_FIELDS + SHUTDOWN_FIELDS)

# Records logged without SpanLoggerAdapter still render.
RECORD_DEFAULTS = {"request_id": "-", "component": "unknown"}


class JsonFormatter(logging.Formatter):
    """One JSON object per record, keys sorted."""

    def format(self, record: logging.LogRecord) -> str:
        fields = {
            key: getattr(record, key, fallback)
            for key, fallback in RECORD_DEFAULTS.items()
        }
        fields.update(
            (key, value) for key, value in vars(record).items() if key in EXTRA_KEYS
        )
        fields["timestamp"] = self.formatTime(record, self.datefmt)
        fields["level"] = record.levelname
        fields["message"] = record.getMessage()
        if record.exc_info:
            fields["exception"] = self.formatException(record.exc_info)
        return json.dumps(fields, sort_keys=True, default=str)


def text_formatter() -> logging.Formatter:
    return logging.Formatter(TEXT_FORMAT, DATE_FORMAT, defaults=RECORD_DEFAULTS)


def open_log_handler(destination: Optional[str]) -> logging.Handler:
    """Return a stdout stream or a size-rotated file under ``destination``."""
    if not destination or destination.lower() == "stdout":
        return logging.StreamHandler(sys.stdout)
    target_path = Path(destination)
    target_path.parent.mkdir(parents=True, exist_ok=True)
    return RotatingFileHandler(
        target_path, maxBytes=MAX_BYTES, backupCount=BACKUP_COUNT
    )


def configure_logging(
    level: str = "INFO", destination: Optional[str] = None, use_json: bool = True
) -> SpanLoggerAdapter:
    """Point the ``webserver`` logger at a single fresh handler."""
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(numeric_level)
    logger.propagate = False
    for stale in list(logger.handlers):
        logger.removeHandler(stale)
        stale.close()

    handler = open_log_handler(destination)
    handler.setLevel(numeric_level)
    formatter = JsonFormatter(datefmt=DATE_FORMAT) if use_json else text_formatter()
    handler.setFormatter(formatter)
    logger.addHandler(handler)

    adapter = SpanLoggerAdapter(logger, {})
    adapter.info(
        "Logging configured",
        extra={
            "event": "logging_configured",
            "log_destination": destination or "stdout",
            "log_level": logging.getLevelName(numeric_level),
        },
    )
    return adapter
