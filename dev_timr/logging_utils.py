"""
Logging setup for dev-timr.

Human-readable logs on stderr by default, or single-line JSON for
log collectors. Every handler installed here passes records through a
redaction filter so credentials never reach a log line.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

from .sanitization import redact_dict, redact_text

_STANDARD_ATTRS = {
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "stack_info", "exc_info", "exc_text", "thread", "threadName",
    "taskName", "message",
}


class StructuredJsonFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Outputs logs as single-line JSON objects with consistent fields:
    - timestamp: ISO 8601 format in UTC
    - level: Log level (INFO, WARNING, ERROR, etc.)
    - logger: Logger name
    - message: Log message
    - Additional context fields from extra dict
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_obj: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _STANDARD_ATTRS and not key.startswith("_"):
                try:
                    json.dumps(value)
                    log_obj[key] = value
                except (TypeError, ValueError):
                    log_obj[key] = str(value)

        return json.dumps(log_obj, default=str)


class SecretRedactingFilter(logging.Filter):
    """Masks tokens in the message, its args and any extra fields."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = redact_text(str(record.msg))
        if record.args:
            if isinstance(record.args, dict):
                record.args = redact_dict(record.args)
            else:
                record.args = tuple(
                    redact_text(a) if isinstance(a, str) else a for a in record.args
                )
        for key, value in list(record.__dict__.items()):
            if key in _STANDARD_ATTRS or key.startswith("_"):
                continue
            if isinstance(value, str):
                setattr(record, key, redact_text(value))
            elif isinstance(value, dict):
                setattr(record, key, redact_dict(value))
        return True


def configure_logging(
    level: int = logging.WARNING,
    json_output: bool | None = None,
    logger_name: str = "dev_timr",
) -> logging.Logger:
    """
    Configure logging for the dev_timr package.

    Args:
        level: Logging level (default: WARNING so the wrapped command's
            output stays readable)
        json_output: Emit JSON lines. Defaults to ``DEV_TIMR_LOG_JSON=1``.
        logger_name: Logger to configure

    Returns:
        Configured logger instance
    """
    if json_output is None:
        json_output = os.environ.get("DEV_TIMR_LOG_JSON", "") == "1"

    logger = logging.getLogger(logger_name)
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    if json_output:
        handler.setFormatter(StructuredJsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("[dev-timr] %(levelname)s %(name)s: %(message)s"))
    handler.addFilter(SecretRedactingFilter())

    logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False

    return logger
