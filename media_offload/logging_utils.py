"""
Structured JSON logging utilities.

Log records are emitted as single-line JSON objects so that job progress can be
followed by any log shipper. Modules log through ``logging.getLogger(__name__)``;
this module only provides formatting and context helpers.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

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
    - Additional context fields from extra dict (session_id, kind, ...)
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


def configure_structured_logging(
    level: int = logging.INFO,
    logger_name: str | None = None,
    json_output: bool = True,
) -> logging.Logger:
    """
    Configure logging for the orchestrator.

    Args:
        level: Logging level (default: INFO)
        logger_name: Specific logger to configure (default: root logger)
        json_output: Emit JSON lines; plain ``LEVEL  message`` text otherwise

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(logger_name)

    # Remove existing handlers to avoid duplicates
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    if json_output:
        handler.setFormatter(StructuredJsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(levelname)s  %(message)s"))

    logger.addHandler(handler)
    logger.setLevel(level)

    # aiohttp access/client noise is not useful at INFO
    logging.getLogger("aiohttp").setLevel(max(level, logging.WARNING))

    return logger


class SessionLoggerAdapter(logging.LoggerAdapter):
    """
    Logger adapter that stamps session context on every record.

    Example:
        >>> log = SessionLoggerAdapter(logger, {"session_id": sid, "kind": "migration"})
        >>> log.info("Tick finished", extra={"processed": 8})
    """

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        """Add session context to log record."""
        extra = kwargs.get("extra", {})
        extra.update(self.extra)
        kwargs["extra"] = extra
        return msg, kwargs
