"""
Centralized logging configuration with structured logging support.
"""
import json
import logging
import logging.config
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Generator, Optional

from assessment_engine.core.config import Settings, settings

# Adaptive session being processed by the current thread/task. Set by the
# session controller around each operation so every log entry emitted while
# grading, estimating or selecting can be correlated to its session.
session_id_context: ContextVar[Optional[str]] = ContextVar("session_id", default=None)


class JSONFormatter(logging.Formatter):
    """
    JSON formatter for production logging.

    Produces structured log entries with consistent fields for log aggregation.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        timestamp = datetime.fromtimestamp(record.created, tz=timezone.utc)
        log_entry: Dict[str, Any] = {
            "timestamp": timestamp.isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        session_id = session_id_context.get()
        if session_id:
            log_entry["session_id"] = session_id

        # Extra structured fields passed via `extra=`
        for key in ("examinee_id", "item_id", "theta", "standard_error", "reason"):
            if hasattr(record, key):
                log_entry[key] = getattr(record, key)

        if record.levelno >= logging.ERROR:
            log_entry["source"] = f"{record.pathname}:{record.lineno}"

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


@contextmanager
def session_log_context(session_id: str) -> Generator[None, None, None]:
    """Bind ``session_id`` to all log records emitted inside the block."""
    token = session_id_context.set(session_id)
    try:
        yield
    finally:
        session_id_context.reset(token)


def setup_logging(config: Optional[Settings] = None) -> None:
    """
    Configure package-wide logging.

    Configures:
    - Log level from LOG_LEVEL
    - JSON formatting for production (structured for log aggregators)
    - Human-readable format for development
    - Session id correlation via context variables
    """
    s = config or settings
    log_level = getattr(logging, s.LOG_LEVEL.upper(), logging.INFO)
    is_production = s.ENV == "production"

    logging_config: Dict[str, Any] = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
            "json": {
                "()": JSONFormatter,
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": log_level,
                "formatter": "json" if is_production else "default",
                "stream": sys.stdout,
            },
        },
        "root": {
            "level": log_level,
            "handlers": ["console"],
        },
        "loggers": {
            "assessment_engine": {
                "level": logging.DEBUG if s.DEBUG else log_level,
                "handlers": ["console"],
                "propagate": False,
            },
        },
    }

    logging.config.dictConfig(logging_config)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance with the given name.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured logger instance
    """
    return logging.getLogger(name)
