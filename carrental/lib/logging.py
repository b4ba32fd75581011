"""
Structured logging with JSON formatter and request context.

Every record carries the request's correlation id and, once the bearer token
has been decoded, the acting user's id and role. Notification deliveries run
on worker threads; the dispatcher copies the request context into them, so
their records carry the same fields plus the worker thread name.
"""
import logging
import json
import sys
import threading
from datetime import datetime, timezone
from typing import Optional, Tuple
from contextvars import ContextVar

from carrental.lib.settings import settings


# Per-request context
correlation_id_var: ContextVar[Optional[str]] = ContextVar('correlation_id', default=None)
actor_var: ContextVar[Optional[Tuple[str, str]]] = ContextVar('actor', default=None)


class JSONFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.
    Outputs one JSON object per record: timestamp, level, logger, message,
    request context, exception text and any ``extra_fields``.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        correlation_id = correlation_id_var.get()
        if correlation_id:
            log_data["correlation_id"] = correlation_id

        actor = actor_var.get()
        if actor:
            log_data["actor_id"], log_data["actor_role"] = actor

        if record.threadName != threading.main_thread().name:
            log_data["thread"] = record.threadName

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "extra_fields"):
            log_data.update(record.extra_fields)

        return json.dumps(log_data, default=str)


def setup_logging(level: Optional[str] = None, json_format: Optional[bool] = None) -> None:
    """
    Configure application logging.

    Args:
        level: Log level name; defaults to ``settings.log_level`` (DEBUG when ``settings.debug``)
        json_format: JSON lines when True, plain text otherwise; defaults to ``settings.log_json``
    """
    if level is None:
        level = "DEBUG" if settings.debug else settings.log_level
    if json_format is None:
        json_format = settings.log_json
    log_level = getattr(logging, level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - [%(threadName)s] %(message)s'
        ))

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    # Third-party noise
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.debug else logging.WARNING
    )


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def set_correlation_id(correlation_id: Optional[str]) -> None:
    """Set the correlation ID for the current context (start of each request)."""
    correlation_id_var.set(correlation_id)


def get_correlation_id() -> Optional[str]:
    return correlation_id_var.get()


def set_actor(user_id: Optional[str], role: Optional[str] = None) -> None:
    """Attach the acting principal to records logged in the current context."""
    actor_var.set((user_id, role) if user_id else None)


def log_with_context(logger: logging.Logger, level: str, message: str, **extra_fields) -> None:
    """
    Log a message with additional context fields.

    Args:
        logger: Logger instance
        level: Log level (debug, info, warning, error, critical)
        message: Log message
        **extra_fields: Additional fields to include in the log
    """
    log_func = getattr(logger, level.lower())
    log_func(message, extra={"extra_fields": extra_fields})


setup_logging()
