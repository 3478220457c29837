"""
Structured Logging for Dynabatch

This module configures structlog on top of the standard library and provides
a thread-local correlation context. Dispatch workers bind the batch id as the
correlation id so every line logged while a batch is in flight can be traced
back to it.
"""

import json
import logging
import sys
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime
from functools import wraps
from typing import Any, Dict, Optional

import structlog

from .config import get_config

# Thread-local storage for correlation context
_correlation_context = threading.local()

NO_CORRELATION = "-"


class CorrelationContext:
    """Manages correlation IDs across threads."""

    @staticmethod
    def get_correlation_id() -> str:
        """Get the current correlation ID, or a placeholder if none is bound."""
        return getattr(_correlation_context, "correlation_id", NO_CORRELATION)

    @staticmethod
    def set_correlation_id(correlation_id: str):
        """Set the correlation ID for the current thread."""
        _correlation_context.correlation_id = correlation_id

    @staticmethod
    def clear_correlation_id():
        """Clear the correlation ID for the current thread."""
        if hasattr(_correlation_context, "correlation_id"):
            delattr(_correlation_context, "correlation_id")

    @staticmethod
    def get_trace_context() -> Dict[str, Any]:
        """Get full tracing context."""
        return {
            "correlation_id": CorrelationContext.get_correlation_id(),
            "thread_id": threading.get_ident(),
        }


@contextmanager
def correlation_scope(correlation_id: str):
    """Bind a correlation ID for the duration of a block, restoring the previous one."""
    old_correlation_id = getattr(_correlation_context, "correlation_id", None)
    CorrelationContext.set_correlation_id(correlation_id)
    try:
        yield correlation_id
    finally:
        if old_correlation_id:
            CorrelationContext.set_correlation_id(old_correlation_id)
        else:
            CorrelationContext.clear_correlation_id()


def with_correlation_id(correlation_id: Optional[str] = None):
    """Decorator to run function with specific correlation ID."""

    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            # Generate new correlation ID if none provided
            with correlation_scope(correlation_id or str(uuid.uuid4())[:8]):
                return func(*args, **kwargs)

        return wrapper

    return decorator


def add_correlation_id(logger, method_name, event_dict):
    """structlog processor adding the thread's correlation ID."""
    event_dict.setdefault("correlation_id", CorrelationContext.get_correlation_id())
    return event_dict


class ContextFormatter(logging.Formatter):
    """Formatter that attaches correlation context to every record."""

    def format(self, record: logging.LogRecord) -> str:
        trace_context = CorrelationContext.get_trace_context()
        record.correlation_id = trace_context["correlation_id"]
        record.thread_id = trace_context["thread_id"]

        return super().format(record)


class JSONFormatter(ContextFormatter):
    """JSON formatter for structured logging with correlation IDs."""

    def format(self, record: logging.LogRecord) -> str:
        super().format(record)

        log_entry = {
            "timestamp": datetime.utcnow().isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "correlation_id": getattr(record, "correlation_id", NO_CORRELATION),
            "thread_id": getattr(record, "thread_id", 0),
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


class ConsoleFormatter(ContextFormatter):
    """Console formatter with level colors and correlation IDs."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
        "RESET": "\033[0m",
        "GRAY": "\033[90m",
    }

    def format(self, record: logging.LogRecord) -> str:
        super().format(record)

        level_color = self.COLORS.get(record.levelname, "")
        reset_color = self.COLORS["RESET"]
        gray_color = self.COLORS["GRAY"]

        timestamp = datetime.utcnow().strftime("%H:%M:%S.%f")[:-3]
        correlation_id = getattr(record, "correlation_id", NO_CORRELATION)

        message = record.getMessage()
        if record.exc_info:
            message += f"\n{self.formatException(record.exc_info)}"

        return (
            f"{gray_color}{timestamp}{reset_color} "
            f"{gray_color}[{correlation_id}]{reset_color} "
            f"{level_color}{record.levelname:8}{reset_color} "
            f"{record.name:28} "
            f"{message}"
        )


def setup_logging():
    """Setup structured logging for Dynabatch."""
    config = get_config()

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            add_correlation_id,
            structlog.processors.TimeStamper(fmt="ISO"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            (
                structlog.processors.JSONRenderer()
                if config.logging.log_format == "json"
                else structlog.dev.ConsoleRenderer(colors=False)
            ),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, config.logging.log_level))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    # stderr keeps CLI --json output on stdout parseable
    console_handler = logging.StreamHandler(sys.stderr)

    if config.logging.log_format == "json":
        console_handler.setFormatter(JSONFormatter())
    else:
        console_handler.setFormatter(ConsoleFormatter())

    root_logger.addHandler(console_handler)

    logging.getLogger("dynabatch").debug(
        f"Logging initialized - log_level={config.logging.log_level}, "
        f"log_format={config.logging.log_format}"
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


# Initialize logging on module import
setup_logging()
