"""Structured logging keyed by transcode job.

While a job is polled its ID is bound as the correlation ID, so every worker
call, backoff and callback for that job can be followed in the log stream.
Outside a job the active trace ID is used, and records with neither carry no
correlation field at all.
"""

import json
import logging
import sys
import traceback
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Iterator, Optional, TextIO

from gpu_transcoder.core.tracing import current_trace_ids

correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

# Loggers whose per-request lines duplicate our own worker call logs
_NOISY_LOGGERS = ("httpx", "httpcore")

# Attributes every LogRecord has; anything else came in through ``extra``
_RECORD_ATTRIBUTES = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None))
) | {"message", "asctime", "correlation_id"}


def get_correlation_id() -> Optional[str]:
    """Bound correlation ID, else the active trace ID, else None."""
    bound = correlation_id_var.get()
    if bound is not None:
        return bound
    trace_id, _ = current_trace_ids()
    return trace_id


@contextmanager
def correlation_scope(correlation_id: str) -> Iterator[str]:
    """Bind a correlation ID (typically a job ID) for the duration of a block."""
    token = correlation_id_var.set(correlation_id)
    try:
        yield correlation_id
    finally:
        correlation_id_var.reset(token)


class StructuredFormatter(logging.Formatter):
    """One JSON object per record.

    Fields: timestamp, level, logger, message, and when available
    correlation_id, trace_id, span_id, exception and extra context.
    """

    def __init__(self, service: Optional[str] = None, include_stack_trace: bool = True):
        super().__init__()
        self.service = service
        self.include_stack_trace = include_stack_trace

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc)
            .isoformat()
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if self.service:
            entry["service"] = self.service

        correlation_id = getattr(record, "correlation_id", None) or get_correlation_id()
        if correlation_id:
            entry["correlation_id"] = correlation_id
        trace_id, span_id = current_trace_ids()
        if trace_id:
            entry["trace_id"] = trace_id
            entry["span_id"] = span_id

        if record.exc_info:
            entry["exception"] = self._exception(record.exc_info)

        context = {
            key: value
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRIBUTES
        }
        if context:
            entry["extra"] = context

        return json.dumps(entry, default=str)

    def _exception(self, exc_info) -> dict[str, Any]:
        exc_type, exc, tb = exc_info
        block = {
            "type": exc_type.__name__ if exc_type else None,
            "message": str(exc) if exc else None,
        }
        if self.include_stack_trace and tb is not None:
            block["stack_trace"] = traceback.format_exception(exc_type, exc, tb)
        return block


class CorrelationIdFilter(logging.Filter):
    """Stamps the current correlation ID onto records for plain-text formats."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id() or "-"
        return True


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    include_stack_trace: bool = True,
    service: Optional[str] = None,
    stream: Optional[TextIO] = None,
) -> None:
    """Replace root handlers with a single structured console handler.

    Args:
        level: Log level name
        json_format: Emit JSON lines instead of plain text
        include_stack_trace: Include tracebacks in JSON exception blocks
        service: Service name added to JSON records
        stream: Output stream, stdout by default
    """
    numeric_level = getattr(logging, level.upper())
    root = logging.getLogger()
    root.setLevel(numeric_level)
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setLevel(numeric_level)
    handler.addFilter(CorrelationIdFilter())
    if json_format:
        handler.setFormatter(StructuredFormatter(service, include_stack_trace))
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s [%(correlation_id)s] %(message)s"
        ))
    root.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def _log(
    logger: logging.Logger,
    level: int,
    message: str,
    exception: Optional[BaseException] = None,
    **extra: Any,
) -> None:
    extra["correlation_id"] = get_correlation_id()
    logger.log(level, message, exc_info=exception, extra=extra)


def log_error(
    logger: logging.Logger,
    message: str,
    exception: Optional[BaseException] = None,
    **extra: Any,
) -> None:
    """Log an error with the correlation ID and an optional exception.

    Args:
        logger: Logger instance
        message: Error message
        exception: Exception whose traceback is attached
        **extra: Additional context fields
    """
    _log(logger, logging.ERROR, message, exception, **extra)


def log_warning(logger: logging.Logger, message: str, **extra: Any) -> None:
    _log(logger, logging.WARNING, message, **extra)


def log_info(logger: logging.Logger, message: str, **extra: Any) -> None:
    _log(logger, logging.INFO, message, **extra)
