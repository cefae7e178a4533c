"""
Logging utilities for coursepack.

Provides structured logging with correlation context so that every line
emitted during a pack or migrate run can be traced back to its course and
run id.
"""

import json
import logging
import sys
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Optional


CONTEXT_FIELDS = ("course_id", "run_id", "operation", "chunk_id")


class CorrelationFilter(logging.Filter):
    """Copies the active CorrelationContext onto every record it sees."""

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in CorrelationContext.get_current().items():
            if getattr(record, key, None) is None:
                setattr(record, key, value)
        return True


class StructuredFormatter(logging.Formatter):
    """
    Formatter that outputs JSON-structured log lines.

    Each log line includes:
    - Standard log fields (timestamp, level, message, logger)
    - Correlation fields if present (course_id, run_id, operation, chunk_id)
    """

    def __init__(self, include_timestamp: bool = True):
        super().__init__()
        self.include_timestamp = include_timestamp

    def format(self, record: logging.LogRecord) -> str:
        """Format the log record as JSON."""
        log_entry = {
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if self.include_timestamp:
            log_entry["timestamp"] = datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat()

        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_entry[field] = value

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


class HumanReadableFormatter(logging.Formatter):
    """
    Formatter that outputs human-readable log lines with correlation context.

    Format: TIMESTAMP - LOGGER - LEVEL - MESSAGE [course_id=X run_id=Y]
    """

    def __init__(self, include_timestamp: bool = True):
        if include_timestamp:
            fmt = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        else:
            fmt = "%(name)s - %(levelname)s - %(message)s"
        super().__init__(fmt)

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)

        context_parts = []
        for field in ("course_id", "run_id"):
            value = getattr(record, field, None)
            if value is not None:
                context_parts.append(f"{field}={value}")

        if context_parts:
            return f"{base} [{' '.join(context_parts)}]"
        return base


def configure_logging(
    level: int = logging.INFO,
    structured: bool = False,
    include_timestamp: bool = True,
) -> None:
    """
    Configure the ``coursepack`` package logger.

    Only the package logger is touched; callers embedding coursepack in a
    larger application keep control of the root logger.

    Args:
        level: Logging level (default: INFO)
        structured: If True, output JSON-structured logs; if False, human-readable
        include_timestamp: Whether to include timestamp in log messages

    Example:
        >>> from coursepack.core.logging import configure_logging
        >>> configure_logging(level=logging.DEBUG, structured=True)
    """
    package_logger = logging.getLogger("coursepack")
    package_logger.setLevel(level)

    if not package_logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(level)
        handler.addFilter(CorrelationFilter())

        if structured:
            formatter = StructuredFormatter(include_timestamp=include_timestamp)
        else:
            formatter = HumanReadableFormatter(include_timestamp=include_timestamp)

        handler.setFormatter(formatter)
        package_logger.addHandler(handler)


class CorrelationContext:
    """
    Context manager for adding correlation fields to log records.

    Example:
        >>> with CorrelationContext(course_id="chess", run_id="abc"):
        ...     logger.info("Packing")  # Will include course_id and run_id
    """

    _local = threading.local()

    def __init__(
        self,
        course_id: Optional[str] = None,
        run_id: Optional[str] = None,
        operation: Optional[str] = None,
        **extra: Any,
    ):
        self.context = {
            "course_id": course_id,
            "run_id": run_id,
            "operation": operation,
            **extra,
        }
        self.context = {k: v for k, v in self.context.items() if v is not None}
        self._previous: Optional["CorrelationContext"] = None

    def __enter__(self) -> "CorrelationContext":
        self._previous = getattr(CorrelationContext._local, "current", None)
        CorrelationContext._local.current = self
        return self

    def __exit__(self, *args) -> None:
        CorrelationContext._local.current = self._previous

    @classmethod
    def get_current(cls) -> Dict[str, Any]:
        """Get the current correlation context."""
        current = getattr(cls._local, "current", None)
        if current is None:
            return {}
        return current.context.copy()
