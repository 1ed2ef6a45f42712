"""
Logging infrastructure for the promotions platform.

- request_context: binds a correlation id around a calculation or task
- RequestIDFilter: correlation id injection for every log record
- StructuredLogAdapter: structured context logging

Usage:
    from apps.common.logging import get_logger

    logger = get_logger(__name__, component="promotion_index")
    logger.info("Index row updated", barcode="8801234567890")
"""

from __future__ import annotations

import contextlib
import logging
import threading
import uuid
from collections.abc import Generator
from typing import Any

# Thread-local storage for request context
_request_context = threading.local()


# =============================================================================
# REQUEST CONTEXT FUNCTIONS
# =============================================================================


def set_request_id(request_id: str) -> None:
    """Set the current request ID in thread-local storage."""
    _request_context.request_id = request_id


def get_request_id() -> str | None:
    """Get the current request ID from thread-local storage."""
    return getattr(_request_context, "request_id", None)


def clear_request_id() -> None:
    """Clear the request ID from thread-local storage."""
    _request_context.request_id = None


@contextlib.contextmanager
def request_context(request_id: str | None = None) -> Generator[str, None, None]:
    """
    Bind a correlation id for the duration of a block.

    An id already bound by an outer block is kept unless one is passed
    explicitly; the outer id is restored on exit.
    """
    previous = get_request_id()
    current = request_id or previous or str(uuid.uuid4())
    set_request_id(current)
    try:
        yield current
    finally:
        if previous is None:
            clear_request_id()
        else:
            set_request_id(previous)


# =============================================================================
# REQUEST ID FILTER
# =============================================================================


class RequestIDFilter(logging.Filter):
    """
    Add the correlation id to log records.

    Calculations and index repairs triggered by the same caller share an id,
    so a rebuild can be traced back to the lookup that found a stale entry.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            record.request_id = get_request_id() or "-"  # type: ignore[attr-defined]
        return True


# =============================================================================
# STRUCTURED LOGGING ADAPTER
# =============================================================================


class StructuredLogAdapter(logging.LoggerAdapter):
    """
    Log adapter that adds structured context to all log messages.

    Usage:
        logger = StructuredLogAdapter(
            logging.getLogger(__name__),
            {"component": "promotion_index"}
        )
        logger.info("Index rebuilt", barcodes=120)
    """

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        """Process log message and add structured context"""
        extra = dict(kwargs.get("extra") or {})
        extra.update(self.extra)

        # Keyword arguments become extra fields
        for key, value in list(kwargs.items()):
            if key not in ("exc_info", "stack_info", "stacklevel", "extra"):
                extra[key] = value
                del kwargs[key]

        kwargs["extra"] = extra
        return msg, kwargs


def get_logger(name: str, **context: Any) -> StructuredLogAdapter:
    """
    Get a structured logger with context.

    Args:
        name: Logger name (usually __name__)
        **context: Additional context to include in all log messages
    """
    return StructuredLogAdapter(logging.getLogger(name), context)
