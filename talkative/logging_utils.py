"""
Centralized logging utilities for talkative.

This module configures structlog once for the package and provides the
helpers used around request dispatch and background stream draining:
- Structured logging with contextual information
- Error classification for log fields
- Timing for dispatch operations and stream drains
"""

from __future__ import annotations

import functools
import logging
import time
from collections.abc import Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any, ParamSpec, TypeVar

import httpx
import structlog
from pydantic import ValidationError

from .exceptions import (
    BadRequestError,
    CallbackError,
    DecodingError,
    EncodingError,
    InvokeError,
    MessageError,
    StreamReadError,
    UrlError,
)

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(colors=True),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

# Type variables for generic decorators
P = ParamSpec("P")
T = TypeVar("T")
AsyncCallable = Callable[P, Awaitable[T]]

logger = structlog.get_logger(__name__)


def configure_logging(level: str | int = "INFO") -> None:
    """Set the stdlib level the structlog level filter reads."""
    if isinstance(level, str):
        resolved = logging.getLevelName(level.upper())
        if not isinstance(resolved, int):
            raise ValueError(f"Unknown logging level '{level}'")
        level = resolved
    logging.basicConfig(format="%(message)s")
    logging.getLogger("talkative").setLevel(level)


class ErrorClassifier:
    """Maps exceptions to the category reported in log records."""

    @staticmethod
    def classify_error(error: BaseException) -> str:
        """
        Classify an error for structured logging.

        Args:
            error: The exception to classify

        Returns:
            Error category name
        """
        if isinstance(error, BadRequestError):
            return "bad_request"
        if isinstance(error, InvokeError):
            return "invoke_error"
        if isinstance(error, DecodingError):
            return "decoding_error"
        if isinstance(error, StreamReadError):
            return "read_error"
        if isinstance(error, EncodingError):
            return "encoding_error"
        if isinstance(error, CallbackError | MessageError | UrlError):
            return "parameter_error"
        if isinstance(error, ValidationError):
            return "validation_error"
        if isinstance(error, TimeoutError | httpx.TimeoutException):
            return "timeout_error"
        if isinstance(error, ConnectionError | OSError | httpx.TransportError):
            return "connection_error"
        if isinstance(error, ValueError | TypeError):
            return "parameter_error"
        return "unknown_error"


def log_operation(
    operation: str,
) -> Callable[[AsyncCallable[P, T]], AsyncCallable[P, T]]:
    """
    Decorator for logging async operations with structured context.

    Args:
        operation: Description of the operation being performed

    Returns:
        Decorated function with logging
    """
    def decorator(func: AsyncCallable[P, T]) -> AsyncCallable[P, T]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            operation_logger = logger.bind(
                operation=operation,
                function=func.__name__,
            )

            operation_logger.debug("Operation started")
            start_time = time.perf_counter()

            try:
                result = await func(*args, **kwargs)
                duration = round((time.perf_counter() - start_time) * 1000, 2)
                operation_logger.debug(
                    "Operation completed successfully", duration_ms=duration
                )
                return result

            except Exception as e:
                duration = round((time.perf_counter() - start_time) * 1000, 2)
                operation_logger.error(
                    "Operation failed",
                    error_type=type(e).__name__,
                    error_category=ErrorClassifier.classify_error(e),
                    error_message=str(e),
                    duration_ms=duration,
                )
                raise

        return wrapper
    return decorator


@asynccontextmanager
async def operation_context(
    operation: str,
    *,
    context: dict[str, Any] | None = None,
):
    """
    Async context manager for operation logging.

    Args:
        operation: Description of the operation
        context: Additional context for logging

    Yields:
        Bound logger for the operation
    """
    operation_logger = logger.bind(
        operation=operation,
        **(context or {}),
    )

    operation_logger.debug("Operation started")
    start_time = time.perf_counter()

    try:
        yield operation_logger
        duration = round((time.perf_counter() - start_time) * 1000, 2)
        operation_logger.debug("Operation completed successfully", duration_ms=duration)

    except Exception as e:
        duration = round((time.perf_counter() - start_time) * 1000, 2)
        operation_logger.error(
            "Operation failed",
            error_type=type(e).__name__,
            error_category=ErrorClassifier.classify_error(e),
            error_message=str(e),
            duration_ms=duration,
        )
        raise
