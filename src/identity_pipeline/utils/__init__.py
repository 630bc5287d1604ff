"""Shared utility helpers for the identity pipeline."""

from .cancellation import (
    CancellationError,
    CancellationToken,
    CancellationTokenSource,
    await_with_cancellation,
    cancellable_sleep,
)
from .clock import Clock, SystemClock, system_clock
from .logging import LoggingOptions, configure_logging, get_logger, log_file_path
from .sanitize import (
    sanitize_headers,
    sanitize_log_message,
    sanitize_url,
)

__all__ = [
    "LoggingOptions",
    "configure_logging",
    "get_logger",
    "log_file_path",
    "CancellationToken",
    "CancellationTokenSource",
    "CancellationError",
    "await_with_cancellation",
    "cancellable_sleep",
    "Clock",
    "SystemClock",
    "system_clock",
    "sanitize_headers",
    "sanitize_log_message",
    "sanitize_url",
]
