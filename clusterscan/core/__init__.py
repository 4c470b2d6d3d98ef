"""Core utilities package."""

from .deadline import Deadline
from .logging import (LoggerAdapter, get_logger, get_logger_with_context,
                      log_event, setup_logging)

__all__ = [
    "Deadline",
    "setup_logging",
    "get_logger",
    "LoggerAdapter",
    "get_logger_with_context",
    "log_event",
]
