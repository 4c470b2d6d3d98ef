"""Logging configuration for the clusterscan operator."""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pythonjsonlogger.json import JsonFormatter

from clusterscan.core.config import Settings, get_settings


class CustomJsonFormatter(JsonFormatter):
    """Custom JSON formatter for structured logging."""

    def __init__(self, *args, app_name: str = "", app_version: str = "", **kwargs):
        super().__init__(*args, **kwargs)
        self.app_name = app_name
        self.app_version = app_version

    def add_fields(
        self,
        log_record: Dict[str, Any],
        record: logging.LogRecord,
        message_dict: Dict[str, Any],
    ) -> None:
        """Add custom fields to log record."""
        super().add_fields(log_record, record, message_dict)

        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()

        # Add application context
        log_record["app_name"] = self.app_name
        log_record["app_version"] = self.app_version

        log_record["level"] = record.levelname
        log_record["logger"] = record.name

        # Reconcile context, when the caller supplied it
        for key in ("scan_config", "kind", "node"):
            if hasattr(record, key):
                log_record[key] = getattr(record, key)


def setup_logging(settings: Optional[Settings] = None) -> None:
    """Configure logging for the operator."""
    settings = settings or get_settings()

    root_logger = logging.getLogger()
    root_logger.setLevel(settings.log_level.value)

    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(settings.log_level.value)

    if settings.log_json:
        formatter = CustomJsonFormatter(
            "%(timestamp)s %(level)s %(name)s %(message)s",
            app_name=settings.app_name,
            app_version=settings.app_version,
        )
    else:
        formatter = logging.Formatter(settings.log_format)

    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # Set log levels for third-party libraries
    logging.getLogger("kubernetes").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("kopf.objects").setLevel(logging.INFO)

    logger = get_logger(__name__)
    logger.info(
        "Logging configured",
        extra={
            "log_level": settings.log_level.value,
            "log_json": settings.log_json,
        },
    )


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the given name."""
    return logging.getLogger(name)


class LoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that merges bound context into every record."""

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        extra = dict(self.extra or {})
        extra.update(kwargs.get("extra") or {})
        kwargs["extra"] = extra
        return msg, kwargs


def get_logger_with_context(name: str, **context) -> LoggerAdapter:
    """Get a logger with additional context."""
    return LoggerAdapter(get_logger(name), context)


def log_event(logger: logging.Logger, level: str, event: str, **kwargs) -> None:
    """Log a structured event."""
    extra = {"event": event, **kwargs}

    message = f"{event}: {json.dumps(kwargs, default=str)}" if kwargs else event

    log = getattr(logger, level, None)
    if log is None:
        raise ValueError(f"Unknown log level: {level}")
    log(message, extra=extra)
