"""
Logging utilities for the vector search engine.

Provides structured logging with record context (collection, key, owner)
so index and search calls can be traced through the logs.
"""

import json
import logging
import sys
from datetime import datetime, timezone


CONTEXT_FIELDS = ("collection", "key", "owner_id", "model_id", "item_index")

PACKAGE_LOGGER = "vector_search"


class StructuredFormatter(logging.Formatter):
    """
    Formatter that outputs JSON-structured log lines.

    Each log line includes:
    - Standard log fields (timestamp, level, message, logger)
    - Context fields if present (collection, key, owner_id, ...)
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

        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                log_entry[name] = value

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


class HumanReadableFormatter(logging.Formatter):
    """
    Formatter that outputs human-readable log lines with record context.

    Format: TIMESTAMP - LOGGER - LEVEL - MESSAGE [collection=X key=Y]
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
        for name in ("collection", "key", "owner_id"):
            value = getattr(record, name, None)
            if value is not None:
                context_parts.append(f"{name}={value}")

        if context_parts:
            return f"{base} [{' '.join(context_parts)}]"
        return base


def configure_logging(
    level: int = logging.INFO,
    structured: bool = False,
    include_timestamp: bool = True,
    stream=None,
) -> logging.Logger:
    """
    Configure the package logger.

    Only one handler is attached; calling this again adjusts the level and
    formatter of the existing handler.

    Args:
        level: Logging level (default: INFO)
        structured: If True, output JSON lines; otherwise human-readable
        include_timestamp: Whether to include timestamps
        stream: Output stream (default: stderr, keeping stdout for CLI results)

    Returns:
        The configured package logger
    """
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    package_logger.setLevel(level)

    if structured:
        formatter = StructuredFormatter(include_timestamp=include_timestamp)
    else:
        formatter = HumanReadableFormatter(include_timestamp=include_timestamp)

    if package_logger.handlers:
        for handler in package_logger.handlers:
            handler.setLevel(level)
            handler.setFormatter(formatter)
    else:
        handler = logging.StreamHandler(stream or sys.stderr)
        handler.setLevel(level)
        handler.setFormatter(formatter)
        package_logger.addHandler(handler)

    return package_logger
