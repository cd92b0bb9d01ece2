"""Structured key=value logging for the Ask-Brain RAG engine.

Telemetry events carry a ``type`` field (``rag_turn_complete``,
``rag_retrieval_degraded``, ...) so log queries can filter on a single key.
"""

import logging
import sys
from typing import Any

# Fields rendered first, in this order; extra fields follow sorted by name
_LEADING_FIELDS = ("timestamp", "level", "logger", "type", "message")


def _render_value(value: Any) -> str:
    text = str(value)
    if not text or any(ch in text for ch in ' ="'):
        return '"' + text.replace('"', '\\"') + '"'
    return text


class StructuredFormatter(logging.Formatter):
    """Renders a record as ``key=value`` pairs on one line."""

    def format(self, record: logging.LogRecord) -> str:
        fields: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "type": getattr(record, "event_type", None),
            "message": record.getMessage(),
        }
        extra_data = getattr(record, "extra_data", None) or {}

        parts = [
            f"{key}={_render_value(fields[key])}"
            for key in _LEADING_FIELDS
            if fields[key] is not None
        ]
        parts.extend(
            f"{key}={_render_value(value)}"
            for key, value in sorted(extra_data.items())
            if value is not None
        )

        line = " ".join(parts)
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def _resolve_level() -> int:
    try:
        from askbrain.core.config import get_settings

        settings = get_settings()
    except Exception:
        # Settings can't load without Supabase env vars
        return logging.INFO

    if settings.LOG_LEVEL:
        level = logging.getLevelName(settings.LOG_LEVEL.upper())
        return level if isinstance(level, int) else logging.INFO
    return logging.DEBUG if settings.RAG_ENV == "dev" else logging.INFO


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger writing structured lines to stdout.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(StructuredFormatter())
        logger.addHandler(handler)
        logger.setLevel(_resolve_level())

    return logger


def log_with_context(logger: logging.Logger, level: int, msg: str, **kwargs: Any) -> None:
    """
    Log a telemetry event.

    Args:
        logger: Logger instance
        level: Log level (logging.INFO, etc.)
        msg: Log message
        **kwargs: Event fields; ``event_type`` becomes the ``type`` key
    """
    event_type = kwargs.pop("event_type", None)
    extra: dict[str, Any] = {"extra_data": kwargs}
    if event_type is not None:
        extra["event_type"] = event_type

    logger.log(level, msg, extra=extra)
