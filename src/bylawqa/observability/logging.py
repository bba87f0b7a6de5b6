"""Structured logging for the search pipeline.

A search request gets one correlation ID (from X-Request-ID, or minted by
the CLI) that follows it through the batcher, the fallback tiers and the
verification lookups. JSON output carries it as a field; text output
prefixes it so local runs stay greppable.
"""

import json
import logging
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone

correlation_id: ContextVar[str] = ContextVar("correlation_id", default="")

# Fields the pipeline passes via extra={...}; anything else is dropped from JSON
SEARCH_FIELDS = ("query", "tier", "bylaw_number", "result_count", "duration_ms")

NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "sqlalchemy.engine", "alembic")

TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s [%(correlation_id)s]: %(message)s"


def get_correlation_id() -> str:
    """Return the current correlation ID, or empty string if not set."""
    return correlation_id.get()


def new_correlation_id(value: str | None = None) -> str:
    """Set (or mint) the correlation ID for the current context and return it."""
    cid = value or uuid.uuid4().hex
    correlation_id.set(cid)
    return cid


class CorrelationIdFilter(logging.Filter):
    """Copy the context's correlation ID onto each record as record.correlation_id."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = correlation_id.get() or "-"
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per line."""

    def __init__(self, fields: tuple[str, ...] = SEARCH_FIELDS):
        super().__init__()
        self.fields = fields

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        cid = correlation_id.get()
        if cid:
            entry["correlation_id"] = cid

        if record.exc_info and record.exc_info[1]:
            entry["exception"] = self.formatException(record.exc_info)

        for key in self.fields:
            val = getattr(record, key, None)
            if val is not None:
                entry[key] = val

        return json.dumps(entry, default=str)


def setup_logging(json_format: bool = True, level: str = "INFO") -> None:
    """Configure the root logger for the API process.

    Args:
        json_format: True for JSON lines (deployed), False for text (local dev).
        level: Log level name; unknown names fall back to INFO.
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()

    handler = logging.StreamHandler()
    handler.addFilter(CorrelationIdFilter())
    handler.setFormatter(JSONFormatter() if json_format else logging.Formatter(TEXT_FORMAT))
    root.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
