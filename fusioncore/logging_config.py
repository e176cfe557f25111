"""Structured logging configuration for resolution passes."""

import json
import logging
import sys
import time
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

# Per-task fields; accounts resolve in concurrent asyncio tasks
_context: ContextVar[Dict[str, Any]] = ContextVar("fusion_log_context", default={})

# Attributes every LogRecord carries; anything else arrived through ``extra``
_RECORD_FIELDS = {
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "thread", "threadName", "getMessage", "exc_info", "exc_text",
    "stack_info", "taskName",
}

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class StructuredFormatter(logging.Formatter):
    """One JSON object per record, with pass context and redaction."""

    # Personal data that must never reach log sinks verbatim
    SENSITIVE_FIELDS = {
        "password", "token", "secret", "authorization",
        "api_key", "access_token", "private_key",
    }

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "function": record.funcName,
            "line": record.lineno,
            "message": record.getMessage(),
        }
        entry.update(_context.get())

        for key, value in record.__dict__.items():
            if key not in _RECORD_FIELDS:
                entry[key] = "[REDACTED]" if self.is_sensitive(key) else value

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)

    @classmethod
    def is_sensitive(cls, field_name: str) -> bool:
        lowered = field_name.lower()
        return any(marker in lowered for marker in cls.SENSITIVE_FIELDS)


def setup_logging(format: str = "text", level: str = "INFO", log_file: Optional[str] = None) -> None:
    """Route every fusioncore logger through the root logger.

    Args:
        format: "json" for StructuredFormatter, anything else for plain text
        level: Logging level name
        log_file: Also write to this file when given
    """
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    formatter = StructuredFormatter() if format == "json" else logging.Formatter(TEXT_FORMAT)
    handlers = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)

    # fuzzywuzzy warns on import when python-Levenshtein is absent
    logging.getLogger("py.warnings").setLevel(logging.ERROR)


def log_performance(logger_name: str, operation: str, duration_ms: float, **fields) -> None:
    """Log how long a resolution step took, with its counters as extra fields."""
    fields["duration_ms"] = duration_ms
    logging.getLogger(logger_name).info(f"{operation} completed in {duration_ms:.1f}ms", extra=fields)


@contextmanager
def log_context(**fields):
    """Add ``fields`` to every structured record emitted inside the block.

    Example:
        with log_context(account_id="a1"):
            logger.info("Scoring")  # carries account_id
    """
    token = _context.set({**_context.get(), **fields})
    try:
        yield
    finally:
        _context.reset(token)


class Timer:
    """Wall-clock duration of a block, in milliseconds."""

    def __init__(self):
        self.duration_ms: Optional[float] = None
        self._start: Optional[float] = None

    def __enter__(self):
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration_ms = (time.perf_counter() - self._start) * 1000
