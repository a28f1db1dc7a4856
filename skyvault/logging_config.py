"""
Central logging configuration for skyvault.

Log records pick up two kinds of context without being passed around:
the request id set by RequestIdMiddleware, and fields bound for the
duration of an operation with `bind_log_context` (snapshot, workspace,
focus uri). Production output is one JSON object per line; development
output is a single readable line with the bound fields appended.

Usage:
    from skyvault.logging_config import bind_log_context, get_logger
    logger = get_logger(__name__)

    with bind_log_context(snapshot=snapshot_id):
        logger.info("Exported snapshot", extra={"kinds": len(tables)})
"""

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional

request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
_bound_fields: ContextVar[Dict[str, Any]] = ContextVar("log_fields", default={})

# Attributes every LogRecord has; anything else came from extra= or the context
_STANDARD_ATTRS = frozenset(logging.LogRecord(
    "", logging.INFO, "", 0, "", None, None,
).__dict__) | {"message", "asctime", "request_id"}

_NOISY_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "aiosqlite", "httpx", "httpcore")


def get_request_id() -> Optional[str]:
    """Get the current request ID from context, if set."""
    return request_id_var.get()


@contextmanager
def bind_log_context(**fields: Any) -> Iterator[None]:
    """Attach fields to every record logged inside the block. None values are skipped."""
    merged = {**_bound_fields.get(), **{k: v for k, v in fields.items() if v is not None}}
    token = _bound_fields.set(merged)
    try:
        yield
    finally:
        _bound_fields.reset(token)


def _record_fields(record: logging.LogRecord) -> Dict[str, Any]:
    return {
        key: value for key, value in record.__dict__.items()
        if key not in _STANDARD_ATTRS and value is not None
    }


class ContextFilter(logging.Filter):
    """Copy the request id and bound fields onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = get_request_id() or "-"  # type: ignore[attr-defined]
        for key, value in _bound_fields.get().items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per record, for log aggregators."""

    def format(self, record: logging.LogRecord) -> str:
        log_obj: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        req_id = getattr(record, "request_id", None)
        if req_id and req_id != "-":
            log_obj["request_id"] = req_id
        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        for key, value in _record_fields(record).items():
            try:
                json.dumps(value)
                log_obj[key] = value
            except (TypeError, ValueError):
                log_obj[key] = str(value)
        return json.dumps(log_obj)


class DevFormatter(logging.Formatter):
    """Readable line with structured fields appended as key=value."""

    def __init__(self) -> None:
        super().__init__(
            "%(asctime)s %(levelname)-5s [%(name)s] req=%(request_id)s %(message)s",
            datefmt="%H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        if not hasattr(record, "request_id"):
            record.request_id = "-"  # type: ignore[attr-defined]
        line = super().format(record)
        fields = _record_fields(record)
        if fields:
            line += " " + " ".join(f"{k}={v}" for k, v in sorted(fields.items()))
        return line


def configure_logging(
    *,
    log_level: str = "INFO",
    environment: str = "development",
    debug: bool = False,
) -> None:
    """
    Configure application-wide logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        environment: 'development' or 'production'
        debug: If True, use DEBUG level regardless of log_level
    """
    level = logging.DEBUG if debug else getattr(logging, log_level.upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)

    # Remove existing handlers to avoid duplicates on reload
    for h in root.handlers[:]:
        root.removeHandler(h)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.addFilter(ContextFilter())
    handler.setFormatter(JsonFormatter() if environment == "production" else DevFormatter())
    root.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Logger for a module; records carry the request id and any bound fields."""
    return logging.getLogger(name)
