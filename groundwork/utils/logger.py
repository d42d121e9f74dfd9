"""
Application logging.

Callers log an event name plus structured fields:

    logger.info("render.claimed", extra={"job_id": job.id, "worker_id": worker_id})

Only fields listed in EXTRA_FIELDS are emitted. The request (or render job)
being handled is stamped onto every record from a context variable, so a
request's log lines and the jobs it enqueues can be joined on correlation_id.
"""
import contextvars
import json
import logging
import os
import sys
from datetime import datetime, timezone

from groundwork.config import get_settings

LOGGER_NAME = "groundwork"

EXTRA_FIELDS = (
    "method", "path", "status", "duration_ms", "client_ip",
    "error", "error_type", "service", "failures",
    "entry_id", "version", "snapshot_id", "resume_id", "job_id",
    "worker_id", "attempt", "reason", "accepted", "rejected",
    "requeued", "deleted", "storage_key", "persona_id",
    "entry_count", "content_hash", "fit_score", "tone", "wait_seconds",
    "max_age_hours", "bullet_id", "excluded", "removed",
)

correlation_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("correlation_id", default="")
user_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("user_id", default="")


class ContextFilter(logging.Filter):
    """Copy the current correlation id and user onto the record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "correlation_id", None):
            record.correlation_id = correlation_id_var.get()
        if not getattr(record, "user_id", None):
            record.user_id = user_id_var.get()
        return True


def _fields(record: logging.LogRecord) -> dict:
    return {key: getattr(record, key) for key in EXTRA_FIELDS if hasattr(record, key)}


class StructuredFormatter(logging.Formatter):
    """One JSON object per line, for log drains."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "event": record.getMessage(),
        }
        for key in ("correlation_id", "user_id"):
            if getattr(record, key, None):
                entry[key] = getattr(record, key)
        entry.update(_fields(record))
        if record.levelno >= logging.WARNING:
            entry["source"] = f"{record.module}:{record.lineno}"
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = {"type": type(record.exc_info[1]).__name__, "message": str(record.exc_info[1])}
        return json.dumps(entry, default=str)


class SimpleFormatter(logging.Formatter):
    """event k=v ... for a terminal"""

    def __init__(self):
        super().__init__("%(asctime)s %(levelname)-7s %(message)s", datefmt="%H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        fields = _fields(record)
        if getattr(record, "correlation_id", None):
            fields = {"cid": record.correlation_id[:8], **fields}
        if fields:
            line += " " + " ".join(f"{k}={v}" for k, v in fields.items())
        return line


def setup_logger(name: str = LOGGER_NAME, level: str = None) -> logging.Logger:
    """
    JSON lines when LOG_FORMAT=json, key=value lines otherwise. Idempotent.
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    level = level or get_settings().log_level
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    logger.propagate = False

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(ContextFilter())
    handler.setFormatter(StructuredFormatter() if os.getenv("LOG_FORMAT") == "json" else SimpleFormatter())
    logger.addHandler(handler)
    return logger


logger = setup_logger()
