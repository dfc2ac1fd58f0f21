"""
Structured logging configuration.

Every record leaving the root handler carries the lifecycle context it was
emitted in:

- ``request_id`` / ``user_id`` from ``flask.g`` while a request is active
- ``task_id`` / ``task_type`` / ``document_id`` / ``workflow_id`` bound by
  the services with ``log_context(...)``, so handler code running inside a
  scheduled task or a sweep is tagged without threading ids through calls

Output:
    development / testing  ReadableFormatter (coloured, context in brackets)
    production             JSONFormatter (one object per line)

Level: LOG_LEVEL config value (DEBUG in dev, INFO in prod by default).
"""

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone

from flask import g, has_request_context

# Ids the services bind with log_context(); request fields come from flask.g
CONTEXT_FIELDS = ("task_id", "task_type", "document_id", "workflow_id")
REQUEST_FIELDS = ("request_id", "user_id")

# Per-call fields passed with ``extra=`` that are worth keeping in JSON output
EVENT_FIELDS = ("method", "path", "status", "duration_ms", "alert_id", "event_type")

_SHORT_NAMES = {"task_id": "task", "task_type": "type", "document_id": "doc",
                "workflow_id": "wf", "request_id": "req", "user_id": "user"}

_bound: ContextVar[dict] = ContextVar("doclife_log_context", default={})


@contextmanager
def log_context(**fields):
    """Bind lifecycle ids to every record logged inside the block.

    Usage:
        with log_context(task_id=task.id, task_type=task.task_type):
            handler(now)
    """
    unknown = set(fields) - set(CONTEXT_FIELDS)
    if unknown:
        raise ValueError(f"Unknown log context fields: {sorted(unknown)}")
    token = _bound.set({**_bound.get(), **{k: v for k, v in fields.items() if v is not None}})
    try:
        yield
    finally:
        _bound.reset(token)


def current_log_context() -> dict:
    return dict(_bound.get())


class ContextFilter(logging.Filter):
    """Copy request and bound lifecycle ids onto the record.

    Values passed explicitly with ``extra=`` win over bound ones.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in _bound.get().items():
            if getattr(record, key, None) is None:
                setattr(record, key, value)

        if has_request_context():
            if getattr(record, "request_id", None) is None:
                record.request_id = g.get("request_id")
            user = g.get("current_user")
            if getattr(record, "user_id", None) is None and user is not None:
                record.user_id = user.id
        return True


def _context_of(record: logging.LogRecord) -> dict:
    return {
        key: getattr(record, key)
        for key in REQUEST_FIELDS + CONTEXT_FIELDS
        if getattr(record, key, None) is not None
    }


class JSONFormatter(logging.Formatter):
    """One JSON object per record for log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_context_of(record),
        }
        for key in EVENT_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                entry[key] = value
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Coloured single-line format for development."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, color: bool = True):
        super().__init__()
        self.color = color

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        level = f"{record.levelname:<8}"
        if self.color:
            level = f"{self.COLORS.get(record.levelname, '')}{level}{self.RESET}"

        context = " ".join(f"{_SHORT_NAMES[k]}={v}" for k, v in _context_of(record).items())
        line = f"{ts} {level} {record.name}"
        if context:
            line += f" [{context}]"
        line += f": {record.getMessage()}"

        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """Install a single root handler with ``ContextFilter`` for *app*."""
    is_testing = app.config.get("TESTING", False)
    is_prod = not app.config.get("DEBUG", False) and not is_testing

    level_name = (app.config.get("LOG_LEVEL") or ("INFO" if is_prod else "DEBUG")).upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if is_prod else ReadableFormatter(color=sys.stderr.isatty()))
    handler.addFilter(ContextFilter())
    handler.setLevel(level)

    # create_app runs once per test session and once per CLI call
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for noisy in ("werkzeug", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not is_testing:
        app.logger.info("Logging configured: level=%s format=%s",
                        level_name, "json" if is_prod else "readable")
