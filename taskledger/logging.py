"""
taskledger Structured Logging

Every record carries the aggregate it concerns (``aggregate_type`` /
``aggregate_id``) plus request and project ids, either passed through
``extra=log_extra(...)`` or inherited from an enclosing ``log_context``.
Tracker tokens and URL credentials never reach the output.
"""

import json
import logging
import os
import re
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from typing import IO, Any, Dict, FrozenSet, Iterator, Optional

STANDARD_FIELDS = ("request_id", "project_id", "aggregate_type", "aggregate_id")
MISSING = "-"
REDACTED = "[REDACTED]"

_SENSITIVE_KEY = re.compile(r"token|secret|passw(or)?d|api_?key|authorization|bearer|credential", re.IGNORECASE)
_URL_USERINFO = re.compile(r"(?P<scheme>[a-z][a-z0-9+.-]*://)[^/@\s]+@", re.IGNORECASE)
_BEARER_VALUE = re.compile(r"\b(Bearer|token)\s+[A-Za-z0-9_.\-]+", re.IGNORECASE)

# Noisy third-party loggers capped at WARNING by setup_logging.
_QUIET_LOGGERS = ("httpx", "httpcore")


def _record_builtin_attrs() -> FrozenSet[str]:
    blank = logging.LogRecord("", logging.INFO, "", 0, "", (), None)
    return frozenset(blank.__dict__) | {"asctime", "message"}


_BUILTIN_ATTRS = _record_builtin_attrs()

_LOG_CONTEXT: ContextVar[Dict[str, Any]] = ContextVar("taskledger_log_context", default={})


def redact(key: str, value: Any) -> Any:
    """
    Make one extra field safe to emit.

    Values under secret-looking keys are replaced outright; strings lose URL
    userinfo and inline bearer tokens; containers are cleaned recursively.
    """
    if key and _SENSITIVE_KEY.search(key):
        return REDACTED
    if isinstance(value, str):
        value = _URL_USERINFO.sub(r"\g<scheme>", value)
        return _BEARER_VALUE.sub(lambda m: f"{m.group(1)} {REDACTED}", value)
    if isinstance(value, dict):
        return {k: redact(str(k), v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [redact(key, v) for v in value]
    return value


def get_log_context() -> Dict[str, Any]:
    return dict(_LOG_CONTEXT.get())


@contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    """Attach fields to every record logged inside the block (nested blocks merge)."""
    merged = get_log_context()
    merged.update((k, v) for k, v in fields.items() if v is not None)
    token = _LOG_CONTEXT.set(merged)
    try:
        yield
    finally:
        _LOG_CONTEXT.reset(token)


class ContextFilter(logging.Filter):
    """Fill standard fields from the log context, falling back to ``-``."""

    def __init__(self, defaults: Optional[Dict[str, Any]] = None) -> None:
        super().__init__()
        self.defaults = dict.fromkeys(STANDARD_FIELDS, MISSING)
        self.defaults.update({k: v for k, v in (defaults or {}).items() if v is not None})

    def filter(self, record: logging.LogRecord) -> bool:
        fields = {**self.defaults, **get_log_context()}
        for key, value in fields.items():
            if key not in _BUILTIN_ATTRS and not hasattr(record, key):
                setattr(record, key, value)
        return True


def _extra_fields(record: logging.LogRecord) -> Dict[str, Any]:
    return {k: v for k, v in record.__dict__.items() if k not in _BUILTIN_ATTRS and not k.startswith("_")}


class JsonFormatter(logging.Formatter):
    """One JSON object per line: level, logger, message, standard fields and every extra."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update({field: MISSING for field in STANDARD_FIELDS})
        for key, value in _extra_fields(record).items():
            payload[key] = redact(key, value)
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable line with the aggregate in front and extras as ``key=value``."""

    def __init__(self) -> None:
        super().__init__("%(asctime)s %(levelname)-7s %(name)s [%(aggregate_type)s:%(aggregate_id)s] %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        extras = {
            k: redact(k, v)
            for k, v in _extra_fields(record).items()
            if k not in ("aggregate_type", "aggregate_id") and v != MISSING
        }
        if extras:
            line += " " + " ".join(f"{k}={v}" for k, v in sorted(extras.items()))
        return line


def setup_logging(
    level: Optional[str] = None,
    json_output: bool = False,
    stream: Optional[IO[str]] = None,
) -> logging.Logger:
    """
    Install a single context-aware handler on the root logger.

    Args:
        level: Log level name (default: TASKLEDGER_LOG_LEVEL or INFO)
        json_output: Emit JSON lines instead of text
        stream: Output stream (default: stderr)

    Returns:
        The ``taskledger`` logger
    """
    level_name = (level or os.environ.get("TASKLEDGER_LOG_LEVEL") or "INFO").upper()

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.addFilter(ContextFilter())
    handler.setFormatter(JsonFormatter() if json_output else TextFormatter())

    root = logging.getLogger()
    root.handlers = [handler]
    resolved = logging.getLevelName(level_name)
    root.setLevel(resolved if isinstance(resolved, int) else logging.INFO)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return logging.getLogger("taskledger")


def get_logger(name: str = "taskledger") -> logging.Logger:
    return logging.getLogger(name)


def log_extra(
    *,
    request_id: Optional[str] = None,
    project_id: Optional[str] = None,
    aggregate_type: Optional[str] = None,
    aggregate_id: Optional[str] = None,
    **extra: Any,
) -> Dict[str, Any]:
    """
    Build the ``extra=`` dict for a log call, dropping ``None`` values so the
    context filter can still supply them.

    Example:
        logger.info("Fact appended", extra=log_extra(aggregate_type="task", aggregate_id=task_id, version=3))
    """
    fields = {
        "request_id": request_id,
        "project_id": project_id,
        "aggregate_type": aggregate_type,
        "aggregate_id": aggregate_id,
        **extra,
    }
    return {k: v for k, v in fields.items() if v is not None}
