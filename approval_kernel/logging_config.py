"""
approval_kernel.logging_config -- JSON-lines logging with bound context.

Every record emitted under the ``approval_kernel`` logger tree renders as
one JSON object: timestamp, level, logger name, message, the fields bound
through ``LogContext`` and whatever the caller passed as ``extra=``.
Kernel exceptions contribute their ``code`` and structured attributes as
``exc_*`` keys, so a failed decision can be found by step id in the logs
without parsing the message.
"""

__all__ = [
    "CONTEXT_FIELDS",
    "StructuredFormatter",
    "LogContext",
    "get_logger",
    "configure_logging",
    "reset_logging",
]

import contextlib
import json
import logging
import sys
import threading
from collections.abc import Iterator
from contextvars import ContextVar
from datetime import datetime, timezone
from enum import Enum
from typing import Any

CONTEXT_FIELDS = (
    "correlation_id",
    "workflow_id",
    "step_id",
    "actor_email",
    "trace_id",
)

_context_vars: dict[str, ContextVar[str | None]] = {
    name: ContextVar(f"approval_log_{name}", default=None) for name in CONTEXT_FIELDS
}


def _context_var(name: str) -> ContextVar[str | None]:
    try:
        return _context_vars[name]
    except KeyError:
        raise TypeError(f"Unknown log context field: {name}") from None


class LogContext:
    """
    Request-scoped fields merged into every log record.

    Backed by context variables, so values are local to the current thread
    or task.  ``None`` values are ignored by ``set`` and ``bind``.
    """

    @staticmethod
    def set(**fields: Any) -> None:
        for name, value in fields.items():
            if value is not None:
                _context_var(name).set(str(value))

    @staticmethod
    def get_all() -> dict[str, str]:
        current = ((name, var.get()) for name, var in _context_vars.items())
        return {name: value for name, value in current if value is not None}

    @staticmethod
    def clear() -> None:
        for var in _context_vars.values():
            var.set(None)

    @staticmethod
    @contextlib.contextmanager
    def bind(**fields: Any) -> Iterator[None]:
        """Set fields for the duration of a ``with`` block, then restore them."""
        tokens = [
            (_context_var(name), _context_var(name).set(str(value)))
            for name, value in fields.items()
            if value is not None
        ]
        try:
            yield
        finally:
            for var, token in reversed(tokens):
                var.reset(token)


# Attributes every LogRecord carries; anything else came from ``extra=``
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "taskName"}


def _to_json(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=str)
    return str(value)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    for key, value in vars(exc).items():
        if not key.startswith("_") and key != "code":
            fields[f"exc_{key}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """Renders a record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **LogContext.get_all(),
        }
        for key, value in vars(record).items():
            if key not in _RECORD_ATTRS:
                entry.setdefault(key, value)

        if record.exc_info and record.exc_info[1] is not None:
            entry.update(_exception_fields(record.exc_info[1]))
            entry["traceback"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=_to_json)


_ROOT_LOGGER = "approval_kernel"
_state_lock = threading.Lock()
_installed: logging.Handler | None = None


def get_logger(name: str) -> logging.Logger:
    """Logger ``approval_kernel.<name>``."""
    return logging.getLogger(f"{_ROOT_LOGGER}.{name}")


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> logging.Logger:
    """
    Attach one JSON handler to the ``approval_kernel`` logger.

    Only the first call has an effect; later calls return the already
    configured logger unchanged.
    """
    global _installed
    root = logging.getLogger(_ROOT_LOGGER)
    with _state_lock:
        if _installed is not None:
            return root
        _installed = handler or logging.StreamHandler(stream or sys.stderr)
        _installed.setFormatter(StructuredFormatter())
        root.addHandler(_installed)
        root.setLevel(level)
        root.propagate = False
    return root


def reset_logging() -> None:
    """Detach all handlers and restore logger defaults.  Test helper."""
    global _installed
    root = logging.getLogger(_ROOT_LOGGER)
    with _state_lock:
        root.handlers.clear()
        root.setLevel(logging.WARNING)
        root.propagate = True
        _installed = None
