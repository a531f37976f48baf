"""
Structured JSON logging for the fiscal import engine.

Every record is one JSON object per line: ``ts``, ``level``, ``logger``,
``message``, the job-scoped context bound with ``LogContext.bind`` and any
``extra=`` fields.  Messages are event names (``chunk_processed``,
``import_job_failed``); the detail lives in the fields.  When a record
carries an exception, its type, message, ``code`` and public attributes
are copied in as ``exc_*`` fields.
"""

__all__ = [
    "StructuredFormatter",
    "LogContext",
    "get_logger",
    "configure_logging",
    "reset_logging",
]

import json
import logging
import sys
import threading
from contextvars import ContextVar, Token
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

# ---------------------------------------------------------------------------
# Context propagation
# ---------------------------------------------------------------------------

_CONTEXT: dict[str, ContextVar[str | None]] = {
    name: ContextVar(f"fiscal_log_{name}", default=None)
    for name in ("job_id", "chunk_number", "producer")
}


class LogContext:
    """Job-scoped fields added to every record logged inside ``bind()``.

    Backed by context variables, so worker threads and the view refresh
    helper thread never see each other's job.
    """

    FIELDS = tuple(_CONTEXT)

    @staticmethod
    def bind(**fields: Any) -> "_Binding":
        """Set fields for the duration of a ``with`` block.

        Values are stringified; None and unknown names are ignored.
        """
        return _Binding(fields)

    @staticmethod
    def get_all() -> dict[str, str]:
        return {name: var.get() for name, var in _CONTEXT.items() if var.get() is not None}

    @staticmethod
    def clear() -> None:
        for var in _CONTEXT.values():
            var.set(None)


class _Binding:
    def __init__(self, fields: dict[str, Any]):
        self._fields = {
            name: str(value)
            for name, value in fields.items()
            if name in _CONTEXT and value is not None
        }
        self._tokens: list[tuple[str, Token]] = []

    def __enter__(self) -> None:
        self._tokens = [(name, _CONTEXT[name].set(value)) for name, value in self._fields.items()]

    def __exit__(self, *exc: Any) -> None:
        for name, token in reversed(self._tokens):
            _CONTEXT[name].reset(token)
        self._tokens = []


# ---------------------------------------------------------------------------
# JSON Formatter
# ---------------------------------------------------------------------------

_RESERVED = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "taskName"}


def _json_default(value: Any) -> Any:
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


class StructuredFormatter(logging.Formatter):
    """Formats each log record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **LogContext.get_all(),
        }
        payload.update(
            (key, value) for key, value in vars(record).items()
            if key not in _RESERVED and key not in payload
        )

        if record.exc_info and record.exc_info[1] is not None:
            exc = record.exc_info[1]
            payload["exc_type"] = type(exc).__name__
            payload["exc_message"] = str(exc)
            code = getattr(exc, "code", None)
            if code is not None:
                payload["exc_code"] = code
            for key, value in vars(exc).items():
                if not key.startswith("_"):
                    payload[f"exc_{key}"] = value
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_json_default)


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------

_ROOT = "fiscal_kernel"
_configured = False
_lock = threading.Lock()


def get_logger(name: str) -> logging.Logger:
    """Logger under the ``fiscal_kernel`` hierarchy."""
    return logging.getLogger(f"{_ROOT}.{name}")


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """Attach one JSON handler to the ``fiscal_kernel`` logger.

    Only the first call has an effect until ``reset_logging()``.
    """
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    root = logging.getLogger(_ROOT)
    root.setLevel(level)
    root.propagate = False
    target = handler or logging.StreamHandler(stream or sys.stderr)
    target.setFormatter(StructuredFormatter())
    root.addHandler(target)


def reset_logging() -> None:
    """Drop the handler so the next configure_logging() applies (tests)."""
    global _configured
    with _lock:
        _configured = False
    root = logging.getLogger(_ROOT)
    root.handlers.clear()
    root.setLevel(logging.WARNING)
