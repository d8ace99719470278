"""
Module: ledger_kernel.logging_config
Responsibility: One-line JSON log records for every ledger_kernel logger,
    carrying the ambient posting context (actor, entry, period, operation).
Architecture position: Kernel root.  Imported by every layer; imports
    nothing from the ledger packages.

Record shape:
    ts, level, logger, message, the bound context fields, every ``extra``
    key, and for exceptions exc_type / exc_message / exc_code plus one
    exc_<attr> per public attribute of the exception and the traceback.
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
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any, TextIO
from uuid import UUID

ROOT_LOGGER_NAME = "ledger_kernel"

CONTEXT_FIELDS = ("correlation_id", "actor_id", "entry_id", "period_id", "operation")


class LogContext:
    """
    Context fields stamped onto every record formatted in this thread or task.

    Each field is its own ContextVar, so worker threads and asyncio tasks see
    only what they bound themselves.  Names outside CONTEXT_FIELDS are
    ignored.
    """

    _vars: dict[str, ContextVar[str | None]] = {
        field: ContextVar(f"ledger_log_{field}", default=None) for field in CONTEXT_FIELDS
    }

    @classmethod
    def set(cls, **fields: str | None) -> None:
        """Overwrite the given fields for the rest of the current context."""
        for field, value in fields.items():
            var = cls._vars.get(field)
            if var is not None and value is not None:
                var.set(value)

    @classmethod
    def get_all(cls) -> dict[str, str]:
        values = {field: var.get() for field, var in cls._vars.items()}
        return {field: value for field, value in values.items() if value is not None}

    @classmethod
    def clear(cls) -> None:
        for var in cls._vars.values():
            var.set(None)

    @classmethod
    @contextmanager
    def bind(cls, **fields: str | None) -> Iterator[type["LogContext"]]:
        """Set fields for the duration of a with-block, then restore them."""
        tokens = []
        for field, value in fields.items():
            var = cls._vars.get(field)
            if var is not None and value is not None:
                tokens.append((var, var.set(value)))
        try:
            yield cls
        finally:
            for var, token in reversed(tokens):
                var.reset(token)


# Attributes every LogRecord has; anything else on a record came from extra=
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "taskName"}


def _json_default(value: Any) -> Any:
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


class StructuredFormatter(logging.Formatter):
    """Render a LogRecord as a single JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        fields: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **LogContext.get_all(),
        }
        for key, value in vars(record).items():
            if key not in _RECORD_ATTRS:
                fields.setdefault(key, value)

        if record.exc_info and record.exc_info[1] is not None:
            fields.update(self._exception_fields(record.exc_info[1]))
            fields["traceback"] = self.formatException(record.exc_info)

        return json.dumps(fields, default=_json_default)

    @staticmethod
    def _exception_fields(exc: BaseException) -> dict[str, Any]:
        fields: dict[str, Any] = {
            "exc_type": type(exc).__name__,
            "exc_message": str(exc),
        }
        code = getattr(exc, "code", None)
        if code is not None:
            fields["exc_code"] = code
        # LedgerKernelError subclasses carry their context as attributes
        fields.update(
            (f"exc_{name}", value)
            for name, value in vars(exc).items()
            if not name.startswith("_") and name not in ("args", "code")
        )
        return fields


def get_logger(name: str) -> logging.Logger:
    """Logger for ``ledger_kernel.<name>``."""
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


_state_lock = threading.Lock()
_installed_handler: logging.Handler | None = None


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: TextIO | None = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Attach one JSON handler to the ledger_kernel logger.

    Later calls are no-ops until reset_logging().  The hierarchy does not
    propagate, so host applications keep their own root formatting.
    """
    global _installed_handler
    with _state_lock:
        if _installed_handler is not None:
            return
        if handler is None:
            handler = logging.StreamHandler(stream or sys.stderr)
        _installed_handler = handler

    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(level)
    root.propagate = False
    root.addHandler(handler)


def reset_logging() -> None:
    """Drop the installed handler and return to the unconfigured state (tests)."""
    global _installed_handler
    with _state_lock:
        _installed_handler = None
    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.handlers.clear()
    root.setLevel(logging.WARNING)
