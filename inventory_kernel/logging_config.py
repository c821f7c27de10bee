"""
inventory_kernel.logging_config -- JSON-lines logging with call-scoped context.

Responsibility:
    One JSON object per log line.  Every line carries the fields bound in
    LogContext (tenant, actor, run, document, correlation id) so a nightly
    sweep over many tenants can be filtered per tenant or per run.

Architecture position:
    Kernel -- imported by every layer.  Imports nothing from the project.

Invariants enforced:
    - Context lives in a single ContextVar, so threads and asyncio tasks
      never see each other's fields.
    - ``bind`` always restores the previous context, even on exceptions.
    - InventoryError attributes are flattened into ``exc_<name>`` keys.

Audit relevance:
    ``consistency_violation`` (CRITICAL) and ``immutability_violation_blocked``
    records include the offending lot or row and must never be filtered out.
"""

from __future__ import annotations

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Iterator, Mapping, TextIO
from uuid import UUID

__all__ = [
    "LogContext",
    "StructuredFormatter",
    "configure_logging",
    "get_logger",
    "reset_logging",
]

LOGGER_NAMESPACE = "inventory"

CONTEXT_FIELDS = ("correlation_id", "tenant_id", "actor_id", "run_id", "document_id")

_context: ContextVar[Mapping[str, str]] = ContextVar("inventory_log_context", default={})


def _merged(fields: Mapping[str, Any]) -> dict[str, str]:
    unknown = set(fields) - set(CONTEXT_FIELDS)
    if unknown:
        raise TypeError(f"Unknown log context fields: {sorted(unknown)}")
    current = dict(_context.get())
    current.update({k: str(v) for k, v in fields.items() if v is not None})
    return current


class LogContext:
    """
    Contract:
        Class-level API over one ContextVar.  ``None`` values are ignored
        by ``set`` and ``bind``, so callers can pass optional ids through.
    """

    @staticmethod
    def set(**fields: Any) -> None:
        _context.set(_merged(fields))

    @staticmethod
    def get_all() -> dict[str, str]:
        return dict(_context.get())

    @staticmethod
    def clear() -> None:
        _context.set({})

    @staticmethod
    @contextmanager
    def bind(**fields: Any) -> Iterator[None]:
        token = _context.set(_merged(fields))
        try:
            yield
        finally:
            _context.reset(token)


# Attributes every LogRecord has; anything else came in through ``extra``.
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}


def _json_default(value: Any) -> Any:
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    return repr(value)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    for name, value in vars(exc).items():
        if not name.startswith("_"):
            fields[f"exc_{name}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """Render a record as ``{"ts", "level", "logger", "message", ...}``."""

    def format(self, record: logging.LogRecord) -> str:
        line: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        line.update(_context.get())
        line.update(
            (key, value)
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and key not in line
        )

        if record.exc_info and record.exc_info[1] is not None:
            line.update(_exception_fields(record.exc_info[1]))
            line["traceback"] = self.formatException(record.exc_info)

        return json.dumps(line, default=_json_default)


def get_logger(name: str) -> logging.Logger:
    """``get_logger("services.lot_ledger")`` -> ``inventory.services.lot_ledger``."""
    return logging.getLogger(f"{LOGGER_NAMESPACE}.{name}")


_installed_handler: logging.Handler | None = None


def _resolve_level(level: int | str) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: TextIO | None = None,
    handler: logging.Handler | None = None,
) -> None:
    """Attach one structured handler to the ``inventory`` logger.

    Later calls are no-ops until ``reset_logging``.  ``level`` may be a
    name from settings ("DEBUG", "info", ...).
    """
    global _installed_handler
    if _installed_handler is not None:
        return

    target = handler or logging.StreamHandler(stream or sys.stderr)
    target.setFormatter(StructuredFormatter())

    namespace = logging.getLogger(LOGGER_NAMESPACE)
    namespace.setLevel(_resolve_level(level))
    namespace.propagate = False
    namespace.addHandler(target)
    _installed_handler = target


def reset_logging() -> None:
    """Remove the installed handler.  Tests only."""
    global _installed_handler
    namespace = logging.getLogger(LOGGER_NAMESPACE)
    for existing in list(namespace.handlers):
        namespace.removeHandler(existing)
    namespace.setLevel(logging.WARNING)
    _installed_handler = None
