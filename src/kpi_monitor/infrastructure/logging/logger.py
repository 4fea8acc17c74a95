# src/kpi_monitor/infrastructure/logging/logger.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Structured JSON logging utilities.

This module exposes an idempotent root configurator and a per-module logger
factory that produce JSON logs suitable for ingestion by log pipelines.

Features:
    * Stable keys: ``ts``, ``level``, ``logger``, ``message``.
    * Automatic enrichment with ``correlation_id`` and ``actor`` via contextvars,
      so every workflow transition logged during one operation can be tied back
      to the caller and the reviewer/submitter acting.
    * Fallback enrichment via record attributes or environment variables.
    * No-throw enrichment path.

Typical usage:
    configure_root_logging()
    log = get_json_logger(__name__)
"""

from __future__ import annotations

import json
import logging
import os
from contextvars import ContextVar
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

__all__ = [
    "configure_root_logging",
    "get_json_logger",
    "set_request_context",
    "get_correlation_id",
    "get_actor",
]

_CORRELATION_ID_ENV_KEY = "CORRELATION_ID"

# Per-operation correlation context (task-local via contextvars).
_CORRELATION_ID_CTX: ContextVar[str | None] = ContextVar("kpi_correlation_id", default=None)
_ACTOR_CTX: ContextVar[str | None] = ContextVar("kpi_actor", default=None)


def set_request_context(*, correlation_id: str | None = None, actor: str | None = None) -> None:
    """Set per-operation correlation identifiers on the current context.

    Args:
        correlation_id: Caller-supplied correlation identifier, if any.
        actor: Login of the user the operation runs on behalf of, if any.

    Notes:
        This function is additive: passing only one of the arguments will update
        that value and leave the other unchanged.
    """
    if correlation_id is not None:
        _CORRELATION_ID_CTX.set(correlation_id)
    if actor is not None:
        _ACTOR_CTX.set(actor)


def get_correlation_id() -> str | None:
    """Return the current correlation id from contextvars, if any."""
    return _CORRELATION_ID_CTX.get(None)


def get_actor() -> str | None:
    """Return the current actor from contextvars, if any."""
    return _ACTOR_CTX.get(None)


def _json_default(value: Any) -> Any:
    """Render Decimal/date values emitted in ``extra`` payloads."""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return str(value)


class _JsonFormatter(logging.Formatter):
    """JSON log formatter emitting stable keys and optional extras."""

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record as a JSON object.

        Args:
            record: Logging record.

        Returns:
            JSON-encoded log line.
        """
        ts = datetime.now(tz=UTC).isoformat()
        payload: dict[str, Any] = {
            "ts": ts,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        # Correlation id enrichment: record attribute, then contextvar, then env.
        try:
            cid: str | None = (
                getattr(record, "correlation_id", None)
                or _CORRELATION_ID_CTX.get(None)
                or os.getenv(_CORRELATION_ID_ENV_KEY)
            )
            if cid:
                payload["correlation_id"] = cid
        except Exception as exc:  # pragma: no cover
            payload["correlation_id_error"] = str(exc)

        try:
            actor: str | None = getattr(record, "actor", None) or _ACTOR_CTX.get(None)
            if actor:
                payload["actor"] = actor
        except Exception as exc:  # pragma: no cover
            payload["actor_error"] = str(exc)

        # Exceptions: guard against None in exc_info tuple.
        if record.exc_info:
            exc_type, exc_value, _ = record.exc_info
            if exc_type is not None:
                payload["exc_type"] = exc_type.__name__
            if exc_value is not None:
                payload["exc_message"] = str(exc_value)

        # Extra dict, if any (e.g., workflow transition fields).
        extra = getattr(record, "extra", None)
        if isinstance(extra, dict):
            payload.update(extra)

        return json.dumps(payload, separators=(",", ":"), ensure_ascii=False, default=_json_default)


def configure_root_logging(level: str | int | None = None) -> None:
    """Initialize the root logger with a JSON stream handler (idempotent).

    Args:
        level: Logging level or level name. If ``None``, use env ``LOG_LEVEL`` or ``INFO``.
    """
    root = logging.getLogger()

    env_level = os.getenv("LOG_LEVEL")
    resolved: int | str = (
        level if level is not None else (env_level.upper() if env_level else "INFO")
    )
    root.setLevel(resolved)

    if root.handlers:
        # Already configured; prevent duplicate handlers on reload.
        return

    handler = logging.StreamHandler()
    handler.setFormatter(_JsonFormatter())
    root.addHandler(handler)


def get_json_logger(name: str) -> logging.Logger:
    """Return a module-specific logger backed by the JSON root handler.

    This does *not* implicitly configure the root logger. Call
    :func:`configure_root_logging` once at startup for global defaults.

    Args:
        name: Logger name, typically ``__name__`` of the caller.

    Returns:
        Configured logger.
    """
    logger = logging.getLogger(name)
    # Delegate formatting and level to the root logger.
    logger.propagate = True
    return logger
