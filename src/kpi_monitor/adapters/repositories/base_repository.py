# src/kpi_monitor/adapters/repositories/base_repository.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""
BaseRepository: Rule-enforcing repository foundation for KPI Monitor.

Purpose:
    Shared mechanics for all repositories:
      * Deterministic ordering helpers (NULLS LAST + PK tie-breakers).
      * Safe fetch helpers (optional, all).
      * Instrumentation (latency histogram + error counter) with translation
        of driver errors into ``PersistenceFailure``.
      * UTC timestamp helper for audit fields.

Layer: adapters / repositories

Notes:
    * No business logic, no domain decisions.
    * Repositories never commit; use cases own transactions.
"""

from __future__ import annotations

import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, suppress
from datetime import UTC, datetime
from typing import Any, Generic, TypeVar

from sqlalchemy import Select, nulls_last
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from kpi_monitor.domain.exceptions.workflow import PersistenceFailure
from kpi_monitor.infrastructure.observability.metrics import (
    get_db_errors_total,
    get_db_operation_duration_seconds,
)

TModel = TypeVar("TModel")


class BaseRepository(Generic[TModel]):  # noqa: UP046
    """Abstract base class for all repositories."""

    _MODEL_NAME = "unknown"

    def __init__(self, session: AsyncSession) -> None:
        """Initialize the repository.

        Args:
            session: Async SQLAlchemy session bound to the target database.
        """
        self._session: AsyncSession = session
        self._metrics_hist = get_db_operation_duration_seconds()
        self._metrics_err = get_db_errors_total()

    # ------------------------------------------------------------------
    # Timestamp / audit utilities
    # ------------------------------------------------------------------

    @staticmethod
    def utc_now() -> datetime:
        """Return current UTC time with timezone info."""
        return datetime.now(UTC)

    @staticmethod
    def as_utc(value: datetime | None) -> datetime | None:
        """Attach UTC to naive datetimes returned by drivers without tz support."""
        if value is None or value.tzinfo is not None:
            return value
        return value.replace(tzinfo=UTC)

    # ------------------------------------------------------------------
    # Instrumentation
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _instrumented(self, operation: str) -> AsyncIterator[None]:
        """Time a DB operation and translate driver errors.

        Args:
            operation: Logical operation name used as a metric label.

        Raises:
            PersistenceFailure: If the body raises a ``SQLAlchemyError``.
        """
        start = time.perf_counter()
        outcome = "success"
        try:
            yield
        except SQLAlchemyError as exc:
            outcome = "error"
            self._count_error(operation, exc)
            raise PersistenceFailure(
                f"{self._MODEL_NAME}.{operation} failed",
                details={"operation": operation, "reason": type(exc).__name__},
            ) from exc
        except Exception as exc:
            outcome = "error"
            self._count_error(operation, exc)
            raise
        finally:
            with suppress(Exception):
                duration = time.perf_counter() - start
                self._metrics_hist.labels(
                    operation=operation,
                    model=self._MODEL_NAME,
                    outcome=outcome,
                ).observe(duration)

    def _count_error(self, operation: str, exc: BaseException) -> None:
        with suppress(Exception):
            self._metrics_err.labels(
                operation=operation,
                model=self._MODEL_NAME,
                reason=type(exc).__name__,
            ).inc()

    # ------------------------------------------------------------------
    # Deterministic ordering utilities
    # ------------------------------------------------------------------

    @staticmethod
    def order_by_latest(
        stmt: Select[Any],
        timestamp_col: Any,
        pk_col: Any,
    ) -> Select[Any]:
        """Apply deterministic latest-first ordering.

        The resulting query orders by:

            timestamp DESC NULLS LAST, pk DESC
        """
        return stmt.order_by(
            nulls_last(timestamp_col.desc()),
            pk_col.desc(),
        )

    @staticmethod
    def order_by_chronological(
        stmt: Select[Any],
        start_col: Any,
        pk_col: Any,
    ) -> Select[Any]:
        """Apply deterministic oldest-first ordering.

        The resulting query orders by:

            start ASC NULLS LAST, pk ASC
        """
        return stmt.order_by(
            nulls_last(start_col.asc()),
            pk_col.asc(),
        )

    # ------------------------------------------------------------------
    # Fetch helpers
    # ------------------------------------------------------------------

    async def fetch_optional(self, stmt: Select[Any]) -> TModel | None:
        """Execute a statement and return zero or one row."""
        res = await self._session.execute(stmt)
        return res.scalars().first()

    async def fetch_all(self, stmt: Select[Any]) -> list[TModel]:
        """Execute a statement and return all rows as a list."""
        res = await self._session.execute(stmt)
        return list(res.scalars().all())


__all__ = ["BaseRepository"]
