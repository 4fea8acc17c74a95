# src/kpi_monitor/adapters/repositories/audit_log_repository.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Audit log repository (SQLAlchemy).

Purpose:
    Append audit entries to ``audit_log`` inside the caller's transaction, so
    an audit row commits or rolls back together with the mutation it records.
    Implements the AuditSink port.

Layer:
    adapters/repositories
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime

from sqlalchemy import select

from kpi_monitor.adapters.repositories.base_repository import BaseRepository
from kpi_monitor.domain.enums.approval import AuditAction
from kpi_monitor.infrastructure.database.models.kpi import AuditLog


class SqlAlchemyAuditLogRepository(BaseRepository[AuditLog]):
    """Append-only audit sink backed by the ``audit_log`` table."""

    _MODEL_NAME = "audit_log"

    async def record_audit(
        self,
        *,
        table_name: str,
        key_json: str,
        action: AuditAction,
        changed_by: str,
        changed_at_utc: datetime,
        column_changes_json: str,
    ) -> None:
        """Insert one audit row (flushed, not committed)."""
        async with self._instrumented("record_audit"):
            self._session.add(
                AuditLog(
                    table_name=table_name,
                    key_json=key_json,
                    action=action.value,
                    changed_by=changed_by,
                    changed_at_utc=changed_at_utc,
                    column_changes_json=column_changes_json,
                )
            )
            await self._session.flush()

    async def list_for_table(self, table_name: str, *, limit: int = 500) -> Sequence[AuditLog]:
        """Return audit rows for a table, oldest first."""
        async with self._instrumented("list_for_table"):
            stmt = (
                select(AuditLog)
                .where(AuditLog.table_name == table_name)
                .order_by(AuditLog.audit_id.asc())
                .limit(limit)
            )
            return await self.fetch_all(stmt)


__all__ = ["SqlAlchemyAuditLogRepository"]
