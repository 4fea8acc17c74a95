# src/kpi_monitor/domain/interfaces/gateways/audit_sink.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Audit sink port.

Purpose:
    Append-only write contract for audit entries. The workflow core emits one
    entry per fact mutation and per change/batch state transition; the sink
    owns storage.

Layer:
    domain/interfaces/gateways
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from kpi_monitor.domain.enums.approval import AuditAction


class AuditSink(Protocol):
    """Append-only audit sink."""

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
        """Append one audit entry.

        Args:
            table_name: Table the mutated row lives in.
            key_json: JSON object of the row's primary key.
            action: Added, Modified or Deleted.
            changed_by: Normalized login of the actor.
            changed_at_utc: Time of the mutation.
            column_changes_json: JSON array of ``{"column", "old", "new"}``.
        """


__all__ = ["AuditSink"]
