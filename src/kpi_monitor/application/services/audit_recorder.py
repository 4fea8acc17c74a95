# src/kpi_monitor/application/services/audit_recorder.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Audit recorder.

Purpose:
    Build column-level audit entries for fact mutations and for change/batch
    state transitions and hand them to the transaction-bound ``AuditSink``.

Layer:
    application/services

Notes:
    - Entries are written in the same transaction as the mutation they
      describe; the recorder never commits.
    - ``column_changes_json`` is a JSON array of ``{"column", "old", "new"}``
      objects. Decimals are rendered as strings and datetimes as ISO-8601.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from kpi_monitor.domain.entities.fact_change import BatchOutcome, FactChange, FactChangeBatch
from kpi_monitor.domain.enums.approval import ApprovalStatus, AuditAction
from kpi_monitor.domain.interfaces.gateways.audit_sink import AuditSink

FACTS_TABLE = "kpi_facts"
CHANGES_TABLE = "kpi_fact_changes"
BATCHES_TABLE = "kpi_fact_change_batches"


def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def column_changes_json(changes: Iterable[tuple[str, Any, Any]]) -> str:
    """Serialize ``(column, old, new)`` triples to the audit JSON array."""
    return json.dumps(
        [{"column": c, "old": _jsonable(o), "new": _jsonable(n)} for c, o, n in changes],
        separators=(",", ":"),
    )


def key_json(**key: Any) -> str:
    """Serialize a primary key to a JSON object."""
    return json.dumps({k: _jsonable(v) for k, v in key.items()}, separators=(",", ":"))


class AuditRecorder:
    """Writes workflow audit entries through an ``AuditSink``."""

    def __init__(self, sink: AuditSink) -> None:
        self._sink = sink

    async def record(
        self,
        *,
        table_name: str,
        key: Mapping[str, Any],
        action: AuditAction,
        changed_by: str,
        changed_at: datetime,
        changes: Iterable[tuple[str, Any, Any]],
    ) -> None:
        """Append one entry."""
        await self._sink.record_audit(
            table_name=table_name,
            key_json=key_json(**key),
            action=action,
            changed_by=changed_by,
            changed_at_utc=changed_at,
            column_changes_json=column_changes_json(changes),
        )

    async def fact_modified(
        self,
        fact_id: int,
        diffs: Mapping[str, tuple[Any, Any]],
        *,
        changed_by: str,
        changed_at: datetime,
    ) -> None:
        """Record the column diffs applied to a fact; no entry when nothing changed."""
        if not diffs:
            return
        await self.record(
            table_name=FACTS_TABLE,
            key={"fact_id": fact_id},
            action=AuditAction.MODIFIED,
            changed_by=changed_by,
            changed_at=changed_at,
            changes=[(col, old, new) for col, (old, new) in diffs.items()],
        )

    async def change_added(self, change: FactChange) -> None:
        """Record the creation of a change request."""
        p = change.proposed
        await self.record(
            table_name=CHANGES_TABLE,
            key={"change_id": change.change_id},
            action=AuditAction.ADDED,
            changed_by=change.submitted_by,
            changed_at=change.submitted_at,
            changes=[
                ("fact_id", None, change.fact_id),
                ("proposed_actual", None, p.actual),
                ("proposed_target", None, p.target),
                ("proposed_forecast", None, p.forecast),
                ("proposed_status_code", None, p.status_code),
                ("approval_status", None, change.approval_status),
                ("batch_id", None, change.batch_id),
            ],
        )

    async def change_reviewed(self, change: FactChange) -> None:
        """Record a change leaving ``pending``."""
        changes: list[tuple[str, Any, Any]] = [
            ("approval_status", ApprovalStatus.PENDING, change.approval_status),
            ("reviewed_by", None, change.reviewed_by),
            ("reviewed_at", None, change.reviewed_at),
        ]
        if change.reject_reason:
            changes.append(("reject_reason", None, change.reject_reason))
        await self.record(
            table_name=CHANGES_TABLE,
            key={"change_id": change.change_id},
            action=AuditAction.MODIFIED,
            changed_by=change.reviewed_by or "",
            changed_at=change.reviewed_at or change.submitted_at,
            changes=changes,
        )

    async def batch_added(self, batch: FactChangeBatch) -> None:
        """Record the creation of a batch header."""
        await self.record(
            table_name=BATCHES_TABLE,
            key={"batch_id": batch.batch_id},
            action=AuditAction.ADDED,
            changed_by=batch.submitted_by,
            changed_at=batch.submitted_at,
            changes=[
                ("kpi_id", None, batch.kpi_id),
                ("plan_id", None, batch.plan_id),
                ("year", None, batch.year),
                ("frequency", None, batch.frequency),
                ("period_min", None, batch.period_min),
                ("period_max", None, batch.period_max),
                ("row_count", None, batch.row_count),
                ("skipped_count", None, batch.skipped_count),
                ("approval_status", None, batch.approval_status),
            ],
        )

    async def batch_resolved(self, batch: FactChangeBatch, outcome: BatchOutcome) -> None:
        """Record a batch review, including the folded child summary."""
        changes: list[tuple[str, Any, Any]] = [
            ("approval_status", ApprovalStatus.PENDING, batch.approval_status),
            ("reviewed_by", None, batch.reviewed_by),
            ("reviewed_at", None, batch.reviewed_at),
        ]
        if batch.reject_reason:
            changes.append(("reject_reason", None, batch.reject_reason))
        changes.extend(
            [
                ("expected_count", None, outcome.expected_count),
                ("resolved_count", None, outcome.resolved_count),
                ("failed_count", None, outcome.failed_count),
                ("already_resolved_count", None, outcome.already_resolved),
                ("discrepancy", None, outcome.discrepancy),
            ]
        )
        if outcome.failed:
            failures = ";".join(f"{r.change_id}:{r.error_code}" for r in outcome.failed)
            changes.append(("failed_children", None, failures))
        await self.record(
            table_name=BATCHES_TABLE,
            key={"batch_id": batch.batch_id},
            action=AuditAction.MODIFIED,
            changed_by=batch.reviewed_by or "",
            changed_at=batch.reviewed_at or batch.submitted_at,
            changes=changes,
        )


__all__ = [
    "BATCHES_TABLE",
    "CHANGES_TABLE",
    "FACTS_TABLE",
    "AuditRecorder",
    "column_changes_json",
    "key_json",
]
