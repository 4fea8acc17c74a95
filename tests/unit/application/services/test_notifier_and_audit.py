# tests/unit/application/services/test_notifier_and_audit.py
# Copyright (c)
# SPDX-License-Identifier: MIT

from __future__ import annotations

import json
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

import pytest

from kpi_monitor.adapters.gateways.logging_notification_sink import LoggingNotificationSink
from kpi_monitor.application.services.audit_recorder import (
    BATCHES_TABLE,
    FACTS_TABLE,
    AuditRecorder,
    column_changes_json,
    key_json,
)
from kpi_monitor.application.services.notifier import Notifier
from kpi_monitor.domain.entities.fact_change import (
    BatchOutcome,
    ChildResult,
    FactChange,
    FactChangeBatch,
    ProposedValues,
)
from kpi_monitor.domain.enums.approval import ApprovalStatus, AuditAction, NotificationKind
from kpi_monitor.domain.enums.kpi_status import Frequency, KpiStatus
from kpi_monitor.domain.exceptions.workflow import NotificationFailure

NOW = datetime(2026, 10, 17, 9, 0, tzinfo=UTC)


class _Sink:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.calls: list[tuple[NotificationKind, str, dict[str, Any]]] = []

    async def notify(self, kind, recipient, context) -> None:
        if self.error is not None:
            raise self.error
        self.calls.append((kind, recipient, dict(context)))


class _AuditSink:
    def __init__(self) -> None:
        self.rows: list[dict[str, Any]] = []

    async def record_audit(self, **row: Any) -> None:
        self.rows.append(row)


async def test_notifier_normalizes_recipient() -> None:
    sink = _Sink()

    ok = await Notifier(sink).send(NotificationKind.APPROVED, "DOM\\Editor", {"change_id": 1})

    assert ok is True
    assert sink.calls == [(NotificationKind.APPROVED, "editor", {"change_id": 1})]


@pytest.mark.parametrize("error", [NotificationFailure("smtp down"), RuntimeError("boom")])
async def test_notifier_swallows_sink_failures(error: Exception) -> None:
    ok = await Notifier(_Sink(error)).send(NotificationKind.REJECTED, "editor", {})

    assert ok is False


async def test_notifier_without_recipient_skips_sink() -> None:
    sink = _Sink()

    assert await Notifier(sink).send(NotificationKind.PENDING_APPROVAL, None) is False
    assert await Notifier(sink).send(NotificationKind.PENDING_APPROVAL, "  ") is False
    assert sink.calls == []


async def test_logging_sink_rejects_blank_recipient() -> None:
    sink = LoggingNotificationSink()

    await sink.notify(NotificationKind.APPROVED, "editor", {"change_id": 1})
    with pytest.raises(NotificationFailure):
        await sink.notify(NotificationKind.APPROVED, "", {})


def test_audit_json_shapes() -> None:
    rendered = json.loads(
        column_changes_json(
            [
                ("actual_value", None, Decimal("1.50")),
                ("status_code", None, KpiStatus.BEHIND),
                ("last_changed_at", None, NOW),
            ]
        )
    )

    assert rendered == [
        {"column": "actual_value", "old": None, "new": "1.50"},
        {"column": "status_code", "old": None, "new": "behind"},
        {"column": "last_changed_at", "old": None, "new": NOW.isoformat()},
    ]
    assert json.loads(key_json(fact_id=5)) == {"fact_id": 5}


async def test_fact_modified_skips_empty_diffs() -> None:
    sink = _AuditSink()
    recorder = AuditRecorder(sink)

    await recorder.fact_modified(5, {}, changed_by="r", changed_at=NOW)
    assert sink.rows == []

    await recorder.fact_modified(
        5, {"actual_value": (None, Decimal("3"))}, changed_by="r", changed_at=NOW
    )
    assert len(sink.rows) == 1
    assert sink.rows[0]["table_name"] == FACTS_TABLE
    assert sink.rows[0]["action"] is AuditAction.MODIFIED
    assert sink.rows[0]["changed_at_utc"] == NOW


async def test_change_reviewed_includes_reject_reason() -> None:
    sink = _AuditSink()
    change = FactChange(
        change_id=9,
        fact_id=5,
        proposed=ProposedValues(actual=Decimal("1")),
        submitted_by="alice",
        submitted_at=NOW,
        approval_status=ApprovalStatus.REJECTED,
        reviewed_by="bob",
        reviewed_at=NOW,
        reject_reason="typo",
    )

    await AuditRecorder(sink).change_reviewed(change)

    cols = {c["column"]: c for c in json.loads(sink.rows[0]["column_changes_json"])}
    assert (cols["approval_status"]["old"], cols["approval_status"]["new"]) == (
        "pending",
        "rejected",
    )
    assert cols["reject_reason"]["new"] == "typo"
    assert sink.rows[0]["changed_by"] == "bob"


async def test_batch_resolved_lists_failed_children() -> None:
    sink = _AuditSink()
    batch = FactChangeBatch(
        batch_id=3,
        kpi_id=7,
        plan_id=10,
        year=2026,
        frequency=Frequency.MONTHLY,
        period_min=9,
        period_max=12,
        row_count=3,
        skipped_count=0,
        submitted_by="alice",
        submitted_at=NOW,
        approval_status=ApprovalStatus.APPROVED,
        reviewed_by="bob",
        reviewed_at=NOW,
    )
    outcome = BatchOutcome.fold(
        batch_id=3,
        decision=ApprovalStatus.APPROVED,
        expected_count=3,
        already_resolved=0,
        results=[
            ChildResult(change_id=1, fact_id=1, resolved=True),
            ChildResult(change_id=2, fact_id=2, resolved=False, error_code="NOT_FOUND"),
            ChildResult(change_id=3, fact_id=3, resolved=False, error_code="INVALID_STATE"),
        ],
    )

    await AuditRecorder(sink).batch_resolved(batch, outcome)

    row = sink.rows[0]
    assert row["table_name"] == BATCHES_TABLE
    cols = {c["column"]: c["new"] for c in json.loads(row["column_changes_json"])}
    assert cols["resolved_count"] == 1
    assert cols["failed_count"] == 2
    assert cols["discrepancy"] == 2
    assert cols["failed_children"] == "2:NOT_FOUND;3:INVALID_STATE"
    assert "reject_reason" not in cols
