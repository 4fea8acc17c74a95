# tests/integration/workflow/test_fact_change_approval_sqlite.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Integration tests for submitting, approving and rejecting single changes.

Runs the ledger end to end through ``SqlAlchemyUnitOfWork`` against an
in-memory SQLite database seeded by ``tests/integration/conftest.py``.
"""

from __future__ import annotations

import json
from dataclasses import replace
from decimal import Decimal

import pytest

from kpi_monitor.application.services.audit_recorder import CHANGES_TABLE, FACTS_TABLE
from kpi_monitor.application.services.notifier import Notifier
from kpi_monitor.application.use_cases.fact_changes.ledger import FactChangeLedger
from kpi_monitor.domain.enums.approval import (
    ApprovalStatus,
    AuditAction,
    ChangeState,
    NotificationKind,
)
from kpi_monitor.domain.enums.kpi_status import KpiStatus
from kpi_monitor.domain.exceptions.workflow import (
    AlreadyPending,
    InvalidState,
    NotFound,
    ValidationError,
)

pytestmark = [pytest.mark.integration, pytest.mark.usefixtures("seeded")]


async def test_submit_creates_pending_change_and_notifies_owner(
    ledger, sink, fetch_audit
) -> None:
    change = await ledger.submit(109, Decimal("150"), None, None, None, "DOM\\Alice")

    assert change.approval_status is ApprovalStatus.PENDING
    assert change.submitted_by == "alice"
    assert change.batch_id is None
    assert await ledger.has_pending(109) is True
    assert await ledger.get_state(109) is ChangeState.PENDING
    assert await ledger.get_state(110) is ChangeState.NO_CHANGE

    assert [(k, r) for k, r, _ in sink.events] == [(NotificationKind.PENDING_APPROVAL, "owner")]
    assert sink.events[0][2]["change_id"] == change.change_id

    audit = await fetch_audit(CHANGES_TABLE)
    assert len(audit) == 1
    assert audit[0].action == AuditAction.ADDED.value
    assert json.loads(audit[0].key_json) == {"change_id": change.change_id}
    cols = {c["column"]: c["new"] for c in json.loads(audit[0].column_changes_json)}
    assert Decimal(cols["proposed_actual"]) == Decimal("150")
    assert cols["approval_status"] == "pending"


async def test_second_submit_for_same_fact_is_already_pending(ledger) -> None:
    await ledger.submit(109, Decimal("150"), None, None, None, "alice")

    with pytest.raises(AlreadyPending):
        await ledger.submit(109, None, None, Decimal("170"), None, "bob")


async def test_submit_validation_errors(ledger) -> None:
    with pytest.raises(ValidationError):
        await ledger.submit(109, None, None, None, None, "alice")
    with pytest.raises(ValidationError):
        await ledger.submit(109, Decimal("1"), None, None, None, "   ")
    with pytest.raises(ValidationError):
        await ledger.submit(109, None, Decimal("999"), None, None, "alice")
    with pytest.raises(ValidationError):
        await ledger.submit(109, None, None, None, "excellent", "alice")
    with pytest.raises(NotFound):
        await ledger.submit(999, Decimal("1"), None, None, None, "alice")

    assert await ledger.has_pending(109) is False


async def test_target_may_be_proposed_when_unlocked(ledger, ctx) -> None:
    unlocked = replace(ctx, target_edit_unlocked=True)

    change = await ledger.submit(
        109, None, Decimal("185"), None, None, "alice", context=unlocked
    )

    assert change.proposed.target == Decimal("185")


async def test_approve_applies_values_and_recomputes_plan_year(
    ledger, sink, fetch_fact, fetch_audit
) -> None:
    change = await ledger.submit(109, Decimal("150"), None, None, None, "alice")

    approved = await ledger.approve(change.change_id, "Reviewer@corp.local")

    assert approved.approval_status is ApprovalStatus.APPROVED
    assert approved.reviewed_by == "reviewer"
    assert approved.reviewed_at is not None
    assert await ledger.has_pending(109) is False
    assert await ledger.get_state(109) is ChangeState.APPROVED

    fact = await fetch_fact(109)
    assert Decimal(fact.actual_value) == Decimal("150")
    assert fact.last_changed_by == "reviewer"
    # September actual 150 against an ascending target of 180.
    assert fact.status_code == KpiStatus.BEHIND.value
    # August is past its grace month with no actual; October is not due yet.
    assert (await fetch_fact(108)).status_code == KpiStatus.DATA_MISSING.value
    assert (await fetch_fact(110)).status_code is None

    fact_audit = await fetch_audit(FACTS_TABLE)
    assert len(fact_audit) == 1
    diffs = {c["column"]: c for c in json.loads(fact_audit[0].column_changes_json)}
    assert diffs["actual_value"]["old"] is None
    assert Decimal(diffs["actual_value"]["new"]) == Decimal("150")
    assert diffs["last_changed_by"]["new"] == "reviewer"

    approved_events = [e for e in sink.events if e[0] is NotificationKind.APPROVED]
    assert len(approved_events) == 1
    assert approved_events[0][1] == "editor"


async def test_approve_twice_is_invalid_state(ledger) -> None:
    change = await ledger.submit(109, Decimal("150"), None, None, None, "alice")
    await ledger.approve(change.change_id, "reviewer")

    with pytest.raises(InvalidState):
        await ledger.approve(change.change_id, "reviewer")
    with pytest.raises(InvalidState):
        await ledger.reject(change.change_id, "reviewer", "too late")
    with pytest.raises(NotFound):
        await ledger.approve(424242, "reviewer")


async def test_reject_requires_reason_and_leaves_fact_untouched(
    ledger, sink, fetch_fact
) -> None:
    change = await ledger.submit(109, Decimal("150"), None, None, None, "alice")

    with pytest.raises(ValidationError):
        await ledger.reject(change.change_id, "reviewer", "   ")
    assert await ledger.get_state(109) is ChangeState.PENDING

    rejected = await ledger.reject(change.change_id, "DOM\\Reviewer", " wrong month ")

    assert rejected.approval_status is ApprovalStatus.REJECTED
    assert rejected.reject_reason == "wrong month"
    assert rejected.reviewed_by == "reviewer"
    assert await ledger.get_state(109) is ChangeState.REJECTED
    assert (await fetch_fact(109)).actual_value is None

    rejected_events = [e for e in sink.events if e[0] is NotificationKind.REJECTED]
    assert [(r, c["reject_reason"]) for _, r, c in rejected_events] == [("editor", "wrong month")]

    # A rejected change frees the fact for a new proposal.
    again = await ledger.submit(109, Decimal("151"), None, None, None, "alice")
    assert again.is_pending


async def test_self_owned_plan_is_auto_approved(ledger, sink, fetch_fact) -> None:
    change = await ledger.submit(201, Decimal("60"), None, None, None, "solo")

    assert change.approval_status is ApprovalStatus.APPROVED
    assert change.reviewed_by == "solo"
    assert sink.events == []

    fact = await fetch_fact(201)
    assert Decimal(fact.actual_value) == Decimal("60")
    assert fact.status_code == KpiStatus.ON_TARGET.value


async def test_self_owned_plan_stays_pending_when_auto_approve_is_off(ledger, ctx) -> None:
    manual = replace(ctx, auto_approve_self_owned=False)

    change = await ledger.submit(201, Decimal("60"), None, None, None, "solo", context=manual)

    assert change.is_pending


async def test_failing_notification_does_not_fail_submit(uow, ctx) -> None:
    class _BrokenSink:
        async def notify(self, kind, recipient, context) -> None:
            raise RuntimeError("smtp down")

    ledger = FactChangeLedger(
        uow=uow, notifier=Notifier(_BrokenSink()), context_factory=lambda: ctx
    )

    change = await ledger.submit(109, Decimal("150"), None, None, None, "alice")

    assert change.is_pending
    assert await ledger.has_pending(109) is True
