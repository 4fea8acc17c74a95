# tests/unit/application/use_cases/test_fact_change_ledger_uc.py
# Copyright (c)
# SPDX-License-Identifier: MIT

from __future__ import annotations

from dataclasses import replace
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

import pytest
from pydantic import ValidationError as PydanticValidationError

from kpi_monitor.application.context import WorkflowContext
from kpi_monitor.application.schemas.dto.fact_changes import (
    BulkSubmitRequestDTO,
    BulkSubmitRowDTO,
)
from kpi_monitor.application.services.notifier import Notifier
from kpi_monitor.application.uow import run_in_uow
from kpi_monitor.application.use_cases.fact_changes.inbox import ReviewInboxUseCase
from kpi_monitor.application.use_cases.fact_changes.ledger import FactChangeLedger
from kpi_monitor.domain.entities.fact_change import FactChange, ProposedValues
from kpi_monitor.domain.entities.kpi_fact import Fact, Period, Plan
from kpi_monitor.domain.enums.approval import ApprovalStatus, NotificationKind
from kpi_monitor.domain.enums.kpi_status import Frequency, KpiStatus
from kpi_monitor.domain.exceptions.workflow import (
    AlreadyPending,
    InvalidState,
    NotFound,
    ValidationError,
)

NOW = datetime(2026, 10, 17, 9, 0, tzinfo=UTC)


class _FakeFactsRepo:
    def __init__(self, facts: dict[int, Fact]) -> None:
        self.facts = facts
        self.statuses: dict[int, KpiStatus] = {}
        self.fail_apply = False
        self.calls: list[str] = []

    async def get_fact(self, fact_id: int) -> Fact | None:
        return self.facts.get(fact_id)

    async def apply_values(self, fact_id, values, *, changed_by, changed_at):
        self.calls.append(f"apply:{fact_id}")
        if self.fail_apply:
            raise RuntimeError("disk full")
        fact = self.facts[fact_id]
        self.facts[fact_id] = replace(fact, actual_value=values.actual or fact.actual_value)
        return {"actual_value": (fact.actual_value, values.actual)}

    async def list_for_plan_year(self, plan_id: int, year: int) -> list[Fact]:
        return [f for f in self.facts.values() if f.plan_id == plan_id]

    async def list_targets_for_plan_year(self, plan_id: int, year: int) -> list[Decimal | None]:
        return [f.target_value for f in await self.list_for_plan_year(plan_id, year)]

    async def set_status(self, fact_id: int, status: KpiStatus) -> None:
        self.statuses[fact_id] = status

    async def lock_plan_year(self, plan_id: int, year: int) -> None:
        self.calls.append(f"lock:{plan_id}:{year}")


class _FakePlansRepo:
    def __init__(self, plans: dict[int, Plan]) -> None:
        self.plans = plans

    async def get_plan(self, plan_id: int) -> Plan | None:
        return self.plans.get(plan_id)


class _FakeChangesRepo:
    def __init__(self) -> None:
        self.rows: dict[int, FactChange] = {}

    async def has_pending(self, fact_id: int) -> bool:
        return any(c.fact_id == fact_id and c.is_pending for c in self.rows.values())

    async def add_pending(self, *, fact_id, proposed, submitted_by, submitted_at, batch_id=None):
        change = FactChange(
            change_id=len(self.rows) + 1,
            fact_id=fact_id,
            proposed=proposed,
            submitted_by=submitted_by,
            submitted_at=submitted_at,
            batch_id=batch_id,
        )
        self.rows[change.change_id] = change
        return change

    async def get(self, change_id: int, *, for_update: bool = False) -> FactChange | None:
        return self.rows.get(change_id)

    async def mark_reviewed(
        self, change_id, *, status, reviewed_by, reviewed_at, reject_reason=None
    ):
        current = self.rows[change_id]
        if not current.is_pending:
            raise InvalidState("not pending")
        self.rows[change_id] = replace(
            current,
            approval_status=status,
            reviewed_by=reviewed_by,
            reviewed_at=reviewed_at,
            reject_reason=reject_reason,
        )
        return self.rows[change_id]

    async def count_by_status(self, status, *, owner_login=None) -> int:
        return sum(1 for c in self.rows.values() if c.approval_status is status)


class _FakeAuditSink:
    def __init__(self) -> None:
        self.rows: list[dict[str, Any]] = []

    async def record_audit(self, **row: Any) -> None:
        self.rows.append(row)


class _FakeUow:
    """UnitOfWork double exposing repositories as attributes."""

    def __init__(self, facts_repo, plans_repo) -> None:
        self.facts_repo = facts_repo
        self.plans_repo = plans_repo
        self.changes_repo = _FakeChangesRepo()
        self.audit_sink = _FakeAuditSink()
        self.entered = 0
        self.commits = 0
        self.rollbacks = 0

    async def __aenter__(self) -> _FakeUow:
        self.entered += 1
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        return None

    async def commit(self) -> None:
        self.commits += 1

    async def rollback(self) -> None:
        self.rollbacks += 1


class _Sink:
    def __init__(self) -> None:
        self.events: list[tuple[NotificationKind, str, dict[str, Any]]] = []

    async def notify(self, kind, recipient, context) -> None:
        self.events.append((kind, recipient, dict(context)))


def _world(owner: str = "DOM\\Owner", editor: str | None = "editor@corp.local"):
    period = Period(period_id=9, year=2026, month_num=9)
    facts = _FakeFactsRepo(
        {
            109: Fact(
                fact_id=109,
                kpi_id=7,
                period_id=9,
                plan_id=10,
                target_value=Decimal("180"),
                period=period,
            ),
            110: Fact(fact_id=110, kpi_id=7, period_id=10, plan_id=10, is_active=False),
        }
    )
    plans = _FakePlansRepo(
        {10: Plan(plan_id=10, kpi_id=7, year=2026, owner_login=owner, editor_login=editor)}
    )
    uow = _FakeUow(facts, plans)
    sink = _Sink()
    ledger = FactChangeLedger(
        uow=uow, notifier=Notifier(sink), context_factory=lambda: WorkflowContext(now=NOW)
    )
    return uow, sink, ledger


async def test_run_in_uow_commits_or_rolls_back() -> None:
    uow, _, _ = _world()

    async def _ok(tx):
        return "done"

    async def _boom(tx):
        raise NotFound("missing")

    assert await run_in_uow(uow, _ok) == "done"
    with pytest.raises(NotFound):
        await run_in_uow(uow, _boom)

    assert (uow.commits, uow.rollbacks) == (1, 1)


async def test_submit_then_approve_notifies_owner_then_editor() -> None:
    uow, sink, ledger = _world()

    change = await ledger.submit(109, Decimal("150"), None, None, "behind", "Alice@corp")
    approved = await ledger.approve(change.change_id, "DOM\\Bob")

    assert change.submitted_by == "alice"
    assert change.proposed.status_code is KpiStatus.BEHIND
    assert approved.reviewed_by == "bob"
    assert [(k, r) for k, r, _ in sink.events] == [
        (NotificationKind.PENDING_APPROVAL, "owner"),
        (NotificationKind.APPROVED, "editor"),
    ]
    assert sink.events[1][2]["actual"] == "150"
    assert uow.facts_repo.statuses[109] is KpiStatus.BEHIND
    assert len(uow.audit_sink.rows) == 3


async def test_approval_locks_plan_year_before_touching_the_fact() -> None:
    uow, _, ledger = _world()
    change = await ledger.submit(109, Decimal("150"), None, None, None, "alice")

    await ledger.approve(change.change_id, "bob")

    assert uow.facts_repo.calls == ["lock:10:2026", "apply:109", "lock:10:2026"]


async def test_review_notification_falls_back_to_submitter() -> None:
    _, sink, ledger = _world(editor=None)

    change = await ledger.submit(109, Decimal("150"), None, None, None, "alice")
    await ledger.reject(change.change_id, "bob", "nope")

    assert sink.events[-1][:2] == (NotificationKind.REJECTED, "alice")


async def test_suppressed_email_sends_nothing() -> None:
    _, sink, ledger = _world()
    change = await ledger.submit(109, Decimal("150"), None, None, None, "alice", notify_owner=False)

    await ledger.approve(change.change_id, "bob", suppress_email=True)

    assert sink.events == []


async def test_validation_happens_before_any_transaction() -> None:
    uow, _, ledger = _world()

    with pytest.raises(ValidationError):
        await ledger.submit(109, None, None, None, None, "alice")
    with pytest.raises(ValidationError):
        await ledger.submit(109, None, None, None, "great", "alice")
    with pytest.raises(ValidationError):
        await ledger.reject(1, "bob", None)
    with pytest.raises(ValidationError):
        await ledger.approve(1, "   ")

    assert uow.entered == 0


async def test_inactive_fact_and_duplicate_pending() -> None:
    uow, _, ledger = _world()

    with pytest.raises(NotFound):
        await ledger.submit(110, Decimal("1"), None, None, None, "alice")

    await ledger.submit(109, Decimal("1"), None, None, None, "alice")
    with pytest.raises(AlreadyPending):
        await ledger.submit(109, Decimal("2"), None, None, None, "alice")
    assert uow.rollbacks == 2


async def test_failed_apply_rolls_back_and_keeps_change_pending() -> None:
    uow, sink, ledger = _world()
    change = await ledger.submit(109, Decimal("1"), None, None, None, "alice")
    uow.facts_repo.fail_apply = True

    with pytest.raises(RuntimeError):
        await ledger.approve(change.change_id, "bob")

    assert uow.changes_repo.rows[change.change_id].approval_status is ApprovalStatus.PENDING
    assert [k for k, _, _ in sink.events] == [NotificationKind.PENDING_APPROVAL]


async def test_self_owned_plan_auto_approves_without_notifications() -> None:
    _, sink, ledger = _world(owner="solo", editor="DOM\\Solo")

    change = await ledger.submit(109, Decimal("200"), None, None, None, "solo")

    assert change.approval_status is ApprovalStatus.APPROVED
    assert change.reviewed_by == "solo"
    assert sink.events == []


async def test_batch_children_are_never_auto_approved() -> None:
    _, _, ledger = _world(owner="solo", editor="solo")

    change = await ledger.submit(109, Decimal("200"), None, None, None, "solo", batch_id=4)

    assert change.is_pending


async def test_inbox_scopes_by_admin_flag() -> None:
    uow, _, ledger = _world()
    await ledger.submit(109, Decimal("1"), None, None, None, "alice")
    inbox = ReviewInboxUseCase(uow=uow)

    assert await inbox.pending_count("anyone", is_admin=True) == 1
    with pytest.raises(ValidationError):
        await inbox.pending_count("", is_admin=False)


def test_bulk_dtos_are_strict() -> None:
    row = BulkSubmitRowDTO(period_number=3, actual="1.5")

    assert row.actual == Decimal("1.5")
    assert BulkSubmitRowDTO(period_number=3).is_empty
    with pytest.raises(PydanticValidationError):
        BulkSubmitRowDTO(period_number=3, budget="1")
    with pytest.raises(PydanticValidationError):
        BulkSubmitRequestDTO(plan_id=1, year=2026, submitted_by="   ", rows=[])
    assert Frequency.MONTHLY.periods_per_year == 12
    assert ProposedValues(actual=row.actual).is_empty is False
