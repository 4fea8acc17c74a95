# src/kpi_monitor/application/use_cases/fact_changes/ledger.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Fact change ledger.

Purpose:
    Own the lifecycle of change requests against KPI facts: submission,
    approval and rejection, with auditing, plan-year status recomputation on
    approval and post-commit notifications.

Layer:
    application/use_cases

Notes:
    - At most one pending change per fact. ``has_pending`` is checked first
      for a clear error, but the storage-level partial unique index is what
      makes the insert atomic; both paths raise ``AlreadyPending``.
    - Approval is a single transaction: lock the change row, take the
      plan-year lock, copy every non-null proposed value onto the fact, mark
      the change approved, audit, recompute the plan-year and commit.
      Notifications go out only after the commit and never fail the
      operation.
    - Reviewer and submitter logins are normalized (``DOMAIN\\user`` and
      ``user@host`` both become ``user``).
"""

from __future__ import annotations

from collections.abc import Callable
from contextlib import suppress
from decimal import Decimal
from typing import Any

from kpi_monitor.application.context import WorkflowContext
from kpi_monitor.application.repos import audit_sink, changes_repo, facts_repo, plans_repo
from kpi_monitor.application.services.audit_recorder import AuditRecorder
from kpi_monitor.application.services.notifier import Notifier
from kpi_monitor.application.uow import UnitOfWork, run_in_uow
from kpi_monitor.application.use_cases.status.recompute_plan_year import recompute_in_tx
from kpi_monitor.config.settings import Settings
from kpi_monitor.domain.entities.fact_change import FactChange, ProposedValues
from kpi_monitor.domain.entities.kpi_fact import Plan
from kpi_monitor.domain.enums.approval import ApprovalStatus, ChangeState, NotificationKind
from kpi_monitor.domain.enums.kpi_status import KpiStatus
from kpi_monitor.domain.exceptions.workflow import (
    AlreadyPending,
    InvalidState,
    NotFound,
    ValidationError,
)
from kpi_monitor.domain.services.logins import normalize_login, same_login
from kpi_monitor.infrastructure.logging.logger import get_json_logger
from kpi_monitor.infrastructure.observability.metrics import get_workflow_transitions_total

logger = get_json_logger(__name__)


def record_change_transition(transition: str, change: FactChange, actor: str) -> None:
    logger.info(
        "fact_change_transition",
        extra={
            "extra": {
                "transition": transition,
                "change_id": change.change_id,
                "fact_id": change.fact_id,
                "batch_id": change.batch_id,
                "actor": actor,
            }
        },
    )
    with suppress(Exception):
        get_workflow_transitions_total().labels(entity="fact_change", transition=transition).inc()


def _parse_status(raw: KpiStatus | str | None) -> KpiStatus | None:
    if raw is None or isinstance(raw, KpiStatus):
        return raw
    try:
        return KpiStatus.parse(raw)
    except ValueError as exc:
        raise ValidationError(
            f"Unknown status code {raw!r}", details={"status_code": raw}
        ) from exc


def _require_login(raw: str | None, role: str) -> str:
    login = normalize_login(raw)
    if not login:
        raise ValidationError(f"{role} login is required", details={"role": role})
    return login


class FactChangeLedger:
    """Submission and review of fact change requests.

    Args:
        uow:
            UnitOfWork opened once per operation; never entered re-entrantly.
        notifier:
            Best-effort notification dispatcher used after commits.
        context_factory:
            Builds the per-operation ``WorkflowContext`` when a caller does not
            pass one explicitly.
    """

    def __init__(
        self,
        *,
        uow: UnitOfWork,
        notifier: Notifier,
        context_factory: Callable[[], WorkflowContext] = WorkflowContext,
    ) -> None:
        self._uow = uow
        self._notifier = notifier
        self._context_factory = context_factory

    @classmethod
    def from_settings(
        cls, *, uow: UnitOfWork, notifier: Notifier, settings: Settings
    ) -> FactChangeLedger:
        """Build a ledger whose default context is read from ``settings``."""
        return cls(
            uow=uow,
            notifier=notifier,
            context_factory=lambda: WorkflowContext.from_settings(settings),
        )

    def context(self) -> WorkflowContext:
        """Return a fresh default context for one operation."""
        return self._context_factory()

    # ------------------------------------------------------------------ #
    # Queries                                                            #
    # ------------------------------------------------------------------ #

    async def has_pending(self, fact_id: int) -> bool:
        """Return True iff the fact has a pending change."""
        async with self._uow as tx:
            return await changes_repo(tx).has_pending(fact_id)

    async def get_state(self, fact_id: int) -> ChangeState:
        """Return the state of the fact's latest change, or ``NO_CHANGE``."""
        async with self._uow as tx:
            latest = await changes_repo(tx).latest_for_fact(fact_id)
        return latest.state if latest is not None else ChangeState.NO_CHANGE

    # ------------------------------------------------------------------ #
    # Submission                                                         #
    # ------------------------------------------------------------------ #

    async def submit(
        self,
        fact_id: int,
        actual: Decimal | None,
        target: Decimal | None,
        forecast: Decimal | None,
        status_code: KpiStatus | str | None,
        submitted_by: str,
        notify_owner: bool = True,
        batch_id: int | None = None,
        context: WorkflowContext | None = None,
    ) -> FactChange:
        """Create a pending change request for a fact.

        Returns:
            The persisted change; already approved when the plan is
            self-owned and auto-approval is enabled.

        Raises:
            ValidationError: Nothing proposed, unknown status code, blank
                submitter, or a target proposed while targets are locked.
            NotFound: The fact is unknown or inactive.
            AlreadyPending: The fact already has a pending change.
        """
        ctx = context or self.context()
        proposed = ProposedValues(
            actual=actual,
            target=target,
            forecast=forecast,
            status_code=_parse_status(status_code),
        )
        if proposed.is_empty:
            raise ValidationError("No values proposed", details={"fact_id": fact_id})
        submitter = _require_login(submitted_by, "submitter")
        if target is not None and not ctx.target_edit_unlocked:
            raise ValidationError(
                "Target edits are locked", details={"fact_id": fact_id, "target": str(target)}
            )

        async def _work(tx: UnitOfWork) -> tuple[FactChange, Plan | None, bool]:
            return await self.submit_in_tx(tx, fact_id, proposed, submitter, ctx, batch_id)

        change, plan, auto = await run_in_uow(self._uow, _work)
        record_change_transition("submitted", change, submitter)
        if auto:
            record_change_transition("auto_approved", change, change.reviewed_by or submitter)
            return change

        if notify_owner:
            await self._notifier.send(
                NotificationKind.PENDING_APPROVAL,
                plan.owner_login if plan is not None else None,
                _notification_context(change, plan),
            )
        return change

    async def submit_in_tx(
        self,
        tx: Any,
        fact_id: int,
        proposed: ProposedValues,
        submitter: str,
        ctx: WorkflowContext,
        batch_id: int | None = None,
    ) -> tuple[FactChange, Plan | None, bool]:
        """Insert a pending change inside the caller's transaction.

        ``proposed`` and ``submitter`` must already be validated and
        normalized. Nothing is committed, logged or notified here.

        Returns:
            The change, the fact's plan, and whether it was auto-approved.
        """
        fact = await facts_repo(tx).get_fact(fact_id)
        if fact is None or not fact.is_active:
            raise NotFound(f"Fact {fact_id} not found", details={"fact_id": fact_id})

        changes = changes_repo(tx)
        if await changes.has_pending(fact_id):
            raise AlreadyPending(
                f"Fact {fact_id} already has a pending change", details={"fact_id": fact_id}
            )
        change = await changes.add_pending(
            fact_id=fact_id,
            proposed=proposed,
            submitted_by=submitter,
            submitted_at=ctx.now,
            batch_id=batch_id,
        )
        await AuditRecorder(audit_sink(tx)).change_added(change)

        plan = await plans_repo(tx).get_plan(fact.plan_id)
        auto = (
            ctx.auto_approve_self_owned
            and batch_id is None
            and plan is not None
            and same_login(plan.owner_login, plan.editor_login)
        )
        if auto and plan is not None:
            change, plan = await self._approve_in_tx(
                tx, change.change_id, normalize_login(plan.owner_login), ctx
            )
        return change, plan, auto

    # ------------------------------------------------------------------ #
    # Review                                                             #
    # ------------------------------------------------------------------ #

    async def approve(
        self,
        change_id: int,
        reviewer: str,
        suppress_email: bool = False,
        context: WorkflowContext | None = None,
    ) -> FactChange:
        """Approve a pending change and apply its values to the fact.

        Raises:
            ValidationError: Blank reviewer.
            NotFound: Unknown change (or its fact vanished).
            InvalidState: The change is no longer pending.
        """
        ctx = context or self.context()
        login = _require_login(reviewer, "reviewer")

        async def _work(tx: UnitOfWork) -> tuple[FactChange, Plan | None]:
            return await self._approve_in_tx(tx, change_id, login, ctx)

        change, plan = await run_in_uow(self._uow, _work)
        record_change_transition("approved", change, login)

        if not suppress_email:
            await self._notifier.send(
                NotificationKind.APPROVED,
                _review_recipient(change, plan),
                _notification_context(change, plan),
            )
        return change

    async def reject(
        self,
        change_id: int,
        reviewer: str,
        reason: str | None,
        suppress_email: bool = False,
        context: WorkflowContext | None = None,
    ) -> FactChange:
        """Reject a pending change; the fact is never touched.

        Raises:
            ValidationError: Blank reason (checked first) or blank reviewer.
            NotFound: Unknown change.
            InvalidState: The change is no longer pending.
        """
        if reason is None or not reason.strip():
            raise ValidationError("A reject reason is required", details={"change_id": change_id})
        ctx = context or self.context()
        login = _require_login(reviewer, "reviewer")

        async def _work(tx: UnitOfWork) -> tuple[FactChange, Plan | None]:
            changes = changes_repo(tx)
            current = await _load_pending(changes, change_id)
            rejected = await changes.mark_reviewed(
                change_id,
                status=ApprovalStatus.REJECTED,
                reviewed_by=login,
                reviewed_at=ctx.now,
                reject_reason=reason.strip(),
            )
            await AuditRecorder(audit_sink(tx)).change_reviewed(rejected)
            return rejected, await _plan_for_fact(tx, current.fact_id)

        change, plan = await run_in_uow(self._uow, _work)
        record_change_transition("rejected", change, login)

        if not suppress_email:
            await self._notifier.send(
                NotificationKind.REJECTED,
                _review_recipient(change, plan),
                _notification_context(change, plan),
            )
        return change

    async def _approve_in_tx(
        self, tx: Any, change_id: int, reviewer: str, ctx: WorkflowContext
    ) -> tuple[FactChange, Plan | None]:
        changes = changes_repo(tx)
        facts = facts_repo(tx)
        current = await _load_pending(changes, change_id)

        fact = await facts.get_fact(current.fact_id)
        if fact is None:
            raise NotFound(
                f"Fact {current.fact_id} not found", details={"fact_id": current.fact_id}
            )
        plan = await plans_repo(tx).get_plan(fact.plan_id)
        year = fact.period.year if fact.period is not None else (plan.year if plan else None)
        # Plan-year lock before any fact row lock, the same order as a recompute pass.
        if year is not None:
            await facts.lock_plan_year(fact.plan_id, year)

        diffs = await facts.apply_values(
            current.fact_id, current.proposed, changed_by=reviewer, changed_at=ctx.now
        )
        approved = await changes.mark_reviewed(
            change_id,
            status=ApprovalStatus.APPROVED,
            reviewed_by=reviewer,
            reviewed_at=ctx.now,
        )
        audit = AuditRecorder(audit_sink(tx))
        await audit.fact_modified(
            current.fact_id, diffs, changed_by=reviewer, changed_at=ctx.now
        )
        await audit.change_reviewed(approved)

        if year is not None:
            await recompute_in_tx(
                tx,
                fact.plan_id,
                year,
                ctx.now,
                grace_months=ctx.due_grace_months,
                tolerance=ctx.tolerance,
            )
        return approved, plan


async def _load_pending(changes: Any, change_id: int) -> FactChange:
    current = await changes.get(change_id, for_update=True)
    if current is None:
        raise NotFound(f"Change {change_id} not found", details={"change_id": change_id})
    if not current.is_pending:
        raise InvalidState(
            f"Change {change_id} is {current.approval_status.value}, not pending",
            details={"change_id": change_id, "status": current.approval_status.value},
        )
    return current


async def _plan_for_fact(tx: Any, fact_id: int) -> Plan | None:
    fact = await facts_repo(tx).get_fact(fact_id)
    if fact is None:
        return None
    return await plans_repo(tx).get_plan(fact.plan_id)


def _review_recipient(change: FactChange, plan: Plan | None) -> str:
    """Editor login when the plan has one, else the submitter."""
    if plan is not None and normalize_login(plan.editor_login):
        return normalize_login(plan.editor_login)
    return change.submitted_by


def _notification_context(change: FactChange, plan: Plan | None) -> dict[str, Any]:
    p = change.proposed
    return {
        "change_id": change.change_id,
        "fact_id": change.fact_id,
        "kpi_id": plan.kpi_id if plan is not None else None,
        "plan_id": plan.plan_id if plan is not None else None,
        "year": plan.year if plan is not None else None,
        "actual": str(p.actual) if p.actual is not None else None,
        "target": str(p.target) if p.target is not None else None,
        "forecast": str(p.forecast) if p.forecast is not None else None,
        "submitted_by": change.submitted_by,
        "reviewed_by": change.reviewed_by,
        "reject_reason": change.reject_reason,
    }


__all__ = ["FactChangeLedger", "record_change_transition"]
