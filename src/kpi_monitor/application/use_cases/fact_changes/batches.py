# src/kpi_monitor/application/use_cases/fact_changes/batches.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Batch coordinator.

Purpose:
    Create change batches and review them as a whole: every still-pending
    child is approved or rejected through the ledger, the per-child results
    are folded into a ``BatchOutcome``, the batch header is marked and one
    consolidated notification is sent to the batch submitter.

Layer:
    application/use_cases

Notes:
    - Each child resolves in its own transaction. A child failing with
      ``ValidationError``, ``NotFound`` or ``InvalidState`` is recorded in the
      outcome and the review continues. Any other error (``PersistenceFailure``
      included) aborts the review like a cancellation does.
    - Children resolved individually before the batch review are left
      untouched and reported as ``already_resolved``.
    - If the review is aborted or the calling task is cancelled, children
      resolved so far stay resolved, the header stays ``pending`` and the
      error propagates. A later review picks up the remaining pending
      children; ``get_progress`` reports the true counts in between.
"""

from __future__ import annotations

from contextlib import suppress
from typing import Any

from kpi_monitor.application.context import WorkflowContext
from kpi_monitor.application.repos import audit_sink, batches_repo, changes_repo
from kpi_monitor.application.services.audit_recorder import AuditRecorder
from kpi_monitor.application.services.notifier import Notifier
from kpi_monitor.application.uow import UnitOfWork, run_in_uow
from kpi_monitor.application.use_cases.fact_changes.ledger import FactChangeLedger
from kpi_monitor.domain.entities.fact_change import (
    BatchOutcome,
    BatchProgress,
    ChildResult,
    FactChange,
    FactChangeBatch,
)
from kpi_monitor.domain.enums.approval import ApprovalStatus, NotificationKind
from kpi_monitor.domain.enums.kpi_status import Frequency
from kpi_monitor.domain.exceptions.workflow import InvalidState, NotFound, ValidationError
from kpi_monitor.domain.services.logins import normalize_login
from kpi_monitor.infrastructure.logging.logger import get_json_logger
from kpi_monitor.infrastructure.observability.metrics import get_workflow_transitions_total

logger = get_json_logger(__name__)

#: Per-child errors recorded in the outcome; anything else aborts the review.
_CHILD_FAILURES = (ValidationError, NotFound, InvalidState)


class BatchCoordinator:
    """Creation, review and progress of change batches.

    Args:
        uow:
            UnitOfWork shared with ``ledger``; used sequentially, one scope at
            a time.
        ledger:
            Ledger used to resolve each child change.
        notifier:
            Best-effort notification dispatcher.
    """

    def __init__(self, *, uow: UnitOfWork, ledger: FactChangeLedger, notifier: Notifier) -> None:
        self._uow = uow
        self._ledger = ledger
        self._notifier = notifier

    async def create_batch(
        self,
        kpi_id: int,
        plan_id: int,
        year: int,
        is_monthly: bool,
        period_min: int | None,
        period_max: int | None,
        submitted_by: str,
        created_count: int,
        skipped_count: int,
        context: WorkflowContext | None = None,
    ) -> int:
        """Create a pending batch header and return its id.

        Raises:
            ValidationError: Blank submitter or negative counts.
        """
        ctx = context or self._ledger.context()
        login = normalize_login(submitted_by)
        if not login:
            raise ValidationError("submitter login is required", details={"role": "submitter"})
        if created_count < 0 or skipped_count < 0:
            raise ValidationError(
                "Batch counts must not be negative",
                details={"created_count": created_count, "skipped_count": skipped_count},
            )

        async def _work(tx: UnitOfWork) -> FactChangeBatch:
            return await self.create_batch_in_tx(
                tx,
                kpi_id=kpi_id,
                plan_id=plan_id,
                year=year,
                frequency=Frequency.MONTHLY if is_monthly else Frequency.QUARTERLY,
                period_min=period_min,
                period_max=period_max,
                submitted_by=login,
                created_count=created_count,
                skipped_count=skipped_count,
                context=ctx,
            )

        batch = await run_in_uow(self._uow, _work)
        record_batch_transition("submitted", batch, login)
        return batch.batch_id

    async def create_batch_in_tx(
        self,
        tx: Any,
        *,
        kpi_id: int,
        plan_id: int,
        year: int,
        frequency: Frequency,
        period_min: int | None,
        period_max: int | None,
        submitted_by: str,
        created_count: int,
        skipped_count: int,
        context: WorkflowContext,
    ) -> FactChangeBatch:
        """Insert and audit a pending batch header inside the caller's transaction."""
        batch = await batches_repo(tx).add(
            kpi_id=kpi_id,
            plan_id=plan_id,
            year=year,
            frequency=frequency,
            period_min=period_min,
            period_max=period_max,
            row_count=created_count,
            skipped_count=skipped_count,
            submitted_by=submitted_by,
            submitted_at=context.now,
        )
        await AuditRecorder(audit_sink(tx)).batch_added(batch)
        return batch

    async def approve_batch(
        self, batch_id: int, reviewer: str, context: WorkflowContext | None = None
    ) -> BatchOutcome:
        """Approve every still-pending child, then the batch.

        Raises:
            NotFound: Unknown batch.
            InvalidState: The batch is not pending.
        """
        return await self._review(batch_id, reviewer, ApprovalStatus.APPROVED, None, context)

    async def reject_batch(
        self,
        batch_id: int,
        reviewer: str,
        reason: str | None,
        context: WorkflowContext | None = None,
    ) -> BatchOutcome:
        """Reject every still-pending child, then the batch.

        Raises:
            ValidationError: Blank reason.
            NotFound: Unknown batch.
            InvalidState: The batch is not pending.
        """
        if reason is None or not reason.strip():
            raise ValidationError("A reject reason is required", details={"batch_id": batch_id})
        return await self._review(
            batch_id, reviewer, ApprovalStatus.REJECTED, reason.strip(), context
        )

    async def get_progress(self, batch_id: int) -> BatchProgress:
        """Return the true child counts of a batch.

        Raises:
            NotFound: Unknown batch.
        """
        async with self._uow as tx:
            batch = await batches_repo(tx).get(batch_id)
            if batch is None:
                raise NotFound(f"Batch {batch_id} not found", details={"batch_id": batch_id})
            counts = await changes_repo(tx).count_for_batch(batch_id)
        return BatchProgress(
            batch_id=batch_id,
            approval_status=batch.approval_status,
            pending=counts.get(ApprovalStatus.PENDING, 0),
            approved=counts.get(ApprovalStatus.APPROVED, 0),
            rejected=counts.get(ApprovalStatus.REJECTED, 0),
        )

    async def _review(
        self,
        batch_id: int,
        reviewer: str,
        decision: ApprovalStatus,
        reason: str | None,
        context: WorkflowContext | None,
    ) -> BatchOutcome:
        ctx = context or self._ledger.context()
        login = normalize_login(reviewer)
        if not login:
            raise ValidationError("reviewer login is required", details={"role": "reviewer"})

        async with self._uow as tx:
            batch = await batches_repo(tx).get(batch_id)
            if batch is None:
                raise NotFound(f"Batch {batch_id} not found", details={"batch_id": batch_id})
            if not batch.is_pending:
                raise InvalidState(
                    f"Batch {batch_id} is {batch.approval_status.value}, not pending",
                    details={"batch_id": batch_id, "status": batch.approval_status.value},
                )
            counts = await changes_repo(tx).count_for_batch(batch_id)
            pending = await changes_repo(tx).list_for_batch(batch_id, status=ApprovalStatus.PENDING)

        already_resolved = counts.get(ApprovalStatus.APPROVED, 0) + counts.get(
            ApprovalStatus.REJECTED, 0
        )
        results: list[ChildResult] = []
        for child in pending:
            results.append(await self._resolve_child(child, login, decision, reason, ctx))
        outcome = BatchOutcome.fold(
            batch_id=batch_id,
            decision=decision,
            expected_count=batch.row_count,
            already_resolved=already_resolved,
            results=results,
        )

        async def _finish(tx: UnitOfWork) -> FactChangeBatch:
            reviewed = await batches_repo(tx).mark_reviewed(
                batch_id,
                status=decision,
                reviewed_by=login,
                reviewed_at=ctx.now,
                reject_reason=reason,
            )
            await AuditRecorder(audit_sink(tx)).batch_resolved(reviewed, outcome)
            return reviewed

        reviewed = await run_in_uow(self._uow, _finish)
        record_batch_transition(decision.value, reviewed, login)
        logger.info(
            "batch_resolved",
            extra={
                "extra": {
                    "batch_id": batch_id,
                    "decision": decision.value,
                    "expected_count": outcome.expected_count,
                    "resolved_count": outcome.resolved_count,
                    "failed_count": outcome.failed_count,
                    "already_resolved": outcome.already_resolved,
                    "discrepancy": outcome.discrepancy,
                }
            },
        )

        await self._notifier.send(
            NotificationKind.BATCH_RESOLVED,
            reviewed.submitted_by,
            {
                "batch_id": batch_id,
                "kpi_id": reviewed.kpi_id,
                "plan_id": reviewed.plan_id,
                "year": reviewed.year,
                "decision": decision.value,
                "reviewed_by": login,
                "reject_reason": reason,
                "resolved_count": outcome.resolved_count,
                "failed_count": outcome.failed_count,
                "already_resolved": outcome.already_resolved,
            },
        )
        return outcome

    async def _resolve_child(
        self,
        child: FactChange,
        reviewer: str,
        decision: ApprovalStatus,
        reason: str | None,
        ctx: WorkflowContext,
    ) -> ChildResult:
        try:
            if decision is ApprovalStatus.APPROVED:
                await self._ledger.approve(
                    child.change_id, reviewer, suppress_email=True, context=ctx
                )
            else:
                await self._ledger.reject(
                    child.change_id, reviewer, reason, suppress_email=True, context=ctx
                )
        except _CHILD_FAILURES as exc:
            logger.warning(
                "batch_child_failed",
                extra={
                    "extra": {
                        "batch_id": child.batch_id,
                        "change_id": child.change_id,
                        "code": exc.code,
                        "reason": exc.message,
                    }
                },
            )
            return ChildResult(
                change_id=child.change_id,
                fact_id=child.fact_id,
                resolved=False,
                error_code=exc.code,
                error_message=exc.message,
            )
        return ChildResult(change_id=child.change_id, fact_id=child.fact_id, resolved=True)


def record_batch_transition(transition: str, batch: FactChangeBatch, actor: str) -> None:
    logger.info(
        "batch_transition",
        extra={"extra": {"transition": transition, "batch_id": batch.batch_id, "actor": actor}},
    )
    with suppress(Exception):
        get_workflow_transitions_total().labels(entity="batch", transition=transition).inc()


__all__ = ["BatchCoordinator", "record_batch_transition"]
