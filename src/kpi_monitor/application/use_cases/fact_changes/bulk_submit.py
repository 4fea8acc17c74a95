# src/kpi_monitor/application/use_cases/fact_changes/bulk_submit.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Bulk submission of fact changes for a plan-year.

Purpose:
    Validate uploaded period rows against a plan-year, create one batch for
    the rows that survive and submit each of them through the ledger, then
    send a single consolidated notification to the plan owner.

Layer:
    application/use_cases

Notes:
    A row is skipped (and counted) when:
        * its period number is out of range for the plan frequency;
        * no active fact exists for that period in the plan-year;
        * it proposes nothing;
        * the fact already has a pending change (or an earlier row in the
          same upload already targets it);
        * it proposes a target while target edits are locked;
        * the edit window is enforced and it proposes an actual or forecast
          for a period outside the window.
    When nothing survives, no batch is created.

    Screening, the batch header and every child change share one
    transaction, so a failure leaves nothing behind. A row losing the
    pending-uniqueness race to a concurrent submission rolls the attempt
    back; the upload is then screened again and that row is skipped as
    ``ALREADY_PENDING``.
"""

from __future__ import annotations

from dataclasses import dataclass

from kpi_monitor.application.context import WorkflowContext
from kpi_monitor.application.repos import changes_repo, facts_repo, plans_repo
from kpi_monitor.application.schemas.dto.fact_changes import (
    BulkSkippedRowDTO,
    BulkSkipReason,
    BulkSubmitRequestDTO,
    BulkSubmitResultDTO,
    BulkSubmitRowDTO,
)
from kpi_monitor.application.services.notifier import Notifier
from kpi_monitor.application.uow import UnitOfWork, run_in_uow
from kpi_monitor.application.use_cases.fact_changes.batches import (
    BatchCoordinator,
    record_batch_transition,
)
from kpi_monitor.application.use_cases.fact_changes.ledger import (
    FactChangeLedger,
    record_change_transition,
)
from kpi_monitor.domain.entities.fact_change import FactChange, FactChangeBatch, ProposedValues
from kpi_monitor.domain.entities.kpi_fact import Fact, Plan
from kpi_monitor.domain.enums.approval import NotificationKind
from kpi_monitor.domain.enums.kpi_status import Frequency
from kpi_monitor.domain.exceptions.workflow import AlreadyPending, NotFound, ValidationError
from kpi_monitor.domain.services.logins import normalize_login
from kpi_monitor.domain.services.period_edit_policy import EditWindow, compute_edit_window
from kpi_monitor.infrastructure.logging.logger import get_json_logger

logger = get_json_logger(__name__)

_MAX_ATTEMPTS = 3


@dataclass(frozen=True)
class _Submission:
    plan: Plan
    batch: FactChangeBatch | None
    changes: list[FactChange]
    skipped: list[BulkSkippedRowDTO]


class BulkSubmitFactChangesUseCase:
    """Submit many period rows of one plan-year as a single batch."""

    def __init__(
        self,
        *,
        uow: UnitOfWork,
        ledger: FactChangeLedger,
        coordinator: BatchCoordinator,
        notifier: Notifier,
    ) -> None:
        self._uow = uow
        self._ledger = ledger
        self._coordinator = coordinator
        self._notifier = notifier

    async def execute(
        self, req: BulkSubmitRequestDTO, context: WorkflowContext | None = None
    ) -> BulkSubmitResultDTO:
        """Validate, batch and submit the request rows.

        Raises:
            ValidationError: Blank submitter.
            NotFound: Unknown or inactive plan.
            AlreadyPending: Concurrent submissions kept winning every attempt.
        """
        ctx = context or self._ledger.context()
        submitter = normalize_login(req.submitted_by)
        if not submitter:
            raise ValidationError("submitter login is required", details={"role": "submitter"})

        attempt = 1
        while True:
            try:
                outcome = await run_in_uow(
                    self._uow, lambda tx: self._submit_in_tx(tx, req, submitter, ctx)
                )
                break
            except AlreadyPending as exc:
                if attempt >= _MAX_ATTEMPTS:
                    raise
                logger.info(
                    "bulk_submit_retry",
                    extra={"extra": {"plan_id": req.plan_id, "attempt": attempt, **exc.details}},
                )
                attempt += 1

        plan, skipped = outcome.plan, outcome.skipped
        if outcome.batch is None:
            logger.info(
                "bulk_submit_nothing_to_submit",
                extra={"extra": {"plan_id": plan.plan_id, "skipped_count": len(skipped)}},
            )
            return BulkSubmitResultDTO(skipped_count=len(skipped), skipped=skipped)

        batch = outcome.batch
        record_batch_transition("submitted", batch, submitter)
        for change in outcome.changes:
            record_change_transition("submitted", change, submitter)
        change_ids = [c.change_id for c in outcome.changes]

        await self._notifier.send(
            NotificationKind.PENDING_APPROVAL,
            plan.owner_login,
            _batch_context(
                plan, req.year, batch.batch_id, submitter, len(change_ids), len(skipped)
            ),
        )
        logger.info(
            "bulk_submit_completed",
            extra={
                "extra": {
                    "batch_id": batch.batch_id,
                    "plan_id": plan.plan_id,
                    "created_count": len(change_ids),
                    "skipped_count": len(skipped),
                    "attempts": attempt,
                }
            },
        )
        return BulkSubmitResultDTO(
            batch_id=batch.batch_id,
            created_count=len(change_ids),
            skipped_count=len(skipped),
            change_ids=change_ids,
            skipped=skipped,
        )

    async def _submit_in_tx(
        self, tx: UnitOfWork, req: BulkSubmitRequestDTO, submitter: str, ctx: WorkflowContext
    ) -> _Submission:
        plan = await plans_repo(tx).get_plan(req.plan_id)
        if plan is None or not plan.is_active:
            raise NotFound(f"Plan {req.plan_id} not found", details={"plan_id": req.plan_id})
        facts = await facts_repo(tx).list_for_plan_year(plan.plan_id, req.year)
        changes = changes_repo(tx)
        pending = {f.fact_id for f in facts if await changes.has_pending(f.fact_id)}

        frequency = plan.frequency or Frequency.MONTHLY
        window = (
            compute_edit_window(frequency, req.year, ctx.now, ctx.business_timezone)
            if ctx.edit_window_enforced
            else None
        )
        by_period = {
            f.period.period_number: f
            for f in facts
            if f.period is not None and f.period.period_number is not None
        }

        accepted: list[tuple[BulkSubmitRowDTO, Fact]] = []
        skipped: list[BulkSkippedRowDTO] = []
        for row in req.rows:
            screened = _screen(row, frequency, by_period, pending, window, ctx)
            if isinstance(screened, BulkSkipReason):
                skipped.append(BulkSkippedRowDTO(period_number=row.period_number, reason=screened))
                continue
            accepted.append((row, screened))
            pending.add(screened.fact_id)

        if not accepted:
            return _Submission(plan=plan, batch=None, changes=[], skipped=skipped)

        numbers = [row.period_number for row, _ in accepted]
        batch = await self._coordinator.create_batch_in_tx(
            tx,
            kpi_id=plan.kpi_id,
            plan_id=plan.plan_id,
            year=req.year,
            frequency=frequency,
            period_min=min(numbers),
            period_max=max(numbers),
            submitted_by=submitter,
            created_count=len(accepted),
            skipped_count=len(skipped),
            context=ctx,
        )
        created: list[FactChange] = []
        for row, fact in accepted:
            change, _, _ = await self._ledger.submit_in_tx(
                tx,
                fact.fact_id,
                ProposedValues(actual=row.actual, target=row.target, forecast=row.forecast),
                submitter,
                ctx,
                batch.batch_id,
            )
            created.append(change)
        return _Submission(plan=plan, batch=batch, changes=created, skipped=skipped)


def _screen(
    row: BulkSubmitRowDTO,
    frequency: Frequency,
    by_period: dict[int, Fact],
    pending: set[int],
    window: EditWindow | None,
    ctx: WorkflowContext,
) -> BulkSkipReason | Fact:
    """Return the skip reason for a row, or the fact it targets."""
    if not 1 <= row.period_number <= frequency.periods_per_year:
        return BulkSkipReason.PERIOD_OUT_OF_RANGE
    fact = by_period.get(row.period_number)
    if fact is None:
        return BulkSkipReason.NO_FACT
    if row.is_empty:
        return BulkSkipReason.EMPTY_ROW
    if fact.fact_id in pending:
        return BulkSkipReason.ALREADY_PENDING
    if row.target is not None and not ctx.target_edit_unlocked:
        return BulkSkipReason.TARGET_LOCKED
    if window is not None and not window.allows(
        row.period_number, actual=row.actual is not None, forecast=row.forecast is not None
    ):
        return BulkSkipReason.OUTSIDE_EDIT_WINDOW
    return fact


def _batch_context(
    plan: Plan, year: int, batch_id: int, submitter: str, created: int, skipped: int
) -> dict[str, object]:
    return {
        "batch_id": batch_id,
        "kpi_id": plan.kpi_id,
        "plan_id": plan.plan_id,
        "year": year,
        "submitted_by": submitter,
        "created_count": created,
        "skipped_count": skipped,
    }


__all__ = ["BulkSubmitFactChangesUseCase"]
