# src/kpi_monitor/application/use_cases/status/recompute_plan_year.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Recompute stored KPI statuses for a plan-year.

Purpose:
    Re-evaluate every active fact of a plan-year and persist the resulting
    status when it differs from what is stored.

Layer:
    application/use_cases

Notes:
    - Facts are processed in chronological period order. No period depends on
      another; the order only makes runs reproducible.
    - The trend direction is inferred once per pass from the plan-year's
      target series.
    - A per-plan-year lock serializes concurrent passes; it is released when
      the enclosing transaction ends.
    - Passes are idempotent: with no data change, a second pass writes
      nothing.
"""

from __future__ import annotations

import time
from contextlib import suppress
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from kpi_monitor.application.repos import facts_repo
from kpi_monitor.application.schemas.dto.fact_changes import RecomputeResultDTO
from kpi_monitor.application.uow import UnitOfWork, run_in_uow
from kpi_monitor.domain.enums.kpi_status import KpiStatus
from kpi_monitor.domain.exceptions.workflow import NotFound
from kpi_monitor.domain.services.direction_inferencer import infer_direction
from kpi_monitor.domain.services.status_evaluator import DEFAULT_TOLERANCE, evaluate, is_due
from kpi_monitor.infrastructure.logging.logger import get_json_logger
from kpi_monitor.infrastructure.observability.metrics import get_recompute_duration_seconds

logger = get_json_logger(__name__)


async def recompute_in_tx(
    tx: Any,
    plan_id: int,
    year: int,
    now: datetime,
    *,
    grace_months: int = 1,
    tolerance: Decimal = DEFAULT_TOLERANCE,
) -> RecomputeResultDTO:
    """Run one recomputation pass inside the caller's transaction.

    Args:
        tx: Active UnitOfWork transaction.
        plan_id: Plan to recompute.
        year: Plan year.
        now: Reference time for due-ness.
        grace_months: Grace interval after each period end.
        tolerance: Absolute comparison epsilon.

    Returns:
        Counts of evaluated, updated and unchanged facts.
    """
    start = time.perf_counter()
    repo = facts_repo(tx)
    await repo.lock_plan_year(plan_id, year)

    facts = await repo.list_for_plan_year(plan_id, year)
    direction = infer_direction(f.target_value for f in facts)

    updated = 0
    for fact in facts:
        status = evaluate(
            fact.actual_value,
            fact.target_value,
            fact.forecast_value,
            is_due(fact.period, now, grace_months),
            direction,
            tolerance,
        )
        if status is None or status is fact.status_code:
            continue
        await repo.set_status(fact.fact_id, status)
        updated += 1

    with suppress(Exception):
        get_recompute_duration_seconds().observe(time.perf_counter() - start)

    result = RecomputeResultDTO(
        plan_id=plan_id,
        year=year,
        direction=direction,
        evaluated=len(facts),
        updated=updated,
        unchanged=len(facts) - updated,
    )
    logger.info(
        "plan_year_recomputed",
        extra={"extra": result.model_dump(mode="json")},
    )
    return result


class RecomputePlanYearUseCase:
    """Recompute and persist statuses for every fact of a plan-year.

    Args:
        uow:
            UnitOfWork used to open the transactional scope of each pass.
        grace_months:
            Grace interval after a period's end before a missing actual is
            reported as ``DATA_MISSING``.
        tolerance:
            Absolute epsilon for comparisons.
    """

    def __init__(
        self,
        *,
        uow: UnitOfWork,
        grace_months: int = 1,
        tolerance: Decimal = DEFAULT_TOLERANCE,
    ) -> None:
        self._uow = uow
        self._grace_months = grace_months
        self._tolerance = tolerance

    async def execute(
        self, *, plan_id: int, year: int, now: datetime | None = None
    ) -> RecomputeResultDTO:
        """Run a pass in its own transaction and commit it."""
        at = now or datetime.now(UTC)

        async def _work(tx: UnitOfWork) -> RecomputeResultDTO:
            return await recompute_in_tx(
                tx,
                plan_id,
                year,
                at,
                grace_months=self._grace_months,
                tolerance=self._tolerance,
            )

        return await run_in_uow(self._uow, _work)


class ComputeAndSetUseCase:
    """Evaluate and persist the status of a single fact.

    The fact is evaluated exactly as in a full plan-year pass: the direction
    comes from the whole plan-year target series.
    """

    def __init__(
        self,
        *,
        uow: UnitOfWork,
        grace_months: int = 1,
        tolerance: Decimal = DEFAULT_TOLERANCE,
    ) -> None:
        self._uow = uow
        self._grace_months = grace_months
        self._tolerance = tolerance

    async def execute(self, *, fact_id: int, now: datetime | None = None) -> KpiStatus | None:
        """Evaluate one fact and store its status when it changed.

        Returns:
            The evaluated status, or ``None`` when the stored status is kept.

        Raises:
            NotFound: If the fact does not exist.
        """
        at = now or datetime.now(UTC)

        async def _work(tx: UnitOfWork) -> KpiStatus | None:
            repo = facts_repo(tx)
            fact = await repo.get_fact(fact_id)
            if fact is None:
                raise NotFound(f"Fact {fact_id} not found", details={"fact_id": fact_id})
            year = fact.period.year if fact.period is not None else at.year
            await repo.lock_plan_year(fact.plan_id, year)

            direction = infer_direction(await repo.list_targets_for_plan_year(fact.plan_id, year))
            status = evaluate(
                fact.actual_value,
                fact.target_value,
                fact.forecast_value,
                is_due(fact.period, at, self._grace_months),
                direction,
                self._tolerance,
            )
            if status is not None and status is not fact.status_code:
                await repo.set_status(fact.fact_id, status)
            return status

        return await run_in_uow(self._uow, _work)


__all__ = ["ComputeAndSetUseCase", "RecomputePlanYearUseCase", "recompute_in_tx"]
