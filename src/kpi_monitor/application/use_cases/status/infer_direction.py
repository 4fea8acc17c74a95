# src/kpi_monitor/application/use_cases/status/infer_direction.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Infer the trend direction of a plan-year.

Purpose:
    Read a plan-year's period-ordered target series and apply the direction
    heuristic to it.

Layer:
    application/use_cases
"""

from __future__ import annotations

from kpi_monitor.application.repos import facts_repo
from kpi_monitor.application.uow import UnitOfWork
from kpi_monitor.domain.enums.kpi_status import TrendDirection
from kpi_monitor.domain.services.direction_inferencer import infer_direction


class InferDirectionUseCase:
    """Read-only use case returning the inferred direction of a plan-year."""

    def __init__(self, *, uow: UnitOfWork) -> None:
        self._uow = uow

    async def execute(self, *, kpi_id: int, plan_id: int, year: int) -> TrendDirection:
        """Return the inferred direction.

        Args:
            kpi_id: KPI the plan belongs to (plans are KPI x year).
            plan_id: Plan whose targets are read.
            year: Plan year.
        """
        async with self._uow as tx:
            targets = await facts_repo(tx).list_targets_for_plan_year(plan_id, year)
        return infer_direction(targets)


__all__ = ["InferDirectionUseCase"]
