# src/kpi_monitor/domain/interfaces/repositories/kpi_facts_repository.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""KPI facts repository interface.

Purpose:
    Define read access to fact rows and plans, plus the only two write paths
    the workflow core has on facts: applying approved values and storing a
    recomputed status.

Layer:
    domain/interfaces/repositories

Notes:
    Implementations live in the adapters layer and must translate driver
    errors into ``PersistenceFailure``. Repositories never commit; the use
    case owning the UnitOfWork does.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import datetime
from decimal import Decimal
from typing import Any, Protocol

from kpi_monitor.domain.entities.fact_change import ProposedValues
from kpi_monitor.domain.entities.kpi_fact import Fact, Plan
from kpi_monitor.domain.enums.kpi_status import KpiStatus


class KpiFactsRepository(Protocol):
    """Protocol for repositories managing KPI fact rows."""

    async def get_fact(self, fact_id: int) -> Fact | None:
        """Return a fact (with its period loaded), or None when unknown."""

    async def list_for_plan_year(self, plan_id: int, year: int) -> Sequence[Fact]:
        """Return active facts of a plan-year, ordered by period start ascending.

        Ordering:
            period.start_date ASC NULLS LAST, fact_id ASC
        """

    async def list_targets_for_plan_year(self, plan_id: int, year: int) -> Sequence[Decimal | None]:
        """Return the target series of a plan-year in the same order as ``list_for_plan_year``."""

    async def apply_values(
        self,
        fact_id: int,
        values: ProposedValues,
        *,
        changed_by: str,
        changed_at: datetime,
    ) -> Mapping[str, tuple[Any, Any]]:
        """Copy every non-null proposed value onto the fact.

        Returns:
            Mapping of column name to ``(old, new)`` for columns whose value
            actually changed (audit fields included).
        """

    async def set_status(self, fact_id: int, status: KpiStatus) -> None:
        """Persist a recomputed status for one fact (status column only)."""

    async def lock_plan_year(self, plan_id: int, year: int) -> None:
        """Serialize recomputation of a plan-year for the current transaction."""


class KpiPlansRepository(Protocol):
    """Protocol for read access to KPI year plans."""

    async def get_plan(self, plan_id: int) -> Plan | None:
        """Return a plan, or None when unknown."""


__all__ = ["KpiFactsRepository", "KpiPlansRepository"]
