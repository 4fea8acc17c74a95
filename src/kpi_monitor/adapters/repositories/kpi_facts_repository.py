# src/kpi_monitor/adapters/repositories/kpi_facts_repository.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""KPI facts and plans repository (SQLAlchemy).

Purpose:
    Read fact rows (with their periods) and plans, apply approved values to a
    fact, store recomputed statuses and serialize plan-year recomputation.
    Implements the KpiFactsRepository and KpiPlansRepository protocols.

Layer:
    adapters/repositories

Notes:
    - Fact ordering is ``period.start_date ASC NULLS LAST, fact_id ASC``.
    - The plan-year lock is a PostgreSQL transaction-scoped advisory lock; on
      other dialects it is a no-op.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import contains_eager, joinedload

from kpi_monitor.adapters.repositories.base_repository import BaseRepository
from kpi_monitor.domain.entities.fact_change import ProposedValues
from kpi_monitor.domain.entities.kpi_fact import Fact, Period, Plan
from kpi_monitor.domain.enums.kpi_status import Frequency, KpiStatus
from kpi_monitor.domain.exceptions.workflow import NotFound
from kpi_monitor.infrastructure.database.models.kpi import DimPeriod, KpiFact, KpiYearPlan
from kpi_monitor.infrastructure.logging.logger import get_json_logger

logger = get_json_logger(__name__)

#: Proposed-value field -> fact column.
_VALUE_COLUMNS: dict[str, str] = {
    "actual": "actual_value",
    "target": "target_value",
    "forecast": "forecast_value",
    "status_code": "status_code",
}


def _to_period(row: DimPeriod) -> Period:
    return Period(
        period_id=row.period_id,
        year=row.year,
        quarter_num=row.quarter_num,
        month_num=row.month_num,
        start_date=row.start_date,
        end_date=row.end_date,
    )


def parse_frequency(raw: str | None) -> Frequency | None:
    """Map stored frequency text (``monthly``, ``M``, ``Quarterly``...) to the enum."""
    value = (raw or "").strip().lower()
    if value.startswith("m"):
        return Frequency.MONTHLY
    if value.startswith("q"):
        return Frequency.QUARTERLY
    return None


def parse_stored_status(raw: str | None, *, source: str) -> KpiStatus | None:
    """Map a stored status code to the enum; unknown legacy codes read as None."""
    try:
        return KpiStatus.parse(raw)
    except ValueError:
        logger.warning(
            "unknown_status_code",
            extra={"extra": {"source": source, "status_code": raw}},
        )
        return None


class SqlAlchemyKpiFactsRepository(BaseRepository[KpiFact]):
    """SQLAlchemy-backed repository for KPI facts."""

    _MODEL_NAME = "kpi_facts"

    def __init__(self, session: AsyncSession) -> None:
        """Initialize the repository."""
        super().__init__(session=session)

    @staticmethod
    def _to_domain(row: KpiFact, *, with_period: bool = True) -> Fact:
        return Fact(
            fact_id=row.fact_id,
            kpi_id=row.kpi_id,
            period_id=row.period_id,
            plan_id=row.plan_id,
            actual_value=row.actual_value,
            target_value=row.target_value,
            forecast_value=row.forecast_value,
            budget=row.budget,
            status_code=parse_stored_status(row.status_code, source=f"kpi_facts:{row.fact_id}"),
            created_by=row.created_by,
            created_at=BaseRepository.as_utc(row.created_at),
            last_changed_by=row.last_changed_by,
            last_changed_at=BaseRepository.as_utc(row.last_changed_at),
            is_active=row.is_active,
            period=_to_period(row.period) if with_period else None,
        )

    async def get_fact(self, fact_id: int) -> Fact | None:
        """Return a fact with its period, or None when unknown."""
        async with self._instrumented("get_fact"):
            stmt = (
                select(KpiFact)
                .options(joinedload(KpiFact.period))
                .where(KpiFact.fact_id == fact_id)
            )
            row = await self.fetch_optional(stmt)
            return self._to_domain(row) if row is not None else None

    async def list_for_plan_year(self, plan_id: int, year: int) -> Sequence[Fact]:
        """Return active facts for a plan-year in chronological period order."""
        async with self._instrumented("list_for_plan_year"):
            stmt = (
                select(KpiFact)
                .join(KpiFact.period)
                .options(contains_eager(KpiFact.period))
                .where(
                    KpiFact.plan_id == plan_id,
                    DimPeriod.year == year,
                    KpiFact.is_active.is_(True),
                )
            )
            stmt = self.order_by_chronological(stmt, DimPeriod.start_date, KpiFact.fact_id)
            rows = await self.fetch_all(stmt)
            return [self._to_domain(r) for r in rows]

    async def list_targets_for_plan_year(self, plan_id: int, year: int) -> Sequence[Decimal | None]:
        """Return the plan-year target series in chronological period order."""
        async with self._instrumented("list_targets_for_plan_year"):
            stmt = (
                select(KpiFact.target_value)
                .join(KpiFact.period)
                .where(
                    KpiFact.plan_id == plan_id,
                    DimPeriod.year == year,
                    KpiFact.is_active.is_(True),
                )
            )
            stmt = self.order_by_chronological(stmt, DimPeriod.start_date, KpiFact.fact_id)
            res = await self._session.execute(stmt)
            return list(res.scalars().all())

    async def apply_values(
        self,
        fact_id: int,
        values: ProposedValues,
        *,
        changed_by: str,
        changed_at: datetime,
    ) -> Mapping[str, tuple[Any, Any]]:
        """Copy non-null proposed values onto a fact and return column diffs.

        Raises:
            NotFound: If the fact does not exist.
        """
        async with self._instrumented("apply_values"):
            stmt = select(KpiFact).where(KpiFact.fact_id == fact_id).with_for_update()
            row = await self.fetch_optional(stmt)
            if row is None:
                raise NotFound(f"Fact {fact_id} not found", details={"fact_id": fact_id})

            diffs: dict[str, tuple[Any, Any]] = {}
            for field_name, column in _VALUE_COLUMNS.items():
                new = getattr(values, field_name)
                if new is None:
                    continue
                if isinstance(new, KpiStatus):
                    new = new.value
                old = getattr(row, column)
                if old != new:
                    diffs[column] = (old, new)
                    setattr(row, column, new)

            if row.last_changed_by != changed_by:
                diffs["last_changed_by"] = (row.last_changed_by, changed_by)
            diffs["last_changed_at"] = (self.as_utc(row.last_changed_at), changed_at)
            row.last_changed_by = changed_by
            row.last_changed_at = changed_at

            await self._session.flush()
            return diffs

    async def set_status(self, fact_id: int, status: KpiStatus) -> None:
        """Persist the status column only."""
        async with self._instrumented("set_status"):
            await self._session.execute(
                update(KpiFact).where(KpiFact.fact_id == fact_id).values(status_code=status.value)
            )

    async def lock_plan_year(self, plan_id: int, year: int) -> None:
        """Take a transaction-scoped advisory lock on PostgreSQL."""
        async with self._instrumented("lock_plan_year"):
            if self._session.get_bind().dialect.name != "postgresql":
                return
            await self._session.execute(select(func.pg_advisory_xact_lock(plan_id, year)))


class SqlAlchemyKpiPlansRepository(BaseRepository[KpiYearPlan]):
    """SQLAlchemy-backed repository for KPI year plans (read-only)."""

    _MODEL_NAME = "kpi_year_plans"

    async def get_plan(self, plan_id: int) -> Plan | None:
        """Return a plan, or None when unknown."""
        async with self._instrumented("get_plan"):
            row = await self.fetch_optional(
                select(KpiYearPlan).where(KpiYearPlan.plan_id == plan_id)
            )
            if row is None:
                return None
            return Plan(
                plan_id=row.plan_id,
                kpi_id=row.kpi_id,
                year=row.year,
                frequency=parse_frequency(row.frequency),
                priority=row.priority,
                owner_login=row.owner_login,
                editor_login=row.editor_login,
                is_active=row.is_active,
            )


__all__ = [
    "SqlAlchemyKpiFactsRepository",
    "SqlAlchemyKpiPlansRepository",
    "parse_frequency",
    "parse_stored_status",
]
