# src/kpi_monitor/adapters/repositories/fact_change_batches_repository.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Fact-change batch repository (SQLAlchemy).

Purpose:
    Persist batch headers and their review stamps. Implements the
    FactChangeBatchesRepository protocol.

Layer:
    adapters/repositories
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from kpi_monitor.adapters.repositories.base_repository import BaseRepository
from kpi_monitor.adapters.repositories.kpi_facts_repository import parse_frequency
from kpi_monitor.domain.entities.fact_change import FactChangeBatch
from kpi_monitor.domain.enums.approval import ApprovalStatus
from kpi_monitor.domain.enums.kpi_status import Frequency
from kpi_monitor.domain.exceptions.workflow import InvalidState, NotFound
from kpi_monitor.infrastructure.database.models.kpi import KpiFactChangeBatch


class SqlAlchemyFactChangeBatchesRepository(BaseRepository[KpiFactChangeBatch]):
    """SQLAlchemy-backed repository for change batches."""

    _MODEL_NAME = "kpi_fact_change_batches"

    def __init__(self, session: AsyncSession) -> None:
        """Initialize the repository."""
        super().__init__(session=session)

    @staticmethod
    def _to_domain(row: KpiFactChangeBatch) -> FactChangeBatch:
        return FactChangeBatch(
            batch_id=row.batch_id,
            kpi_id=row.kpi_id,
            plan_id=row.plan_id,
            year=row.year,
            frequency=parse_frequency(row.frequency) or Frequency.MONTHLY,
            period_min=row.period_min,
            period_max=row.period_max,
            row_count=row.row_count,
            skipped_count=row.skipped_count,
            submitted_by=row.submitted_by,
            submitted_at=BaseRepository.as_utc(row.submitted_at),  # type: ignore[arg-type]
            approval_status=ApprovalStatus(row.approval_status or ApprovalStatus.PENDING.value),
            reviewed_by=row.reviewed_by,
            reviewed_at=BaseRepository.as_utc(row.reviewed_at),
            reject_reason=row.reject_reason,
        )

    async def add(
        self,
        *,
        kpi_id: int,
        plan_id: int,
        year: int,
        frequency: Frequency,
        period_min: int | None,
        period_max: int | None,
        row_count: int,
        skipped_count: int,
        submitted_by: str,
        submitted_at: datetime,
    ) -> FactChangeBatch:
        """Insert a pending batch header."""
        async with self._instrumented("add"):
            row = KpiFactChangeBatch(
                kpi_id=kpi_id,
                plan_id=plan_id,
                year=year,
                frequency=frequency.value,
                period_min=period_min,
                period_max=period_max,
                row_count=row_count,
                skipped_count=skipped_count,
                submitted_by=submitted_by,
                submitted_at=submitted_at,
                approval_status=ApprovalStatus.PENDING.value,
            )
            self._session.add(row)
            await self._session.flush()
            return self._to_domain(row)

    async def get(self, batch_id: int, *, for_update: bool = False) -> FactChangeBatch | None:
        """Return a batch header, optionally locking the row."""
        async with self._instrumented("get"):
            stmt = (
                select(KpiFactChangeBatch)
                .where(KpiFactChangeBatch.batch_id == batch_id)
                .execution_options(populate_existing=True)
            )
            if for_update:
                stmt = stmt.with_for_update()
            row = await self.fetch_optional(stmt)
            return self._to_domain(row) if row is not None else None

    async def mark_reviewed(
        self,
        batch_id: int,
        *,
        status: ApprovalStatus,
        reviewed_by: str,
        reviewed_at: datetime,
        reject_reason: str | None = None,
    ) -> FactChangeBatch:
        """Conditionally move a pending batch to approved/rejected.

        Raises:
            NotFound: If the batch does not exist.
            InvalidState: If the batch is no longer pending.
        """
        async with self._instrumented("mark_reviewed"):
            res = await self._session.execute(
                update(KpiFactChangeBatch)
                .where(
                    KpiFactChangeBatch.batch_id == batch_id,
                    KpiFactChangeBatch.approval_status == ApprovalStatus.PENDING.value,
                )
                .values(
                    approval_status=status.value,
                    reviewed_by=reviewed_by,
                    reviewed_at=reviewed_at,
                    reject_reason=reject_reason,
                )
                .execution_options(synchronize_session=False)
            )
            current = await self.get(batch_id)
            if current is None:
                raise NotFound(f"Batch {batch_id} not found", details={"batch_id": batch_id})
            if res.rowcount == 0:
                raise InvalidState(
                    f"Batch {batch_id} is {current.approval_status.value}, not pending",
                    details={"batch_id": batch_id, "status": current.approval_status.value},
                )
            return current


__all__ = ["SqlAlchemyFactChangeBatchesRepository"]
