# src/kpi_monitor/adapters/repositories/fact_changes_repository.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Fact-change repository (SQLAlchemy).

Purpose:
    Persist change requests and run the queries the approval workflow needs.
    Implements the FactChangesRepository protocol.

Layer:
    adapters/repositories

Notes:
    - ``add_pending`` relies on the partial unique index
      ``uq_kpi_fact_changes_pending_fact``; a violation surfaces as
      ``AlreadyPending`` and leaves the session needing a rollback, which the
      owning UnitOfWork performs.
    - ``mark_reviewed`` is a conditional UPDATE guarded on
      ``approval_status = 'pending'``.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import datetime
from typing import Any

from sqlalchemy import ColumnElement, Select, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from kpi_monitor.adapters.repositories.base_repository import BaseRepository
from kpi_monitor.adapters.repositories.kpi_facts_repository import parse_stored_status
from kpi_monitor.domain.entities.fact_change import FactChange, ProposedValues
from kpi_monitor.domain.enums.approval import ApprovalStatus
from kpi_monitor.domain.exceptions.workflow import AlreadyPending, InvalidState, NotFound
from kpi_monitor.domain.services.logins import normalize_login
from kpi_monitor.infrastructure.database.models.kpi import KpiFact, KpiFactChange, KpiYearPlan

#: Markers identifying a pending-uniqueness violation across drivers.
_PENDING_VIOLATION_MARKERS = (
    "uq_kpi_fact_changes_pending_fact",
    "kpi_fact_changes.fact_id",
)


def owned_by(login: str) -> ColumnElement[bool]:
    """Return a predicate matching plans whose owner normalizes to ``login``.

    Owner logins may be stored bare, as ``DOMAIN\\login`` or as ``login@host``.
    """
    owner = func.lower(KpiYearPlan.owner_login)
    return or_(
        owner == login,
        owner.endswith("\\" + login, autoescape=True),
        owner.startswith(login + "@", autoescape=True),
    )


class SqlAlchemyFactChangesRepository(BaseRepository[KpiFactChange]):
    """SQLAlchemy-backed repository for fact change requests."""

    _MODEL_NAME = "kpi_fact_changes"

    def __init__(self, session: AsyncSession) -> None:
        """Initialize the repository."""
        super().__init__(session=session)

    # ------------------------------------------------------------------ #
    # Mapping                                                            #
    # ------------------------------------------------------------------ #

    @staticmethod
    def _to_domain(row: KpiFactChange) -> FactChange:
        return FactChange(
            change_id=row.change_id,
            fact_id=row.fact_id,
            proposed=ProposedValues(
                actual=row.proposed_actual,
                target=row.proposed_target,
                forecast=row.proposed_forecast,
                status_code=parse_stored_status(
                    row.proposed_status_code, source=f"kpi_fact_changes:{row.change_id}"
                ),
            ),
            submitted_by=row.submitted_by,
            submitted_at=row.submitted_at,
            approval_status=ApprovalStatus(row.approval_status or ApprovalStatus.PENDING.value),
            reviewed_by=row.reviewed_by,
            reviewed_at=row.reviewed_at,
            reject_reason=row.reject_reason,
            batch_id=row.batch_id,
        )

    def _scoped(self, stmt: Select[Any], owner_login: str | None) -> Select[Any]:
        if owner_login is None:
            return stmt
        return (
            stmt.join(KpiFact, KpiFact.fact_id == KpiFactChange.fact_id)
            .join(KpiYearPlan, KpiYearPlan.plan_id == KpiFact.plan_id)
            .where(owned_by(normalize_login(owner_login)))
        )

    # ------------------------------------------------------------------ #
    # Public API                                                         #
    # ------------------------------------------------------------------ #

    async def has_pending(self, fact_id: int) -> bool:
        """Return True iff a pending change exists for the fact."""
        async with self._instrumented("has_pending"):
            stmt = select(func.count()).where(
                KpiFactChange.fact_id == fact_id,
                KpiFactChange.approval_status == ApprovalStatus.PENDING.value,
            )
            res = await self._session.execute(stmt)
            return int(res.scalar_one()) > 0

    async def latest_for_fact(self, fact_id: int) -> FactChange | None:
        """Return the most recently submitted change for a fact."""
        async with self._instrumented("latest_for_fact"):
            stmt = select(KpiFactChange).where(KpiFactChange.fact_id == fact_id)
            stmt = self.order_by_latest(stmt, KpiFactChange.submitted_at, KpiFactChange.change_id)
            row = await self.fetch_optional(stmt.limit(1))
            return self._to_domain(row) if row is not None else None

    async def add_pending(
        self,
        *,
        fact_id: int,
        proposed: ProposedValues,
        submitted_by: str,
        submitted_at: datetime,
        batch_id: int | None = None,
    ) -> FactChange:
        """Insert a pending change; the partial unique index makes this atomic.

        Raises:
            AlreadyPending: If a pending change already exists for the fact.
        """
        async with self._instrumented("add_pending"):
            row = KpiFactChange(
                fact_id=fact_id,
                proposed_actual=proposed.actual,
                proposed_target=proposed.target,
                proposed_forecast=proposed.forecast,
                proposed_status_code=proposed.status_code.value if proposed.status_code else None,
                submitted_by=submitted_by,
                submitted_at=submitted_at,
                approval_status=ApprovalStatus.PENDING.value,
                batch_id=batch_id,
            )
            self._session.add(row)
            try:
                await self._session.flush()
            except IntegrityError as exc:
                message = str(exc.orig) if exc.orig is not None else str(exc)
                if any(marker in message for marker in _PENDING_VIOLATION_MARKERS):
                    raise AlreadyPending(
                        f"Fact {fact_id} already has a pending change",
                        details={"fact_id": fact_id},
                    ) from exc
                raise
            return self._to_domain(row)

    async def get(self, change_id: int, *, for_update: bool = False) -> FactChange | None:
        """Return a change by id, optionally locking the row."""
        async with self._instrumented("get"):
            stmt = (
                select(KpiFactChange)
                .where(KpiFactChange.change_id == change_id)
                .execution_options(populate_existing=True)
            )
            if for_update:
                stmt = stmt.with_for_update()
            row = await self.fetch_optional(stmt)
            return self._to_domain(row) if row is not None else None

    async def mark_reviewed(
        self,
        change_id: int,
        *,
        status: ApprovalStatus,
        reviewed_by: str,
        reviewed_at: datetime,
        reject_reason: str | None = None,
    ) -> FactChange:
        """Conditionally move a pending change to approved/rejected.

        Raises:
            NotFound: If the change does not exist.
            InvalidState: If the change is no longer pending.
        """
        async with self._instrumented("mark_reviewed"):
            stmt = (
                update(KpiFactChange)
                .where(
                    KpiFactChange.change_id == change_id,
                    KpiFactChange.approval_status == ApprovalStatus.PENDING.value,
                )
                .values(
                    approval_status=status.value,
                    reviewed_by=reviewed_by,
                    reviewed_at=reviewed_at,
                    reject_reason=reject_reason,
                )
                .execution_options(synchronize_session=False)
            )
            res = await self._session.execute(stmt)
            if res.rowcount == 0:
                current = await self.get(change_id)
                if current is None:
                    raise NotFound(
                        f"Change {change_id} not found", details={"change_id": change_id}
                    )
                raise InvalidState(
                    f"Change {change_id} is {current.approval_status.value}, not pending",
                    details={"change_id": change_id, "status": current.approval_status.value},
                )
            updated = await self.get(change_id)
            if updated is None:  # pragma: no cover
                raise NotFound(f"Change {change_id} not found", details={"change_id": change_id})
            return updated

    async def list_for_batch(
        self, batch_id: int, *, status: ApprovalStatus | None = None
    ) -> Sequence[FactChange]:
        """Return a batch's children ordered by change id."""
        async with self._instrumented("list_for_batch"):
            stmt = select(KpiFactChange).where(KpiFactChange.batch_id == batch_id)
            if status is not None:
                stmt = stmt.where(KpiFactChange.approval_status == status.value)
            rows = await self.fetch_all(stmt.order_by(KpiFactChange.change_id.asc()))
            return [self._to_domain(r) for r in rows]

    async def count_for_batch(self, batch_id: int) -> Mapping[ApprovalStatus, int]:
        """Return child counts per approval status."""
        async with self._instrumented("count_for_batch"):
            stmt = (
                select(KpiFactChange.approval_status, func.count())
                .where(KpiFactChange.batch_id == batch_id)
                .group_by(KpiFactChange.approval_status)
            )
            res = await self._session.execute(stmt)
            counts = {s: 0 for s in ApprovalStatus}
            for raw, n in res.all():
                counts[ApprovalStatus(raw or ApprovalStatus.PENDING.value)] += int(n)
            return counts

    async def count_by_status(
        self, status: ApprovalStatus, *, owner_login: str | None = None
    ) -> int:
        """Count changes in a status, optionally scoped to a plan owner."""
        async with self._instrumented("count_by_status"):
            stmt = select(func.count(KpiFactChange.change_id)).where(
                KpiFactChange.approval_status == status.value
            )
            res = await self._session.execute(self._scoped(stmt, owner_login))
            return int(res.scalar_one())

    async def list_by_status(
        self,
        status: ApprovalStatus,
        *,
        owner_login: str | None = None,
        limit: int = 200,
    ) -> Sequence[FactChange]:
        """List changes in a status, newest first."""
        async with self._instrumented("list_by_status"):
            stmt = select(KpiFactChange).where(KpiFactChange.approval_status == status.value)
            stmt = self._scoped(stmt, owner_login)
            stmt = self.order_by_latest(stmt, KpiFactChange.submitted_at, KpiFactChange.change_id)
            rows = await self.fetch_all(stmt.limit(limit))
            return [self._to_domain(r) for r in rows]


__all__ = ["SqlAlchemyFactChangesRepository", "owned_by"]
