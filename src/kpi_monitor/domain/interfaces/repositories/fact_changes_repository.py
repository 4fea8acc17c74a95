# src/kpi_monitor/domain/interfaces/repositories/fact_changes_repository.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Fact-change and batch repository interfaces.

Purpose:
    Define persistence for change requests and change batches.

Layer:
    domain/interfaces/repositories

Notes:
    - ``add_pending`` must be an atomic conditional insert: a storage-level
      uniqueness constraint on pending rows per fact guards the invariant and
      a violation is surfaced as ``AlreadyPending``.
    - ``mark_reviewed`` must only transition rows that are still pending and
      raise ``InvalidState`` otherwise.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import datetime
from typing import Protocol

from kpi_monitor.domain.entities.fact_change import FactChange, FactChangeBatch, ProposedValues
from kpi_monitor.domain.enums.approval import ApprovalStatus
from kpi_monitor.domain.enums.kpi_status import Frequency


class FactChangesRepository(Protocol):
    """Protocol for repositories managing fact change requests."""

    async def has_pending(self, fact_id: int) -> bool:
        """Return True iff a pending change exists for the fact."""

    async def latest_for_fact(self, fact_id: int) -> FactChange | None:
        """Return the most recently submitted change for a fact, if any."""

    async def add_pending(
        self,
        *,
        fact_id: int,
        proposed: ProposedValues,
        submitted_by: str,
        submitted_at: datetime,
        batch_id: int | None = None,
    ) -> FactChange:
        """Insert a new pending change.

        Raises:
            AlreadyPending: If a pending change already exists for the fact.
        """

    async def get(self, change_id: int, *, for_update: bool = False) -> FactChange | None:
        """Return a change by id, optionally locking the row."""

    async def mark_reviewed(
        self,
        change_id: int,
        *,
        status: ApprovalStatus,
        reviewed_by: str,
        reviewed_at: datetime,
        reject_reason: str | None = None,
    ) -> FactChange:
        """Move a pending change to ``approved`` or ``rejected``.

        Raises:
            InvalidState: If the change is no longer pending.
        """

    async def list_for_batch(
        self, batch_id: int, *, status: ApprovalStatus | None = None
    ) -> Sequence[FactChange]:
        """Return a batch's children, ordered by change id ascending."""

    async def count_for_batch(self, batch_id: int) -> Mapping[ApprovalStatus, int]:
        """Return child counts per approval status for a batch."""

    async def count_by_status(
        self, status: ApprovalStatus, *, owner_login: str | None = None
    ) -> int:
        """Count changes in a status, optionally only for plans owned by a login."""

    async def list_by_status(
        self,
        status: ApprovalStatus,
        *,
        owner_login: str | None = None,
        limit: int = 200,
    ) -> Sequence[FactChange]:
        """List changes in a status, newest submission first."""


class FactChangeBatchesRepository(Protocol):
    """Protocol for repositories managing change batches."""

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
        """Insert a new pending batch header."""

    async def get(self, batch_id: int, *, for_update: bool = False) -> FactChangeBatch | None:
        """Return a batch by id, optionally locking the row."""

    async def mark_reviewed(
        self,
        batch_id: int,
        *,
        status: ApprovalStatus,
        reviewed_by: str,
        reviewed_at: datetime,
        reject_reason: str | None = None,
    ) -> FactChangeBatch:
        """Move a pending batch to ``approved`` or ``rejected``.

        Raises:
            InvalidState: If the batch is no longer pending.
        """


__all__ = ["FactChangeBatchesRepository", "FactChangesRepository"]
