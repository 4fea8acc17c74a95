# src/kpi_monitor/application/use_cases/fact_changes/inbox.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Reviewer inbox queries.

Purpose:
    Count and list change requests visible to a reviewer: administrators see
    every change; other reviewers see changes to facts of plans they own.

Layer:
    application/use_cases
"""

from __future__ import annotations

from collections.abc import Sequence

from kpi_monitor.application.repos import changes_repo
from kpi_monitor.application.uow import UnitOfWork
from kpi_monitor.domain.entities.fact_change import FactChange
from kpi_monitor.domain.enums.approval import ApprovalStatus
from kpi_monitor.domain.exceptions.workflow import ValidationError
from kpi_monitor.domain.services.logins import normalize_login


class ReviewInboxUseCase:
    """Read-only queries backing a reviewer's inbox."""

    def __init__(self, *, uow: UnitOfWork) -> None:
        self._uow = uow

    @staticmethod
    def _scope(reviewer: str, is_admin: bool) -> str | None:
        if is_admin:
            return None
        login = normalize_login(reviewer)
        if not login:
            raise ValidationError("reviewer login is required", details={"role": "reviewer"})
        return login

    async def pending_count(self, reviewer: str, is_admin: bool) -> int:
        """Return how many pending changes await this reviewer."""
        owner = self._scope(reviewer, is_admin)
        async with self._uow as tx:
            return await changes_repo(tx).count_by_status(
                ApprovalStatus.PENDING, owner_login=owner
            )

    async def list_changes(
        self,
        status: ApprovalStatus,
        reviewer: str,
        is_admin: bool,
        limit: int = 200,
    ) -> Sequence[FactChange]:
        """Return changes in ``status`` visible to the reviewer, newest first."""
        if limit <= 0:
            raise ValidationError("limit must be positive", details={"limit": limit})
        owner = self._scope(reviewer, is_admin)
        async with self._uow as tx:
            return await changes_repo(tx).list_by_status(status, owner_login=owner, limit=limit)


__all__ = ["ReviewInboxUseCase"]
