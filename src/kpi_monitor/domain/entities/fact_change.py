# src/kpi_monitor/domain/entities/fact_change.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Fact-change workflow entities.

Purpose:
    Immutable domain representations of change requests, change batches and
    the per-child results produced while reviewing a batch.

Layer:
    domain/entities
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal

from kpi_monitor.domain.enums.approval import ApprovalStatus, ChangeState
from kpi_monitor.domain.enums.kpi_status import Frequency, KpiStatus


@dataclass(frozen=True, slots=True)
class ProposedValues:
    """Values proposed for a fact; ``None`` means "leave the column as-is"."""

    actual: Decimal | None = None
    target: Decimal | None = None
    forecast: Decimal | None = None
    status_code: KpiStatus | None = None

    @property
    def is_empty(self) -> bool:
        """Return True when nothing is proposed."""
        return (
            self.actual is None
            and self.target is None
            and self.forecast is None
            and self.status_code is None
        )


@dataclass(frozen=True, slots=True)
class FactChange:
    """A proposed, reviewable mutation to one fact.

    Attributes:
        change_id:
            Surrogate identifier.
        fact_id:
            Back-reference to the fact; the fact remains the authority.
        proposed:
            Proposed column values.
        submitted_by / submitted_at:
            Normalized submitter login and UTC submission time.
        approval_status:
            Stored lifecycle status.
        reviewed_by / reviewed_at / reject_reason:
            Review stamps, set once the change leaves ``pending``.
        batch_id:
            Owning batch, when the change was created as part of one.
    """

    change_id: int
    fact_id: int
    proposed: ProposedValues
    submitted_by: str
    submitted_at: datetime
    approval_status: ApprovalStatus = ApprovalStatus.PENDING
    reviewed_by: str | None = None
    reviewed_at: datetime | None = None
    reject_reason: str | None = None
    batch_id: int | None = None

    def __post_init__(self) -> None:
        """Validate change invariants."""
        if self.submitted_at.tzinfo is None:
            object.__setattr__(self, "submitted_at", self.submitted_at.replace(tzinfo=UTC))
        if self.reviewed_at is not None and self.reviewed_at.tzinfo is None:
            object.__setattr__(self, "reviewed_at", self.reviewed_at.replace(tzinfo=UTC))
        if self.approval_status is ApprovalStatus.REJECTED and not self.reject_reason:
            raise ValueError("rejected changes must carry a reject_reason")

    @property
    def state(self) -> ChangeState:
        """Return the boundary-level state of this change."""
        return ChangeState(self.approval_status.value)

    @property
    def is_pending(self) -> bool:
        """Return True while the change awaits review."""
        return self.approval_status is ApprovalStatus.PENDING


@dataclass(frozen=True, slots=True)
class FactChangeBatch:
    """A reviewable group of change requests created in one user action."""

    batch_id: int
    kpi_id: int
    plan_id: int
    year: int
    frequency: Frequency
    period_min: int | None
    period_max: int | None
    row_count: int
    skipped_count: int
    submitted_by: str
    submitted_at: datetime
    approval_status: ApprovalStatus = ApprovalStatus.PENDING
    reviewed_by: str | None = None
    reviewed_at: datetime | None = None
    reject_reason: str | None = None

    @property
    def is_pending(self) -> bool:
        """Return True while the batch awaits review."""
        return self.approval_status is ApprovalStatus.PENDING


@dataclass(frozen=True, slots=True)
class ChildResult:
    """Outcome of resolving one child change during a batch review."""

    change_id: int
    fact_id: int
    resolved: bool
    error_code: str | None = None
    error_message: str | None = None


@dataclass(frozen=True, slots=True)
class BatchOutcome:
    """Summary of a batch review, folded from per-child results.

    Attributes:
        batch_id:
            Reviewed batch.
        decision:
            ``APPROVED`` or ``REJECTED``.
        expected_count:
            ``row_count`` recorded when the batch was created.
        resolved:
            Children resolved by this review.
        failed:
            Children whose resolution raised a domain error.
        already_resolved:
            Children resolved individually before the batch review.
    """

    batch_id: int
    decision: ApprovalStatus
    expected_count: int
    resolved: tuple[ChildResult, ...] = field(default_factory=tuple)
    failed: tuple[ChildResult, ...] = field(default_factory=tuple)
    already_resolved: int = 0

    @property
    def resolved_count(self) -> int:
        """Return the number of children resolved by this review."""
        return len(self.resolved)

    @property
    def failed_count(self) -> int:
        """Return the number of children that failed to resolve."""
        return len(self.failed)

    @property
    def discrepancy(self) -> int:
        """Return how many expected children were not resolved by this review."""
        return self.expected_count - self.resolved_count

    @classmethod
    def fold(
        cls,
        *,
        batch_id: int,
        decision: ApprovalStatus,
        expected_count: int,
        already_resolved: int,
        results: tuple[ChildResult, ...] | list[ChildResult],
    ) -> BatchOutcome:
        """Fold per-child results into a summary."""
        return cls(
            batch_id=batch_id,
            decision=decision,
            expected_count=expected_count,
            resolved=tuple(r for r in results if r.resolved),
            failed=tuple(r for r in results if not r.resolved),
            already_resolved=already_resolved,
        )


@dataclass(frozen=True, slots=True)
class BatchProgress:
    """True child counts of a batch, as visible to operators."""

    batch_id: int
    approval_status: ApprovalStatus
    pending: int
    approved: int
    rejected: int

    @property
    def total(self) -> int:
        """Return the number of child change requests in the batch."""
        return self.pending + self.approved + self.rejected


__all__ = [
    "BatchOutcome",
    "BatchProgress",
    "ChildResult",
    "FactChange",
    "FactChangeBatch",
    "ProposedValues",
]
