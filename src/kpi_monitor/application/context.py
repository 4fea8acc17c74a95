# src/kpi_monitor/application/context.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Per-operation workflow context.

Purpose:
    Carry the configuration values a workflow operation depends on, read once
    when the operation starts and passed explicitly to use cases instead of
    being looked up from process-wide state.

Layer:
    application
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal

from kpi_monitor.config.settings import Settings


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True, slots=True)
class WorkflowContext:
    """Snapshot of workflow toggles for a single operation.

    Attributes:
        target_edit_unlocked:
            Whether proposals may carry a new target value.
        now:
            Reference time for stamps, due-ness and edit windows.
        auto_approve_self_owned:
            Approve immediately when the plan owner is also its editor.
        edit_window_enforced:
            Skip bulk rows outside the period edit window.
        due_grace_months:
            Grace interval after a period end before data is missing.
        tolerance:
            Absolute epsilon for status comparisons.
        business_timezone:
            IANA zone of the business calendar.
    """

    target_edit_unlocked: bool = False
    now: datetime = field(default_factory=_utcnow)
    auto_approve_self_owned: bool = True
    edit_window_enforced: bool = True
    due_grace_months: int = 1
    tolerance: Decimal = Decimal("0.0001")
    business_timezone: str = "Asia/Riyadh"

    @classmethod
    def from_settings(cls, settings: Settings, *, now: datetime | None = None) -> WorkflowContext:
        """Build a context from validated settings."""
        return cls(
            target_edit_unlocked=settings.target_edit_unlocked,
            now=now or _utcnow(),
            auto_approve_self_owned=settings.auto_approve_self_owned,
            edit_window_enforced=settings.edit_window_enforced,
            due_grace_months=settings.due_grace_months,
            tolerance=settings.status_tolerance,
            business_timezone=settings.business_timezone,
        )


__all__ = ["WorkflowContext"]
