# src/kpi_monitor/domain/enums/approval.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Approval-workflow enums.

Purpose:
    Define the stored approval status of change requests and batches, the
    boundary-level change state sum type, audit actions and notification kinds.

Layer:
    domain/enums
"""

from __future__ import annotations

from enum import Enum


class ApprovalStatus(str, Enum):
    """Stored approval status for a change request or batch."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ChangeState(str, Enum):
    """Change history of a fact as seen by callers.

    ``NO_CHANGE`` stands for the absence of any change row; storage keeps the
    other three as nullable text for compatibility.
    """

    NO_CHANGE = "no_change"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"

    @classmethod
    def from_stored(cls, raw: str | None) -> ChangeState:
        """Map a stored approval status (or NULL) onto the boundary state."""
        if raw is None or not raw.strip():
            return cls.NO_CHANGE
        return cls(raw.strip().lower())


class AuditAction(str, Enum):
    """Audit log action values."""

    ADDED = "Added"
    MODIFIED = "Modified"
    DELETED = "Deleted"


class NotificationKind(str, Enum):
    """Workflow events the core asks the notification sink to deliver."""

    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    REJECTED = "rejected"
    BATCH_RESOLVED = "batch_resolved"


__all__ = ["ApprovalStatus", "AuditAction", "ChangeState", "NotificationKind"]
