# src/kpi_monitor/domain/exceptions/workflow.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Fact-change workflow exceptions.

Purpose:
    Provide the typed failure taxonomy for the approval workflow and the
    status engine so the presentation layer can render actionable messages.

Layer:
    domain/exceptions

Notes:
    - Adapters are responsible for translating driver/transport errors into
      these types (``PersistenceFailure`` and ``AlreadyPending``).
    - ``NotificationFailure`` is raised by notification sinks and is always
      swallowed (after logging) by the application layer.
"""

from __future__ import annotations

from kpi_monitor.domain.exceptions.base import DomainError


class AlreadyPending(DomainError):
    """Raised when a fact already has a pending change request."""

    code = "ALREADY_PENDING"


class NotFound(DomainError):
    """Raised when a change, batch, fact or plan id cannot be resolved."""

    code = "NOT_FOUND"


class InvalidState(DomainError):
    """Raised when approving/rejecting an item that is no longer pending."""

    code = "INVALID_STATE"


class ValidationError(DomainError):
    """Raised for missing reject reasons or malformed proposed values."""

    code = "VALIDATION_ERROR"


class NotificationFailure(DomainError):
    """Raised by notification sinks when a message cannot be handed off."""

    code = "NOTIFICATION_FAILURE"


class PersistenceFailure(DomainError):
    """Raised when a storage round-trip fails."""

    code = "PERSISTENCE_FAILURE"


__all__ = [
    "AlreadyPending",
    "InvalidState",
    "NotFound",
    "NotificationFailure",
    "PersistenceFailure",
    "ValidationError",
]
