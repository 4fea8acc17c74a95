# src/kpi_monitor/domain/interfaces/gateways/notification_sink.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Notification sink port.

Purpose:
    Fire-and-forget delivery contract for workflow events. Delivery mechanics
    (mail templates, transports) live outside the core.

Layer:
    domain/interfaces/gateways

Notes:
    Implementations may raise ``NotificationFailure``; callers in the
    application layer log and swallow it so a failed notification never fails
    the workflow operation that triggered it.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Protocol

from kpi_monitor.domain.enums.approval import NotificationKind


class NotificationSink(Protocol):
    """Workflow notification sink."""

    async def notify(
        self,
        kind: NotificationKind,
        recipient: str,
        context: Mapping[str, Any],
    ) -> None:
        """Hand one event off for delivery to ``recipient``."""


__all__ = ["NotificationSink"]
