# src/kpi_monitor/adapters/gateways/logging_notification_sink.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Logging notification sink.

Purpose:
    Default NotificationSink adapter: records each workflow event as a
    structured log line. Deployments that deliver mail replace it with their
    own adapter; delivery mechanics stay outside the core.

Layer:
    adapters/gateways
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from kpi_monitor.domain.enums.approval import NotificationKind
from kpi_monitor.domain.exceptions.workflow import NotificationFailure
from kpi_monitor.infrastructure.logging.logger import get_json_logger

logger = get_json_logger(__name__)


class LoggingNotificationSink:
    """NotificationSink that logs events instead of delivering them."""

    async def notify(
        self,
        kind: NotificationKind,
        recipient: str,
        context: Mapping[str, Any],
    ) -> None:
        """Log one notification event.

        Raises:
            NotificationFailure: If no recipient is given.
        """
        if not recipient:
            raise NotificationFailure(
                f"No recipient for {kind.value} notification", details={"kind": kind.value}
            )
        logger.info(
            "notification",
            extra={"extra": {"kind": kind.value, "recipient": recipient, **dict(context)}},
        )


__all__ = ["LoggingNotificationSink"]
