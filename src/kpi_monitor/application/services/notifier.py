# src/kpi_monitor/application/services/notifier.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Fire-and-forget notification dispatch.

Purpose:
    Wrap a ``NotificationSink`` so that workflow operations can announce
    events after commit without ever failing because of delivery problems.

Layer:
    application/services

Notes:
    Failures (``NotificationFailure`` or anything else a sink raises) are
    logged at ERROR with the traceback and counted in
    ``kpi_notification_failures_total``; they never propagate.
"""

from __future__ import annotations

from collections.abc import Mapping
from contextlib import suppress
from typing import Any

from kpi_monitor.domain.enums.approval import NotificationKind
from kpi_monitor.domain.interfaces.gateways.notification_sink import NotificationSink
from kpi_monitor.domain.services.logins import normalize_login
from kpi_monitor.infrastructure.logging.logger import get_json_logger
from kpi_monitor.infrastructure.observability.metrics import get_notification_failures_total

logger = get_json_logger(__name__)


class Notifier:
    """Best-effort notification dispatcher."""

    def __init__(self, sink: NotificationSink) -> None:
        self._sink = sink

    async def send(
        self,
        kind: NotificationKind,
        recipient: str | None,
        context: Mapping[str, Any] | None = None,
    ) -> bool:
        """Hand one event to the sink.

        Args:
            kind: Event kind.
            recipient: Login of the recipient; normalized before delivery.
            context: Event payload (ids, values, reasons).

        Returns:
            True when the sink accepted the event, False when it failed or no
            recipient could be resolved.
        """
        payload = dict(context or {})
        login = normalize_login(recipient)
        if not login:
            logger.warning(
                "notification_skipped_no_recipient",
                extra={"extra": {"kind": kind.value, **payload}},
            )
            return False
        try:
            await self._sink.notify(kind, login, payload)
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "notification_failed",
                exc_info=True,
                extra={
                    "extra": {
                        "kind": kind.value,
                        "recipient": login,
                        "reason": type(exc).__name__,
                        **payload,
                    }
                },
            )
            with suppress(Exception):
                get_notification_failures_total().labels(kind=kind.value).inc()
            return False
        return True


__all__ = ["Notifier"]
