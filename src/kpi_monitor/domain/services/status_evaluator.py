# src/kpi_monitor/domain/services/status_evaluator.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Status evaluator for KPI facts.

Purpose:
    Turn one period's measurement (actual, target, forecast), its due-ness and
    the plan's trend direction into a categorical health status.

Layer:
    domain/services

Notes:
    - Pure domain logic:
        * No logging.
        * No persistence or gateways.
    - ``evaluate`` returns ``None`` when the stored status must be left as-is
      (no actual yet and the period is not due).
    - The tolerance is an absolute epsilon so decimal rounding noise never
      flips a status.
"""

from __future__ import annotations

import calendar
from datetime import UTC, date, datetime, time
from decimal import Decimal
from typing import Final

from kpi_monitor.domain.entities.kpi_fact import Period
from kpi_monitor.domain.enums.kpi_status import KpiStatus, TrendDirection

DEFAULT_TOLERANCE: Final[Decimal] = Decimal("0.0001")


def meets(
    value: Decimal,
    reference: Decimal,
    direction: TrendDirection,
    tolerance: Decimal = DEFAULT_TOLERANCE,
) -> bool:
    """Return True when ``value`` reaches ``reference`` in the given direction.

    Args:
        value: Observed value (usually the actual).
        reference: Value to judge against (target or forecast).
        direction: Whether higher or lower values are better.
        tolerance: Absolute epsilon applied in the value's favour.
    """
    if direction is TrendDirection.ASCENDING:
        return value >= reference - tolerance
    return value <= reference + tolerance


def evaluate(
    actual: Decimal | None,
    target: Decimal | None,
    forecast: Decimal | None,
    is_due: bool,
    direction: TrendDirection,
    tolerance: Decimal = DEFAULT_TOLERANCE,
) -> KpiStatus | None:
    """Evaluate a period's status.

    Priority order:
        1. No actual: ``DATA_MISSING`` once due, otherwise ``None`` (unchanged).
        2. Actual vs target.
        3. Actual vs forecast, when no target exists.
        4. ``NEEDS_ATTENTION`` when there is nothing to judge against.

    Args:
        actual: Actual value for the period.
        target: Target value for the period.
        forecast: Forecast value for the period.
        is_due: Whether an actual is expected by now.
        direction: Plan trend direction.
        tolerance: Absolute comparison epsilon.

    Returns:
        The evaluated status, or ``None`` when the stored status must be kept.
    """
    if actual is None:
        return KpiStatus.DATA_MISSING if is_due else None

    if target is not None:
        return KpiStatus.ON_TARGET if meets(actual, target, direction, tolerance) else KpiStatus.BEHIND

    if forecast is not None:
        return KpiStatus.ON_TARGET if meets(actual, forecast, direction, tolerance) else KpiStatus.BEHIND

    return KpiStatus.NEEDS_ATTENTION


def add_months(moment: datetime, months: int) -> datetime:
    """Shift a datetime by whole months, clamping the day to the target month."""
    index = moment.month - 1 + months
    year = moment.year + index // 12
    month = index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def period_end_utc(period: Period) -> datetime:
    """Return the last instant (23:59:59 UTC) of a period.

    Resolution order: explicit ``end_date``, then the month end of
    ``month_num``, then the quarter end of ``quarter_num``, then December 31.
    """
    if period.end_date is not None:
        end = period.end_date
    elif period.month_num is not None:
        end = date(period.year, period.month_num, calendar.monthrange(period.year, period.month_num)[1])
    elif period.quarter_num is not None:
        month = period.quarter_num * 3
        end = date(period.year, month, calendar.monthrange(period.year, month)[1])
    else:
        end = date(period.year, 12, 31)
    return datetime.combine(end, time(23, 59, 59), tzinfo=UTC)


def is_due(period: Period | None, now_utc: datetime, grace_months: int = 1) -> bool:
    """Return True once ``now_utc`` is at or past the period end plus grace.

    Args:
        period: Period to check; ``None`` is never due.
        now_utc: Reference time (naive values are treated as UTC).
        grace_months: Grace interval in whole months after the period end.
    """
    if period is None:
        return False
    if now_utc.tzinfo is None:
        now_utc = now_utc.replace(tzinfo=UTC)
    return now_utc >= add_months(period_end_utc(period), grace_months)


__all__ = [
    "DEFAULT_TOLERANCE",
    "add_months",
    "evaluate",
    "is_due",
    "meets",
    "period_end_utc",
]
