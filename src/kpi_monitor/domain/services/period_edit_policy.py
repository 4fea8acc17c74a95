# src/kpi_monitor/domain/services/period_edit_policy.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Period edit-window policy.

Purpose:
    Decide which periods of a plan-year currently accept actual and forecast
    values, evaluated in the business time zone.

Layer:
    domain/services

Rules:
    - Actual: the current period (current year only) plus the last closed
      period while still within one month of its close, even across a year
      boundary.
    - Forecast: current period through year end for the current year, every
      period for future years, nothing for past years.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import UTC, datetime
from zoneinfo import ZoneInfo

from kpi_monitor.domain.enums.kpi_status import Frequency
from kpi_monitor.domain.services.status_evaluator import add_months


@dataclass(frozen=True, slots=True)
class EditWindow:
    """Period numbers currently open for editing.

    Attributes:
        frequency:
            Granularity the period numbers refer to.
        actual:
            Period numbers accepting actual values.
        forecast:
            Period numbers accepting forecast values.
    """

    frequency: Frequency
    actual: frozenset[int]
    forecast: frozenset[int]

    def allows(self, period_number: int, *, actual: bool, forecast: bool) -> bool:
        """Return True when the requested columns are editable for a period."""
        if actual and period_number not in self.actual:
            return False
        return not (forecast and period_number not in self.forecast)


def _local_now(now_utc: datetime, tz: ZoneInfo) -> datetime:
    if now_utc.tzinfo is None:
        now_utc = now_utc.replace(tzinfo=UTC)
    return now_utc.astimezone(tz)


def _period_end(year: int, last_month: int, tz: ZoneInfo) -> datetime:
    day = calendar.monthrange(year, last_month)[1]
    return datetime(year, last_month, day, 23, 59, 59, tzinfo=tz)


def compute_edit_window(
    frequency: Frequency,
    year: int,
    now_utc: datetime,
    tz_name: str = "Asia/Riyadh",
) -> EditWindow:
    """Compute the edit window for a plan-year.

    Args:
        frequency: Monthly or quarterly granularity.
        year: Plan year being edited.
        now_utc: Reference time.
        tz_name: IANA time zone the business calendar runs in.

    Returns:
        The open period numbers for actuals and forecasts.
    """
    tz = ZoneInfo(tz_name)
    now = _local_now(now_utc, tz)
    months_per_period = 1 if frequency is Frequency.MONTHLY else 3
    count = frequency.periods_per_year
    current = (now.month - 1) // months_per_period + 1

    actual: set[int] = set()
    if year == now.year:
        actual.add(current)

    if current == 1:
        closed_year, closed = now.year - 1, count
    else:
        closed_year, closed = now.year, current - 1
    closed_end = _period_end(closed_year, closed * months_per_period, tz)
    if closed_year == year and now <= add_months(closed_end, 1):
        actual.add(closed)

    if year == now.year:
        forecast = set(range(current, count + 1))
    elif year > now.year:
        forecast = set(range(1, count + 1))
    else:
        forecast = set()

    return EditWindow(frequency=frequency, actual=frozenset(actual), forecast=frozenset(forecast))


def compute_monthly_window(
    year: int, now_utc: datetime, tz_name: str = "Asia/Riyadh"
) -> EditWindow:
    """Return the monthly edit window (period numbers 1-12)."""
    return compute_edit_window(Frequency.MONTHLY, year, now_utc, tz_name)


def compute_quarterly_window(
    year: int, now_utc: datetime, tz_name: str = "Asia/Riyadh"
) -> EditWindow:
    """Return the quarterly edit window (period numbers 1-4)."""
    return compute_edit_window(Frequency.QUARTERLY, year, now_utc, tz_name)


__all__ = [
    "EditWindow",
    "compute_edit_window",
    "compute_monthly_window",
    "compute_quarterly_window",
]
