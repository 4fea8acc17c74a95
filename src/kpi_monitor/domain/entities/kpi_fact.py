# src/kpi_monitor/domain/entities/kpi_fact.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""KPI reference entities.

Purpose:
    Immutable domain representations of the read-only reference data the
    workflow core consumes: calendar periods, year plans and fact rows.

Layer:
    domain/entities

Notes:
    The dimensional schema itself is owned elsewhere; these entities only
    carry the fields the approval workflow and status engine read.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal

from kpi_monitor.domain.enums.kpi_status import Frequency, KpiStatus


@dataclass(frozen=True, slots=True)
class Period:
    """Calendar period (year, quarter or month).

    Attributes:
        period_id:
            Surrogate identifier.
        year:
            Calendar year of the period.
        quarter_num:
            Quarter number (1-4) for quarterly rows, else None.
        month_num:
            Month number (1-12) for monthly rows, else None.
        start_date:
            First day of the period, when known.
        end_date:
            Last day of the period, when known.
    """

    period_id: int
    year: int
    quarter_num: int | None = None
    month_num: int | None = None
    start_date: date | None = None
    end_date: date | None = None

    def __post_init__(self) -> None:
        """Validate period invariants."""
        if self.month_num is not None and not 1 <= self.month_num <= 12:
            raise ValueError("month_num must be between 1 and 12")
        if self.quarter_num is not None and not 1 <= self.quarter_num <= 4:
            raise ValueError("quarter_num must be between 1 and 4")

    @property
    def period_number(self) -> int | None:
        """Return the month number for monthly rows, else the quarter number."""
        return self.month_num if self.month_num is not None else self.quarter_num


@dataclass(frozen=True, slots=True)
class Plan:
    """KPI x year plan context (read-only for the workflow core)."""

    plan_id: int
    kpi_id: int
    year: int
    frequency: Frequency | None = None
    priority: int | None = None
    owner_login: str | None = None
    editor_login: str | None = None
    is_active: bool = True


@dataclass(frozen=True, slots=True)
class Fact:
    """One period's KPI measurement for a plan.

    Attributes:
        fact_id:
            Surrogate identifier.
        kpi_id / period_id / plan_id:
            Dimensional keys.
        actual_value / target_value / forecast_value / budget:
            Measurement columns; any may be unset.
        status_code:
            Stored health label, or None when never evaluated.
        period:
            Joined period row, when loaded.
    """

    fact_id: int
    kpi_id: int
    period_id: int
    plan_id: int
    actual_value: Decimal | None = None
    target_value: Decimal | None = None
    forecast_value: Decimal | None = None
    budget: Decimal | None = None
    status_code: KpiStatus | None = None
    created_by: str = ""
    created_at: datetime | None = None
    last_changed_by: str = ""
    last_changed_at: datetime | None = None
    is_active: bool = True
    period: Period | None = None


__all__ = ["Fact", "Period", "Plan"]
