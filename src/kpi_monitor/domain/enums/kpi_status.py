# src/kpi_monitor/domain/enums/kpi_status.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Status-engine enums.

Purpose:
    Define the categorical health taxonomy stored per fact, the plan trend
    direction, and the period frequency of a plan.

Layer:
    domain/enums

Notes:
    - Pure domain types:
        * No logging.
        * No persistence or gateways.
"""

from __future__ import annotations

from enum import Enum


class KpiStatus(str, Enum):
    """Health label stored on a fact's ``status_code`` column."""

    ON_TARGET = "on_target"
    BEHIND = "behind"
    NEEDS_ATTENTION = "needs_attention"
    DATA_MISSING = "data_missing"

    @classmethod
    def parse(cls, raw: str | None) -> KpiStatus | None:
        """Return the member matching ``raw`` (case-insensitive), or None when blank.

        Raises:
            ValueError: If ``raw`` is non-blank and not a known status code.
        """
        if raw is None or not raw.strip():
            return None
        return cls(raw.strip().lower())


class TrendDirection(int, Enum):
    """Direction of "better" for a KPI plan in a given year."""

    ASCENDING = 1  # higher is better
    DESCENDING = -1  # lower is better


class Frequency(str, Enum):
    """Granularity of the periods tracked by a plan or batch."""

    MONTHLY = "monthly"
    QUARTERLY = "quarterly"

    @property
    def periods_per_year(self) -> int:
        """Return 12 for monthly plans and 4 for quarterly plans."""
        return 12 if self is Frequency.MONTHLY else 4


__all__ = ["Frequency", "KpiStatus", "TrendDirection"]
