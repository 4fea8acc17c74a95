# src/kpi_monitor/domain/services/direction_inferencer.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Trend-direction inference for KPI plans.

Purpose:
    Derive whether higher (ascending) or lower (descending) values are better
    for a plan-year from the shape of its period-ordered target series.

Layer:
    domain/services

Notes:
    This is a best-effort heuristic, not a guarantee: only the first and last
    non-null targets are compared, and ties resolve to ascending.
"""

from __future__ import annotations

from collections.abc import Iterable
from decimal import Decimal

from kpi_monitor.domain.enums.kpi_status import TrendDirection


def infer_direction(targets: Iterable[Decimal | None]) -> TrendDirection:
    """Infer the trend direction from a target series ordered by period.

    Args:
        targets: Target values in period order; ``None`` entries are ignored.

    Returns:
        ``ASCENDING`` when the last non-null target is >= the first one, or
        when fewer than two non-null targets exist; otherwise ``DESCENDING``.
    """
    present = [t for t in targets if t is not None]
    if len(present) < 2:
        return TrendDirection.ASCENDING
    return TrendDirection.ASCENDING if present[-1] >= present[0] else TrendDirection.DESCENDING


__all__ = ["infer_direction"]
