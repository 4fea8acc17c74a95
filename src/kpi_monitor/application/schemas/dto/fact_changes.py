# src/kpi_monitor/application/schemas/dto/fact_changes.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Application DTOs for fact-change submission and status recomputation.

Purpose:
    Provide request/response DTOs for bulk submission and recomputation use
    cases. These DTOs are transport-agnostic and are mapped to view models by
    the presentation layer.

Layer:
    application/schemas/dto
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum

from pydantic import Field

from kpi_monitor.application.schemas.dto.base import BaseDTO
from kpi_monitor.domain.enums.kpi_status import TrendDirection


class BulkSkipReason(str, Enum):
    """Why a bulk row did not become a change request."""

    PERIOD_OUT_OF_RANGE = "period_out_of_range"
    NO_FACT = "no_fact"
    EMPTY_ROW = "empty_row"
    ALREADY_PENDING = "already_pending"
    OUTSIDE_EDIT_WINDOW = "outside_edit_window"
    TARGET_LOCKED = "target_locked"


class BulkSubmitRowDTO(BaseDTO):
    """One uploaded row: proposed values for a period of the plan-year."""

    period_number: int = Field(..., description="Month (1-12) or quarter (1-4) number.")
    actual: Decimal | None = None
    target: Decimal | None = None
    forecast: Decimal | None = None

    @property
    def is_empty(self) -> bool:
        """Return True when the row proposes nothing."""
        return self.actual is None and self.target is None and self.forecast is None


class BulkSubmitRequestDTO(BaseDTO):
    """Request DTO for submitting many period rows of one plan-year."""

    plan_id: int
    year: int = Field(..., ge=1900, le=9999)
    submitted_by: str = Field(..., min_length=1)
    rows: list[BulkSubmitRowDTO] = Field(default_factory=list)


class BulkSkippedRowDTO(BaseDTO):
    """A row that was not submitted, with the reason."""

    period_number: int
    reason: BulkSkipReason


class BulkSubmitResultDTO(BaseDTO):
    """Response DTO for bulk submission."""

    batch_id: int | None = None
    created_count: int = 0
    skipped_count: int = 0
    change_ids: list[int] = Field(default_factory=list)
    skipped: list[BulkSkippedRowDTO] = Field(default_factory=list)


class RecomputeResultDTO(BaseDTO):
    """Response DTO for a plan-year status recomputation."""

    plan_id: int
    year: int
    direction: TrendDirection
    evaluated: int = 0
    updated: int = 0
    unchanged: int = 0


__all__ = [
    "BulkSkipReason",
    "BulkSkippedRowDTO",
    "BulkSubmitRequestDTO",
    "BulkSubmitResultDTO",
    "BulkSubmitRowDTO",
    "RecomputeResultDTO",
]
