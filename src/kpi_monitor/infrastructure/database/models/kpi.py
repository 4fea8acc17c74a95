# src/kpi_monitor/infrastructure/database/models/kpi.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""KPI fact and approval-workflow ORM models.

Purpose:
    Provide SQLAlchemy ORM mappings for:

    * ``dim_periods``: Calendar periods (read-only for the workflow core).
    * ``kpi_year_plans``: KPI x year plans with owner/editor logins.
    * ``kpi_facts``: Periodic measurements and the stored status label.
    * ``kpi_fact_changes``: Proposed edits to facts and their review stamps.
    * ``kpi_fact_change_batches``: Headers grouping changes submitted together.
    * ``audit_log``: Append-only audit trail with column-level diffs.

Design:
    - ``approval_status`` is nullable text in storage; the domain maps it onto
      an explicit enum.
    - At most one pending change per fact is enforced by the partial unique
      index ``uq_kpi_fact_changes_pending_fact`` (PostgreSQL and SQLite both
      support partial indexes).
    - Integer identity keys keep the schema portable to SQLite for tests.

Layer:
    infrastructure / database / models
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    SmallInteger,
    String,
    Text,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from kpi_monitor.infrastructure.database.models.base import Base, now_utc

#: Predicate of the partial unique index guarding the single-pending invariant.
PENDING_PREDICATE = "approval_status = 'pending'"

_VALUE = Numeric(18, 4)


class DimPeriod(Base):
    """Calendar period (dim_periods)."""

    __tablename__ = "dim_periods"

    period_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    quarter_num: Mapped[int | None] = mapped_column(SmallInteger, nullable=True)
    month_num: Mapped[int | None] = mapped_column(SmallInteger, nullable=True)
    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)


class KpiYearPlan(Base):
    """KPI plan for one year (kpi_year_plans)."""

    __tablename__ = "kpi_year_plans"

    plan_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    kpi_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    frequency: Mapped[str | None] = mapped_column(String(16), nullable=True)
    priority: Mapped[int | None] = mapped_column(Integer, nullable=True)
    owner_login: Mapped[str | None] = mapped_column(String(256), nullable=True, index=True)
    editor_login: Mapped[str | None] = mapped_column(String(256), nullable=True)
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=text("true")
    )


class KpiFact(Base):
    """One period's KPI measurement (kpi_facts)."""

    __tablename__ = "kpi_facts"
    __table_args__ = (Index("ix_kpi_facts_plan_period", "plan_id", "period_id"),)

    fact_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    kpi_id: Mapped[int] = mapped_column(Integer, nullable=False)
    period_id: Mapped[int] = mapped_column(ForeignKey("dim_periods.period_id"), nullable=False)
    plan_id: Mapped[int] = mapped_column(ForeignKey("kpi_year_plans.plan_id"), nullable=False)

    actual_value: Mapped[Decimal | None] = mapped_column(_VALUE, nullable=True)
    target_value: Mapped[Decimal | None] = mapped_column(_VALUE, nullable=True)
    forecast_value: Mapped[Decimal | None] = mapped_column(_VALUE, nullable=True)
    budget: Mapped[Decimal | None] = mapped_column(_VALUE, nullable=True)
    status_code: Mapped[str | None] = mapped_column(String(32), nullable=True)

    created_by: Mapped[str] = mapped_column(String(256), nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=now_utc
    )
    last_changed_by: Mapped[str] = mapped_column(String(256), nullable=False, default="")
    last_changed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=now_utc
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=text("true")
    )

    period: Mapped[DimPeriod] = relationship(lazy="raise")
    plan: Mapped[KpiYearPlan] = relationship(lazy="raise")


class KpiFactChangeBatch(Base):
    """Header for changes submitted together (kpi_fact_change_batches)."""

    __tablename__ = "kpi_fact_change_batches"

    batch_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    kpi_id: Mapped[int] = mapped_column(Integer, nullable=False)
    plan_id: Mapped[int] = mapped_column(ForeignKey("kpi_year_plans.plan_id"), nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    frequency: Mapped[str] = mapped_column(String(16), nullable=False)
    period_min: Mapped[int | None] = mapped_column(SmallInteger, nullable=True)
    period_max: Mapped[int | None] = mapped_column(SmallInteger, nullable=True)
    row_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    skipped_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    submitted_by: Mapped[str] = mapped_column(String(256), nullable=False)
    submitted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    approval_status: Mapped[str | None] = mapped_column(String(16), nullable=True, index=True)
    reviewed_by: Mapped[str | None] = mapped_column(String(256), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reject_reason: Mapped[str | None] = mapped_column(Text, nullable=True)


class KpiFactChange(Base):
    """Proposed edit to a fact (kpi_fact_changes)."""

    __tablename__ = "kpi_fact_changes"
    __table_args__ = (
        Index(
            "uq_kpi_fact_changes_pending_fact",
            "fact_id",
            unique=True,
            postgresql_where=text(PENDING_PREDICATE),
            sqlite_where=text(PENDING_PREDICATE),
        ),
        Index("ix_kpi_fact_changes_batch_id", "batch_id"),
        Index("ix_kpi_fact_changes_status_submitted", "approval_status", "submitted_at"),
    )

    change_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    fact_id: Mapped[int] = mapped_column(ForeignKey("kpi_facts.fact_id"), nullable=False)

    proposed_actual: Mapped[Decimal | None] = mapped_column(_VALUE, nullable=True)
    proposed_target: Mapped[Decimal | None] = mapped_column(_VALUE, nullable=True)
    proposed_forecast: Mapped[Decimal | None] = mapped_column(_VALUE, nullable=True)
    proposed_status_code: Mapped[str | None] = mapped_column(String(32), nullable=True)

    submitted_by: Mapped[str] = mapped_column(String(256), nullable=False)
    submitted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    approval_status: Mapped[str | None] = mapped_column(String(16), nullable=True)
    reviewed_by: Mapped[str | None] = mapped_column(String(256), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reject_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    batch_id: Mapped[int | None] = mapped_column(
        ForeignKey("kpi_fact_change_batches.batch_id"), nullable=True
    )


class AuditLog(Base):
    """Append-only audit trail (audit_log)."""

    __tablename__ = "audit_log"
    __table_args__ = (Index("ix_audit_log_table_changed_at", "table_name", "changed_at_utc"),)

    audit_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    table_name: Mapped[str] = mapped_column(String(128), nullable=False)
    key_json: Mapped[str] = mapped_column(Text, nullable=False)
    action: Mapped[str] = mapped_column(String(16), nullable=False)
    changed_by: Mapped[str] = mapped_column(String(256), nullable=False)
    changed_at_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    column_changes_json: Mapped[str] = mapped_column(Text, nullable=False)


__all__ = [
    "PENDING_PREDICATE",
    "AuditLog",
    "DimPeriod",
    "KpiFact",
    "KpiFactChange",
    "KpiFactChangeBatch",
    "KpiYearPlan",
]
