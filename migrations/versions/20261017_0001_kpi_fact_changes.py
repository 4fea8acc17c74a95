# migrations/versions/20261017_0001_kpi_fact_changes.py
"""Create KPI fact, approval-workflow and audit tables.

Revision ID: 20261017_0001_kpi_fact_changes
Revises:
Create Date: 2026-10-17

This migration:
  * Creates dim_periods, kpi_year_plans and kpi_facts.
  * Creates kpi_fact_change_batches and kpi_fact_changes, including the
    partial unique index allowing at most one pending change per fact.
  * Creates the append-only audit_log.
"""

from __future__ import annotations

import os
from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "20261017_0001_kpi_fact_changes"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None

SCHEMA: str | None = os.getenv("DB_SCHEMA") or None
PENDING_PREDICATE = "approval_status = 'pending'"


def _fk(target: str) -> str:
    return f"{SCHEMA}.{target}" if SCHEMA else target


def upgrade() -> None:
    """Apply the migration."""
    # ------------------------------------------------------------------
    # Reference data
    # ------------------------------------------------------------------
    op.create_table(
        "dim_periods",
        sa.Column("period_id", sa.Integer(), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("quarter_num", sa.SmallInteger(), nullable=True),
        sa.Column("month_num", sa.SmallInteger(), nullable=True),
        sa.Column("start_date", sa.Date(), nullable=True),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.PrimaryKeyConstraint("period_id", name="pk_dim_periods"),
        schema=SCHEMA,
    )
    op.create_table(
        "kpi_year_plans",
        sa.Column("plan_id", sa.Integer(), nullable=False),
        sa.Column("kpi_id", sa.Integer(), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("frequency", sa.String(length=16), nullable=True),
        sa.Column("priority", sa.Integer(), nullable=True),
        sa.Column("owner_login", sa.String(length=256), nullable=True),
        sa.Column("editor_login", sa.String(length=256), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.PrimaryKeyConstraint("plan_id", name="pk_kpi_year_plans"),
        schema=SCHEMA,
    )
    op.create_index("ix_kpi_year_plans_kpi_id", "kpi_year_plans", ["kpi_id"], schema=SCHEMA)
    op.create_index(
        "ix_kpi_year_plans_owner_login", "kpi_year_plans", ["owner_login"], schema=SCHEMA
    )

    op.create_table(
        "kpi_facts",
        sa.Column("fact_id", sa.Integer(), nullable=False),
        sa.Column("kpi_id", sa.Integer(), nullable=False),
        sa.Column("period_id", sa.Integer(), nullable=False),
        sa.Column("plan_id", sa.Integer(), nullable=False),
        sa.Column("actual_value", sa.Numeric(18, 4), nullable=True),
        sa.Column("target_value", sa.Numeric(18, 4), nullable=True),
        sa.Column("forecast_value", sa.Numeric(18, 4), nullable=True),
        sa.Column("budget", sa.Numeric(18, 4), nullable=True),
        sa.Column("status_code", sa.String(length=32), nullable=True),
        sa.Column("created_by", sa.String(length=256), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_changed_by", sa.String(length=256), nullable=False),
        sa.Column("last_changed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.PrimaryKeyConstraint("fact_id", name="pk_kpi_facts"),
        sa.ForeignKeyConstraint(
            ["period_id"],
            [_fk("dim_periods.period_id")],
            name="fk_kpi_facts_period_id_dim_periods",
        ),
        sa.ForeignKeyConstraint(
            ["plan_id"],
            [_fk("kpi_year_plans.plan_id")],
            name="fk_kpi_facts_plan_id_kpi_year_plans",
        ),
        schema=SCHEMA,
    )
    op.create_index(
        "ix_kpi_facts_plan_period", "kpi_facts", ["plan_id", "period_id"], schema=SCHEMA
    )

    # ------------------------------------------------------------------
    # Approval workflow
    # ------------------------------------------------------------------
    op.create_table(
        "kpi_fact_change_batches",
        sa.Column("batch_id", sa.Integer(), nullable=False),
        sa.Column("kpi_id", sa.Integer(), nullable=False),
        sa.Column("plan_id", sa.Integer(), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("frequency", sa.String(length=16), nullable=False),
        sa.Column("period_min", sa.SmallInteger(), nullable=True),
        sa.Column("period_max", sa.SmallInteger(), nullable=True),
        sa.Column("row_count", sa.Integer(), nullable=False),
        sa.Column("skipped_count", sa.Integer(), nullable=False),
        sa.Column("submitted_by", sa.String(length=256), nullable=False),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("approval_status", sa.String(length=16), nullable=True),
        sa.Column("reviewed_by", sa.String(length=256), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reject_reason", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("batch_id", name="pk_kpi_fact_change_batches"),
        sa.ForeignKeyConstraint(
            ["plan_id"],
            [_fk("kpi_year_plans.plan_id")],
            name="fk_kpi_fact_change_batches_plan_id_kpi_year_plans",
        ),
        schema=SCHEMA,
    )
    op.create_index(
        "ix_kpi_fact_change_batches_approval_status",
        "kpi_fact_change_batches",
        ["approval_status"],
        schema=SCHEMA,
    )

    op.create_table(
        "kpi_fact_changes",
        sa.Column("change_id", sa.Integer(), nullable=False),
        sa.Column("fact_id", sa.Integer(), nullable=False),
        sa.Column("proposed_actual", sa.Numeric(18, 4), nullable=True),
        sa.Column("proposed_target", sa.Numeric(18, 4), nullable=True),
        sa.Column("proposed_forecast", sa.Numeric(18, 4), nullable=True),
        sa.Column("proposed_status_code", sa.String(length=32), nullable=True),
        sa.Column("submitted_by", sa.String(length=256), nullable=False),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("approval_status", sa.String(length=16), nullable=True),
        sa.Column("reviewed_by", sa.String(length=256), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reject_reason", sa.Text(), nullable=True),
        sa.Column("batch_id", sa.Integer(), nullable=True),
        sa.PrimaryKeyConstraint("change_id", name="pk_kpi_fact_changes"),
        sa.ForeignKeyConstraint(
            ["fact_id"],
            [_fk("kpi_facts.fact_id")],
            name="fk_kpi_fact_changes_fact_id_kpi_facts",
        ),
        sa.ForeignKeyConstraint(
            ["batch_id"],
            [_fk("kpi_fact_change_batches.batch_id")],
            name="fk_kpi_fact_changes_batch_id_kpi_fact_change_batches",
        ),
        schema=SCHEMA,
    )
    op.create_index(
        "uq_kpi_fact_changes_pending_fact",
        "kpi_fact_changes",
        ["fact_id"],
        unique=True,
        schema=SCHEMA,
        postgresql_where=sa.text(PENDING_PREDICATE),
        sqlite_where=sa.text(PENDING_PREDICATE),
    )
    op.create_index(
        "ix_kpi_fact_changes_batch_id", "kpi_fact_changes", ["batch_id"], schema=SCHEMA
    )
    op.create_index(
        "ix_kpi_fact_changes_status_submitted",
        "kpi_fact_changes",
        ["approval_status", "submitted_at"],
        schema=SCHEMA,
    )

    # ------------------------------------------------------------------
    # Audit trail
    # ------------------------------------------------------------------
    op.create_table(
        "audit_log",
        sa.Column("audit_id", sa.Integer(), nullable=False),
        sa.Column("table_name", sa.String(length=128), nullable=False),
        sa.Column("key_json", sa.Text(), nullable=False),
        sa.Column("action", sa.String(length=16), nullable=False),
        sa.Column("changed_by", sa.String(length=256), nullable=False),
        sa.Column("changed_at_utc", sa.DateTime(timezone=True), nullable=False),
        sa.Column("column_changes_json", sa.Text(), nullable=False),
        sa.PrimaryKeyConstraint("audit_id", name="pk_audit_log"),
        schema=SCHEMA,
    )
    op.create_index(
        "ix_audit_log_table_changed_at",
        "audit_log",
        ["table_name", "changed_at_utc"],
        schema=SCHEMA,
    )


def downgrade() -> None:
    """Revert the migration."""
    op.drop_index("ix_audit_log_table_changed_at", table_name="audit_log", schema=SCHEMA)
    op.drop_table("audit_log", schema=SCHEMA)

    op.drop_index(
        "ix_kpi_fact_changes_status_submitted", table_name="kpi_fact_changes", schema=SCHEMA
    )
    op.drop_index("ix_kpi_fact_changes_batch_id", table_name="kpi_fact_changes", schema=SCHEMA)
    op.drop_index(
        "uq_kpi_fact_changes_pending_fact", table_name="kpi_fact_changes", schema=SCHEMA
    )
    op.drop_table("kpi_fact_changes", schema=SCHEMA)

    op.drop_index(
        "ix_kpi_fact_change_batches_approval_status",
        table_name="kpi_fact_change_batches",
        schema=SCHEMA,
    )
    op.drop_table("kpi_fact_change_batches", schema=SCHEMA)

    op.drop_index("ix_kpi_facts_plan_period", table_name="kpi_facts", schema=SCHEMA)
    op.drop_table("kpi_facts", schema=SCHEMA)

    op.drop_index("ix_kpi_year_plans_owner_login", table_name="kpi_year_plans", schema=SCHEMA)
    op.drop_index("ix_kpi_year_plans_kpi_id", table_name="kpi_year_plans", schema=SCHEMA)
    op.drop_table("kpi_year_plans", schema=SCHEMA)

    op.drop_table("dim_periods", schema=SCHEMA)
