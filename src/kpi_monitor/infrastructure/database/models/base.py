# src/kpi_monitor/infrastructure/database/models/base.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Declarative Base for KPI Monitor models.

This module defines:
    - A project-wide SQLAlchemy Declarative Base with deterministic naming
      conventions (for stable Alembic diffs).
    - Lightweight UTC helpers for audit columns.

Design Goals:
    * UTC everywhere.
    * Deterministic schema: Alembic-friendly naming conventions prevent churn.
    * Persistence only; no domain/business behavior.
"""

from __future__ import annotations

import os
from datetime import UTC, datetime

from sqlalchemy import MetaData
from sqlalchemy.orm import DeclarativeBase

__all__ = [
    "DEFAULT_DB_SCHEMA",
    "NAMING_CONVENTIONS",
    "metadata",
    "Base",
    "now_utc",
]

#: Default database schema for all tables. Read straight from the environment so
#: migrations and tests can import models without a fully configured Settings.
DEFAULT_DB_SCHEMA: str | None = os.getenv("DB_SCHEMA") or None

#: Deterministic naming conventions for Alembic-friendly diffs.
#: Ref: https://alembic.sqlalchemy.org/en/latest/naming.html
NAMING_CONVENTIONS: dict[str, str] = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

metadata = MetaData(naming_convention=NAMING_CONVENTIONS, schema=DEFAULT_DB_SCHEMA)


class Base(DeclarativeBase):
    """Declarative Base for all ORM models.

    The shared ``metadata`` carries the naming conventions and the default
    schema (``DB_SCHEMA``); string foreign-key targets resolve within it.
    """

    metadata = metadata


def now_utc() -> datetime:
    """Return the current UTC time with timezone info."""
    return datetime.now(UTC)
