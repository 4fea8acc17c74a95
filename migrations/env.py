# migrations/env.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Alembic environment for the KPI workflow schema.

The connection settings come from ``kpi_monitor.config.settings`` so that
migrations and the service read one configuration: ``DATABASE_URL``,
``DB_SCHEMA`` (also holds ``alembic_version``) and ``ECHO_SQL``.
``ENVIRONMENT`` must be exported explicitly, and ``.env.<ENVIRONMENT>`` is
layered under the process environment before settings load.

Each environment may only touch its own database names.

    ENVIRONMENT=test alembic upgrade head
    ENVIRONMENT=test alembic -x show_url=1 upgrade head --sql
"""

from __future__ import annotations

import asyncio
import logging
import logging.config
import os
from pathlib import Path
from typing import Any

from alembic import context
from dotenv import load_dotenv
from sqlalchemy import pool
from sqlalchemy.engine import Connection, make_url
from sqlalchemy.ext.asyncio import create_async_engine

from kpi_monitor.config.settings import Environment, Settings, get_settings
from kpi_monitor.infrastructure.database.models import kpi as _kpi_models  # noqa: F401
from kpi_monitor.infrastructure.database.models.base import metadata as target_metadata

config = context.config
if config.config_file_name is not None:
    logging.config.fileConfig(config.config_file_name)

logger = logging.getLogger("alembic.env")

#: Database names each environment is allowed to migrate.
_ALLOWED_DATABASES: dict[Environment, frozenset[str]] = {
    Environment.TEST: frozenset({"kpi_monitor_test"}),
    Environment.CI: frozenset({"kpi_monitor_test"}),
    Environment.DEVELOPMENT: frozenset({"kpi_monitor"}),
    Environment.STAGING: frozenset({"kpi_monitor"}),
    Environment.PRODUCTION: frozenset({"kpi_monitor"}),
}


def _load_settings() -> Settings:
    env = (os.getenv("ENVIRONMENT") or "").strip().lower()
    if not env:
        raise RuntimeError("Set ENVIRONMENT explicitly before running migrations.")
    overlay = Path(__file__).resolve().parents[1] / f".env.{env}"
    if overlay.exists():
        load_dotenv(overlay, override=False)

    settings = get_settings()
    url = settings.database_url
    database = make_url(url).database or ""
    allowed = _ALLOWED_DATABASES.get(settings.environment, frozenset())
    if database not in allowed:
        raise RuntimeError(
            f"Refusing to migrate database {database!r} with "
            f"ENVIRONMENT={settings.environment.value!r}; allowed: {sorted(allowed)}"
        )

    show = dict(getattr(config, "x", {}) or {}).get("show_url") == "1"
    if show or os.getenv("ALEMBIC_SHOW_URL") == "1":
        logger.info("Migrating %s", make_url(url).render_as_string(hide_password=True))
    return settings


def _context_kwargs(settings: Settings) -> dict[str, Any]:
    return {
        "target_metadata": target_metadata,
        "compare_type": True,
        "compare_server_default": True,
        "include_schemas": True,
        "version_table_schema": settings.db_schema,
    }


def run_migrations_offline() -> None:
    """Emit the migration SQL instead of executing it."""
    settings = _load_settings()
    context.configure(
        url=settings.database_url,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **_context_kwargs(settings),
    )
    with context.begin_transaction():
        context.run_migrations()


async def _run_online(settings: Settings) -> None:
    engine = create_async_engine(
        settings.database_url, echo=settings.echo_sql, poolclass=pool.NullPool
    )

    def _migrate(connection: Connection) -> None:
        context.configure(connection=connection, **_context_kwargs(settings))
        with context.begin_transaction():
            context.run_migrations()

    try:
        async with engine.connect() as connection:
            await connection.run_sync(_migrate)
    finally:
        await engine.dispose()


def run_migrations_online() -> None:
    asyncio.run(_run_online(_load_settings()))


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
