# tests/integration/conftest.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Shared fixtures for SQLite-backed integration tests.

Each test gets its own in-memory database (``StaticPool`` keeps the single
connection alive across sessions) with every KPI table created from the ORM
metadata, a ``SqlAlchemyUnitOfWork`` bound to it, and a small seeded
plan-year:

* plan 10 (KPI 7, monthly, 2026) owned by ``DOM\\Owner`` and edited by
  ``editor@corp.local``;
* facts 101..112 for months 1..12 with ascending targets 100..210;
* plan 20 (KPI 8, monthly, 2026) owned and edited by ``solo`` with a single
  fact 201 in month 1.
"""

from __future__ import annotations

import calendar
from collections.abc import AsyncGenerator, Awaitable, Callable, Mapping
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from kpi_monitor.adapters.uow import SqlAlchemyUnitOfWork
from kpi_monitor.application.context import WorkflowContext
from kpi_monitor.application.services.notifier import Notifier
from kpi_monitor.application.use_cases.fact_changes.batches import BatchCoordinator
from kpi_monitor.application.use_cases.fact_changes.ledger import FactChangeLedger
from kpi_monitor.domain.enums.approval import NotificationKind
from kpi_monitor.infrastructure.database.models.base import Base
from kpi_monitor.infrastructure.database.models.kpi import (
    AuditLog,
    DimPeriod,
    KpiFact,
    KpiYearPlan,
)

NOW = datetime(2026, 10, 17, 9, 0, tzinfo=UTC)
PLAN_ID = 10
SOLO_PLAN_ID = 20


class RecordingSink:
    """NotificationSink double capturing every event."""

    def __init__(self) -> None:
        self.events: list[tuple[NotificationKind, str, dict[str, Any]]] = []

    async def notify(
        self, kind: NotificationKind, recipient: str, context: Mapping[str, Any]
    ) -> None:
        self.events.append((kind, recipient, dict(context)))


@pytest.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    eng = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield eng
    finally:
        await eng.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, expire_on_commit=False, class_=AsyncSession)


@pytest.fixture
async def seeded(session_factory: async_sessionmaker[AsyncSession]) -> None:
    async with session_factory() as session:
        session.add_all(
            [
                KpiYearPlan(
                    plan_id=PLAN_ID,
                    kpi_id=7,
                    year=2026,
                    frequency="Monthly",
                    owner_login="DOM\\Owner",
                    editor_login="editor@corp.local",
                    is_active=True,
                ),
                KpiYearPlan(
                    plan_id=SOLO_PLAN_ID,
                    kpi_id=8,
                    year=2026,
                    frequency="M",
                    owner_login="solo",
                    editor_login="SOLO",
                    is_active=True,
                ),
            ]
        )
        for month in range(1, 13):
            session.add(
                DimPeriod(
                    period_id=month,
                    year=2026,
                    quarter_num=(month - 1) // 3 + 1,
                    month_num=month,
                    start_date=date(2026, month, 1),
                    end_date=date(2026, month, calendar.monthrange(2026, month)[1]),
                )
            )
        await session.flush()
        for month in range(1, 13):
            session.add(
                KpiFact(
                    fact_id=100 + month,
                    kpi_id=7,
                    period_id=month,
                    plan_id=PLAN_ID,
                    target_value=Decimal(90 + 10 * month),
                    created_by="seed",
                    last_changed_by="seed",
                )
            )
        session.add(
            KpiFact(
                fact_id=201,
                kpi_id=8,
                period_id=1,
                plan_id=SOLO_PLAN_ID,
                target_value=Decimal("50"),
                created_by="seed",
                last_changed_by="seed",
            )
        )
        await session.commit()


@pytest.fixture
def uow(session_factory: async_sessionmaker[AsyncSession]) -> SqlAlchemyUnitOfWork:
    return SqlAlchemyUnitOfWork(session_factory=session_factory)


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def ctx() -> WorkflowContext:
    return WorkflowContext(now=NOW)


@pytest.fixture
def ledger(
    uow: SqlAlchemyUnitOfWork, sink: RecordingSink, ctx: WorkflowContext
) -> FactChangeLedger:
    return FactChangeLedger(uow=uow, notifier=Notifier(sink), context_factory=lambda: ctx)


@pytest.fixture
def coordinator(
    uow: SqlAlchemyUnitOfWork, ledger: FactChangeLedger, sink: RecordingSink
) -> BatchCoordinator:
    return BatchCoordinator(uow=uow, ledger=ledger, notifier=Notifier(sink))


@pytest.fixture
def fetch_fact(
    session_factory: async_sessionmaker[AsyncSession],
) -> Callable[[int], Awaitable[KpiFact]]:
    """Return a loader reading a fact row in a fresh session."""

    async def _load(fact_id: int) -> KpiFact:
        async with session_factory() as session:
            row = await session.get(KpiFact, fact_id)
            assert row is not None
            return row

    return _load


@pytest.fixture
def fetch_audit(
    session_factory: async_sessionmaker[AsyncSession],
) -> Callable[[str], Awaitable[list[AuditLog]]]:
    """Return a loader listing audit rows of one table, oldest first."""

    async def _load(table_name: str) -> list[AuditLog]:
        async with session_factory() as session:
            res = await session.execute(
                select(AuditLog)
                .where(AuditLog.table_name == table_name)
                .order_by(AuditLog.audit_id.asc())
            )
            return list(res.scalars().all())

    return _load
