# src/kpi_monitor/application/repos.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Repository resolution helpers for use cases.

Purpose:
    Resolve repository ports from an active UnitOfWork transaction. Test
    doubles may expose the repositories as attributes (``facts_repo``,
    ``changes_repo``...) instead of implementing ``get_repository``.

Layer:
    application
"""

from __future__ import annotations

from typing import Any, cast

from kpi_monitor.domain.interfaces.gateways.audit_sink import AuditSink
from kpi_monitor.domain.interfaces.repositories.fact_changes_repository import (
    FactChangeBatchesRepository,
    FactChangesRepository,
)
from kpi_monitor.domain.interfaces.repositories.kpi_facts_repository import (
    KpiFactsRepository,
    KpiPlansRepository,
)


def _resolve(tx: Any, attr: str, port: type[Any]) -> Any:
    if hasattr(tx, attr):
        return getattr(tx, attr)
    return tx.get_repository(port)


def facts_repo(tx: Any) -> KpiFactsRepository:
    """Return the facts repository bound to ``tx``."""
    return cast(KpiFactsRepository, _resolve(tx, "facts_repo", KpiFactsRepository))


def plans_repo(tx: Any) -> KpiPlansRepository:
    """Return the plans repository bound to ``tx``."""
    return cast(KpiPlansRepository, _resolve(tx, "plans_repo", KpiPlansRepository))


def changes_repo(tx: Any) -> FactChangesRepository:
    """Return the fact-changes repository bound to ``tx``."""
    return cast(FactChangesRepository, _resolve(tx, "changes_repo", FactChangesRepository))


def batches_repo(tx: Any) -> FactChangeBatchesRepository:
    """Return the change-batches repository bound to ``tx``."""
    return cast(
        FactChangeBatchesRepository, _resolve(tx, "batches_repo", FactChangeBatchesRepository)
    )


def audit_sink(tx: Any) -> AuditSink:
    """Return the audit sink bound to ``tx``."""
    return cast(AuditSink, _resolve(tx, "audit_sink", AuditSink))


__all__ = ["audit_sink", "batches_repo", "changes_repo", "facts_repo", "plans_repo"]
