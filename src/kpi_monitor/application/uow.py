# src/kpi_monitor/application/uow.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Transaction boundary of the KPI workflow.

Purpose:
    Declare the ``UnitOfWork`` port every ledger, batch, bulk and recompute
    operation runs through, and ``run_in_uow``, the commit-or-rollback helper
    they share.

Contract:
    * A scope is one transaction. An instance may be entered again once it
      has exited; nested entry is an error.
    * Repositories and the audit sink resolved from a scope share its
      session, so the audit row commits or vanishes with the data it
      describes.
    * Leaving a scope without ``commit`` discards its work. This covers an
      exception and a cancelled task alike, so no fact or change row is left
      half-written.
    * ``commit`` and ``rollback`` do nothing once either has run.

    Batch review builds on the last two points: each child resolves in its
    own scope, so an interrupted review keeps exactly the children it
    committed.

Layer:
    application
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from types import TracebackType
from typing import Any, Protocol, TypeVar

TResult = TypeVar("TResult")


class UnitOfWork(Protocol):
    """One transactional scope over the workflow repositories."""

    async def __aenter__(self) -> UnitOfWork:
        """Open a fresh transaction; raise ``RuntimeError`` if one is open."""
        raise NotImplementedError

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> bool | None:
        """Roll back unless committed, then release the session."""
        raise NotImplementedError

    async def commit(self) -> None:
        raise NotImplementedError

    async def rollback(self) -> None:
        raise NotImplementedError

    def get_repository(self, repo_type: type[Any]) -> Any:
        """Return the scope's instance of a port such as ``FactChangesRepository``.

        Raises:
            RuntimeError: Called outside an open scope.
            KeyError: No implementation is registered for ``repo_type``.
        """
        raise NotImplementedError


async def run_in_uow(  # noqa: UP047
    uow: UnitOfWork,
    fn: Callable[[UnitOfWork], Awaitable[TResult]],
) -> TResult:
    """Run ``fn`` in a new scope of ``uow`` and commit what it wrote.

    An exception raised by ``fn`` rolls the scope back and propagates.
    ``CancelledError`` is not an ``Exception``; the scope exit discards the
    work in that case.
    """
    async with uow as tx:
        try:
            result = await fn(tx)
        except Exception:
            await tx.rollback()
            raise
        await tx.commit()
    return result


__all__ = ["UnitOfWork", "run_in_uow"]
