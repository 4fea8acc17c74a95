# tests/unit/domain/entities/test_fact_change_entities.py
# Copyright (c)
# SPDX-License-Identifier: MIT

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

import pytest

from kpi_monitor.domain.entities.fact_change import (
    BatchOutcome,
    BatchProgress,
    ChildResult,
    FactChange,
    ProposedValues,
)
from kpi_monitor.domain.entities.kpi_fact import Period
from kpi_monitor.domain.enums.approval import ApprovalStatus, ChangeState
from kpi_monitor.domain.enums.kpi_status import Frequency, KpiStatus
from kpi_monitor.domain.exceptions.workflow import AlreadyPending, NotFound
from kpi_monitor.domain.services.logins import normalize_login, same_login


def _change(**overrides) -> FactChange:
    base = {
        "change_id": 1,
        "fact_id": 101,
        "proposed": ProposedValues(actual=Decimal("5")),
        "submitted_by": "alice",
        "submitted_at": datetime(2026, 10, 17, 9, 0, tzinfo=UTC),
    }
    base.update(overrides)
    return FactChange(**base)


def test_rejected_change_requires_reason() -> None:
    with pytest.raises(ValueError):
        _change(approval_status=ApprovalStatus.REJECTED)

    rejected = _change(approval_status=ApprovalStatus.REJECTED, reject_reason="wrong")
    assert rejected.state is ChangeState.REJECTED
    assert not rejected.is_pending


def test_naive_timestamps_are_read_as_utc() -> None:
    change = _change(
        submitted_at=datetime(2026, 10, 17, 9, 0),
        reviewed_at=datetime(2026, 10, 18, 9, 0),
        approval_status=ApprovalStatus.APPROVED,
    )

    assert change.submitted_at.tzinfo is UTC
    assert change.reviewed_at is not None
    assert change.reviewed_at.tzinfo is UTC


def test_proposed_values_emptiness() -> None:
    assert ProposedValues().is_empty
    assert not ProposedValues(status_code=KpiStatus.BEHIND).is_empty


def test_batch_outcome_fold_and_progress() -> None:
    outcome = BatchOutcome.fold(
        batch_id=3,
        decision=ApprovalStatus.APPROVED,
        expected_count=4,
        already_resolved=1,
        results=[
            ChildResult(change_id=1, fact_id=11, resolved=True),
            ChildResult(change_id=2, fact_id=12, resolved=False, error_code="NOT_FOUND"),
            ChildResult(change_id=3, fact_id=13, resolved=True),
        ],
    )

    assert outcome.resolved_count == 2
    assert outcome.failed_count == 1
    assert outcome.discrepancy == 2
    assert [r.change_id for r in outcome.failed] == [2]

    progress = BatchProgress(
        batch_id=3, approval_status=ApprovalStatus.PENDING, pending=1, approved=2, rejected=1
    )
    assert progress.total == 4


def test_period_bounds_and_number() -> None:
    assert Period(period_id=1, year=2026, month_num=4, quarter_num=2).period_number == 4
    assert Period(period_id=2, year=2026, quarter_num=3).period_number == 3
    with pytest.raises(ValueError):
        Period(period_id=3, year=2026, month_num=13)
    with pytest.raises(ValueError):
        Period(period_id=4, year=2026, quarter_num=0)


def test_enum_parsing() -> None:
    assert ChangeState.from_stored(None) is ChangeState.NO_CHANGE
    assert ChangeState.from_stored("  ") is ChangeState.NO_CHANGE
    assert ChangeState.from_stored("Approved") is ChangeState.APPROVED
    assert KpiStatus.parse(" ON_TARGET ") is KpiStatus.ON_TARGET
    assert KpiStatus.parse("") is None
    with pytest.raises(ValueError):
        KpiStatus.parse("excellent")
    assert Frequency.QUARTERLY.periods_per_year == 4


def test_domain_errors_carry_code_and_details() -> None:
    err = AlreadyPending("fact 5 is pending", details={"fact_id": 5})

    assert err.code == "ALREADY_PENDING"
    assert str(err) == "fact 5 is pending"
    assert err.details == {"fact_id": 5}
    assert NotFound().details == {}


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("DOMAIN\\JDoe", "jdoe"),
        ("jdoe@example.org", "jdoe"),
        ("  JDoe  ", "jdoe"),
        ("", ""),
        (None, ""),
        ("@host", "@host"),
        ("DOMAIN\\", "domain\\"),
    ],
)
def test_normalize_login(raw, expected) -> None:
    assert normalize_login(raw) == expected


def test_same_login() -> None:
    assert same_login("DOM\\Owner", "owner@corp.local")
    assert not same_login("owner", "editor")
    assert not same_login(None, None)
    assert not same_login("", " ")
