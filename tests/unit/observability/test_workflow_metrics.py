from __future__ import annotations

from kpi_monitor.infrastructure.observability.metrics import (
    get_db_errors_total,
    get_db_operation_duration_seconds,
    get_notification_failures_total,
    get_recompute_duration_seconds,
    get_workflow_transitions_total,
)


def test_db_metrics_are_singletons_and_accept_labels() -> None:
    """DB collectors should be reused per registry and accept their labels."""
    h1 = get_db_operation_duration_seconds()
    assert get_db_operation_duration_seconds() is h1
    h1.labels(operation="add_pending", model="kpi_fact_changes", outcome="success").observe(0.01)

    errors = get_db_errors_total()
    assert get_db_errors_total() is errors
    errors.labels(operation="add_pending", model="kpi_fact_changes", reason="IntegrityError").inc()


def test_workflow_metrics_basic_usage() -> None:
    """Workflow collectors should be callable without throwing."""
    get_workflow_transitions_total().labels(entity="fact_change", transition="approved").inc()
    get_notification_failures_total().labels(kind="pending_approval").inc()

    recompute = get_recompute_duration_seconds()
    assert get_recompute_duration_seconds() is recompute
    recompute.observe(0.2)
