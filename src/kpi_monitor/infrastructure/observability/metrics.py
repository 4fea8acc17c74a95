# src/kpi_monitor/infrastructure/observability/metrics.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Prometheus metrics utilities (registry-aware, hot-reload safe).

Every accessor returns a collector bound to the **current**
``prometheus_client.REGISTRY``:
    - Safe under tests that swap the default registry.
    - No duplicate-registration errors.
    - Cache automatically resets when the active registry changes.

All histograms use explicit buckets so ``_bucket/_count/_sum`` series appear
after the first ``observe(...)`` call.

Example:
    get_workflow_transitions_total().labels(
        entity="fact_change", transition="approved"
    ).inc()
"""

from __future__ import annotations

import logging
import threading
from contextlib import suppress
from typing import Final

import prometheus_client as prom
from prometheus_client import Counter, Histogram

_log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Common histogram buckets (seconds)
_BUCKETS: Final[tuple[float, ...]] = (
    0.005,
    0.010,
    0.025,
    0.050,
    0.100,
    0.250,
    0.500,
    1.000,
    2.500,
    5.000,
    10.000,
)

# Cache keyed by metric name within the currently-active registry.
_registry_id: int | None = None
_hist_cache: dict[str, Histogram] = {}
_counter_cache: dict[str, Counter] = {}
_lock = threading.RLock()


# ---------------------------------------------------------------------------
# Registry-handling primitives


def _ensure_registry() -> None:
    """Reset caches if the active registry changed."""
    global _registry_id
    with _lock:
        rid = id(prom.REGISTRY)
        if _registry_id is None or _registry_id != rid:
            _hist_cache.clear()
            _counter_cache.clear()
            _registry_id = rid


def _lookup_existing(name: str, kind: type) -> object | None:
    """Return a previously-registered collector of ``kind`` from the active registry.

    Args:
        name: Collector name.
        kind: Expected collector class (``Histogram`` or ``Counter``).

    Returns:
        The existing collector if present and of the correct type.
    """
    with _lock, suppress(Exception):
        mapping = getattr(prom.REGISTRY, "_names_to_collectors", None)
        if isinstance(mapping, dict):
            col = mapping.get(name)
            if isinstance(col, kind):
                return col
    return None


# ---------------------------------------------------------------------------
# Get-or-create helpers


def _get_or_create_hist(
    name: str,
    help_text: str,
    *,
    buckets: tuple[float, ...] = _BUCKETS,
    labelnames: tuple[str, ...] = (),
) -> Histogram:
    """Get or create a registry-bound ``Histogram`` with stable identity.

    Strategy:
    1. Return from module cache if present for the active registry.
    2. If registry already has a collector by this name, reuse it.
    3. Otherwise, register a new collector on the active registry.
    4. If concurrent registration triggers a duplication error, retry step 2.
    """
    _ensure_registry()
    with _lock:
        cached = _hist_cache.get(name)
        if cached is not None:
            return cached

        existing = _lookup_existing(name, Histogram)
        if isinstance(existing, Histogram):
            _hist_cache[name] = existing
            return existing

        try:
            h = Histogram(name, help_text, labelnames, buckets=buckets, registry=prom.REGISTRY)
            _hist_cache[name] = h
            return h
        except ValueError as exc:
            if "Duplicated timeseries" in str(exc):
                again = _lookup_existing(name, Histogram)
                if isinstance(again, Histogram):
                    _hist_cache[name] = again
                    return again
            _log.exception("Failed to register Prometheus histogram %s", name)
            raise


def _get_or_create_counter(
    name: str,
    help_text: str,
    *,
    labelnames: tuple[str, ...] = (),
) -> Counter:
    """Get or create a registry-bound ``Counter`` with stable identity."""
    _ensure_registry()
    with _lock:
        cached = _counter_cache.get(name)
        if cached is not None:
            return cached

        existing = _lookup_existing(name, Counter)
        if isinstance(existing, Counter):
            _counter_cache[name] = existing
            return existing

        try:
            c = Counter(name, help_text, labelnames, registry=prom.REGISTRY)
            _counter_cache[name] = c
            return c
        except ValueError as exc:
            if "Duplicated timeseries" in str(exc):
                again = _lookup_existing(name, Counter)
                if isinstance(again, Counter):
                    _counter_cache[name] = again
                    return again
            _log.exception("Failed to register Prometheus counter %s", name)
            raise


# ---------------------------------------------------------------------------
# DB metrics
# ---------------------------------------------------------------------------


def get_db_operation_duration_seconds() -> Histogram:
    """Return histogram for DB operation latency.

    Labels:
        operation: Logical operation name (e.g. ``add_pending``).
        model: Logical table name (e.g. ``kpi_fact_changes``).
        outcome: ``success`` or ``error``.
    """
    return _get_or_create_hist(
        name="db_operation_duration_seconds",
        help_text="Latency (seconds) of database operations.",
        labelnames=("operation", "model", "outcome"),
    )


def get_db_errors_total() -> Counter:
    """Return counter for DB errors.

    Labels:
        operation: Logical operation name.
        model: Logical table name.
        reason: Error class or short reason.
    """
    return _get_or_create_counter(
        name="db_errors_total",
        help_text="Total database errors by operation/model.",
        labelnames=("operation", "model", "reason"),
    )


# ---------------------------------------------------------------------------
# Workflow metrics
# ---------------------------------------------------------------------------


def get_workflow_transitions_total() -> Counter:
    """Return counter for approval workflow transitions.

    Labels:
        entity: ``fact_change`` or ``batch``.
        transition: ``submitted``, ``approved``, ``rejected`` or ``auto_approved``.
    """
    return _get_or_create_counter(
        name="kpi_workflow_transitions_total",
        help_text="Approval workflow state transitions.",
        labelnames=("entity", "transition"),
    )


def get_notification_failures_total() -> Counter:
    """Return counter for notifications that could not be handed off.

    Labels:
        kind: Notification kind value.
    """
    return _get_or_create_counter(
        name="kpi_notification_failures_total",
        help_text="Notifications that failed to be delivered to the sink.",
        labelnames=("kind",),
    )


def get_recompute_duration_seconds() -> Histogram:
    """Return histogram for plan-year status recomputation latency."""
    return _get_or_create_hist(
        name="kpi_recompute_duration_seconds",
        help_text="Latency (seconds) of plan-year status recomputation.",
    )


__all__ = [
    "get_db_operation_duration_seconds",
    "get_db_errors_total",
    "get_workflow_transitions_total",
    "get_notification_failures_total",
    "get_recompute_duration_seconds",
]
