# tests/unit/infrastructure/test_json_logger.py
from __future__ import annotations

import contextvars
import json
import logging
from decimal import Decimal

import pytest

from kpi_monitor.domain.enums.approval import NotificationKind
from kpi_monitor.infrastructure.logging.logger import (
    _JsonFormatter,  # internal but importable
    configure_root_logging,
    get_actor,
    get_correlation_id,
    get_json_logger,
    set_request_context,
)


def _render(msg: str, **attrs) -> dict:
    """Format a synthetic record and return the parsed JSON payload."""
    logger = logging.getLogger("test.kpi.logger")
    record = logger.makeRecord(
        name=logger.name,
        level=logging.INFO,
        fn="test_json_logger",
        lno=1,
        msg=msg,
        args=(),
        exc_info=None,
    )
    for k, v in attrs.items():
        setattr(record, k, v)
    return json.loads(_JsonFormatter().format(record))


def test_configure_root_logging_respects_log_level(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LOG_LEVEL", "warning")
    root = logging.getLogger()
    saved, saved_level = root.handlers[:], root.level
    root.handlers.clear()
    try:
        configure_root_logging()
        configure_root_logging()
        assert root.level == logging.WARNING
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, _JsonFormatter)
    finally:
        root.handlers[:] = saved
        root.setLevel(saved_level)


def test_extra_payload_is_merged_and_rendered() -> None:
    payload = _render(
        "change_approved",
        extra={"change_id": 7, "value": Decimal("1.50"), "kind": NotificationKind.APPROVED},
    )

    assert payload["message"] == "change_approved"
    assert payload["level"] == "INFO"
    assert payload["change_id"] == 7
    assert payload["value"] == "1.50"
    assert payload["kind"] == "approved"


def test_correlation_and_actor_come_from_context(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("CORRELATION_ID", raising=False)

    def _inside() -> dict:
        set_request_context(correlation_id="cid-1", actor="alice")
        assert get_correlation_id() == "cid-1"
        assert get_actor() == "alice"
        return _render("inside")

    payload = contextvars.copy_context().run(_inside)

    assert payload["correlation_id"] == "cid-1"
    assert payload["actor"] == "alice"
    # The outer context is untouched.
    assert "correlation_id" not in _render("outside")


def test_correlation_id_falls_back_to_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CORRELATION_ID", "env-cid")

    assert _render("env")["correlation_id"] == "env-cid"
    assert _render("attr", correlation_id="rec-cid")["correlation_id"] == "rec-cid"


def test_get_json_logger_propagates() -> None:
    assert get_json_logger("kpi_monitor.test").propagate is True
