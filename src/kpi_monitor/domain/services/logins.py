# src/kpi_monitor/domain/services/logins.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Login normalization helpers."""

from __future__ import annotations


def normalize_login(raw: str | None) -> str:
    """Normalize a directory login to its bare, lower-case account name.

    ``DOMAIN\\jdoe``, ``jdoe@example.org`` and `` JDoe `` all become ``jdoe``.
    Blank input yields an empty string.
    """
    value = (raw or "").strip()
    if not value:
        return ""
    backslash = value.rfind("\\")
    if 0 <= backslash < len(value) - 1:
        value = value[backslash + 1 :]
    at = value.find("@")
    if at > 0:
        value = value[:at]
    return value.strip().lower()


def same_login(left: str | None, right: str | None) -> bool:
    """Return True when both logins are set and normalize to the same account."""
    a, b = normalize_login(left), normalize_login(right)
    return bool(a) and a == b


__all__ = ["normalize_login", "same_login"]
