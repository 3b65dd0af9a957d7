"""Shared utilities."""

from __future__ import annotations

from datetime import UTC, datetime


def utc_timestamp() -> str:
    """Return current UTC timestamp in ISO format."""
    return datetime.now(UTC).isoformat()
