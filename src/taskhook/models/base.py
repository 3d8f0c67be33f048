"""Shared helpers for Taskhook models."""

from __future__ import annotations

import time
from datetime import UTC, datetime
from uuid import uuid4


def generate_id(prefix: str) -> str:
    """Generate a unique ID with the given prefix.

    Examples:
        generate_id("dlv") -> "dlv_a1b2c3d4e5f6"
        generate_id("evt") -> "evt_a1b2c3d4e5f6"
    """
    return f"{prefix}_{uuid4().hex[:12]}"


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def epoch_ms() -> int:
    """Current time in epoch milliseconds, the wire format of X-Timestamp."""
    return time.time_ns() // 1_000_000
