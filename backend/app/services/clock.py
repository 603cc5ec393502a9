"""
services/clock.py — UTC clock injected into the auth core.

Tests pass a lambda returning a fixed datetime instead of utc_now.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """
    SQLite drops tzinfo on DateTime(timezone=True) columns; PostgreSQL keeps it.
    Stored values are always UTC, so a naive value is tagged rather than converted.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
