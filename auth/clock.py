"""
auth/clock.py -- The trusted time source shared by every engine component.

Token expiry, one-time token expiry and session expiry are all compared against
the same Clock. Components take it as a constructor argument so tests can
substitute a controllable clock.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone

Clock = Callable[[], datetime]


def system_clock() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)
