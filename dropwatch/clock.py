"""Time sources for the scheduler.

All scheduling decisions read the current instant through a ``Clock`` so
tests can pin time to DST transitions and month/year boundaries.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional


class Clock:
    """Source of the current UTC instant."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


SystemClock = Clock


class FixedClock(Clock):
    """Clock frozen at a given instant that only moves when told to.

    Example:
        clock = FixedClock(datetime(2025, 1, 24, 2, 0, 1, tzinfo=timezone.utc))
        clock.advance(minutes=5)
    """

    def __init__(self, instant: Optional[datetime] = None) -> None:
        self._instant = ensure_utc(instant or datetime.now(timezone.utc))

    def now(self) -> datetime:
        return self._instant

    def set(self, instant: datetime) -> None:
        self._instant = ensure_utc(instant)

    def advance(self, **kwargs: float) -> datetime:
        """Move the clock forward by a ``timedelta(**kwargs)``."""
        self._instant = self._instant + timedelta(**kwargs)
        return self._instant


def ensure_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime (naive values are taken as UTC)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
