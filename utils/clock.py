from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite liefert naive Datumswerte zurück, diese gelten als UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class SystemClock:
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock:
    """Clock for tests: returns the same instant until moved."""

    def __init__(self, now: Optional[datetime] = None) -> None:
        self._now = as_utc(now) or datetime.now(timezone.utc)

    def now(self) -> datetime:
        return self._now

    def set(self, now: datetime) -> None:
        self._now = as_utc(now)

    def advance(self, **delta: float) -> datetime:
        self._now = self._now + timedelta(**delta)
        return self._now
