"""Time sources. All temporal math in the core is relative to a Clock."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """Wall-clock time in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock:
    """A clock that only moves when told to."""

    def __init__(self, at: datetime) -> None:
        self._now = as_utc(at)

    def now(self) -> datetime:
        return self._now

    def advance(self, **kwargs: float) -> datetime:
        self._now = self._now + timedelta(**kwargs)
        return self._now

    def set(self, at: datetime) -> None:
        self._now = as_utc(at)


def as_utc(dt: datetime) -> datetime:
    """Normalize a timestamp to aware UTC. Naive values are taken as UTC (SQLite drops tzinfo)."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def utc_day(now: datetime) -> date:
    """Calendar day (UTC) a timestamp falls on."""
    return as_utc(now).date()


def start_of_day(now: datetime) -> datetime:
    """Midnight UTC of the day containing now."""
    return as_utc(now).replace(hour=0, minute=0, second=0, microsecond=0)


def start_of_week(now: datetime) -> datetime:
    """Monday 00:00 UTC of the ISO week containing now."""
    midnight = start_of_day(now)
    return midnight - timedelta(days=midnight.weekday())


def hours_between(earlier: datetime, later: datetime) -> float:
    """Elapsed hours from earlier to later (negative if earlier is in the future)."""
    return (as_utc(later) - as_utc(earlier)).total_seconds() / 3600
