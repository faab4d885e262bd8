"""
Calendar boundary keys in Indian Standard Time.

Day and month keys are plain ``datetime.date`` values so they compare and sort
naturally; the month key is the first day of the month.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Callable, Optional
from zoneinfo import ZoneInfo

try:
    IST_TZ = ZoneInfo("Asia/Kolkata")
except Exception:  # pragma: no cover - fallback when tzdata missing
    IST_TZ = timezone(timedelta(hours=5, minutes=30))


def to_ist(moment: datetime) -> datetime:
    """Convert ``moment`` to IST, treating naive datetimes as UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(IST_TZ)


def day_key(moment: datetime) -> date:
    return to_ist(moment).date()


def month_key(moment: datetime) -> date:
    return to_ist(moment).date().replace(day=1)


def start_of_day(key: date) -> datetime:
    """Return the IST midnight that opens the given day key, as an aware datetime."""
    return datetime(key.year, key.month, key.day, tzinfo=IST_TZ)


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class BoundaryClock:
    """Wall clock with an injectable time source, used to detect period rollovers."""

    def __init__(self, now: Optional[Callable[[], datetime]] = None) -> None:
        self._now = now or _utcnow

    def now(self) -> datetime:
        return self._now()

    def day_key(self, moment: Optional[datetime] = None) -> date:
        return day_key(moment if moment is not None else self._now())

    def month_key(self, moment: Optional[datetime] = None) -> date:
        return month_key(moment if moment is not None else self._now())

    def keys(self) -> tuple[date, date]:
        """Return ``(day_key, month_key)`` computed from a single clock reading."""
        moment = self._now()
        return day_key(moment), month_key(moment)
