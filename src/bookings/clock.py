"""UTC time helpers.

All timestamps inside the booking core are naive datetimes expressed in UTC,
matching what the store hands back. Aware values coming from requests are
converted on the way in.
"""
from datetime import datetime, date, timedelta, timezone
from typing import Callable, Optional

Clock = Callable[[], datetime]

def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)

def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)

def start_of_day(day: date) -> datetime:
    return datetime(day.year, day.month, day.day)

def day_bounds(moment: datetime):
    """Return [start-of-day, start-of-next-day) for the UTC day containing moment"""
    start = start_of_day(moment.date())
    return start, start + timedelta(days=1)
