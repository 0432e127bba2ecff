"""
Per-day consumption derived from cumulative readings.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Dict, Iterable, List

from data_plan_monitor.storage.models import UsageReading


@dataclass(frozen=True)
class DailyUsagePoint:
    """Data consumed during one calendar day."""
    date: date
    used_mb: float


def daily_usage(
    readings: Iterable[UsageReading],
    days: int,
    as_of: datetime
) -> List[DailyUsagePoint]:
    """Attribute consumption to each of the last `days` calendar days.

    Each day is represented by its last reading and charged the growth since
    the previous represented day. A drop in used_mb means the cycle reset, so
    the day is charged everything used since the reset. Days without a
    reading report zero and keep the previous reference.

    Args:
        readings: Reading history, in any order
        days: Number of days to report, ending on as_of's date
        as_of: Reference point; its time zone defines calendar days

    Returns:
        One point per day, oldest first
    """
    if days <= 0:
        raise ValueError("days must be > 0")

    tz = as_of.tzinfo or timezone.utc
    last_by_day: Dict[date, UsageReading] = {}
    for reading in sorted(readings, key=lambda r: _in_zone(r.timestamp, tz)):
        last_by_day[_in_zone(reading.timestamp, tz).date()] = reading

    end_day = as_of.date()
    first_day = end_day - timedelta(days=days - 1)

    # Seed the reference with the last reading before the reported range
    previous = None
    earlier_days = [d for d in last_by_day if d < first_day]
    if earlier_days:
        previous = last_by_day[max(earlier_days)]

    points = []
    for offset in range(days):
        day = first_day + timedelta(days=offset)
        current = last_by_day.get(day)
        used = 0.0
        if current is not None:
            if previous is not None:
                delta = current.used_mb - previous.used_mb
                used = delta if delta >= 0 else current.used_mb
            previous = current
        points.append(DailyUsagePoint(date=day, used_mb=used))
    return points


def _in_zone(timestamp: datetime, tz) -> datetime:
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    return timestamp.astimezone(tz)
