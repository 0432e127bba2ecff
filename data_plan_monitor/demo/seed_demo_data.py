# data_plan_monitor/demo/seed_demo_data.py

import random
from datetime import date, datetime, time, timedelta, timezone
from typing import List, Optional

from data_plan_monitor.core.parser import MB_PER_GB
from data_plan_monitor.core.projection import cycle_boundary
from data_plan_monitor.storage.models import UsageReading
from data_plan_monitor.storage.repository import ReadingRepository, get_repository

# (upper bound of roll out of 100, min MB, max MB) for a day's usage
DAILY_USAGE_BANDS = [
    (55, 0, 2_000),
    (85, 2_000, 5_000),
    (98, 5_000, 8_000),
    (100, 8_000, 10_240),
]


def _format_gb(mb: float) -> str:
    return f"{mb / MB_PER_GB:.2f}".replace(".", ",")


def render_status_text(used_mb: float, total_mb: float) -> str:
    """Render a reading the way the carrier's usage message reads."""
    return f"Hai usato {_format_gb(used_mb)} GB su {_format_gb(total_mb)} GB"


def _draw_daily_usage(rng: random.Random) -> int:
    roll = rng.randrange(100)
    for upper, low, high in DAILY_USAGE_BANDS:
        if roll < upper:
            return rng.randint(low, high)
    return 0


def _is_cycle_start(day: date, cycle_start_day: int) -> bool:
    return cycle_boundary(day.year, day.month, cycle_start_day, timezone.utc).date() == day


def generate_synthetic_readings(
    total_mb: float = 100 * MB_PER_GB,
    days: int = 90,
    end: Optional[datetime] = None,
    seed: int = 42,
    cycle_start_day: int = 1
) -> List[UsageReading]:
    """Generate a plausible reading history ending at `end`.

    One to three readings per day at increasing times, usage reset at
    midnight of every cycle start day, never above the quota. Same seed and
    end give the same history.
    """
    rng = random.Random(seed)
    end = end or datetime.now(timezone.utc)
    if end.tzinfo is None:
        end = end.replace(tzinfo=timezone.utc)

    day: date = (end - timedelta(days=days - 1)).date()
    # Start part-way through a cycle unless the history begins on a reset
    used = 0.0 if _is_cycle_start(day, cycle_start_day) else float(rng.randint(0, int(total_mb * 0.7)))
    readings: List[UsageReading] = []

    while day <= end.date():
        if _is_cycle_start(day, cycle_start_day):
            used = 0.0
            reset_at = datetime.combine(day, time(0, rng.randint(0, 29), rng.randint(0, 59)), tzinfo=timezone.utc)
            if reset_at <= end:
                readings.append(_reading(reset_at, used, total_mb))

        samples = rng.randint(1, 3)
        day_usage = min(_draw_daily_usage(rng), total_mb - used)
        hour = 1
        for i in range(samples):
            hour = rng.randint(hour, max(hour, 23 - (samples - i - 1) * 2))
            ts = datetime.combine(day, time(hour, rng.randint(0, 59), rng.randint(0, 59)), tzinfo=timezone.utc)
            hour = min(hour + 2, 23)
            if ts > end:
                continue
            if i + 1 == samples:
                share = day_usage
            else:
                share = rng.uniform(0, day_usage / (samples - i))
            day_usage -= share
            used = min(used + share, total_mb)
            readings.append(_reading(ts, used, total_mb))

        day += timedelta(days=1)

    return readings


def _reading(ts: datetime, used_mb: float, total_mb: float) -> UsageReading:
    used_mb = round(used_mb, 2)
    return UsageReading(
        timestamp=ts,
        used_mb=used_mb,
        total_mb=total_mb,
        raw_text=render_status_text(used_mb, total_mb)
    )


def seed_demo_data(
    repository: ReadingRepository,
    total_mb: float = 100 * MB_PER_GB,
    days: int = 90,
    seed: int = 42,
    cycle_start_day: int = 1,
    end: Optional[datetime] = None
) -> int:
    """Insert synthetic readings; returns how many were new."""
    repository.initialize_schema()
    inserted = 0
    for reading in generate_synthetic_readings(total_mb, days, end, seed, cycle_start_day):
        if repository.insert_if_absent(reading):
            inserted += 1
    return inserted


if __name__ == "__main__":
    count = seed_demo_data(get_repository())
    print(f"Demo usage data inserted: {count} readings")
