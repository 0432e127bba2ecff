"""
Consumption projection for the current billing cycle.

Derives burn rate, exhaustion date and cycle status from the reading
history. Nothing here is persisted: results are recomputed from the
readings on every call.

The burn rate is a plain linear rate between the first and last reading of
the cycle, with no smoothing or outlier rejection. Readings arrive once or a
few times a day, and a simple rate is easy to verify by hand.
"""

import calendar
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Iterable, List, Optional, Tuple

from data_plan_monitor.config.loader import PlanConfig
from data_plan_monitor.storage.models import UsageReading

SECONDS_PER_DAY = 86400.0


class ProjectionStatus(Enum):
    """Outlook for the plan at the current burn rate."""
    OK = "ok"                # Quota lasts well past the cycle end
    WARNING = "warning"      # Quota runs out shortly after the cycle end
    CRITICAL = "critical"    # Quota runs out before the cycle end


@dataclass(frozen=True)
class ProjectionResult:
    """Forecast for the billing cycle containing as_of."""
    average_daily_usage_mb: Optional[float]
    projected_exhaustion_date: Optional[datetime]
    days_remaining_in_cycle: float
    status: ProjectionStatus
    cycle_start: datetime
    cycle_end: datetime
    readings_in_cycle: int
    latest_reading: Optional[UsageReading] = None
    projected_cycle_end_usage_mb: Optional[float] = None


def _aware(timestamp: datetime) -> datetime:
    """Treat naive datetimes as UTC, matching the reading store."""
    if timestamp.tzinfo is None:
        return timestamp.replace(tzinfo=timezone.utc)
    return timestamp


def _days_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / SECONDS_PER_DAY


def cycle_boundary(year: int, month: int, start_day: int, tzinfo) -> datetime:
    """Get midnight of the cycle start day in the given month.

    Months shorter than start_day reset on their last day.
    """
    day = min(start_day, calendar.monthrange(year, month)[1])
    return datetime(year, month, day, tzinfo=tzinfo)


def current_cycle_window(plan: PlanConfig, as_of: datetime) -> Tuple[datetime, datetime]:
    """Get the billing cycle containing as_of.

    The cycle starts at midnight of the most recent cycle_start_day at or
    before as_of, in as_of's time zone, and lasts cycle_length_days.

    Returns:
        (cycle_start, cycle_end) with cycle_end exclusive
    """
    as_of = _aware(as_of)
    cycle_start = cycle_boundary(as_of.year, as_of.month, plan.cycle_start_day, as_of.tzinfo)
    if cycle_start > as_of:
        if as_of.month == 1:
            year, month = as_of.year - 1, 12
        else:
            year, month = as_of.year, as_of.month - 1
        cycle_start = cycle_boundary(year, month, plan.cycle_start_day, as_of.tzinfo)
    return cycle_start, cycle_start + timedelta(days=plan.cycle_length_days)


def _burn_rate(window: List[UsageReading]) -> Optional[float]:
    """Average MB per day between the first and last reading."""
    if len(window) < 2:
        return None
    first, last = window[0], window[-1]
    elapsed_days = _days_between(_aware(first.timestamp), _aware(last.timestamp))
    if elapsed_days <= 0:
        return None
    return (last.used_mb - first.used_mb) / elapsed_days


def _exhaustion_date(last: UsageReading, total_mb: float, rate: Optional[float]) -> Optional[datetime]:
    if rate is None or rate <= 0:
        return None
    remaining_mb = max(total_mb - last.used_mb, 0.0)
    return _aware(last.timestamp) + timedelta(days=remaining_mb / rate)


def _classify(
    exhaustion: Optional[datetime],
    cycle_end: datetime,
    plan: PlanConfig
) -> ProjectionStatus:
    if exhaustion is None:
        return ProjectionStatus.OK
    if exhaustion < cycle_end:
        return ProjectionStatus.CRITICAL
    warning_buffer = timedelta(days=plan.warning_buffer_ratio * plan.cycle_length_days)
    if exhaustion < cycle_end + warning_buffer:
        return ProjectionStatus.WARNING
    return ProjectionStatus.OK


def project(
    readings: Iterable[UsageReading],
    plan: PlanConfig,
    as_of: datetime
) -> ProjectionResult:
    """Project consumption for the billing cycle containing as_of.

    Steps:
    1. Keep readings inside the current cycle window
    2. Burn rate from the first and last of them (needs at least two)
    3. Exhaustion date when the rate is positive
    4. Status from where the exhaustion date falls relative to the cycle end:
       before it is CRITICAL, within the warning buffer after it is WARNING

    The quota is taken from the latest reading in the cycle, falling back to
    the plan default when that reading reports none.

    Args:
        readings: Reading history, in any order
        plan: Plan quota and cycle settings
        as_of: Point in time the projection is made for

    Returns:
        ProjectionResult for the current cycle
    """
    as_of = _aware(as_of)
    cycle_start, cycle_end = current_cycle_window(plan, as_of)

    window = sorted(
        (r for r in readings if cycle_start <= _aware(r.timestamp) < cycle_end),
        key=lambda r: _aware(r.timestamp)
    )
    days_remaining = max(0.0, _days_between(as_of, cycle_end))

    if not window:
        return ProjectionResult(
            average_daily_usage_mb=None,
            projected_exhaustion_date=None,
            days_remaining_in_cycle=days_remaining,
            status=ProjectionStatus.OK,
            cycle_start=cycle_start,
            cycle_end=cycle_end,
            readings_in_cycle=0
        )

    last = window[-1]
    total_mb = last.total_mb if last.total_mb > 0 else plan.total_mb
    rate = _burn_rate(window)
    exhaustion = _exhaustion_date(last, total_mb, rate)

    cycle_end_usage = None
    if rate is not None:
        days_to_cycle_end = max(0.0, _days_between(_aware(last.timestamp), cycle_end))
        cycle_end_usage = last.used_mb + max(rate, 0.0) * days_to_cycle_end

    return ProjectionResult(
        average_daily_usage_mb=rate,
        projected_exhaustion_date=exhaustion,
        days_remaining_in_cycle=days_remaining,
        status=_classify(exhaustion, cycle_end, plan),
        cycle_start=cycle_start,
        cycle_end=cycle_end,
        readings_in_cycle=len(window),
        latest_reading=last,
        projected_cycle_end_usage_mb=cycle_end_usage
    )
