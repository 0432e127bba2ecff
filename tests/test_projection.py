"""
Unit tests for consumption projection.

Tests cycle windows, burn rate, exhaustion dates and status thresholds.
"""

from datetime import datetime, timedelta, timezone

import pytest

from data_plan_monitor.config.loader import PlanConfig
from data_plan_monitor.core.projection import (
    ProjectionStatus,
    current_cycle_window,
    project,
)
from data_plan_monitor.storage.models import UsageReading

UTC = timezone.utc
PLAN = PlanConfig(total_mb=102400, cycle_start_day=1, cycle_length_days=30)


def reading(day: int, used_mb: float, total_mb: float = 102400, month: int = 3, hour: int = 0) -> UsageReading:
    """Create a reading in 2024 at the given day."""
    return UsageReading(
        timestamp=datetime(2024, month, day, hour, tzinfo=UTC),
        used_mb=used_mb,
        total_mb=total_mb
    )


class TestCycleWindow:
    """Test billing cycle boundaries."""

    def test_start_of_month_cycle(self):
        """Test a cycle starting on the 1st."""
        start, end = current_cycle_window(PLAN, datetime(2024, 3, 5, 12, tzinfo=UTC))

        assert start == datetime(2024, 3, 1, tzinfo=UTC)
        assert end == datetime(2024, 3, 31, tzinfo=UTC)

    def test_boundary_is_inclusive(self):
        """Test as_of exactly on the boundary starts a new cycle."""
        start, _ = current_cycle_window(PLAN, datetime(2024, 3, 1, tzinfo=UTC))
        assert start == datetime(2024, 3, 1, tzinfo=UTC)

    def test_mid_month_start_before_reset(self):
        """Test as_of before this month's reset falls in last month's cycle."""
        plan = PlanConfig(total_mb=1000, cycle_start_day=15)
        start, end = current_cycle_window(plan, datetime(2024, 3, 10, tzinfo=UTC))

        assert start == datetime(2024, 2, 15, tzinfo=UTC)
        assert end == datetime(2024, 3, 16, tzinfo=UTC)

    def test_mid_month_start_after_reset(self):
        """Test as_of after this month's reset."""
        plan = PlanConfig(total_mb=1000, cycle_start_day=15)
        start, _ = current_cycle_window(plan, datetime(2024, 3, 20, tzinfo=UTC))
        assert start == datetime(2024, 3, 15, tzinfo=UTC)

    def test_january_wraps_to_december(self):
        """Test the previous cycle can start in the previous year."""
        plan = PlanConfig(total_mb=1000, cycle_start_day=10)
        start, _ = current_cycle_window(plan, datetime(2024, 1, 5, tzinfo=UTC))
        assert start == datetime(2023, 12, 10, tzinfo=UTC)

    def test_short_month_resets_on_last_day(self):
        """Test a start day beyond the month length."""
        plan = PlanConfig(total_mb=1000, cycle_start_day=31)

        start, _ = current_cycle_window(plan, datetime(2024, 2, 29, 12, tzinfo=UTC))
        assert start == datetime(2024, 2, 29, tzinfo=UTC)

        start, _ = current_cycle_window(plan, datetime(2024, 2, 10, tzinfo=UTC))
        assert start == datetime(2024, 1, 31, tzinfo=UTC)

    def test_window_follows_as_of_zone(self):
        """Test midnight is taken in as_of's zone."""
        rome = timezone(timedelta(hours=1))
        start, _ = current_cycle_window(PLAN, datetime(2024, 3, 5, tzinfo=rome))
        assert start == datetime(2024, 3, 1, tzinfo=rome)

    def test_naive_as_of_is_utc(self):
        """Test naive datetimes are treated as UTC."""
        start, _ = current_cycle_window(PLAN, datetime(2024, 3, 5))
        assert start == datetime(2024, 3, 1, tzinfo=UTC)


    def test_gap_day_after_short_cycle(self):
        """Test the 31st of a 30-day cycle from the 1st is outside the cycle."""
        as_of = datetime(2024, 3, 31, 12, tzinfo=UTC)
        readings = [reading(30, 5000, hour=12), reading(31, 6000, hour=10)]

        result = project(readings, PLAN, as_of)

        assert result.cycle_start == datetime(2024, 3, 1, tzinfo=UTC)
        assert result.cycle_end == datetime(2024, 3, 31, tzinfo=UTC)
        assert result.readings_in_cycle == 1
        assert result.days_remaining_in_cycle == 0.0


class TestProjection:
    """Test projection results."""

    def test_two_reading_scenario(self):
        """Test the basic linear projection."""
        readings = [reading(1, 1000), reading(4, 4000)]
        as_of = datetime(2024, 3, 5, 12, tzinfo=UTC)

        result = project(readings, PLAN, as_of)

        assert result.average_daily_usage_mb == pytest.approx(1000)
        expected = datetime(2024, 3, 4, tzinfo=UTC) + timedelta(days=(102400 - 4000) / 1000)
        assert result.projected_exhaustion_date == expected
        assert result.days_remaining_in_cycle == pytest.approx(25.5)
        assert result.status == ProjectionStatus.OK
        assert result.readings_in_cycle == 2
        assert result.latest_reading == readings[-1]
        assert result.projected_cycle_end_usage_mb == pytest.approx(4000 + 1000 * 27)

    def test_no_readings(self):
        """Test an empty history gives no trend."""
        result = project([], PLAN, datetime(2024, 3, 5, tzinfo=UTC))

        assert result.average_daily_usage_mb is None
        assert result.projected_exhaustion_date is None
        assert result.status == ProjectionStatus.OK
        assert result.readings_in_cycle == 0
        assert result.latest_reading is None

    def test_single_reading(self):
        """Test one reading is not enough for a trend."""
        result = project([reading(2, 5000)], PLAN, datetime(2024, 3, 5, tzinfo=UTC))

        assert result.average_daily_usage_mb is None
        assert result.projected_exhaustion_date is None
        assert result.projected_cycle_end_usage_mb is None
        assert result.readings_in_cycle == 1
        assert result.latest_reading.used_mb == 5000

    def test_readings_outside_cycle_are_ignored(self):
        """Test last cycle's readings do not feed the rate."""
        readings = [
            reading(20, 50000, month=2),
            reading(28, 90000, month=2),
            reading(2, 1000),
        ]

        result = project(readings, PLAN, datetime(2024, 3, 5, tzinfo=UTC))

        assert result.readings_in_cycle == 1
        assert result.average_daily_usage_mb is None

    def test_increasing_usage_projects_future_exhaustion(self):
        """Test monotonic usage gives a positive rate and a later date."""
        readings = [reading(day, day * 700.0) for day in range(1, 10)]

        result = project(readings, PLAN, datetime(2024, 3, 10, tzinfo=UTC))

        assert result.average_daily_usage_mb > 0
        assert result.projected_exhaustion_date > readings[-1].timestamp

    def test_flat_usage_has_no_exhaustion(self):
        """Test a zero rate never exhausts the plan."""
        result = project([reading(1, 3000), reading(3, 3000)], PLAN, datetime(2024, 3, 5, tzinfo=UTC))

        assert result.average_daily_usage_mb == 0
        assert result.projected_exhaustion_date is None
        assert result.status == ProjectionStatus.OK

    def test_decreasing_usage_has_no_exhaustion(self):
        """Test a negative rate never exhausts the plan."""
        result = project([reading(1, 3000), reading(3, 1000)], PLAN, datetime(2024, 3, 5, tzinfo=UTC))

        assert result.average_daily_usage_mb < 0
        assert result.projected_exhaustion_date is None
        assert result.projected_cycle_end_usage_mb == 1000

    def test_unsorted_input(self):
        """Test reading order does not matter."""
        readings = [reading(4, 4000), reading(1, 1000), reading(3, 2500)]
        as_of = datetime(2024, 3, 5, tzinfo=UTC)

        assert project(readings, PLAN, as_of) == project(sorted(readings, key=lambda r: r.timestamp), PLAN, as_of)

    def test_repeated_calls_are_identical(self):
        """Test the projection is deterministic."""
        readings = [reading(1, 1000), reading(4, 4000)]
        as_of = datetime(2024, 3, 5, tzinfo=UTC)

        assert project(readings, PLAN, as_of) == project(readings, PLAN, as_of)

    def test_days_remaining_floored_at_zero(self):
        """Test as_of after the cycle end."""
        plan = PlanConfig(total_mb=1000, cycle_start_day=1, cycle_length_days=10)

        result = project([], plan, datetime(2024, 3, 20, tzinfo=UTC))

        assert result.days_remaining_in_cycle == 0

    def test_quota_from_latest_reading(self):
        """Test a resized plan uses the newest quota."""
        readings = [reading(1, 0, total_mb=10000), reading(2, 1000, total_mb=20000)]

        result = project(readings, PLAN, datetime(2024, 3, 3, tzinfo=UTC))

        assert result.projected_exhaustion_date == datetime(2024, 3, 2, tzinfo=UTC) + timedelta(days=19)

    def test_quota_falls_back_to_plan(self):
        """Test readings without quota use the plan default."""
        readings = [reading(1, 0, total_mb=0), reading(2, 1000, total_mb=0)]

        result = project(readings, PLAN, datetime(2024, 3, 3, tzinfo=UTC))

        assert result.projected_exhaustion_date == datetime(2024, 3, 2, tzinfo=UTC) + timedelta(days=101.4)

    def test_already_exhausted(self):
        """Test usage above quota reports exhaustion at the last reading."""
        readings = [reading(1, 90000), reading(2, 110000)]

        result = project(readings, PLAN, datetime(2024, 3, 3, tzinfo=UTC))

        assert result.projected_exhaustion_date == readings[-1].timestamp
        assert result.status == ProjectionStatus.CRITICAL


class TestProjectionStatus:
    """Test status thresholds around the cycle end (March 31)."""

    def test_critical_when_exhausted_before_cycle_end(self):
        """Test exhaustion inside the cycle."""
        readings = [reading(1, 0, total_mb=10240), reading(2, 1000, total_mb=10240)]

        result = project(readings, PLAN, datetime(2024, 3, 3, tzinfo=UTC))

        assert result.projected_exhaustion_date < result.cycle_end
        assert result.status == ProjectionStatus.CRITICAL

    def test_warning_within_buffer_after_cycle_end(self):
        """Test exhaustion 2 days after the end, inside the 4.5 day buffer."""
        readings = [reading(1, 0, total_mb=32000), reading(11, 10000, total_mb=32000)]

        result = project(readings, PLAN, datetime(2024, 3, 12, tzinfo=UTC))

        assert result.projected_exhaustion_date == datetime(2024, 4, 2, tzinfo=UTC)
        assert result.status == ProjectionStatus.WARNING

    def test_ok_beyond_buffer(self):
        """Test exhaustion 5 days after the end is outside the buffer."""
        readings = [reading(1, 0, total_mb=35000), reading(11, 10000, total_mb=35000)]

        result = project(readings, PLAN, datetime(2024, 3, 12, tzinfo=UTC))

        assert result.projected_exhaustion_date == datetime(2024, 4, 5, tzinfo=UTC)
        assert result.status == ProjectionStatus.OK

    def test_zero_buffer_disables_warning(self):
        """Test a plan without a warning band."""
        plan = PlanConfig(total_mb=102400, warning_buffer_ratio=0.0)
        readings = [reading(1, 0, total_mb=32000), reading(11, 10000, total_mb=32000)]

        result = project(readings, plan, datetime(2024, 3, 12, tzinfo=UTC))

        assert result.status == ProjectionStatus.OK
