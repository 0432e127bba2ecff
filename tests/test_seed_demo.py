"""
Tests for synthetic demo data.
"""

import os
import tempfile
from datetime import date, datetime, timezone

import pytest

from data_plan_monitor.core.parser import parse_message
from data_plan_monitor.demo.seed_demo_data import (
    generate_synthetic_readings,
    render_status_text,
    seed_demo_data,
)
from data_plan_monitor.storage.repository import ReadingRepository

END = datetime(2024, 3, 20, 18, 0, tzinfo=timezone.utc)


class TestSyntheticReadings:
    """Test the reading generator."""

    def test_same_seed_same_history(self):
        """Test generation is reproducible."""
        assert generate_synthetic_readings(days=30, end=END, seed=7) == generate_synthetic_readings(
            days=30, end=END, seed=7
        )

    def test_different_seed_different_history(self):
        """Test the seed drives the history."""
        assert generate_synthetic_readings(days=30, end=END, seed=1) != generate_synthetic_readings(
            days=30, end=END, seed=2
        )

    def test_timestamps_strictly_increasing_and_bounded(self):
        """Test readings are ordered and never after end."""
        readings = generate_synthetic_readings(days=60, end=END)
        timestamps = [r.timestamp for r in readings]

        assert all(a < b for a, b in zip(timestamps, timestamps[1:]))
        assert timestamps[-1] <= END

    def test_usage_within_quota(self):
        """Test usage never exceeds the quota."""
        readings = generate_synthetic_readings(total_mb=5 * 1024, days=60, end=END)

        assert all(0 <= r.used_mb <= r.total_mb for r in readings)

    def test_usage_only_drops_on_cycle_start(self):
        """Test cumulative usage resets to zero at the cycle start day."""
        readings = generate_synthetic_readings(days=60, end=END, cycle_start_day=10)

        for previous, current in zip(readings, readings[1:]):
            if current.used_mb < previous.used_mb:
                assert current.timestamp.day == 10
                assert current.used_mb == 0

        resets = [r for r in readings if r.timestamp.day == 10 and r.timestamp.hour == 0]
        assert len(resets) == 2

    def test_reset_on_last_day_of_short_months(self):
        """Test a start day past the month's end resets on its last day."""
        readings = generate_synthetic_readings(days=90, end=END, cycle_start_day=31)

        resets = [r.timestamp.date() for r in readings if r.timestamp.hour == 0]
        assert resets == [date(2023, 12, 31), date(2024, 1, 31), date(2024, 2, 29)]
        assert all(r.used_mb == 0 for r in readings if r.timestamp.hour == 0)

    def test_raw_text_parses_back(self):
        """Test stored text reads like a carrier message."""
        for reading in generate_synthetic_readings(days=10, end=END):
            parsed = parse_message(reading.raw_text, reading.timestamp)

            assert parsed.total_mb == reading.total_mb
            assert parsed.used_mb == pytest.approx(reading.used_mb, abs=6)

    def test_render_status_text(self):
        """Test gigabytes with a decimal comma."""
        assert render_status_text(2560, 102400) == "Hai usato 2,50 GB su 100,00 GB"


class TestSeedDemoData:
    """Test seeding a store."""

    def test_seed_is_idempotent(self):
        """Test seeding twice inserts nothing new."""
        with tempfile.TemporaryDirectory() as temp_dir:
            repository = ReadingRepository(os.path.join(temp_dir, "demo.db"))

            inserted = seed_demo_data(repository, days=20, end=END)

            assert inserted == repository.count_readings()
            assert inserted == len(generate_synthetic_readings(days=20, end=END))
            assert seed_demo_data(repository, days=20, end=END) == 0
