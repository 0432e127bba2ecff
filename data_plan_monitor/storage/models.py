"""
Data models for storage layer.

Defines the usage reading stored in the append-only history.
"""

import math
from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class UsageReading:
    """Immutable carrier status observation.

    Readings form an append-only history keyed by timestamp.
    Corrections arrive as new readings, never as updates.
    """
    timestamp: datetime
    used_mb: float
    total_mb: float
    raw_text: str = ""

    def __post_init__(self):
        """Validate quantities are finite and non-negative."""
        if not math.isfinite(self.used_mb) or not math.isfinite(self.total_mb):
            raise ValueError("Quantities must be finite numbers")
        if self.used_mb < 0:
            raise ValueError("used_mb cannot be negative")
        if self.total_mb < 0:
            raise ValueError("total_mb cannot be negative")

    @property
    def remaining_mb(self) -> float:
        """Quota left; negative when bonus or roaming data exceeded the plan."""
        return self.total_mb - self.used_mb

    @property
    def used_ratio(self) -> float:
        """Share of the quota consumed (0.0 when the quota is unknown)."""
        if self.total_mb == 0:
            return 0.0
        return self.used_mb / self.total_mb
