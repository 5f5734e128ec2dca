"""Urgency banding for the time left in a prayer window."""
from __future__ import annotations

from enum import IntEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover - import only for annotations
    from datetime import datetime

    from prayer_period import PrayerPeriod


class UrgencyLevel(IntEnum):
    """Ordered from least to most urgent."""

    RELAXED = 0  # 2 hours or more
    NORMAL = 1  # 30 minutes to 2 hours
    ELEVATED = 2  # 10 to 30 minutes
    URGENT = 3  # 5 to 10 minutes
    CRITICAL = 4  # under 5 minutes

    @classmethod
    def from_minutes(cls, minutes_remaining: int) -> "UrgencyLevel":
        if minutes_remaining >= 120:
            return cls.RELAXED
        if minutes_remaining >= 30:
            return cls.NORMAL
        if minutes_remaining >= 10:
            return cls.ELEVATED
        if minutes_remaining >= 5:
            return cls.URGENT
        return cls.CRITICAL

    @classmethod
    def from_seconds(cls, seconds_remaining: float) -> "UrgencyLevel":
        return cls.from_minutes(int(seconds_remaining / 60))

    @classmethod
    def from_period(cls, period: "PrayerPeriod", now: "datetime") -> "UrgencyLevel":
        return cls.from_seconds(period.time_until_next_event(now).total_seconds())

    @property
    def should_pulse(self) -> bool:
        return self is UrgencyLevel.CRITICAL

    @property
    def description(self) -> str:
        return _DESCRIPTIONS[self]


_DESCRIPTIONS = {
    UrgencyLevel.RELAXED: "More than 2 hours remaining",
    UrgencyLevel.NORMAL: "Between 30 minutes and 2 hours remaining",
    UrgencyLevel.ELEVATED: "Between 10 and 30 minutes remaining",
    UrgencyLevel.URGENT: "Less than 10 minutes remaining",
    UrgencyLevel.CRITICAL: "Less than 5 minutes remaining, prayer time ending soon",
}
