"""Prayer period state machine.

Given today's (and optionally tomorrow's) prayer times, the calculator works out
which period an instant falls in, when that period ends and what comes next.
Every call derives the answer from scratch; nothing is carried over between calls.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Tuple, Union

from prayer_times import PRAYER_ORDER, DailyPrayerTimes, PrayerName
from urgency import UrgencyLevel

LOGGER = logging.getLogger(__name__)

# Used only when auxiliary data is missing so the Isha window always has an end.
MIDNIGHT_FALLBACK = timedelta(hours=1)
ISHA_FALLBACK = timedelta(hours=6)

URGENT_THRESHOLD = timedelta(minutes=30)
EQUALITY_TOLERANCE = timedelta(seconds=1)


@dataclass(frozen=True)
class BeforeFajr:
    next_fajr: datetime

    @property
    def next_event_time(self) -> datetime:
        return self.next_fajr

    @property
    def is_active_time(self) -> bool:
        return False

    @property
    def description(self) -> str:
        return "Before Fajr"


@dataclass(frozen=True)
class InProgress:
    prayer: PrayerName
    deadline: datetime

    @property
    def next_event_time(self) -> datetime:
        return self.deadline

    @property
    def is_active_time(self) -> bool:
        return True

    @property
    def description(self) -> str:
        return f"{self.prayer.display_name} Period"


@dataclass(frozen=True)
class BetweenPrayers:
    previous: PrayerName
    next: PrayerName
    next_start: datetime

    @property
    def next_event_time(self) -> datetime:
        return self.next_start

    @property
    def is_active_time(self) -> bool:
        return False

    @property
    def description(self) -> str:
        return f"Between {self.previous.display_name} and {self.next.display_name}"


@dataclass(frozen=True)
class AfterIsha:
    tomorrow_fajr: datetime

    @property
    def next_event_time(self) -> datetime:
        return self.tomorrow_fajr

    @property
    def is_active_time(self) -> bool:
        return False

    @property
    def description(self) -> str:
        return "After Isha"


PrayerPeriodState = Union[BeforeFajr, InProgress, BetweenPrayers, AfterIsha]


def _unknown_state(state: object) -> TypeError:
    return TypeError(f"Unknown prayer period state: {state!r}")


@dataclass(frozen=True, eq=False)
class PrayerPeriod:
    """Snapshot of the prayer schedule at ``calculated_at``.

    Time-dependent queries take the instant to evaluate at, so the same snapshot
    can drive a ticking countdown without being rebuilt.
    """

    state: PrayerPeriodState
    today_prayers: DailyPrayerTimes
    tomorrow_prayers: Optional[DailyPrayerTimes]
    calculated_at: datetime

    @property
    def current_prayer(self) -> Optional[PrayerName]:
        if isinstance(self.state, InProgress):
            return self.state.prayer
        return None

    @property
    def next_prayer(self) -> Optional[Tuple[PrayerName, datetime]]:
        state = self.state
        if isinstance(state, BeforeFajr):
            return PrayerName.FAJR, state.next_fajr
        if isinstance(state, AfterIsha):
            return PrayerName.FAJR, state.tomorrow_fajr
        if isinstance(state, BetweenPrayers):
            return state.next, state.next_start
        if isinstance(state, InProgress):
            index = PRAYER_ORDER.index(state.prayer)
            if index + 1 < len(PRAYER_ORDER):
                following = PRAYER_ORDER[index + 1]
                return following, self.today_prayers.time_of(following)
            if self.tomorrow_prayers is not None:
                return PrayerName.FAJR, self.tomorrow_prayers.fajr
            return None
        raise _unknown_state(state)

    def time_until_next_event(self, now: datetime) -> timedelta:
        return self.state.next_event_time - now

    def period_progress(self, now: datetime) -> float:
        """Fraction of the current window that has elapsed, within [0, 1]."""
        state = self.state
        if isinstance(state, InProgress):
            return self._progress(self.today_prayers.time_of(state.prayer), state.deadline, now)
        if isinstance(state, BetweenPrayers):
            return self._progress(self.today_prayers.time_of(state.previous), state.next_start, now)
        if isinstance(state, (BeforeFajr, AfterIsha)):
            return 0.0
        raise _unknown_state(state)

    def is_urgent(self, now: datetime) -> bool:
        if not isinstance(self.state, InProgress):
            return False
        return self.state.deadline - now < URGENT_THRESHOLD

    def countdown_string(self, now: datetime) -> str:
        """Remaining time as HH:MM:SS, or MM:SS under an hour."""
        total = max(int(self.time_until_next_event(now).total_seconds()), 0)
        hours, remainder = divmod(total, 3600)
        minutes, seconds = divmod(remainder, 60)
        if hours > 0:
            return f"{hours:02d}:{minutes:02d}:{seconds:02d}"
        return f"{minutes:02d}:{seconds:02d}"

    def formatted_time_remaining(self, now: datetime) -> str:
        """Remaining time with context, e.g. ``"2h 30m until Asr"``."""
        total = int(self.time_until_next_event(now).total_seconds())
        if total <= 0:
            return "Now"

        hours, remainder = divmod(total, 3600)
        minutes = remainder // 60
        parts = []
        if hours > 0:
            parts.append(f"{hours}h")
        if minutes > 0 or hours == 0:
            parts.append(f"{minutes}m")
        text = " ".join(parts)

        state = self.state
        if isinstance(state, InProgress):
            upcoming = self.next_prayer
            if upcoming is None:
                return f"{text} remaining"
            return f"{text} until {upcoming[0].display_name}"
        if isinstance(state, BetweenPrayers):
            return f"{text} until {state.next.display_name}"
        if isinstance(state, (BeforeFajr, AfterIsha)):
            return f"{text} until {PrayerName.FAJR.display_name}"
        raise _unknown_state(state)

    def status_text(self, now: datetime) -> str:
        if self.state.is_active_time:
            return f"Ends in {self.countdown_string(now)}"
        return f"Starts in {self.countdown_string(now)}"

    def urgency_level(self, now: datetime) -> UrgencyLevel:
        return UrgencyLevel.from_seconds(self.time_until_next_event(now).total_seconds())

    @staticmethod
    def _progress(start: datetime, end: datetime, now: datetime) -> float:
        total = (end - start).total_seconds()
        if total <= 0:
            return 0.0
        elapsed = (now - start).total_seconds()
        return min(max(elapsed / total, 0.0), 1.0)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PrayerPeriod):
            return NotImplemented
        if self.state != other.state:
            return False
        if self.today_prayers.date != other.today_prayers.date:
            return False
        mine, theirs = self.tomorrow_prayers, other.tomorrow_prayers
        if (mine is None) != (theirs is None):
            return False
        if mine is not None and theirs is not None and mine.date != theirs.date:
            return False
        return abs(self.calculated_at - other.calculated_at) < EQUALITY_TOLERANCE

    # The time tolerance in __eq__ is not transitive, so snapshots are not hashable.
    __hash__ = None  # type: ignore[assignment]


class PrayerPeriodCalculator:
    """Maps (today, tomorrow, now) to a PrayerPeriod."""

    def __init__(
        self,
        midnight_fallback: timedelta = MIDNIGHT_FALLBACK,
        isha_fallback: timedelta = ISHA_FALLBACK,
    ) -> None:
        self.midnight_fallback = midnight_fallback
        self.isha_fallback = isha_fallback

    def calculate(
        self,
        today: DailyPrayerTimes,
        tomorrow: Optional[DailyPrayerTimes],
        now: datetime,
    ) -> PrayerPeriod:
        assert not today.sequence_violations(), today.sequence_violations()
        state = self._resolve_state(today, tomorrow, now)
        LOGGER.debug("Prayer period at %s: %s", now, state)
        return PrayerPeriod(state=state, today_prayers=today, tomorrow_prayers=tomorrow, calculated_at=now)

    def _resolve_state(
        self,
        today: DailyPrayerTimes,
        tomorrow: Optional[DailyPrayerTimes],
        now: datetime,
    ) -> PrayerPeriodState:
        prayers = today.prayer_times
        if now < prayers[0].time:
            return BeforeFajr(next_fajr=prayers[0].time)

        for index, prayer in enumerate(prayers):
            if now < prayer.time:
                continue
            if index + 1 >= len(prayers):
                return self._isha_state(today, tomorrow, now)

            following = prayers[index + 1]
            if now >= following.time:
                continue

            deadline = self._deadline_for(prayer.name, today, following.time)
            if now < deadline:
                return InProgress(prayer=prayer.name, deadline=deadline)
            return BetweenPrayers(previous=prayer.name, next=following.name, next_start=following.time)

        LOGGER.warning("No prayer period matched %s for %s; input is out of order", now, today.date)
        return BeforeFajr(next_fajr=today.fajr)

    def _isha_state(
        self,
        today: DailyPrayerTimes,
        tomorrow: Optional[DailyPrayerTimes],
        now: datetime,
    ) -> PrayerPeriodState:
        if today.midnight is not None:
            if now < today.midnight:
                return InProgress(prayer=PrayerName.ISHA, deadline=today.midnight)
            if tomorrow is not None:
                return AfterIsha(tomorrow_fajr=tomorrow.fajr)
            LOGGER.debug("Past midnight without tomorrow's times; extending Isha by %s", self.midnight_fallback)
            return InProgress(prayer=PrayerName.ISHA, deadline=now + self.midnight_fallback)

        if tomorrow is not None:
            if now < tomorrow.fajr:
                return InProgress(prayer=PrayerName.ISHA, deadline=tomorrow.fajr)
            return AfterIsha(tomorrow_fajr=tomorrow.fajr)

        LOGGER.debug("No midnight or tomorrow's times; Isha ends %s after it starts", self.isha_fallback)
        return InProgress(prayer=PrayerName.ISHA, deadline=today.isha + self.isha_fallback)

    @staticmethod
    def _deadline_for(prayer: PrayerName, times: DailyPrayerTimes, next_prayer_time: datetime) -> datetime:
        if prayer is PrayerName.FAJR:
            # Fajr closes at sunrise, not when Dhuhr begins.
            return times.sunrise
        if prayer is PrayerName.ISHA:
            return times.midnight or next_prayer_time
        return next_prayer_time


_DEFAULT_CALCULATOR = PrayerPeriodCalculator()


def calculate_prayer_period(
    today: DailyPrayerTimes,
    tomorrow: Optional[DailyPrayerTimes],
    now: datetime,
) -> PrayerPeriod:
    return _DEFAULT_CALCULATOR.calculate(today, tomorrow, now)
