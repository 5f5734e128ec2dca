"""Keeps a prayer period current as time passes and days roll over."""
from __future__ import annotations

import logging
import threading
from datetime import date, datetime, timedelta
from typing import Callable, List, Optional

from prayer_period import PrayerPeriod, PrayerPeriodCalculator
from prayer_times import DailyPrayerTimes

LOGGER = logging.getLogger(__name__)

PeriodListener = Callable[[PrayerPeriod], None]


class PrayerPeriodMonitor:
    """Own today's and tomorrow's prayer times and recompute the period on demand.

    ``loader`` returns the prayer times for a calendar date and is only called on
    the initial load and on day transitions.
    """

    def __init__(
        self,
        loader: Callable[[date], DailyPrayerTimes],
        calculator: Optional[PrayerPeriodCalculator] = None,
    ) -> None:
        self._loader = loader
        self._calculator = calculator or PrayerPeriodCalculator()
        self._lock = threading.Lock()
        self._transition_lock = threading.RLock()
        self._update_listeners: List[PeriodListener] = []
        self._state_listeners: List[PeriodListener] = []
        self.today: Optional[DailyPrayerTimes] = None
        self.tomorrow: Optional[DailyPrayerTimes] = None
        self.current_period: Optional[PrayerPeriod] = None

    def on_update(self, callback: PeriodListener) -> None:
        self._update_listeners.append(callback)

    def on_state_change(self, callback: PeriodListener) -> None:
        self._state_listeners.append(callback)

    def load(self, today_date: date) -> None:
        LOGGER.info("Loading prayer times for %s", today_date)
        today = self._loader(today_date)
        tomorrow = self._load_tomorrow(today_date)
        with self._lock:
            self.today = today
            self.tomorrow = tomorrow

    def needs_day_transition(self, now: datetime) -> bool:
        """True once the calendar day has moved on and tomorrow's Fajr has begun.

        The previous day's times stay in place past civil midnight so that the
        Isha window and the after-Isha state remain visible until the next Fajr.
        """
        with self._lock:
            today, tomorrow = self.today, self.tomorrow
        if today is None:
            return True
        if today.date >= now.date():
            return False
        return tomorrow is None or now >= tomorrow.fajr

    def perform_day_transition(self, now: datetime) -> None:
        current_date = now.date()
        with self._lock:
            promoted = self.tomorrow if self.tomorrow and self.tomorrow.date == current_date else None
        if promoted is not None:
            LOGGER.info("Day transition: promoting prayer times for %s", current_date)
            tomorrow = self._load_tomorrow(current_date)
            with self._lock:
                self.today = promoted
                self.tomorrow = tomorrow
        else:
            LOGGER.info("Day transition: reloading prayer times for %s", current_date)
            self.load(current_date)

    def ensure_current(self, now: datetime) -> bool:
        """Run a day transition if one is due; returns whether it ran.

        Ticks and the daily refresh run on different scheduler workers, so the
        check and the transition happen as one step.
        """
        with self._transition_lock:
            if not self.needs_day_transition(now):
                return False
            self.perform_day_transition(now)
            return True

    def refresh(self, now: datetime) -> None:
        """Daily refresh: transition if due, otherwise retry a missing tomorrow."""
        with self._transition_lock:
            if self.ensure_current(now):
                return
            with self._lock:
                today, missing = self.today, self.tomorrow is None
            if today is not None and missing:
                tomorrow = self._load_tomorrow(today.date)
                with self._lock:
                    self.tomorrow = tomorrow

    def recalculate(self, now: datetime) -> Optional[PrayerPeriod]:
        with self._lock:
            if self.today is None:
                LOGGER.warning("Cannot recalculate period: today's prayer times are not loaded")
                return None
            previous = self.current_period
            period = self._calculator.calculate(self.today, self.tomorrow, now)
            self.current_period = period

        if previous is None or previous.state != period.state:
            LOGGER.info("Prayer period changed: %s", period.state.description)
            self._notify(self._state_listeners, period)
        self._notify(self._update_listeners, period)
        return period

    def tick(self, now: datetime) -> Optional[PrayerPeriod]:
        self.ensure_current(now)
        return self.recalculate(now)

    def _load_tomorrow(self, today_date: date) -> Optional[DailyPrayerTimes]:
        tomorrow_date = today_date + timedelta(days=1)
        try:
            return self._loader(tomorrow_date)
        except Exception:
            LOGGER.warning("Failed to load prayer times for %s", tomorrow_date, exc_info=True)
            return None

    @staticmethod
    def _notify(listeners: List[PeriodListener], period: PrayerPeriod) -> None:
        for listener in list(listeners):
            try:
                listener(period)
            except Exception:
                LOGGER.exception("Prayer period listener %s failed", getattr(listener, "__name__", listener))
