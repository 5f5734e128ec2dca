import threading
import time
from datetime import date, timedelta
from typing import List

import pytest

from conftest import BASE_DATE, at, make_day
from monitor import PrayerPeriodMonitor
from prayer_period import AfterIsha, BeforeFajr, InProgress
from prayer_times import PrayerName


class _Loader:
    def __init__(self, fail_on: tuple = ()) -> None:
        self.requested: List[date] = []
        self.fail_on = set(fail_on)

    def __call__(self, target: date):
        self.requested.append(target)
        if target in self.fail_on:
            raise ConnectionError(f"no data for {target}")
        return make_day(target)


NEXT_DATE = BASE_DATE + timedelta(days=1)


def test_load_fetches_today_and_tomorrow():
    loader = _Loader()
    monitor = PrayerPeriodMonitor(loader)

    monitor.load(BASE_DATE)

    assert loader.requested == [BASE_DATE, NEXT_DATE]
    assert monitor.today.date == BASE_DATE
    assert monitor.tomorrow.date == NEXT_DATE


def test_tomorrow_failure_leaves_it_unknown():
    monitor = PrayerPeriodMonitor(_Loader(fail_on=(NEXT_DATE,)))

    monitor.load(BASE_DATE)
    period = monitor.recalculate(at(0, 30, day_offset=1))

    assert monitor.tomorrow is None
    assert isinstance(period.state, InProgress)
    assert period.current_prayer is PrayerName.ISHA


def test_today_failure_propagates():
    monitor = PrayerPeriodMonitor(_Loader(fail_on=(BASE_DATE,)))

    with pytest.raises(ConnectionError):
        monitor.load(BASE_DATE)


def test_recalculate_without_data_returns_none():
    assert PrayerPeriodMonitor(_Loader()).recalculate(at(12, 0)) is None


def test_first_tick_loads_the_current_day():
    loader = _Loader()
    monitor = PrayerPeriodMonitor(loader)

    period = monitor.tick(at(13, 0))

    assert loader.requested == [BASE_DATE, NEXT_DATE]
    assert period.current_prayer is PrayerName.DHUHR


def test_previous_day_is_kept_after_civil_midnight():
    loader = _Loader()
    monitor = PrayerPeriodMonitor(loader)
    monitor.load(BASE_DATE)

    before_midnight = monitor.tick(at(0, 5, day_offset=1))
    after_midnight = monitor.tick(at(1, 0, day_offset=1))

    assert before_midnight.state == InProgress(prayer=PrayerName.ISHA, deadline=at(0, 15, day_offset=1))
    assert after_midnight.state == AfterIsha(tomorrow_fajr=at(5, 0, day_offset=1))
    assert monitor.today.date == BASE_DATE
    assert loader.requested == [BASE_DATE, NEXT_DATE]


def test_transition_promotes_tomorrow_at_fajr():
    loader = _Loader()
    monitor = PrayerPeriodMonitor(loader)
    monitor.load(BASE_DATE)

    period = monitor.tick(at(5, 10, day_offset=1))

    assert monitor.today.date == NEXT_DATE
    assert monitor.tomorrow.date == NEXT_DATE + timedelta(days=1)
    assert loader.requested == [BASE_DATE, NEXT_DATE, NEXT_DATE + timedelta(days=1)]
    assert period.current_prayer is PrayerName.FAJR


def test_transition_reloads_when_tomorrow_is_stale():
    loader = _Loader()
    monitor = PrayerPeriodMonitor(loader)
    monitor.load(BASE_DATE)
    later = BASE_DATE + timedelta(days=3)

    period = monitor.tick(at(3, 0, day=later))

    assert monitor.today.date == later
    assert loader.requested[-2:] == [later, later + timedelta(days=1)]
    assert period.state == BeforeFajr(next_fajr=at(5, 0, day=later))


def test_transition_without_tomorrow_happens_at_date_change():
    monitor = PrayerPeriodMonitor(_Loader(fail_on=(NEXT_DATE,)))
    monitor.load(BASE_DATE)

    assert not monitor.needs_day_transition(at(23, 59))
    assert monitor.needs_day_transition(at(0, 1, day_offset=1))


def test_listeners():
    monitor = PrayerPeriodMonitor(_Loader())
    monitor.load(BASE_DATE)
    updates: list = []
    changes: list = []
    monitor.on_update(updates.append)
    monitor.on_state_change(changes.append)

    monitor.tick(at(13, 0))
    monitor.tick(at(13, 0, 1))
    monitor.tick(at(15, 30))

    assert len(updates) == 3
    assert [period.current_prayer for period in changes] == [PrayerName.DHUHR, PrayerName.ASR]


def test_failing_listener_does_not_block_others():
    monitor = PrayerPeriodMonitor(_Loader())
    monitor.load(BASE_DATE)
    seen: list = []

    def broken(_period):
        raise ValueError("boom")

    monitor.on_update(broken)
    monitor.on_update(seen.append)

    monitor.tick(at(13, 0))

    assert len(seen) == 1


class _SlowLoader(_Loader):
    def __call__(self, target: date):
        time.sleep(0.05)
        return super().__call__(target)


class _FlakyLoader(_Loader):
    """Fails the first request for each date in ``fail_on`` and succeeds afterwards."""

    def __call__(self, target: date):
        try:
            return super().__call__(target)
        finally:
            self.fail_on.discard(target)


def test_ensure_current_transitions_once():
    loader = _Loader()
    monitor = PrayerPeriodMonitor(loader)
    monitor.load(BASE_DATE)
    now = at(5, 10, day_offset=1)

    assert monitor.ensure_current(now)
    assert not monitor.ensure_current(now)
    assert loader.requested == [BASE_DATE, NEXT_DATE, NEXT_DATE + timedelta(days=1)]


def test_concurrent_tick_and_refresh_transition_once():
    loader = _SlowLoader()
    monitor = PrayerPeriodMonitor(loader)
    monitor.load(BASE_DATE)
    now = at(5, 10, day_offset=1)

    workers = [
        threading.Thread(target=monitor.tick, args=(now,)),
        threading.Thread(target=monitor.refresh, args=(now,)),
    ]
    for worker in workers:
        worker.start()
    for worker in workers:
        worker.join()

    assert loader.requested == [BASE_DATE, NEXT_DATE, NEXT_DATE + timedelta(days=1)]
    assert monitor.today.date == NEXT_DATE


def test_refresh_retries_missing_tomorrow():
    loader = _FlakyLoader(fail_on=(NEXT_DATE,))
    monitor = PrayerPeriodMonitor(loader)
    monitor.load(BASE_DATE)
    assert monitor.tomorrow is None

    monitor.refresh(at(22, 0))

    assert monitor.today.date == BASE_DATE
    assert monitor.tomorrow.date == NEXT_DATE
    assert loader.requested == [BASE_DATE, NEXT_DATE, NEXT_DATE]


def test_refresh_keeps_loaded_days_before_fajr():
    loader = _Loader()
    monitor = PrayerPeriodMonitor(loader)
    monitor.load(BASE_DATE)

    monitor.refresh(at(0, 0, 5, day_offset=1))

    assert monitor.today.date == BASE_DATE
    assert loader.requested == [BASE_DATE, NEXT_DATE]


def test_refresh_promotes_tomorrow_after_fajr():
    loader = _Loader()
    monitor = PrayerPeriodMonitor(loader)
    monitor.load(BASE_DATE)

    monitor.refresh(at(5, 10, day_offset=1))

    assert monitor.today.date == NEXT_DATE
    assert monitor.tomorrow.date == NEXT_DATE + timedelta(days=1)
