from datetime import date, datetime, timedelta
from typing import Callable, Optional

import pytest
import pytz

from prayer_times import DailyPrayerTimes

BASE_DATE = date(2025, 11, 9)


def at(hour: int, minute: int = 0, second: int = 0, day: date = BASE_DATE, day_offset: int = 0) -> datetime:
    target = day + timedelta(days=day_offset)
    return pytz.utc.localize(datetime(target.year, target.month, target.day, hour, minute, second))


def make_day(
    day: date = BASE_DATE,
    fajr_minute: int = 0,
    with_midnight: bool = True,
    midnight: Optional[datetime] = None,
) -> DailyPrayerTimes:
    return DailyPrayerTimes(
        date=day,
        fajr=at(5, fajr_minute, day=day),
        sunrise=at(6, 15, day=day),
        dhuhr=at(12, 0, day=day),
        asr=at(15, 30, day=day),
        maghrib=at(18, 0, day=day),
        isha=at(19, 30, day=day),
        sunset=at(18, 0, day=day),
        imsak=at(4, 50, day=day),
        midnight=(midnight or at(0, 15, day=day, day_offset=1)) if with_midnight else None,
        first_third=at(22, 0, day=day),
        last_third=at(2, 30, day=day, day_offset=1),
    )


@pytest.fixture
def today() -> DailyPrayerTimes:
    return make_day()


@pytest.fixture
def tomorrow() -> DailyPrayerTimes:
    return make_day(BASE_DATE + timedelta(days=1), fajr_minute=2)


@pytest.fixture
def day_factory() -> Callable[..., DailyPrayerTimes]:
    return make_day
