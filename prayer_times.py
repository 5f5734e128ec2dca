"""Daily prayer time records and the AlAdhan adapter that produces them."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, replace
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Dict, List, Mapping, Optional, Tuple

import pytz
import requests
from tzlocal import get_localzone_name

LOGGER = logging.getLogger(__name__)

ALADHAN_TIMINGS_URL = "https://api.aladhan.com/v1/timings"
ALADHAN_TIMINGS_BY_CITY_URL = "https://api.aladhan.com/v1/timingsByCity"
IPINFO_URL = "https://ipinfo.io/json"

MIN_ADJUSTMENT_MINUTES = -30
MAX_ADJUSTMENT_MINUTES = 30

_CLOCK_PATTERN = re.compile(r"\s*(\d{1,2}):(\d{2})")


class PrayerName(Enum):
    FAJR = "Fajr"
    DHUHR = "Dhuhr"
    ASR = "Asr"
    MAGHRIB = "Maghrib"
    ISHA = "Isha"

    @property
    def display_name(self) -> str:
        return self.value


PRAYER_ORDER: Tuple[PrayerName, ...] = (
    PrayerName.FAJR,
    PrayerName.DHUHR,
    PrayerName.ASR,
    PrayerName.MAGHRIB,
    PrayerName.ISHA,
)


class SpecialTimeType(Enum):
    IMSAK = "Imsak"
    SUNRISE = "Sunrise"
    SUNSET = "Sunset"
    MIDNIGHT = "Midnight"
    FIRST_THIRD = "First Third"
    LAST_THIRD = "Last Third"

    @property
    def display_name(self) -> str:
        return self.value

    @property
    def description(self) -> str:
        return _SPECIAL_TIME_DESCRIPTIONS[self]


_SPECIAL_TIME_DESCRIPTIONS = {
    SpecialTimeType.IMSAK: "Stop eating for Fajr",
    SpecialTimeType.SUNRISE: "Sun rises",
    SpecialTimeType.SUNSET: "Sun sets",
    SpecialTimeType.MIDNIGHT: "Islamic midnight",
    SpecialTimeType.FIRST_THIRD: "First third of night",
    SpecialTimeType.LAST_THIRD: "Best time for Tahajjud",
}


@dataclass(frozen=True)
class LocationInfo:
    city: str
    country: str
    latitude: Optional[float]
    longitude: Optional[float]
    timezone: Optional[str]


@dataclass(frozen=True)
class PrayerTime:
    name: PrayerName
    time: datetime


@dataclass(frozen=True)
class SpecialTime:
    type: SpecialTimeType
    time: datetime


@dataclass(frozen=True)
class DailyPrayerTimes:
    """One calendar day's prayer timestamps as supplied by the prayer-time service.

    Expected ordering: fajr < sunrise <= dhuhr < asr < maghrib <= sunset < isha,
    and midnight (when known) after isha, on the following calendar day if need be.
    """

    date: date
    fajr: datetime
    sunrise: datetime
    dhuhr: datetime
    asr: datetime
    maghrib: datetime
    isha: datetime
    sunset: datetime
    imsak: Optional[datetime] = None
    midnight: Optional[datetime] = None
    first_third: Optional[datetime] = None
    last_third: Optional[datetime] = None

    @property
    def prayer_times(self) -> List[PrayerTime]:
        return [PrayerTime(name=name, time=self.time_of(name)) for name in PRAYER_ORDER]

    def time_of(self, name: PrayerName) -> datetime:
        return getattr(self, name.name.lower())

    @property
    def special_times(self) -> List[SpecialTime]:
        """Auxiliary times that are known for this day, in chronological order."""
        candidates = [
            (SpecialTimeType.IMSAK, self.imsak),
            (SpecialTimeType.SUNRISE, self.sunrise),
            (SpecialTimeType.SUNSET, self.sunset),
            (SpecialTimeType.MIDNIGHT, self.midnight),
            (SpecialTimeType.FIRST_THIRD, self.first_third),
            (SpecialTimeType.LAST_THIRD, self.last_third),
        ]
        times = [SpecialTime(type=kind, time=value) for kind, value in candidates if value is not None]
        return sorted(times, key=lambda item: item.time)

    @property
    def all_times_sorted(self) -> List[Tuple[str, datetime]]:
        entries: List[Tuple[str, Optional[datetime]]] = [
            (SpecialTimeType.IMSAK.display_name, self.imsak),
            (PrayerName.FAJR.display_name, self.fajr),
            (SpecialTimeType.SUNRISE.display_name, self.sunrise),
            (PrayerName.DHUHR.display_name, self.dhuhr),
            (PrayerName.ASR.display_name, self.asr),
            (SpecialTimeType.SUNSET.display_name, self.sunset),
            (PrayerName.MAGHRIB.display_name, self.maghrib),
            (PrayerName.ISHA.display_name, self.isha),
            (SpecialTimeType.MIDNIGHT.display_name, self.midnight),
            (SpecialTimeType.LAST_THIRD.display_name, self.last_third),
        ]
        known = [(label, value) for label, value in entries if value is not None]
        return sorted(known, key=lambda item: item[1])  # type: ignore[arg-type, return-value]

    def ordering_violations(self) -> List[str]:
        """Return a description of every broken ordering constraint (empty when well-formed)."""
        checks = [
            ("fajr", "sunrise", self.fajr < self.sunrise),
            ("sunrise", "dhuhr", self.sunrise <= self.dhuhr),
            ("dhuhr", "asr", self.dhuhr < self.asr),
            ("asr", "maghrib", self.asr < self.maghrib),
            ("maghrib", "sunset", self.maghrib <= self.sunset),
            ("sunset", "isha", self.sunset < self.isha),
        ]
        if self.midnight is not None:
            checks.append(("isha", "midnight", self.isha < self.midnight))
        return [f"{earlier} must precede {later}" for earlier, later, ok in checks if not ok]

    def sequence_violations(self) -> List[str]:
        """Like ordering_violations, limited to the five prayers and midnight.

        Sunrise and sunset only bound windows and may drift relative to manually
        adjusted or method-specific prayer times.
        """
        prayers = self.prayer_times
        problems = [
            f"{earlier.name.name.lower()} must precede {later.name.name.lower()}"
            for earlier, later in zip(prayers, prayers[1:])
            if not earlier.time < later.time
        ]
        if self.midnight is not None and not self.isha < self.midnight:
            problems.append("isha must precede midnight")
        return problems


@dataclass(frozen=True)
class PrayerDay:
    location: LocationInfo
    hijri_date: str
    times: DailyPrayerTimes


class PrayerTimesService:
    """Fetches prayer times from the AlAdhan API."""

    def __init__(
        self,
        method: int = 3,
        school: int = 0,
        adjustments: Optional[Mapping[str, int]] = None,
    ) -> None:
        self.method = method
        self.school = school
        self.adjustments = dict(adjustments or {})

    def fetch_prayer_times(
        self,
        location: LocationInfo,
        target_date: Optional[date] = None,
    ) -> PrayerDay:
        target_date = target_date or date.today()
        use_city_lookup = location.latitude is None or location.longitude is None
        LOGGER.debug(
            "Fetching prayer times for %s, %s (date=%s mode=%s)",
            location.city,
            location.country,
            target_date,
            "city" if use_city_lookup else "coordinates",
        )

        params: Dict[str, object] = {
            "method": self.method,
            "school": self.school,
            "date": target_date.strftime("%d-%m-%Y"),
        }
        if use_city_lookup:
            params.update(city=location.city, country=location.country)
            url = ALADHAN_TIMINGS_BY_CITY_URL
        else:
            params.update(latitude=location.latitude, longitude=location.longitude)
            url = ALADHAN_TIMINGS_URL

        LOGGER.debug("Requesting prayer times from %s with params=%s", url, params)
        response = requests.get(url, params=params, timeout=10)
        LOGGER.debug("Prayer times response status: %s", response.status_code)
        response.raise_for_status()

        payload = response.json()
        if payload.get("code") != 200:
            raise RuntimeError(f"Invalid response from AlAdhan API: {payload.get('status')}")

        data = payload.get("data", {})
        timings: Dict[str, str] = data.get("timings", {})
        hijri = data.get("date", {}).get("hijri", {})
        gregorian = data.get("date", {}).get("gregorian", {})

        gregorian_date_str = gregorian.get("date")
        try:
            day = datetime.strptime(gregorian_date_str, "%d-%m-%Y").date() if gregorian_date_str else target_date
        except (TypeError, ValueError):
            day = target_date

        timezone_name = _known_timezone((data.get("meta") or {}).get("timezone") or location.timezone)
        tzinfo = pytz.timezone(timezone_name)
        times = self._build_daily_times(timings, tzinfo, day)
        if self.adjustments:
            times = apply_adjustments(times, self.adjustments)
        violations = times.ordering_violations()
        if violations:
            LOGGER.warning("Prayer times for %s are out of the usual order: %s", day, "; ".join(violations))

        hijri_day = hijri.get("day")
        hijri_month_en = (hijri.get("month", {}) or {}).get("en", "")
        hijri_year = hijri.get("year")
        hijri_date_text = hijri.get("date", "")
        if hijri_day and hijri_month_en and hijri_year:
            hijri_date_text = f"{hijri_day} {hijri_month_en} {hijri_year} AH"

        meta = data.get("meta", {})
        updated_location = replace(
            location,
            latitude=_coordinate(meta.get("latitude")) or location.latitude,
            longitude=_coordinate(meta.get("longitude")) or location.longitude,
            timezone=timezone_name,
        )

        return PrayerDay(location=updated_location, hijri_date=hijri_date_text, times=times)

    def fetch_daily_times(self, location: LocationInfo, target_date: date) -> DailyPrayerTimes:
        return self.fetch_prayer_times(location, target_date).times

    @classmethod
    def _build_daily_times(
        cls,
        timings: Mapping[str, str],
        tzinfo: pytz.BaseTzInfo,
        day: date,
    ) -> DailyPrayerTimes:
        def required(key: str) -> datetime:
            if not timings.get(key):
                raise RuntimeError(f"AlAdhan response has no {key} timing for {day}")
            return _clock_time(timings[key], tzinfo, day)

        def optional(key: str) -> Optional[datetime]:
            return _clock_time(timings[key], tzinfo, day) if timings.get(key) else None

        isha = required("Isha")
        maghrib = required("Maghrib")

        return DailyPrayerTimes(
            date=day,
            fajr=required("Fajr"),
            sunrise=required("Sunrise"),
            dhuhr=required("Dhuhr"),
            asr=required("Asr"),
            maghrib=maghrib,
            isha=isha,
            sunset=optional("Sunset") or maghrib,
            imsak=optional("Imsak"),
            midnight=_after_isha(optional("Midnight"), isha, tzinfo),
            first_third=_after_isha(optional("Firstthird"), isha, tzinfo),
            last_third=_after_isha(optional("Lastthird"), isha, tzinfo),
        )


def apply_adjustments(times: DailyPrayerTimes, adjustments: Mapping[str, int]) -> DailyPrayerTimes:
    """Shift individual prayers by a number of minutes, clamped to +/-30."""
    by_name = {name.value.lower(): name for name in PRAYER_ORDER}
    changes: Dict[str, datetime] = {}
    for key, minutes in adjustments.items():
        prayer = by_name.get(str(key).lower())
        if prayer is None:
            LOGGER.warning("Ignoring adjustment for unknown prayer '%s'", key)
            continue
        clamped = min(max(int(minutes), MIN_ADJUSTMENT_MINUTES), MAX_ADJUSTMENT_MINUTES)
        if clamped == 0:
            continue
        LOGGER.debug("Adjusting %s by %+d min", prayer.display_name, clamped)
        changes[prayer.name.lower()] = times.time_of(prayer) + timedelta(minutes=clamped)
    return replace(times, **changes) if changes else times


def detect_location_from_ip(timeout: int = 5) -> LocationInfo:
    """Approximate the current location from the public IP via ipinfo.io.

    The timezone comes from the response when present, else from the host.
    """
    response = requests.get(IPINFO_URL, timeout=timeout)
    response.raise_for_status()
    payload = response.json()
    LOGGER.debug("ipinfo.io answered with %s", payload)

    lat_text, _, lon_text = str(payload.get("loc") or "").partition(",")
    latitude, longitude = _coordinate(lat_text), _coordinate(lon_text)
    if latitude is None or longitude is None:
        raise RuntimeError(f"ipinfo.io returned no usable coordinates: {payload.get('loc')!r}")

    return LocationInfo(
        city=payload.get("city") or "",
        country=payload.get("country") or "",
        latitude=latitude,
        longitude=longitude,
        timezone=_known_timezone(payload.get("timezone") or get_localzone_name()),
    )


def build_location_from_config(config: Mapping[str, object]) -> Optional[LocationInfo]:
    """Location from the ``location`` section of the config, or None without one."""
    section = config.get("location")
    if not isinstance(section, dict):
        return None
    return LocationInfo(
        city=str(section.get("city") or ""),
        country=str(section.get("country") or ""),
        latitude=_coordinate(section.get("latitude")),
        longitude=_coordinate(section.get("longitude")),
        timezone=section.get("timezone") or None,
    )


def _clock_time(text: str, tzinfo: pytz.BaseTzInfo, day: date) -> datetime:
    # AlAdhan appends the zone abbreviation, e.g. "00:25 (CET)".
    match = _CLOCK_PATTERN.match(text)
    if match is None:
        raise ValueError(f"Unrecognised prayer time {text!r}")
    hour, minute = int(match.group(1)), int(match.group(2))
    return tzinfo.localize(datetime.combine(day, time(hour, minute)))


def _after_isha(value: Optional[datetime], isha: datetime, tzinfo: pytz.BaseTzInfo) -> Optional[datetime]:
    # Night times at or before Isha are on the following calendar day.
    if value is None or value > isha:
        return value
    naive = value.replace(tzinfo=None) + timedelta(days=1)
    return tzinfo.localize(naive)


def _known_timezone(name: Optional[str]) -> str:
    if name and name in pytz.all_timezones_set:
        return name
    LOGGER.warning("Unknown or missing timezone %r; using UTC", name)
    return "UTC"


def _coordinate(value: Optional[object]) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        LOGGER.warning("Ignoring malformed coordinate %r", value)
        return None
