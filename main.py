"""Console entry point that keeps the current prayer period on screen."""
from __future__ import annotations

import argparse
import json
import logging
import sys
import threading
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytz

from monitor import PrayerPeriodMonitor
from prayer_period import ISHA_FALLBACK, MIDNIGHT_FALLBACK, PrayerPeriod, PrayerPeriodCalculator
from prayer_times import (
    DailyPrayerTimes,
    LocationInfo,
    PrayerTimesService,
    build_location_from_config,
    detect_location_from_ip,
)
from scheduler import PrayerScheduler

APP_ROOT = Path(__file__).parent
CONFIG_PATH = APP_ROOT / "config.json"

LOGGER = logging.getLogger(__name__)


def load_config(path: Path) -> Dict[str, Any]:
    if not path.exists():
        LOGGER.debug("No config at %s; using defaults", path)
        return {}
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def build_calculator(config: Dict[str, Any]) -> PrayerPeriodCalculator:
    period_cfg = config.get("period", {}) if isinstance(config, dict) else {}
    midnight_minutes = period_cfg.get("midnight_fallback_minutes")
    isha_hours = period_cfg.get("isha_fallback_hours")
    return PrayerPeriodCalculator(
        midnight_fallback=timedelta(minutes=float(midnight_minutes)) if midnight_minutes is not None else MIDNIGHT_FALLBACK,
        isha_fallback=timedelta(hours=float(isha_hours)) if isha_hours is not None else ISHA_FALLBACK,
    )


def resolve_location(config: Dict[str, Any]) -> LocationInfo:
    if config.get("auto_location", True):
        try:
            return detect_location_from_ip()
        except Exception:
            LOGGER.warning("IP-based location detection failed; using configured location", exc_info=True)
    location = build_location_from_config(config)
    if location is None:
        raise RuntimeError("No location configured and automatic detection is unavailable")
    return location


def format_period(period: PrayerPeriod, now: datetime) -> str:
    marker = "!" if period.is_urgent(now) else " "
    return (
        f"{marker} {period.state.description:<28} "
        f"{period.status_text(now):<20} "
        f"{period.period_progress(now):>4.0%}  "
        f"{period.formatted_time_remaining(now)}"
    )


class ConsoleApp:
    """Wires the prayer-time service, the monitor and the scheduler together."""

    def __init__(self, config: Dict[str, Any]) -> None:
        self._config = config
        calc_cfg = config.get("calculation", {}) if isinstance(config, dict) else {}
        self.prayer_service = PrayerTimesService(
            method=int(calc_cfg.get("method", 3)),
            school=int(calc_cfg.get("school", 0)),
            adjustments=config.get("adjustments") or {},
        )
        self.location = resolve_location(config)
        self.tzinfo = pytz.timezone(self.location.timezone or "UTC")
        self.monitor = PrayerPeriodMonitor(self._load_day, calculator=build_calculator(config))
        self.scheduler: Optional[PrayerScheduler] = None
        LOGGER.debug(
            "Resolved location: city=%s country=%s lat=%s lon=%s tz=%s",
            self.location.city,
            self.location.country,
            self.location.latitude,
            self.location.longitude,
            self.location.timezone,
        )

    def now(self) -> datetime:
        return datetime.now(self.tzinfo)

    def snapshot(self) -> Optional[str]:
        now = self.now()
        period = self.monitor.tick(now)
        return format_period(period, now) if period else None

    def run(self) -> None:
        stop = threading.Event()
        tick_seconds = float((self._config.get("period", {}) or {}).get("tick_seconds", 1))

        self.monitor.load(self.now().date())
        self.monitor.on_state_change(self._announce)
        self.monitor.on_update(self._render)

        self.scheduler = PrayerScheduler(self.location.timezone or "UTC")
        self.scheduler.schedule_ticks(self._tick, interval_seconds=tick_seconds)
        self._schedule_midnight_refresh()
        self.scheduler.start()
        try:
            stop.wait()
        except KeyboardInterrupt:
            LOGGER.info("Interrupted; shutting down")
        finally:
            self.scheduler.shutdown()

    def _load_day(self, target: date) -> DailyPrayerTimes:
        return self.prayer_service.fetch_daily_times(self.location, target)

    def _tick(self) -> None:
        self.monitor.tick(self.now())

    def _schedule_midnight_refresh(self) -> None:
        assert self.scheduler is not None
        tomorrow = self.now().date() + timedelta(days=1)
        next_run = self.tzinfo.localize(datetime.combine(tomorrow, datetime.min.time())) + timedelta(seconds=5)
        self.scheduler.schedule_refresh(next_run, self._midnight_refresh)

    def _midnight_refresh(self) -> None:
        now = self.now()
        LOGGER.info("Midnight refresh at %s", now)
        self.monitor.refresh(now)
        self._schedule_midnight_refresh()

    def _announce(self, period: PrayerPeriod) -> None:
        upcoming = period.next_prayer
        if upcoming:
            LOGGER.info("Now: %s (next %s at %s)", period.state.description, upcoming[0].display_name, upcoming[1])
        else:
            LOGGER.info("Now: %s", period.state.description)

    def _render(self, period: PrayerPeriod) -> None:
        sys.stdout.write("\r" + format_period(period, self.now()))
        sys.stdout.flush()


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Show the current prayer period.")
    parser.add_argument("--config", type=Path, default=CONFIG_PATH, help="path to config.json")
    parser.add_argument("--once", action="store_true", help="print a single snapshot and exit")
    args = parser.parse_args(argv)

    config = load_config(args.config)
    logging.basicConfig(
        level=str(config.get("log_level", "INFO")).upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    LOGGER.debug("Loaded config keys: %s", list(config.keys()))

    try:
        app = ConsoleApp(config)
        if args.once:
            app.monitor.load(app.now().date())
            print(app.snapshot())
            return 0
        app.run()
    except Exception:
        LOGGER.exception("Prayer period tracker failed")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
