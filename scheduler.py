"""Scheduling utilities for periodic prayer period ticks and daily refreshes."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

LOGGER = logging.getLogger(__name__)


class PrayerScheduler:
    """Wrap APScheduler to drive the recompute loop and the daily refresh."""

    def __init__(self, timezone: str) -> None:
        self._scheduler = BackgroundScheduler(timezone=timezone)
        self._tick_job_id: Optional[str] = None
        self._refresh_job_id: Optional[str] = None

    def start(self) -> None:
        if not self._scheduler.running:
            LOGGER.info("Starting background scheduler")
            self._scheduler.start()

    def shutdown(self) -> None:
        if self._scheduler.running:
            LOGGER.info("Stopping background scheduler")
            self._scheduler.shutdown(wait=False)

    @property
    def timezone(self) -> str:
        tzinfo = self._scheduler.timezone
        zone = getattr(tzinfo, "zone", None)
        return str(zone or tzinfo)

    def schedule_ticks(self, callback: Callable[[], None], interval_seconds: float = 1.0) -> None:
        """Run *callback* every *interval_seconds*, replacing any existing tick job."""
        self._remove_job(self._tick_job_id)
        trigger = IntervalTrigger(seconds=interval_seconds, timezone=self._scheduler.timezone)
        job = self._scheduler.add_job(callback, trigger=trigger, coalesce=True, max_instances=1)
        LOGGER.debug("Scheduled tick job %s every %ss", job.id, interval_seconds)
        self._tick_job_id = job.id

    def schedule_refresh(self, next_run: datetime, refresh_callback: Callable[[], None]) -> None:
        """Schedule a single refresh job, replacing any existing one."""
        self._remove_job(self._refresh_job_id)
        trigger = DateTrigger(run_date=next_run)
        job = self._scheduler.add_job(refresh_callback, trigger=trigger)
        LOGGER.debug("Scheduled refresh job %s at %s", job.id, next_run)
        self._refresh_job_id = job.id

    def _remove_job(self, job_id: Optional[str]) -> None:
        if not job_id:
            return
        LOGGER.debug("Removing existing job %s", job_id)
        try:
            self._scheduler.remove_job(job_id)
        except JobLookupError:
            # One-off jobs drop out of the store once they have fired.
            LOGGER.debug("Job %s already gone", job_id)
