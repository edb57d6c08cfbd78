"""Cancellable scheduled jobs and debouncing.

The detector's polling loop and the orchestrator's auto-sync both run on a
Scheduler. Production code uses BackgroundJobScheduler, which hands one-shot
calls to APScheduler as date-trigger jobs and repeating calls as interval
jobs; tests substitute a manual clock so timing is explicit.
"""

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Protocol

from apscheduler.job import Job
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger(__name__)


class ScheduledTask(Protocol):
    """Handle of a pending callback."""

    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """Runs callbacks after a delay or on a fixed interval."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> ScheduledTask: ...

    def call_every(self, interval: float, callback: Callable[[], None]) -> ScheduledTask: ...


class ScheduledJob:
    """ScheduledTask wrapping an APScheduler job."""

    def __init__(self, job: Job):
        self._job = job

    @property
    def job_id(self) -> str:
        return self._job.id

    def cancel(self) -> None:
        """Remove the job; a one-shot job that already ran is ignored."""
        try:
            self._job.remove()
        except JobLookupError:
            logger.debug(f"Job {self._job.id} already finished")


class BackgroundJobScheduler:
    """Scheduler backed by APScheduler's BackgroundScheduler.

    The APScheduler thread starts with the first job and runs as a daemon,
    so a pending auto-sync never keeps the process alive. Each job allows a
    single running instance; an interval tick that comes due while the
    previous one is still running is skipped. Exceptions escaping a callback
    are logged.

    Example:
        >>> scheduler = BackgroundJobScheduler()
        >>> poll = scheduler.call_every(10.0, detector_tick)
        >>> poll.cancel()
        >>> scheduler.shutdown()
    """

    def __init__(self, scheduler: Optional[BackgroundScheduler] = None):
        self._scheduler = scheduler or BackgroundScheduler(daemon=True, timezone=timezone.utc)
        self._lock = threading.Lock()

    def call_later(self, delay: float, callback: Callable[[], None]) -> ScheduledTask:
        run_date = datetime.now(timezone.utc) + timedelta(seconds=delay)
        return self._add(callback, DateTrigger(run_date=run_date, timezone=timezone.utc))

    def call_every(self, interval: float, callback: Callable[[], None]) -> ScheduledTask:
        return self._add(callback, IntervalTrigger(seconds=interval, timezone=timezone.utc))

    def shutdown(self) -> None:
        """Stop the APScheduler thread without waiting for running jobs."""
        with self._lock:
            if self._scheduler.running:
                self._scheduler.shutdown(wait=False)
                logger.debug("Background scheduler stopped")

    def _add(self, callback: Callable[[], None], trigger) -> ScheduledJob:
        with self._lock:
            if not self._scheduler.running:
                self._scheduler.start()
                logger.debug("Background scheduler started")
            job = self._scheduler.add_job(
                self._run,
                trigger=trigger,
                args=(callback,),
                max_instances=1,
                coalesce=True,
                misfire_grace_time=None,
            )
        return ScheduledJob(job)

    @staticmethod
    def _run(callback: Callable[[], None]) -> None:
        try:
            callback()
        except Exception:
            logger.exception("Scheduled task failed")


class Debouncer:
    """Coalesces bursts of triggers into one call after a quiet window.

    Every trigger() cancels the pending call and schedules a new one, so the
    callback runs once, ``delay`` seconds after the last trigger.

    Example:
        >>> debouncer = Debouncer(BackgroundJobScheduler(), 1.0, orchestrator.auto_sync)
        >>> debouncer.trigger()
        >>> debouncer.trigger()  # replaces the first one
    """

    def __init__(self, scheduler: Scheduler, delay: float, callback: Callable[[], None]):
        self._scheduler = scheduler
        self._delay = delay
        self._callback = callback
        self._lock = threading.Lock()
        self._pending: Optional[ScheduledTask] = None

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._pending is not None

    def trigger(self) -> None:
        with self._lock:
            if self._pending is not None:
                self._pending.cancel()
            self._pending = self._scheduler.call_later(self._delay, self._fire)

    def cancel(self) -> None:
        with self._lock:
            if self._pending is not None:
                self._pending.cancel()
                self._pending = None

    def _fire(self) -> None:
        with self._lock:
            self._pending = None
        self._callback()
