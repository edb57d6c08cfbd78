"""Polling detector for remote document changes.

RemoteChangeDetector asks the repository whether the remote version tag
moved, on a fixed interval, and invokes a callback once per detected change.
It never fetches or decodes content itself; acting on the change is the
orchestrator's job.

While the injected ``should_skip`` predicate reports an open conflict dialog
or an unresolved conflict, ticks are skipped outright (not deferred), so the
detector never piles up state while the user is resolving a conflict.
"""

import logging
import threading
from typing import Callable, Optional, Protocol

from src.gist_client.errors import AuthenticationFailedError, SyncError
from src.gist_client.repository import Repository

from .scheduling import BackgroundJobScheduler, ScheduledTask, Scheduler

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 10.0


class ChangeDetector(Protocol):
    """Interface of a remote change detector."""

    def start(self) -> None: ...

    def stop(self) -> None: ...

    def is_running(self) -> bool: ...

    def check_now(self) -> bool: ...


class RemoteChangeDetector:
    """Interval job that polls Repository.has_remote_changes().

    The callback may return False to decline a change (for example when the
    orchestrator is busy); the change then stays pending and is reported
    again on the next tick. Any other return value consumes it, and the same
    remote version tag is not reported twice.

    Example:
        >>> detector = RemoteChangeDetector(
        ...     repository,
        ...     on_change=orchestrator.handle_remote_change,
        ...     should_skip=conflict_state.is_blocking,
        ... )
        >>> detector.start()
        >>> detector.is_running()
        True
        >>> detector.stop()
    """

    def __init__(
        self,
        repository: Repository,
        on_change: Callable[[], Optional[bool]],
        interval: float = DEFAULT_POLL_INTERVAL,
        scheduler: Optional[Scheduler] = None,
        should_skip: Optional[Callable[[], bool]] = None,
        on_auth_failure: Optional[Callable[[AuthenticationFailedError], None]] = None,
    ):
        """Initialize the detector (not started).

        Args:
            repository: Bound repository to poll
            on_change: Called once per detected remote change
            interval: Seconds between polls
            scheduler: Job source (default: BackgroundJobScheduler)
            should_skip: Predicate; a tick is skipped while it returns True
            on_auth_failure: Called when the host rejects the token during a poll
        """
        self._repository = repository
        self._on_change = on_change
        self._interval = interval
        self._scheduler = scheduler or BackgroundJobScheduler()
        self._should_skip = should_skip or (lambda: False)
        self._on_auth_failure = on_auth_failure
        self._lock = threading.Lock()
        self._running = False
        self._generation = 0
        self._task: Optional[ScheduledTask] = None
        self._last_notified_tag: Optional[str] = None

    @property
    def interval(self) -> float:
        return self._interval

    def start(self) -> None:
        """Start polling; calling it while running does nothing."""
        with self._lock:
            if self._running:
                return
            self._running = True
            self._generation += 1
            self._schedule_locked(self._generation)
        logger.info(f"Remote change detector started (every {self._interval:g}s)")

    def stop(self) -> None:
        """Stop polling and remove the interval job; idempotent."""
        with self._lock:
            if not self._running:
                return
            self._running = False
            if self._task is not None:
                self._task.cancel()
                self._task = None
        logger.info("Remote change detector stopped")

    def is_running(self) -> bool:
        with self._lock:
            return self._running

    def check_now(self) -> bool:
        """Run one check immediately.

        Returns:
            True if the callback was invoked and consumed the change
        """
        if self._should_skip():
            logger.debug("Skipping remote check while a conflict is being resolved")
            return False

        try:
            changed = self._repository.has_remote_changes()
        except AuthenticationFailedError as e:
            logger.error(f"Remote change check rejected: {e}")
            if self._on_auth_failure is not None:
                self._on_auth_failure(e)
            return False
        except SyncError as e:
            logger.warning(f"Remote change check failed: {e}")
            return False

        if not changed:
            return False

        tag = getattr(self._repository, 'remote_version_tag', None)
        if tag is not None and tag == self._last_notified_tag:
            logger.debug(f"Remote change {tag} already reported")
            return False

        logger.info("Remote change detected")
        if self._on_change() is False:
            logger.debug("Remote change declined by handler, will report again")
            return False

        self._last_notified_tag = tag
        return True

    def _schedule_locked(self, generation: int) -> None:
        self._task = self._scheduler.call_every(self._interval, lambda: self._tick(generation))

    def _tick(self, generation: int) -> None:
        with self._lock:
            if not self._running or generation != self._generation:
                return
        self.check_now()
