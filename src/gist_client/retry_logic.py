"""Retry logic with exponential backoff for the startup load.

This module provides an explicit backoff state machine (attempt count, next
delay) and a retry helper built on it. The orchestrator uses it for the very
first load at process start only: failures classified as retryable are tried
again after 1s, 2s and 4s; anything else fails fast.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from .errors import AuthenticationFailedError, TransientError

logger = logging.getLogger(__name__)

T = TypeVar('T')

DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY = 1.0


@dataclass
class BackoffState:
    """Backoff bookkeeping for one retry loop.

    Attributes:
        max_retries: Retries allowed after the first attempt
        base_delay: Delay before the first retry, doubled for each later one
        attempt: Number of retries already scheduled

    Example:
        >>> backoff = BackoffState()
        >>> [backoff.next_delay() for _ in range(3)]
        [1.0, 2.0, 4.0]
        >>> backoff.exhausted
        True
    """
    max_retries: int = DEFAULT_MAX_RETRIES
    base_delay: float = DEFAULT_BASE_DELAY
    attempt: int = 0

    @property
    def exhausted(self) -> bool:
        return self.attempt >= self.max_retries

    def peek_delay(self) -> float:
        return self.base_delay * (2 ** self.attempt)

    def next_delay(self) -> float:
        """Consume one retry and return how long to wait before it.

        Raises:
            RuntimeError: If no retries are left
        """
        if self.exhausted:
            raise RuntimeError("Backoff exhausted")
        delay = self.peek_delay()
        self.attempt += 1
        return delay


def is_startup_retryable(exception: Exception) -> bool:
    """Check whether a startup-load failure is worth retrying.

    Transient failures are, and so is a 401: right after login the token can
    be briefly rejected before it propagates. A 403 and every other error
    class are final.
    """
    if isinstance(exception, TransientError):
        return True
    if isinstance(exception, AuthenticationFailedError):
        return exception.status_code == 401
    return False


def retry_with_backoff(
    func: Callable[..., T],
    *args,
    should_retry: Callable[[Exception], bool] = is_startup_retryable,
    backoff: Optional[BackoffState] = None,
    sleep: Optional[Callable[[float], None]] = None,
    **kwargs,
) -> T:
    """Call func, retrying with exponential backoff while should_retry allows.

    Args:
        func: The function to execute with retry logic
        *args: Positional arguments to pass to the function
        should_retry: Predicate deciding whether an exception is retryable
        backoff: Backoff state to use (default: 3 retries, 1s/2s/4s)
        sleep: Sleep function (defaults to time.sleep)
        **kwargs: Keyword arguments to pass to the function

    Returns:
        The return value of the function

    Raises:
        The last exception when retries are exhausted, or the first
        non-retryable exception immediately

    Example:
        >>> content, tag = retry_with_backoff(repository.read)
    """
    backoff = backoff or BackoffState()

    while True:
        try:
            return func(*args, **kwargs)
        except Exception as e:
            if not should_retry(e):
                raise

            if backoff.exhausted:
                logger.error(
                    f"Giving up after {backoff.max_retries} retries: {e}"
                )
                raise

            wait_time = backoff.next_delay()
            logger.info(
                f"{type(e).__name__} during startup load, retrying in {wait_time:g}s "
                f"(retry {backoff.attempt}/{backoff.max_retries})"
            )
            (sleep or time.sleep)(wait_time)
