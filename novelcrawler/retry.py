"""
Retry policy and backoff for handling transient fetch failures.

Rate-limit responses back off exponentially; every other retryable error
backs off linearly with the attempt number.
"""

import time
from typing import Callable, Optional

from .errors import FetchError, RateLimitError, TransientFetchError


class RetryError(FetchError):
    """Raised when all retry attempts are exhausted."""
    pass


def backoff_delay(attempt: int, base_delay: float, rate_limited: bool = False) -> float:
    """
    Compute the sleep before the next attempt.

    Args:
        attempt: Zero-based index of the attempt that just failed
        base_delay: Base delay in seconds
        rate_limited: Use exponential backoff (base * 2**attempt)

    Returns:
        Delay in seconds
    """
    if rate_limited:
        return base_delay * (2 ** attempt)
    return base_delay * (attempt + 1)


class RetryPolicy:
    """
    Bounded retry budget shared by every request of one fetch call.

    Args:
        max_retries: Re-attempts after the first try (0 = no retries)
        base_delay: Base delay in seconds
        sleep: Sleep function, injectable for tests
    """

    def __init__(
        self,
        max_retries: int = 5,
        base_delay: float = 3.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.max_retries = max_retries
        self.base_delay = base_delay
        self._sleep = sleep

    @property
    def attempts(self) -> int:
        return self.max_retries + 1

    def should_retry(self, attempt: int, error: Exception) -> bool:
        """True when the error is retryable and budget remains after `attempt`."""
        if attempt >= self.max_retries:
            return False
        return is_transient_error(error)

    def delay_for(self, attempt: int, error: Exception) -> float:
        return backoff_delay(attempt, self.base_delay, rate_limited=isinstance(error, RateLimitError))

    def wait(self, attempt: int, error: Exception) -> float:
        """Sleep before the next attempt and return the delay used."""
        delay = self.delay_for(attempt, error)
        self._sleep(delay)
        return delay


def is_transient_error(exception: Exception) -> bool:
    """True for fetch errors marked retryable (timeouts, connection errors, 5xx, 408, 429)."""
    return isinstance(exception, FetchError) and exception.retryable


def should_retry_http_status(status_code: int) -> bool:
    """
    Check if HTTP status code indicates a retryable error.

    Args:
        status_code: HTTP status code

    Returns:
        True if should retry
    """
    if status_code in (408, 429):
        return True
    return 500 <= status_code < 600


def classify_status(status_code: int, url: str) -> Optional[FetchError]:
    """
    Map an HTTP status onto the fetch error taxonomy.

    Returns None for 2xx, otherwise the error to raise or retry.
    """
    if 200 <= status_code < 300:
        return None
    message = f"HTTP {status_code} for {url}"
    if status_code == 429:
        return RateLimitError(message, url=url, status=status_code)
    if should_retry_http_status(status_code):
        return TransientFetchError(message, url=url, status=status_code)
    return FetchError(message, url=url, status=status_code)
