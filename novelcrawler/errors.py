"""
Exception hierarchy for the crawler.

Fetch errors carry the URL and HTTP status so callers can decide whether
to retry. Job errors map one-to-one onto terminal job outcomes.
"""

from typing import Optional


class CrawlerError(Exception):
    """Base class for all crawler errors."""
    pass


class ConfigError(CrawlerError):
    """Raised when configuration values are invalid."""
    pass


class FetchError(CrawlerError):
    """A network retrieval failed and should not be retried."""

    retryable = False

    def __init__(self, message: str, url: Optional[str] = None, status: Optional[int] = None):
        super().__init__(message)
        self.url = url
        self.status = status


class TransientFetchError(FetchError):
    """Timeouts, connection resets and 5xx responses. Retried with linear backoff."""

    retryable = True


class RateLimitError(TransientFetchError):
    """HTTP 429. Retried with exponential backoff."""
    pass


class EmptyContentError(FetchError):
    """A page came back with a success status but no usable content."""
    pass


class JobError(CrawlerError):
    """Base class for errors that end a job."""
    pass


class ManifestError(JobError):
    """Novel details are missing a title or chapter list."""
    pass


class CeilingExceededError(JobError):
    """Chapter count is above the configured ceiling; the job is skipped."""

    def __init__(self, count: int, ceiling: int):
        super().__init__(f"{count} chapters exceeds limit of {ceiling}")
        self.count = count
        self.ceiling = ceiling


class AssemblyError(JobError):
    """The EPUB could not be built or written."""
    pass


class WorkerFaultError(CrawlerError):
    """A worker's execution context broke; the pool respawns it."""
    pass


class PoolStartupError(CrawlerError):
    """No worker in the pool could be started."""
    pass
