"""HTTP retrieval with retry, backoff and manual redirect handling."""

import time
from typing import Callable, Dict, Optional
from urllib.parse import urljoin

import requests

from .errors import FetchError, RateLimitError, TransientFetchError
from .logger import get_logger
from .retry import RetryError, RetryPolicy, classify_status

logger = get_logger()

DEFAULT_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
}


class Fetcher:
    """
    Fetch pages over a single requests session.

    One fetch call has a budget of ``retries + 1`` requests. Redirect hops
    are re-issued against the Location target and spend from that same
    budget, so a redirect cycle ends in a FetchError instead of recursing.
    """

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        retries: int = 5,
        retry_delay: float = 3.0,
        timeout: float = 30.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if session is None:
            session = requests.Session()
            session.headers.update(DEFAULT_HEADERS)
        self.session = session
        self.timeout = timeout
        self.policy = RetryPolicy(max_retries=retries, base_delay=retry_delay, sleep=sleep)

    def fetch(self, url: str) -> str:
        """Return the decoded body of `url`."""
        return self._get(url).text

    def fetch_bytes(self, url: str) -> bytes:
        """Return the raw body of `url` (images and other binaries)."""
        return self._get(url, headers={"Accept": "*/*"}).content

    def close(self) -> None:
        self.session.close()

    def _request(self, url: str, headers: Optional[Dict[str, str]]):
        logger.record_fetch_attempt()
        try:
            return self.session.get(
                url,
                headers=headers,
                timeout=self.timeout,
                allow_redirects=False,
            )
        except requests.exceptions.Timeout:
            raise TransientFetchError(f"Timeout for {url}", url=url)
        except requests.exceptions.RequestException as e:
            raise TransientFetchError(f"Request error for {url}: {e}", url=url)

    def _get(self, url: str, headers: Optional[Dict[str, str]] = None):
        target = url
        last_error: Optional[FetchError] = None
        rate_limit_logged = False

        for attempt in range(self.policy.attempts):
            try:
                resp = self._request(target, headers)
            except TransientFetchError as e:
                error = e
            else:
                location = resp.headers.get("Location")
                if 300 <= resp.status_code < 400 and location:
                    redirect = urljoin(target, location)
                    logger.debug("Following redirect", source=target, target=redirect, status=resp.status_code)
                    target = redirect
                    continue
                error = classify_status(resp.status_code, target)
                if error is None:
                    return resp

            last_error = error
            if not error.retryable:
                logger.record_fetch_failure(type(error).__name__)
                raise error
            if not self.policy.should_retry(attempt, error):
                break

            rate_limited = isinstance(error, RateLimitError)
            logger.record_fetch_retry(rate_limited=rate_limited)
            if rate_limited:
                # One line per fetch call; repeated 429s back off silently
                if not rate_limit_logged:
                    logger.warning("Rate limited, backing off", url=target)
                    rate_limit_logged = True
            else:
                logger.warning(f"Retry {attempt + 1}/{self.policy.max_retries}: {error}")
            self.policy.wait(attempt, error)

        if last_error is None:
            logger.record_fetch_failure("TooManyRedirects")
            raise FetchError(
                f"Too many redirects for {url} (budget of {self.policy.attempts} requests)",
                url=url,
            )

        logger.record_fetch_failure(type(last_error).__name__)
        raise RetryError(
            f"Failed after {self.policy.attempts} attempts: {last_error}",
            url=url,
            status=last_error.status,
        ) from last_error
