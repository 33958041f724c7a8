"""
Autonomy Core: Retry Engine

Bounded retries with exponential backoff for every remote call the loop makes.

Retries on:
- Untagged or RECOVERABLE/FATAL errors (transient until proven otherwise)
- HTTP 429 and 5xx responses, network timeouts and connection errors

Does NOT retry on:
- AutonomyError tagged NON_RETRYABLE
- HTTP 4xx other than 429 (converted to NON_RETRYABLE)
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, TypeVar

import requests

from core.exceptions import AutonomyError, ErrorClass

logger = logging.getLogger(__name__)

T = TypeVar("T")

RetryObserver = Callable[[BaseException, int], None]


@dataclass(frozen=True)
class RetryPolicy:
    """
    Per-call retry configuration.

    ``max_retries`` counts retries after the initial attempt, so an operation
    that always fails is invoked ``max_retries + 1`` times.
    """
    max_retries: int = 3
    initial_delay: float = 1.0
    backoff_multiplier: float = 2.0
    max_delay: float = 30.0
    on_retry: Optional[RetryObserver] = None

    def __post_init__(self):
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ValueError("retry delays must be non-negative")
        if self.backoff_multiplier < 1:
            raise ValueError(f"backoff_multiplier must be >= 1, got {self.backoff_multiplier}")

    @property
    def total_attempts(self) -> int:
        return self.max_retries + 1

    def delay_for(self, retry: int) -> float:
        """Delay in seconds before retry number ``retry`` (1-based)."""
        if retry < 1:
            raise ValueError(f"retry number must be >= 1, got {retry}")
        delay = self.initial_delay * (self.backoff_multiplier ** (retry - 1))
        return min(delay, self.max_delay)

    def with_observer(self, on_retry: Optional[RetryObserver]) -> "RetryPolicy":
        return RetryPolicy(
            max_retries=self.max_retries,
            initial_delay=self.initial_delay,
            backoff_multiplier=self.backoff_multiplier,
            max_delay=self.max_delay,
            on_retry=on_retry,
        )


DEFAULT_POLICY = RetryPolicy()


def with_retry(operation: Callable[[], T], policy: RetryPolicy = DEFAULT_POLICY,
               name: Optional[str] = None, sleep: Callable[[float], None] = time.sleep) -> T:
    """
    Run ``operation`` until it succeeds or the retry budget is spent.

    Raises the last observed error once all attempts fail. NON_RETRYABLE
    errors propagate on the attempt that raised them.
    """
    label = name or getattr(operation, "__name__", "operation")
    last_error: Optional[BaseException] = None

    for attempt in range(1, policy.total_attempts + 1):
        try:
            return operation()
        except AutonomyError as exc:
            if exc.kind is ErrorClass.NON_RETRYABLE:
                logger.error(f"{label}: non-retryable failure on attempt {attempt}: {exc}")
                raise
            last_error = exc
        except Exception as exc:
            last_error = exc

        if attempt > policy.max_retries:
            break

        delay = policy.delay_for(attempt)
        logger.warning(
            f"{label}: attempt {attempt}/{policy.total_attempts} failed: {last_error}; "
            f"retrying in {delay:.1f}s"
        )
        if policy.on_retry is not None:
            try:
                policy.on_retry(last_error, attempt)
            except Exception as observer_exc:
                logger.warning(f"{label}: on_retry observer raised {observer_exc!r}, ignoring")
        sleep(delay)

    logger.error(f"{label}: all {policy.total_attempts} attempts exhausted")
    assert last_error is not None
    raise last_error


def _classify_response(response: requests.Response, url: str) -> None:
    status_code = response.status_code
    if 200 <= status_code < 300:
        return

    body = (response.text or "")[:200]

    if status_code == 429 or status_code >= 500:
        if status_code == 429:
            logger.warning(f"Rate limited (429) on {url}")
        else:
            logger.warning(f"Server error ({status_code}) on {url}")
        raise AutonomyError.recoverable(
            f"Server error {status_code}: {body}",
            details={"status_code": status_code, "url": url},
        )

    # 404 is often expected (unknown skill, missing resource) - log as debug
    if status_code == 404:
        logger.debug(f"HTTP 404: {url} - {body}")
    else:
        logger.error(f"HTTP client error: {status_code} - {body}")
    raise AutonomyError.non_retryable(
        f"HTTP {status_code}: {body}",
        details={"status_code": status_code, "url": url},
    )


def request_with_retry(method: str, url: str, policy: RetryPolicy = DEFAULT_POLICY,
                       session: Optional[requests.Session] = None, timeout: float = 20.0,
                       sleep: Callable[[float], None] = time.sleep, **kwargs: Any) -> Any:
    """
    HTTP call under ``policy`` returning the decoded JSON body.

    Non-2xx responses are classified before the retry decision: server-class
    statuses are retried, client-class statuses fail immediately.
    """
    http = session or requests

    def _attempt() -> Any:
        try:
            response = http.request(method, url, timeout=timeout, **kwargs)
        except (requests.exceptions.Timeout, requests.exceptions.ConnectionError) as exc:
            logger.warning(f"Network error on {url}: {exc}")
            raise AutonomyError.recoverable(f"Network error on {url}: {exc}", cause=exc)
        _classify_response(response, url)
        try:
            return response.json()
        except ValueError as exc:
            raise AutonomyError.non_retryable(f"Invalid JSON from {url}", cause=exc)

    return with_retry(_attempt, policy, name=f"{method} {url}", sleep=sleep)
