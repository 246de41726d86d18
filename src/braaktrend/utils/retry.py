"""
Retry policy for calls to external collaborators.

Annotation and enrichment services are fallible network operations. A call is
retried with exponential backoff on transient errors; once the attempts are
exhausted the run fails with ExternalServiceFailure rather than silently
skipping the lookup.

Transient errors are recognised first by type (ConnectionError, TimeoutError
and requests' connection/timeout exceptions), then by HTTP status (429 and
5xx, read from the response or from the error message) and finally by keyword
in the error message. Anything else is re-raised immediately.
"""

# Warning convention:
#   warnings.warn() -- user-facing (statistical caveats)
#   logger.warning() -- operator-facing (fallback, retry, missing data)

from __future__ import annotations

import logging
import re
import time
from typing import Callable, TypeVar

import requests

from braaktrend.core.errors import ExternalServiceFailure

logger = logging.getLogger(__name__)

__all__ = ['RetryPolicy', 'call_with_retry', 'is_transient_error']

T = TypeVar('T')

_TRANSIENT_TYPES = (
    ConnectionError,
    TimeoutError,
    requests.exceptions.ConnectionError,
    requests.exceptions.Timeout,
)

_TRANSIENT_KEYWORDS = (
    'connection', 'timeout', 'timed out', 'unavailable', 'refused', 'reset',
    'broken', 'temporarily',
)

_TRANSIENT_STATUS = re.compile(r'\b(429|5\d\d)\b')


def is_transient_error(error: Exception) -> bool:
    """True if the error looks like a network/transient failure."""
    if isinstance(error, _TRANSIENT_TYPES):
        return True
    if isinstance(error, requests.exceptions.HTTPError) and error.response is not None:
        status = error.response.status_code
        return status == 429 or 500 <= status < 600
    message = str(error).lower()
    # g:Profiler reports HTTP failures as "query failed with error 429"
    if _TRANSIENT_STATUS.search(message):
        return True
    return any(word in message for word in _TRANSIENT_KEYWORDS)


class RetryPolicy:
    """
    Exponential backoff settings.

    Args:
        max_retries: Retries after the first attempt (total attempts = 1 + max_retries)
        backoff_factor: Delay before retry k is backoff_factor * 2**(k-1) seconds
        max_delay: Upper bound on a single delay
    """

    def __init__(self, max_retries: int = 3, backoff_factor: float = 0.5, max_delay: float = 30.0):
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        self.max_retries = max_retries
        self.backoff_factor = backoff_factor
        self.max_delay = max_delay

    def delay(self, retry_number: int) -> float:
        return min(self.backoff_factor * (2 ** (retry_number - 1)), self.max_delay)

    def __repr__(self) -> str:
        return (
            f"RetryPolicy(max_retries={self.max_retries}, "
            f"backoff_factor={self.backoff_factor}, max_delay={self.max_delay})"
        )


def call_with_retry(
    func: Callable[[], T],
    service: str,
    policy: RetryPolicy | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call ``func`` with retries on transient errors.

    Args:
        func: Zero-argument callable performing the external request
        service: Collaborator name used in logs and the failure
        policy: Backoff settings (default RetryPolicy())
        sleep: Sleep function (injectable for tests)

    Returns:
        Whatever ``func`` returns

    Raises:
        ExternalServiceFailure: After all attempts fail with transient errors
        Exception: Non-transient errors are re-raised unchanged
    """
    policy = policy or RetryPolicy()
    attempts = 1 + policy.max_retries

    for attempt in range(1, attempts + 1):
        try:
            return func()
        except Exception as e:
            if not is_transient_error(e):
                raise

            if attempt >= attempts:
                raise ExternalServiceFailure(service, attempts, e) from e

            wait = policy.delay(attempt)
            logger.warning(
                "%s request failed on attempt %d/%d: %s (retrying in %.1fs)",
                service, attempt, attempts, e, wait,
            )
            sleep(wait)

    raise ExternalServiceFailure(service, attempts)  # pragma: no cover
