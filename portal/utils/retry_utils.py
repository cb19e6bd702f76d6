"""
Retry decorator for outbound HTTP calls.

Uses tenacity for exponential backoff. Only transport failures are retried;
an HTTP error response is returned to the caller as-is.
"""

import logging

import requests
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log,
)

logger = logging.getLogger(__name__)

NETWORK_ERRORS = (
    requests.exceptions.ConnectionError,
    requests.exceptions.Timeout,
)


def retry_on_network_error(max_attempts: int = 3, min_wait: int = 1, max_wait: int = 8):
    """Retry decorator for sync HTTP calls made with requests.

    Retries on ConnectionError and Timeout only, re-raising the last error
    once attempts are exhausted.
    """
    return retry(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=1, min=min_wait, max=max_wait),
        retry=retry_if_exception_type(NETWORK_ERRORS),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
