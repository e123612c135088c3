"""
Bounded retry for upstream calls.

Every attempt gets its own timeout (passed to the operation, which hands it
to ``requests`` or whatever it calls). Failed attempts are logged and retried
after ``backoff`` seconds; zero means retry immediately. Once the attempts
run out the last error is raised unchanged.
"""

import logging
from typing import Callable, Tuple, Type, TypeVar

import requests
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_fixed

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_ERRORS: Tuple[Type[BaseException], ...] = (
    requests.RequestException,
    OSError,
    TimeoutError,
)


def with_retry(
    operation: Callable[[float], T],
    max_attempts: int = 3,
    timeout: float = 90.0,
    backoff: float = 0.0,
    retry_on: Tuple[Type[BaseException], ...] = RETRYABLE_ERRORS,
    label: str = "upstream call",
) -> T:
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")

    def _log_failure(retry_state):
        logger.warning(
            "⚠️ %s attempt %d/%d failed: %s",
            label, retry_state.attempt_number, max_attempts,
            retry_state.outcome.exception(),
        )

    retrying = Retrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_fixed(backoff),
        retry=retry_if_exception_type(retry_on),
        before_sleep=_log_failure,
        reraise=True,
    )
    return retrying(operation, timeout)
