# ==============================================================================
# Retry Configuration
# ==============================================================================
"""
Shared retry configuration for collector delivery.

Delivery retries are deliberately short: a batch that still fails after the
light retry is handed back to the EventQueue, which re-prepends it and tries
again on the next flush cycle.

Light retry: 3 attempts with exponential backoff capped at a few seconds.

A decorated call may pass a ``deadline`` keyword (a time.monotonic() value).
No attempt starts after it and backoff waits are cut short to meet it, so
the whole call, retries included, fits the caller's budget.
"""

import logging
import time
from typing import Tuple, Type

import requests
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    stop_any,
    wait_exponential,
)

# ==============================================================================
# Retry Constants
# ==============================================================================

# Light retry configuration: 3 attempts, 0.5s then 1s between them
RETRY_ATTEMPTS_LIGHT = 3
RETRY_WAIT_MIN = 0.5  # seconds
RETRY_WAIT_MAX = 4  # seconds (cap for exponential backoff)

HTTP_RETRY_EXCEPTIONS = (
    requests.exceptions.ConnectionError,
    requests.exceptions.Timeout,
)


# ==============================================================================
# Logging Callbacks
# ==============================================================================


def log_retry_attempt(logger: logging.Logger, attempts: int):
    """
    Create a callback that logs retry attempts.

    Args:
        logger: Logger instance to use for logging
        attempts: Total attempts, shown as the denominator in the log line

    Returns:
        Callback function for tenacity's before_sleep parameter
    """

    def _log_retry(retry_state: RetryCallState) -> None:
        exception = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "Retry attempt %d/%d after error: %s",
            retry_state.attempt_number,
            attempts,
            exception,
        )

    return _log_retry


# ==============================================================================
# Deadline Handling
# ==============================================================================


def _deadline(retry_state: RetryCallState) -> float | None:
    return retry_state.kwargs.get("deadline")


def stop_at_deadline(retry_state: RetryCallState) -> bool:
    """Stop retrying once the call's deadline has passed."""
    deadline = _deadline(retry_state)
    return deadline is not None and time.monotonic() >= deadline


def wait_within_deadline(wait):
    """Clip a tenacity wait strategy to the time left before the deadline."""

    def _wait(retry_state: RetryCallState) -> float:
        delay = wait(retry_state)
        deadline = _deadline(retry_state)
        if deadline is None:
            return delay
        return max(0.0, min(delay, deadline - time.monotonic()))

    return _wait


# ==============================================================================
# Retry Decorators
# ==============================================================================


def retry_light(
    exception_types: Tuple[Type[Exception], ...],
    logger: logging.Logger,
    attempts: int = RETRY_ATTEMPTS_LIGHT,
):
    """
    Create a light retry decorator (3 attempts by default).

    Use this for delivery calls whose failure is recovered elsewhere.

    Args:
        exception_types: Tuple of exception types to retry on
        logger: Logger instance for retry logging
        attempts: Maximum number of attempts

    Returns:
        Tenacity retry decorator

    Example:
        @retry_light(HTTP_RETRY_EXCEPTIONS, logger)
        def post_batch(payload, deadline=None):
            ...
    """
    return retry(
        stop=stop_any(stop_after_attempt(attempts), stop_at_deadline),
        wait=wait_within_deadline(
            wait_exponential(multiplier=0.5, min=RETRY_WAIT_MIN, max=RETRY_WAIT_MAX)
        ),
        retry=retry_if_exception_type(exception_types),
        before_sleep=log_retry_attempt(logger, attempts),
        reraise=True,
    )
