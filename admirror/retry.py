"""
Retry helpers for directory operations that fail transiently.

Binding, searching and writing all go over the network; a busy or briefly
unreachable domain controller should not abort a whole load or sync.
"""

import logging
import time
from typing import Any, Callable, Optional, Tuple, Type

from ldap3.core.exceptions import (
    LDAPCommunicationError,
    LDAPSessionTerminatedByServerError,
    LDAPSocketOpenError,
    LDAPSocketReceiveError,
)

logger = logging.getLogger(__name__)

# LDAP result codes worth another attempt: busy, unavailable, timeLimitExceeded.
RETRYABLE_RESULT_CODES = (51, 52, 3)

TRANSIENT_ERRORS = (
    ConnectionError,
    TimeoutError,
    LDAPSocketOpenError,
    LDAPSocketReceiveError,
    LDAPCommunicationError,
    LDAPSessionTerminatedByServerError,
)


class RetryableError(Exception):
    """Marks a failure as transient."""


class MaxRetriesExceeded(Exception):
    """Raised once every attempt of a retried call has failed."""

    def __init__(self, attempts: int, last_exception: Exception):
        self.attempts = attempts
        self.last_exception = last_exception
        super().__init__(f"Failed after {attempts} attempts: {last_exception}")


def retry_call(
    func: Callable,
    args: tuple = (),
    kwargs: dict = None,
    max_attempts: int = 3,
    delay: float = 1.0,
    backoff: float = 1.0,
    exceptions: Tuple[Type[Exception], ...] = TRANSIENT_ERRORS + (RetryableError,),
    on_retry: Optional[Callable[[int, Exception], None]] = None
) -> Any:
    """
    Call a function, retrying it on transient failures.

    Args:
        func: Function to call
        args: Positional arguments for the function
        kwargs: Keyword arguments for the function
        max_attempts: Total number of attempts, the first call included
        delay: Seconds to wait before the first retry
        backoff: Multiplier applied to the delay after every retry
        exceptions: Exception types that trigger a retry
        on_retry: Called with the attempt number and the error before each retry

    Returns:
        Whatever the function returns

    Raises:
        MaxRetriesExceeded: If every attempt failed
    """
    kwargs = kwargs or {}
    max_attempts = max(1, max_attempts)
    current_delay = delay
    last_exception = None

    for attempt in range(1, max_attempts + 1):
        try:
            result = func(*args, **kwargs)
            if attempt > 1:
                logger.info(f"Operation succeeded on attempt {attempt}")
            return result
        except exceptions as e:
            last_exception = e
            if attempt == max_attempts:
                break
            logger.debug(f"Attempt {attempt} failed with {type(e).__name__}: {e}; "
                         f"retrying in {current_delay:.1f} seconds")
            if on_retry:
                on_retry(attempt, e)
            time.sleep(current_delay)
            current_delay *= backoff

    raise MaxRetriesExceeded(max_attempts, last_exception)


def is_retryable_error(exception: Exception) -> bool:
    """
    Decide whether an error from the directory is transient.

    Args:
        exception: Error to check

    Returns:
        True for network failures, busy or unavailable servers and errors
        explicitly marked retryable
    """
    if isinstance(exception, TRANSIENT_ERRORS + (RetryableError,)):
        return True
    if getattr(exception, 'result', None) in RETRYABLE_RESULT_CODES:
        return True

    message = str(exception).lower()
    return any(pattern in message for pattern in (
        'timeout',
        'timed out',
        'connection reset',
        'connection refused',
        'server is busy',
        'unavailable',
    ))


def create_retry_callback(operation_name: str) -> Callable[[int, Exception], None]:
    """Return an on_retry callback that logs a warning naming the operation."""
    def on_retry(attempt: int, exception: Exception):
        logger.warning(f"{operation_name} failed on attempt {attempt}, "
                       f"retrying after {type(exception).__name__}: {exception}")
    return on_retry
