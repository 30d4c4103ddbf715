"""
Retry helpers for the host job.

The sync core never retries on its own; a job wraps the directory calls it
wants retried with retry_call() or the retry() decorator.
"""

import time
import logging
import functools
from typing import Callable, Any, Dict, Optional, Tuple, Type

from ldap_bridge.ldap_client import DirectoryUnavailable

logger = logging.getLogger(__name__)


class MaxRetriesExceeded(Exception):
    """Raised when maximum retry attempts are exceeded."""

    def __init__(self, attempts: int, last_exception: Exception):
        self.attempts = attempts
        self.last_exception = last_exception
        super().__init__(f"Failed after {attempts} attempts: {last_exception}")


def retry_call(
    func: Callable,
    args: tuple = (),
    kwargs: Optional[Dict[str, Any]] = None,
    max_attempts: int = 3,
    delay: float = 1.0,
    backoff: float = 1.0,
    exceptions: Tuple[Type[Exception], ...] = (DirectoryUnavailable,),
    on_retry: Optional[Callable[[int, Exception], None]] = None
) -> Any:
    """
    Call a function, retrying on the given exceptions.

    Args:
        func: Function to call
        args: Positional arguments for function
        kwargs: Keyword arguments for function
        max_attempts: Maximum number of attempts, including the first
        delay: Initial delay between retries in seconds
        backoff: Delay multiplier applied after each retry
        exceptions: Exception types that trigger a retry
        on_retry: Called with (attempt, exception) before each retry

    Returns:
        Function result

    Raises:
        MaxRetriesExceeded: If all attempts fail
    """
    kwargs = kwargs or {}
    last_exception = None
    current_delay = delay

    for attempt in range(max_attempts):
        try:
            result = func(*args, **kwargs)
            if attempt > 0:
                logger.info(f"Operation succeeded on attempt {attempt + 1}")
            return result
        except exceptions as e:
            last_exception = e
            if attempt == max_attempts - 1:
                break

            logger.debug(f"Attempt {attempt + 1} failed with {type(e).__name__}: {e}")
            if on_retry:
                on_retry(attempt + 1, e)

            time.sleep(current_delay)
            current_delay *= backoff

    raise MaxRetriesExceeded(max_attempts, last_exception)


def retry(max_attempts: int = 3, delay: float = 1.0, backoff: float = 1.0,
          exceptions: Tuple[Type[Exception], ...] = (DirectoryUnavailable,),
          on_retry: Optional[Callable[[int, Exception], None]] = None):
    """
    Decorator form of retry_call().

    Example:
        @retry(max_attempts=3, delay=2.0, backoff=2.0)
        def load_entries():
            return client.search(base_dn, user_filter)
    """
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            return retry_call(
                func, args, kwargs,
                max_attempts=max_attempts,
                delay=delay,
                backoff=backoff,
                exceptions=exceptions,
                on_retry=on_retry
            )
        return wrapper
    return decorator


def create_retry_callback(operation_name: str) -> Callable[[int, Exception], None]:
    """
    Create a retry callback that logs each failed attempt.

    Args:
        operation_name: Name of the operation being retried
    """
    def on_retry(attempt: int, exception: Exception):
        logger.warning(f"{operation_name} failed on attempt {attempt}, "
                       f"retrying due to {type(exception).__name__}: {exception}")

    return on_retry
