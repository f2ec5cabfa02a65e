"""
Retry logic with linear backoff for throttled vendor calls.

Only VendorThrottled is retried. Every other error propagates on the first
occurrence, so business rejections and transport failures are never masked
by a generic retry loop.
"""

import time
import functools
from typing import Callable, Optional, Tuple, Type, TypeVar

from .errors import SyncError, VendorThrottled

T = TypeVar("T")


class RetryError(SyncError):
    """Raised when all retry attempts are exhausted."""
    pass


def retry_on_throttle(
    func: Callable[[], T],
    max_retries: int = 3,
    base_delay: float = 1.0,
    exceptions: Tuple[Type[Exception], ...] = (VendorThrottled,),
    on_retry: Optional[Callable] = None,
    sleep: Optional[Callable[[float], None]] = None,
) -> T:
    """
    Call func, retrying throttled failures with linear backoff.

    The wait before retry N is base_delay * N, so with base_delay=1.0 the
    retries happen after 1s, 2s, 3s, ...

    Args:
        func: Zero-argument callable to run
        max_retries: Maximum number of retry attempts (0 = no retries)
        base_delay: Delay unit in seconds
        exceptions: Exception types that trigger a retry
        on_retry: Optional callback function(attempt, exception, delay)
        sleep: Sleep function, injectable for tests

    Raises:
        RetryError: When every attempt was throttled
    """
    sleep = sleep or time.sleep
    for attempt in range(max_retries + 1):
        try:
            return func()
        except exceptions as e:
            if attempt >= max_retries:
                raise RetryError(
                    f"Failed after {max_retries + 1} attempts: {str(e)}"
                ) from e

            delay = base_delay * (attempt + 1)
            if on_retry:
                on_retry(attempt + 1, e, delay)
            sleep(delay)

    # Only reachable when max_retries < 0
    raise RetryError("No attempts were made")


def linear_backoff(
    max_retries: int = 3,
    base_delay: float = 1.0,
    exceptions: Tuple[Type[Exception], ...] = (VendorThrottled,),
    on_retry: Optional[Callable] = None,
):
    """
    Decorator form of retry_on_throttle.

    Example:
        @linear_backoff(max_retries=3, base_delay=1.0)
        def fetch_detail_batch(order_ids):
            return client.post(account, DETAIL_PATH, {"order_id": ",".join(order_ids)})
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            return retry_on_throttle(
                lambda: func(*args, **kwargs),
                max_retries=max_retries,
                base_delay=base_delay,
                exceptions=exceptions,
                on_retry=on_retry,
            )

        return wrapper
    return decorator
