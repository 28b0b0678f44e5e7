"""
Exponential backoff for resilient asynchronous operations.
"""

import asyncio
import random
import logging
from typing import Awaitable, Callable, TypeVar

from slide_sync.data_access.exceptions import RetryableError

logger = logging.getLogger(__name__)

T = TypeVar('T')


def backoff_delay(
    attempt: int,
    base_delay: float = 0.5,
    max_delay: float = 2.0,
    jitter: bool = False
) -> float:
    """
    Compute the delay before a retry attempt.

    The delay doubles with each attempt and is capped at max_delay:
    attempt 1 waits base_delay, attempt 2 waits 2 * base_delay, and so on.

    Args:
        attempt: 1-based attempt number
        base_delay: Delay of the first attempt in seconds
        max_delay: Maximum delay in seconds
        jitter: Whether to add up to 10% random jitter

    Returns:
        Delay in seconds

    Example:
        >>> [backoff_delay(n, 0.5, 2.0) for n in (1, 2, 3, 4)]
        [0.5, 1.0, 2.0, 2.0]
    """
    if attempt < 1:
        raise ValueError(f"attempt must be >= 1, got {attempt}")

    delay = min(base_delay * (2 ** (attempt - 1)), max_delay)

    # Jitter spreads reconnects of many viewers after a shared outage
    if jitter:
        delay += random.uniform(0, 0.1 * delay)

    return delay


async def retry_operation(
    operation: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 2.0,
    jitter: bool = True
) -> T:
    """
    Retry a coroutine-producing operation with exponential backoff.

    Only RetryableError is retried; any other exception propagates at once.

    Args:
        operation: Callable returning an awaitable
        max_retries: Maximum number of retry attempts (default: 3)
        base_delay: Initial delay in seconds (default: 0.5)
        max_delay: Maximum delay in seconds (default: 2.0)
        jitter: Whether to add random jitter to delay (default: True)

    Returns:
        Result of the operation

    Raises:
        RetryableError: If all retries fail

    Example:
        row = await retry_operation(
            lambda: row_store.fetch_presentation('p1'),
            max_retries=2
        )
    """
    for attempt in range(max_retries + 1):
        try:
            result = await operation()

            if attempt > 0:
                logger.info(
                    f"Operation succeeded after {attempt} retries",
                    extra={'attempt': attempt, 'max_retries': max_retries}
                )

            return result

        except RetryableError as e:
            if attempt == max_retries:
                logger.error(
                    f"Operation failed after {max_retries} retries",
                    extra={'max_retries': max_retries, 'error': str(e)}
                )
                raise

            delay = backoff_delay(attempt + 1, base_delay, max_delay, jitter)

            logger.warning(
                f"Retry attempt {attempt + 1}/{max_retries} after {delay:.2f}s",
                extra={
                    'attempt': attempt + 1,
                    'max_retries': max_retries,
                    'delay_seconds': delay,
                    'error': str(e)
                }
            )

            await asyncio.sleep(delay)

    raise RuntimeError("unreachable")  # pragma: no cover

