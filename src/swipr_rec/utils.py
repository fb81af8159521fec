"""Retry decorators: SQLite writes in the peer store, TMDB requests in the catalog."""

import time
import logging
import asyncio
from functools import wraps
from itertools import chain
from typing import Callable, Iterator, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')


def _backoff_schedule(max_retries: int, initial_delay: float, backoff_factor: float) -> Iterator[float | None]:
    """
    Delay to sleep after each failed attempt. The final attempt yields None,
    meaning the error is re-raised instead of retried.
    """
    def delays():
        delay = initial_delay
        for _ in range(max_retries - 1):
            yield delay
            delay *= backoff_factor

    return chain(delays(), [None])


def _report(name: str, attempt: int, max_retries: int, error: Exception, delay: float | None) -> None:
    if delay is None:
        logger.error(f"{name} gave up after {attempt} attempt(s): {error}")
    else:
        logger.warning(f"{name} failed ({attempt}/{max_retries}): {error}. Retrying in {delay:.1f}s")


def retry_with_backoff(
    max_retries: int = 3,
    initial_delay: float = 0.1,
    backoff_factor: float = 2.0,
    exceptions: tuple = (Exception,)
):
    """
    Retry a blocking call with exponential backoff.

    Args:
        max_retries: Total attempts, including the first
        initial_delay: Seconds to wait after the first failure
        backoff_factor: Multiplier applied to the wait after each failure
        exceptions: Exception types worth retrying; anything else propagates at once

    Example:
        @retry_with_backoff(exceptions=(sqlite3.OperationalError,))
        def insert_row():
            ...
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args, **kwargs) -> T:
            for attempt, delay in enumerate(_backoff_schedule(max_retries, initial_delay, backoff_factor), 1):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    _report(func.__name__, attempt, max_retries, e, delay)
                    if delay is None:
                        raise
                    time.sleep(delay)

        return wrapper
    return decorator


def async_retry_with_backoff(
    max_retries: int = 3,
    initial_delay: float = 0.5,
    backoff_factor: float = 2.0,
    exceptions: tuple = (Exception,)
):
    """Coroutine counterpart of retry_with_backoff; waits with asyncio.sleep."""
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            for attempt, delay in enumerate(_backoff_schedule(max_retries, initial_delay, backoff_factor), 1):
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    _report(func.__name__, attempt, max_retries, e, delay)
                    if delay is None:
                        raise
                    await asyncio.sleep(delay)

        return wrapper
    return decorator
