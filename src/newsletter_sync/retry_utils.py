# SPDX-License-Identifier: MIT
"""Retry utilities for remote calls."""

import asyncio
from collections.abc import Awaitable, Callable
from functools import wraps
from typing import Any, TypeVar

from .logging_config import get_detail_logger


detail_logger = get_detail_logger()

T = TypeVar("T")


def async_retry_with_backoff(
    max_retries: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    exceptions: tuple[type[Exception], ...] = (Exception,),
    on_retry: Callable[[int, Exception], None] | None = None,
    respect_retry_after: bool = False,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Decorator for retrying async functions with backoff.

    A function that keeps failing is called exactly ``1 + max_retries`` times
    before the last exception is re-raised. An ``exponential_base`` of 1.0
    gives a fixed delay between attempts.

    Args:
        max_retries: Maximum number of retry attempts
        initial_delay: Delay before the first retry, in seconds
        max_delay: Upper bound for any single delay, in seconds
        exponential_base: Multiplier applied to the delay after each retry
        exceptions: Exception types that trigger a retry
        on_retry: Called with (attempt_number, exception) before each retry
        respect_retry_after: Wait for the exception's ``retry_after`` seconds,
            capped at ``max_delay``, when it carries one

    Returns:
        Decorated async function

    Example:
        >>> @async_retry_with_backoff(max_retries=2, exponential_base=1.0)
        ... async def push_chunk():
        ...     return await gateway.bulk_update("newsletters", ids, {"is_read": True})
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            delay = initial_delay
            attempt = 0

            while True:
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    if attempt == max_retries:
                        detail_logger.debug(
                            f"{func.__name__} failed after {max_retries} retries: {e}"
                        )
                        raise

                    attempt += 1
                    wait = delay
                    retry_after = getattr(e, "retry_after", None)
                    if respect_retry_after and retry_after is not None:
                        wait = min(float(retry_after), max_delay)
                    detail_logger.debug(
                        f"{func.__name__} failed (retry {attempt}/{max_retries}): {e}. "
                        f"Retrying in {wait:.1f}s..."
                    )
                    if on_retry is not None:
                        on_retry(attempt, e)
                    await asyncio.sleep(wait)
                    delay = min(delay * exponential_base, max_delay)

        return wrapper

    return decorator
