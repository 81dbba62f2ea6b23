"""In-process retry for transient storage and provider calls.

Distinct from the queue-level backoff in ``ingest.retry``: this retries a
single call a few times within one invocation before giving up.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from functools import wraps
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def retry_with_backoff(
    retryable_exceptions: tuple[type[Exception], ...],
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Decorator retrying an async callable on transient exceptions.

    Delay follows ``min(max_delay, base_delay * 2^attempt)``. Exceptions
    outside ``retryable_exceptions`` propagate immediately. The raised
    exception carries the number of retries made as ``retry_count``.
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            attempt = 0
            while True:
                try:
                    return await func(*args, **kwargs)
                except retryable_exceptions as exc:
                    if attempt >= max_retries:
                        exc.retry_count = attempt  # type: ignore[attr-defined]
                        raise
                    delay = min(max_delay, base_delay * (2**attempt))
                    logger.warning(
                        "Retry %d/%d for %s after %.1fs: %s",
                        attempt + 1,
                        max_retries,
                        func.__name__,
                        delay,
                        exc,
                    )
                    await asyncio.sleep(delay)
                    attempt += 1
                except Exception as exc:
                    exc.retry_count = attempt  # type: ignore[attr-defined]
                    raise

        return wrapper

    return decorator
