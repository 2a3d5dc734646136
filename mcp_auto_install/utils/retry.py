"""Retry utilities for handling transient failures.

Provides a decorator for retrying async operations a bounded number of
times with a fixed delay between attempts. The package index client uses it
for every HTTP request.

Key Exports:
    async_retry: Decorator for adding retry logic to async functions.

Example:
    >>> from mcp_auto_install.utils.retry import async_retry
    >>>
    >>> @async_retry(max_attempts=3, delay=1.0, exceptions=(httpx.HTTPError,))
    ... async def fetch(client: httpx.AsyncClient, url: str) -> dict:
    ...     response = await client.get(url)
    ...     response.raise_for_status()
    ...     return response.json()
"""

import asyncio
import functools
from collections.abc import Callable
from typing import Any

import structlog

log = structlog.get_logger(__name__)


def async_retry(
    max_attempts: int = 3,
    delay: float = 1.0,
    exceptions: tuple[type[Exception], ...] = (Exception,),
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Decorator for async functions with fixed-delay retry logic.

    Args:
        max_attempts: Maximum number of attempts before giving up. The
            function will be called at most max_attempts times.
        delay: Seconds to sleep between attempts. The delay is constant,
            not exponential.
        exceptions: Exception types that trigger a retry. Anything else
            propagates immediately.

    Returns:
        A decorator function that wraps async functions with retry logic.

    Raises:
        The last caught exception once all attempts are exhausted.
    """

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            for attempt in range(1, max_attempts + 1):
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    if attempt >= max_attempts:
                        log.error(
                            "retry_exhausted",
                            function=func.__name__,
                            attempts=attempt,
                            error=str(e),
                        )
                        raise

                    log.warning(
                        "retry_attempt",
                        function=func.__name__,
                        attempt=attempt,
                        max_attempts=max_attempts,
                        delay=delay,
                        error=str(e),
                    )
                    await asyncio.sleep(delay)

            raise RuntimeError("Retry logic error")

        return wrapper

    return decorator
