"""HTTP client utilities and retry helpers."""

from __future__ import annotations

from asyncio import sleep
from functools import wraps

from typing import TYPE_CHECKING, Any, ParamSpec, TypeVar

import httpx

from mantle_indexer.helpers.constants import (
    DEFAULT_TIMEOUT,
    MAX_RETRIES,
    RETRY_BASE_DELAY,
    RETRY_MAX_DELAY,
)
from mantle_indexer.helpers.logging import get_logger


if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable


logger = get_logger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


def backoff_delay(
    attempt: int,
    base_delay: float = RETRY_BASE_DELAY,
    max_delay: float = RETRY_MAX_DELAY,
) -> float:
    """Exponential backoff delay for a zero-based attempt number.

    Example:
        >>> backoff_delay(0, 1.0, 60.0), backoff_delay(3, 1.0, 60.0)
        (1.0, 8.0)
    """
    return min(base_delay * (2**attempt), max_delay)


def retry_with_backoff(
    max_retries: int = MAX_RETRIES,
    base_delay: float = RETRY_BASE_DELAY,
    max_delay: float = RETRY_MAX_DELAY,
    *,
    retry_if: Callable[[BaseException], bool] | None = None,
    log_errors: bool = True,
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Decorator to retry async functions with exponential backoff.

    Args:
        max_retries: Maximum number of attempts (default: 5)
        base_delay: Initial delay in seconds (default: 1.0)
        max_delay: Maximum delay between retries (default: 60.0)
        retry_if: Predicate selecting retryable exceptions; anything else is
            raised immediately. Retries every Exception when omitted.
        log_errors: Whether to log retry attempts (default: True)

    Returns:
        Decorated function

    Example:
        ```python
        from mantle_indexer.helpers.errors import is_transient
        from mantle_indexer.helpers.http import retry_with_backoff

        @retry_with_backoff(max_retries=3, base_delay=2.0, retry_if=is_transient)
        async def fetch_head(client: httpx.AsyncClient) -> int:
            ...

        # Will retry up to 3 times with delays of 2s, 4s
        ```
    """

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            last_exception: Exception | None = None

            for attempt in range(max_retries):
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    if retry_if is not None and not retry_if(e):
                        raise
                    last_exception = e
                    if log_errors and attempt < max_retries - 1:
                        logger.warning(
                            "%s %s (attempt %d/%d): %s",
                            func.__name__,
                            "timeout"
                            if isinstance(e, httpx.TimeoutException | TimeoutError)
                            else "error",
                            attempt + 1,
                            max_retries,
                            e,
                        )

                # Don't sleep after the last attempt
                if attempt < max_retries - 1:
                    await sleep(backoff_delay(attempt, base_delay, max_delay))

            if last_exception:
                if log_errors:
                    logger.error(
                        "%s failed after %d attempts", func.__name__, max_retries
                    )
                raise last_exception

            msg = f"{func.__name__} failed without exception"
            raise RuntimeError(msg)

        return wrapper

    return decorator


def create_http_client(
    timeout: float = DEFAULT_TIMEOUT, **kwargs: Any
) -> httpx.AsyncClient:
    """Create a configured httpx AsyncClient.

    Args:
        timeout: Default timeout in seconds (default: DEFAULT_TIMEOUT)
        **kwargs: Additional httpx.AsyncClient kwargs

    Returns:
        Configured AsyncClient instance
    """
    limits = kwargs.pop(
        "limits", httpx.Limits(max_keepalive_connections=5, max_connections=10)
    )
    return httpx.AsyncClient(timeout=timeout, limits=limits, **kwargs)


async def post_json(
    client: httpx.AsyncClient,
    url: str,
    data: dict[str, Any] | list[Any],
    *,
    timeout: float | None = None,
) -> Any:
    """Post JSON data to a URL and return the decoded JSON response.

    Unlike a fire-and-forget helper this raises, so callers can decide
    whether a failure is retryable.

    Raises:
        httpx.HTTPError: On transport failures or non-2xx responses
    """
    if timeout is None:
        response = await client.post(url, json=data)
    else:
        response = await client.post(url, json=data, timeout=timeout)
    response.raise_for_status()
    return response.json()


__all__ = [
    "backoff_delay",
    "create_http_client",
    "post_json",
    "retry_with_backoff",
]
