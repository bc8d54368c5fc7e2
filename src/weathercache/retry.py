"""Retry with exponential backoff for fallible weather lookups.

Each failure is classified once (see :mod:`weathercache.errors`); only
retryable errors are retried, and the final classified error is raised
when attempts run out.

Usage:
    >>> async def fetch():
    ...     return await client.get_history(lat, lon, day)
    >>> data = await with_retry(fetch, max_attempts=3, context="history")
"""

import asyncio
import functools
import inspect
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, TypeVar, Union

from weathercache.errors import (
    ErrorCode,
    HistoricalWeatherError,
    classify_error,
    is_retryable,
    log_error,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryConfig:
    """Backoff parameters.

    Attributes:
        max_attempts: Total attempts including the first one
        base_delay: Delay before the second attempt, in seconds
        max_delay: Ceiling on the exponential delay, in seconds
        jitter: Fraction of the delay added at random (never subtracted)
        sleep: Coroutine function used to wait between attempts
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter: float = 0.1
    sleep: Callable[[float], Awaitable[Any]] = field(default=asyncio.sleep, repr=False)

    def backoff(self, attempt: int, rand: Callable[[], float] = random.random) -> float:
        """Exponential delay after the given 1-indexed attempt, with jitter."""
        delay = min(self.base_delay * 2 ** (attempt - 1), self.max_delay)
        return delay + rand() * self.jitter * delay


def get_retry_delay(
    error: HistoricalWeatherError,
    attempt: int,
    config: Optional[RetryConfig] = None,
    rand: Callable[[], float] = random.random,
) -> float:
    """Seconds to wait before the attempt after ``attempt``.

    A rate-limit error carrying ``retry_after`` wins over the backoff curve.
    """
    if error.code is ErrorCode.API_LIMIT_ERROR and error.retry_after:
        return float(error.retry_after)
    return (config or RetryConfig()).backoff(attempt, rand)


async def with_retry(
    operation: Callable[[], Union[T, Awaitable[T]]],
    max_attempts: Optional[int] = None,
    context: str = "operation",
    config: Optional[RetryConfig] = None,
) -> T:
    """Run ``operation`` until it succeeds or a failure is final.

    Args:
        operation: Zero-argument callable; may return a value or an awaitable
        max_attempts: Overrides ``config.max_attempts`` when given
        context: Description used in logs and unknown-error messages
        config: Backoff parameters (defaults to :class:`RetryConfig`)

    Returns:
        Whatever ``operation`` returns

    Raises:
        HistoricalWeatherError: The classified error of the last attempt, or
            of the first non-retryable failure
        ValueError: If ``max_attempts`` is less than 1
    """
    config = config or RetryConfig()
    attempts = max_attempts if max_attempts is not None else config.max_attempts
    if attempts < 1:
        raise ValueError(f"max_attempts must be at least 1, got {attempts}")

    for attempt in range(1, attempts + 1):
        try:
            result = operation()
            if inspect.isawaitable(result):
                result = await result
            return result
        except Exception as e:
            error = classify_error(e, context)

            if not is_retryable(error):
                log_error(error, {"attempt": attempt, "context": context})
                if error is e:
                    raise
                raise error from e

            if attempt == attempts:
                log_error(error, {"attempt": attempt, "context": context, "final": True})
                if error is e:
                    raise
                raise error from e

            delay = get_retry_delay(error, attempt, config)
            logger.warning(
                f"Retrying {context} (attempt {attempt + 1}/{attempts}) "
                f"after {delay:.2f}s delay: {error.code.value}: {error.message}"
            )
            await config.sleep(delay)

    raise AssertionError("unreachable")


def retryable(
    max_attempts: Optional[int] = None,
    context: Optional[str] = None,
    config: Optional[RetryConfig] = None,
):
    """Decorator form of :func:`with_retry` for async functions.

    Examples:
        >>> @retryable(max_attempts=5)
        ... async def fetch_day(lat, lon, day):
        ...     ...
    """

    def decorator(func):
        label = context or func.__qualname__

        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            return await with_retry(
                lambda: func(*args, **kwargs),
                max_attempts=max_attempts,
                context=label,
                config=config,
            )

        return wrapper

    return decorator
