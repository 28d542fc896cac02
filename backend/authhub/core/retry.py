"""Retry utilities with exponential backoff."""

import asyncio
import logging
import random
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

import httpx

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_attempts: int = 3  # Total attempts, including the first one
    base_delay: float = 1.0  # Base delay in seconds
    max_delay: float = 5.0  # Maximum delay in seconds
    exponential_base: float = 2.0  # Exponential backoff multiplier
    jitter: bool = False  # Add random jitter to delays
    retryable_exceptions: tuple = (
        httpx.TransportError,
        ConnectionError,
        TimeoutError,
    )
    retryable_status_codes: tuple = (502, 503, 504, 429)  # Gateway errors, rate limits


class RetryDeadlineExceeded(Exception):
    """Raised when the next backoff would run past the caller's deadline."""

    def __init__(self, attempts: int, last_exception: BaseException | None = None):
        self.attempts = attempts
        self.last_exception = last_exception
        super().__init__(f"Deadline exceeded after {attempts} attempt(s)")


def calculate_backoff_delay(attempt: int, config: RetryConfig) -> float:
    """Delay before the attempt following ``attempt`` (1-based).

    ``min(base * exponential_base^(attempt-1), max_delay)``, optionally jittered.
    """
    delay = config.base_delay * (config.exponential_base ** (attempt - 1))
    delay = min(delay, config.max_delay)

    if config.jitter:
        # Add random jitter (0.5 to 1.5 times the delay)
        delay = delay * (0.5 + random.random())

    return delay


def is_retryable(exc: BaseException, config: RetryConfig) -> bool:
    """Transport failures and gateway/rate-limit statuses are retryable, nothing else."""
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in config.retryable_status_codes
    return isinstance(exc, config.retryable_exceptions)


async def retry_async(
    func: Callable[[], Awaitable[T]],
    config: RetryConfig | None = None,
    deadline: float | None = None,
    operation: str = "request",
) -> T:
    """Execute an async callable with retry logic.

    Args:
        func: Zero-argument coroutine function to execute
        config: Retry configuration
        deadline: Optional ``time.monotonic()`` value after which no further
            attempt is started
        operation: Name used in log messages

    Returns:
        Result of func

    Raises:
        The last exception if all attempts fail or the failure is not retryable.
        RetryDeadlineExceeded if waiting for the next attempt would pass the deadline.
    """
    config = config or RetryConfig()

    for attempt in range(1, config.max_attempts + 1):
        try:
            return await func()
        except Exception as e:
            if not is_retryable(e, config) or attempt >= config.max_attempts:
                if attempt > 1:
                    logger.warning(f"{operation} failed after {attempt} attempts: {e}")
                raise

            delay = calculate_backoff_delay(attempt, config)
            if deadline is not None and time.monotonic() + delay > deadline:
                logger.warning(f"{operation} abandoned after {attempt} attempts: deadline exceeded")
                raise RetryDeadlineExceeded(attempt, e) from e

            logger.info(
                f"{operation} attempt {attempt}/{config.max_attempts} failed, "
                f"retrying in {delay:.2f}s: {e}"
            )
            await asyncio.sleep(delay)

    # max_attempts >= 1 guarantees the loop either returned or raised
    raise RuntimeError("Retry logic error")
