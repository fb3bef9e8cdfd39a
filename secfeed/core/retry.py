"""Retry and backoff utilities for resilient operations.

Used for feed downloads (exponential backoff) and for the standalone
scraping path (linear backoff, no retry after a client-side timeout).
"""

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

from secfeed.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_attempts: int = 3
    backoff_base: float = 1.0
    backoff_max: float = 30.0
    linear: bool = False
    jitter: bool = True
    retryable_exceptions: tuple[type[Exception], ...] = field(default_factory=lambda: (Exception,))
    # Raised immediately, even when also listed as retryable
    abort_exceptions: tuple[type[BaseException], ...] = ()

    def delay_for(self, attempt: int) -> float:
        """Delay before the retry following the zero-based ``attempt``."""
        if self.linear:
            delay = self.backoff_base * (attempt + 1)
        else:
            delay = self.backoff_base * (2**attempt)
        delay = min(delay, self.backoff_max)
        if self.jitter:
            delay *= 0.5 + random.random()
        return delay


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    config: RetryConfig | None = None,
    operation_name: str = "operation",
) -> T:
    """
    Execute async function with backoff retry.

    Each retry waits for ``config.delay_for(attempt)`` seconds: exponential
    by default, ``backoff_base * (attempt + 1)`` when ``linear`` is set.
    Exceptions in ``abort_exceptions`` are re-raised without further attempts.

    Args:
        fn: Async function to execute (no arguments)
        config: Retry configuration, uses defaults if not provided
        operation_name: Name for logging purposes

    Returns:
        Result of fn()

    Raises:
        Exception: The last exception if all retries are exhausted
    """
    config = config or RetryConfig()
    last_exception: Exception | None = None

    for attempt in range(config.max_attempts):
        try:
            return await fn()
        except config.abort_exceptions as e:
            logger.bind(operation=operation_name, attempt=attempt + 1, error=repr(e)).warning(
                "retry_aborted"
            )
            raise
        except config.retryable_exceptions as e:
            last_exception = e

            if attempt + 1 == config.max_attempts:
                logger.bind(
                    operation=operation_name,
                    attempts=config.max_attempts,
                    error=str(e),
                ).error("retry_exhausted")
                raise

            delay = config.delay_for(attempt)
            logger.bind(
                operation=operation_name,
                attempt=attempt + 1,
                max_attempts=config.max_attempts,
                delay_seconds=round(delay, 2),
                error=str(e),
            ).warning("retry_attempt")
            await asyncio.sleep(delay)

    # This should never be reached, but satisfies type checker
    if last_exception is not None:
        raise last_exception
    raise RuntimeError("Unexpected state in retry_with_backoff")
