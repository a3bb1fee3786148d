"""
Bounded retry with exponential backoff for async calls.

Page fetches run with max_attempts=1 (no retry) unless configured
otherwise; a cycle that fails is simply re-attempted by the next cycle.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from parking_pipeline.common.exceptions import (
    ErrorCategory,
    PipelineError,
    classify_exception,
)
from parking_pipeline.common.logging import log_with_context

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryConfig:
    """Retry policy.

    Attributes:
        max_attempts: Total attempts including the first (1 = no retry)
        base_delay: Delay before the second attempt, in seconds
        max_delay: Upper bound for any single delay
        exponential_base: Multiplier applied per attempt
        jitter: Randomise each delay to between 50% and 100% of its value
    """

    max_attempts: int = 1
    base_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0
    jitter: bool = True

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("retry delays must be >= 0")

    def get_delay(self, attempt: int) -> float:
        """Delay after the given (1-based) failed attempt."""
        delay = min(
            self.base_delay * (self.exponential_base ** (attempt - 1)),
            self.max_delay,
        )
        if self.jitter:
            delay *= 0.5 + random.random() / 2
        return delay


NO_RETRY = RetryConfig(max_attempts=1)


def is_retryable(exc: Exception) -> bool:
    """Retry transient and unknown failures only."""
    if isinstance(exc, PipelineError):
        return exc.is_retryable
    return classify_exception(exc) in (ErrorCategory.TRANSIENT, ErrorCategory.UNKNOWN)


async def call_with_retry(
    func: Callable[[], Awaitable[T]],
    config: RetryConfig = NO_RETRY,
    should_retry: Callable[[Exception], bool] = is_retryable,
    operation: Optional[str] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Await func(), retrying on retryable failures per config.

    The last exception is re-raised unchanged once attempts are exhausted
    or a non-retryable error is seen.
    """
    attempt = 1
    while True:
        try:
            return await func()
        except Exception as e:
            if attempt >= config.max_attempts or not should_retry(e):
                raise
            delay = config.get_delay(attempt)
            log_with_context(
                logger,
                logging.WARNING,
                "Retrying after failure",
                operation=operation,
                attempt=attempt,
                error_message=str(e)[:200],
                retry_delay_seconds=round(delay, 2),
            )
            await sleep(delay)
            attempt += 1
