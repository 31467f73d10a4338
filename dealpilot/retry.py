"""
dealpilot - Retry Logic

Backoff for the non-streaming function calls (``AsyncCopilotClient.invoke``).

Streams are never retried: text already shown to the user cannot be taken
back, so a failed stream surfaces as a StreamError instead. Retrying is off
until ``max_retries`` is raised above zero.
"""

import asyncio
import random
from typing import Awaitable, Callable, FrozenSet, Iterable, Optional, TypeVar

from .errors import DealPilotError, RateLimitError
from .logging import get_logger

T = TypeVar("T")

logger = get_logger(__name__)

RETRY_STATUSES: FrozenSet[int] = frozenset({429, 500, 502, 503, 504})

RetryCallback = Callable[[int, Exception, float], None]


def calculate_backoff(
    attempt: int,
    initial_delay: float = 1.0,
    max_delay: float = 30.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
) -> float:
    """Seconds to wait before retry ``attempt`` (0-based), +/-25% jitter."""
    delay = min(initial_delay * exponential_base ** attempt, max_delay)
    if jitter:
        spread = delay * 0.25
        delay += random.uniform(-spread, spread)
    return max(0.0, delay)


def should_retry(error: Exception, statuses: Iterable[int] = RETRY_STATUSES) -> bool:
    """Only typed errors are retried: flagged retryable or carrying a listed status."""
    if not isinstance(error, DealPilotError):
        return False
    return error.retryable or error.status_code in set(statuses)


class RetryHandler:
    """
    Retries an async call with exponential backoff.

    A RateLimitError waits for the server's Retry-After instead of the
    computed backoff.

    Example:
        handler = RetryHandler(max_retries=2, initial_delay=0.5)
        data = await handler.execute_async(lambda: client.invoke("fn", body))
    """

    def __init__(
        self,
        max_retries: int = 0,
        initial_delay: float = 1.0,
        max_delay: float = 30.0,
        exponential_base: float = 2.0,
        retry_on_status: Optional[Iterable[int]] = None,
        on_retry: Optional[RetryCallback] = None,
    ):
        self.max_retries = max_retries
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.retry_on_status = frozenset(retry_on_status) if retry_on_status else RETRY_STATUSES
        self.on_retry = on_retry

    def delay_for(self, attempt: int, error: Exception) -> float:
        if isinstance(error, RateLimitError):
            return float(error.retry_after)
        return calculate_backoff(attempt, self.initial_delay, self.max_delay, self.exponential_base)

    async def execute_async(self, func: Callable[[], Awaitable[T]]) -> T:
        """Await ``func()`` until it succeeds or the error is final."""
        attempt = 0
        while True:
            try:
                return await func()
            except DealPilotError as error:
                if attempt >= self.max_retries or not should_retry(error, self.retry_on_status):
                    raise
                delay = self.delay_for(attempt, error)
                logger.warning(
                    "Retrying request",
                    attempt=attempt + 1,
                    max_retries=self.max_retries,
                    delay=round(delay, 2),
                    error=error.message,
                )
                if self.on_retry:
                    self.on_retry(attempt, error, delay)
                await asyncio.sleep(delay)
                attempt += 1
