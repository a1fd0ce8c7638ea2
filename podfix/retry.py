"""Retry policy for spec index requests."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

import httpx

from .errors import SpecIndexUnavailable

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_retryable(error: BaseException) -> bool:
    """Transport failures, timeouts, 5xx and 429 are worth another attempt."""
    if isinstance(error, httpx.TransportError):
        return True
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        return status == 429 or status >= 500
    return False


@dataclass
class RetryPolicy:
    """Bounded retries with exponential backoff.

    ``sleep`` is injectable so tests can run the schedule on a fake clock.
    """

    max_attempts: int = 3
    base_delay: float = 0.5
    multiplier: float = 2.0
    max_delay: float = 8.0
    retryable: Callable[[BaseException], bool] = is_retryable
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep, repr=False)

    @classmethod
    def from_settings(cls, settings, **overrides) -> "RetryPolicy":
        values = {
            "max_attempts": settings.max_attempts,
            "base_delay": settings.backoff_base,
            "multiplier": settings.backoff_multiplier,
            "max_delay": settings.backoff_max,
        }
        values.update(overrides)
        return cls(**values)

    def delay_for(self, attempt: int) -> float:
        """Delay after the given failed attempt (1-based)."""
        return min(self.base_delay * self.multiplier ** (attempt - 1), self.max_delay)

    def schedule(self) -> list[float]:
        return [self.delay_for(attempt) for attempt in range(1, self.max_attempts)]

    async def run(self, operation: Callable[[], Awaitable[T]], description: str) -> T:
        """Run ``operation`` until it succeeds or attempts run out.

        Args:
            operation: Zero-argument coroutine factory
            description: What is being fetched, used in logs and errors

        Returns:
            The operation's result

        Raises:
            SpecIndexUnavailable: When every attempt failed with a retryable error
        """
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await operation()
            except Exception as e:
                if not self.retryable(e):
                    raise
                if attempt >= self.max_attempts:
                    raise SpecIndexUnavailable(description, str(e) or type(e).__name__, attempt) from e
                delay = self.delay_for(attempt)
                logger.warning(
                    "Attempt %d/%d for %s failed (%s), retrying in %.2fs",
                    attempt,
                    self.max_attempts,
                    description,
                    type(e).__name__,
                    delay,
                )
                await self.sleep(delay)
        raise SpecIndexUnavailable(description, "no attempts configured", 0)
