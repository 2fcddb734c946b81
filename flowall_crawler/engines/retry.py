from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from ..errors import CrawlError, RetryExhaustedError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryExecutor:
    """
    Exponential-backoff wrapper for any fallible coroutine.

    The delay before attempt n+1 is `base_delay * 2**n`. Errors that declare
    themselves non-retryable (CrawlError.retryable is False) propagate at once.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.max_attempts = max_attempts
        self.base_delay = max(0.0, base_delay)
        self._sleep = sleep

    def backoff(self, attempt: int) -> float:
        """Delay after the failed attempt with zero-based index `attempt`."""
        return self.base_delay * (2 ** attempt)

    async def execute(self, operation: Callable[[], Awaitable[T]], context: str) -> T:
        for attempt in range(self.max_attempts):
            try:
                return await operation()
            except Exception as exc:
                if isinstance(exc, CrawlError) and not exc.retryable:
                    raise
                logger.warning(
                    "%s: attempt %s/%s failed: %s", context, attempt + 1, self.max_attempts, exc
                )
                if attempt + 1 == self.max_attempts:
                    raise RetryExhaustedError(context, self.max_attempts, exc) from exc
                await self._sleep(self.backoff(attempt))
        raise RuntimeError("unreachable: max_attempts >= 1")
