from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, AsyncIterator, Awaitable, Callable, Optional, TypeVar

if TYPE_CHECKING:
    from .base import CancellationToken

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ConcurrencyLimiter:
    """
    Bounds in-flight work for one logical pool and, optionally, spaces
    successive calls at least `min_interval` seconds apart.

    The concurrency bound and the pacing are independent: a caller first
    takes a slot, then waits its turn on the shared "last call" timestamp.
    """

    def __init__(
        self,
        name: str,
        concurrency: int,
        min_interval: float = 0.0,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self.name = name
        self.concurrency = concurrency
        self.min_interval = max(0.0, min_interval)
        self._clock = clock
        self._sleep = sleep
        self._semaphore = asyncio.Semaphore(concurrency)
        self._pacing_lock = asyncio.Lock()
        self._last_call: float | None = None
        self._in_flight = 0

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[None]:
        async with self._semaphore:
            self._in_flight += 1
            try:
                if self.min_interval > 0:
                    await self._pace()
                yield
            finally:
                self._in_flight -= 1

    async def _pace(self) -> None:
        async with self._pacing_lock:
            if self._last_call is not None:
                wait = self._last_call + self.min_interval - self._clock()
                if wait > 0:
                    logger.debug("%s pool: pacing %.3fs", self.name, wait)
                    await self._sleep(wait)
            self._last_call = self._clock()

    async def run(self, operation: Callable[[], Awaitable[T]]) -> T:
        async with self.slot():
            return await operation()

    async def submit(
        self,
        operation: Callable[[], Awaitable[T]],
        token: Optional["CancellationToken"] = None,
    ) -> Optional["asyncio.Task[T]"]:
        """
        Suspend until a slot is free, then schedule `operation` as a task that
        holds the slot until it finishes. Returns None without starting
        anything if `token` was cancelled while waiting for the slot.
        """
        await self._semaphore.acquire()
        self._in_flight += 1
        if token is not None and token.cancelled:
            self._release()
            return None
        if self.min_interval > 0:
            try:
                await self._pace()
            except BaseException:
                self._release()
                raise
        try:
            task = asyncio.ensure_future(operation())
        except BaseException:
            self._release()
            raise
        task.add_done_callback(lambda _: self._release())
        return task

    def _release(self) -> None:
        self._in_flight -= 1
        self._semaphore.release()
