from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import uuid4


class CrawlState(str, Enum):
    IDLE = "idle"
    COLLECTING = "collecting"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ABORTED = "aborted"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (CrawlState.COMPLETED, CrawlState.ABORTED, CrawlState.FAILED)


class LogStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


class ItemOutcome(str, Enum):
    NEW = "new"
    UPDATED = "updated"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class CrawlStats:
    """
    Counters owned by the active session. Only the pool driver calls record(),
    so new + updated + skipped + failed == dispatched once the pool drains.
    """
    new_count: int = 0
    updated_count: int = 0
    skipped_count: int = 0
    failed_count: int = 0
    dispatched_count: int = 0
    discovered_count: int = 0

    def record(self, outcome: ItemOutcome) -> None:
        if outcome is ItemOutcome.NEW:
            self.new_count += 1
        elif outcome is ItemOutcome.UPDATED:
            self.updated_count += 1
        elif outcome is ItemOutcome.SKIPPED:
            self.skipped_count += 1
        else:
            self.failed_count += 1

    @property
    def resolved_count(self) -> int:
        return self.new_count + self.updated_count + self.skipped_count + self.failed_count

    @property
    def stored_count(self) -> int:
        return self.new_count + self.updated_count


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class CrawlSession:
    """One run of discovery + processing."""

    id: str = field(default_factory=lambda: uuid4().hex)
    started_at: datetime = field(default_factory=_utcnow)
    ended_at: Optional[datetime] = None
    state: CrawlState = CrawlState.IDLE
    stats: CrawlStats = field(default_factory=CrawlStats)
    log_id: Optional[str] = None
    error: Optional[str] = None

    def finish(self, state: CrawlState, error: Optional[str] = None) -> None:
        self.state = state
        self.error = error
        self.ended_at = _utcnow()

    @property
    def log_status(self) -> LogStatus:
        if self.state is CrawlState.FAILED:
            return LogStatus.FAILED
        if self.state is CrawlState.ABORTED or self.stats.failed_count > 0:
            return LogStatus.PARTIAL
        return LogStatus.SUCCESS


class CancellationToken:
    """
    Cooperative abort signal. Nothing is interrupted mid-flight; loops check
    `cancelled` at their boundaries and `sleep()` wakes early once raised.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    async def sleep(self, delay: float) -> None:
        if delay <= 0 or self.cancelled:
            return
        try:
            await asyncio.wait_for(self._event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass
