from __future__ import annotations

from enum import Enum
from typing import Optional


class FailureKind(str, Enum):
    """Classification of an enrichment provider failure."""

    QUOTA_EXHAUSTED = "quota_exhausted"
    INVALID_CREDENTIAL = "invalid_credential"
    TRANSIENT = "transient"
    MALFORMED_RESPONSE = "malformed_response"

    @property
    def trips_breaker(self) -> bool:
        return self in (FailureKind.QUOTA_EXHAUSTED, FailureKind.INVALID_CREDENTIAL)


class CrawlError(Exception):
    """
    Base class for every error raised by the crawl engine.
    `retryable` tells the retry executor whether another attempt may succeed.
    """
    retryable = False


class TransientFetchError(CrawlError):
    retryable = True


class FetchTimeoutError(TransientFetchError):
    def __init__(self, url: str, timeout: float) -> None:
        super().__init__(f"timeout after {timeout:.0f}s: {url}")
        self.url = url
        self.timeout = timeout


class HttpStatusError(CrawlError):
    def __init__(self, url: str, status: int, reason: str = "") -> None:
        label = f"HTTP {status} {reason}" if reason else f"HTTP {status}"
        super().__init__(f"{label}: {url}")
        self.url = url
        self.status = status

    @property
    def retryable(self) -> bool:  # type: ignore[override]
        return self.status == 429 or self.status >= 500


class PermanentItemError(CrawlError):
    """An item that can never be processed as-is; not retried."""


class InvalidRecordError(PermanentItemError):
    pass


class MissingDownloadTokenError(PermanentItemError):
    def __init__(self, url: str) -> None:
        super().__init__(f"download token not found: {url}")
        self.url = url


class RetryExhaustedError(CrawlError):
    def __init__(self, context: str, attempts: int, last_error: BaseException) -> None:
        super().__init__(f"{context}: gave up after {attempts} attempt(s): {last_error}")
        self.context = context
        self.attempts = attempts
        self.last_error = last_error


class EnrichmentError(CrawlError):
    def __init__(self, message: str, kind: FailureKind, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.status = status

    @property
    def retryable(self) -> bool:  # type: ignore[override]
        # Quota/credential failures are retried too: the next attempt rotates to another key.
        return True


class NoCredentialAvailableError(CrawlError):
    """Every enrichment key is tripped; callers fall back instead of waiting."""


class StoreError(CrawlError):
    pass


class SessionAlreadyRunningError(CrawlError):
    def __init__(self) -> None:
        super().__init__("a crawl session is already running")
