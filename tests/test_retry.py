import pytest

from flowall_crawler.engines.retry import RetryExecutor
from flowall_crawler.errors import (
    HttpStatusError,
    MissingDownloadTokenError,
    RetryExhaustedError,
    TransientFetchError,
)


class RecordingSleep:
    def __init__(self) -> None:
        self.delays = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def flaky(failures: int, exc_factory=lambda: TransientFetchError("boom")):
    calls = {"n": 0}

    async def op():
        calls["n"] += 1
        if calls["n"] <= failures:
            raise exc_factory()
        return "ok"

    return op, calls


@pytest.mark.asyncio
async def test_succeeds_on_k_th_attempt_after_k_minus_one_delays():
    sleep = RecordingSleep()
    retry = RetryExecutor(max_attempts=3, base_delay=1.0, sleep=sleep)
    op, calls = flaky(2)

    assert await retry.execute(op, "ctx") == "ok"
    assert calls["n"] == 3
    assert sleep.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_exhaustion_raises_with_last_error_and_no_trailing_sleep():
    sleep = RecordingSleep()
    retry = RetryExecutor(max_attempts=3, base_delay=0.5, sleep=sleep)
    op, calls = flaky(10)

    with pytest.raises(RetryExhaustedError) as info:
        await retry.execute(op, "list page 1")

    assert calls["n"] == 3
    assert sleep.delays == [0.5, 1.0]
    assert info.value.attempts == 3
    assert isinstance(info.value.last_error, TransientFetchError)
    assert "list page 1" in str(info.value)


@pytest.mark.asyncio
async def test_permanent_error_is_not_retried():
    sleep = RecordingSleep()
    retry = RetryExecutor(max_attempts=5, base_delay=1.0, sleep=sleep)
    op, calls = flaky(1, lambda: MissingDownloadTokenError("https://site.example/x/"))

    with pytest.raises(MissingDownloadTokenError):
        await retry.execute(op, "detail x")
    assert calls["n"] == 1
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_client_status_is_permanent_but_server_status_retries():
    retry = RetryExecutor(max_attempts=2, base_delay=0.0, sleep=RecordingSleep())

    op404, calls404 = flaky(5, lambda: HttpStatusError("u", 404))
    with pytest.raises(HttpStatusError):
        await retry.execute(op404, "detail")
    assert calls404["n"] == 1

    op503, calls503 = flaky(1, lambda: HttpStatusError("u", 503))
    assert await retry.execute(op503, "detail") == "ok"
    assert calls503["n"] == 2


@pytest.mark.asyncio
async def test_non_crawl_exceptions_are_retried():
    retry = RetryExecutor(max_attempts=2, base_delay=0.0, sleep=RecordingSleep())
    op, calls = flaky(1, lambda: ValueError("odd"))
    assert await retry.execute(op, "ctx") == "ok"
    assert calls["n"] == 2


def test_backoff_doubles():
    retry = RetryExecutor(base_delay=1.5)
    assert [retry.backoff(n) for n in range(4)] == [1.5, 3.0, 6.0, 12.0]


def test_rejects_zero_attempts():
    with pytest.raises(ValueError):
        RetryExecutor(max_attempts=0)
