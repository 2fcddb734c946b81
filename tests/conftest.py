"""Shared fakes for the crawl engine tests."""

import asyncio
from typing import Any, Dict, List, Optional, Set

import pytest

from flowall_crawler.adapters.base import RawRecord, WorkItem
from flowall_crawler.config import CrawlConfig
from flowall_crawler.engines.base import CrawlStats, LogStatus
from flowall_crawler.engines.enrichment import EnrichmentResult
from flowall_crawler.errors import MissingDownloadTokenError, StoreError, TransientFetchError
from flowall_crawler.storage.base import NATURAL_KEY, FoundRecord, NotFound


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeStore:
    """In-memory RecordStore with failure injection."""

    def __init__(self) -> None:
        self.rows: Dict[str, Dict[str, Any]] = {}
        self.logs: Dict[str, Dict[str, Any]] = {}
        self.upserts: List[tuple] = []
        self.fail_insert_log = False
        self.fail_upsert_for: Set[str] = set()
        self.closed = False
        self.writes_after_close = 0

    def seed(self, natural_id: str, **columns: Any) -> None:
        self.rows[natural_id] = {"id": f"row-{natural_id}", NATURAL_KEY: natural_id, **columns}

    async def find_by_natural_id(self, natural_id: str):
        row = self.rows.get(natural_id)
        return FoundRecord.from_row(row) if row else NotFound()

    async def upsert(self, natural_id: str, fields: Dict[str, Any]) -> str:
        self._check_open()
        if natural_id in self.fail_upsert_for:
            raise StoreError(f"upsert rejected for {natural_id}")
        self.upserts.append((natural_id, dict(fields)))
        row = self.rows.setdefault(natural_id, {"id": f"row-{natural_id}", NATURAL_KEY: natural_id})
        row.update(fields)
        return row["id"]

    async def insert_log(self, stats: CrawlStats) -> str:
        if self.fail_insert_log:
            raise StoreError("store unreachable")
        log_id = f"log-{len(self.logs) + 1}"
        self.logs[log_id] = {"status": "running"}
        return log_id

    async def update_log(
        self, log_id: str, stats: CrawlStats, status: LogStatus, error_message: Optional[str] = None
    ) -> None:
        self._check_open()
        self.logs[log_id] = {
            "status": status.value,
            "new_count": stats.new_count,
            "updated_count": stats.updated_count,
            "wallpapers_count": stats.stored_count,
            "error_message": error_message,
        }

    async def close(self) -> None:
        self.closed = True

    def _check_open(self) -> None:
        if self.closed:
            self.writes_after_close += 1


def make_record(slug: str, **overrides: Any) -> RawRecord:
    values = dict(
        natural_id=slug,
        title=f"Title {slug}",
        cover_url=f"https://img.example/{slug}.jpg",
        preview_url=f"https://img.example/{slug}.webm",
        video_url=f"https://dl.example/download.php?video={slug}",
        tags=["anime", "night"],
    )
    values.update(overrides)
    return RawRecord(**values)


class FakeFetcher:
    """
    pages: list page number -> slugs. Pages not listed are empty.
    missing_token: slugs whose detail page has no download token.
    gates: slug -> Event the detail fetch waits on before returning.
    fail_pages: list pages that raise TransientFetchError on every call.
    """

    def __init__(
        self,
        pages: Optional[Dict[int, List[str]]] = None,
        *,
        missing_token: Optional[Set[str]] = None,
        gates: Optional[Dict[str, asyncio.Event]] = None,
        fail_pages: Optional[Set[int]] = None,
    ) -> None:
        self.pages = pages or {}
        self.missing_token = missing_token or set()
        self.gates = gates or {}
        self.fail_pages = fail_pages or set()
        self.list_calls: List[int] = []
        self.detail_calls: List[str] = []
        self.started: Dict[str, asyncio.Event] = {}

    async def fetch_list_page(self, page: int) -> List[WorkItem]:
        self.list_calls.append(page)
        if page in self.fail_pages:
            raise TransientFetchError(f"list page {page} down")
        return [WorkItem(url=f"https://site.example/{slug}/", slug=slug) for slug in self.pages.get(page, [])]

    async def fetch_detail_page(self, url: str) -> RawRecord:
        slug = url.rstrip("/").rsplit("/", 1)[-1]
        self.detail_calls.append(slug)
        self.started.setdefault(slug, asyncio.Event()).set()
        gate = self.gates.get(slug)
        if gate is not None:
            await gate.wait()
        if slug in self.missing_token:
            raise MissingDownloadTokenError(url)
        return make_record(slug)


class FakeEnricher:
    def __init__(self, enabled: bool = True) -> None:
        self.enabled = enabled
        self.calls: List[str] = []

    async def enrich(self, title: str, tags: List[str]) -> EnrichmentResult:
        self.calls.append(title)
        if not self.enabled:
            return EnrichmentResult(description=f"{title}, {', '.join(tags)}")
        return EnrichmentResult(
            title_translation=f"zh:{title}",
            description=f"desc:{title}",
            tag_translations=[f"zh:{t}" for t in tags],
        )


class FakeProvider:
    """Scripted TextProvider: each entry is a reply string or an exception to raise."""

    def __init__(self, script: List[Any]) -> None:
        self.script = list(script)
        self.calls: List[str] = []

    async def generate(self, prompt: str, api_key: str) -> str:
        self.calls.append(api_key)
        step = self.script.pop(0)
        if isinstance(step, BaseException):
            raise step
        return step


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def config() -> CrawlConfig:
    return CrawlConfig(
        fetch_concurrency=4,
        page_delay=0.0,
        max_empty_pages=3,
        retry_base_delay=0.0,
        enrich_interval=0.0,
    )
