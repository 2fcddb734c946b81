import asyncio

import aiohttp
import pytest
import pytest_asyncio
from aioresponses import aioresponses

from flowall_crawler.adapters.moewalls import MoewallsAdapter
from flowall_crawler.engines.fetcher import PageFetcher
from flowall_crawler.errors import (
    FetchTimeoutError,
    HttpStatusError,
    InvalidRecordError,
    TransientFetchError,
)
from flowall_crawler.utils.http import fetch_text

BASE = "https://moewalls.com"

LIST_HTML = """
<article class="entry-tpl-grid"><div class="entry-featured-media">
  <a href="https://moewalls.com/anime/first-item/">1</a></div></article>
<article class="entry-tpl-grid"><div class="entry-featured-media">
  <a href="https://moewalls.com/anime/second-item/">2</a></div></article>
"""

DETAIL_HTML = """
<h1 class="entry-title">First Item</h1>
<video poster="https://cdn.example/first.jpg"><source src="https://cdn.example/first.webm"></video>
<button id="moe-download" data-url="Zmlyc3Q="></button>
<div class="tag-items"><a>Anime</a></div>
"""


class TestPageFetcher:
    @pytest_asyncio.fixture
    async def session(self):
        async with aiohttp.ClientSession() as s:
            yield s

    @pytest.fixture
    def adapter(self):
        return MoewallsAdapter(BASE, "https://go.moewalls.com/download.php")

    @pytest.mark.asyncio
    async def test_list_page(self, session, adapter):
        fetcher = PageFetcher(session, adapter, timeout=5.0)
        with aioresponses() as m:
            m.get(f"{BASE}/page/3/", status=200, body=LIST_HTML)
            items = await fetcher.fetch_list_page(3)
        assert [i.slug for i in items] == ["first-item", "second-item"]

    @pytest.mark.asyncio
    async def test_detail_page(self, session, adapter):
        fetcher = PageFetcher(session, adapter, timeout=5.0)
        url = f"{BASE}/anime/first-item/"
        with aioresponses() as m:
            m.get(url, status=200, body=DETAIL_HTML)
            record = await fetcher.fetch_detail_page(url)
        assert record.natural_id == "first-item"
        assert record.video_url.endswith("?video=Zmlyc3Q=")
        assert record.tags == ["Anime"]

    @pytest.mark.asyncio
    async def test_detail_without_preview_is_invalid(self, session, adapter):
        fetcher = PageFetcher(session, adapter, timeout=5.0)
        url = f"{BASE}/anime/first-item/"
        html = DETAIL_HTML.replace('<source src="https://cdn.example/first.webm">', "")
        with aioresponses() as m:
            m.get(url, status=200, body=html)
            with pytest.raises(InvalidRecordError):
                await fetcher.fetch_detail_page(url)


class TestFetchClassification:
    @pytest.mark.asyncio
    async def test_timeout(self):
        async with aiohttp.ClientSession() as session:
            with aioresponses() as m:
                m.get(f"{BASE}/slow/", exception=asyncio.TimeoutError())
                with pytest.raises(FetchTimeoutError) as info:
                    await fetch_text(session, f"{BASE}/slow/", timeout=2.0)
        assert info.value.retryable is True

    @pytest.mark.asyncio
    async def test_connection_error(self):
        async with aiohttp.ClientSession() as session:
            with aioresponses() as m:
                m.get(f"{BASE}/down/", exception=aiohttp.ClientConnectionError("refused"))
                with pytest.raises(TransientFetchError):
                    await fetch_text(session, f"{BASE}/down/")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status,retryable", [(404, False), (403, False), (429, True), (502, True)])
    async def test_status(self, status, retryable):
        async with aiohttp.ClientSession() as session:
            with aioresponses() as m:
                m.get(f"{BASE}/x/", status=status)
                with pytest.raises(HttpStatusError) as info:
                    await fetch_text(session, f"{BASE}/x/")
        assert info.value.status == status
        assert info.value.retryable is retryable

    @pytest.mark.asyncio
    async def test_sends_user_agent(self):
        async with aiohttp.ClientSession() as session:
            with aioresponses() as m:
                m.get(f"{BASE}/ua/", status=200, body="ok")
                assert await fetch_text(session, f"{BASE}/ua/", user_agent="MobileUA/1.0") == "ok"
                (request,) = [calls[0] for calls in m.requests.values()]
        assert request.kwargs["headers"]["User-Agent"] == "MobileUA/1.0"
