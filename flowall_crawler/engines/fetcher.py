from __future__ import annotations

import logging
from typing import List

from aiohttp import ClientSession

from ..adapters.base import RawRecord, SiteAdapter, WorkItem
from ..config import MOBILE_UA
from ..utils.http import fetch_text

logger = logging.getLogger(__name__)


class PageFetcher:
    """
    The two scraping operations against the target site.
    Fetcher owns HTTP; the adapter owns markup. Neither retries.
    """

    def __init__(
        self,
        session: ClientSession,
        adapter: SiteAdapter,
        *,
        timeout: float = 30.0,
        user_agent: str = MOBILE_UA,
    ) -> None:
        self.session = session
        self.adapter = adapter
        self.timeout = timeout
        self.user_agent = user_agent

    async def fetch_list_page(self, page: int) -> List[WorkItem]:
        url = self.adapter.list_url(page)
        html = await fetch_text(self.session, url, timeout=self.timeout, user_agent=self.user_agent)
        items = self.adapter.parse_list(html)
        logger.debug("List page %s: %s item(s)", page, len(items))
        return items

    async def fetch_detail_page(self, url: str) -> RawRecord:
        html = await fetch_text(self.session, url, timeout=self.timeout, user_agent=self.user_agent)
        return self.adapter.parse_detail(url, html).validate()
