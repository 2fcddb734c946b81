from __future__ import annotations

from typing import TYPE_CHECKING, List, Optional
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup

from .base import RawRecord, WorkItem
from ..errors import MissingDownloadTokenError
from ..utils.parsing import absolutize, normalize_url, same_host, slug_from_url, unique

if TYPE_CHECKING:
    from ..config import CrawlConfig


class MoewallsAdapter:
    """Adapter for the live-wallpaper site's grid list pages and wallpaper detail pages."""

    name = "moewalls"

    LIST_LINK_SELECTOR = "article.entry-tpl-grid .entry-featured-media a[href]"
    # Pagination and taxonomy pages share the grid markup but are not wallpapers.
    EXCLUDED_PATH_PARTS = ("/page/", "/category/", "/resolution/", "/tag/")
    TAG_SELECTOR = ".tag-items a, .entry-tags a"

    def __init__(
        self,
        base_url: str = "https://moewalls.com",
        download_endpoint: str = "https://go.moewalls.com/download.php",
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.download_endpoint = download_endpoint

    @classmethod
    def from_config(cls, config: "CrawlConfig") -> "MoewallsAdapter":
        return cls(base_url=config.base_url, download_endpoint=config.download_endpoint)

    def list_url(self, page: int) -> str:
        return f"{self.base_url}/page/{page}/"

    # ---- List pages ---------------------------------------------------------

    def parse_list(self, html: str) -> List[WorkItem]:
        soup = BeautifulSoup(html, "html.parser")
        urls: List[str] = []
        for anchor in soup.select(self.LIST_LINK_SELECTOR):
            href = anchor.get("href")
            if not href:
                continue
            url = normalize_url(urljoin(self.base_url + "/", href.strip()))
            if self._is_detail_url(url):
                urls.append(url)

        items: List[WorkItem] = []
        for url in unique(urls):
            slug = slug_from_url(url)
            if slug:
                items.append(WorkItem(url=url, slug=slug))
        return items

    def _is_detail_url(self, url: str) -> bool:
        if not same_host(url, self.base_url):
            return False
        path = urlparse(url).path
        if not path.strip("/"):
            return False
        return not any(part in path for part in self.EXCLUDED_PATH_PARTS)

    # ---- Detail pages -------------------------------------------------------

    def parse_detail(self, url: str, html: str) -> RawRecord:
        soup = BeautifulSoup(html, "html.parser")

        token = self._download_token(soup)
        if not token:
            raise MissingDownloadTokenError(url)

        title = self._text_or_none(soup.select_one("h1.entry-title")) or "Untitled"
        tags = unique(
            text for text in (self._text_or_none(a) for a in soup.select(self.TAG_SELECTOR)) if text
        )

        return RawRecord(
            natural_id=slug_from_url(url),
            title=title,
            cover_url=absolutize(self._cover_src(soup), self.base_url),
            preview_url=absolutize(self._preview_src(soup), self.base_url),
            video_url=f"{self.download_endpoint}?video={token}",
            tags=tags,
        )

    def _cover_src(self, soup: BeautifulSoup) -> Optional[str]:
        video = soup.select_one("video[poster]")
        if video and video.get("poster"):
            return video["poster"]
        img = soup.select_one(".entry-featured-media img[src]")
        return img.get("src") if img else None

    def _preview_src(self, soup: BeautifulSoup) -> Optional[str]:
        webm = soup.select_one('video source[src*=".webm"]')
        if webm:
            return webm.get("src")
        first = soup.select_one("video source[src]")
        return first.get("src") if first else None

    def _download_token(self, soup: BeautifulSoup) -> Optional[str]:
        button = soup.select_one("button#moe-download")
        if not button:
            return None
        token = button.get("data-url")
        return token.strip() if token else None

    # ---- Text helpers -------------------------------------------------------

    def _text_or_none(self, node) -> Optional[str]:
        if not node:
            return None
        text = node.get_text(strip=True)
        return text or None
