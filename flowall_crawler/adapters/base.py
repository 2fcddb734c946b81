from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Protocol

from ..errors import InvalidRecordError


@dataclass(frozen=True)
class WorkItem:
    """One discovered detail-page URL awaiting extraction."""

    url: str
    slug: str


@dataclass
class RawRecord:
    """Parsed detail-page output, before enrichment."""

    natural_id: str
    title: str
    cover_url: str = ""
    preview_url: str = ""
    video_url: str = ""
    tags: List[str] = field(default_factory=list)

    def validate(self) -> "RawRecord":
        missing = [
            name
            for name, value in (
                ("natural_id", self.natural_id),
                ("preview_url", self.preview_url),
                ("video_url", self.video_url),
            )
            if not value
        ]
        if missing:
            raise InvalidRecordError(
                f"record {self.natural_id or '<unknown>'} missing required field(s): {', '.join(missing)}"
            )
        return self

    def to_fields(self) -> Dict[str, Any]:
        """Scraped columns; always rewritten on upsert."""
        return {
            "name": self.title,
            "cover_url": self.cover_url,
            "preview_url": self.preview_url,
            "video_url": self.video_url,
            "tags": list(self.tags),
        }


class SiteAdapter(Protocol):
    """
    Interface for site-specific parsing logic.
    Keep this small and stable so adapters rarely break across markup changes;
    the fetcher owns HTTP, the controller owns paging and dispatch.
    """

    base_url: str

    def list_url(self, page: int) -> str:
        """URL of list page number `page` (1-based)."""
        ...

    def parse_list(self, html: str) -> List[WorkItem]:
        """Detail-page work items on one list page; empty is a valid result."""
        ...

    def parse_detail(self, url: str, html: str) -> RawRecord:
        """
        Extract one record. Raises PermanentItemError when the page can never
        yield a usable record.
        """
        ...
