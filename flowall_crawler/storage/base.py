from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Union

from ..engines.base import CrawlStats, LogStatus

NATURAL_KEY = "moewalls_id"
ENRICHED_FIELDS = ("description", "name_zh", "tags_zh")


@dataclass(frozen=True)
class NotFound:
    """No stored record carries this natural id."""


@dataclass(frozen=True)
class FoundRecord:
    record_id: str
    description: Optional[str] = None
    title_translation: Optional[str] = None
    tag_translations: Optional[List[str]] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "FoundRecord":
        return cls(
            record_id=str(row["id"]),
            description=row.get("description") or None,
            title_translation=row.get("name_zh") or None,
            tag_translations=list(row.get("tags_zh") or []) or None,
        )

    def missing_fields(self, require_translations: bool = True) -> List[str]:
        missing: List[str] = []
        if not self.description:
            missing.append("description")
        if require_translations:
            if not self.title_translation:
                missing.append("name_zh")
            if not self.tag_translations:
                missing.append("tags_zh")
        return missing

    def needs_enrichment(self, require_translations: bool = True) -> bool:
        return bool(self.missing_fields(require_translations))


ExistingRecord = Union[NotFound, FoundRecord]


class RecordStore(Protocol):
    """
    Persistence port consumed by the crawl controller.

    upsert() inserts when the natural id is absent, otherwise updates only the
    provided fields and leaves every other column untouched.
    """

    async def find_by_natural_id(self, natural_id: str) -> ExistingRecord:
        ...

    async def upsert(self, natural_id: str, fields: Dict[str, Any]) -> str:
        ...

    async def insert_log(self, stats: CrawlStats) -> str:
        ...

    async def update_log(
        self,
        log_id: str,
        stats: CrawlStats,
        status: LogStatus,
        error_message: Optional[str] = None,
    ) -> None:
        ...

    async def close(self) -> None:
        ...
