from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, List, Optional

import aiohttp
from aiohttp import ClientSession, ClientTimeout

from .base import NATURAL_KEY, ExistingRecord, FoundRecord, NotFound
from ..engines.base import CrawlStats, LogStatus
from ..errors import StoreError

if TYPE_CHECKING:
    from ..config import CrawlConfig

logger = logging.getLogger(__name__)


class SupabaseStore:
    """
    Persistence over Supabase's PostgREST endpoint.

    Tables: `wallpapers` (unique `moewalls_id`) and `crawl_logs`. Upserts use
    `on_conflict` + `resolution=merge-duplicates`, which writes only the
    columns present in the payload.
    """

    RECORDS_TABLE = "wallpapers"
    LOGS_TABLE = "crawl_logs"

    def __init__(
        self,
        url: str,
        key: str,
        *,
        session: Optional[ClientSession] = None,
        timeout: float = 15.0,
    ) -> None:
        self.rest_url = url.rstrip("/") + "/rest/v1"
        self._key = key
        self._session = session
        self._owns_session = session is None
        self._closed = False
        self.timeout = timeout

    @classmethod
    def from_config(cls, config: "CrawlConfig") -> "SupabaseStore":
        if not config.supabase_url or not config.supabase_key:
            raise ValueError("SupabaseStore requires SUPABASE_URL and SUPABASE_KEY")
        return cls(config.supabase_url, config.supabase_key)

    # ---- Records ------------------------------------------------------------

    async def find_by_natural_id(self, natural_id: str) -> ExistingRecord:
        rows = await self._request(
            "GET",
            self.RECORDS_TABLE,
            params={NATURAL_KEY: f"eq.{natural_id}", "select": "id,description,name_zh,tags_zh", "limit": "1"},
        )
        return FoundRecord.from_row(rows[0]) if rows else NotFound()

    async def upsert(self, natural_id: str, fields: Dict[str, Any]) -> str:
        payload = {**fields, NATURAL_KEY: natural_id}
        rows = await self._request(
            "POST",
            self.RECORDS_TABLE,
            params={"on_conflict": NATURAL_KEY, "select": "id"},
            json=payload,
            prefer="resolution=merge-duplicates,return=representation",
        )
        if not rows:
            raise StoreError(f"upsert of {natural_id} returned no row")
        return str(rows[0]["id"])

    # ---- Crawl logs ---------------------------------------------------------

    async def insert_log(self, stats: CrawlStats) -> str:
        # The status column only admits terminal values; an entry that is never
        # updated (process killed) therefore reads as partial.
        rows = await self._request(
            "POST",
            self.LOGS_TABLE,
            params={"select": "id"},
            json={"status": LogStatus.PARTIAL.value, **self._stats_columns(stats)},
            prefer="return=representation",
        )
        if not rows:
            raise StoreError("crawl log insert returned no row")
        return str(rows[0]["id"])

    async def update_log(
        self,
        log_id: str,
        stats: CrawlStats,
        status: LogStatus,
        error_message: Optional[str] = None,
    ) -> None:
        body: Dict[str, Any] = {
            "status": status.value,
            "completed_at": datetime.now(timezone.utc).isoformat(),
            **self._stats_columns(stats),
        }
        if error_message is not None:
            body["error_message"] = error_message
        await self._request(
            "PATCH", self.LOGS_TABLE, params={"id": f"eq.{log_id}"}, json=body, prefer="return=minimal"
        )

    async def close(self) -> None:
        self._closed = True
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None

    # ---- HTTP ---------------------------------------------------------------

    @staticmethod
    def _stats_columns(stats: CrawlStats) -> Dict[str, int]:
        return {
            "wallpapers_count": stats.stored_count,
            "new_count": stats.new_count,
            "updated_count": stats.updated_count,
        }

    def _headers(self, prefer: Optional[str]) -> Dict[str, str]:
        headers = {
            "apikey": self._key,
            "Authorization": f"Bearer {self._key}",
            "Content-Type": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    async def _request(
        self,
        method: str,
        table: str,
        *,
        params: Dict[str, str],
        json: Optional[Dict[str, Any]] = None,
        prefer: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        if self._closed:
            raise StoreError(f"{method} {table}: store is closed")
        if self._session is None:
            self._session = aiohttp.ClientSession()
        url = f"{self.rest_url}/{table}"
        try:
            async with self._session.request(
                method,
                url,
                params=params,
                json=json,
                headers=self._headers(prefer),
                timeout=ClientTimeout(total=self.timeout),
            ) as resp:
                if resp.status >= 400:
                    detail = (await resp.text())[:300]
                    raise StoreError(f"{method} {table}: HTTP {resp.status}: {detail}")
                if resp.status == 204:
                    return []
                body = await resp.json(content_type=None)
        except asyncio.TimeoutError as exc:
            raise StoreError(f"{method} {table}: timeout after {self.timeout:.0f}s") from exc
        except aiohttp.ClientError as exc:
            raise StoreError(f"{method} {table}: {exc!r}") from exc
        if body is None:
            return []
        return body if isinstance(body, list) else [body]
