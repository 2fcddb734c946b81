from __future__ import annotations

import asyncio
import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Optional
from uuid import uuid4

from .base import NATURAL_KEY, ExistingRecord, FoundRecord, NotFound
from ..engines.base import CrawlStats, LogStatus
from ..errors import StoreError

if TYPE_CHECKING:
    from ..config import CrawlConfig

DEFAULT_FLUSH_EVERY = 500


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class JSONFileStore:
    """
    Single-document JSON persistence: {"records": {natural_id: row}, "crawl_logs": [row]}.

    Upserts stay in memory. The document is written (temp file + rename, off
    the event loop) on every crawl-log write, every `flush_every` upserts and
    on close().
    """

    def __init__(self, path: str | os.PathLike[str], *, flush_every: int = DEFAULT_FLUSH_EVERY) -> None:
        self.path = Path(path)
        self.flush_every = flush_every
        self.flush_count = 0
        self._data: Optional[Dict[str, Any]] = None
        self._pending = 0
        self._lock = asyncio.Lock()

    @classmethod
    def from_config(cls, config: "CrawlConfig") -> "JSONFileStore":
        return cls(config.store_path)

    # ---- Records ------------------------------------------------------------

    async def find_by_natural_id(self, natural_id: str) -> ExistingRecord:
        async with self._lock:
            row = self._load()["records"].get(natural_id)
        return FoundRecord.from_row(row) if row else NotFound()

    async def upsert(self, natural_id: str, fields: Dict[str, Any]) -> str:
        async with self._lock:
            records = self._load()["records"]
            row = records.get(natural_id)
            if row is None:
                row = {"id": uuid4().hex, NATURAL_KEY: natural_id, "created_at": _now()}
                records[natural_id] = row
            row.update({k: v for k, v in fields.items() if k not in ("id", NATURAL_KEY)})
            row["updated_at"] = _now()
            self._pending += 1
            if self.flush_every and self._pending >= self.flush_every:
                await self._flush()
            return row["id"]

    # ---- Crawl logs ---------------------------------------------------------

    async def insert_log(self, stats: CrawlStats) -> str:
        async with self._lock:
            entry = {"id": uuid4().hex, "status": "running", "started_at": _now(), "completed_at": None}
            entry.update(self._stats_columns(stats))
            self._load()["crawl_logs"].append(entry)
            await self._flush()
            return entry["id"]

    async def update_log(
        self,
        log_id: str,
        stats: CrawlStats,
        status: LogStatus,
        error_message: Optional[str] = None,
    ) -> None:
        async with self._lock:
            for entry in self._load()["crawl_logs"]:
                if entry["id"] == log_id:
                    break
            else:
                raise StoreError(f"crawl log {log_id} not found")
            entry.update(self._stats_columns(stats))
            entry.update(status=status.value, error_message=error_message, completed_at=_now())
            await self._flush()

    async def close(self) -> None:
        async with self._lock:
            if self._pending:
                await self._flush()

    # ---- File I/O -----------------------------------------------------------

    @staticmethod
    def _stats_columns(stats: CrawlStats) -> Dict[str, int]:
        return {
            "wallpapers_count": stats.stored_count,
            "new_count": stats.new_count,
            "updated_count": stats.updated_count,
            "skipped_count": stats.skipped_count,
            "failed_count": stats.failed_count,
        }

    def _load(self) -> Dict[str, Any]:
        if self._data is None:
            if self.path.exists():
                try:
                    with open(self.path, "r", encoding="utf-8") as f:
                        data = json.load(f)
                except (OSError, json.JSONDecodeError) as exc:
                    raise StoreError(f"cannot read {self.path}: {exc}") from exc
            else:
                data = {}
            data.setdefault("records", {})
            data.setdefault("crawl_logs", [])
            self._data = data
        return self._data

    async def _flush(self) -> None:
        # Serialised under the lock so the thread writes a consistent snapshot.
        payload = json.dumps(self._load(), indent=2, ensure_ascii=False)
        await asyncio.to_thread(self._write, payload)
        self._pending = 0
        self.flush_count += 1

    def _write(self, payload: str) -> None:
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp, "w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(tmp, self.path)
        except OSError as exc:
            raise StoreError(f"cannot write {self.path}: {exc}") from exc
