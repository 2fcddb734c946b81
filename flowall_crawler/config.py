from __future__ import annotations

from dataclasses import dataclass, field, asdict
from typing import List, Optional, Dict, Any
import os
import json

from .version import CONFIG_SCHEMA_VERSION

# The target site serves its lightweight grid markup to mobile clients only.
MOBILE_UA = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 16_6 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/16.6 Mobile/15E148 Safari/604.1"
)


@dataclass
class CrawlConfig:
    """
    Canonical configuration object passed throughout the system.
    Keep it dataclass-only (no heavy deps) to stay upgrade-friendly.
    """
    schema_version: int = CONFIG_SCHEMA_VERSION

    # Target site
    base_url: str = "https://moewalls.com"
    download_endpoint: str = "https://go.moewalls.com/download.php"
    user_agent: str = MOBILE_UA
    request_timeout: float = 30.0

    # Retry executor
    max_attempts: int = 3
    retry_base_delay: float = 1.0

    # Discovery + fetch pool
    fetch_concurrency: int = 8
    page_delay: float = 0.5
    max_empty_pages: int = 3
    max_pages: Optional[int] = None

    # Enrichment pool
    enrich_concurrency: int = 5
    enrich_interval: float = 1.0
    enrich_timeout: float = 15.0
    enrich_max_attempts: int = 3
    key_cooldown: float = 60.0
    gemini_api_keys: List[str] = field(default_factory=list)
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1"
    gemini_model: str = "gemini-1.5-flash"
    target_language: str = "Simplified Chinese"

    # Dotted paths so the parser and the persistence backend can be swapped without code edits.
    adapter: str = "flowall_crawler.adapters.moewalls:MoewallsAdapter"
    store: str = "flowall_crawler.storage.json_store:JSONFileStore"
    store_path: str = "output/wallpapers.json"
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None

    # Admin API + scheduler
    admin_api_key: Optional[str] = None
    schedule_enabled: bool = False
    schedule_hour: int = 2
    schedule_minute: int = 0
    shutdown_timeout: float = 30.0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        # Never echo secrets back out.
        data["gemini_api_keys"] = [k[:6] + "***" for k in self.gemini_api_keys]
        for name in ("supabase_key", "admin_api_key"):
            if data[name]:
                data[name] = "***"
        return data

    # ---------- Loaders ----------

    @classmethod
    def from_env(cls) -> "CrawlConfig":
        """
        Build config from environment variables (all optional).
        """
        def _get(name: str, default: str) -> str:
            return os.getenv(name, default)

        def _opt(name: str) -> Optional[str]:
            value = os.getenv(name, "").strip()
            return value or None

        keys = _get("GEMINI_API_KEYS", "")
        max_pages = _opt("CRAWLER_MAX_PAGES")

        return cls(
            base_url=_get("CRAWLER_BASE_URL", "https://moewalls.com"),
            download_endpoint=_get("CRAWLER_DOWNLOAD_ENDPOINT", "https://go.moewalls.com/download.php"),
            user_agent=_get("CRAWLER_USER_AGENT", MOBILE_UA),
            request_timeout=float(_get("CRAWLER_REQUEST_TIMEOUT", "30.0")),
            max_attempts=int(_get("CRAWLER_MAX_ATTEMPTS", "3")),
            retry_base_delay=float(_get("CRAWLER_RETRY_BASE_DELAY", "1.0")),
            fetch_concurrency=int(_get("CRAWLER_FETCH_CONCURRENCY", "8")),
            page_delay=float(_get("CRAWLER_PAGE_DELAY", "0.5")),
            max_empty_pages=int(_get("CRAWLER_MAX_EMPTY_PAGES", "3")),
            max_pages=int(max_pages) if max_pages else None,
            enrich_concurrency=int(_get("CRAWLER_ENRICH_CONCURRENCY", "5")),
            enrich_interval=float(_get("CRAWLER_ENRICH_INTERVAL", "1.0")),
            enrich_timeout=float(_get("CRAWLER_ENRICH_TIMEOUT", "15.0")),
            enrich_max_attempts=int(_get("CRAWLER_ENRICH_MAX_ATTEMPTS", "3")),
            key_cooldown=float(_get("CRAWLER_KEY_COOLDOWN", "60.0")),
            gemini_api_keys=[k.strip() for k in keys.split(",") if k.strip()],
            gemini_base_url=_get("GEMINI_BASE_URL", "https://generativelanguage.googleapis.com/v1"),
            gemini_model=_get("GEMINI_MODEL", "gemini-1.5-flash"),
            target_language=_get("CRAWLER_TARGET_LANGUAGE", "Simplified Chinese"),
            adapter=_get("CRAWLER_ADAPTER", "flowall_crawler.adapters.moewalls:MoewallsAdapter"),
            store=_get("CRAWLER_STORE", "flowall_crawler.storage.json_store:JSONFileStore"),
            store_path=_get("CRAWLER_STORE_PATH", "output/wallpapers.json"),
            supabase_url=_opt("SUPABASE_URL"),
            supabase_key=_opt("SUPABASE_KEY"),
            admin_api_key=_opt("ADMIN_API_KEY"),
            schedule_enabled=_get("ENABLE_SCHEDULER", "false").strip().lower() in {"1", "true", "yes", "on"},
            schedule_hour=int(_get("SCHEDULE_HOUR", "2")),
            schedule_minute=int(_get("SCHEDULE_MINUTE", "0")),
            shutdown_timeout=float(_get("CRAWLER_SHUTDOWN_TIMEOUT", "30.0")),
        )

    @classmethod
    def from_file(cls, path: str | os.PathLike[str]) -> "CrawlConfig":
        """
        Load configuration from a JSON file. Supports schema migration for future versions.
        """
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        data = migrate_config(data)
        return cls(**data)

    # ---------- Validation ----------

    def validate(self) -> None:
        if not self.base_url.startswith(("http://", "https://")):
            raise ValueError("base_url must be an absolute http(s) URL")
        if self.request_timeout <= 0 or self.enrich_timeout <= 0:
            raise ValueError("timeouts must be > 0")
        if self.max_attempts < 1 or self.enrich_max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.retry_base_delay < 0:
            raise ValueError("retry_base_delay must be >= 0")
        if self.fetch_concurrency <= 0 or self.enrich_concurrency <= 0:
            raise ValueError("pool concurrency must be > 0")
        if self.shutdown_timeout < 0:
            raise ValueError("shutdown_timeout must be >= 0")
        if self.page_delay < 0 or self.enrich_interval < 0:
            raise ValueError("delays must be >= 0")
        if self.max_empty_pages < 1:
            raise ValueError("max_empty_pages must be >= 1")
        if self.max_pages is not None and self.max_pages < 1:
            raise ValueError("max_pages must be >= 1 when set")
        if not (0 <= self.schedule_hour <= 23 and 0 <= self.schedule_minute <= 59):
            raise ValueError("schedule_hour/schedule_minute out of range")


def migrate_config(raw: Dict[str, Any]) -> Dict[str, Any]:
    """
    Migrate config dict to the latest schema version.
    Keep this pure and additive. Add migrations here as you bump schema.
    """
    raw = dict(raw)
    schema = raw.get("schema_version", 1)

    if schema < 2:
        # v1 had a single pool and a single retry count.
        if "max_concurrency" in raw:
            raw.setdefault("fetch_concurrency", raw.pop("max_concurrency"))
        if "retries" in raw:
            raw.setdefault("max_attempts", int(raw.pop("retries")) + 1)
        if "output_path" in raw:
            raw.setdefault("store_path", raw.pop("output_path"))
        if "request_delay" in raw:
            raw.setdefault("page_delay", raw.pop("request_delay"))
        # Generic crawl settings that no longer apply to a fixed-shape site.
        for obsolete in ("start_urls", "allowed_domains", "max_depth", "engine", "exporter", "extra_adapters"):
            raw.pop(obsolete, None)

    raw["schema_version"] = CONFIG_SCHEMA_VERSION
    return raw
