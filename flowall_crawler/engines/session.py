from __future__ import annotations

import asyncio
import logging
from contextlib import AsyncExitStack
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, Set, Tuple

from .base import CancellationToken, CrawlSession, CrawlState, CrawlStats, ItemOutcome
from .enrichment import EnrichmentClient, EnrichmentResult
from .fetcher import PageFetcher
from .keys import KeyRotation
from .limiter import ConcurrencyLimiter
from .retry import RetryExecutor
from ..adapters.base import RawRecord, WorkItem
from ..apis.gemini import GeminiProvider
from ..config import CrawlConfig
from ..errors import CrawlError, PermanentItemError, SessionAlreadyRunningError
from ..storage.base import ENRICHED_FIELDS, FoundRecord, RecordStore
from ..utils.http import create_session
from ..utils.loader import load_symbol

logger = logging.getLogger(__name__)


class Fetcher(Protocol):
    async def fetch_list_page(self, page: int) -> List[WorkItem]:
        ...

    async def fetch_detail_page(self, url: str) -> RawRecord:
        ...


class Enricher(Protocol):
    @property
    def enabled(self) -> bool:
        ...

    async def enrich(self, title: str, tags: List[str]) -> EnrichmentResult:
        ...


class CrawlController:
    """
    Runs one crawl session at a time: discovery, bounded processing,
    persistence, statistics and cooperative cancellation.

    Idle -> Collecting -> Processing -> Completed | Aborted | Failed.
    Per-item errors become counters; only errors outside item scope fail
    the session and propagate to the caller of start().
    """

    def __init__(
        self,
        config: CrawlConfig,
        store: RecordStore,
        *,
        fetcher: Optional[Fetcher] = None,
        enricher: Optional[Enricher] = None,
        keys: Optional[KeyRotation] = None,
        retry: Optional[RetryExecutor] = None,
    ) -> None:
        self.config = config
        self.store = store
        self._fetcher = fetcher
        self._enricher = enricher
        # Breaker state and enrichment pacing are process-wide, not per session.
        self.keys = keys or KeyRotation(config.gemini_api_keys, cooldown=config.key_cooldown)
        self.enrich_limiter = ConcurrencyLimiter(
            "enrich", config.enrich_concurrency, min_interval=config.enrich_interval
        )
        self.retry = retry or RetryExecutor(config.max_attempts, config.retry_base_delay)
        self._running = False
        self._token: Optional[CancellationToken] = None
        self._task: Optional["asyncio.Task[CrawlSession]"] = None
        self.last_session: Optional[CrawlSession] = None

    # ---- Public surface -----------------------------------------------------

    def status(self) -> bool:
        """Whether a session is currently active."""
        return self._running

    def abort(self) -> bool:
        """Raise the abort signal. False when no session is active; never blocks."""
        if not self._running or self._token is None:
            return False
        logger.info("Abort requested; in-flight items will finish")
        self._token.cancel()
        return True

    async def start(self) -> CrawlSession:
        token = self._acquire()
        self._task = asyncio.current_task()
        return await self._run_guarded(token)

    def start_in_background(self) -> "asyncio.Task[CrawlSession]":
        """Take the guard now and run the session as a task."""
        token = self._acquire()
        try:
            task = asyncio.get_running_loop().create_task(self._run_guarded(token))
        except BaseException:
            self._release()
            raise
        task.add_done_callback(_log_background_result)
        self._task = task
        return task

    async def shutdown(self, timeout: float) -> None:
        """
        Abort the active session and wait up to `timeout` seconds for it to
        record its outcome. A session still running after that is cancelled.
        """
        self.abort()
        task = self._task
        if task is None:
            return
        done, _ = await asyncio.wait({task}, timeout=timeout)
        if done:
            return
        logger.warning("Crawl session still running after %ss; cancelling it", timeout)
        task.cancel()
        await asyncio.wait({task}, timeout=timeout)

    # ---- Guard --------------------------------------------------------------

    def _acquire(self) -> CancellationToken:
        if self._running:
            raise SessionAlreadyRunningError()
        self._running = True
        self._token = CancellationToken()
        return self._token

    def _release(self) -> None:
        self._running = False
        self._token = None
        self._task = None

    async def _run_guarded(self, token: CancellationToken) -> CrawlSession:
        session = CrawlSession()
        try:
            await self._run(session, token)
            return session
        finally:
            self.last_session = session
            self._release()

    # ---- Session ------------------------------------------------------------

    async def _run(self, session: CrawlSession, token: CancellationToken) -> None:
        session.state = CrawlState.COLLECTING
        session.stats = CrawlStats()
        logger.info("Crawl session %s started", session.id)
        try:
            session.log_id = await self.store.insert_log(session.stats)
            async with AsyncExitStack() as stack:
                fetcher, enricher = await self._open(stack)
                items = await self._discover(fetcher, token, session.stats)

                session.state = CrawlState.PROCESSING
                await self._process(items, fetcher, enricher, token, session.stats)

            session.finish(CrawlState.ABORTED if token.cancelled else CrawlState.COMPLETED)
            await self.store.update_log(session.log_id, session.stats, session.log_status)
        except asyncio.CancelledError:
            session.finish(CrawlState.ABORTED, "session task cancelled")
            await self._record_failure(session)
            raise
        except Exception as exc:
            session.finish(CrawlState.FAILED, str(exc) or type(exc).__name__)
            logger.exception("Crawl session %s failed", session.id)
            await self._record_failure(session)
            raise

        stats = session.stats
        logger.info(
            "Crawl session %s %s: new %s, updated %s, skipped %s, failed %s (dispatched %s of %s)",
            session.id,
            session.state.value,
            stats.new_count,
            stats.updated_count,
            stats.skipped_count,
            stats.failed_count,
            stats.dispatched_count,
            stats.discovered_count,
        )

    async def _record_failure(self, session: CrawlSession) -> None:
        if session.log_id is None:
            return
        try:
            await self.store.update_log(session.log_id, session.stats, session.log_status, session.error)
        except Exception:
            logger.exception("Could not record the outcome of session %s", session.id)

    async def _open(self, stack: AsyncExitStack) -> Tuple[Fetcher, Enricher]:
        fetcher, enricher = self._fetcher, self._enricher
        if fetcher is not None and enricher is not None:
            return fetcher, enricher

        cfg = self.config
        http = create_session()
        stack.push_async_callback(http.close)
        if fetcher is None:
            adapter_cls = load_symbol(cfg.adapter, factory="from_config")
            fetcher = PageFetcher(
                http,
                adapter_cls.from_config(cfg),
                timeout=cfg.request_timeout,
                user_agent=cfg.user_agent,
            )
        if enricher is None:
            provider = None
            if len(self.keys):
                provider = GeminiProvider(
                    http, base_url=cfg.gemini_base_url, model=cfg.gemini_model, timeout=cfg.enrich_timeout
                )
            else:
                logger.info("No enrichment keys configured; descriptions use the fallback format")
            enricher = EnrichmentClient(
                provider,
                self.keys,
                self.enrich_limiter,
                max_attempts=cfg.enrich_max_attempts,
                base_delay=cfg.retry_base_delay / 2,
                language=cfg.target_language,
            )
        return fetcher, enricher

    # ---- Collecting ---------------------------------------------------------

    async def _discover(
        self, fetcher: Fetcher, token: CancellationToken, stats: CrawlStats
    ) -> List[WorkItem]:
        cfg = self.config
        items: List[WorkItem] = []
        seen: Set[str] = set()
        page = 1
        empty_streak = 0

        while empty_streak < cfg.max_empty_pages:
            if token.cancelled:
                logger.info("Abort observed during discovery at page %s", page)
                break
            if cfg.max_pages is not None and page > cfg.max_pages:
                break

            try:
                found = await self.retry.execute(
                    lambda page=page: fetcher.fetch_list_page(page), f"list page {page}"
                )
            except CrawlError as exc:
                logger.error("List page %s failed: %s", page, exc)
                found = []

            if found:
                empty_streak = 0
                fresh = [item for item in found if item.slug not in seen]
                seen.update(item.slug for item in fresh)
                items.extend(fresh)
                logger.info("List page %s: %s item(s), %s queued", page, len(found), len(items))
            else:
                empty_streak += 1
                logger.info("List page %s empty (%s/%s)", page, empty_streak, cfg.max_empty_pages)

            page += 1
            if empty_streak < cfg.max_empty_pages:
                await token.sleep(cfg.page_delay)

        stats.discovered_count = len(items)
        logger.info("Discovery finished after %s page(s): %s item(s)", page - 1, len(items))
        return items

    # ---- Processing ---------------------------------------------------------

    async def _process(
        self,
        items: List[WorkItem],
        fetcher: Fetcher,
        enricher: Enricher,
        token: CancellationToken,
        stats: CrawlStats,
    ) -> None:
        """
        Pool driver. It alone mutates `stats`, on each item's resolution.
        """
        pool = ConcurrencyLimiter("fetch", self.config.fetch_concurrency)
        in_flight: Set["asyncio.Task[ItemOutcome]"] = set()
        try:
            for item in items:
                if token.cancelled:
                    break
                task = await pool.submit(
                    lambda item=item: self._process_item(item, fetcher, enricher), token
                )
                if task is None:
                    break
                stats.dispatched_count += 1
                in_flight.add(task)
                in_flight = _collect(in_flight, stats)

            if token.cancelled:
                logger.info(
                    "Abort observed: %s item(s) not dispatched, waiting for %s in flight",
                    len(items) - stats.dispatched_count,
                    len(in_flight),
                )
            if in_flight:
                await asyncio.wait(in_flight)
                in_flight = _collect(in_flight, stats)
        except BaseException:
            for task in in_flight:
                task.cancel()
            raise

    async def _process_item(self, item: WorkItem, fetcher: Fetcher, enricher: Enricher) -> ItemOutcome:
        try:
            existing = await self.store.find_by_natural_id(item.slug)
            found = existing if isinstance(existing, FoundRecord) else None
            require_translations = enricher.enabled
            if found is not None and not found.needs_enrichment(require_translations):
                logger.debug("Skip %s: already stored and enriched", item.slug)
                return ItemOutcome.SKIPPED

            raw = await self.retry.execute(
                lambda: fetcher.fetch_detail_page(item.url), f"detail {item.slug}"
            )

            fields: Dict[str, Any] = raw.to_fields()
            fields["crawled_at"] = datetime.now(timezone.utc).isoformat()
            missing = found.missing_fields(require_translations) if found else list(ENRICHED_FIELDS)
            if missing:
                result = await enricher.enrich(raw.title, raw.tags)
                fields.update(_enrichment_columns(result, missing))

            await self.store.upsert(raw.natural_id, fields)
        except PermanentItemError as exc:
            logger.warning("Item %s abandoned: %s", item.slug, exc)
            return ItemOutcome.FAILED
        except CrawlError as exc:
            logger.error("Item %s failed: %s", item.slug, exc)
            return ItemOutcome.FAILED
        except Exception:
            logger.exception("Item %s failed unexpectedly", item.slug)
            return ItemOutcome.FAILED

        outcome = ItemOutcome.UPDATED if found else ItemOutcome.NEW
        logger.debug("Stored %s (%s)", item.slug, outcome.value)
        return outcome


def _collect(tasks: Set["asyncio.Task[ItemOutcome]"], stats: CrawlStats) -> Set["asyncio.Task[ItemOutcome]"]:
    """Record finished tasks; return the ones still running."""
    pending = set()
    for task in tasks:
        if task.done():
            stats.record(task.result())
        else:
            pending.add(task)
    return pending


def _enrichment_columns(result: EnrichmentResult, missing: List[str]) -> Dict[str, Any]:
    values = {
        "description": result.description,
        "name_zh": result.title_translation,
        "tags_zh": result.tag_translations,
    }
    return {name: values[name] for name in missing if values.get(name)}


def _log_background_result(task: "asyncio.Task[CrawlSession]") -> None:
    if task.cancelled():
        logger.warning("Background crawl task cancelled")
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Background crawl ended with error: %s", exc)
        return
    session = task.result()
    logger.info("Background crawl %s finished: %s", session.id, session.state.value)
