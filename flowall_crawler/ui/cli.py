from __future__ import annotations

import argparse
import asyncio
import logging
import signal
from typing import List, Optional

from ..config import CrawlConfig
from ..engines.base import CrawlSession, CrawlState
from ..engines.session import CrawlController
from ..utils.logging import setup_logging
from ..utils.loader import load_symbol

logger = logging.getLogger(__name__)


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Wallpaper catalogue crawler CLI")
    p.add_argument("--config", type=str, help="Path to config JSON", default=None)
    p.add_argument("--log-level", type=str, default=None, help="Log level (DEBUG, INFO, WARNING, ERROR)")
    p.add_argument("--max-pages", type=int, default=None, help="Stop discovery after this many list pages")
    p.add_argument("--fetch-concurrency", type=int, default=None,
                   help="Detail pages processed at once (default from config)")
    p.add_argument("--store", type=str, default=None, help="Store dotted path (module:ClassName)")
    p.add_argument("--store-path", type=str, default=None, help="Output file for the JSON store")
    p.add_argument("--serve", action="store_true", help="Run the admin API server instead of a one-shot crawl")
    p.add_argument("--host", type=str, default="127.0.0.1", help="API host (when --serve)")
    p.add_argument("--port", type=int, default=8000, help="API port (when --serve)")
    return p


def _load_config(args: argparse.Namespace) -> CrawlConfig:
    if args.config:
        cfg = CrawlConfig.from_file(args.config)
    else:
        cfg = CrawlConfig.from_env()

    if args.max_pages is not None:
        cfg.max_pages = args.max_pages
    if args.fetch_concurrency is not None:
        cfg.fetch_concurrency = args.fetch_concurrency
    if args.store:
        cfg.store = args.store
    if args.store_path:
        cfg.store_path = args.store_path

    cfg.validate()
    return cfg


def run_server(host: str, port: int) -> None:
    import uvicorn

    uvicorn.run("flowall_crawler.apis.app:app", host=host, port=port)


async def _crawl_once(cfg: CrawlConfig) -> CrawlSession:
    store = load_symbol(cfg.store, factory="from_config").from_config(cfg)
    controller = CrawlController(cfg, store)

    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, controller.abort)
    except NotImplementedError:  # pragma: no cover - Windows event loops
        logger.debug("SIGINT handler unavailable; Ctrl-C will interrupt immediately")
    try:
        return await controller.start()
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except NotImplementedError:  # pragma: no cover
            pass
        await store.close()


def run_cli(argv: List[str] | None = None) -> int:
    args = build_arg_parser().parse_args(argv)
    setup_logging(args.log_level)

    if args.serve:
        run_server(args.host, args.port)
        return 0

    cfg = _load_config(args)
    logger.debug("Effective config: %s", cfg.to_dict())

    session: Optional[CrawlSession] = None
    try:
        session = asyncio.run(_crawl_once(cfg))
    except Exception as exc:
        logger.error("Crawl failed: %s", exc)
        return 1

    stats = session.stats
    logger.info("State: %s | New: %s | Updated: %s | Skipped: %s | Failed: %s | Discovered: %s",
                session.state.value,
                stats.new_count,
                stats.updated_count,
                stats.skipped_count,
                stats.failed_count,
                stats.discovered_count)
    return 1 if session.state is CrawlState.FAILED else 0
