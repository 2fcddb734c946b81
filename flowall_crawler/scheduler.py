"""
Daily crawl trigger.

Call ``build_scheduler()`` once to get a configured ``AsyncIOScheduler``;
the caller starts it on app boot and shuts it down on exit. The admin API
wires it through its ``lifespan`` when ``ENABLE_SCHEDULER`` is set.
"""

from __future__ import annotations

import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from .engines.base import CrawlSession
from .engines.session import CrawlController
from .errors import SessionAlreadyRunningError

logger = logging.getLogger(__name__)

JOB_ID = "daily_crawl"


async def run_scheduled_crawl(controller: CrawlController) -> Optional[CrawlSession]:
    """
    Job body. A run that collides with a manual one is skipped, and a failed
    session is logged; neither propagates into the scheduler.
    """
    try:
        session = await controller.start()
    except SessionAlreadyRunningError:
        logger.warning("Scheduled crawl skipped: a session is already running")
        return None
    except Exception as exc:
        logger.error("Scheduled crawl failed: %s", exc)
        return None
    logger.info("Scheduled crawl %s finished: %s", session.id, session.state.value)
    return session


def build_scheduler(controller: CrawlController, hour: int = 2, minute: int = 0) -> AsyncIOScheduler:
    """
    Returns a configured but *not yet started* scheduler with one job,
    ``daily_crawl``, firing at hour:minute UTC.
    """
    scheduler = AsyncIOScheduler(timezone="UTC")
    scheduler.add_job(
        run_scheduled_crawl,
        trigger="cron",
        hour=hour,
        minute=minute,
        args=[controller],
        id=JOB_ID,
        name="Daily wallpaper crawl",
        replace_existing=True,
        misfire_grace_time=3600,
        coalesce=True,
        max_instances=1,
    )
    return scheduler
