from __future__ import annotations

from contextlib import asynccontextmanager
from functools import lru_cache
from typing import Any, AsyncIterator, Dict, Optional
import hmac
import logging

from fastapi import Depends, FastAPI, Header, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ..config import CrawlConfig
from ..engines.base import CrawlSession
from ..engines.session import CrawlController
from ..errors import SessionAlreadyRunningError
from ..scheduler import build_scheduler
from ..utils.loader import load_symbol
from ..version import __version__

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """Business error rendered as {"success": false, "error", "code"}."""

    def __init__(self, status_code: int, message: str, code: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.code = code


class MessageResponse(BaseModel):
    success: bool = True
    message: str


class SessionSummary(BaseModel):
    id: str
    state: str
    started_at: str
    ended_at: Optional[str] = None
    discovered: int
    dispatched: int
    new: int
    updated: int
    skipped: int
    failed: int
    error: Optional[str] = None

    @classmethod
    def from_session(cls, session: CrawlSession) -> "SessionSummary":
        stats = session.stats
        return cls(
            id=session.id,
            state=session.state.value,
            started_at=session.started_at.isoformat(),
            ended_at=session.ended_at.isoformat() if session.ended_at else None,
            discovered=stats.discovered_count,
            dispatched=stats.dispatched_count,
            new=stats.new_count,
            updated=stats.updated_count,
            skipped=stats.skipped_count,
            failed=stats.failed_count,
            error=session.error,
        )


class CrawlStatus(BaseModel):
    is_running: bool
    last_session: Optional[SessionSummary] = None


class StatusResponse(BaseModel):
    success: bool = True
    data: CrawlStatus


# ---- Dependencies -----------------------------------------------------------

@lru_cache(maxsize=1)
def get_config() -> CrawlConfig:
    cfg = CrawlConfig.from_env()
    cfg.validate()
    return cfg


@lru_cache(maxsize=1)
def get_controller() -> CrawlController:
    """Process-wide controller; tests swap it through dependency_overrides."""
    cfg = get_config()
    store = load_symbol(cfg.store, factory="from_config").from_config(cfg)
    return CrawlController(cfg, store)


def require_api_key(
    x_api_key: Optional[str] = Header(default=None),
    config: CrawlConfig = Depends(get_config),
) -> None:
    if not config.admin_api_key:
        raise ApiError(500, "Server configuration error", "CONFIG_ERROR")
    if not x_api_key or not hmac.compare_digest(x_api_key, config.admin_api_key):
        raise ApiError(401, "Unauthorized", "UNAUTHORIZED")


# ---- Application ------------------------------------------------------------

@asynccontextmanager
async def _lifespan(application: FastAPI) -> AsyncIterator[None]:
    """Start the daily trigger when enabled. On exit, stop the active session before releasing the store."""
    config = application.dependency_overrides.get(get_config, get_config)()
    controller = application.dependency_overrides.get(get_controller, get_controller)()

    scheduler = None
    if config.schedule_enabled:
        scheduler = build_scheduler(controller, config.schedule_hour, config.schedule_minute)
        scheduler.start()
        logger.info(
            "Scheduler started: daily crawl at %02d:%02d UTC", config.schedule_hour, config.schedule_minute
        )
    try:
        yield
    finally:
        if scheduler is not None:
            scheduler.shutdown(wait=False)
            logger.info("Scheduler shut down")
        await controller.shutdown(config.shutdown_timeout)
        await controller.store.close()


app = FastAPI(title="flowall_crawler admin API", version=__version__, lifespan=_lifespan)


@app.exception_handler(ApiError)
async def _api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.message, "code": exc.code},
    )


@app.get("/health")
async def health() -> Dict[str, Any]:
    return {"status": "ok", "version": __version__}


@app.post("/api/v1/admin/crawl", response_model=MessageResponse, dependencies=[Depends(require_api_key)])
async def start_crawl(controller: CrawlController = Depends(get_controller)) -> MessageResponse:
    try:
        controller.start_in_background()
    except SessionAlreadyRunningError as exc:
        raise ApiError(409, "A crawl session is already running", "CRAWL_IN_PROGRESS") from exc
    logger.info("Manual crawl requested")
    return MessageResponse(message="Crawl session started")


@app.post("/api/v1/admin/crawl/abort", response_model=MessageResponse, dependencies=[Depends(require_api_key)])
async def abort_crawl(controller: CrawlController = Depends(get_controller)) -> MessageResponse:
    if not controller.abort():
        raise ApiError(400, "No crawl session is running", "NO_RUNNING_TASK")
    return MessageResponse(message="Abort signal sent; in-flight items will finish first")


@app.get("/api/v1/admin/crawl/status", response_model=StatusResponse, dependencies=[Depends(require_api_key)])
async def crawl_status(controller: CrawlController = Depends(get_controller)) -> StatusResponse:
    last = controller.last_session
    return StatusResponse(
        data=CrawlStatus(
            is_running=controller.status(),
            last_session=SessionSummary.from_session(last) if last else None,
        )
    )
