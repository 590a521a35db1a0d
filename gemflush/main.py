from __future__ import annotations

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, HTTPException

from gemflush.api.errors import register_api_exception_handlers
from gemflush.api.router import router as api_router
from gemflush.db.session import check_database, close_engine
from gemflush.http.middleware import RequestLoggingMiddleware, parse_skip_paths
from gemflush.logging_config import configure_logging, parse_redact_fields
from gemflush.services.automation.runtime import get_scheduler
from gemflush.services.automation.scheduler import SchedulerService
from gemflush.settings import settings

logger = logging.getLogger(__name__)

configure_logging(
    level=settings.log_level,
    log_format=settings.log_format,
    redact_fields=parse_redact_fields(settings.log_redact_fields),
    include_uvicorn_access=settings.log_uvicorn_access,
)

scheduler_service = SchedulerService(
    enabled=settings.scheduler_enabled,
    tick_seconds=settings.scheduler_tick_seconds,
    batch_size=settings.scheduler_batch_size,
    catch_missed=settings.scheduler_catch_missed,
    scheduler_provider=get_scheduler,
)


def _log_startup() -> None:
    logger.info(
        "app.startup",
        extra={
            "event": "app.startup",
            "scheduler_enabled": settings.scheduler_enabled,
            "scheduler_tick_seconds": settings.scheduler_tick_seconds,
            "publish_target": settings.publish_target,
            "log_format": settings.log_format,
        },
    )


@asynccontextmanager
async def lifespan(_: FastAPI):
    _log_startup()
    await scheduler_service.start()
    yield
    await scheduler_service.stop()
    await close_engine()


app = FastAPI(title=settings.app_name, lifespan=lifespan)
register_api_exception_handlers(app)
app.add_middleware(
    RequestLoggingMiddleware,
    log_requests=settings.log_requests,
    skip_paths=parse_skip_paths(settings.log_request_skip_paths),
)
app.include_router(api_router)


@app.get("/healthz")
async def healthz() -> dict[str, str]:
    if await check_database():
        return {"status": "ok"}
    raise HTTPException(status_code=500, detail="database unavailable")
