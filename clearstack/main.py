from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from clearstack.modules.governance.api.v1.audit import router as audit_router
from clearstack.modules.notifications.api.v1.admin_alerts import router as admin_alerts_router
from clearstack.modules.privacy.api.v1.privacy import router as privacy_router
from clearstack.shared.core.config import get_settings, reload_settings_from_environment
from clearstack.shared.core.exceptions import ClearStackException
from clearstack.shared.core.logging import setup_logging
from clearstack.shared.db.session import async_session_maker, get_engine, health_check

setup_logging()
logger = structlog.get_logger()
settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    global settings
    settings = reload_settings_from_environment()
    logger.info("app_starting", app_name=settings.APP_NAME)

    # Shared session factory passed to the scheduler (DI pattern)
    from clearstack.modules.governance.domain.scheduler import SchedulerOrchestrator

    scheduler = SchedulerOrchestrator(session_maker=async_session_maker)
    if settings.TESTING:
        logger.info("scheduler_skipped_in_testing")
    elif not settings.SCHEDULER_ENABLED:
        logger.warning("scheduler_disabled", msg="Set SCHEDULER_ENABLED=true to run background jobs")
    else:
        scheduler.start()
    app.state.scheduler = scheduler

    yield

    logger.info("app_stopping")
    scheduler.stop()
    await get_engine().dispose()
    logger.info("db_engine_disposed")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.VERSION,
    lifespan=lifespan,
)


@app.exception_handler(ClearStackException)
async def clearstack_exception_handler(
    request: Request, exc: ClearStackException
) -> JSONResponse:
    """Handle custom application exceptions."""
    if exc.status_code >= 500:
        logger.error("request_failed", path=request.url.path, code=exc.code, error=exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.__class__.__name__,
            "code": exc.code,
            "message": exc.message,
            "details": exc.details,
        },
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle FastAPI HTTP exceptions with the same envelope."""
    detail_text = str(exc.detail) if isinstance(exc.detail, str) else "Request failed"
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": detail_text,
            "code": "HTTP_ERROR",
            "message": detail_text,
            "details": {},
        },
        headers=getattr(exc, "headers", None),
    )


@app.get("/health", tags=["Lifecycle"])
async def health(request: Request) -> JSONResponse:
    db_status = await health_check()
    scheduler = getattr(request.app.state, "scheduler", None)
    body: dict[str, Any] = {
        "status": db_status["status"],
        "app": settings.APP_NAME,
        "version": settings.VERSION,
        "database": db_status,
        "scheduler": scheduler.get_status() if scheduler is not None else None,
    }
    return JSONResponse(status_code=200 if db_status["status"] == "up" else 503, content=body)


@app.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


app.include_router(privacy_router, prefix="/api/v1")
app.include_router(audit_router, prefix="/api/v1")
app.include_router(admin_alerts_router, prefix="/api/v1")

__all__ = ["app", "lifespan"]
