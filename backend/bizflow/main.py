"""
Main FastAPI application entry point
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from bizflow import __version__
from bizflow.api.routes import (approvals, events, health, instances, metrics,
                                queue, schedules, templates, workflows)
from bizflow.core.config import get_settings
from bizflow.core.database import get_session_local, init_db
from bizflow.core.logging_config import LoggingConfig
from bizflow.core.middleware import LoggingContextMiddleware
from bizflow.core.middleware_metrics import MetricsMiddleware
from bizflow.services.event_bus import get_event_bus
from bizflow.services.scheduler import get_workflow_scheduler
from bizflow.services.workflow_service import seed_official_templates
from bizflow.workflow.engine import install_workflow_triggers

# Configure logging first
LoggingConfig.configure()

logger = LoggingConfig.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan events for FastAPI app"""
    # Startup
    settings = get_settings()
    logger.info(f"Starting {settings.app_name} in {settings.app_env} mode...")

    init_db()
    db = get_session_local()()
    try:
        seed_official_templates(db)
    finally:
        db.close()

    unsubscribe_triggers = install_workflow_triggers(get_event_bus())

    scheduler = get_workflow_scheduler()
    if settings.enable_scheduler:
        await scheduler.start()

    yield

    # Shutdown
    logger.info(f"Shutting down {settings.app_name}...")
    if settings.enable_scheduler:
        await scheduler.stop()
    unsubscribe_triggers()


_settings = get_settings()
app = FastAPI(
    title=_settings.app_name,
    description="Workflow orchestrator for business processes (BizFlow)",
    version=__version__,
    lifespan=lifespan,
)

# Add logging context middleware (before CORS to capture all requests)
app.add_middleware(LoggingContextMiddleware)
app.add_middleware(MetricsMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.allowed_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler to log all unhandled errors"""
    logger.error(
        "Unhandled exception",
        exc_info=exc,
        extra={
            "error": str(exc),
            "error_type": type(exc).__name__,
            "path": request.url.path,
            "method": request.method,
        }
    )
    return JSONResponse(
        status_code=500,
        content={
            "detail": str(exc),
            "type": type(exc).__name__
        }
    )


app.include_router(health.router)
app.include_router(metrics.router)
app.include_router(workflows.router)
app.include_router(instances.router)
app.include_router(templates.router)
app.include_router(events.router)
app.include_router(approvals.router)
app.include_router(schedules.router)
app.include_router(queue.router)


@app.get("/")
async def root():
    return {
        "service": _settings.app_name,
        "version": __version__,
        "docs": "/docs",
    }
