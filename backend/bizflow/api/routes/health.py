"""
Health check endpoints
"""
from typing import Any, Dict

from fastapi import APIRouter, Depends
from sqlalchemy import func, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from bizflow import __version__
from bizflow.core.config import get_settings
from bizflow.core.database import get_db
from bizflow.core.logging_config import LoggingConfig
from bizflow.models.workflow import (QueueItemStatus, WorkflowInstance,
                                     WorkflowQueueItem, WorkflowStatus)
from bizflow.services.event_bus import get_event_bus
from bizflow.utils.datetime_utils import utc_now_iso

logger = LoggingConfig.get_logger(__name__)
router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """Liveness probe"""
    return {
        "status": "healthy",
        "timestamp": utc_now_iso(),
        "service": get_settings().app_name,
    }


def _database_component(db: Session) -> Dict[str, Any]:
    try:
        db.execute(text("SELECT 1"))
        paused = db.query(func.count(WorkflowInstance.id)).filter(
            WorkflowInstance.status == WorkflowStatus.PAUSED.value
        ).scalar()
        queued = db.query(func.count(WorkflowQueueItem.id)).filter(
            WorkflowQueueItem.status == QueueItemStatus.PENDING.value
        ).scalar()
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}")
        db.rollback()
        return {"status": "unhealthy", "message": f"Database connection failed: {e}", "error": type(e).__name__}
    return {"status": "healthy", "pausedInstances": paused, "pendingQueueItems": queued}


@router.get("/health/detailed")
async def detailed_health_check(db: Session = Depends(get_db)):
    """Database, event bus and integration status"""
    settings = get_settings()
    database = _database_component(db)
    return {
        "status": database["status"],
        "timestamp": utc_now_iso(),
        "service": settings.app_name,
        "version": __version__,
        "environment": settings.app_env,
        "components": {
            "database": database,
            "event_bus": {"status": "healthy", "subscriptions": get_event_bus().patterns},
            "integrations": {
                "ai_provider": settings.ai_provider,
                "email_provider": settings.email_provider,
                "scheduler_enabled": settings.enable_scheduler,
            },
        },
    }
