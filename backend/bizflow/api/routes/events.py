"""
Events API: publish business events, browse history, replay failures
Provides:
- POST /api/events
- GET /api/events
- GET /api/events/statistics
- POST /api/events/replay-failed
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Header, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from bizflow.core.database import get_db
from bizflow.services.event_bus import get_event_bus

router = APIRouter(prefix="/api/events", tags=["events"])


class PublishEventRequest(BaseModel):
    """Request model for publishing an event"""
    event_type: str = Field(..., min_length=1, max_length=100, description="e.g. client.created")
    event_source: str = Field("api", min_length=1, max_length=100)
    event_data: Dict[str, Any] = Field(default_factory=dict)
    metadata: Dict[str, Any] = Field(default_factory=dict)


@router.post("/", status_code=status.HTTP_201_CREATED)
async def publish_event(
    request: PublishEventRequest,
    x_tenant_id: Optional[str] = Header(None),
    db: Session = Depends(get_db),
):
    """Persist an event and dispatch it (workflow triggers, waiting instances)"""
    event = await get_event_bus().publish(
        db,
        request.event_type,
        request.event_source,
        request.event_data,
        metadata=request.metadata,
        tenant_id=x_tenant_id,
    )
    return event.to_dict()


@router.get("/")
async def get_event_history(
    event_type: Optional[str] = Query(None, description="Filter by event type"),
    event_source: Optional[str] = Query(None, description="Filter by event source"),
    status_filter: Optional[str] = Query(None, alias="status", description="Filter by status"),
    limit: int = Query(100, ge=1, le=1000),
    x_tenant_id: Optional[str] = Header(None),
    db: Session = Depends(get_db),
):
    events = get_event_bus().get_event_history(
        db,
        event_type=event_type,
        event_source=event_source,
        status=status_filter,
        limit=limit,
        tenant_id=x_tenant_id,
    )
    return {"events": [e.to_dict() for e in events], "total": len(events)}


@router.get("/statistics")
async def get_event_statistics(db: Session = Depends(get_db)):
    return get_event_bus().get_statistics(db)


@router.post("/replay-failed")
async def replay_failed_events(db: Session = Depends(get_db)):
    """Re-dispatch every failed event"""
    replayed = await get_event_bus().replay_failed_events(db)
    return {"replayed": replayed}
