"""
API routes for the workflow processing queue
"""
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from bizflow.core.database import get_db
from bizflow.services.queue_service import QueueService

router = APIRouter(prefix="/api/workflow-queue", tags=["workflow-queue"])


class QueueRecord(BaseModel):
    id: UUID


class ProcessRequest(BaseModel):
    """Request model for processing the queue: a single record, or a sweep when omitted"""
    record: Optional[QueueRecord] = None
    limit: Optional[int] = Field(None, ge=1, le=500)


@router.post("/process")
async def process_queue(request: Optional[ProcessRequest] = None, db: Session = Depends(get_db)):
    """Process one queue record (webhook mode) or sweep the pending batch"""
    service = QueueService(db)
    request = request or ProcessRequest()

    if request.record is not None:
        if not service.get_item(request.record.id):
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Queue item {request.record.id} not found"
            )
        try:
            result = await service.process_record(request.record.id)
        except ValueError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
        return {"processed": 1, "results": [result]}

    results = await service.process_pending(limit=request.limit)
    return {"processed": len(results), "results": results}


@router.get("/")
async def list_queue_items(
    status_filter: Optional[str] = Query(None, alias="status"),
    limit: int = 100,
    db: Session = Depends(get_db)
):
    return [item.to_dict() for item in QueueService(db).list_items(status=status_filter, limit=limit)]
