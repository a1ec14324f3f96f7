"""
API routes for workflow schedules
"""
from typing import Any, Dict, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from bizflow.core.database import get_db
from bizflow.models.workflow import ScheduleType
from bizflow.services.schedule_service import ScheduleService

router = APIRouter(prefix="/api/workflow-schedules", tags=["workflow-schedules"])


class ScheduleCreate(BaseModel):
    """Request model for creating a schedule"""
    workflow_id: UUID
    schedule_type: ScheduleType
    schedule_config: Dict[str, Any] = Field(default_factory=dict)
    is_active: bool = True


@router.post("/", status_code=status.HTTP_201_CREATED)
async def create_schedule(request: ScheduleCreate, db: Session = Depends(get_db)):
    """Create a schedule; next_run_at is computed immediately"""
    try:
        schedule = ScheduleService(db).create_schedule(
            request.workflow_id,
            request.schedule_type.value,
            request.schedule_config,
            is_active=request.is_active,
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return schedule.to_dict()


@router.get("/")
async def list_schedules(workflow_id: Optional[UUID] = None, db: Session = Depends(get_db)):
    return [s.to_dict() for s in ScheduleService(db).list_schedules(workflow_id)]


@router.post("/run-due")
async def run_due_schedules(db: Session = Depends(get_db)):
    """Run every due schedule now"""
    instances = await ScheduleService(db).run_due_schedules()
    return {"started": len(instances), "instances": [i.to_dict() for i in instances]}


@router.delete("/{schedule_id}")
async def delete_schedule(schedule_id: UUID, db: Session = Depends(get_db)):
    if not ScheduleService(db).delete_schedule(schedule_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Schedule {schedule_id} not found")
    return {"status": "deleted", "schedule_id": str(schedule_id)}


async def _set_active(schedule_id: UUID, is_active: bool, db: Session):
    service = ScheduleService(db)
    if not service.get_schedule(schedule_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Schedule {schedule_id} not found")
    try:
        schedule = service.set_active(schedule_id, is_active)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return schedule.to_dict()


@router.post("/{schedule_id}/activate")
async def activate_schedule(schedule_id: UUID, db: Session = Depends(get_db)):
    return await _set_active(schedule_id, True, db)


@router.post("/{schedule_id}/deactivate")
async def deactivate_schedule(schedule_id: UUID, db: Session = Depends(get_db)):
    return await _set_active(schedule_id, False, db)
