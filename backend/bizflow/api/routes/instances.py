"""
API routes for workflow instances
"""
from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from bizflow.core.database import get_db
from bizflow.services.workflow_service import WorkflowService
from bizflow.workflow.errors import InstanceStateError, WorkflowNotFoundError

router = APIRouter(prefix="/api/workflow-instances", tags=["workflow-instances"])


class ResumeRequest(BaseModel):
    """Request model for resuming a paused instance"""
    result: Optional[Any] = None
    step_id: Optional[str] = None


@router.get("/")
async def list_instances(
    workflow_id: Optional[UUID] = None,
    status_filter: Optional[str] = Query(None, alias="status"),
    limit: int = 50,
    x_tenant_id: Optional[str] = Header(None),
    db: Session = Depends(get_db)
):
    """List workflow instances, newest first"""
    instances = WorkflowService(db).list_instances(
        workflow_id=workflow_id, status=status_filter, limit=limit, tenant_id=x_tenant_id
    )
    return [i.to_dict() for i in instances]


@router.get("/{instance_id}")
async def get_instance(instance_id: UUID, db: Session = Depends(get_db)):
    """Get workflow instance by ID"""
    instance = WorkflowService(db).get_instance(instance_id)
    if not instance:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Workflow instance {instance_id} not found")
    return instance.to_dict()


@router.get("/{instance_id}/steps")
async def get_instance_steps(instance_id: UUID, db: Session = Depends(get_db)):
    """Step logs of an instance in execution order"""
    service = WorkflowService(db)
    if not service.get_instance(instance_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Workflow instance {instance_id} not found")
    return [log.to_dict() for log in service.get_step_logs(instance_id)]


@router.post("/{instance_id}/cancel")
async def cancel_instance(instance_id: UUID, db: Session = Depends(get_db)):
    """Cancel a pending, running or paused instance"""
    try:
        instance = await WorkflowService(db).cancel_instance(instance_id)
    except WorkflowNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except InstanceStateError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return instance.to_dict()


@router.post("/{instance_id}/resume")
async def resume_instance(instance_id: UUID, request: ResumeRequest, db: Session = Depends(get_db)):
    """Resume a paused instance with a result for the suspended step"""
    engine = WorkflowService(db).engine
    try:
        instance = await engine.resume_instance(instance_id, request.result, step_id=request.step_id)
    except WorkflowNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except InstanceStateError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return instance.to_dict()
