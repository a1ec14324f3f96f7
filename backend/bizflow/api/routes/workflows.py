"""
API routes for workflows
"""
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from bizflow.core.database import get_db
from bizflow.core.logging_config import LoggingConfig
from bizflow.services.workflow_service import WorkflowService
from bizflow.workflow.errors import (WorkflowError, WorkflowInactiveError,
                                     WorkflowNotFoundError)

logger = LoggingConfig.get_logger(__name__)

router = APIRouter(prefix="/api/workflows", tags=["workflows"])


class WorkflowCreate(BaseModel):
    """Request model for creating a workflow"""
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    definition: Dict[str, Any] = Field(..., description="Workflow definition (trigger and steps)")
    is_active: bool = True
    is_template: bool = False
    created_by: Optional[str] = None


class WorkflowUpdate(BaseModel):
    """Request model for updating a workflow"""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    definition: Optional[Dict[str, Any]] = None
    is_active: Optional[bool] = None
    is_template: Optional[bool] = None


class ExecuteRequest(BaseModel):
    """Request model for executing a workflow"""
    input: Dict[str, Any] = Field(default_factory=dict)


@router.post("/", status_code=status.HTTP_201_CREATED)
async def create_workflow(
    request: WorkflowCreate,
    x_tenant_id: Optional[str] = Header(None),
    db: Session = Depends(get_db)
):
    """Create a workflow"""
    service = WorkflowService(db)
    try:
        workflow = service.create_workflow(
            name=request.name,
            definition=request.definition,
            description=request.description,
            is_active=request.is_active,
            is_template=request.is_template,
            tenant_id=x_tenant_id,
            created_by=request.created_by,
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return workflow.to_dict()


@router.get("/")
async def list_workflows(
    is_active: Optional[bool] = None,
    is_template: Optional[bool] = None,
    x_tenant_id: Optional[str] = Header(None),
    db: Session = Depends(get_db)
) -> List[Dict[str, Any]]:
    """List workflows"""
    service = WorkflowService(db)
    workflows = service.list_workflows(is_active=is_active, is_template=is_template, tenant_id=x_tenant_id)
    return [w.to_dict() for w in workflows]


@router.get("/statistics")
async def get_all_statistics(db: Session = Depends(get_db)):
    """Run statistics across all workflows"""
    return WorkflowService(db).get_statistics()


@router.get("/{workflow_id}")
async def get_workflow(workflow_id: UUID, db: Session = Depends(get_db)):
    """Get workflow by ID"""
    workflow = WorkflowService(db).get_workflow(workflow_id)
    if not workflow:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Workflow {workflow_id} not found")
    return workflow.to_dict()


@router.patch("/{workflow_id}")
async def update_workflow(workflow_id: UUID, request: WorkflowUpdate, db: Session = Depends(get_db)):
    """Update a workflow; a new definition bumps the version"""
    service = WorkflowService(db)
    if not service.get_workflow(workflow_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Workflow {workflow_id} not found")
    try:
        workflow = service.update_workflow(workflow_id, **request.model_dump(exclude_unset=True))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return workflow.to_dict()


@router.delete("/{workflow_id}")
async def delete_workflow(workflow_id: UUID, db: Session = Depends(get_db)):
    """Delete a workflow with its instances and schedules"""
    if not WorkflowService(db).delete_workflow(workflow_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Workflow {workflow_id} not found")
    return {"status": "deleted", "workflow_id": str(workflow_id)}


@router.post("/{workflow_id}/execute")
async def execute_workflow(
    workflow_id: UUID,
    request: ExecuteRequest,
    x_tenant_id: Optional[str] = Header(None),
    db: Session = Depends(get_db)
):
    """Execute a workflow and return the resulting instance"""
    service = WorkflowService(db)
    try:
        instance = await service.execute_workflow(workflow_id, request.input, tenant_id=x_tenant_id)
    except WorkflowNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except (WorkflowInactiveError, ValueError) as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except WorkflowError as e:
        logger.error(f"Workflow execution error: {e}", extra={"workflow_id": str(workflow_id)})
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return instance.to_dict()


@router.get("/{workflow_id}/statistics")
async def get_workflow_statistics(workflow_id: UUID, db: Session = Depends(get_db)):
    """Run statistics of one workflow"""
    service = WorkflowService(db)
    if not service.get_workflow(workflow_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Workflow {workflow_id} not found")
    return service.get_statistics(workflow_id)


@router.get("/{workflow_id}/instances")
async def list_workflow_instances(
    workflow_id: UUID,
    status_filter: Optional[str] = Query(None, alias="status"),
    limit: int = 50,
    db: Session = Depends(get_db)
):
    """Instances of a workflow, newest first"""
    service = WorkflowService(db)
    if not service.get_workflow(workflow_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Workflow {workflow_id} not found")
    instances = service.list_instances(workflow_id=workflow_id, status=status_filter, limit=limit)
    return [i.to_dict() for i in instances]
