"""
API routes for workflow templates
"""
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from bizflow.core.database import get_db
from bizflow.services.workflow_service import WorkflowService

router = APIRouter(prefix="/api/workflow-templates", tags=["workflow-templates"])


class InstantiateRequest(BaseModel):
    """Request model for creating a workflow from a template"""
    name: str = Field(..., min_length=1, max_length=255)
    created_by: Optional[str] = None


@router.get("/")
async def list_templates(category: Optional[str] = None, db: Session = Depends(get_db)):
    """Templates, most used first"""
    return [t.to_dict() for t in WorkflowService(db).get_templates(category)]


@router.post("/{template_id}/instantiate", status_code=status.HTTP_201_CREATED)
async def instantiate_template(
    template_id: UUID,
    request: InstantiateRequest,
    x_tenant_id: Optional[str] = Header(None),
    db: Session = Depends(get_db)
):
    """Create a workflow from a template"""
    try:
        workflow = WorkflowService(db).create_from_template(
            template_id, request.name, tenant_id=x_tenant_id, created_by=request.created_by
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return workflow.to_dict()
