"""
API routes for approval requests
"""
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from bizflow.core.database import get_db
from bizflow.services.approval_service import ApprovalService

router = APIRouter(prefix="/api/approvals", tags=["approvals"])


class ApproveRequest(BaseModel):
    """Request model for approving"""
    approved_by: str = Field("user", min_length=1)
    feedback: Optional[str] = None


class RejectRequest(BaseModel):
    """Request model for rejecting"""
    rejected_by: str = Field("user", min_length=1)
    feedback: Optional[str] = Field(None, description="Reason for rejection")


@router.get("/")
async def list_approvals(
    status_filter: Optional[str] = Query(None, alias="status"),
    instance_id: Optional[UUID] = None,
    limit: int = 100,
    db: Session = Depends(get_db)
):
    """List approval requests, newest first"""
    approvals = ApprovalService(db).list_requests(status=status_filter, instance_id=instance_id, limit=limit)
    return [a.to_dict() for a in approvals]


@router.get("/{request_id}")
async def get_approval_request(request_id: UUID, db: Session = Depends(get_db)):
    """Get approval request by ID"""
    approval = ApprovalService(db).get_request(request_id)
    if not approval:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Approval request {request_id} not found"
        )
    return approval.to_dict()


@router.post("/{request_id}/approve")
async def approve_request(request_id: UUID, request: ApproveRequest, db: Session = Depends(get_db)):
    """Approve a request and resume its workflow instance"""
    service = ApprovalService(db)
    if not service.get_request(request_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Approval request {request_id} not found")
    try:
        approval = await service.approve(request_id, request.approved_by, request.feedback)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return approval.to_dict()


@router.post("/{request_id}/reject")
async def reject_request(request_id: UUID, request: RejectRequest, db: Session = Depends(get_db)):
    """Reject a request"""
    service = ApprovalService(db)
    if not service.get_request(request_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Approval request {request_id} not found")
    try:
        approval = await service.reject(request_id, request.rejected_by, request.feedback)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return approval.to_dict()
