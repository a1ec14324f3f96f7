"""
Approval request model
"""
from enum import Enum
from typing import Any, Dict
from uuid import uuid4

from sqlalchemy import (CheckConstraint, Column, DateTime, ForeignKey, Index,
                        String, Text, Uuid)
from sqlalchemy.orm import backref, relationship

from bizflow.core.database import Base, JSONType
from bizflow.utils.datetime_utils import utc_now


class ApprovalRequestStatus(str, Enum):
    """Approval request status enumeration"""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class ApprovalRequest(Base):
    """Approval requested by an approval step of a paused workflow instance"""
    __tablename__ = "approval_requests"

    id = Column(Uuid, primary_key=True, default=uuid4)
    instance_id = Column(Uuid, ForeignKey("workflow_instances.id", ondelete="CASCADE"), nullable=False)
    step_id = Column(String(100), nullable=False)
    approvers = Column(JSONType, nullable=False, default=list)
    message = Column(Text, nullable=True)
    request_data = Column(JSONType, nullable=False, default=dict)

    status = Column(String(20), nullable=False, default=ApprovalRequestStatus.PENDING.value)
    decided_by = Column(String(255), nullable=True)
    decided_at = Column(DateTime(timezone=True), nullable=True)
    feedback = Column(Text, nullable=True)
    decision_timeout = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    instance = relationship(
        "WorkflowInstance",
        backref=backref("approval_requests", cascade="all, delete-orphan", passive_deletes=True),
    )

    __table_args__ = (
        Index("idx_approvals_status", "status"),
        Index("idx_approvals_instance", "instance_id"),
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'expired', 'cancelled')",
            name="approval_requests_status_check",
        ),
    )

    def __repr__(self):
        return f"<ApprovalRequest(id={self.id}, step={self.step_id}, status={self.status})>"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "instance_id": str(self.instance_id),
            "step_id": self.step_id,
            "approvers": self.approvers,
            "message": self.message,
            "request_data": self.request_data,
            "status": self.status,
            "decided_by": self.decided_by,
            "decided_at": self.decided_at.isoformat() if self.decided_at else None,
            "feedback": self.feedback,
            "decision_timeout": self.decision_timeout.isoformat() if self.decision_timeout else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
