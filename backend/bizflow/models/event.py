"""
Event bus model for persistent storage of published business events
"""
from enum import Enum
from typing import Any, Dict
from uuid import uuid4

from sqlalchemy import (CheckConstraint, Column, DateTime, Index, Integer,
                        String, Text, Uuid)

from bizflow.core.database import Base, JSONType
from bizflow.utils.datetime_utils import utc_now


class EventStatus(str, Enum):
    """Event processing status"""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class EventTypes:
    """Standard event types (extensible, any dotted name can be published)"""
    # User events
    USER_CREATED = "user.created"
    USER_UPDATED = "user.updated"
    USER_DELETED = "user.deleted"
    USER_LOGIN = "user.login"
    USER_LOGOUT = "user.logout"

    # Project events
    PROJECT_CREATED = "project.created"
    PROJECT_UPDATED = "project.updated"
    PROJECT_DELETED = "project.deleted"
    PROJECT_COMPLETED = "project.completed"
    PROJECT_ARCHIVED = "project.archived"

    # Message events
    MESSAGE_SENT = "message.sent"
    MESSAGE_READ = "message.read"
    MESSAGE_DELETED = "message.deleted"

    # Meeting events
    MEETING_SCHEDULED = "meeting.scheduled"
    MEETING_STARTED = "meeting.started"
    MEETING_ENDED = "meeting.ended"
    MEETING_CANCELLED = "meeting.cancelled"

    # Contract events
    CONTRACT_CREATED = "contract.created"
    CONTRACT_SENT = "contract.sent"
    CONTRACT_SIGNED = "contract.signed"
    CONTRACT_EXPIRED = "contract.expired"

    # Invoice events
    INVOICE_CREATED = "invoice.created"
    INVOICE_SENT = "invoice.sent"
    INVOICE_PAID = "invoice.paid"
    INVOICE_OVERDUE = "invoice.overdue"

    # Task events
    TASK_CREATED = "task.created"
    TASK_UPDATED = "task.updated"
    TASK_COMPLETED = "task.completed"
    TASK_ASSIGNED = "task.assigned"

    # Workflow events
    WORKFLOW_STARTED = "workflow.started"
    WORKFLOW_STEP_COMPLETED = "workflow.step.completed"
    WORKFLOW_PAUSED = "workflow.paused"
    WORKFLOW_COMPLETED = "workflow.completed"
    WORKFLOW_FAILED = "workflow.failed"
    WORKFLOW_CANCELLED = "workflow.cancelled"

    # Approval events
    APPROVAL_REQUESTED = "approval.requested"
    APPROVAL_DECIDED = "approval.decided"

    # Client events
    CLIENT_CREATED = "client.created"
    CLIENT_UPDATED = "client.updated"
    CLIENT_ONBOARDED = "client.onboarded"

    # Notification events
    NOTIFICATION_SENT = "notification.sent"

    # System events
    SYSTEM_ERROR = "system.error"
    SYSTEM_WARNING = "system.warning"
    SYSTEM_INFO = "system.info"


class Event(Base):
    """
    Persistent event published on the event bus.
    Status tracks dispatch to in-process handlers; failed events can be replayed.
    """
    __tablename__ = "events"

    id = Column(Uuid, primary_key=True, default=uuid4)
    tenant_id = Column(String(100), nullable=True, index=True)
    event_type = Column(String(200), nullable=False, index=True)
    event_source = Column(String(100), nullable=False, index=True)
    event_data = Column(JSONType, nullable=False, default=dict)
    # "metadata" is reserved on declarative classes
    event_metadata = Column("metadata", JSONType, nullable=False, default=dict)
    status = Column(String(20), nullable=False, default=EventStatus.PENDING.value)
    retry_count = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    processed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_events_status", "status"),
        Index("idx_events_created", "created_at"),
        CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed')",
            name="events_status_check",
        ),
    )

    def __repr__(self):
        return f"<Event(id={self.id}, type={self.event_type}, status={self.status})>"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "tenant_id": self.tenant_id,
            "event_type": self.event_type,
            "event_source": self.event_source,
            "event_data": self.event_data,
            "metadata": self.event_metadata,
            "status": self.status,
            "retry_count": self.retry_count,
            "error_message": self.error_message,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "processed_at": self.processed_at.isoformat() if self.processed_at else None,
        }
