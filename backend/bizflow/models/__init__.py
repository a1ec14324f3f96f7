"""
SQLAlchemy models
"""
from bizflow.core.database import Base
# Import all models here so Alembic can detect them
from bizflow.models.approval import (ApprovalRequest,  # noqa: F401
                                     ApprovalRequestStatus)
from bizflow.models.event import Event, EventStatus, EventTypes  # noqa: F401
from bizflow.models.workflow import (FINAL_STATUSES,  # noqa: F401
                                     QueueItemKind, QueueItemStatus,
                                     ScheduleType, StepStatus, Workflow,
                                     WorkflowInstance, WorkflowQueueItem,
                                     WorkflowSchedule, WorkflowStatus,
                                     WorkflowStepLog, WorkflowTemplate)

__all__ = [
    "Base",
    # Workflows
    "Workflow",
    "WorkflowInstance",
    "WorkflowStepLog",
    "WorkflowTemplate",
    "WorkflowSchedule",
    "WorkflowQueueItem",
    "WorkflowStatus",
    "StepStatus",
    "ScheduleType",
    "QueueItemKind",
    "QueueItemStatus",
    "FINAL_STATUSES",
    # Events
    "Event",
    "EventStatus",
    "EventTypes",
    # Approvals
    "ApprovalRequest",
    "ApprovalRequestStatus",
]
