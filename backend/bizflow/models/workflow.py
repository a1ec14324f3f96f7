"""
Workflow orchestrator models: definitions, instances, step logs, templates,
schedules and the processing queue
"""
from enum import Enum
from typing import Any, Dict
from uuid import uuid4

from sqlalchemy import (Boolean, CheckConstraint, Column, DateTime, ForeignKey,
                        Index, Integer, String, Text, Uuid)
from sqlalchemy.orm import relationship

from bizflow.core.database import Base, JSONType
from bizflow.utils.datetime_utils import utc_now


class WorkflowStatus(str, Enum):
    """Workflow instance status"""
    PENDING = "pending"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


FINAL_STATUSES = frozenset({
    WorkflowStatus.COMPLETED.value,
    WorkflowStatus.FAILED.value,
    WorkflowStatus.CANCELLED.value,
})


class StepStatus(str, Enum):
    """Step log status"""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class ScheduleType(str, Enum):
    """Schedule recurrence type"""
    ONCE = "once"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    CRON = "cron"


class QueueItemKind(str, Enum):
    """What a processing queue item does when it comes due"""
    EXECUTE = "execute"
    RESUME = "resume"


class QueueItemStatus(str, Enum):
    """Processing queue item status"""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


def _iso(value):
    return value.isoformat() if value else None


class Workflow(Base):
    """Workflow definition"""
    __tablename__ = "workflows"

    id = Column(Uuid, primary_key=True, default=uuid4)
    tenant_id = Column(String(100), nullable=True, index=True)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    definition = Column(JSONType, nullable=False)
    trigger_config = Column(JSONType, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    is_template = Column(Boolean, nullable=False, default=False)
    version = Column(Integer, nullable=False, default=1)
    created_by = Column(String(255), nullable=True)
    execution_count = Column(Integer, nullable=False, default=0)
    last_executed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now)

    instances = relationship(
        "WorkflowInstance",
        back_populates="workflow",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    schedules = relationship(
        "WorkflowSchedule",
        back_populates="workflow",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("idx_workflows_active", "is_active"),
        Index("idx_workflows_template", "is_template"),
    )

    def __repr__(self):
        return f"<Workflow(id={self.id}, name={self.name}, active={self.is_active})>"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "tenant_id": self.tenant_id,
            "name": self.name,
            "description": self.description,
            "definition": self.definition,
            "trigger_config": self.trigger_config,
            "is_active": self.is_active,
            "is_template": self.is_template,
            "version": self.version,
            "created_by": self.created_by,
            "execution_count": self.execution_count,
            "last_executed_at": _iso(self.last_executed_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class WorkflowInstance(Base):
    """A single execution of a workflow"""
    __tablename__ = "workflow_instances"

    id = Column(Uuid, primary_key=True, default=uuid4)
    workflow_id = Column(Uuid, ForeignKey("workflows.id", ondelete="CASCADE"), nullable=False)
    tenant_id = Column(String(100), nullable=True, index=True)
    status = Column(String(20), nullable=False, default=WorkflowStatus.PENDING.value)
    current_step = Column(String(100), nullable=True)
    context = Column(JSONType, nullable=False, default=dict)
    input_data = Column(JSONType, nullable=True)
    output_data = Column(JSONType, nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    error_message = Column(Text, nullable=True)
    retry_count = Column(Integer, nullable=False, default=0)
    # Set while paused on a wait-for-event step
    waiting_for_event = Column(String(200), nullable=True, index=True)
    resume_at = Column(DateTime(timezone=True), nullable=True)

    workflow = relationship("Workflow", back_populates="instances")
    step_logs = relationship(
        "WorkflowStepLog",
        back_populates="instance",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="WorkflowStepLog.started_at",
    )

    __table_args__ = (
        Index("idx_instances_workflow", "workflow_id"),
        Index("idx_instances_status", "status"),
        Index("idx_instances_started", "started_at"),
        CheckConstraint(
            "status IN ('pending', 'running', 'paused', 'completed', 'failed', 'cancelled')",
            name="workflow_instances_status_check",
        ),
    )

    @property
    def is_final(self) -> bool:
        return self.status in FINAL_STATUSES

    def __repr__(self):
        return f"<WorkflowInstance(id={self.id}, workflow_id={self.workflow_id}, status={self.status})>"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "workflow_id": str(self.workflow_id),
            "tenant_id": self.tenant_id,
            "status": self.status,
            "current_step": self.current_step,
            "context": self.context,
            "input_data": self.input_data,
            "output_data": self.output_data,
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "error_message": self.error_message,
            "retry_count": self.retry_count,
            "waiting_for_event": self.waiting_for_event,
            "resume_at": _iso(self.resume_at),
        }


class WorkflowStepLog(Base):
    """Execution log of one attempt of one step"""
    __tablename__ = "workflow_steps"

    id = Column(Uuid, primary_key=True, default=uuid4)
    instance_id = Column(Uuid, ForeignKey("workflow_instances.id", ondelete="CASCADE"), nullable=False)
    step_id = Column(String(100), nullable=False)
    step_name = Column(String(200), nullable=False)
    step_type = Column(String(50), nullable=False)
    input_data = Column(JSONType, nullable=True)
    output_data = Column(JSONType, nullable=True)
    status = Column(String(20), nullable=False, default=StepStatus.PENDING.value)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    execution_time_ms = Column(Integer, nullable=True)
    error_message = Column(Text, nullable=True)
    retry_count = Column(Integer, nullable=False, default=0)

    instance = relationship("WorkflowInstance", back_populates="step_logs")

    __table_args__ = (
        Index("idx_steps_instance", "instance_id"),
        Index("idx_steps_status", "status"),
        CheckConstraint(
            "status IN ('pending', 'running', 'completed', 'failed', 'skipped')",
            name="workflow_steps_status_check",
        ),
    )

    def __repr__(self):
        return f"<WorkflowStepLog(step_id={self.step_id}, status={self.status}, retry={self.retry_count})>"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "instance_id": str(self.instance_id),
            "step_id": self.step_id,
            "step_name": self.step_name,
            "step_type": self.step_type,
            "input_data": self.input_data,
            "output_data": self.output_data,
            "status": self.status,
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "execution_time_ms": self.execution_time_ms,
            "error_message": self.error_message,
            "retry_count": self.retry_count,
        }


class WorkflowTemplate(Base):
    """Pre-built workflow template"""
    __tablename__ = "workflow_templates"

    id = Column(Uuid, primary_key=True, default=uuid4)
    name = Column(String(200), nullable=False)
    category = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    icon = Column(String(50), nullable=True)
    definition = Column(JSONType, nullable=False)
    is_official = Column(Boolean, nullable=False, default=False)
    usage_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    def __repr__(self):
        return f"<WorkflowTemplate(name={self.name}, category={self.category})>"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "name": self.name,
            "category": self.category,
            "description": self.description,
            "icon": self.icon,
            "definition": self.definition,
            "is_official": self.is_official,
            "usage_count": self.usage_count,
            "created_at": _iso(self.created_at),
        }


class WorkflowSchedule(Base):
    """Scheduled / recurring workflow execution"""
    __tablename__ = "workflow_schedules"

    id = Column(Uuid, primary_key=True, default=uuid4)
    workflow_id = Column(Uuid, ForeignKey("workflows.id", ondelete="CASCADE"), nullable=False)
    schedule_type = Column(String(20), nullable=False)
    schedule_config = Column(JSONType, nullable=False, default=dict)
    is_active = Column(Boolean, nullable=False, default=True)
    last_run_at = Column(DateTime(timezone=True), nullable=True)
    next_run_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    workflow = relationship("Workflow", back_populates="schedules")

    __table_args__ = (
        Index("idx_schedules_active", "is_active"),
        Index("idx_schedules_next_run", "next_run_at"),
        CheckConstraint(
            "schedule_type IN ('once', 'daily', 'weekly', 'monthly', 'cron')",
            name="workflow_schedules_type_check",
        ),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "workflow_id": str(self.workflow_id),
            "schedule_type": self.schedule_type,
            "schedule_config": self.schedule_config,
            "is_active": self.is_active,
            "last_run_at": _iso(self.last_run_at),
            "next_run_at": _iso(self.next_run_at),
            "created_at": _iso(self.created_at),
        }


class WorkflowQueueItem(Base):
    """Deferred unit of work picked up by the queue sweeper"""
    __tablename__ = "workflow_processing_queue"

    id = Column(Uuid, primary_key=True, default=uuid4)
    kind = Column(String(20), nullable=False)
    workflow_id = Column(Uuid, ForeignKey("workflows.id", ondelete="CASCADE"), nullable=True)
    instance_id = Column(Uuid, ForeignKey("workflow_instances.id", ondelete="CASCADE"), nullable=True)
    event_id = Column(Uuid, nullable=True)
    payload = Column(JSONType, nullable=False, default=dict)
    status = Column(String(20), nullable=False, default=QueueItemStatus.PENDING.value)
    attempts = Column(Integer, nullable=False, default=0)
    next_run_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now)

    __table_args__ = (
        Index("idx_queue_status_next_run", "status", "next_run_at"),
        Index("idx_queue_instance", "instance_id"),
        CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed', 'cancelled')",
            name="workflow_queue_status_check",
        ),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "kind": self.kind,
            "workflow_id": str(self.workflow_id) if self.workflow_id else None,
            "instance_id": str(self.instance_id) if self.instance_id else None,
            "event_id": str(self.event_id) if self.event_id else None,
            "payload": self.payload,
            "status": self.status,
            "attempts": self.attempts,
            "next_run_at": _iso(self.next_run_at),
            "last_error": self.last_error,
        }
