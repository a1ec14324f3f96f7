"""
Approval service for approval steps of paused workflow instances
"""
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from bizflow.core.config import get_settings
from bizflow.core.logging_config import LoggingConfig
from bizflow.models.approval import ApprovalRequest, ApprovalRequestStatus
from bizflow.models.event import EventTypes
from bizflow.models.workflow import WorkflowStatus
from bizflow.utils.datetime_utils import ensure_utc, to_jsonable, utc_now
from bizflow.workflow.engine import EngineFactory, as_uuid, get_engine_factory

logger = LoggingConfig.get_logger(__name__)


class ApprovalService:
    """Service for managing approval requests"""

    def __init__(self, db: Session, engine_factory: Optional[EngineFactory] = None):
        self.db = db
        self._engine_factory = engine_factory

    @property
    def engine(self):
        return (self._engine_factory or get_engine_factory())(self.db)

    def create_request(
        self,
        instance_id: Any,
        step_id: str,
        approvers: List[str],
        message: Optional[str] = None,
        request_data: Optional[Dict[str, Any]] = None,
        timeout_hours: Optional[float] = None,
    ) -> ApprovalRequest:
        """Create a new approval request"""
        timeout_hours = timeout_hours or get_settings().approval_timeout_hours
        approval = ApprovalRequest(
            instance_id=as_uuid(instance_id),
            step_id=step_id,
            approvers=approvers,
            message=message,
            request_data=to_jsonable(request_data or {}),
            status=ApprovalRequestStatus.PENDING.value,
            decision_timeout=utc_now() + timedelta(hours=timeout_hours),
        )
        self.db.add(approval)
        self.db.commit()
        self.db.refresh(approval)
        return approval

    def get_request(self, request_id: Any) -> Optional[ApprovalRequest]:
        """Get approval request by ID"""
        return self.db.get(ApprovalRequest, as_uuid(request_id))

    def list_requests(
        self,
        status: Optional[str] = None,
        instance_id: Any = None,
        limit: int = 100,
    ) -> List[ApprovalRequest]:
        """List approval requests, newest first"""
        query = self.db.query(ApprovalRequest)
        if status:
            query = query.filter(ApprovalRequest.status == status)
        if instance_id is not None:
            query = query.filter(ApprovalRequest.instance_id == as_uuid(instance_id))
        return query.order_by(ApprovalRequest.created_at.desc()).limit(limit).all()

    def _require_pending(self, request_id: Any) -> ApprovalRequest:
        approval = self.get_request(request_id)
        if not approval:
            raise ValueError(f"Approval request {request_id} not found")
        if approval.status != ApprovalRequestStatus.PENDING.value:
            raise ValueError(f"Approval request {request_id} is not pending")
        return approval

    def _instance_waiting(self, approval: ApprovalRequest) -> bool:
        instance = approval.instance
        return instance is not None and instance.status == WorkflowStatus.PAUSED.value

    async def approve(self, request_id: Any, approved_by: str, feedback: Optional[str] = None) -> ApprovalRequest:
        """Approve a request and resume its workflow instance"""
        approval = self._require_pending(request_id)

        decided_at = utc_now()
        approval.status = ApprovalRequestStatus.APPROVED.value
        approval.decided_by = approved_by
        approval.decided_at = decided_at
        if feedback:
            approval.feedback = feedback
        self.db.commit()

        logger.info(f"Approval {approval.id} approved by {approved_by}", extra={"instance_id": str(approval.instance_id)})
        await self._publish_decision(approval)
        if self._instance_waiting(approval):
            await self.engine.resume_instance(approval.instance_id, {
                "approved": True,
                "approvedBy": approved_by,
                "approvedAt": decided_at.isoformat(),
                "feedback": feedback,
            }, step_id=approval.step_id)

        self.db.refresh(approval)
        return approval

    async def reject(self, request_id: Any, rejected_by: str, feedback: Optional[str] = None) -> ApprovalRequest:
        """
        Reject a request. The instance fails unless the approval step
        set continueOnReject, in which case it resumes with approved=false.
        """
        approval = self._require_pending(request_id)
        await self._decide_negative(approval, ApprovalRequestStatus.REJECTED, rejected_by, feedback)
        self.db.refresh(approval)
        return approval

    async def _publish_decision(self, approval: ApprovalRequest) -> None:
        instance = approval.instance
        await self.engine.event_bus.publish(
            self.db,
            EventTypes.APPROVAL_DECIDED,
            "approval_service",
            {
                "approvalRequestId": str(approval.id),
                "instanceId": str(approval.instance_id),
                "stepId": approval.step_id,
                "status": approval.status,
                "decidedBy": approval.decided_by,
            },
            tenant_id=instance.tenant_id if instance is not None else None,
        )

    async def _decide_negative(self, approval: ApprovalRequest, status: ApprovalRequestStatus,
                               decided_by: str, feedback: Optional[str]) -> None:
        decided_at = utc_now()
        approval.status = status.value
        approval.decided_by = decided_by
        approval.decided_at = decided_at
        if feedback:
            approval.feedback = feedback
        self.db.commit()

        logger.info(
            f"Approval {approval.id} {status.value} by {decided_by}",
            extra={"instance_id": str(approval.instance_id)},
        )
        await self._publish_decision(approval)
        if not self._instance_waiting(approval):
            return

        if (approval.request_data or {}).get("continueOnReject"):
            await self.engine.resume_instance(approval.instance_id, {
                "approved": False,
                "rejectedBy": decided_by,
                "rejectedAt": decided_at.isoformat(),
                "status": status.value,
                "feedback": feedback,
            }, step_id=approval.step_id)
        elif status == ApprovalRequestStatus.EXPIRED:
            await self.engine.fail_suspended_instance(approval.instance_id, f"Approval expired for step {approval.step_id}")
        else:
            await self.engine.fail_suspended_instance(approval.instance_id, f"Approval rejected by {decided_by}")

    async def expire_overdue(self, now: Optional[datetime] = None) -> int:
        """Expire pending requests past their decision timeout. Returns the number expired."""
        now = ensure_utc(now) if now else utc_now()
        pending = (
            self.db.query(ApprovalRequest)
            .filter(
                ApprovalRequest.status == ApprovalRequestStatus.PENDING.value,
                ApprovalRequest.decision_timeout.isnot(None),
            )
            .all()
        )
        expired = 0
        for approval in pending:
            if ensure_utc(approval.decision_timeout) > now:
                continue
            await self._decide_negative(approval, ApprovalRequestStatus.EXPIRED, "system", None)
            expired += 1
        if expired:
            logger.info(f"Expired {expired} overdue approval requests")
        return expired
