"""
Processing queue: deferred workflow executions and timed resumes, swept by the scheduler
or processed one record at a time (webhook mode).
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from bizflow.core.config import get_settings
from bizflow.core.logging_config import LoggingConfig
from bizflow.core.metrics import queue_items_processed_total
from bizflow.models.workflow import (QueueItemKind, QueueItemStatus,
                                     WorkflowInstance, WorkflowQueueItem,
                                     WorkflowStatus)
from bizflow.utils.datetime_utils import ensure_utc, to_jsonable, utc_now
from bizflow.workflow.engine import EngineFactory, as_uuid, get_engine_factory
from bizflow.workflow.errors import WorkflowError

logger = LoggingConfig.get_logger(__name__)


class QueueService:
    """Service for the workflow processing queue"""

    def __init__(self, db: Session, engine_factory: Optional[EngineFactory] = None):
        self.db = db
        self._engine_factory = engine_factory

    @property
    def engine(self):
        return (self._engine_factory or get_engine_factory())(self.db)

    def enqueue(
        self,
        kind: str,
        workflow_id: Any = None,
        instance_id: Any = None,
        event_id: Any = None,
        payload: Optional[Dict[str, Any]] = None,
        run_at: Optional[datetime] = None,
    ) -> WorkflowQueueItem:
        """Add an item to the queue"""
        kind = QueueItemKind(kind).value
        if kind == QueueItemKind.EXECUTE.value and workflow_id is None:
            raise ValueError("execute items require a workflow_id")
        if kind == QueueItemKind.RESUME.value and instance_id is None:
            raise ValueError("resume items require an instance_id")

        item = WorkflowQueueItem(
            kind=kind,
            workflow_id=as_uuid(workflow_id) if workflow_id is not None else None,
            instance_id=as_uuid(instance_id) if instance_id is not None else None,
            event_id=as_uuid(event_id) if event_id is not None else None,
            payload=to_jsonable(payload or {}),
            status=QueueItemStatus.PENDING.value,
            next_run_at=ensure_utc(run_at) if run_at else utc_now(),
        )
        self.db.add(item)
        self.db.commit()
        self.db.refresh(item)
        return item

    def get_item(self, item_id: Any) -> Optional[WorkflowQueueItem]:
        return self.db.get(WorkflowQueueItem, as_uuid(item_id))

    def list_items(self, status: Optional[str] = None, limit: int = 100) -> List[WorkflowQueueItem]:
        query = self.db.query(WorkflowQueueItem)
        if status:
            query = query.filter(WorkflowQueueItem.status == status)
        return query.order_by(WorkflowQueueItem.next_run_at.asc()).limit(limit).all()

    async def process_pending(self, limit: Optional[int] = None, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """Process pending items that are due, oldest first"""
        limit = limit or get_settings().queue_batch_size
        now = ensure_utc(now) if now else utc_now()

        due = (
            self.db.query(WorkflowQueueItem)
            .filter(
                WorkflowQueueItem.status == QueueItemStatus.PENDING.value,
                WorkflowQueueItem.next_run_at <= now,
            )
            .order_by(WorkflowQueueItem.next_run_at.asc(), WorkflowQueueItem.created_at.asc())
            .limit(limit)
            .all()
        )
        results = []
        for item in due:
            # An earlier item in this batch (a resume) may have cancelled this one
            self.db.refresh(item, attribute_names=["status"])
            if item.status != QueueItemStatus.PENDING.value:
                continue
            results.append(await self._process(item))
        if results:
            logger.info(f"Processed {len(results)} queue items")
        return results

    async def process_record(self, item_id: Any) -> Dict[str, Any]:
        """
        Process a single queue item regardless of its due time.

        Raises:
            ValueError: item not found or not pending
        """
        item = self.get_item(item_id)
        if item is None:
            raise ValueError(f"Queue item {item_id} not found")
        if item.status != QueueItemStatus.PENDING.value:
            raise ValueError(f"Queue item {item_id} is not pending (status: {item.status})")
        return await self._process(item)

    async def _process(self, item: WorkflowQueueItem) -> Dict[str, Any]:
        item.status = QueueItemStatus.PROCESSING.value
        item.attempts = (item.attempts or 0) + 1
        self.db.commit()

        result: Dict[str, Any] = {"id": str(item.id)}
        try:
            if item.kind == QueueItemKind.EXECUTE.value:
                instance = await self.engine.execute_workflow(
                    item.workflow_id,
                    (item.payload or {}).get("input"),
                    tenant_id=(item.payload or {}).get("tenantId"),
                    triggered_by={"type": "queue", "queueItemId": str(item.id)},
                )
                result["instanceId"] = str(instance.id)
            elif item.kind == QueueItemKind.RESUME.value:
                resumed = await self._resume(item)
                result["resumed"] = resumed
            else:
                raise ValueError(f"Unknown queue item kind: {item.kind}")
        except Exception as e:
            if isinstance(e, SQLAlchemyError):
                self.db.rollback()
            message = str(e) or type(e).__name__
            logger.error(
                f"Queue item {item.id} failed: {message}",
                extra={"queue_item_id": str(item.id)},
                exc_info=not isinstance(e, (WorkflowError, ValueError)),
            )
            item.status = QueueItemStatus.FAILED.value
            item.last_error = message
            self.db.commit()
            queue_items_processed_total.labels(kind=item.kind, status="failed").inc()
            result.update({"status": item.status, "error": message})
            return result

        item.status = QueueItemStatus.COMPLETED.value
        item.last_error = None
        self.db.commit()
        queue_items_processed_total.labels(kind=item.kind, status="completed").inc()
        result["status"] = item.status
        return result

    async def _resume(self, item: WorkflowQueueItem) -> bool:
        """Resume the instance unless it moved on (stale timer): returns whether it resumed"""
        instance = self.db.get(WorkflowInstance, item.instance_id)
        payload = item.payload or {}
        step_id = payload.get("stepId")
        if instance is None or instance.status != WorkflowStatus.PAUSED.value:
            logger.info(f"Skipping stale resume for instance {item.instance_id}")
            return False
        suspended_step = (instance.context or {}).get("resume", {}).get("stepId")
        if step_id and suspended_step != step_id:
            logger.info(f"Skipping stale resume for step {step_id} (instance at {suspended_step})")
            return False
        # resume_instance cancels the instance's other pending items
        await self.engine.resume_instance(instance.id, payload.get("result"), step_id=step_id)
        return True

    def cancel_for_instance(self, instance_id: Any) -> int:
        """Cancel pending items of an instance. Returns the number cancelled."""
        count = (
            self.db.query(WorkflowQueueItem)
            .filter(
                WorkflowQueueItem.instance_id == as_uuid(instance_id),
                WorkflowQueueItem.status == QueueItemStatus.PENDING.value,
            )
            .update({WorkflowQueueItem.status: QueueItemStatus.CANCELLED.value}, synchronize_session=False)
        )
        self.db.commit()
        return count
