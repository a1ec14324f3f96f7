"""
Background scheduler: runs due schedules, sweeps the processing queue and expires overdue approvals
"""
import asyncio
from typing import Any, Dict, Optional

from bizflow.core.config import get_settings
from bizflow.core.database import get_session_local
from bizflow.core.logging_config import LoggingConfig
from bizflow.services.approval_service import ApprovalService
from bizflow.services.queue_service import QueueService
from bizflow.services.schedule_service import ScheduleService

logger = LoggingConfig.get_logger(__name__)


class WorkflowScheduler:
    """Background loop driving time-based workflow work"""

    def __init__(self, interval_seconds: Optional[float] = None):
        self.interval_seconds = interval_seconds or get_settings().scheduler_interval_seconds
        self.running = False
        self._task: Optional[asyncio.Task] = None

    async def start(self):
        """Start the scheduler loop"""
        if self.running:
            logger.warning("Workflow scheduler is already running")
            return

        self.running = True
        logger.info(f"Starting workflow scheduler (interval {self.interval_seconds}s)...")
        self._task = asyncio.create_task(self._scheduler_loop())

    async def stop(self):
        """Stop the scheduler loop"""
        self.running = False
        logger.info("Stopping workflow scheduler...")
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _scheduler_loop(self):
        while self.running:
            await self.tick()
            await asyncio.sleep(self.interval_seconds)

    async def tick(self) -> Dict[str, Any]:
        """One pass over schedules, queue and approvals, each in its own session"""
        summary: Dict[str, Any] = {}
        summary["schedules"] = await self._run_job("schedules", self._run_schedules)
        summary["queue"] = await self._run_job("queue", self._run_queue)
        summary["approvals"] = await self._run_job("approvals", self._expire_approvals)
        return summary

    async def _run_job(self, name: str, job) -> Optional[int]:
        db = get_session_local()()
        try:
            return await job(db)
        except Exception as e:
            logger.error(f"Error in workflow scheduler job '{name}': {e}", exc_info=True)
            db.rollback()
            return None
        finally:
            db.close()

    async def _run_schedules(self, db) -> int:
        return len(await ScheduleService(db).run_due_schedules())

    async def _run_queue(self, db) -> int:
        return len(await QueueService(db).process_pending())

    async def _expire_approvals(self, db) -> int:
        return await ApprovalService(db).expire_overdue()


# Global scheduler instance
_workflow_scheduler: Optional[WorkflowScheduler] = None


def get_workflow_scheduler() -> WorkflowScheduler:
    """Get or create workflow scheduler instance"""
    global _workflow_scheduler
    if _workflow_scheduler is None:
        _workflow_scheduler = WorkflowScheduler()
    return _workflow_scheduler
