"""
Schedule service: recurring and one-off workflow executions
"""
import calendar
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from bizflow.core.logging_config import LoggingConfig
from bizflow.models.workflow import (ScheduleType, Workflow, WorkflowInstance,
                                     WorkflowSchedule)
from bizflow.utils.datetime_utils import (ensure_utc, parse_iso_datetime,
                                          to_jsonable, utc_now)
from bizflow.workflow.cron import CronExpression
from bizflow.workflow.engine import EngineFactory, as_uuid, get_engine_factory
from bizflow.workflow.errors import WorkflowError

logger = LoggingConfig.get_logger(__name__)


def _time_of_day(config: Dict[str, Any]):
    hour = int(config.get("hour", 0))
    minute = int(config.get("minute", 0))
    if not 0 <= hour <= 23 or not 0 <= minute <= 59:
        raise ValueError(f"Invalid time of day: {hour:02d}:{minute:02d}")
    return hour, minute


def compute_next_run(schedule_type: str, config: Dict[str, Any], after: datetime) -> Optional[datetime]:
    """
    Next run time strictly after `after`, in UTC.

    Returns None for a `once` schedule whose time has passed.

    Raises:
        ValueError: unknown schedule type or invalid config
    """
    after = ensure_utc(after)
    config = config or {}
    try:
        schedule_type = ScheduleType(schedule_type)
    except ValueError:
        raise ValueError(f"Unknown schedule type: {schedule_type}")

    if schedule_type == ScheduleType.ONCE:
        if "at" not in config:
            raise ValueError("once schedules require 'at'")
        at = parse_iso_datetime(str(config["at"]))
        return at if at > after else None

    if schedule_type == ScheduleType.CRON:
        if not config.get("expression"):
            raise ValueError("cron schedules require 'expression'")
        return CronExpression(config["expression"]).next_after(after)

    hour, minute = _time_of_day(config)

    if schedule_type == ScheduleType.DAILY:
        candidate = after.replace(hour=hour, minute=minute, second=0, microsecond=0)
        if candidate <= after:
            candidate += timedelta(days=1)
        return candidate

    if schedule_type == ScheduleType.WEEKLY:
        day_of_week = int(config.get("dayOfWeek", 0))
        if not 0 <= day_of_week <= 6:
            raise ValueError(f"Invalid dayOfWeek: {day_of_week} (0=Monday .. 6=Sunday)")
        candidate = after.replace(hour=hour, minute=minute, second=0, microsecond=0)
        candidate += timedelta(days=(day_of_week - after.weekday()) % 7)
        if candidate <= after:
            candidate += timedelta(days=7)
        return candidate

    # monthly
    day = int(config.get("day", 1))
    if not 1 <= day <= 31:
        raise ValueError(f"Invalid day of month: {day}")
    year, month = after.year, after.month
    for _ in range(2):
        last_day = calendar.monthrange(year, month)[1]
        candidate = after.replace(
            year=year, month=month, day=min(day, last_day),
            hour=hour, minute=minute, second=0, microsecond=0,
        )
        if candidate > after:
            return candidate
        year, month = (year + 1, 1) if month == 12 else (year, month + 1)
    return candidate


class ScheduleService:
    """Service for workflow schedules"""

    def __init__(self, db: Session, engine_factory: Optional[EngineFactory] = None):
        self.db = db
        self._engine_factory = engine_factory

    @property
    def engine(self):
        return (self._engine_factory or get_engine_factory())(self.db)

    def create_schedule(
        self,
        workflow_id: Any,
        schedule_type: str,
        schedule_config: Optional[Dict[str, Any]] = None,
        is_active: bool = True,
    ) -> WorkflowSchedule:
        """
        Create a schedule for a workflow.

        Raises:
            ValueError: workflow not found, invalid schedule config or non-object input
        """
        if self.db.get(Workflow, as_uuid(workflow_id)) is None:
            raise ValueError(f"Workflow {workflow_id} not found")

        config = to_jsonable(schedule_config or {})
        if not isinstance(config, dict):
            raise ValueError("Schedule config must be an object")
        if config.get("input") is not None and not isinstance(config["input"], dict):
            raise ValueError("Schedule input must be an object")
        next_run_at = compute_next_run(schedule_type, config, utc_now())

        schedule = WorkflowSchedule(
            workflow_id=as_uuid(workflow_id),
            schedule_type=schedule_type,
            schedule_config=config,
            is_active=is_active and next_run_at is not None,
            next_run_at=next_run_at,
        )
        self.db.add(schedule)
        self.db.commit()
        self.db.refresh(schedule)

        logger.info(
            f"Created {schedule_type} schedule, next run at {next_run_at}",
            extra={"workflow_id": str(workflow_id), "schedule_id": str(schedule.id)},
        )
        return schedule

    def get_schedule(self, schedule_id: Any) -> Optional[WorkflowSchedule]:
        return self.db.get(WorkflowSchedule, as_uuid(schedule_id))

    def list_schedules(self, workflow_id: Any = None) -> List[WorkflowSchedule]:
        query = self.db.query(WorkflowSchedule)
        if workflow_id is not None:
            query = query.filter(WorkflowSchedule.workflow_id == as_uuid(workflow_id))
        return query.order_by(WorkflowSchedule.created_at.desc()).all()

    def delete_schedule(self, schedule_id: Any) -> bool:
        schedule = self.get_schedule(schedule_id)
        if schedule is None:
            return False
        self.db.delete(schedule)
        self.db.commit()
        return True

    def set_active(self, schedule_id: Any, is_active: bool) -> WorkflowSchedule:
        """
        Activate or deactivate a schedule. Activation recomputes next_run_at.

        Raises:
            ValueError: schedule not found, or a `once` schedule whose time has passed
        """
        schedule = self.get_schedule(schedule_id)
        if schedule is None:
            raise ValueError(f"Schedule {schedule_id} not found")

        if is_active:
            next_run_at = compute_next_run(schedule.schedule_type, schedule.schedule_config, utc_now())
            if next_run_at is None:
                raise ValueError("Schedule has no future run time")
            schedule.next_run_at = next_run_at
        schedule.is_active = is_active
        self.db.commit()
        self.db.refresh(schedule)
        return schedule

    async def run_due_schedules(self, now: Optional[datetime] = None) -> List[WorkflowInstance]:
        """Execute every active schedule that is due. Returns the instances started."""
        now = ensure_utc(now) if now else utc_now()
        due = (
            self.db.query(WorkflowSchedule)
            .filter(
                WorkflowSchedule.is_active.is_(True),
                WorkflowSchedule.next_run_at.isnot(None),
                WorkflowSchedule.next_run_at <= now,
            )
            .order_by(WorkflowSchedule.next_run_at.asc())
            .all()
        )

        instances = []
        for schedule in due:
            try:
                instance = await self._run_schedule(schedule, now)
            except Exception as e:
                if isinstance(e, SQLAlchemyError):
                    self.db.rollback()
                logger.error(
                    f"Scheduled run failed: {str(e) or type(e).__name__}",
                    extra={"schedule_id": str(schedule.id), "workflow_id": str(schedule.workflow_id)},
                    exc_info=True,
                )
                continue
            if instance is not None:
                instances.append(instance)

        if instances:
            logger.info(f"Started {len(instances)} scheduled workflow runs")
        return instances

    async def _run_schedule(self, schedule: WorkflowSchedule, now: datetime) -> Optional[WorkflowInstance]:
        """Advance the schedule past `now`, then execute its workflow"""
        config = schedule.schedule_config or {}
        schedule.last_run_at = now
        if schedule.schedule_type == ScheduleType.ONCE.value:
            schedule.is_active = False
            schedule.next_run_at = None
        else:
            schedule.next_run_at = compute_next_run(schedule.schedule_type, config, now)
        self.db.commit()

        try:
            return await self.engine.execute_workflow(
                schedule.workflow_id,
                config.get("input") or {},
                tenant_id=schedule.workflow.tenant_id if schedule.workflow else None,
                triggered_by={"type": "schedule", "scheduleId": str(schedule.id)},
            )
        except WorkflowError as e:
            logger.warning(
                f"Scheduled run skipped: {e}",
                extra={"schedule_id": str(schedule.id), "workflow_id": str(schedule.workflow_id)},
            )
            return None
