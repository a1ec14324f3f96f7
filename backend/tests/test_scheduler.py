"""
Tests for the background workflow scheduler
"""
import asyncio
from datetime import timedelta

import pytest

from bizflow.models.workflow import (QueueItemStatus, WorkflowInstance,
                                     WorkflowSchedule)
from bizflow.services import scheduler as scheduler_module
from bizflow.services.queue_service import QueueService
from bizflow.services.schedule_service import ScheduleService
from bizflow.services.scheduler import WorkflowScheduler
from bizflow.utils.datetime_utils import utc_now

STEPS = [{"id": "a", "type": "transform", "config": {"transformation": "1 + 1"}}]


@pytest.mark.asyncio
async def test_tick_runs_due_work(db, engine_factory, make_workflow):
    workflow = make_workflow(STEPS)
    schedule = ScheduleService(db).create_schedule(workflow.id, "daily", {"hour": 9})
    schedule.next_run_at = utc_now() - timedelta(minutes=1)
    db.commit()
    QueueService(db).enqueue("execute", workflow_id=workflow.id, run_at=utc_now() - timedelta(seconds=5))
    db.close()

    summary = await WorkflowScheduler(interval_seconds=60).tick()

    assert summary == {"schedules": 1, "queue": 1, "approvals": 0}
    assert db.query(WorkflowInstance).count() == 2
    assert QueueService(db).list_items(status=QueueItemStatus.PENDING.value) == []
    assert db.query(WorkflowSchedule).one().next_run_at is not None


@pytest.mark.asyncio
async def test_failing_job_does_not_stop_tick(db, engine_factory, monkeypatch):
    class BrokenScheduleService:
        def __init__(self, db):
            pass

        async def run_due_schedules(self):
            raise RuntimeError("schedule store unavailable")

    monkeypatch.setattr(scheduler_module, "ScheduleService", BrokenScheduleService)

    summary = await WorkflowScheduler(interval_seconds=60).tick()

    assert summary == {"schedules": None, "queue": 0, "approvals": 0}


@pytest.mark.asyncio
async def test_start_and_stop(db, engine_factory):
    scheduler = WorkflowScheduler(interval_seconds=3600)

    await scheduler.start()
    assert scheduler.running is True
    task = scheduler._task
    # second start is ignored
    await scheduler.start()
    assert scheduler._task is task

    await asyncio.sleep(0)
    await scheduler.stop()

    assert scheduler.running is False
    assert scheduler._task is None
    assert task.done()


def test_interval_defaults_to_settings():
    assert WorkflowScheduler().interval_seconds == 30
