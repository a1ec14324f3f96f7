"""
Tests for schedule computation and the schedule service
"""
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from bizflow.models.workflow import WorkflowInstance, WorkflowStatus
from bizflow.services.schedule_service import ScheduleService, compute_next_run
from bizflow.utils.datetime_utils import ensure_utc, utc_now


def _utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


# 2026-10-17 is a Saturday
SATURDAY_10AM = _utc(2026, 10, 17, 10, 0)

STEPS = [{"id": "a", "type": "transform", "config": {"transformation": "report"}}]


class TestComputeNextRun:
    @pytest.mark.parametrize("schedule_type,config,after,expected", [
        ("daily", {"hour": 9}, SATURDAY_10AM, _utc(2026, 10, 18, 9, 0)),
        ("daily", {"hour": 11, "minute": 30}, SATURDAY_10AM, _utc(2026, 10, 17, 11, 30)),
        ("daily", {"hour": 10}, SATURDAY_10AM, _utc(2026, 10, 18, 10, 0)),
        ("weekly", {"dayOfWeek": 0, "hour": 9}, SATURDAY_10AM, _utc(2026, 10, 19, 9, 0)),
        ("weekly", {"dayOfWeek": 5, "hour": 9}, SATURDAY_10AM, _utc(2026, 10, 24, 9, 0)),
        ("weekly", {"dayOfWeek": 5, "hour": 11}, SATURDAY_10AM, _utc(2026, 10, 17, 11, 0)),
        ("monthly", {"day": 15, "hour": 8}, SATURDAY_10AM, _utc(2026, 11, 15, 8, 0)),
        ("monthly", {"day": 31}, _utc(2026, 2, 10), _utc(2026, 2, 28, 0, 0)),
        ("monthly", {"day": 1}, _utc(2026, 12, 5), _utc(2027, 1, 1, 0, 0)),
        ("cron", {"expression": "0 9 * * 1-5"}, SATURDAY_10AM, _utc(2026, 10, 19, 9, 0)),
        ("once", {"at": "2026-12-24T18:00:00Z"}, SATURDAY_10AM, _utc(2026, 12, 24, 18, 0)),
        ("once", {"at": "2026-10-17T12:00:00+02:00"}, SATURDAY_10AM, None),
    ])
    def test_next_run(self, schedule_type, config, after, expected):
        assert compute_next_run(schedule_type, config, after) == expected

    def test_naive_after_treated_as_utc(self):
        assert compute_next_run("daily", {"hour": 9}, datetime(2026, 10, 17, 10, 0)) == _utc(2026, 10, 18, 9, 0)

    @pytest.mark.parametrize("schedule_type,config,message", [
        ("hourly", {}, "Unknown schedule type"),
        ("once", {}, "require 'at'"),
        ("once", {"at": "next tuesday"}, ""),
        ("cron", {}, "require 'expression'"),
        ("cron", {"expression": "every day"}, "5 fields"),
        ("daily", {"hour": 24}, "Invalid time of day"),
        ("daily", {"minute": 60}, "Invalid time of day"),
        ("weekly", {"dayOfWeek": 7}, "Invalid dayOfWeek"),
        ("monthly", {"day": 0}, "Invalid day of month"),
    ])
    def test_invalid(self, schedule_type, config, message):
        with pytest.raises(ValueError, match=message):
            compute_next_run(schedule_type, config, SATURDAY_10AM)


@pytest.fixture
def service(db, engine_factory):
    return ScheduleService(db)


def test_create_schedule(service, make_workflow):
    workflow = make_workflow(STEPS)

    schedule = service.create_schedule(workflow.id, "daily", {"hour": 9, "input": {"report": "daily"}})

    assert schedule.is_active is True
    assert ensure_utc(schedule.next_run_at) > utc_now()
    assert schedule.last_run_at is None
    assert schedule.to_dict()["schedule_config"]["input"] == {"report": "daily"}
    assert [s.id for s in service.list_schedules(workflow.id)] == [schedule.id]


def test_create_schedule_errors(service, make_workflow):
    workflow = make_workflow(STEPS)
    with pytest.raises(ValueError, match="not found"):
        service.create_schedule(uuid4(), "daily", {"hour": 9})
    with pytest.raises(ValueError, match="Unknown schedule type"):
        service.create_schedule(workflow.id, "hourly", {})
    with pytest.raises(ValueError, match="input must be an object"):
        service.create_schedule(workflow.id, "daily", {"hour": 9, "input": "oops"})
    with pytest.raises(ValueError, match="input must be an object"):
        service.create_schedule(workflow.id, "daily", {"hour": 9, "input": ["x"]})
    assert service.list_schedules() == []


def test_past_once_schedule_is_inactive(service, make_workflow):
    workflow = make_workflow(STEPS)
    past = (utc_now() - timedelta(hours=1)).isoformat()

    schedule = service.create_schedule(workflow.id, "once", {"at": past})

    assert schedule.is_active is False
    assert schedule.next_run_at is None
    with pytest.raises(ValueError, match="no future run time"):
        service.set_active(schedule.id, True)


@pytest.mark.asyncio
async def test_run_due_schedules(db, service, make_workflow):
    workflow = make_workflow(STEPS)
    schedule = service.create_schedule(workflow.id, "daily", {"hour": 9, "input": {"report": "daily"}})
    first_run = ensure_utc(schedule.next_run_at)

    assert await service.run_due_schedules(now=first_run - timedelta(minutes=1)) == []

    now = first_run + timedelta(minutes=1)
    instances = await service.run_due_schedules(now=now)

    assert len(instances) == 1
    instance = instances[0]
    assert instance.status == WorkflowStatus.COMPLETED.value
    assert instance.output_data == {"a": {"transformed": "daily"}}
    assert instance.context["triggeredBy"] == {"type": "schedule", "scheduleId": str(schedule.id)}

    db.refresh(schedule)
    assert ensure_utc(schedule.last_run_at) == now
    assert ensure_utc(schedule.next_run_at) == first_run + timedelta(days=1)
    assert schedule.is_active is True

    # already advanced past `now`
    assert await service.run_due_schedules(now=now) == []


@pytest.mark.asyncio
async def test_once_schedule_runs_once(db, service, make_workflow):
    workflow = make_workflow(STEPS)
    at = utc_now() + timedelta(hours=1)
    schedule = service.create_schedule(workflow.id, "once", {"at": at.isoformat()})

    instances = await service.run_due_schedules(now=at + timedelta(seconds=1))

    assert len(instances) == 1
    db.refresh(schedule)
    assert schedule.is_active is False
    assert schedule.next_run_at is None
    assert await service.run_due_schedules(now=at + timedelta(days=1)) == []


@pytest.mark.asyncio
async def test_inactive_workflow_schedule_is_skipped(db, service, make_workflow):
    workflow = make_workflow(STEPS)
    schedule = service.create_schedule(workflow.id, "daily", {"hour": 9})
    workflow.is_active = False
    db.commit()
    now = ensure_utc(schedule.next_run_at) + timedelta(minutes=1)

    assert await service.run_due_schedules(now=now) == []

    assert db.query(WorkflowInstance).count() == 0
    db.refresh(schedule)
    assert ensure_utc(schedule.next_run_at) > now


@pytest.mark.asyncio
async def test_failing_schedule_does_not_block_others(db, service, make_workflow):
    workflow = make_workflow(STEPS)
    broken = service.create_schedule(workflow.id, "daily", {"hour": 9})
    healthy = service.create_schedule(workflow.id, "daily", {"hour": 9, "input": {"report": "ok"}})
    # stored before input was validated
    broken.schedule_config = {"hour": 9, "input": "oops"}
    broken.next_run_at = ensure_utc(healthy.next_run_at) - timedelta(minutes=5)
    db.commit()
    now = ensure_utc(healthy.next_run_at) + timedelta(minutes=1)

    instances = await service.run_due_schedules(now=now)

    assert [i.output_data for i in instances] == [{"a": {"transformed": "ok"}}]
    db.refresh(broken)
    db.refresh(healthy)
    assert ensure_utc(broken.last_run_at) == now
    assert ensure_utc(broken.next_run_at) > now
    assert ensure_utc(healthy.last_run_at) == now


@pytest.mark.asyncio
async def test_deactivated_schedule_not_run(service, make_workflow):
    workflow = make_workflow(STEPS)
    schedule = service.create_schedule(workflow.id, "daily", {"hour": 9})
    now = ensure_utc(schedule.next_run_at) + timedelta(minutes=1)

    service.set_active(schedule.id, False)
    assert await service.run_due_schedules(now=now) == []

    reactivated = service.set_active(schedule.id, True)
    assert reactivated.is_active is True
    assert ensure_utc(reactivated.next_run_at) > utc_now()


def test_set_active_unknown(service):
    with pytest.raises(ValueError, match="not found"):
        service.set_active(uuid4(), True)


def test_delete_schedule(service, make_workflow):
    workflow = make_workflow(STEPS)
    schedule = service.create_schedule(workflow.id, "weekly", {"dayOfWeek": 0, "hour": 9})

    assert service.delete_schedule(schedule.id) is True
    assert service.get_schedule(schedule.id) is None
    assert service.delete_schedule(schedule.id) is False
