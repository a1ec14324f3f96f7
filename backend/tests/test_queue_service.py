"""
Tests for the workflow processing queue
"""
from datetime import timedelta
from uuid import UUID, uuid4

import pytest

from bizflow.models.workflow import (QueueItemKind, QueueItemStatus,
                                     WorkflowInstance, WorkflowStatus)
from bizflow.services.queue_service import QueueService
from bizflow.utils.datetime_utils import utc_now
from bizflow.workflow.engine import WorkflowEngine

STEPS = [{"id": "a", "type": "transform", "config": {"transformation": "amount * 2"}}]


@pytest.fixture
def service(db, engine_factory):
    return QueueService(db)


def test_enqueue_validates_kind_and_ids(service):
    with pytest.raises(ValueError):
        service.enqueue("explode", workflow_id=uuid4())
    with pytest.raises(ValueError, match="require a workflow_id"):
        service.enqueue(QueueItemKind.EXECUTE.value)
    with pytest.raises(ValueError, match="require an instance_id"):
        service.enqueue(QueueItemKind.RESUME.value)


@pytest.mark.asyncio
async def test_execute_item(db, service, make_workflow):
    workflow = make_workflow(STEPS)
    item = service.enqueue("execute", workflow_id=workflow.id, payload={"input": {"amount": 21}, "tenantId": "acme"})
    assert item.status == QueueItemStatus.PENDING.value
    assert item.attempts == 0

    results = await service.process_pending()

    assert len(results) == 1
    result = results[0]
    assert result["status"] == QueueItemStatus.COMPLETED.value
    instance = db.get(WorkflowInstance, UUID(result["instanceId"]))
    assert instance.status == WorkflowStatus.COMPLETED.value
    assert instance.output_data == {"a": {"transformed": 42}}
    assert instance.tenant_id == "acme"
    assert instance.context["triggeredBy"] == {"type": "queue", "queueItemId": str(item.id)}

    db.refresh(item)
    assert item.status == QueueItemStatus.COMPLETED.value
    assert item.attempts == 1


@pytest.mark.asyncio
async def test_future_items_wait(service, make_workflow):
    workflow = make_workflow(STEPS)
    run_at = utc_now() + timedelta(minutes=10)
    service.enqueue("execute", workflow_id=workflow.id, payload={"input": {"amount": 1}}, run_at=run_at)

    assert await service.process_pending() == []
    assert len(await service.process_pending(now=run_at + timedelta(seconds=1))) == 1


@pytest.mark.asyncio
async def test_batch_limit_and_order(service, make_workflow):
    workflow = make_workflow(STEPS)
    now = utc_now()
    late = service.enqueue("execute", workflow_id=workflow.id, payload={"input": {"amount": 1}},
                           run_at=now - timedelta(minutes=1))
    early = service.enqueue("execute", workflow_id=workflow.id, payload={"input": {"amount": 2}},
                            run_at=now - timedelta(minutes=5))

    first = await service.process_pending(limit=1, now=now)
    second = await service.process_pending(limit=1, now=now)

    assert [r["id"] for r in first] == [str(early.id)]
    assert [r["id"] for r in second] == [str(late.id)]
    assert await service.process_pending(now=now) == []


@pytest.mark.asyncio
async def test_failed_item_records_error(db, service, make_workflow):
    workflow = make_workflow(STEPS, is_active=False)
    item = service.enqueue("execute", workflow_id=workflow.id)

    results = await service.process_pending()

    assert results == [{"id": str(item.id), "status": QueueItemStatus.FAILED.value, "error": "Workflow is not active"}]
    db.refresh(item)
    assert item.status == QueueItemStatus.FAILED.value
    assert item.last_error == "Workflow is not active"
    # failed items are not retried by the sweep
    assert await service.process_pending() == []


@pytest.mark.asyncio
async def test_bad_item_does_not_stop_batch(db, service, make_workflow):
    workflow = make_workflow(STEPS)
    now = utc_now()
    bad = service.enqueue("execute", workflow_id=workflow.id, payload={"input": ["x"]},
                          run_at=now - timedelta(minutes=2))
    good = service.enqueue("execute", workflow_id=workflow.id, payload={"input": {"amount": 3}},
                           run_at=now - timedelta(minutes=1))

    results = await service.process_pending(now=now)

    assert [r["status"] for r in results] == [QueueItemStatus.FAILED.value, QueueItemStatus.COMPLETED.value]
    db.refresh(bad)
    db.refresh(good)
    assert bad.status == QueueItemStatus.FAILED.value
    assert bad.last_error == "Workflow input must be an object, got list"
    assert good.status == QueueItemStatus.COMPLETED.value


@pytest.mark.asyncio
async def test_unexpected_error_marks_item_failed(db, service, make_workflow, monkeypatch):
    workflow = make_workflow(STEPS)
    item = service.enqueue("execute", workflow_id=workflow.id, payload={"input": {"amount": 1}})

    async def explode(self, *args, **kwargs):
        raise RuntimeError("disk on fire")

    monkeypatch.setattr(WorkflowEngine, "execute_workflow", explode)

    results = await service.process_pending()

    assert results == [{"id": str(item.id), "status": QueueItemStatus.FAILED.value, "error": "disk on fire"}]
    db.refresh(item)
    assert item.status == QueueItemStatus.FAILED.value
    assert item.last_error == "disk on fire"


@pytest.mark.asyncio
async def test_process_record(service, make_workflow):
    workflow = make_workflow(STEPS)
    item = service.enqueue("execute", workflow_id=workflow.id, payload={"input": {"amount": 1}},
                           run_at=utc_now() + timedelta(days=1))

    result = await service.process_record(item.id)

    assert result["status"] == QueueItemStatus.COMPLETED.value
    with pytest.raises(ValueError, match="is not pending"):
        await service.process_record(item.id)
    with pytest.raises(ValueError, match="not found"):
        await service.process_record(uuid4())


@pytest.mark.asyncio
async def test_stale_resume_is_noop(db, service, engine, make_workflow):
    workflow = make_workflow([{"id": "w", "type": "wait", "config": {"event": "contract.signed"}}])
    instance = await engine.execute_workflow(workflow.id, {})
    item = service.enqueue("resume", instance_id=instance.id, payload={"stepId": "elsewhere", "result": {}})

    results = await service.process_pending()

    assert results == [{"id": str(item.id), "resumed": False, "status": QueueItemStatus.COMPLETED.value}]
    db.refresh(instance)
    assert instance.status == WorkflowStatus.PAUSED.value


@pytest.mark.asyncio
async def test_resume_of_finished_instance_is_noop(db, service, engine, make_workflow):
    workflow = make_workflow([{"id": "w", "type": "wait", "config": {"event": "contract.signed"}}])
    instance = await engine.execute_workflow(workflow.id, {})
    await engine.resume_instance(instance.id, {})
    item = service.enqueue("resume", instance_id=instance.id, payload={"stepId": "w"})

    result = await service.process_record(item.id)

    assert result["resumed"] is False
    assert result["status"] == QueueItemStatus.COMPLETED.value


@pytest.mark.asyncio
async def test_resume_item_resumes_instance(db, service, engine, make_workflow):
    workflow = make_workflow([
        {"id": "w", "type": "wait", "config": {"event": "contract.signed"}},
        {"id": "after", "type": "transform", "config": {"transformation": "steps.w.note"}},
    ])
    instance = await engine.execute_workflow(workflow.id, {})
    service.enqueue("resume", instance_id=instance.id, payload={"stepId": "w", "result": {"note": "late"}})

    await service.process_pending()

    db.refresh(instance)
    assert instance.status == WorkflowStatus.COMPLETED.value
    assert instance.output_data["after"] == {"transformed": "late"}


def test_list_and_cancel_for_instance(db, service, make_workflow):
    workflow = make_workflow(STEPS)
    instance = WorkflowInstance(workflow_id=workflow.id, status=WorkflowStatus.PAUSED.value, context={})
    db.add(instance)
    db.commit()
    service.enqueue("resume", instance_id=instance.id, run_at=utc_now() + timedelta(hours=1))
    service.enqueue("resume", instance_id=instance.id, run_at=utc_now() + timedelta(hours=2))

    assert len(service.list_items(status=QueueItemStatus.PENDING.value)) == 2
    assert service.cancel_for_instance(instance.id) == 2
    assert service.list_items(status=QueueItemStatus.PENDING.value) == []
    assert len(service.list_items(status=QueueItemStatus.CANCELLED.value)) == 2
