"""
Tests for the workflow service and template seeding
"""
from uuid import uuid4

import pytest

from bizflow.models.workflow import (WorkflowInstance, WorkflowSchedule,
                                     WorkflowStatus, WorkflowTemplate)
from bizflow.services.schedule_service import ScheduleService
from bizflow.services.workflow_service import (WorkflowService,
                                               seed_official_templates)
from bizflow.workflow.errors import InvalidDefinitionError
from bizflow.workflow.templates import OFFICIAL_TEMPLATES

STEPS = [{"id": "a", "type": "transform", "config": {"transformation": "1 + 1"}}]


@pytest.fixture
def service(db, engine_factory):
    return WorkflowService(db)


def test_create_workflow_normalizes_definition(service):
    workflow = service.create_workflow(
        name="Onboarding",
        description="Welcome new clients",
        definition={
            "trigger": {"type": "event", "event": "client.created"},
            "steps": [{"id": "a", "type": "email", "on_error": "continue", "config": {"to": "x@y.test"}}],
        },
        tenant_id="acme",
        created_by="ann",
    )

    assert workflow.id is not None
    assert workflow.version == 1
    assert workflow.is_active is True
    assert workflow.execution_count == 0
    assert workflow.trigger_config == {"type": "event", "event": "client.created", "config": {}}
    assert workflow.definition["steps"][0]["onError"] == "continue"
    assert workflow.to_dict()["tenant_id"] == "acme"


def test_create_workflow_invalid_definition(db, service):
    with pytest.raises(InvalidDefinitionError):
        service.create_workflow(name="Broken", definition={"steps": []})
    assert service.list_workflows() == []


def test_get_and_list_workflows(service):
    first = service.create_workflow(name="First", definition={"steps": STEPS}, tenant_id="acme")
    second = service.create_workflow(name="Second", definition={"steps": STEPS}, is_active=False)

    assert service.get_workflow(first.id).name == "First"
    assert service.get_workflow(str(first.id)).name == "First"
    assert service.get_workflow(uuid4()) is None

    assert {w.id for w in service.list_workflows()} == {first.id, second.id}
    assert [w.id for w in service.list_workflows(is_active=True)] == [first.id]
    assert [w.id for w in service.list_workflows(tenant_id="acme")] == [first.id]
    assert service.list_workflows(is_template=True) == []


def test_invalid_id_is_value_error(service):
    with pytest.raises(ValueError, match="Invalid id"):
        service.get_workflow("not-a-uuid")


def test_update_workflow(service):
    workflow = service.create_workflow(name="Old", definition={"steps": STEPS})

    updated = service.update_workflow(workflow.id, name="New", is_active=False)
    assert updated.name == "New"
    assert updated.is_active is False
    assert updated.version == 1

    updated = service.update_workflow(workflow.id, definition={
        "trigger": {"type": "event", "event": "invoice.paid"},
        "steps": STEPS,
    })
    assert updated.version == 2
    assert updated.trigger_config["event"] == "invoice.paid"


def test_update_workflow_errors(service):
    workflow = service.create_workflow(name="Old", definition={"steps": STEPS})
    with pytest.raises(ValueError, match="not found"):
        service.update_workflow(uuid4(), name="x")
    with pytest.raises(InvalidDefinitionError):
        service.update_workflow(workflow.id, definition={"steps": [{"id": "a"}]})
    assert service.get_workflow(workflow.id).version == 1


@pytest.mark.asyncio
async def test_delete_workflow_cascades(db, service):
    workflow = service.create_workflow(name="Doomed", definition={"steps": STEPS})
    await service.execute_workflow(workflow.id, {})
    ScheduleService(db).create_schedule(workflow.id, "daily", {"hour": 9})

    assert service.delete_workflow(workflow.id) is True
    assert service.delete_workflow(workflow.id) is False
    assert db.query(WorkflowInstance).count() == 0
    assert db.query(WorkflowSchedule).count() == 0


@pytest.mark.asyncio
async def test_execute_and_query_instances(service):
    workflow = service.create_workflow(name="Run me", definition={"steps": STEPS})

    instance = await service.execute_workflow(workflow.id, {"x": 1}, tenant_id="acme")

    assert instance.status == WorkflowStatus.COMPLETED.value
    assert instance.context["triggeredBy"] == {"type": "manual"}
    assert service.get_instance(instance.id).id == instance.id
    assert [i.id for i in service.list_instances(workflow_id=workflow.id)] == [instance.id]
    assert service.list_instances(status=WorkflowStatus.FAILED.value) == []
    assert len(service.list_instances(tenant_id="acme", limit=5)) == 1
    assert [log.step_id for log in service.get_step_logs(instance.id)] == ["a"]


@pytest.mark.asyncio
async def test_cancel_instance(service):
    workflow = service.create_workflow(
        name="Waiter",
        definition={"steps": [{"id": "w", "type": "wait", "config": {"event": "contract.signed"}}]},
    )
    instance = await service.execute_workflow(workflow.id, {})

    cancelled = await service.cancel_instance(instance.id)

    assert cancelled.status == WorkflowStatus.CANCELLED.value


@pytest.mark.asyncio
async def test_statistics(service):
    workflow = service.create_workflow(name="Stats", definition={"steps": STEPS})
    await service.execute_workflow(workflow.id, {})

    assert service.get_statistics()["totalRuns"] == 1
    assert service.get_statistics(workflow.id)["successfulRuns"] == 1


def test_seed_official_templates_is_idempotent(db):
    assert seed_official_templates(db) == len(OFFICIAL_TEMPLATES)
    assert seed_official_templates(db) == 0

    templates = db.query(WorkflowTemplate).all()
    assert len(templates) == len(OFFICIAL_TEMPLATES)
    assert all(t.is_official for t in templates)


def test_templates_by_category_and_instantiate(db, service):
    seed_official_templates(db)

    sales = service.get_templates(category="Sales")
    assert {t.name for t in sales} == {"Client Onboarding", "Lead Qualification"}

    template = [t for t in sales if t.name == "Client Onboarding"][0]
    workflow = service.create_from_template(template.id, "Acme onboarding", tenant_id="acme", created_by="ann")

    assert workflow.name == "Acme onboarding"
    assert workflow.tenant_id == "acme"
    assert workflow.definition == template.definition
    assert workflow.trigger_config["event"] == "client.created"
    db.refresh(template)
    assert template.usage_count == 1
    # most used first
    assert service.get_templates(category="Sales")[0].id == template.id


def test_instantiate_unknown_template(service):
    with pytest.raises(ValueError, match="Template not found"):
        service.create_from_template(uuid4(), "x")


def test_official_templates_are_valid(db):
    from bizflow.workflow.definition import parse_definition

    for template in OFFICIAL_TEMPLATES:
        definition = parse_definition(template["definition"])
        assert definition.trigger is not None
        assert definition.steps
