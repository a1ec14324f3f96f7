"""
Tests for the workflow, instance and template API routes
"""
from uuid import uuid4

from bizflow.services.workflow_service import seed_official_templates

STEPS = [{"id": "double", "type": "transform", "config": {"transformation": "amount * 2"}}]
WAIT_STEPS = [
    {"id": "w", "type": "wait", "config": {"event": "contract.signed"}},
    {"id": "after", "type": "transform", "config": {"transformation": "steps.w.note"}},
]


def _create(client, steps=None, name="API workflow", headers=None, **extra):
    body = {"name": name, "definition": {"steps": steps or STEPS}}
    body.update(extra)
    response = client.post("/api/workflows/", json=body, headers=headers or {})
    assert response.status_code == 201, response.text
    return response.json()


def test_root_and_health(client):
    root = client.get("/").json()
    assert root["service"] == "BizFlow"
    assert root["docs"] == "/docs"

    health = client.get("/health").json()
    assert health["status"] == "healthy"
    assert health["service"] == "BizFlow"

    detailed = client.get("/health/detailed").json()
    assert detailed["components"]["database"]["status"] == "healthy"
    assert detailed["components"]["database"]["pausedInstances"] == 0
    assert "*" in detailed["components"]["event_bus"]["subscriptions"]
    assert detailed["components"]["integrations"]["scheduler_enabled"] is False


def test_metrics_endpoint(client):
    client.get("/health")

    response = client.get("/metrics")

    assert response.status_code == 200
    assert "http_requests_total" in response.text


def test_create_and_get_workflow(client):
    created = _create(client, headers={"X-Tenant-ID": "acme"}, description="Doubles amounts")

    assert created["version"] == 1
    assert created["tenant_id"] == "acme"
    assert created["trigger_config"] is None

    fetched = client.get(f"/api/workflows/{created['id']}").json()
    assert fetched["name"] == "API workflow"
    assert fetched["description"] == "Doubles amounts"


def test_create_invalid_workflow(client):
    response = client.post("/api/workflows/", json={"name": "Broken", "definition": {"steps": []}})
    assert response.status_code == 400

    response = client.post("/api/workflows/", json={"definition": {"steps": STEPS}})
    assert response.status_code == 422


def test_list_workflows_filters(client):
    active = _create(client, name="Active", headers={"X-Tenant-ID": "acme"})
    _create(client, name="Inactive", is_active=False)

    assert len(client.get("/api/workflows/").json()) == 2
    assert [w["id"] for w in client.get("/api/workflows/", params={"is_active": True}).json()] == [active["id"]]
    assert [w["id"] for w in client.get("/api/workflows/", headers={"X-Tenant-ID": "acme"}).json()] == [active["id"]]


def test_update_workflow(client):
    created = _create(client)

    response = client.patch(f"/api/workflows/{created['id']}", json={
        "name": "Renamed",
        "definition": {"trigger": {"type": "event", "event": "invoice.paid"}, "steps": STEPS},
    })

    assert response.status_code == 200
    updated = response.json()
    assert updated["name"] == "Renamed"
    assert updated["version"] == 2
    assert updated["trigger_config"]["event"] == "invoice.paid"

    bad = client.patch(f"/api/workflows/{created['id']}", json={"definition": {"steps": [{"id": "x"}]}})
    assert bad.status_code == 400
    assert client.patch(f"/api/workflows/{uuid4()}", json={"name": "x"}).status_code == 404


def test_delete_workflow(client):
    created = _create(client)

    response = client.delete(f"/api/workflows/{created['id']}")

    assert response.json() == {"status": "deleted", "workflow_id": created["id"]}
    assert client.get(f"/api/workflows/{created['id']}").status_code == 404
    assert client.delete(f"/api/workflows/{created['id']}").status_code == 404


def test_unknown_and_malformed_ids(client):
    assert client.get(f"/api/workflows/{uuid4()}").status_code == 404
    assert client.get("/api/workflows/not-a-uuid").status_code == 422


def test_execute_workflow(client):
    created = _create(client)

    response = client.post(f"/api/workflows/{created['id']}/execute", json={"input": {"amount": 4}},
                           headers={"X-Tenant-ID": "acme"})

    assert response.status_code == 200
    instance = response.json()
    assert instance["status"] == "completed"
    assert instance["output_data"] == {"double": {"transformed": 8}}
    assert instance["tenant_id"] == "acme"

    steps = client.get(f"/api/workflow-instances/{instance['id']}/steps").json()
    assert [(s["step_id"], s["status"]) for s in steps] == [("double", "completed")]

    instances = client.get(f"/api/workflows/{created['id']}/instances").json()
    assert [i["id"] for i in instances] == [instance["id"]]

    stats = client.get(f"/api/workflows/{created['id']}/statistics").json()
    assert stats["totalRuns"] == 1
    assert client.get("/api/workflows/statistics").json()["successfulRuns"] == 1


def test_execute_errors(client):
    inactive = _create(client, is_active=False)

    response = client.post(f"/api/workflows/{inactive['id']}/execute", json={"input": {}})
    assert response.status_code == 400
    assert response.json()["detail"] == "Workflow is not active"

    assert client.post(f"/api/workflows/{uuid4()}/execute", json={"input": {}}).status_code == 404


def test_instance_listing_and_lookup(client):
    created = _create(client, headers={"X-Tenant-ID": "acme"})
    client.post(f"/api/workflows/{created['id']}/execute", json={"input": {"amount": 1}},
                headers={"X-Tenant-ID": "acme"})

    listed = client.get("/api/workflow-instances/", params={"status": "completed"}).json()
    assert len(listed) == 1
    assert client.get("/api/workflow-instances/", params={"status": "failed"}).json() == []
    assert len(client.get("/api/workflow-instances/", headers={"X-Tenant-ID": "acme"}).json()) == 1

    assert client.get(f"/api/workflow-instances/{listed[0]['id']}").json()["status"] == "completed"
    assert client.get(f"/api/workflow-instances/{uuid4()}").status_code == 404
    assert client.get(f"/api/workflow-instances/{uuid4()}/steps").status_code == 404


def test_resume_instance(client):
    created = _create(client, steps=WAIT_STEPS)
    instance = client.post(f"/api/workflows/{created['id']}/execute", json={"input": {}}).json()
    assert instance["status"] == "paused"
    assert instance["waiting_for_event"] == "contract.signed"

    wrong_step = client.post(f"/api/workflow-instances/{instance['id']}/resume",
                             json={"result": {}, "step_id": "after"})
    assert wrong_step.status_code == 400

    response = client.post(f"/api/workflow-instances/{instance['id']}/resume",
                           json={"result": {"note": "signed"}, "step_id": "w"})

    assert response.status_code == 200
    resumed = response.json()
    assert resumed["status"] == "completed"
    assert resumed["output_data"]["after"] == {"transformed": "signed"}

    again = client.post(f"/api/workflow-instances/{instance['id']}/resume", json={})
    assert again.status_code == 400
    assert client.post(f"/api/workflow-instances/{uuid4()}/resume", json={}).status_code == 404


def test_cancel_instance(client):
    created = _create(client, steps=WAIT_STEPS)
    instance = client.post(f"/api/workflows/{created['id']}/execute", json={"input": {}}).json()

    response = client.post(f"/api/workflow-instances/{instance['id']}/cancel")

    assert response.status_code == 200
    assert response.json()["status"] == "cancelled"
    assert client.post(f"/api/workflow-instances/{instance['id']}/cancel").status_code == 400
    assert client.post(f"/api/workflow-instances/{uuid4()}/cancel").status_code == 404


def test_templates(db, client):
    seed_official_templates(db)

    templates = client.get("/api/workflow-templates/").json()
    assert templates
    sales = client.get("/api/workflow-templates/", params={"category": "Sales"}).json()
    assert {t["name"] for t in sales} == {"Client Onboarding", "Lead Qualification"}

    onboarding = [t for t in sales if t["name"] == "Client Onboarding"][0]
    response = client.post(f"/api/workflow-templates/{onboarding['id']}/instantiate",
                           json={"name": "Acme onboarding", "created_by": "ann"},
                           headers={"X-Tenant-ID": "acme"})

    assert response.status_code == 201
    workflow = response.json()
    assert workflow["name"] == "Acme onboarding"
    assert workflow["tenant_id"] == "acme"
    assert workflow["definition"] == onboarding["definition"]

    missing = client.post(f"/api/workflow-templates/{uuid4()}/instantiate", json={"name": "x"})
    assert missing.status_code == 404
    assert missing.json()["detail"] == "Template not found"
