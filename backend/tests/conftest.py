"""
Pytest configuration and fixtures
"""
import json
import os
import sys
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx
import pytest

# Add backend directory to path for imports
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

# Settings are cached on first use, so the test environment goes in before any bizflow import
_test_db_dir = tempfile.mkdtemp(prefix="bizflow-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{Path(_test_db_dir) / 'test.db'}"
os.environ["ENABLE_SCHEDULER"] = "false"
os.environ["EMAIL_PROVIDER"] = "log"
os.environ["AI_PROVIDER"] = "none"
os.environ["LOG_FORMAT"] = "text"
os.environ["WORKFLOW_DEFAULT_RETRY_DELAY_MS"] = "0"

from sqlalchemy.orm import Session  # noqa: E402

from bizflow.core.database import Base, get_engine, get_session_local  # noqa: E402
from bizflow.services.event_bus import get_event_bus, reset_event_bus  # noqa: E402
from bizflow.services.workflow_service import WorkflowService  # noqa: E402
from bizflow.workflow.engine import (EngineFactory,  # noqa: E402
                                     install_workflow_triggers,
                                     set_engine_factory)


class FakeEmailSender:
    """Records emails instead of sending them"""

    def __init__(self):
        self.sent: List[Dict[str, Any]] = []

    async def send(self, to, subject, body, template=None):
        self.sent.append({"to": to, "subject": subject, "body": body, "template": template})
        return {"provider": "fake", "messageId": f"fake-{len(self.sent)}"}


class FakeAIClient:
    """Returns a canned completion, or raises when `error` is set"""

    def __init__(self, text: str = "", error: Optional[Exception] = None):
        self.text = text
        self.error = error
        self.prompts: List[str] = []

    async def generate_text(self, prompt, max_tokens=None):
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.text


class WebhookRecorder:
    """httpx.MockTransport handler that records requests and replies with a canned response"""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.status_code = 200
        self.response_json: Any = {"ok": True}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, json=self.response_json)

    def client_factory(self):
        return httpx.AsyncClient(transport=httpx.MockTransport(self))

    @property
    def last_json(self):
        return json.loads(self.requests[-1].content) if self.requests[-1].content else None


@pytest.fixture(scope="function")
def db() -> Session:
    """Create a database session on a clean schema"""
    import bizflow.models  # noqa: F401

    engine = get_engine()
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)

    session = get_session_local()()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def email_sender() -> FakeEmailSender:
    return FakeEmailSender()


@pytest.fixture
def ai_client() -> FakeAIClient:
    return FakeAIClient()


@pytest.fixture
def webhook() -> WebhookRecorder:
    return WebhookRecorder()


@pytest.fixture
def engine_factory(email_sender, ai_client, webhook):
    """Global engine factory wired to fakes, with workflow triggers on a fresh event bus"""
    reset_event_bus()
    bus = get_event_bus()
    factory = EngineFactory(
        event_bus=bus,
        email_sender=email_sender,
        ai_client=ai_client,
        http_client_factory=webhook.client_factory,
    )
    install_workflow_triggers(bus, factory)
    set_engine_factory(factory)
    yield factory
    set_engine_factory(None)
    reset_event_bus()


@pytest.fixture
def event_bus(engine_factory):
    return engine_factory.event_bus


@pytest.fixture
def engine(db, engine_factory):
    """Workflow engine bound to the test session"""
    return engine_factory(db)


@pytest.fixture
def make_workflow(db, engine_factory):
    """Create a workflow from a list of steps"""

    def _make(steps, name="Test workflow", trigger=None, variables=None, tenant_id=None, is_active=True):
        definition: Dict[str, Any] = {"steps": steps}
        if trigger is not None:
            definition["trigger"] = trigger
        if variables is not None:
            definition["variables"] = variables
        return WorkflowService(db).create_workflow(
            name=name,
            definition=definition,
            tenant_id=tenant_id,
            is_active=is_active,
        )

    return _make


@pytest.fixture
def client(db, engine_factory):
    """Test client sharing the test session"""
    from fastapi.testclient import TestClient

    from bizflow.core.database import get_db
    from bizflow.main import app

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()

