"""
Workflow service: CRUD for workflows, instance queries, templates and statistics
"""
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from bizflow.core.logging_config import LoggingConfig
from bizflow.models.workflow import (Workflow, WorkflowInstance,
                                     WorkflowStepLog, WorkflowTemplate)
from bizflow.workflow.definition import parse_definition
from bizflow.workflow.engine import EngineFactory, as_uuid, get_engine_factory
from bizflow.workflow.templates import OFFICIAL_TEMPLATES

logger = LoggingConfig.get_logger(__name__)

UPDATABLE_FIELDS = ("name", "description", "is_active", "is_template")


class WorkflowService:
    """Service for managing workflows and their instances"""

    def __init__(self, db: Session, engine_factory: Optional[EngineFactory] = None):
        self.db = db
        self._engine_factory = engine_factory

    @property
    def engine(self):
        return (self._engine_factory or get_engine_factory())(self.db)

    # ============================================
    # Workflows
    # ============================================

    def create_workflow(
        self,
        name: str,
        definition: Dict[str, Any],
        description: Optional[str] = None,
        is_active: bool = True,
        tenant_id: Optional[str] = None,
        created_by: Optional[str] = None,
        is_template: bool = False,
    ) -> Workflow:
        """
        Create a workflow.

        Raises:
            InvalidDefinitionError: if the definition is malformed
        """
        parsed = parse_definition(definition)
        stored = parsed.to_json()

        workflow = Workflow(
            name=name,
            description=description,
            definition=stored,
            trigger_config=stored.get("trigger"),
            is_active=is_active,
            is_template=is_template,
            tenant_id=tenant_id,
            created_by=created_by,
            version=1,
        )
        self.db.add(workflow)
        self.db.commit()
        self.db.refresh(workflow)

        logger.info(f"Created workflow '{name}'", extra={"workflow_id": str(workflow.id)})
        return workflow

    def get_workflow(self, workflow_id: Any) -> Optional[Workflow]:
        """Get workflow by ID"""
        return self.db.get(Workflow, as_uuid(workflow_id))

    def _require_workflow(self, workflow_id: Any) -> Workflow:
        workflow = self.get_workflow(workflow_id)
        if workflow is None:
            raise ValueError(f"Workflow {workflow_id} not found")
        return workflow

    def update_workflow(self, workflow_id: Any, **updates) -> Workflow:
        """
        Update a workflow. A new definition bumps the version and refreshes the trigger.

        Raises:
            ValueError: if the workflow does not exist
            InvalidDefinitionError: if the new definition is malformed
        """
        workflow = self._require_workflow(workflow_id)

        for field in UPDATABLE_FIELDS:
            if updates.get(field) is not None:
                setattr(workflow, field, updates[field])

        if updates.get("definition") is not None:
            stored = parse_definition(updates["definition"]).to_json()
            workflow.definition = stored
            workflow.trigger_config = stored.get("trigger")
            workflow.version = (workflow.version or 1) + 1

        self.db.commit()
        self.db.refresh(workflow)
        logger.info(f"Updated workflow '{workflow.name}' (v{workflow.version})", extra={"workflow_id": str(workflow.id)})
        return workflow

    def delete_workflow(self, workflow_id: Any) -> bool:
        """Delete a workflow and (by cascade) its instances and schedules"""
        workflow = self.get_workflow(workflow_id)
        if workflow is None:
            return False
        self.db.delete(workflow)
        self.db.commit()
        logger.info("Deleted workflow", extra={"workflow_id": str(workflow_id)})
        return True

    def list_workflows(
        self,
        is_active: Optional[bool] = None,
        is_template: Optional[bool] = None,
        tenant_id: Optional[str] = None,
    ) -> List[Workflow]:
        """List workflows, newest first"""
        query = self.db.query(Workflow)
        if is_active is not None:
            query = query.filter(Workflow.is_active == is_active)
        if is_template is not None:
            query = query.filter(Workflow.is_template == is_template)
        if tenant_id is not None:
            query = query.filter(Workflow.tenant_id == tenant_id)
        return query.order_by(Workflow.created_at.desc()).all()

    # ============================================
    # Execution and instances
    # ============================================

    async def execute_workflow(
        self,
        workflow_id: Any,
        input_data: Optional[Dict[str, Any]] = None,
        tenant_id: Optional[str] = None,
    ) -> WorkflowInstance:
        """Execute a workflow manually"""
        return await self.engine.execute_workflow(
            workflow_id,
            input_data,
            tenant_id=tenant_id,
            triggered_by={"type": "manual"},
        )

    def get_instance(self, instance_id: Any) -> Optional[WorkflowInstance]:
        """Get workflow instance by ID"""
        return self.db.get(WorkflowInstance, as_uuid(instance_id))

    def list_instances(
        self,
        workflow_id: Any = None,
        status: Optional[str] = None,
        limit: Optional[int] = None,
        tenant_id: Optional[str] = None,
    ) -> List[WorkflowInstance]:
        """List workflow instances, newest first"""
        query = self.db.query(WorkflowInstance)
        if workflow_id is not None:
            query = query.filter(WorkflowInstance.workflow_id == as_uuid(workflow_id))
        if status:
            query = query.filter(WorkflowInstance.status == status)
        if tenant_id is not None:
            query = query.filter(WorkflowInstance.tenant_id == tenant_id)
        query = query.order_by(WorkflowInstance.started_at.desc())
        if limit:
            query = query.limit(limit)
        return query.all()

    def get_step_logs(self, instance_id: Any) -> List[WorkflowStepLog]:
        """Step logs of an instance in execution order"""
        return (
            self.db.query(WorkflowStepLog)
            .filter(WorkflowStepLog.instance_id == as_uuid(instance_id))
            .order_by(WorkflowStepLog.started_at.asc())
            .all()
        )

    async def cancel_instance(self, instance_id: Any) -> WorkflowInstance:
        """Cancel a running or paused instance"""
        return await self.engine.cancel_instance(instance_id)

    # ============================================
    # Templates
    # ============================================

    def get_templates(self, category: Optional[str] = None) -> List[WorkflowTemplate]:
        """Templates, most used first"""
        query = self.db.query(WorkflowTemplate)
        if category:
            query = query.filter(WorkflowTemplate.category == category)
        return query.order_by(WorkflowTemplate.usage_count.desc(), WorkflowTemplate.name.asc()).all()

    def create_from_template(self, template_id: Any, name: str, tenant_id: Optional[str] = None,
                             created_by: Optional[str] = None) -> Workflow:
        """
        Create a workflow from a template.

        Raises:
            ValueError: if the template does not exist
        """
        template = self.db.get(WorkflowTemplate, as_uuid(template_id))
        if template is None:
            raise ValueError("Template not found")

        workflow = self.create_workflow(
            name=name,
            definition=template.definition,
            description=template.description,
            tenant_id=tenant_id,
            created_by=created_by,
        )
        template.usage_count = (template.usage_count or 0) + 1
        self.db.commit()
        return workflow

    # ============================================
    # Statistics
    # ============================================

    def get_statistics(self, workflow_id: Any = None) -> Dict[str, Any]:
        """Run statistics (zeros when nothing has run)"""
        return self.engine.get_statistics(workflow_id)


def seed_official_templates(db: Session) -> int:
    """Insert official templates that are not present yet (matched by name). Returns the number inserted."""
    existing = {name for (name,) in db.query(WorkflowTemplate.name).all()}
    inserted = 0
    for template in OFFICIAL_TEMPLATES:
        if template["name"] in existing:
            continue
        definition = parse_definition(template["definition"]).to_json()
        db.add(WorkflowTemplate(
            name=template["name"],
            category=template["category"],
            description=template["description"],
            icon=template["icon"],
            definition=definition,
            is_official=True,
        ))
        inserted += 1
    if inserted:
        db.commit()
        logger.info(f"Seeded {inserted} official workflow templates")
    return inserted
