"""
Named business actions callable from action steps
"""
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List
from uuid import uuid4

from bizflow.core.logging_config import LoggingConfig
from bizflow.models.event import EventTypes
from bizflow.workflow.errors import UnknownActionError

if TYPE_CHECKING:
    from bizflow.workflow.executors import WorkflowContext

logger = LoggingConfig.get_logger(__name__)

ActionHandler = Callable[[Dict[str, Any], "WorkflowContext"], Awaitable[Dict[str, Any]]]

EVENT_SOURCE = "workflow_action"


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid4().hex[:12]}"


async def _publish(context: "WorkflowContext", event_type: str, data: Dict[str, Any]) -> None:
    services = context.services
    await services.event_bus.publish(
        services.db,
        event_type,
        EVENT_SOURCE,
        data,
        metadata={"instanceId": context.instance_id, "workflowId": context.workflow_id},
        tenant_id=context.tenant_id,
    )


async def create_project(params: Dict[str, Any], context: "WorkflowContext") -> Dict[str, Any]:
    project_id = _new_id("proj")
    logger.info(f"Creating project {params.get('name')}", extra={"project_id": project_id})
    await _publish(context, EventTypes.PROJECT_CREATED, {"projectId": project_id, **params})
    return {"projectId": project_id}


async def create_task(params: Dict[str, Any], context: "WorkflowContext") -> Dict[str, Any]:
    task_id = _new_id("task")
    logger.info(f"Creating task {params.get('title')}", extra={"task_id": task_id})
    await _publish(context, EventTypes.TASK_CREATED, {"taskId": task_id, **params})
    return {"taskId": task_id}


async def generate_invoice(params: Dict[str, Any], context: "WorkflowContext") -> Dict[str, Any]:
    invoice_id = _new_id("inv")
    logger.info(f"Generating invoice for project {params.get('projectId')}", extra={"invoice_id": invoice_id})
    await _publish(context, EventTypes.INVOICE_CREATED, {"invoiceId": invoice_id, **params})
    return {"invoiceId": invoice_id}


async def archive_project(params: Dict[str, Any], context: "WorkflowContext") -> Dict[str, Any]:
    logger.info(f"Archiving project {params.get('projectId')}")
    await _publish(context, EventTypes.PROJECT_ARCHIVED, dict(params))
    return {"archived": True}


async def activate_client_services(params: Dict[str, Any], context: "WorkflowContext") -> Dict[str, Any]:
    logger.info(f"Activating services for client {params.get('clientId')}")
    await _publish(context, EventTypes.CLIENT_ONBOARDED, dict(params))
    return {"activated": True}


class ActionRegistry:
    """Registry of action handlers by name"""

    def __init__(self):
        self._actions: Dict[str, ActionHandler] = {}

    def register(self, name: str, handler: ActionHandler) -> None:
        self._actions[name] = handler

    def names(self) -> List[str]:
        return sorted(self._actions)

    def __contains__(self, name: str) -> bool:
        return name in self._actions

    async def run(self, name: str, params: Dict[str, Any], context: "WorkflowContext") -> Dict[str, Any]:
        handler = self._actions.get(name)
        if handler is None:
            raise UnknownActionError(name)
        return await handler(params, context)


def default_action_registry() -> ActionRegistry:
    registry = ActionRegistry()
    registry.register("createProject", create_project)
    registry.register("createTask", create_task)
    registry.register("generateInvoice", generate_invoice)
    registry.register("archiveProject", archive_project)
    registry.register("activateClientServices", activate_client_services)
    return registry
