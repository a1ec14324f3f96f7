"""
Workflow engine errors
"""
from datetime import datetime
from typing import Any, Dict, Optional


class WorkflowError(Exception):
    """Base class for workflow engine errors"""


class WorkflowNotFoundError(WorkflowError):
    """Workflow (or instance) does not exist"""

    def __init__(self, workflow_id: Any, kind: str = "Workflow"):
        self.workflow_id = workflow_id
        super().__init__(f"{kind} {workflow_id} not found")


class WorkflowInactiveError(WorkflowError):
    """Execution requested for an inactive workflow"""

    def __init__(self, workflow_id: Any):
        self.workflow_id = workflow_id
        super().__init__("Workflow is not active")


class InvalidDefinitionError(WorkflowError, ValueError):
    """Workflow definition failed validation"""


class InstanceStateError(WorkflowError, ValueError):
    """Operation not allowed in the instance's current status"""


class StepExecutionError(WorkflowError):
    """A step executor failed"""


class ExpressionError(WorkflowError, ValueError):
    """Expression, interpolation or duration could not be evaluated"""


class UnknownActionError(StepExecutionError):
    """Action step names an action that is not registered"""

    def __init__(self, action: str):
        self.action = action
        super().__init__(f"Unknown action: {action}")


class StepSuspended(Exception):
    """
    Raised by an executor to park the instance (wait, approval).
    Not a failure: the engine pauses the instance and resumes it later.
    """

    def __init__(
        self,
        reason: str,
        resume_at: Optional[datetime] = None,
        waiting_for_event: Optional[str] = None,
        resume_result: Any = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.reason = reason
        self.resume_at = resume_at
        self.waiting_for_event = waiting_for_event
        # Result recorded for the step when the timed resume fires
        self.resume_result = resume_result
        self.details = details or {}
        super().__init__(reason)
