"""
Workflow definition model and validation.
Definitions are stored as camelCase JSON; both camelCase and snake_case are accepted on input.
"""
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from bizflow.workflow.errors import InvalidDefinitionError


class StepType(str, Enum):
    """Built-in step types"""
    EMAIL = "email"
    ACTION = "action"
    MEETING = "meeting"
    WAIT = "wait"
    CONDITION = "condition"
    LOOP = "loop"
    AI_DECISION = "ai_decision"
    WEBHOOK = "webhook"
    NOTIFICATION = "notification"
    APPROVAL = "approval"
    TRANSFORM = "transform"


class OnError(str, Enum):
    """What to do when a step fails"""
    STOP = "stop"
    CONTINUE = "continue"
    RETRY = "retry"


class TriggerType(str, Enum):
    """How a workflow gets started"""
    EVENT = "event"
    SCHEDULE = "schedule"
    MANUAL = "manual"
    WEBHOOK = "webhook"


class _DefinitionModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")


class RetryConfig(_DefinitionModel):
    max_retries: int = Field(default=3, ge=0, alias="maxRetries")
    delay_ms: int = Field(default=1000, ge=0, alias="delayMs")


class WorkflowStep(_DefinitionModel):
    id: str = Field(..., min_length=1)
    name: Optional[str] = None
    # Plain string so custom executor types can be used
    type: str = Field(..., min_length=1)
    config: Dict[str, Any] = Field(default_factory=dict)
    condition: Optional[str] = None
    on_error: OnError = Field(default=OnError.STOP, alias="onError")
    retry_config: Optional[RetryConfig] = Field(default=None, alias="retryConfig")

    @property
    def display_name(self) -> str:
        return self.name or self.id


class WorkflowTrigger(_DefinitionModel):
    type: TriggerType
    event: Optional[str] = None
    schedule: Optional[str] = None
    config: Dict[str, Any] = Field(default_factory=dict)


class WorkflowDefinition(_DefinitionModel):
    name: Optional[str] = None
    description: Optional[str] = None
    trigger: Optional[WorkflowTrigger] = None
    steps: List[WorkflowStep] = Field(default_factory=list)
    variables: Dict[str, Any] = Field(default_factory=dict)

    def get_step(self, step_id: str) -> Optional[WorkflowStep]:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def step_index(self, step_id: str) -> int:
        for index, step in enumerate(self.steps):
            if step.id == step_id:
                return index
        return -1

    def to_json(self) -> Dict[str, Any]:
        """Wire form (camelCase, no nulls)"""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def _validate_steps(steps: Iterable[WorkflowStep], where: str) -> None:
    steps = list(steps)
    if not steps:
        raise InvalidDefinitionError(f"{where} must contain at least one step")

    seen = set()
    for step in steps:
        if step.id in seen:
            raise InvalidDefinitionError(f"Duplicate step id '{step.id}' in {where}")
        seen.add(step.id)

    for step in steps:
        if step.type == StepType.CONDITION.value:
            for key in ("thenSteps", "elseSteps"):
                targets = step.config.get(key) or []
                if not isinstance(targets, list):
                    raise InvalidDefinitionError(f"Step '{step.id}': {key} must be a list of step ids")
                unknown = [target for target in targets if target not in seen]
                if unknown:
                    raise InvalidDefinitionError(
                        f"Step '{step.id}': {key} references unknown step(s): {', '.join(map(str, unknown))}"
                    )
        elif step.type == StepType.LOOP.value and step.config.get("steps") is not None:
            nested = step.config["steps"]
            if not isinstance(nested, list):
                raise InvalidDefinitionError(f"Step '{step.id}': loop steps must be a list")
            _validate_steps(parse_steps(nested, f"loop '{step.id}'"), f"loop '{step.id}'")


def parse_steps(data: List[Any], where: str = "workflow") -> List[WorkflowStep]:
    """Parse a raw step list (used for loop bodies)"""
    try:
        return [WorkflowStep.model_validate(item) for item in data]
    except ValidationError as e:
        raise InvalidDefinitionError(f"Invalid step in {where}: {e}") from e


def parse_definition(data: Any) -> WorkflowDefinition:
    """
    Parse and validate a workflow definition.

    Raises:
        InvalidDefinitionError: if the definition is malformed
    """
    if isinstance(data, WorkflowDefinition):
        definition = data
    else:
        if not isinstance(data, dict):
            raise InvalidDefinitionError("Workflow definition must be an object")
        try:
            definition = WorkflowDefinition.model_validate(data)
        except ValidationError as e:
            raise InvalidDefinitionError(f"Invalid workflow definition: {e}") from e

    _validate_steps(definition.steps, "workflow")

    trigger = definition.trigger
    if trigger is not None and trigger.type == TriggerType.EVENT and not trigger.event:
        raise InvalidDefinitionError("Event trigger requires an 'event' name")

    return definition
