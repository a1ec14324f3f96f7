"""
Step executors, one per step type.

An executor is ``async def executor(step, context) -> result``. It receives the parsed
step and the running WorkflowContext (variables, prior step results and the services
it may use) and returns a JSON-serializable result stored under ``step_results[step.id]``.
Executors that must wait outside the request (long waits, event waits, approvals)
raise StepSuspended.
"""
import asyncio
import json
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional
from uuid import UUID

import httpx
from sqlalchemy.orm import Session

from bizflow.core.config import Settings, get_settings
from bizflow.core.logging_config import LoggingConfig
from bizflow.integrations.ai_client import AIClient
from bizflow.integrations.email_sender import EmailSender
from bizflow.models.approval import ApprovalRequest, ApprovalRequestStatus
from bizflow.models.event import EventTypes
from bizflow.utils.datetime_utils import to_jsonable, utc_now, utc_now_iso
from bizflow.workflow.actions import ActionRegistry, default_action_registry
from bizflow.workflow.definition import OnError, StepType, WorkflowStep, parse_steps
from bizflow.workflow.errors import StepExecutionError, StepSuspended
from bizflow.workflow.expressions import (evaluate_condition,
                                          evaluate_expression, parse_duration,
                                          replace_variables)

logger = LoggingConfig.get_logger(__name__)

EVENT_SOURCE = "workflow_engine"

StepExecutor = Callable[[WorkflowStep, "WorkflowContext"], Awaitable[Any]]


@dataclass
class StepServices:
    """Dependencies available to executors"""
    db: Session
    event_bus: Any
    email_sender: EmailSender
    ai_client: AIClient
    actions: ActionRegistry
    settings: Settings
    http_client_factory: Callable[[], httpx.AsyncClient]

    @classmethod
    def create(cls, db: Session, event_bus: Any, **overrides) -> "StepServices":
        settings = overrides.pop("settings", None) or get_settings()
        return cls(
            db=db,
            event_bus=event_bus,
            email_sender=overrides.pop("email_sender", None) or EmailSender(settings),
            ai_client=overrides.pop("ai_client", None) or AIClient(settings),
            actions=overrides.pop("actions", None) or default_action_registry(),
            settings=settings,
            http_client_factory=overrides.pop("http_client_factory", None) or (
                lambda: httpx.AsyncClient(timeout=float(settings.webhook_timeout_seconds))
            ),
        )


@dataclass
class WorkflowContext:
    """Execution context of a running instance"""
    instance_id: str
    workflow_id: str
    services: StepServices
    registry: "ExecutorRegistry"
    tenant_id: Optional[str] = None
    variables: Dict[str, Any] = field(default_factory=dict)
    step_results: Dict[str, Any] = field(default_factory=dict)

    def interpolate(self, value: Any) -> Any:
        return replace_variables(value, self.variables, self.step_results)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "instanceId": self.instance_id,
            "workflowId": self.workflow_id,
            "tenantId": self.tenant_id,
            "variables": self.variables,
            "stepResults": self.step_results,
        }

    def child(self, extra_variables: Dict[str, Any], step_results: Dict[str, Any]) -> "WorkflowContext":
        return WorkflowContext(
            instance_id=self.instance_id,
            workflow_id=self.workflow_id,
            services=self.services,
            registry=self.registry,
            tenant_id=self.tenant_id,
            variables={**self.variables, **extra_variables},
            step_results=step_results,
        )

    async def publish(self, event_type: str, data: Dict[str, Any]) -> None:
        await self.services.event_bus.publish(
            self.services.db,
            event_type,
            EVENT_SOURCE,
            data,
            metadata={"instanceId": self.instance_id, "workflowId": self.workflow_id},
            tenant_id=self.tenant_id,
        )


class ExecutorRegistry:
    """Step executors by step type"""

    def __init__(self, executors: Optional[Dict[str, StepExecutor]] = None):
        self._executors: Dict[str, StepExecutor] = dict(executors or {})

    def register(self, step_type: str, executor: StepExecutor) -> None:
        self._executors[step_type] = executor

    def get(self, step_type: str) -> Optional[StepExecutor]:
        return self._executors.get(step_type)

    def types(self) -> List[str]:
        return sorted(self._executors)

    def __contains__(self, step_type: str) -> bool:
        return step_type in self._executors

    def copy(self) -> "ExecutorRegistry":
        return ExecutorRegistry(self._executors)


# ============================================
# Executors
# ============================================

async def email_executor(step: WorkflowStep, context: WorkflowContext) -> Dict[str, Any]:
    """Send an email through the configured provider"""
    config = step.config
    to = context.interpolate(config.get("to"))
    if not to:
        raise StepExecutionError(f"Email step '{step.id}' has no recipient")
    if isinstance(to, str) and "{{" in to:
        raise StepExecutionError(f"Email recipient could not be resolved: {to}")

    subject = context.interpolate(config.get("subject") or "Notification")
    body = context.interpolate(config.get("body") or "")
    template = config.get("template")

    logger.info(f"Sending email to {to} using template {template}", extra={"step_id": step.id})
    delivery = await context.services.email_sender.send(to, subject, body, template=template)

    result = {
        "sent": True,
        "to": to,
        "subject": subject,
        "body": body,
        "template": template,
        "provider": delivery.get("provider"),
    }
    if delivery.get("messageId"):
        result["messageId"] = delivery["messageId"]
    return result


async def action_executor(step: WorkflowStep, context: WorkflowContext) -> Dict[str, Any]:
    """Run a named business action"""
    action = step.config.get("action")
    if not action:
        raise StepExecutionError(f"Action step '{step.id}' has no action")
    params = context.interpolate(step.config.get("params") or {})
    logger.info(f"Executing action: {action}", extra={"step_id": step.id})
    return await context.services.actions.run(action, params, context)


async def meeting_executor(step: WorkflowStep, context: WorkflowContext) -> Dict[str, Any]:
    """Schedule a meeting and announce it on the event bus"""
    config = step.config
    scheduled_for = config.get("scheduledFor")
    result = {
        "meetingId": f"meet_{utc_now().strftime('%Y%m%d%H%M%S%f')}",
        "title": context.interpolate(config.get("title") or "Meeting"),
        "duration": config.get("duration") or 60,
        "participants": context.interpolate(config.get("participants") or []),
        "scheduledFor": (
            context.interpolate(scheduled_for) if scheduled_for
            else (utc_now() + timedelta(hours=24)).isoformat()
        ),
    }
    logger.info(f"Scheduling meeting: {result['title']}", extra={"step_id": step.id})
    await context.publish(EventTypes.MEETING_SCHEDULED, result)
    return result


async def wait_executor(step: WorkflowStep, context: WorkflowContext) -> Dict[str, Any]:
    """Wait for a duration or for an event"""
    config = step.config
    duration = config.get("duration")
    event = config.get("event")
    timeout = config.get("timeout")

    if duration:
        ms = parse_duration(context.interpolate(duration))
        if ms <= context.services.settings.workflow_max_inline_wait_ms:
            logger.debug(f"Waiting inline for {duration} ({ms}ms)", extra={"step_id": step.id})
            await asyncio.sleep(ms / 1000)
            return {"waited": duration}
        logger.info(f"Suspending for {duration} ({ms}ms)", extra={"step_id": step.id})
        raise StepSuspended(
            "wait",
            resume_at=utc_now() + timedelta(milliseconds=ms),
            resume_result={"waited": duration},
            details={"duration": duration},
        )

    if event:
        event_name = context.interpolate(event)
        resume_at = None
        resume_result = None
        if timeout:
            resume_at = utc_now() + timedelta(milliseconds=parse_duration(timeout))
            resume_result = {"waitedForEvent": event_name, "timedOut": True}
        logger.info(f"Waiting for event: {event_name}", extra={"step_id": step.id})
        raise StepSuspended(
            "event",
            resume_at=resume_at,
            waiting_for_event=event_name,
            resume_result=resume_result,
            details={"event": event_name, "timeout": timeout},
        )

    return {"waited": 0}


async def condition_executor(step: WorkflowStep, context: WorkflowContext) -> Dict[str, Any]:
    """Evaluate a branching condition; the engine skips the branch not taken"""
    condition = step.config.get("condition")
    if not condition:
        raise StepExecutionError(f"Condition step '{step.id}' has no condition")
    result = evaluate_condition(condition, context)
    logger.debug(f"Condition '{condition}' -> {result}", extra={"step_id": step.id})
    return {"conditionMet": result, "branch": "then" if result else "else"}


async def loop_executor(step: WorkflowStep, context: WorkflowContext) -> Dict[str, Any]:
    """Iterate over a list, optionally running nested steps per item"""
    config = step.config
    items = context.interpolate(config.get("items"))
    if not isinstance(items, list):
        raise StepExecutionError(
            f"Loop items must resolve to a list, got {type(items).__name__}"
        )

    max_iterations = config.get("maxIterations")
    if max_iterations is not None:
        items = items[:int(max_iterations)]

    item_variable = config.get("itemVariable")
    nested_steps = parse_steps(config["steps"], f"loop '{step.id}'") if config.get("steps") else []
    logger.debug(f"Looping over {len(items)} items", extra={"step_id": step.id})

    results: List[Dict[str, Any]] = []
    for index, item in enumerate(items):
        if not nested_steps:
            results.append({"item": item, "processed": True})
            continue

        extra = {"item": item, "index": index}
        if item_variable:
            extra[item_variable] = item
        iteration_results: Dict[str, Any] = {}
        iteration = context.child(extra, dict(context.step_results))

        for nested in nested_steps:
            if nested.condition and not evaluate_condition(nested.condition, iteration):
                continue
            executor = context.registry.get(nested.type)
            if executor is None:
                raise StepExecutionError(f"No executor found for step type: {nested.type}")
            try:
                value = await executor(nested, iteration)
            except StepSuspended:
                raise StepExecutionError(f"Step '{nested.id}' cannot suspend inside a loop") from None
            except Exception:
                if nested.on_error != OnError.CONTINUE:
                    raise
                logger.warning(f"Loop step {nested.id} failed on item {index}, continuing", exc_info=True)
                value = None
            iteration_results[nested.id] = value
            iteration.step_results[nested.id] = value

        results.append({"item": item, "index": index, "results": iteration_results})

    return {"iterations": len(results), "results": results}


AI_SYSTEM_PROMPT = """You are an AI decision engine for a professional Business OS.
Your task is to review the provided context and choose the most appropriate action from the allowed options.

ALLOWED OPTIONS:
{options}

CRITICAL INSTRUCTIONS:
- Return ONLY a JSON object with keys: "decision", "confidence", and "reasoning".
- "decision" must exactly match one of the ALLOWED OPTIONS.
- "confidence" should be a number between 0 and 1.
- "reasoning" should be a concise explanation (1-2 sentences).
- Do not provide any other text or explanation outside the JSON."""

LEAD_QUALIFICATION_PROMPT = """

LEAD QUALIFICATION CRITERIA (BANT):
- Budget: Does the lead have the financial capacity?
- Authority: Is the contact a decision-maker?
- Need: Is there a clear business problem we can solve?
- Timeline: Is there an urgency or defined timeframe?

Evaluate the lead context against these criteria to make your decision."""


def parse_ai_decision(text: str) -> Dict[str, Any]:
    """Strip markdown fences and parse the JSON decision object"""
    cleaned = text.replace("```json", "").replace("```", "").strip()
    result = json.loads(cleaned)
    if not isinstance(result, dict):
        raise ValueError("AI response is not a JSON object")
    return result


async def ai_decision_executor(step: WorkflowStep, context: WorkflowContext) -> Dict[str, Any]:
    """Ask the AI provider to pick one of the allowed options"""
    config = step.config
    options = config.get("options") or []
    decision_type = config.get("decisionType") or "general"

    system_prompt = AI_SYSTEM_PROMPT.format(
        options="\n".join(f"- {option}" for option in options) or "- default"
    )
    if decision_type == "lead_qualification":
        system_prompt += LEAD_QUALIFICATION_PROMPT

    user_prompt = (
        "CONTEXT VARIABLES:\n"
        f"{json.dumps(context.variables, indent=2, default=str)}\n\n"
        "DECISION PROMPT:\n"
        f"{context.interpolate(config.get('prompt') or '')}"
    )

    logger.info(f"Requesting AI decision (type: {decision_type})", extra={"step_id": step.id})
    try:
        text = await context.services.ai_client.generate_text(
            f"{system_prompt}\n\n{user_prompt}",
            max_tokens=context.services.settings.ai_max_tokens,
        )
        result = parse_ai_decision(text)
    except Exception as e:
        logger.error(f"AI decision failed, falling back to default option: {e}", extra={"step_id": step.id})
        return {
            "decision": options[0] if options else "error",
            "confidence": 0,
            "reasoning": f"AI failure: {e}. Falling back to default option.",
            "error": True,
        }

    decision = result.get("decision")
    if decision not in options:
        decision = options[0] if options else "unknown"

    return {
        "decision": decision,
        "confidence": result.get("confidence") or 0.5,
        "reasoning": result.get("reasoning") or "Decision reached via AI analysis.",
        "rawResponse": text,
    }


async def webhook_executor(step: WorkflowStep, context: WorkflowContext) -> Dict[str, Any]:
    """Call an external HTTP endpoint"""
    config = step.config
    url = context.interpolate(config.get("url"))
    if not url:
        raise StepExecutionError(f"Webhook step '{step.id}' has no url")
    method = str(config.get("method") or "POST").upper()
    headers = {"Content-Type": "application/json"}
    headers.update({str(k): str(v) for k, v in (context.interpolate(config.get("headers")) or {}).items()})
    body = context.interpolate(config.get("body"))

    logger.info(f"Calling webhook: {method} {url}", extra={"step_id": step.id})
    request_kwargs: Dict[str, Any] = {"headers": headers}
    if method not in ("GET", "HEAD", "DELETE") and body is not None:
        request_kwargs["content"] = json.dumps(to_jsonable(body))

    try:
        async with context.services.http_client_factory() as client:
            response = await client.request(method, url, **request_kwargs)
    except httpx.HTTPError as e:
        raise StepExecutionError(f"Webhook failed: {e}") from e

    try:
        data = response.json()
    except ValueError:
        data = response.text

    if config.get("failOnHttpError") and response.status_code >= 400:
        raise StepExecutionError(f"Webhook failed: HTTP {response.status_code}")

    return {"status": response.status_code, "data": data}


async def notification_executor(step: WorkflowStep, context: WorkflowContext) -> Dict[str, Any]:
    """Send an in-app notification (published as notification.sent)"""
    config = step.config
    notification = {
        "title": context.interpolate(config.get("title")),
        "message": context.interpolate(config.get("message")),
        "userId": context.interpolate(config.get("userId")),
        "type": config.get("type") or "info",
    }
    logger.info(f"Sending notification: {notification['title']}", extra={"step_id": step.id})
    await context.publish(EventTypes.NOTIFICATION_SENT, notification)
    return {"sent": True, **notification}


async def approval_executor(step: WorkflowStep, context: WorkflowContext) -> Dict[str, Any]:
    """Request a manual approval and suspend until it is decided"""
    config = step.config
    approvers = context.interpolate(config.get("approvers") or [])
    if isinstance(approvers, str):
        approvers = [approvers]
    message = context.interpolate(config.get("message"))

    if config.get("autoApprove"):
        return {
            "approved": True,
            "approvedBy": approvers[0] if approvers else "system",
            "approvedAt": utc_now_iso(),
        }

    settings = context.services.settings
    timeout_hours = config.get("timeoutHours") or settings.approval_timeout_hours
    db = context.services.db
    request = ApprovalRequest(
        instance_id=UUID(context.instance_id),
        step_id=step.id,
        approvers=approvers,
        message=message,
        request_data=to_jsonable({
            "stepName": step.display_name,
            "variables": context.variables,
            "continueOnReject": bool(config.get("continueOnReject")),
        }),
        status=ApprovalRequestStatus.PENDING.value,
        decision_timeout=utc_now() + timedelta(hours=float(timeout_hours)),
    )
    db.add(request)
    db.commit()
    db.refresh(request)

    logger.info(f"Requesting approval from: {approvers}", extra={"step_id": step.id, "approval_id": str(request.id)})
    await context.publish(EventTypes.APPROVAL_REQUESTED, {
        "approvalRequestId": str(request.id),
        "instanceId": context.instance_id,
        "stepId": step.id,
        "approvers": approvers,
        "message": message,
    })
    raise StepSuspended(
        "approval",
        details={"approvalRequestId": str(request.id), "approvers": approvers},
    )


async def transform_executor(step: WorkflowStep, context: WorkflowContext) -> Dict[str, Any]:
    """Evaluate a transformation expression"""
    transformation = step.config.get("transformation")
    return {"transformed": evaluate_expression(transformation, context)}


BUILTIN_EXECUTORS: Dict[str, StepExecutor] = {
    StepType.EMAIL.value: email_executor,
    StepType.ACTION.value: action_executor,
    StepType.MEETING.value: meeting_executor,
    StepType.WAIT.value: wait_executor,
    StepType.CONDITION.value: condition_executor,
    StepType.LOOP.value: loop_executor,
    StepType.AI_DECISION.value: ai_decision_executor,
    StepType.WEBHOOK.value: webhook_executor,
    StepType.NOTIFICATION.value: notification_executor,
    StepType.APPROVAL.value: approval_executor,
    StepType.TRANSFORM.value: transform_executor,
}


def default_registry() -> ExecutorRegistry:
    return ExecutorRegistry(BUILTIN_EXECUTORS)
