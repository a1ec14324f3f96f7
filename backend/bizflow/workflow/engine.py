"""
Workflow Engine - executes and manages workflow instances.

Steps of an instance run sequentially. After every step the instance's context
(variables, step results, skipped branch steps) is persisted, so a paused instance
can be resumed later from the step after the one that suspended it.
"""
import asyncio
import time
from typing import Any, Dict, List, Optional, Set
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from bizflow.core.config import Settings, get_settings
from bizflow.core.logging_config import LoggingConfig
from bizflow.core.metrics import (workflow_runs_total,
                                  workflow_step_duration_seconds,
                                  workflow_steps_total)
from bizflow.models.approval import ApprovalRequest, ApprovalRequestStatus
from bizflow.models.event import Event, EventTypes
from bizflow.models.workflow import (QueueItemKind, QueueItemStatus,
                                     StepStatus, Workflow, WorkflowInstance,
                                     WorkflowQueueItem, WorkflowStatus,
                                     WorkflowStepLog)
from bizflow.services.event_bus import EventBus, get_event_bus, matches_pattern
from bizflow.utils.datetime_utils import ensure_utc, to_jsonable, utc_now
from bizflow.workflow.definition import (OnError, StepType, TriggerType,
                                         WorkflowDefinition, WorkflowStep,
                                         parse_definition)
from bizflow.workflow.errors import (InstanceStateError, StepExecutionError,
                                     StepSuspended, WorkflowError,
                                     WorkflowInactiveError,
                                     WorkflowNotFoundError)
from bizflow.workflow.executors import (EVENT_SOURCE, ExecutorRegistry,
                                        StepExecutor, StepServices,
                                        WorkflowContext, default_registry)
from bizflow.workflow.expressions import evaluate_condition

logger = LoggingConfig.get_logger(__name__)


def as_uuid(value: Any) -> UUID:
    """Coerce an id (str or UUID) to UUID"""
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError as e:
        raise ValueError(f"Invalid id: {value}") from e


class WorkflowEngine:
    """Executes workflow definitions against a database session"""

    def __init__(
        self,
        db: Session,
        event_bus: Optional[EventBus] = None,
        registry: Optional[ExecutorRegistry] = None,
        services: Optional[StepServices] = None,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.settings = settings or (services.settings if services else get_settings())
        self.event_bus = event_bus or (services.event_bus if services else get_event_bus())
        self.registry = registry if registry is not None else default_registry()
        self.services = services or StepServices.create(db, self.event_bus, settings=self.settings)

    def register_executor(self, step_type: str, executor: StepExecutor) -> None:
        """Register (or override) the executor for a step type"""
        self.registry.register(step_type, executor)
        logger.info(f"Registered executor for step type: {step_type}")

    # ============================================
    # Execution
    # ============================================

    async def execute_workflow(
        self,
        workflow_id: Any,
        input_data: Optional[Dict[str, Any]] = None,
        tenant_id: Optional[str] = None,
        triggered_by: Optional[Dict[str, Any]] = None,
    ) -> WorkflowInstance:
        """
        Create an instance of a workflow and run it.

        Step failures do not raise: the returned instance carries status 'failed'
        and the error message.

        Raises:
            WorkflowNotFoundError: workflow does not exist
            WorkflowInactiveError: workflow is not active
            ValueError: input is not an object
        """
        workflow = self.db.get(Workflow, as_uuid(workflow_id))
        if workflow is None:
            raise WorkflowNotFoundError(workflow_id)
        if not workflow.is_active:
            raise WorkflowInactiveError(workflow_id)
        if input_data is not None and not isinstance(input_data, dict):
            raise ValueError(f"Workflow input must be an object, got {type(input_data).__name__}")

        definition = parse_definition(workflow.definition)
        input_data = to_jsonable(input_data or {})
        variables = {**definition.variables, **input_data}

        instance = WorkflowInstance(
            workflow_id=workflow.id,
            tenant_id=tenant_id or workflow.tenant_id,
            status=WorkflowStatus.PENDING.value,
            input_data=input_data,
            context={
                "variables": variables,
                "stepResults": {},
                "skippedSteps": [],
                "triggeredBy": to_jsonable(triggered_by) if triggered_by else None,
            },
            started_at=utc_now(),
        )
        self.db.add(instance)
        self.db.commit()
        self.db.refresh(instance)

        logger.info(
            f"Starting workflow '{workflow.name}'",
            extra={"workflow_id": str(workflow.id), "instance_id": str(instance.id)},
        )
        await self._publish(EventTypes.WORKFLOW_STARTED, instance, {
            "workflowName": workflow.name,
            "triggeredBy": triggered_by,
        })

        instance.status = WorkflowStatus.RUNNING.value
        self.db.commit()

        await self._run_steps(instance, workflow, definition, start_index=0)
        return instance

    async def _run_steps(
        self,
        instance: WorkflowInstance,
        workflow: Workflow,
        definition: WorkflowDefinition,
        start_index: int,
    ) -> None:
        with LoggingConfig.context(instance_id=str(instance.id), workflow_id=str(workflow.id),
                                   tenant_id=instance.tenant_id):
            await self._drive_steps(instance, workflow, definition, start_index)

    async def _drive_steps(
        self,
        instance: WorkflowInstance,
        workflow: Workflow,
        definition: WorkflowDefinition,
        start_index: int,
    ) -> None:
        state = dict(instance.context or {})
        context = WorkflowContext(
            instance_id=str(instance.id),
            workflow_id=str(workflow.id),
            services=self.services,
            registry=self.registry,
            tenant_id=instance.tenant_id,
            variables=dict(state.get("variables") or {}),
            step_results=dict(state.get("stepResults") or {}),
        )
        skipped: Set[str] = set(state.get("skippedSteps") or [])

        index = start_index
        step: Optional[WorkflowStep] = None
        try:
            for index in range(start_index, len(definition.steps)):
                step = definition.steps[index]

                self.db.refresh(instance, attribute_names=["status"])
                if instance.status == WorkflowStatus.CANCELLED.value:
                    logger.info("Instance cancelled, stopping", extra={"instance_id": context.instance_id})
                    return

                if step.id in skipped:
                    self._log_skipped(instance, step, "Branch not taken")
                    continue

                if step.condition and not evaluate_condition(step.condition, context):
                    self._log_skipped(instance, step, "Condition not met")
                    continue

                result = await self._execute_step(instance, step, context)
                context.step_results[step.id] = to_jsonable(result)

                if step.type == StepType.CONDITION.value and isinstance(result, dict):
                    not_taken = step.config.get("elseSteps" if result.get("conditionMet") else "thenSteps")
                    skipped.update(not_taken or [])

                instance.current_step = step.id
                instance.context = self._context_state(state, context, skipped)
                self.db.commit()
        except StepSuspended as signal:
            await self._suspend(instance, workflow, step, index, state, context, skipped, signal)
            return
        except Exception as e:
            if isinstance(e, SQLAlchemyError):
                self.db.rollback()
            logger.error(
                f"Workflow '{workflow.name}' failed at step {step.id if step else '?'}: {e}",
                extra={"instance_id": context.instance_id},
            )
            instance.context = self._context_state(state, context, skipped)
            await self._finish_failed(instance, workflow, str(e) or type(e).__name__)
            return

        self.db.refresh(instance, attribute_names=["status"])
        if instance.status == WorkflowStatus.CANCELLED.value:
            return
        await self._finish_completed(instance, workflow, state, context, skipped)

    async def _execute_step(self, instance: WorkflowInstance, step: WorkflowStep, context: WorkflowContext) -> Any:
        """Run one step with logging, timeout and the step's error policy"""
        executor = self.registry.get(step.type)
        timeout = self.settings.workflow_step_timeout_seconds

        max_retries = 0
        delay_ms = 0
        if step.on_error == OnError.RETRY:
            retry_config = step.retry_config
            max_retries = retry_config.max_retries if retry_config else self.settings.workflow_default_max_retries
            delay_ms = retry_config.delay_ms if retry_config else self.settings.workflow_default_retry_delay_ms

        attempt = 0
        while True:
            log = self._start_step_log(instance, step, context, attempt)
            start_time = time.time()
            try:
                if executor is None:
                    raise StepExecutionError(f"No executor found for step type: {step.type}")
                result = await asyncio.wait_for(executor(step, context), timeout=timeout)
            except StepSuspended as signal:
                log.output_data = to_jsonable({"suspended": signal.reason, **signal.details})
                self.db.commit()
                raise
            except asyncio.TimeoutError:
                error: Exception = StepExecutionError(f"Step {step.id} timed out after {timeout}s")
            except Exception as e:
                if isinstance(e, SQLAlchemyError):
                    self.db.rollback()
                error = e
            else:
                duration = time.time() - start_time
                self._finish_step_log(log, StepStatus.COMPLETED, duration, output=result)
                workflow_steps_total.labels(step_type=step.type, status="completed").inc()
                workflow_step_duration_seconds.labels(step_type=step.type).observe(duration)
                await self._publish(EventTypes.WORKFLOW_STEP_COMPLETED, instance, {
                    "stepId": step.id,
                    "stepType": step.type,
                    "result": result,
                })
                return result

            duration = time.time() - start_time
            message = str(error) or type(error).__name__
            self._finish_step_log(log, StepStatus.FAILED, duration, error=message)
            workflow_steps_total.labels(step_type=step.type, status="failed").inc()
            workflow_step_duration_seconds.labels(step_type=step.type).observe(duration)

            if step.on_error == OnError.CONTINUE:
                logger.warning(
                    f"Step {step.id} failed but continuing: {message}",
                    extra={"instance_id": context.instance_id},
                )
                return None

            if step.on_error == OnError.RETRY:
                if attempt < max_retries:
                    attempt += 1
                    logger.info(
                        f"Retrying step {step.id}, attempt {attempt}/{max_retries}",
                        extra={"instance_id": context.instance_id},
                    )
                    await asyncio.sleep(delay_ms / 1000)
                    continue
                raise StepExecutionError(
                    f"Step {step.id} failed after {max_retries} retries: {message}"
                ) from error

            raise error

    # ============================================
    # Step log
    # ============================================

    def _start_step_log(self, instance: WorkflowInstance, step: WorkflowStep,
                        context: WorkflowContext, attempt: int) -> WorkflowStepLog:
        log = WorkflowStepLog(
            instance_id=instance.id,
            step_id=step.id,
            step_name=step.display_name,
            step_type=step.type,
            input_data=to_jsonable(context.interpolate(step.config)),
            status=StepStatus.RUNNING.value,
            started_at=utc_now(),
            retry_count=attempt,
        )
        self.db.add(log)
        self.db.commit()
        return log

    def _finish_step_log(self, log: WorkflowStepLog, status: StepStatus, duration: float,
                         output: Any = None, error: Optional[str] = None) -> None:
        log.status = status.value
        log.completed_at = utc_now()
        log.execution_time_ms = int(duration * 1000)
        log.output_data = to_jsonable(output) if output is not None else None
        log.error_message = error
        self.db.commit()

    def _log_skipped(self, instance: WorkflowInstance, step: WorkflowStep, reason: str) -> None:
        now = utc_now()
        self.db.add(WorkflowStepLog(
            instance_id=instance.id,
            step_id=step.id,
            step_name=step.display_name,
            step_type=step.type,
            status=StepStatus.SKIPPED.value,
            output_data={"reason": reason},
            started_at=now,
            completed_at=now,
            execution_time_ms=0,
        ))
        self.db.commit()
        workflow_steps_total.labels(step_type=step.type, status="skipped").inc()
        logger.debug(f"Skipped step {step.id}: {reason}", extra={"instance_id": str(instance.id)})

    def _running_step_log(self, instance: WorkflowInstance, step_id: str) -> Optional[WorkflowStepLog]:
        return (
            self.db.query(WorkflowStepLog)
            .filter(
                WorkflowStepLog.instance_id == instance.id,
                WorkflowStepLog.step_id == step_id,
                WorkflowStepLog.status == StepStatus.RUNNING.value,
            )
            .order_by(WorkflowStepLog.started_at.desc())
            .first()
        )

    # ============================================
    # Instance state transitions
    # ============================================

    @staticmethod
    def _context_state(state: Dict[str, Any], context: WorkflowContext, skipped: Set[str]) -> Dict[str, Any]:
        new_state = dict(state)
        new_state["variables"] = to_jsonable(context.variables)
        new_state["stepResults"] = to_jsonable(context.step_results)
        new_state["skippedSteps"] = sorted(skipped)
        return new_state

    async def _finish_completed(self, instance: WorkflowInstance, workflow: Workflow, state: Dict[str, Any],
                                context: WorkflowContext, skipped: Set[str]) -> None:
        now = utc_now()
        instance.status = WorkflowStatus.COMPLETED.value
        instance.context = self._context_state(state, context, skipped)
        instance.output_data = to_jsonable(context.step_results)
        instance.completed_at = now
        instance.error_message = None
        workflow.execution_count = (workflow.execution_count or 0) + 1
        workflow.last_executed_at = now
        self.db.commit()

        workflow_runs_total.labels(status="completed").inc()
        logger.info(f"Workflow '{workflow.name}' completed", extra={"instance_id": str(instance.id)})
        await self._publish(EventTypes.WORKFLOW_COMPLETED, instance, {"output": instance.output_data})

    async def _finish_failed(self, instance: WorkflowInstance, workflow: Workflow, message: str) -> None:
        now = utc_now()
        instance.status = WorkflowStatus.FAILED.value
        instance.error_message = message
        instance.completed_at = now
        instance.waiting_for_event = None
        instance.resume_at = None
        workflow.execution_count = (workflow.execution_count or 0) + 1
        workflow.last_executed_at = now
        self.db.commit()

        workflow_runs_total.labels(status="failed").inc()
        await self._publish(EventTypes.WORKFLOW_FAILED, instance, {"error": message})

    async def _suspend(self, instance: WorkflowInstance, workflow: Workflow, step: WorkflowStep, index: int,
                       state: Dict[str, Any], context: WorkflowContext, skipped: Set[str],
                       signal: StepSuspended) -> None:
        new_state = self._context_state(state, context, skipped)
        new_state["resume"] = to_jsonable({
            "stepIndex": index,
            "stepId": step.id,
            "reason": signal.reason,
            "resumeResult": signal.resume_result,
            **signal.details,
        })
        instance.status = WorkflowStatus.PAUSED.value
        instance.current_step = step.id
        instance.context = new_state
        instance.waiting_for_event = signal.waiting_for_event
        instance.resume_at = signal.resume_at

        if signal.resume_at is not None:
            self.db.add(WorkflowQueueItem(
                kind=QueueItemKind.RESUME.value,
                workflow_id=workflow.id,
                instance_id=instance.id,
                payload=to_jsonable({"stepId": step.id, "result": signal.resume_result}),
                status=QueueItemStatus.PENDING.value,
                next_run_at=signal.resume_at,
            ))
        self.db.commit()

        workflow_runs_total.labels(status="paused").inc()
        logger.info(
            f"Workflow '{workflow.name}' paused at step {step.id} ({signal.reason})",
            extra={"instance_id": str(instance.id)},
        )
        await self._publish(EventTypes.WORKFLOW_PAUSED, instance, {
            "stepId": step.id,
            "reason": signal.reason,
            "waitingForEvent": signal.waiting_for_event,
            "resumeAt": signal.resume_at.isoformat() if signal.resume_at else None,
        })

    def _get_instance(self, instance_id: Any) -> WorkflowInstance:
        instance = self.db.get(WorkflowInstance, as_uuid(instance_id))
        if instance is None:
            raise WorkflowNotFoundError(instance_id, kind="Workflow instance")
        return instance

    def _cancel_pending_queue_items(self, instance: WorkflowInstance) -> int:
        return (
            self.db.query(WorkflowQueueItem)
            .filter(
                WorkflowQueueItem.instance_id == instance.id,
                WorkflowQueueItem.status == QueueItemStatus.PENDING.value,
            )
            .update({WorkflowQueueItem.status: QueueItemStatus.CANCELLED.value}, synchronize_session=False)
        )

    def _cancel_pending_approvals(self, instance: WorkflowInstance, step_id: Optional[str] = None) -> int:
        query = self.db.query(ApprovalRequest).filter(
            ApprovalRequest.instance_id == instance.id,
            ApprovalRequest.status == ApprovalRequestStatus.PENDING.value,
        )
        if step_id is not None:
            query = query.filter(ApprovalRequest.step_id == step_id)
        return query.update(
            {ApprovalRequest.status: ApprovalRequestStatus.CANCELLED.value},
            synchronize_session=False,
        )

    async def resume_instance(self, instance_id: Any, result: Any = None, step_id: Optional[str] = None) -> WorkflowInstance:
        """
        Resume a paused instance: record `result` for the suspended step and continue
        with the next step.

        Raises:
            WorkflowNotFoundError: instance does not exist
            InstanceStateError: instance is not paused, or paused at another step
        """
        instance = self._get_instance(instance_id)
        if instance.status != WorkflowStatus.PAUSED.value:
            raise InstanceStateError(f"Instance {instance.id} is not paused (status: {instance.status})")

        state = dict(instance.context or {})
        resume = state.get("resume") or {}
        suspended_step = resume.get("stepId")
        if step_id is not None and step_id != suspended_step:
            raise InstanceStateError(f"Instance {instance.id} is paused at step {suspended_step}, not {step_id}")

        workflow = instance.workflow
        definition = parse_definition(workflow.definition)
        index = definition.step_index(suspended_step) if suspended_step else -1
        if index < 0:
            raise InstanceStateError(f"Instance {instance.id} has no resumable step")

        result = to_jsonable(result)
        log = self._running_step_log(instance, suspended_step)
        if log is not None:
            duration = (utc_now() - ensure_utc(log.started_at)).total_seconds() if log.started_at else 0
            self._finish_step_log(log, StepStatus.COMPLETED, duration, output=result)
        else:
            step = definition.steps[index]
            now = utc_now()
            self.db.add(WorkflowStepLog(
                instance_id=instance.id, step_id=step.id, step_name=step.display_name, step_type=step.type,
                status=StepStatus.COMPLETED.value, output_data=result,
                started_at=now, completed_at=now, execution_time_ms=0,
            ))

        self._cancel_pending_queue_items(instance)
        self._cancel_pending_approvals(instance, suspended_step)

        state.pop("resume", None)
        step_results = dict(state.get("stepResults") or {})
        step_results[suspended_step] = result
        state["stepResults"] = step_results

        instance.context = state
        instance.status = WorkflowStatus.RUNNING.value
        instance.waiting_for_event = None
        instance.resume_at = None
        self.db.commit()

        logger.info(f"Resuming instance at step {suspended_step}", extra={"instance_id": str(instance.id)})
        suspended = definition.steps[index]
        await self._publish(EventTypes.WORKFLOW_STEP_COMPLETED, instance, {
            "stepId": suspended.id,
            "stepType": suspended.type,
            "result": result,
        })

        await self._run_steps(instance, workflow, definition, start_index=index + 1)
        return instance

    async def fail_suspended_instance(self, instance_id: Any, message: str) -> WorkflowInstance:
        """Fail a paused instance (rejected or expired approval, for example)"""
        instance = self._get_instance(instance_id)
        if instance.status != WorkflowStatus.PAUSED.value:
            raise InstanceStateError(f"Instance {instance.id} is not paused (status: {instance.status})")

        suspended_step = (instance.context or {}).get("resume", {}).get("stepId")
        if suspended_step:
            log = self._running_step_log(instance, suspended_step)
            if log is not None:
                duration = (utc_now() - ensure_utc(log.started_at)).total_seconds() if log.started_at else 0
                self._finish_step_log(log, StepStatus.FAILED, duration, error=message)
        self._cancel_pending_queue_items(instance)

        logger.info(f"Failing paused instance: {message}", extra={"instance_id": str(instance.id)})
        await self._finish_failed(instance, instance.workflow, message)
        return instance

    async def cancel_instance(self, instance_id: Any) -> WorkflowInstance:
        """
        Cancel a pending, running or paused instance.

        Raises:
            InstanceStateError: instance already finished
        """
        instance = self._get_instance(instance_id)
        if instance.is_final:
            raise InstanceStateError(f"Instance {instance.id} is already {instance.status}")

        instance.status = WorkflowStatus.CANCELLED.value
        instance.completed_at = utc_now()
        instance.waiting_for_event = None
        instance.resume_at = None
        self._cancel_pending_queue_items(instance)
        self._cancel_pending_approvals(instance)
        self.db.commit()

        workflow_runs_total.labels(status="cancelled").inc()
        logger.info("Workflow instance cancelled", extra={"instance_id": str(instance.id)})
        await self._publish(EventTypes.WORKFLOW_CANCELLED, instance, {})
        return instance

    # ============================================
    # Event triggers
    # ============================================

    @staticmethod
    def _tenant_matches(event_tenant: Optional[str], tenant_id: Optional[str]) -> bool:
        return not event_tenant or not tenant_id or event_tenant == tenant_id

    def get_workflows_by_trigger(self, event_type: str, tenant_id: Optional[str] = None) -> List[Workflow]:
        """Active workflows whose event trigger matches the event type"""
        workflows = (
            self.db.query(Workflow)
            .filter(Workflow.is_active.is_(True), Workflow.is_template.is_(False))
            .order_by(Workflow.created_at.asc())
            .all()
        )
        matching = []
        for workflow in workflows:
            trigger = workflow.trigger_config or {}
            if trigger.get("type") != TriggerType.EVENT.value or not trigger.get("event"):
                continue
            if not matches_pattern(event_type, trigger["event"]):
                continue
            if not self._tenant_matches(tenant_id, workflow.tenant_id):
                continue
            matching.append(workflow)
        return matching

    async def handle_event(self, event: Event) -> Dict[str, List[str]]:
        """
        Event bus handler: start workflows triggered by the event and resume
        instances waiting for it.
        """
        summary: Dict[str, List[str]] = {"triggered": [], "resumed": []}
        errors: List[str] = []

        for workflow in self.get_workflows_by_trigger(event.event_type, event.tenant_id):
            try:
                instance = await self.execute_workflow(
                    workflow.id,
                    event.event_data,
                    tenant_id=event.tenant_id or workflow.tenant_id,
                    triggered_by={"eventId": str(event.id), "eventType": event.event_type},
                )
            except WorkflowError as e:
                logger.error(f"Trigger of workflow {workflow.id} failed: {e}", extra={"event_id": str(event.id)})
                errors.append(str(e))
                continue
            summary["triggered"].append(str(instance.id))

        waiting = (
            self.db.query(WorkflowInstance)
            .filter(
                WorkflowInstance.status == WorkflowStatus.PAUSED.value,
                WorkflowInstance.waiting_for_event.isnot(None),
            )
            .order_by(WorkflowInstance.started_at.asc())
            .all()
        )
        for instance in waiting:
            if not matches_pattern(event.event_type, instance.waiting_for_event):
                continue
            if not self._tenant_matches(event.tenant_id, instance.tenant_id):
                continue
            try:
                await self.resume_instance(instance.id, {
                    "waitedForEvent": instance.waiting_for_event,
                    "eventId": str(event.id),
                    "eventData": event.event_data,
                })
            except WorkflowError as e:
                logger.error(f"Resume of instance {instance.id} failed: {e}", extra={"event_id": str(event.id)})
                errors.append(str(e))
                continue
            summary["resumed"].append(str(instance.id))

        if errors:
            raise WorkflowError("; ".join(errors))
        return summary

    # ============================================
    # Statistics
    # ============================================

    def get_statistics(self, workflow_id: Any = None) -> Dict[str, Any]:
        """Run statistics over finished (completed or failed) instances"""
        query = self.db.query(WorkflowInstance).filter(
            WorkflowInstance.status.in_([WorkflowStatus.COMPLETED.value, WorkflowStatus.FAILED.value])
        )
        if workflow_id is not None:
            query = query.filter(WorkflowInstance.workflow_id == as_uuid(workflow_id))
        instances = query.all()

        durations = [
            (ensure_utc(instance.completed_at) - ensure_utc(instance.started_at)).total_seconds() * 1000
            for instance in instances
            if instance.completed_at and instance.started_at
        ]
        return {
            "totalRuns": len(instances),
            "successfulRuns": sum(1 for i in instances if i.status == WorkflowStatus.COMPLETED.value),
            "failedRuns": sum(1 for i in instances if i.status == WorkflowStatus.FAILED.value),
            "avgExecutionTimeMs": round(sum(durations) / len(durations), 2) if durations else 0,
        }

    async def _publish(self, event_type: str, instance: WorkflowInstance, data: Dict[str, Any]) -> None:
        payload = {"instanceId": str(instance.id), "workflowId": str(instance.workflow_id)}
        payload.update(data)
        await self.event_bus.publish(
            self.db,
            event_type,
            EVENT_SOURCE,
            payload,
            tenant_id=instance.tenant_id,
        )


class EngineFactory:
    """
    Builds WorkflowEngine instances for a session with shared collaborators
    (event bus, executor registry, integrations).
    """

    def __init__(self, event_bus: Optional[EventBus] = None, registry: Optional[ExecutorRegistry] = None,
                 settings: Optional[Settings] = None, **service_overrides):
        self.event_bus = event_bus
        self.registry = registry if registry is not None else default_registry()
        self.settings = settings
        self.service_overrides = service_overrides

    def __call__(self, db: Session) -> WorkflowEngine:
        event_bus = self.event_bus or get_event_bus()
        settings = self.settings or get_settings()
        services = StepServices.create(db, event_bus, settings=settings, **dict(self.service_overrides))
        return WorkflowEngine(db, event_bus=event_bus, registry=self.registry, services=services, settings=settings)


_engine_factory: Optional[EngineFactory] = None


def get_engine_factory() -> EngineFactory:
    """Get global engine factory"""
    global _engine_factory
    if _engine_factory is None:
        _engine_factory = EngineFactory()
    return _engine_factory


def set_engine_factory(factory: Optional[EngineFactory]) -> None:
    """Replace the global engine factory (None restores the default)"""
    global _engine_factory
    _engine_factory = factory


def get_workflow_engine(db: Session) -> WorkflowEngine:
    """Engine for a session built by the global factory"""
    return get_engine_factory()(db)


def install_workflow_triggers(event_bus: EventBus, factory: Optional[EngineFactory] = None):
    """Subscribe the engine to all events; returns the unsubscribe callable"""

    async def handle(db: Session, event: Event) -> None:
        engine = (factory or get_engine_factory())(db)
        await engine.handle_event(event)

    return event_bus.subscribe("*", handle)
