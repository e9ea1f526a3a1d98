"""Execution Engine - the facade consumers (UI, API) talk to.

Wires the skill graph and config store, plan lifecycle, per-thread action
queues, audit log and event bus together. Execution errors never raise out
of the engine; they land on the action and step and are published on the
progress stream. Caller mistakes (unknown ids, illegal transitions, batch
limits) raise immediately without changing state.
"""

import logging
import uuid
from typing import Any

from opensesh.audit.log import AuditLog
from opensesh.config import Settings, get_settings
from opensesh.details import ActionDetails, SkillExecutionDetails, parse_action_details
from opensesh.errors import ActionNotFoundError
from opensesh.events import EventBus, EventTopic, Subscription
from opensesh.execution.executor import RoutingToolExecutor, ToolExecutor
from opensesh.execution.mapping import ACTION_RISKS, action_id_for_step
from opensesh.execution.mock import MockToolExecutor
from opensesh.execution.models import (
    ActionType,
    ConfirmationDecision,
    ConfirmationRequest,
    ExecutionAction,
    ExecutionMode,
    ExecutionProgress,
    ExecutionSettings,
)
from opensesh.execution.queue import ActionQueue
from opensesh.plans.lifecycle import PlanLifecycle
from opensesh.plans.models import Plan, PlanSchema, PlanStatus, PlanStepStatus, plan_from_payload
from opensesh.settings_store import SettingsStore
from opensesh.skills.config_store import SkillConfigStore
from opensesh.skills.graph import SkillGraph
from opensesh.skills.loader import build_skill_graph
from opensesh.skills.models import SkillRisk

logger = logging.getLogger(__name__)


class ExecutionEngine:
    def __init__(
        self,
        executor: ToolExecutor,
        settings_store: SettingsStore | None = None,
        skill_graph: SkillGraph | None = None,
        audit: AuditLog | None = None,
        bus: EventBus | None = None,
    ) -> None:
        self.executor = executor
        self.settings_store = settings_store or SettingsStore()
        self.bus = bus or EventBus()
        self.skills = SkillConfigStore(skill_graph or build_skill_graph(), self.settings_store)
        self.lifecycle = PlanLifecycle()
        self.audit = audit or AuditLog(self.settings_store, bus=self.bus)
        if self.audit.bus is None:
            self.audit.bus = self.bus
        self._queues: dict[str, ActionQueue] = {}

    # Queues

    def queue_for(self, thread_id: str) -> ActionQueue:
        queue = self._queues.get(thread_id)
        if queue is None:
            queue = ActionQueue(
                thread_id,
                executor=self.executor,
                settings_store=self.settings_store,
                lifecycle=self.lifecycle,
                audit=self.audit,
                bus=self.bus,
            )
            self._queues[thread_id] = queue
        return queue

    def _queue_with_action(self, action_id: str) -> ActionQueue:
        for queue in self._queues.values():
            if action_id in queue:
                return queue
        raise ActionNotFoundError(f"Action not found: {action_id}")

    # Plans

    def submit_plan(self, plan: Plan | PlanSchema | dict[str, Any], start: bool = True) -> Plan:
        """Adopt a materialized plan and, by default, start draining it."""
        if not isinstance(plan, Plan):
            plan = plan_from_payload(plan)
        self.queue_for(plan.thread_id).check_batch_size(len(plan.steps))
        self.lifecycle.register_plan(plan)
        if start:
            self.execute_plan(plan.id)
        return plan

    def execute_plan(self, plan_id: str) -> Plan:
        plan = self.lifecycle.get_plan(plan_id)
        queue = self.queue_for(plan.thread_id)
        queue.check_batch_size(len(plan.steps))
        self.lifecycle.start_execution(plan_id)
        if not plan.steps:
            return self.lifecycle.finish_execution(plan_id)
        queue.enqueue_plan(plan)
        return plan

    def approve_step(self, step_id: str, note: str | None = None) -> None:
        plan, step = self.lifecycle.find_step(step_id)
        queue = self.queue_for(plan.thread_id)
        action_id = action_id_for_step(step.id)
        if action_id in queue:
            queue.approve(action_id, note)
        else:
            self.lifecycle.approve_step(plan.id, step.id, note)

    def reject_step(self, step_id: str, note: str | None = None) -> None:
        plan, step = self.lifecycle.find_step(step_id)
        queue = self.queue_for(plan.thread_id)
        action_id = action_id_for_step(step.id)
        if action_id in queue:
            queue.reject(action_id, note)
        else:
            self.lifecycle.reject_step(plan.id, step.id, note)

    def approve_plan(self, plan_id: str) -> Plan:
        """Approve every pending step of the plan."""
        plan = self.lifecycle.get_plan(plan_id)
        if plan.status != PlanStatus.executing:
            return self.lifecycle.approve_plan(plan_id)
        queue = self.queue_for(plan.thread_id)
        for step in plan.steps:
            action_id = action_id_for_step(step.id)
            if step.status == PlanStepStatus.pending and not queue.prompt_answered(action_id):
                queue.approve(action_id)
        return plan

    def reject_plan(self, plan_id: str, note: str | None = None) -> Plan:
        plan = self.lifecycle.get_plan(plan_id)
        if plan.status != PlanStatus.executing:
            return self.lifecycle.reject_plan(plan_id, note)
        queue = self.queue_for(plan.thread_id)
        for step in plan.steps:
            action_id = action_id_for_step(step.id)
            if step.status in (PlanStepStatus.pending, PlanStepStatus.approved) and action_id in queue:
                if queue.prompt_answered(action_id):
                    continue
                queue.reject(action_id, note)
        return plan

    def cancel_plan(self, plan_id: str) -> Plan:
        plan = self.lifecycle.get_plan(plan_id)
        queue = self.queue_for(plan.thread_id)
        if plan.status == PlanStatus.executing:
            queue.cancel_batch(plan_id)
        if not plan.status.is_terminal:
            self.lifecycle.cancel_plan(plan_id)
        self.bus.publish(EventTopic.progress, plan.thread_id, queue.progress())
        return plan

    def get_plan(self, plan_id: str) -> Plan:
        return self.lifecycle.get_plan(plan_id)

    # Actions

    def submit_action(
        self,
        thread_id: str,
        type: ActionType,
        title: str,
        details: ActionDetails | dict[str, Any],
        description: str = "",
        risk: SkillRisk | None = None,
    ) -> ExecutionAction:
        """Queue a standalone action in its own batch."""
        action_type = ActionType(type)
        parsed = parse_action_details(details)
        if parsed.type != action_type.value:
            raise ValueError(f"Details type {parsed.type} does not match action type {action_type.value}")
        queue = self.queue_for(thread_id)
        queue.check_batch_size(1)
        action = ExecutionAction(
            id=f"action-{uuid.uuid4()}",
            thread_id=thread_id,
            type=action_type,
            title=title,
            description=description,
            risk=risk or self._default_risk(action_type, parsed),
            details=parsed,
            batch_id=f"batch-{uuid.uuid4()}",
        )
        queue.enqueue([action])
        return action

    def _default_risk(self, action_type: ActionType, details: ActionDetails) -> SkillRisk:
        if isinstance(details, SkillExecutionDetails):
            skill = self.skills.graph.get(details.skill_id)
            if skill is not None:
                return skill.risk
        return ACTION_RISKS[action_type]

    def confirm_action(
        self,
        action_id: str,
        decision: ConfirmationDecision | str,
        edited_details: ActionDetails | dict[str, Any] | None = None,
        note: str | None = None,
    ) -> ExecutionAction:
        queue = self._queue_with_action(action_id)
        return queue.confirm(action_id, ConfirmationDecision(decision), edited_details, note)

    def cancel_action(self, action_id: str) -> ExecutionAction:
        return self._queue_with_action(action_id).cancel_action(action_id)

    def get_action(self, action_id: str) -> ExecutionAction:
        return self._queue_with_action(action_id).get(action_id)

    def actions_for_thread(self, thread_id: str) -> list[ExecutionAction]:
        queue = self._queues.get(thread_id)
        return queue.actions() if queue else []

    def pending_confirmation(self, thread_id: str) -> ConfirmationRequest | None:
        queue = self._queues.get(thread_id)
        return queue.pending_confirmation if queue else None

    # Subscriptions

    def on_progress(self, thread_id: str) -> Subscription:
        return self.bus.subscribe(EventTopic.progress, thread_id)

    def on_audit_append(self, thread_id: str) -> Subscription:
        return self.bus.subscribe(EventTopic.audit, thread_id)

    # Modes and settings

    def set_mode(self, thread_id: str, mode: ExecutionMode | str) -> None:
        self.queue_for(thread_id).set_mode(ExecutionMode(mode))

    def get_mode(self, thread_id: str) -> ExecutionMode:
        queue = self._queues.get(thread_id)
        if queue is not None:
            return queue.mode
        return self.settings_store.get_execution_settings().default_execution_mode

    def update_settings(self, **changes: Any) -> ExecutionSettings:
        return self.settings_store.update_execution_settings(**changes)

    def progress(self, thread_id: str) -> ExecutionProgress:
        queue = self._queues.get(thread_id)
        return queue.progress() if queue else ExecutionProgress()

    def pause(self, thread_id: str) -> None:
        self.queue_for(thread_id).pause()

    def resume(self, thread_id: str) -> None:
        self.queue_for(thread_id).resume()

    async def wait_idle(self, thread_id: str | None = None) -> None:
        if thread_id is None:
            queues = list(self._queues.values())
        else:
            queues = [self._queues[thread_id]] if thread_id in self._queues else []
        for queue in queues:
            await queue.wait_idle()

    async def shutdown(self) -> None:
        for queue in self._queues.values():
            await queue.shutdown()
        self.bus.clear()


def create_execution_engine(
    settings: Settings | None = None,
    executor: ToolExecutor | None = None,
    session_maker=None,
) -> ExecutionEngine:
    """Construct an engine from application settings."""
    settings = settings or get_settings()
    settings_store = SettingsStore(state_file=settings.state_file)
    if settings.execution_mode:
        settings_store.update_execution_settings(
            default_execution_mode=ExecutionMode(settings.execution_mode)
        )
    if executor is None:
        executor = MockToolExecutor() if settings.mock_execution else RoutingToolExecutor()
    bus = EventBus()
    audit = AuditLog(settings_store, session_maker=session_maker, bus=bus)
    engine = ExecutionEngine(
        executor,
        settings_store=settings_store,
        skill_graph=build_skill_graph(settings.skill_catalog_path),
        audit=audit,
        bus=bus,
    )
    logger.info(
        f"[ExecutionEngine] Ready: {len(engine.skills.graph)} skills, "
        f"executor={type(executor).__name__}, audit persistence={session_maker is not None}"
    )
    return engine
