"""Action Queue - serial, confirmation-gated execution for one thread.

Draining flow for each action, in dispatch order:

1. Skip it if a dependency ended rejected, failed or skipped
2. Decide whether confirmation is required (policy + live settings)
3. If required, suspend until approve / reject / edit-and-approve arrives,
   or the confirmation timeout rejects it
4. Execute through the ToolExecutor, bounded by the execution timeout
5. Record the outcome on the action, its plan step and the audit log
6. Apply stop-on-error, then republish progress

Exactly one action executes at a time per thread. Queues of different
threads never block each other.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

from opensesh.details import ActionDetails, parse_action_details
from opensesh.errors import (
    ActionCancelledError,
    ActionNotFoundError,
    BatchLimitExceededError,
    FatalContextLostError,
    InvalidTransitionError,
)
from opensesh.events import EventBus, EventTopic
from opensesh.observability.context import execution_context
from opensesh.plans.lifecycle import PlanLifecycle
from opensesh.plans.models import Plan, PlanStatus, PlanStepStatus, SkipReason, utcnow

from . import policy
from .executor import ToolExecutor
from .mapping import plan_step_to_action
from .models import (
    ActionStatus,
    ConfirmationDecision,
    ConfirmationRequest,
    ExecutionAction,
    ExecutionContext,
    ExecutionMode,
    ExecutionProgress,
)

if TYPE_CHECKING:
    from opensesh.audit.log import AuditLog
    from opensesh.settings_store import SettingsStore

logger = logging.getLogger(__name__)

ACTION_TRANSITIONS: dict[ActionStatus, frozenset[ActionStatus]] = {
    ActionStatus.pending: frozenset({
        ActionStatus.awaiting_confirmation,
        ActionStatus.approved,
        ActionStatus.rejected,
        ActionStatus.executing,
        ActionStatus.skipped,
    }),
    ActionStatus.awaiting_confirmation: frozenset({
        ActionStatus.approved,
        ActionStatus.rejected,
        ActionStatus.skipped,
    }),
    ActionStatus.approved: frozenset({
        ActionStatus.executing,
        ActionStatus.rejected,
        ActionStatus.skipped,
    }),
    ActionStatus.executing: frozenset({ActionStatus.completed, ActionStatus.failed}),
}

AUTONOMOUS_APPROVER = "policy:autonomous"
CONFIRMATION_TIMEOUT_NOTE = "Confirmation timed out"

_FAILED_DEPENDENCY = {
    ActionStatus.rejected: ("was rejected", SkipReason.rejected),
    ActionStatus.failed: ("failed", SkipReason.error),
    ActionStatus.skipped: ("was skipped", None),
}


class _Decision:
    """A resolved confirmation prompt."""

    def __init__(
        self,
        decision: ConfirmationDecision,
        edited_details: ActionDetails | None = None,
        note: str | None = None,
        approved_by: str = "user",
    ) -> None:
        self.decision = decision
        self.edited_details = edited_details
        self.note = note
        self.approved_by = approved_by


class ActionQueue:
    """Queue of actions for a single thread."""

    def __init__(
        self,
        thread_id: str,
        executor: ToolExecutor,
        settings_store: SettingsStore,
        lifecycle: PlanLifecycle,
        audit: AuditLog | None = None,
        bus: EventBus | None = None,
        mode: ExecutionMode | None = None,
    ) -> None:
        self.thread_id = thread_id
        self.executor = executor
        self.settings_store = settings_store
        self.lifecycle = lifecycle
        self.audit = audit
        self.bus = bus
        self._mode = mode

        self._actions: dict[str, ExecutionAction] = {}  # dispatch order
        self._skip_reasons: dict[str, SkipReason] = {}
        self._confirmations: dict[str, asyncio.Future] = {}
        self._confirmation_requests: dict[str, ConfirmationRequest] = {}
        self._confirmation_opened = asyncio.Event()
        self._lock = asyncio.Lock()
        self._worker: asyncio.Task | None = None
        self._exec_task: asyncio.Task | None = None
        self._cancel_requested: str | None = None
        self._current: ExecutionAction | None = None
        self._paused = False

    # Mode

    @property
    def mode(self) -> ExecutionMode:
        """Explicit thread mode, else the live default from settings."""
        if self._mode is not None:
            return self._mode
        return self.settings_store.get_execution_settings().default_execution_mode

    def set_mode(self, mode: ExecutionMode) -> None:
        old = self.mode
        self._mode = mode
        logger.info(f"[ActionQueue] Thread {self.thread_id} mode changed: {old.value} -> {mode.value}")

    # Lookup

    def get(self, action_id: str) -> ExecutionAction:
        action = self._actions.get(action_id)
        if action is None:
            raise ActionNotFoundError(f"Action not found: {action_id}")
        return action

    def __contains__(self, action_id: str) -> bool:
        return action_id in self._actions

    def actions(self) -> list[ExecutionAction]:
        return list(self._actions.values())

    def actions_for_batch(self, batch_id: str) -> list[ExecutionAction]:
        return [a for a in self._actions.values() if a.batch_id == batch_id]

    def pending_actions(self) -> list[ExecutionAction]:
        """Actions waiting on a human: pending or awaiting confirmation."""
        return [
            a for a in self._actions.values()
            if a.status in (ActionStatus.pending, ActionStatus.awaiting_confirmation)
        ]

    def queued_actions(self) -> list[ExecutionAction]:
        """Actions approved and waiting for their turn."""
        return [a for a in self._actions.values() if a.status == ActionStatus.approved]

    @property
    def current_action(self) -> ExecutionAction | None:
        return self._current

    @property
    def pending_confirmation(self) -> ConfirmationRequest | None:
        return next(iter(self._confirmation_requests.values()), None)

    def progress(self) -> ExecutionProgress:
        return ExecutionProgress.from_actions(self.actions(), self._current)

    @property
    def is_idle(self) -> bool:
        return self._worker is None or self._worker.done()

    @property
    def paused(self) -> bool:
        return self._paused

    # Transitions

    def _move(self, action: ExecutionAction, target: ActionStatus) -> None:
        if target not in ACTION_TRANSITIONS.get(action.status, frozenset()):
            raise InvalidTransitionError("action", action.id, action.status.value, target.value)
        action.status = target

    def _skip(self, action: ExecutionAction, reason: SkipReason, message: str) -> None:
        """Skip an action, and its plan step when that is still open."""
        self._move(action, ActionStatus.skipped)
        action.error = message
        action.completed_at = utcnow()
        self._skip_reasons[action.id] = reason
        plan = self._plan_for(action)
        if plan is not None:
            step = plan.get_step(action.plan_step_id)
            if step is not None and step.status in (PlanStepStatus.pending, PlanStepStatus.approved):
                self.lifecycle.skip_step(plan.id, step.id, reason, message)

    def _publish_progress(self) -> None:
        if self.bus is not None:
            self.bus.publish(EventTopic.progress, self.thread_id, self.progress())

    # Submission

    def check_batch_size(self, size: int) -> None:
        """Autonomous batches may not exceed ``max_actions_per_batch``."""
        limit = self.settings_store.get_execution_settings().max_actions_per_batch
        if self.mode == ExecutionMode.autonomous and size > limit:
            raise BatchLimitExceededError(
                f"Batch of {size} actions exceeds the limit of {limit} per batch"
            )

    def enqueue_plan(self, plan: Plan) -> list[ExecutionAction]:
        """Queue one action per step, in the plan's execution order."""
        actions = []
        for step in self.lifecycle.execution_order(plan.id):
            action = plan_step_to_action(step, self.thread_id, batch_id=plan.id)
            if step.status == PlanStepStatus.approved:
                self._move(action, ActionStatus.approved)
                action.approved_by = step.approved_by
                action.user_note = step.user_note
            actions.append(action)
        self.enqueue(actions)
        self._sync_from_plan(plan)
        # Every step may already be settled before the worker runs
        self._finish_batches()
        return actions

    def enqueue(self, actions: Iterable[ExecutionAction]) -> None:
        actions = list(actions)
        for action in actions:
            if action.id in self._actions:
                raise ValueError(f"Action already queued: {action.id}")
        for action in actions:
            self._actions[action.id] = action
        logger.info(f"[ActionQueue] Thread {self.thread_id}: queued {len(actions)} actions")
        self._publish_progress()
        self._ensure_worker()

    # Decisions

    def approve(
        self,
        action_id: str,
        note: str | None = None,
        approved_by: str = "user",
    ) -> ExecutionAction:
        action = self.get(action_id)
        if action.status == ActionStatus.awaiting_confirmation:
            self._close_prompt(action.id, _Decision(ConfirmationDecision.approve, note=note, approved_by=approved_by))
            return action
        self._move(action, ActionStatus.approved)
        action.approved_by = approved_by
        if note:
            action.user_note = note
        self._approve_step(action, approved_by, note)
        self._publish_progress()
        return action

    def edit_and_approve(
        self,
        action_id: str,
        edited_details: ActionDetails | dict[str, Any],
        note: str | None = None,
        approved_by: str = "user",
    ) -> ExecutionAction:
        action = self.get(action_id)
        edited = self._validate_edit(action, edited_details)
        if action.status == ActionStatus.awaiting_confirmation:
            self._close_prompt(
                action.id,
                _Decision(ConfirmationDecision.edit_and_approve, edited, note, approved_by),
            )
            return action
        self._move(action, ActionStatus.approved)
        self._apply_edit(action, edited)
        action.approved_by = approved_by
        if note:
            action.user_note = note
        self._approve_step(action, approved_by, note)
        self._publish_progress()
        return action

    def reject(self, action_id: str, note: str | None = None) -> ExecutionAction:
        action = self.get(action_id)
        if action.status == ActionStatus.awaiting_confirmation:
            self._close_prompt(action.id, _Decision(ConfirmationDecision.reject, note=note))
            return action
        self._apply_rejection(action, note)
        self._finish_batches()
        self._publish_progress()
        return action

    def confirm(
        self,
        action_id: str,
        decision: ConfirmationDecision,
        edited_details: ActionDetails | dict[str, Any] | None = None,
        note: str | None = None,
    ) -> ExecutionAction:
        if decision == ConfirmationDecision.approve:
            return self.approve(action_id, note)
        if decision == ConfirmationDecision.reject:
            return self.reject(action_id, note)
        if edited_details is None:
            raise ValueError("edit_and_approve requires edited details")
        return self.edit_and_approve(action_id, edited_details, note)

    def approve_all_pending(self, approved_by: str = "user") -> list[ExecutionAction]:
        approved = []
        for action in self.pending_actions():
            if self.prompt_answered(action.id):
                continue
            approved.append(self.approve(action.id, approved_by=approved_by))
        return approved

    def reject_all_pending(self, note: str | None = None) -> list[ExecutionAction]:
        rejected = []
        for action in self.pending_actions():
            if action.status.is_terminal or self.prompt_answered(action.id):
                # Cascaded or already answered earlier
                continue
            rejected.append(self.reject(action.id, note))
        return rejected

    def _validate_edit(self, action: ExecutionAction, edited: ActionDetails | dict[str, Any]) -> ActionDetails:
        details = parse_action_details(edited)
        if details.type != action.type.value:
            raise ValueError(f"Edited details type {details.type} does not match action type {action.type.value}")
        return details

    def _apply_edit(self, action: ExecutionAction, edited: ActionDetails) -> None:
        action.original_details = action.details
        action.user_modified_details = edited
        action.details = edited

    def prompt_answered(self, action_id: str) -> bool:
        """True once a prompt has a decision the worker has not applied yet."""
        future = self._confirmations.get(action_id)
        return future is not None and future.done()

    def _close_prompt(self, action_id: str, decision: _Decision | None = None) -> None:
        """Answer a waiting prompt, or withdraw it when there is no decision.

        A prompt takes one answer. A second decision raises
        InvalidTransitionError instead of being dropped.
        """
        future = self._confirmations.get(action_id)
        if decision is not None and future is not None and future.done():
            raise InvalidTransitionError(
                "action", action_id, "answered", decision.decision.value
            )
        self._confirmation_requests.pop(action_id, None)
        if future is None or future.done():
            return
        if decision is None:
            future.cancel()
        else:
            future.set_result(decision)

    def _approve_step(self, action: ExecutionAction, approved_by: str, note: str | None) -> None:
        plan = self._plan_for(action)
        if plan is None:
            return
        step = plan.get_step(action.plan_step_id)
        if step is not None and step.status == PlanStepStatus.pending:
            self.lifecycle.approve_step(plan.id, step.id, note=note, approved_by=approved_by)

    def _apply_rejection(self, action: ExecutionAction, note: str | None) -> None:
        self._move(action, ActionStatus.rejected)
        action.user_note = note or action.user_note
        action.completed_at = utcnow()
        logger.info(f"[ActionQueue] Action {action.id} rejected: {note}")

        plan = self._plan_for(action)
        if plan is not None:
            step = plan.get_step(action.plan_step_id)
            if step is not None and step.status in (PlanStepStatus.pending, PlanStepStatus.approved):
                self.lifecycle.reject_step(plan.id, step.id, note)
            self._sync_from_plan(plan)
        self._cascade_dependents()

    # Plan bookkeeping

    def _plan_for(self, action: ExecutionAction) -> Plan | None:
        """Owning plan while it can still change; None for standalone actions."""
        if action.plan_id is None:
            return None
        plan = self.lifecycle.get_plan(action.plan_id)
        if plan.status.is_terminal:
            return None
        return plan

    def _sync_from_plan(self, plan: Plan) -> None:
        """Mirror lifecycle-driven rejections and skips onto the plan's actions."""
        for action in self.actions_for_batch(plan.id):
            if action.status.is_terminal or action.status == ActionStatus.executing:
                continue
            step = plan.get_step(action.plan_step_id)
            if step is None:
                continue
            if step.status == PlanStepStatus.skipped:
                self._skip(action, step.skip_reason or SkipReason.rejected, step.error or "Skipped")
            elif step.status == PlanStepStatus.rejected:
                self._move(action, ActionStatus.rejected)
                action.user_note = step.user_note
                action.completed_at = utcnow()

    def _cascade_dependents(self) -> None:
        """Skip queued actions whose dependencies did not complete."""
        changed = True
        while changed:
            changed = False
            for action in self._actions.values():
                if action.status.is_terminal or action.status == ActionStatus.executing:
                    continue
                for dep_id in action.depends_on:
                    dep = self._actions.get(dep_id)
                    if dep is None or dep.status not in _FAILED_DEPENDENCY:
                        continue
                    verb, reason = _FAILED_DEPENDENCY[dep.status]
                    reason = reason or self._skip_reasons.get(dep.id, SkipReason.rejected)
                    self._close_prompt(action.id)
                    self._skip(action, reason, f"Skipped: depends on {dep.title} which {verb}")
                    changed = True
                    break

    def _skip_batch(self, batch_id: str, reason: SkipReason, message: str) -> None:
        for action in self.actions_for_batch(batch_id):
            if action.status.is_terminal or action.status == ActionStatus.executing:
                continue
            self._close_prompt(action.id)
            self._skip(action, reason, message)

    def _finish_batches(self) -> None:
        """Roll up every executing plan whose actions have all finished."""
        plan_ids = {a.plan_id for a in self._actions.values() if a.plan_id}
        for plan_id in plan_ids:
            plan = self.lifecycle.get_plan(plan_id)
            if plan.status != PlanStatus.executing:
                continue
            if all(a.status.is_terminal for a in self.actions_for_batch(plan_id)):
                self.lifecycle.finish_execution(plan_id)

    # Cancellation

    def cancel_action(self, action_id: str) -> ExecutionAction:
        """Abort a queued or in-flight action."""
        action = self.get(action_id)
        if action.status == ActionStatus.executing:
            if self._exec_task is not None and not self._exec_task.done():
                self._cancel_requested = action.id
                self._exec_task.cancel()
            return action
        if action.status.is_terminal:
            raise InvalidTransitionError("action", action.id, action.status.value, "cancelled")
        self._close_prompt(action.id)
        self._skip(action, SkipReason.cancelled, "Skipped: cancelled")
        plan = self._plan_for(action)
        if plan is not None:
            self.lifecycle.cascade_skips(plan.id)
            self._sync_from_plan(plan)
        self._cascade_dependents()
        self._finish_batches()
        self._publish_progress()
        return action

    def cancel_batch(self, batch_id: str) -> None:
        """Skip every open action of a batch and abort the one in flight."""
        for action in self.actions_for_batch(batch_id):
            if action.status == ActionStatus.executing:
                if self._exec_task is not None and not self._exec_task.done():
                    self._cancel_requested = action.id
                    self._exec_task.cancel()
        self._skip_batch(batch_id, SkipReason.cancelled, "Skipped: plan was cancelled")
        self._publish_progress()

    # Draining control

    def pause(self) -> None:
        """Stop picking up new actions. The action in flight finishes."""
        self._paused = True
        logger.info(f"[ActionQueue] Thread {self.thread_id} paused")

    def resume(self) -> None:
        self._paused = False
        logger.info(f"[ActionQueue] Thread {self.thread_id} resumed")
        self._ensure_worker()

    def clear(self) -> int:
        """Drop finished actions. Returns how many were removed."""
        finished = [a.id for a in self._actions.values() if a.status.is_terminal]
        for action_id in finished:
            del self._actions[action_id]
            self._skip_reasons.pop(action_id, None)
        self._publish_progress()
        return len(finished)

    async def wait_idle(self) -> None:
        """Wait until the queue has nothing left it can drain."""
        while self._worker is not None and not self._worker.done():
            await asyncio.wait({self._worker})

    async def wait_for_confirmation(self) -> ConfirmationRequest:
        """Wait until an action is blocked on confirmation and return its prompt."""
        while self.pending_confirmation is None:
            self._confirmation_opened.clear()
            await self._confirmation_opened.wait()
        return self.pending_confirmation

    async def shutdown(self) -> None:
        if self._worker is not None and not self._worker.done():
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
        self._worker = None

    def _ensure_worker(self) -> None:
        if self._paused:
            return
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._drain(), name=f"action-queue-{self.thread_id}")

    def _next_action(self) -> ExecutionAction | None:
        for action in self._actions.values():
            if action.status in (
                ActionStatus.pending,
                ActionStatus.awaiting_confirmation,
                ActionStatus.approved,
            ):
                return action
        return None

    # Worker

    async def _drain(self) -> None:
        while not self._paused:
            action = self._next_action()
            if action is None:
                self._finish_batches()
                self._publish_progress()
                break
            async with self._lock:
                with execution_context(self.thread_id, action.plan_id):
                    await self._process(action)
            self._finish_batches()
            self._publish_progress()

    async def _process(self, action: ExecutionAction) -> None:
        self._cascade_dependents()
        plan = self._plan_for(action)
        if plan is not None:
            self.lifecycle.cascade_skips(plan.id)
            self._sync_from_plan(plan)
        if action.status.is_terminal:
            return

        self._current = action
        try:
            if action.status != ActionStatus.approved:
                approved = await self._obtain_approval(action)
                if not approved:
                    return
            await self._execute(action)
        finally:
            self._current = None

    async def _obtain_approval(self, action: ExecutionAction) -> bool:
        settings = self.settings_store.get_execution_settings()
        reasons = policy.confirmation_reasons(self.mode, action, settings)
        if not reasons:
            action.approved_by = AUTONOMOUS_APPROVER
            self._approve_step(action, AUTONOMOUS_APPROVER, None)
            return True

        decision = await self._await_confirmation(action, reasons, settings.confirmation_timeout)
        if decision is None:
            # Cancelled or skipped while waiting
            return False
        if decision.decision == ConfirmationDecision.reject:
            self._apply_rejection(action, decision.note)
            return False

        self._move(action, ActionStatus.approved)
        if decision.decision == ConfirmationDecision.edit_and_approve:
            self._apply_edit(action, decision.edited_details)
        action.approved_by = decision.approved_by
        if decision.note:
            action.user_note = decision.note
        self._approve_step(action, decision.approved_by, decision.note)
        return True

    async def _await_confirmation(
        self,
        action: ExecutionAction,
        reasons: list[str],
        timeout: float | None,
    ) -> _Decision | None:
        self._move(action, ActionStatus.awaiting_confirmation)
        future = asyncio.get_running_loop().create_future()
        self._confirmations[action.id] = future
        self._confirmation_requests[action.id] = ConfirmationRequest(
            action=action,
            show_diff=policy.show_diff(action),
            allow_edit=True,
            warning_message=policy.warning_message(action),
            reasons=reasons,
        )
        self._confirmation_opened.set()
        self._publish_progress()
        logger.info(f"[ActionQueue] Action {action.id} awaiting confirmation ({', '.join(reasons)})")
        try:
            return await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError:
            logger.warning(f"[ActionQueue] Confirmation for {action.id} timed out after {timeout}s")
            return _Decision(ConfirmationDecision.reject, note=CONFIRMATION_TIMEOUT_NOTE)
        except asyncio.CancelledError:
            if future.cancelled() and not self._worker_cancelling():
                return None
            raise
        finally:
            self._confirmations.pop(action.id, None)
            self._confirmation_requests.pop(action.id, None)

    def _worker_cancelling(self) -> bool:
        task = asyncio.current_task()
        return task is not None and task.cancelling() > 0

    async def _execute(self, action: ExecutionAction) -> None:
        settings = self.settings_store.get_execution_settings()
        mode = self.mode
        plan = self._plan_for(action)
        if plan is not None:
            self.lifecycle.begin_step(plan.id, action.plan_step_id)

        self._move(action, ActionStatus.executing)
        action.executed_at = utcnow()
        self._publish_progress()
        logger.info(f"[ActionQueue] Executing {action.type.value} action {action.id}: {action.title}")

        context = ExecutionContext(thread_id=self.thread_id, plan_id=action.plan_id)
        self._exec_task = asyncio.create_task(self.executor.execute(action, context))
        fatal = False
        try:
            result = await asyncio.wait_for(self._exec_task, settings.autonomous_timeout)
        except asyncio.TimeoutError:
            error = str(ActionCancelledError(
                f"Cancelled: execution timed out after {settings.autonomous_timeout}s"
            ))
        except asyncio.CancelledError:
            if self._cancel_requested != action.id or self._worker_cancelling():
                raise
            error = str(ActionCancelledError("Cancelled"))
        except FatalContextLostError as e:
            error = str(e) or "Execution context lost"
            fatal = True
        except Exception as e:
            error = str(e) or type(e).__name__
        else:
            error = None
        finally:
            self._exec_task = None
            self._cancel_requested = None

        action.completed_at = utcnow()
        if error is None:
            self._move(action, ActionStatus.completed)
            action.result = result
            plan = self._plan_for(action)
            if plan is not None:
                self.lifecycle.complete_step(plan.id, action.plan_step_id, result)
            logger.info(f"[ActionQueue] Action {action.id} completed")
        else:
            self._move(action, ActionStatus.failed)
            action.error = error
            logger.warning(f"[ActionQueue] Action {action.id} failed: {error}")

        if self.audit is not None:
            await self.audit.record(action, mode, action.user_approved, error is None, error)

        if error is None:
            return
        if fatal:
            self._abort_batch(action, error)
        else:
            self._handle_failure(action, error, settings.stop_on_error)

    def _handle_failure(self, action: ExecutionAction, error: str, stop_on_error: bool) -> None:
        plan = self._plan_for(action)
        if plan is not None:
            self.lifecycle.fail_step(plan.id, action.plan_step_id, error)
            self._sync_from_plan(plan)
        self._cascade_dependents()
        if stop_on_error and action.batch_id:
            message = f"Skipped: stopped after '{action.title}' failed"
            if plan is not None:
                self.lifecycle.skip_remaining(plan.id, SkipReason.stop_on_error, message)
                self._sync_from_plan(plan)
            self._skip_batch(action.batch_id, SkipReason.stop_on_error, message)

    def _abort_batch(self, action: ExecutionAction, error: str) -> None:
        plan = self._plan_for(action)
        if plan is not None:
            self.lifecycle.mark_fatal_error(plan.id, error)
        if action.batch_id:
            self._skip_batch(action.batch_id, SkipReason.context_lost, f"Skipped: {error}")
        logger.error(f"[ActionQueue] Batch {action.batch_id} aborted: {error}")
