"""Plan Lifecycle - state machine for generated plans and their steps.

Plan flow::

    generating -> pending -> approved -> executing -> completed | partial | cancelled | error

Step flow::

    pending -> approved | rejected
    approved -> in_progress -> completed | error
    pending | approved -> skipped

A step whose dependencies ended rejected, failed or skipped is skipped
without running, and carries the upstream terminal cause in ``skip_reason``.
"""

import heapq
import logging
import uuid
from collections.abc import Iterable
from typing import Any

from opensesh.details import StepDetails, parse_step_details
from opensesh.errors import (
    CyclicDependencyError,
    InvalidTransitionError,
    PlanNotFoundError,
)

from .models import (
    TERMINAL_STEP_STATUSES,
    Plan,
    PlanStatus,
    PlanStep,
    PlanStepStatus,
    PlanStepType,
    SkipReason,
    utcnow,
)

logger = logging.getLogger(__name__)

PLAN_TRANSITIONS: dict[PlanStatus, frozenset[PlanStatus]] = {
    PlanStatus.generating: frozenset({PlanStatus.pending, PlanStatus.cancelled}),
    PlanStatus.pending: frozenset({PlanStatus.approved, PlanStatus.executing, PlanStatus.cancelled}),
    PlanStatus.approved: frozenset({PlanStatus.executing, PlanStatus.cancelled}),
    PlanStatus.executing: frozenset({
        PlanStatus.completed,
        PlanStatus.partial,
        PlanStatus.cancelled,
        PlanStatus.error,
    }),
}

STEP_TRANSITIONS: dict[PlanStepStatus, frozenset[PlanStepStatus]] = {
    PlanStepStatus.pending: frozenset({
        PlanStepStatus.approved,
        PlanStepStatus.rejected,
        PlanStepStatus.skipped,
    }),
    PlanStepStatus.approved: frozenset({
        PlanStepStatus.in_progress,
        PlanStepStatus.rejected,
        PlanStepStatus.skipped,
    }),
    PlanStepStatus.in_progress: frozenset({PlanStepStatus.completed, PlanStepStatus.error}),
}

# Plans can only be edited before anything has been approved or run
EDITABLE_PLAN_STATUSES = frozenset({PlanStatus.generating, PlanStatus.pending})

_UPSTREAM_VERBS = {
    PlanStepStatus.rejected: "was rejected",
    PlanStepStatus.error: "failed",
    PlanStepStatus.skipped: "was skipped",
}


def _upstream_cause(upstream: PlanStep) -> SkipReason:
    if upstream.status == PlanStepStatus.rejected:
        return SkipReason.rejected
    if upstream.status == PlanStepStatus.error:
        return SkipReason.error
    return upstream.skip_reason or SkipReason.rejected


def execution_order(steps: Iterable[PlanStep]) -> list[PlanStep]:
    """Stable topological order: by step number, never before a dependency.

    Raises CyclicDependencyError when ``depends_on`` edges form a cycle.
    """
    steps = list(steps)
    by_id = {step.id: step for step in steps}
    indegree = {step.id: 0 for step in steps}
    dependents: dict[str, list[str]] = {step.id: [] for step in steps}
    for step in steps:
        for dep in step.depends_on:
            if dep not in by_id:
                raise PlanNotFoundError(f"Step {step.id} depends on unknown step {dep}")
            indegree[step.id] += 1
            dependents[dep].append(step.id)

    ready = [(step.step_number, step.id) for step in steps if indegree[step.id] == 0]
    heapq.heapify(ready)
    ordered: list[PlanStep] = []
    while ready:
        _, step_id = heapq.heappop(ready)
        ordered.append(by_id[step_id])
        for child in dependents[step_id]:
            indegree[child] -= 1
            if indegree[child] == 0:
                heapq.heappush(ready, (by_id[child].step_number, child))

    if len(ordered) != len(steps):
        remaining = sorted(
            (step for step in steps if indegree[step.id] > 0),
            key=lambda s: s.step_number,
        )
        cycle = [step.id for step in remaining]
        raise CyclicDependencyError(cycle + cycle[:1])
    return ordered


class PlanLifecycle:
    """Owns plans and enforces their legal transitions."""

    def __init__(self):
        self._plans: dict[str, Plan] = {}
        self._step_index: dict[str, str] = {}  # step id -> plan id

    # Lookup

    def get_plan(self, plan_id: str) -> Plan:
        plan = self._plans.get(plan_id)
        if plan is None:
            raise PlanNotFoundError(f"Plan not found: {plan_id}")
        return plan

    def get_step(self, plan_id: str, step_id: str) -> PlanStep:
        step = self.get_plan(plan_id).get_step(step_id)
        if step is None:
            raise PlanNotFoundError(f"Step not found: {step_id}")
        return step

    def find_step(self, step_id: str) -> tuple[Plan, PlanStep]:
        plan_id = self._step_index.get(step_id)
        if plan_id is None:
            raise PlanNotFoundError(f"Step not found: {step_id}")
        return self._plans[plan_id], self.get_step(plan_id, step_id)

    def list_plans(self) -> list[Plan]:
        return list(self._plans.values())

    def plans_for_thread(self, thread_id: str) -> list[Plan]:
        plans = [p for p in self._plans.values() if p.thread_id == thread_id]
        return sorted(plans, key=lambda p: p.created_at, reverse=True)

    def current_plan_for_thread(self, thread_id: str) -> Plan | None:
        """Most recent plan for the thread that has not reached a terminal state."""
        for plan in self.plans_for_thread(thread_id):
            if not plan.status.is_terminal:
                return plan
        return None

    # Transitions

    def _move_plan(self, plan: Plan, target: PlanStatus) -> None:
        if target not in PLAN_TRANSITIONS.get(plan.status, frozenset()):
            raise InvalidTransitionError("plan", plan.id, plan.status.value, target.value)
        logger.debug(f"[PlanLifecycle] Plan {plan.id}: {plan.status.value} -> {target.value}")
        plan.status = target
        plan.touch()

    def _move_step(self, plan: Plan, step: PlanStep, target: PlanStepStatus) -> None:
        if plan.status.is_terminal:
            raise InvalidTransitionError("plan", plan.id, plan.status.value, f"step {target.value}")
        if target not in STEP_TRANSITIONS.get(step.status, frozenset()):
            raise InvalidTransitionError("step", step.id, step.status.value, target.value)
        step.status = target
        plan.touch()

    # Generation

    def create_plan(
        self,
        thread_id: str,
        message_id: str,
        user_request: str = "",
        title: str = "",
        summary: str = "",
    ) -> Plan:
        plan = Plan(
            id=str(uuid.uuid4()),
            thread_id=thread_id,
            message_id=message_id,
            user_request=user_request,
            title=title,
            summary=summary,
        )
        self._plans[plan.id] = plan
        logger.info(f"[PlanLifecycle] Plan {plan.id} generating for thread {thread_id}")
        return plan

    def _require_editable(self, plan: Plan) -> None:
        if plan.status not in EDITABLE_PLAN_STATUSES:
            raise InvalidTransitionError("plan", plan.id, plan.status.value, "edit")

    def add_step(
        self,
        plan_id: str,
        type: PlanStepType,
        title: str,
        details: StepDetails | dict[str, Any],
        description: str = "",
        depends_on: Iterable[str] = (),
    ) -> PlanStep:
        plan = self.get_plan(plan_id)
        self._require_editable(plan)
        details = parse_step_details(details)
        if details.type != PlanStepType(type).value:
            raise ValueError(f"Details type {details.type} does not match step type {type}")
        depends_on = tuple(depends_on)
        for dep in depends_on:
            if plan.get_step(dep) is None:
                raise PlanNotFoundError(f"Step not found: {dep}")

        step = PlanStep(
            id=str(uuid.uuid4()),
            plan_id=plan.id,
            step_number=len(plan.steps) + 1,
            type=PlanStepType(type),
            title=title,
            description=description,
            details=details,
            depends_on=depends_on,
        )
        plan.steps.append(step)
        self._step_index[step.id] = plan.id
        plan.touch()
        return step

    def remove_step(self, plan_id: str, step_id: str) -> None:
        """Remove a step, drop references to it and renumber the rest."""
        plan = self.get_plan(plan_id)
        self._require_editable(plan)
        step = self.get_step(plan_id, step_id)
        plan.steps.remove(step)
        self._step_index.pop(step_id, None)
        for number, other in enumerate(plan.steps, start=1):
            other.step_number = number
            if step_id in other.depends_on:
                other.depends_on = tuple(d for d in other.depends_on if d != step_id)
        plan.touch()

    def reorder_steps(self, plan_id: str, step_ids: list[str]) -> None:
        plan = self.get_plan(plan_id)
        self._require_editable(plan)
        if sorted(step_ids) != sorted(step.id for step in plan.steps):
            raise ValueError("Reorder must list every step exactly once")
        by_id = {step.id: step for step in plan.steps}
        plan.steps = [by_id[step_id] for step_id in step_ids]
        for number, step in enumerate(plan.steps, start=1):
            step.step_number = number
        execution_order(plan.steps)
        plan.touch()

    def finish_generation(self, plan_id: str) -> Plan:
        """Mark generation complete; every step must be materialized and acyclic."""
        plan = self.get_plan(plan_id)
        execution_order(plan.steps)
        self._move_plan(plan, PlanStatus.pending)
        logger.info(f"[PlanLifecycle] Plan {plan.id} ready with {plan.total_steps} steps")
        return plan

    def discard_generation(self, plan_id: str) -> None:
        """Drop a plan whose generation failed midway. It never reaches pending."""
        plan = self.get_plan(plan_id)
        if plan.status != PlanStatus.generating:
            raise InvalidTransitionError("plan", plan.id, plan.status.value, "discarded")
        for step in plan.steps:
            self._step_index.pop(step.id, None)
        del self._plans[plan_id]
        logger.info(f"[PlanLifecycle] Discarded partial plan {plan_id}")

    def register_plan(self, plan: Plan) -> Plan:
        """Adopt a fully materialized plan supplied by the plan generator."""
        if plan.id in self._plans:
            raise ValueError(f"Plan already registered: {plan.id}")
        if plan.status != PlanStatus.pending:
            raise InvalidTransitionError("plan", plan.id, plan.status.value, PlanStatus.pending.value)
        for step in plan.steps:
            if step.status != PlanStepStatus.pending:
                raise InvalidTransitionError("step", step.id, step.status.value, "submitted")
            if step.id in self._step_index:
                raise ValueError(f"Step already registered: {step.id}")
        execution_order(plan.steps)

        self._plans[plan.id] = plan
        for step in plan.steps:
            self._step_index[step.id] = plan.id
        logger.info(
            f"[PlanLifecycle] Registered plan {plan.id} for thread {plan.thread_id} "
            f"({plan.total_steps} steps)"
        )
        return plan

    # Approval

    def approve_step(
        self,
        plan_id: str,
        step_id: str,
        note: str | None = None,
        approved_by: str = "user",
    ) -> PlanStep:
        plan = self.get_plan(plan_id)
        step = self.get_step(plan_id, step_id)
        self._move_step(plan, step, PlanStepStatus.approved)
        step.approved_by = approved_by
        if note:
            step.user_note = note
        logger.info(f"[PlanLifecycle] Step {step.step_number} of plan {plan.id} approved by {approved_by}")
        return step

    def reject_step(self, plan_id: str, step_id: str, note: str | None = None) -> list[PlanStep]:
        """Reject a step and cascade-skip its dependents. Returns the skipped steps."""
        plan = self.get_plan(plan_id)
        step = self.get_step(plan_id, step_id)
        self._move_step(plan, step, PlanStepStatus.rejected)
        if note:
            step.user_note = note
        logger.info(f"[PlanLifecycle] Step {step.step_number} of plan {plan.id} rejected: {note}")
        return self.cascade_skips(plan_id)

    def approve_all_steps(self, plan_id: str, approved_by: str = "user") -> list[PlanStep]:
        plan = self.get_plan(plan_id)
        approved = []
        for step in plan.steps:
            if step.status == PlanStepStatus.pending:
                self._move_step(plan, step, PlanStepStatus.approved)
                step.approved_by = approved_by
                approved.append(step)
        return approved

    def approve_plan(self, plan_id: str, approved_by: str = "user") -> Plan:
        """Bulk approval: every pending step gets its own approved transition."""
        plan = self.get_plan(plan_id)
        if plan.status == PlanStatus.executing:
            self.approve_all_steps(plan_id, approved_by)
            return plan
        self._move_plan(plan, PlanStatus.approved)
        self.approve_all_steps(plan_id, approved_by)
        logger.info(f"[PlanLifecycle] Plan {plan.id} approved by {approved_by}")
        return plan

    def reject_plan(self, plan_id: str, note: str | None = None) -> Plan:
        """Reject every pending step and cancel the plan."""
        plan = self.get_plan(plan_id)
        if plan.status not in (PlanStatus.pending, PlanStatus.approved):
            raise InvalidTransitionError("plan", plan.id, plan.status.value, "rejected")
        for step in plan.steps:
            if step.status == PlanStepStatus.pending:
                self._move_step(plan, step, PlanStepStatus.rejected)
                step.user_note = note
        return self.cancel_plan(plan_id)

    # Execution

    def start_execution(self, plan_id: str) -> Plan:
        plan = self.get_plan(plan_id)
        self._move_plan(plan, PlanStatus.executing)
        plan.started_at = utcnow()
        logger.info(f"[PlanLifecycle] Plan {plan.id} executing")
        return plan

    def begin_step(self, plan_id: str, step_id: str) -> PlanStep:
        plan = self.get_plan(plan_id)
        step = self.get_step(plan_id, step_id)
        if plan.status != PlanStatus.executing:
            raise InvalidTransitionError("plan", plan.id, plan.status.value, "run step")
        if not self.can_execute_step(plan_id, step_id):
            raise InvalidTransitionError("step", step.id, step.status.value, PlanStepStatus.in_progress.value)
        self._move_step(plan, step, PlanStepStatus.in_progress)
        return step

    def complete_step(self, plan_id: str, step_id: str, result: str | None = None) -> PlanStep:
        plan = self.get_plan(plan_id)
        step = self.get_step(plan_id, step_id)
        self._move_step(plan, step, PlanStepStatus.completed)
        step.execution_result = result
        step.executed_at = utcnow()
        return step

    def fail_step(self, plan_id: str, step_id: str, error: str) -> list[PlanStep]:
        """Record a step failure and cascade-skip its dependents."""
        plan = self.get_plan(plan_id)
        step = self.get_step(plan_id, step_id)
        self._move_step(plan, step, PlanStepStatus.error)
        step.error = error
        step.executed_at = utcnow()
        logger.warning(f"[PlanLifecycle] Step {step.step_number} of plan {plan.id} failed: {error}")
        return self.cascade_skips(plan_id)

    def skip_step(
        self,
        plan_id: str,
        step_id: str,
        reason: SkipReason,
        message: str | None = None,
    ) -> PlanStep:
        plan = self.get_plan(plan_id)
        step = self.get_step(plan_id, step_id)
        self._move_step(plan, step, PlanStepStatus.skipped)
        step.skip_reason = reason
        step.error = message or f"Skipped: {reason.value.replace('_', ' ')}"
        return step

    def cascade_skips(self, plan_id: str) -> list[PlanStep]:
        """Skip every open step that depends on a rejected, failed or skipped step.

        Walks in execution order so causes propagate transitively in one pass.
        """
        plan = self.get_plan(plan_id)
        if plan.status.is_terminal:
            return []
        skipped = []
        for step in execution_order(plan.steps):
            if step.status not in (PlanStepStatus.pending, PlanStepStatus.approved):
                continue
            for dep_id in step.depends_on:
                upstream = plan.get_step(dep_id)
                if upstream is None or upstream.status not in _UPSTREAM_VERBS:
                    continue
                message = (
                    f"Skipped: depends on step {upstream.step_number} "
                    f"({upstream.title}) which {_UPSTREAM_VERBS[upstream.status]}"
                )
                self.skip_step(plan_id, step.id, _upstream_cause(upstream), message)
                skipped.append(step)
                break
        if skipped:
            logger.info(
                f"[PlanLifecycle] Plan {plan.id}: cascade skipped steps "
                f"{[s.step_number for s in skipped]}"
            )
        return skipped

    def skip_remaining(self, plan_id: str, reason: SkipReason, message: str) -> list[PlanStep]:
        plan = self.get_plan(plan_id)
        skipped = []
        for step in plan.steps:
            if step.status in (PlanStepStatus.pending, PlanStepStatus.approved):
                self.skip_step(plan_id, step.id, reason, message)
                skipped.append(step)
        return skipped

    def cancel_plan(self, plan_id: str) -> Plan:
        """Skip every open step and cancel. Completed steps are kept as they are."""
        plan = self.get_plan(plan_id)
        if plan.status.is_terminal:
            raise InvalidTransitionError("plan", plan.id, plan.status.value, PlanStatus.cancelled.value)
        self.skip_remaining(plan_id, SkipReason.cancelled, "Skipped: plan was cancelled")
        for step in plan.steps:
            if step.status == PlanStepStatus.in_progress:
                self._move_step(plan, step, PlanStepStatus.error)
                step.error = "Cancelled"
                step.executed_at = utcnow()
        self._move_plan(plan, PlanStatus.cancelled)
        plan.completed_at = utcnow()
        logger.info(f"[PlanLifecycle] Plan {plan.id} cancelled")
        return plan

    def finish_execution(self, plan_id: str) -> Plan:
        """Roll the step outcomes up into the final plan status."""
        plan = self.get_plan(plan_id)
        self.cascade_skips(plan_id)
        open_steps = [s for s in plan.steps if s.status not in TERMINAL_STEP_STATUSES]
        if open_steps:
            raise InvalidTransitionError(
                "plan", plan.id, plan.status.value,
                f"finished with {len(open_steps)} open steps",
            )
        if plan.failed_steps or plan.rejected_steps or plan.skipped_steps:
            target = PlanStatus.partial
        else:
            target = PlanStatus.completed
        self._move_plan(plan, target)
        plan.completed_at = utcnow()
        logger.info(
            f"[PlanLifecycle] Plan {plan.id} finished {target.value}: "
            f"{plan.completed_steps} completed, {plan.failed_steps} failed, "
            f"{plan.rejected_steps} rejected, {plan.skipped_steps} skipped"
        )
        return plan

    def mark_fatal_error(self, plan_id: str, message: str) -> Plan:
        """Abort the plan after the execution context was lost."""
        plan = self.get_plan(plan_id)
        for step in plan.steps:
            if step.status == PlanStepStatus.in_progress:
                self._move_step(plan, step, PlanStepStatus.error)
                step.error = message
                step.executed_at = utcnow()
        self.skip_remaining(plan_id, SkipReason.context_lost, f"Skipped: {message}")
        self._move_plan(plan, PlanStatus.error)
        plan.error = message
        plan.completed_at = utcnow()
        logger.error(f"[PlanLifecycle] Plan {plan.id} aborted: {message}")
        return plan

    # Queries

    def execution_order(self, plan_id: str) -> list[PlanStep]:
        return execution_order(self.get_plan(plan_id).steps)

    def can_execute_step(self, plan_id: str, step_id: str) -> bool:
        plan = self.get_plan(plan_id)
        step = self.get_step(plan_id, step_id)
        if step.status not in (PlanStepStatus.pending, PlanStepStatus.approved):
            return False
        for dep_id in step.depends_on:
            dep = plan.get_step(dep_id)
            if dep is None or dep.status != PlanStepStatus.completed:
                return False
        return True

    def next_runnable_step(self, plan_id: str) -> PlanStep | None:
        for step in self.execution_order(plan_id):
            if self.can_execute_step(plan_id, step.id):
                return step
        return None

    def progress(self, plan_id: str) -> dict[str, int]:
        plan = self.get_plan(plan_id)
        total = plan.total_steps
        completed = plan.completed_steps
        percentage = round(completed / total * 100) if total else 0
        return {"completed": completed, "total": total, "percentage": percentage}
