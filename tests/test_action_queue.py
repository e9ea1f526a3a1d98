"""
Tests for confirmation-gated draining of action queues.

Verifies:
- Stop-on-error skips the rest of a batch and leaves the plan partial
- Rejections cascade to dependents and never execute
- Edit & Approve executes the edited payload and keeps the original
- Confirmation and execution timeouts, cancellation
- Lost execution context aborts the batch and errors the plan
- One action executes at a time per thread; threads do not block each other
"""

import asyncio
from collections import defaultdict

import pytest

from opensesh.engine import ExecutionEngine
from opensesh.errors import BatchLimitExceededError, InvalidTransitionError
from opensesh.execution import (
    ActionStatus,
    ActionType,
    ExecutionMode,
    FunctionHandler,
    MockResponse,
    RoutingToolExecutor,
)
from opensesh.execution.mapping import action_id_for_step
from opensesh.execution.queue import AUTONOMOUS_APPROVER, CONFIRMATION_TIMEOUT_NOTE
from opensesh.plans import PlanStatus, PlanStepStatus, SkipReason

THREAD = "thread-1"

SKILL_DETAILS = {"type": "skill_execution", "skill_id": "web_search", "tool_name": "web_search"}
EDIT_DETAILS = {"type": "file_edit", "file_path": "app.py", "proposed_content": "a = 1\n"}


def _info_steps(*ids, chain=False):
    steps = []
    for i, step_id in enumerate(ids):
        depends_on = (ids[i - 1],) if chain and i else ()
        steps.append((step_id, "information", depends_on))
    return steps


# =============================================================================
# Plans in autonomous mode
# =============================================================================

class TestAutonomousPlans:
    """Safe steps run without prompts; overrides still apply."""

    @pytest.mark.asyncio
    async def test_all_steps_complete(self, autonomous_engine, mock_executor, plan_payload):
        plan = autonomous_engine.submit_plan(plan_payload(_info_steps("a1", "a2", "a3", chain=True)))
        await autonomous_engine.wait_idle(THREAD)

        assert plan.status == PlanStatus.completed
        assert plan.completed_steps == 3
        assert [a.id for a in mock_executor.calls] == [action_id_for_step(s) for s in ("a1", "a2", "a3")]
        assert all(s.approved_by == AUTONOMOUS_APPROVER for s in plan.steps)

        entries = autonomous_engine.audit.for_plan(plan.id)
        assert len(entries) == 3
        assert not any(e.user_approved for e in entries)
        assert all(e.execution_mode == ExecutionMode.autonomous for e in entries)

    @pytest.mark.asyncio
    async def test_stop_on_error_leaves_plan_partial(self, autonomous_engine, mock_executor, plan_payload):
        """Step 2 of 3 fails: step 3 is skipped and the plan ends partial."""
        mock_executor.force_failure(action_id_for_step("b2"), "exit code 1")
        plan = autonomous_engine.submit_plan(plan_payload(_info_steps("b1", "b2", "b3")))
        await autonomous_engine.wait_idle(THREAD)

        assert plan.status == PlanStatus.partial
        assert plan.failed_steps == 1
        assert plan.rejected_steps == 0
        assert plan.completed_steps == 1
        assert plan.skipped_steps == 1
        assert (
            plan.completed_steps + plan.failed_steps + plan.rejected_steps
            + plan.skipped_steps + plan.pending_steps
        ) == plan.total_steps == 3

        step3 = plan.get_step("b3")
        assert step3.status == PlanStepStatus.skipped
        assert step3.skip_reason == SkipReason.stop_on_error
        assert plan.get_step("b2").error == "exit code 1"

        action3 = autonomous_engine.get_action(action_id_for_step("b3"))
        assert action3.status == ActionStatus.skipped
        assert len(mock_executor.calls) == 2

        progress = autonomous_engine.progress(THREAD)
        assert (progress.total_actions, progress.completed_actions) == (3, 1)
        assert (progress.failed_actions, progress.skipped_actions) == (1, 1)
        assert progress.percentage == 33

    @pytest.mark.asyncio
    async def test_without_stop_on_error_independent_steps_run(self, autonomous_engine, mock_executor, plan_payload):
        autonomous_engine.update_settings(stop_on_error=False)
        mock_executor.force_failure(action_id_for_step("c1"))
        plan = autonomous_engine.submit_plan(plan_payload([
            ("c1", "information", ()),
            ("c2", "information", ("c1",)),
            ("c3", "information", ()),
        ]))
        await autonomous_engine.wait_idle(THREAD)

        assert plan.status == PlanStatus.partial
        assert plan.get_step("c2").skip_reason == SkipReason.error
        assert "which failed" in plan.get_step("c2").error
        assert plan.get_step("c3").status == PlanStepStatus.completed

    @pytest.mark.asyncio
    async def test_lost_context_errors_the_plan(self, autonomous_engine, mock_executor, plan_payload):
        mock_executor.force_context_lost(action_id_for_step("f2"))
        autonomous_engine.update_settings(stop_on_error=False)
        plan = autonomous_engine.submit_plan(plan_payload(_info_steps("f1", "f2", "f3")))
        await autonomous_engine.wait_idle(THREAD)

        assert plan.status == PlanStatus.error
        assert plan.error == "Working directory no longer exists"
        assert plan.get_step("f1").status == PlanStepStatus.completed
        assert plan.get_step("f2").status == PlanStepStatus.error
        assert plan.get_step("f3").skip_reason == SkipReason.context_lost
        assert autonomous_engine.get_action(action_id_for_step("f3")).status == ActionStatus.skipped
        assert len(mock_executor.calls) == 2

    @pytest.mark.asyncio
    async def test_dangerous_step_still_prompts(self, autonomous_engine, mock_executor, plan_payload):
        plan = autonomous_engine.submit_plan(plan_payload([("d1", "terminal_command", ())]))
        queue = autonomous_engine.queue_for(THREAD)

        prompt = await asyncio.wait_for(queue.wait_for_confirmation(), 1)
        assert prompt.reasons == ["dangerous_risk"]
        assert prompt.warning_message is not None

        autonomous_engine.approve_step("d1")
        await autonomous_engine.wait_idle(THREAD)
        assert plan.status == PlanStatus.completed
        assert autonomous_engine.audit.for_plan(plan.id)[0].user_approved is True

    @pytest.mark.asyncio
    async def test_batch_limit(self, autonomous_engine, plan_payload):
        autonomous_engine.update_settings(max_actions_per_batch=2)
        payload = plan_payload(_info_steps("l1", "l2", "l3"))
        with pytest.raises(BatchLimitExceededError):
            autonomous_engine.submit_plan(payload)
        assert autonomous_engine.lifecycle.list_plans() == []


# =============================================================================
# Plans in assisted mode
# =============================================================================

class TestAssistedPlans:
    """Every step waits for a decision."""

    @pytest.mark.asyncio
    async def test_rejected_dependency_skips_dependent(self, engine, mock_executor, plan_payload):
        plan = engine.submit_plan(plan_payload([
            ("r1", "file_edit", ()),
            ("r2", "terminal_command", ("r1",)),
            ("r3", "information", ()),
        ]))
        queue = engine.queue_for(THREAD)

        prompt = await asyncio.wait_for(queue.wait_for_confirmation(), 1)
        assert prompt.action.id == action_id_for_step("r1")
        assert prompt.reasons == ["assisted_mode"]
        assert prompt.show_diff is True
        engine.reject_step("r1", "not this file")

        prompt = await asyncio.wait_for(queue.wait_for_confirmation(), 1)
        assert prompt.action.id == action_id_for_step("r3")
        engine.approve_step("r3")
        await engine.wait_idle(THREAD)

        assert plan.status == PlanStatus.partial
        assert plan.get_step("r1").status == PlanStepStatus.rejected
        assert plan.get_step("r1").user_note == "not this file"
        r2 = plan.get_step("r2")
        assert r2.status == PlanStepStatus.skipped
        assert r2.skip_reason == SkipReason.rejected
        assert r2.error == "Skipped: depends on step 1 (Step 1) which was rejected"
        assert [a.id for a in mock_executor.calls] == [action_id_for_step("r3")]

    @pytest.mark.asyncio
    async def test_plan_settled_before_execution_finishes(self, engine, mock_executor, plan_payload):
        """Every step rejected or skipped before execute: the plan still rolls up."""
        plan = engine.submit_plan(plan_payload(_info_steps("p1", "p2", chain=True)), start=False)
        engine.reject_step("p1", "not needed")
        engine.execute_plan(plan.id)
        await engine.wait_idle(THREAD)

        assert plan.status == PlanStatus.partial
        assert plan.rejected_steps == 1
        assert plan.get_step("p2").status == PlanStepStatus.skipped
        assert plan.get_step("p2").skip_reason == SkipReason.rejected
        assert mock_executor.calls == []

    @pytest.mark.asyncio
    async def test_pre_approved_plan_runs_without_prompts(self, engine, mock_executor, plan_payload):
        plan = engine.submit_plan(plan_payload(_info_steps("p1", "p2", chain=True)), start=False)
        assert plan.status == PlanStatus.pending

        engine.approve_plan(plan.id)
        assert plan.status == PlanStatus.approved
        engine.execute_plan(plan.id)
        await engine.wait_idle(THREAD)

        assert plan.status == PlanStatus.completed
        assert engine.pending_confirmation(THREAD) is None
        assert all(e.user_approved for e in engine.audit.for_plan(plan.id))

    @pytest.mark.asyncio
    async def test_approve_plan_while_executing(self, engine, mock_executor, plan_payload):
        plan = engine.submit_plan(plan_payload(_info_steps("x1", "x2", "x3")))
        await asyncio.wait_for(engine.queue_for(THREAD).wait_for_confirmation(), 1)

        engine.approve_plan(plan.id)
        await engine.wait_idle(THREAD)
        assert plan.status == PlanStatus.completed
        assert len(mock_executor.calls) == 3

    @pytest.mark.asyncio
    async def test_reject_plan_while_executing(self, engine, mock_executor, plan_payload):
        plan = engine.submit_plan(plan_payload(_info_steps("y1", "y2")))
        await asyncio.wait_for(engine.queue_for(THREAD).wait_for_confirmation(), 1)

        engine.reject_plan(plan.id, "wrong approach")
        await engine.wait_idle(THREAD)
        assert plan.status == PlanStatus.partial
        assert plan.rejected_steps == 2
        assert mock_executor.calls == []

    @pytest.mark.asyncio
    async def test_cancel_plan_while_awaiting(self, engine, mock_executor, plan_payload):
        plan = engine.submit_plan(plan_payload(_info_steps("k1", "k2")))
        await asyncio.wait_for(engine.queue_for(THREAD).wait_for_confirmation(), 1)

        engine.cancel_plan(plan.id)
        await engine.wait_idle(THREAD)
        assert plan.status == PlanStatus.cancelled
        assert plan.skipped_by_cause() == {"cancelled": 2}
        assert engine.pending_confirmation(THREAD) is None
        assert mock_executor.calls == []

    @pytest.mark.asyncio
    async def test_approving_finished_step_is_invalid(self, autonomous_engine, plan_payload):
        autonomous_engine.submit_plan(plan_payload([("v1", "information", ())]))
        await autonomous_engine.wait_idle(THREAD)
        with pytest.raises(InvalidTransitionError):
            autonomous_engine.approve_step("v1")


# =============================================================================
# Standalone actions
# =============================================================================

class TestStandaloneActions:
    """Actions submitted outside of a plan."""

    @pytest.mark.asyncio
    async def test_edit_and_approve_executes_edited_payload(self, engine, mock_executor):
        action = engine.submit_action(THREAD, ActionType.file_edit, "Edit app", EDIT_DETAILS)
        await asyncio.wait_for(engine.queue_for(THREAD).wait_for_confirmation(), 1)

        with pytest.raises(ValueError):
            engine.confirm_action(action.id, "edit_and_approve", edited_details={"type": "file_delete", "file_path": "app.py"})

        edited = {**EDIT_DETAILS, "proposed_content": "a = 2\n"}
        engine.confirm_action(action.id, "edit_and_approve", edited_details=edited, note="use 2")
        await engine.wait_idle(THREAD)

        assert action.status == ActionStatus.completed
        assert action.original_details.proposed_content == "a = 1\n"
        assert action.user_modified_details.proposed_content == "a = 2\n"
        assert mock_executor.calls[0].details.proposed_content == "a = 2\n"
        assert action.edit_diff() == {"proposed_content": {"before": "a = 1\n", "after": "a = 2\n"}}
        assert action.user_note == "use 2"

    @pytest.mark.asyncio
    async def test_prompt_takes_one_answer(self, engine, mock_executor):
        action = engine.submit_action(THREAD, ActionType.file_edit, "Edit app", EDIT_DETAILS)
        queue = engine.queue_for(THREAD)
        await asyncio.wait_for(queue.wait_for_confirmation(), 1)

        engine.confirm_action(action.id, "approve")
        assert queue.prompt_answered(action.id)
        with pytest.raises(InvalidTransitionError):
            engine.confirm_action(action.id, "reject")
        # Bulk decisions leave the answered prompt alone
        assert queue.reject_all_pending() == []

        await engine.wait_idle(THREAD)
        assert action.status == ActionStatus.completed
        assert [a.id for a in mock_executor.calls] == [action.id]

    @pytest.mark.asyncio
    async def test_mismatched_details_rejected_on_submit(self, engine):
        with pytest.raises(ValueError):
            engine.submit_action(THREAD, ActionType.terminal_command, "Run", EDIT_DETAILS)
        assert engine.actions_for_thread(THREAD) == []

    @pytest.mark.asyncio
    async def test_default_risk_comes_from_skill(self, engine):
        details = {"type": "skill_execution", "skill_id": "terminal", "tool_name": "execute_command"}
        action = engine.submit_action(THREAD, "skill_execution", "Shell", details)
        assert action.risk.value == "dangerous"
        engine.cancel_action(action.id)

    @pytest.mark.asyncio
    async def test_confirmation_timeout_rejects(self, engine, mock_executor):
        engine.update_settings(confirmation_timeout=0.05)
        action = engine.submit_action(THREAD, ActionType.file_edit, "Edit app", EDIT_DETAILS)
        await asyncio.wait_for(engine.wait_idle(THREAD), 2)

        assert action.status == ActionStatus.rejected
        assert action.user_note == CONFIRMATION_TIMEOUT_NOTE
        assert mock_executor.calls == []

    @pytest.mark.asyncio
    async def test_execution_timeout_fails(self, autonomous_engine, mock_executor):
        autonomous_engine.update_settings(autonomous_timeout=0.05)
        mock_executor.register_response("skill_execution", MockResponse(success=True, delay_seconds=5))
        action = autonomous_engine.submit_action(THREAD, ActionType.skill_execution, "Search", SKILL_DETAILS)
        await asyncio.wait_for(autonomous_engine.wait_idle(THREAD), 2)

        assert action.status == ActionStatus.failed
        assert action.error == "Cancelled: execution timed out after 0.05s"
        assert autonomous_engine.audit.for_thread(THREAD)[0].success is False

    @pytest.mark.asyncio
    async def test_cancel_in_flight_action(self, autonomous_engine, mock_executor):
        started = asyncio.Event()

        async def mark_started(action, context):
            started.set()

        mock_executor.add_hook(mark_started)
        mock_executor.register_response("skill_execution", MockResponse(success=True, delay_seconds=5))
        action = autonomous_engine.submit_action(THREAD, ActionType.skill_execution, "Search", SKILL_DETAILS)

        await asyncio.wait_for(started.wait(), 1)
        autonomous_engine.cancel_action(action.id)
        await asyncio.wait_for(autonomous_engine.wait_idle(THREAD), 2)

        assert action.status == ActionStatus.failed
        assert action.error == "Cancelled"

    @pytest.mark.asyncio
    async def test_cancel_queued_action(self, engine):
        engine.pause(THREAD)
        action = engine.submit_action(THREAD, ActionType.skill_execution, "Search", SKILL_DETAILS)
        engine.cancel_action(action.id)
        assert action.status == ActionStatus.skipped
        with pytest.raises(InvalidTransitionError):
            engine.cancel_action(action.id)

    @pytest.mark.asyncio
    async def test_pause_and_resume(self, autonomous_engine, mock_executor):
        autonomous_engine.pause(THREAD)
        action = autonomous_engine.submit_action(THREAD, ActionType.skill_execution, "Search", SKILL_DETAILS)
        await asyncio.sleep(0.01)
        assert action.status == ActionStatus.pending
        assert mock_executor.calls == []

        autonomous_engine.resume(THREAD)
        await autonomous_engine.wait_idle(THREAD)
        assert action.status == ActionStatus.completed

    @pytest.mark.asyncio
    async def test_pre_approved_action_waits_its_turn(self, engine, mock_executor):
        engine.pause(THREAD)
        action = engine.submit_action(THREAD, ActionType.file_edit, "Edit", EDIT_DETAILS)
        queue = engine.queue_for(THREAD)
        assert queue.pending_actions() == [action]

        queue.approve(action.id, note="looks fine")
        assert queue.queued_actions() == [action]
        assert queue.pending_actions() == []

        engine.resume(THREAD)
        await engine.wait_idle(THREAD)
        assert action.status == ActionStatus.completed
        assert action.user_note == "looks fine"
        assert engine.pending_confirmation(THREAD) is None

    @pytest.mark.asyncio
    async def test_approve_all_pending(self, engine, mock_executor):
        first = engine.submit_action(THREAD, ActionType.file_edit, "Edit", EDIT_DETAILS)
        second = engine.submit_action(THREAD, ActionType.skill_execution, "Search", SKILL_DETAILS)
        queue = engine.queue_for(THREAD)
        await asyncio.wait_for(queue.wait_for_confirmation(), 1)

        approved = queue.approve_all_pending()
        assert {a.id for a in approved} == {first.id, second.id}
        await engine.wait_idle(THREAD)
        assert first.status == second.status == ActionStatus.completed

    @pytest.mark.asyncio
    async def test_reject_all_pending(self, engine, mock_executor):
        first = engine.submit_action(THREAD, ActionType.file_edit, "Edit", EDIT_DETAILS)
        second = engine.submit_action(THREAD, ActionType.skill_execution, "Search", SKILL_DETAILS)
        queue = engine.queue_for(THREAD)
        await asyncio.wait_for(queue.wait_for_confirmation(), 1)

        queue.reject_all_pending("no")
        await engine.wait_idle(THREAD)
        assert first.status == second.status == ActionStatus.rejected
        assert mock_executor.calls == []
        assert queue.clear() == 2
        assert queue.actions() == []


# =============================================================================
# Modes, settings and concurrency
# =============================================================================

class TestModesAndSettings:
    @pytest.mark.asyncio
    async def test_thread_mode_follows_live_default(self, engine):
        assert engine.get_mode(THREAD) == ExecutionMode.assisted
        engine.update_settings(default_execution_mode=ExecutionMode.autonomous)
        assert engine.get_mode(THREAD) == ExecutionMode.autonomous

    @pytest.mark.asyncio
    async def test_explicit_mode_overrides_default(self, engine, mock_executor):
        engine.set_mode(THREAD, "autonomous")
        engine.update_settings(default_execution_mode=ExecutionMode.assisted)
        assert engine.get_mode(THREAD) == ExecutionMode.autonomous
        assert engine.get_mode("other-thread") == ExecutionMode.assisted

        action = engine.submit_action(THREAD, ActionType.skill_execution, "Search", SKILL_DETAILS)
        await engine.wait_idle(THREAD)
        assert action.status == ActionStatus.completed
        assert action.approved_by == AUTONOMOUS_APPROVER

    @pytest.mark.asyncio
    async def test_skill_confirmation_flag_does_not_gate_execution(self, autonomous_engine):
        autonomous_engine.skills.update_require_confirmation(["web_search"])
        action = autonomous_engine.submit_action(THREAD, ActionType.skill_execution, "Search", SKILL_DETAILS)
        await autonomous_engine.wait_idle(THREAD)
        assert action.status == ActionStatus.completed
        assert action.approved_by == AUTONOMOUS_APPROVER

    @pytest.mark.asyncio
    async def test_dangerous_skill_runs_with_overrides_off(self, autonomous_engine):
        """terminal is flagged for confirmation by default; only the overrides gate it."""
        autonomous_engine.update_settings(
            always_confirm_dangerous=False,
            always_confirm_git_operations=False,
            always_confirm_file_deletions=False,
        )
        details = {"type": "skill_execution", "skill_id": "terminal", "tool_name": "execute_command"}
        action = autonomous_engine.submit_action(THREAD, ActionType.skill_execution, "Shell", details)
        await autonomous_engine.wait_idle(THREAD)

        assert autonomous_engine.skills.requires_confirmation("terminal")
        assert action.status == ActionStatus.completed
        assert action.approved_by == AUTONOMOUS_APPROVER

    @pytest.mark.asyncio
    async def test_audit_disabled(self, autonomous_engine):
        autonomous_engine.update_settings(enable_audit_log=False)
        autonomous_engine.submit_action(THREAD, ActionType.skill_execution, "Search", SKILL_DETAILS)
        await autonomous_engine.wait_idle(THREAD)
        assert len(autonomous_engine.audit) == 0


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_one_action_at_a_time_per_thread(self, autonomous_store):
        active: dict[str, int] = defaultdict(int)
        peak: dict[str, int] = defaultdict(int)
        overall = {"active": 0, "peak": 0}

        async def run(action, context):
            active[context.thread_id] += 1
            overall["active"] += 1
            peak[context.thread_id] = max(peak[context.thread_id], active[context.thread_id])
            overall["peak"] = max(overall["peak"], overall["active"])
            await asyncio.sleep(0.01)
            active[context.thread_id] -= 1
            overall["active"] -= 1
            return action.title

        executor = RoutingToolExecutor([FunctionHandler("skills", [ActionType.skill_execution], run)])
        engine = ExecutionEngine(executor, settings_store=autonomous_store)
        try:
            submitted = {
                thread: [
                    engine.submit_action(thread, ActionType.skill_execution, f"{thread}-{i}", SKILL_DETAILS)
                    for i in range(4)
                ]
                for thread in ("A", "B")
            }
            await engine.wait_idle()
        finally:
            await engine.shutdown()

        assert peak == {"A": 1, "B": 1}
        assert overall["peak"] == 2
        for actions in submitted.values():
            assert [a.result for a in actions] == [a.title for a in actions]
            assert all(a.status == ActionStatus.completed for a in actions)


class TestSubscriptions:
    @pytest.mark.asyncio
    async def test_progress_and_audit_streams(self, autonomous_engine, plan_payload):
        progress = autonomous_engine.on_progress(THREAD)
        audit = autonomous_engine.on_audit_append(THREAD)

        autonomous_engine.submit_plan(plan_payload(_info_steps("s1", "s2")))
        await autonomous_engine.wait_idle(THREAD)
        await asyncio.sleep(0)

        snapshots = []
        while progress.pending():
            snapshots.append(await progress.get())
        assert snapshots[-1].percentage == 100
        assert snapshots[-1].current_action is None
        assert [s.completed_actions for s in snapshots] == sorted(s.completed_actions for s in snapshots)

        entries = [await audit.get(), await audit.get()]
        assert [e.sequence for e in entries] == [1, 2]

        progress.close()
        audit.close()
        assert autonomous_engine.bus.subscriber_count(progress.topic, THREAD) == 0
