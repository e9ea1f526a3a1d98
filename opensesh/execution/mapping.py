"""Convert plan steps to execution actions."""

from opensesh.details import (
    ActionDetails,
    InformationDetails,
    SkillExecutionDetails,
    parse_action_details,
)
from opensesh.plans.models import PlanStep, PlanStepType
from opensesh.skills.models import SkillRisk

from .models import ActionType, ExecutionAction

STEP_ACTION_TYPES: dict[PlanStepType, ActionType] = {
    PlanStepType.file_edit: ActionType.file_edit,
    PlanStepType.file_create: ActionType.file_create,
    PlanStepType.file_delete: ActionType.file_delete,
    PlanStepType.terminal_command: ActionType.terminal_command,
    PlanStepType.git_operation: ActionType.git_operation,
    PlanStepType.information: ActionType.skill_execution,
}

STEP_RISKS: dict[PlanStepType, SkillRisk] = {
    PlanStepType.file_edit: SkillRisk.moderate,
    PlanStepType.file_create: SkillRisk.moderate,
    PlanStepType.file_delete: SkillRisk.dangerous,
    PlanStepType.terminal_command: SkillRisk.dangerous,
    PlanStepType.git_operation: SkillRisk.dangerous,
    PlanStepType.information: SkillRisk.safe,
}

# Default risk of standalone actions; skill executions take the skill's own risk
ACTION_RISKS: dict[ActionType, SkillRisk] = {
    ActionType.file_edit: SkillRisk.moderate,
    ActionType.file_create: SkillRisk.moderate,
    ActionType.file_delete: SkillRisk.dangerous,
    ActionType.terminal_command: SkillRisk.dangerous,
    ActionType.git_operation: SkillRisk.dangerous,
    ActionType.skill_execution: SkillRisk.safe,
}

# Fail at import rather than at runtime if a type is added without a mapping
for _table, _enum in ((STEP_ACTION_TYPES, PlanStepType), (STEP_RISKS, PlanStepType), (ACTION_RISKS, ActionType)):
    _missing = set(_enum) - set(_table)
    if _missing:
        raise RuntimeError(f"Unmapped {_enum.__name__} values: {sorted(t.value for t in _missing)}")

INFORMATION_SKILL_ID = "information"


def action_id_for_step(step_id: str) -> str:
    return f"action-{step_id}"


def step_details_to_action_details(step: PlanStep) -> ActionDetails:
    if isinstance(step.details, InformationDetails):
        return SkillExecutionDetails(
            skill_id=INFORMATION_SKILL_ID,
            skill_name="Information",
            tool_name="note",
            arguments={"note": step.details.note or step.description},
            description=step.details.description,
        )
    return parse_action_details(step.details)


def plan_step_to_action(step: PlanStep, thread_id: str, batch_id: str | None = None) -> ExecutionAction:
    return ExecutionAction(
        id=action_id_for_step(step.id),
        thread_id=thread_id,
        type=STEP_ACTION_TYPES[step.type],
        title=step.title,
        description=step.description,
        risk=STEP_RISKS[step.type],
        details=step_details_to_action_details(step),
        plan_id=step.plan_id,
        plan_step_id=step.id,
        batch_id=batch_id or step.plan_id,
        depends_on=tuple(action_id_for_step(dep) for dep in step.depends_on),
    )
