"""Confirmation policy.

Pure functions of (mode, action, settings). Settings are passed in as an
immutable snapshot on every call and never read from ambient state, so a
settings change affects every action not yet confirmed.
"""

from opensesh.skills.models import SkillRisk

from .models import ActionType, ExecutionAction, ExecutionMode, ExecutionSettings

DANGEROUS_WARNING = "This action may have significant effects. Please review carefully."

# Action types whose payload carries content worth diffing in a prompt
DIFFABLE_TYPES = frozenset({ActionType.file_edit, ActionType.file_create})


def confirmation_reasons(
    mode: ExecutionMode,
    action: ExecutionAction,
    settings: ExecutionSettings,
) -> list[str]:
    """Every rule that forces confirmation for this action, in evaluation order."""
    if mode == ExecutionMode.assisted:
        return ["assisted_mode"]

    reasons = []
    if action.risk == SkillRisk.dangerous and settings.always_confirm_dangerous:
        reasons.append("dangerous_risk")
    if action.type == ActionType.git_operation and settings.always_confirm_git_operations:
        reasons.append("git_operation")
    if action.type == ActionType.file_delete and settings.always_confirm_file_deletions:
        reasons.append("file_deletion")
    return reasons


def requires_confirmation(
    mode: ExecutionMode,
    action: ExecutionAction,
    settings: ExecutionSettings,
) -> bool:
    """Assisted mode always confirms; autonomous mode only when an override fires."""
    return bool(confirmation_reasons(mode, action, settings))


def warning_message(action: ExecutionAction) -> str | None:
    if action.risk == SkillRisk.dangerous:
        return DANGEROUS_WARNING
    return None


def show_diff(action: ExecutionAction) -> bool:
    return action.type in DIFFABLE_TYPES
