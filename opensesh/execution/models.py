"""Execution models - actions, settings, progress and audit entries."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from opensesh.details import ActionDetails, details_diff, details_summary
from opensesh.plans.models import utcnow
from opensesh.skills.models import SkillRisk


class ExecutionMode(str, Enum):
    """How actions are processed.

    - assisted: every action waits for human approval
    - autonomous: actions run automatically unless an override fires
    """
    assisted = "assisted"
    autonomous = "autonomous"


class ActionType(str, Enum):
    file_edit = "file_edit"
    file_create = "file_create"
    file_delete = "file_delete"
    terminal_command = "terminal_command"
    git_operation = "git_operation"
    skill_execution = "skill_execution"


class ActionStatus(str, Enum):
    """Status of an action in the queue."""
    pending = "pending"                              # Waiting in queue
    awaiting_confirmation = "awaiting_confirmation"  # Waiting for user approval
    approved = "approved"                            # Ready to execute
    rejected = "rejected"
    executing = "executing"
    completed = "completed"
    failed = "failed"
    skipped = "skipped"                              # Never ran (cascade or stop-on-error)

    @property
    def is_terminal(self) -> bool:
        return self in (
            ActionStatus.rejected,
            ActionStatus.completed,
            ActionStatus.failed,
            ActionStatus.skipped,
        )


class ConfirmationDecision(str, Enum):
    approve = "approve"
    reject = "reject"
    edit_and_approve = "edit_and_approve"


@dataclass
class ExecutionAction:
    """The queued, risk-tagged, confirmable unit of work."""
    id: str
    thread_id: str
    type: ActionType
    title: str
    risk: SkillRisk
    details: ActionDetails
    description: str = ""
    status: ActionStatus = ActionStatus.pending
    created_at: datetime = field(default_factory=utcnow)
    executed_at: datetime | None = None
    completed_at: datetime | None = None
    result: str | None = None
    error: str | None = None

    # Edit & Approve keeps the original payload for audit diffing
    user_modified_details: ActionDetails | None = None
    original_details: ActionDetails | None = None
    user_note: str | None = None
    approved_by: str | None = None

    # Source tracking, weak references by id
    plan_id: str | None = None
    plan_step_id: str | None = None
    batch_id: str | None = None
    depends_on: tuple[str, ...] = ()

    @property
    def user_approved(self) -> bool:
        return self.approved_by is not None and not self.approved_by.startswith("policy:")

    def edit_diff(self) -> dict[str, dict[str, Any]]:
        if self.original_details is None:
            return {}
        return details_diff(self.original_details, self.details)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "thread_id": self.thread_id,
            "type": self.type.value,
            "title": self.title,
            "description": self.description,
            "risk": self.risk.value,
            "status": self.status.value,
            "details": self.details.model_dump(),
            "user_modified_details": (
                self.user_modified_details.model_dump() if self.user_modified_details else None
            ),
            "original_details": self.original_details.model_dump() if self.original_details else None,
            "user_note": self.user_note,
            "approved_by": self.approved_by,
            "result": self.result,
            "error": self.error,
            "plan_id": self.plan_id,
            "plan_step_id": self.plan_step_id,
            "batch_id": self.batch_id,
            "depends_on": list(self.depends_on),
            "created_at": self.created_at.isoformat(),
            "executed_at": self.executed_at.isoformat() if self.executed_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


@dataclass(frozen=True)
class ExecutionContext:
    """Environment handed to tool executors alongside an action."""
    thread_id: str
    plan_id: str | None = None
    working_directory: str | None = None
    environment: dict[str, str] = field(default_factory=dict)


@dataclass
class ConfirmationRequest:
    """What a UI needs to render a confirmation prompt."""
    action: ExecutionAction
    show_diff: bool = False
    allow_edit: bool = True
    warning_message: str | None = None
    reasons: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action.to_dict(),
            "summary": details_summary(self.action.details),
            "show_diff": self.show_diff,
            "allow_edit": self.allow_edit,
            "warning_message": self.warning_message,
            "reasons": list(self.reasons),
        }


@dataclass(frozen=True)
class ExecutionProgress:
    total_actions: int = 0
    completed_actions: int = 0
    failed_actions: int = 0
    skipped_actions: int = 0  # rejected + skipped
    current_action: ExecutionAction | None = None
    percentage: int = 0

    @classmethod
    def from_actions(
        cls,
        actions: list[ExecutionAction],
        current: ExecutionAction | None = None,
    ) -> "ExecutionProgress":
        total = len(actions)
        completed = sum(1 for a in actions if a.status == ActionStatus.completed)
        failed = sum(1 for a in actions if a.status == ActionStatus.failed)
        skipped = sum(
            1 for a in actions if a.status in (ActionStatus.rejected, ActionStatus.skipped)
        )
        return cls(
            total_actions=total,
            completed_actions=completed,
            failed_actions=failed,
            skipped_actions=skipped,
            current_action=copy.copy(current) if current else None,
            percentage=round(completed / total * 100) if total else 0,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_actions": self.total_actions,
            "completed_actions": self.completed_actions,
            "failed_actions": self.failed_actions,
            "skipped_actions": self.skipped_actions,
            "current_action": self.current_action.to_dict() if self.current_action else None,
            "percentage": self.percentage,
        }


class ExecutionSettings(BaseModel):
    """Process-wide execution policy knobs. Immutable; replace to update."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    default_execution_mode: ExecutionMode = ExecutionMode.assisted
    always_confirm_dangerous: bool = True
    always_confirm_git_operations: bool = True
    always_confirm_file_deletions: bool = True
    stop_on_error: bool = True
    enable_audit_log: bool = True
    autonomous_timeout: float = Field(default=60, gt=0)
    confirmation_timeout: float | None = Field(default=None, gt=0)
    max_actions_per_batch: int = Field(default=50, ge=1)


class ExecutionSettingsUpdate(BaseModel):
    """Partial settings update; unset fields keep their current value."""

    model_config = ConfigDict(extra="forbid")

    default_execution_mode: ExecutionMode | None = None
    always_confirm_dangerous: bool | None = None
    always_confirm_git_operations: bool | None = None
    always_confirm_file_deletions: bool | None = None
    stop_on_error: bool | None = None
    enable_audit_log: bool | None = None
    autonomous_timeout: float | None = Field(default=None, gt=0)
    confirmation_timeout: float | None = Field(default=None, gt=0)
    max_actions_per_batch: int | None = Field(default=None, ge=1)


@dataclass(frozen=True)
class ExecutionAuditEntry:
    """Immutable record of one executed action."""
    id: str
    sequence: int
    thread_id: str
    action_id: str
    action_type: ActionType
    action: dict[str, Any]
    execution_mode: ExecutionMode
    user_approved: bool
    success: bool
    executed_at: datetime
    prev_hash: str
    entry_hash: str
    plan_id: str | None = None
    plan_step_id: str | None = None
    approved_by: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "sequence": self.sequence,
            "thread_id": self.thread_id,
            "action_id": self.action_id,
            "action_type": self.action_type.value,
            "action": self.action,
            "execution_mode": self.execution_mode.value,
            "user_approved": self.user_approved,
            "approved_by": self.approved_by,
            "success": self.success,
            "error": self.error,
            "plan_id": self.plan_id,
            "plan_step_id": self.plan_step_id,
            "executed_at": self.executed_at.isoformat(),
            "prev_hash": self.prev_hash,
            "entry_hash": self.entry_hash,
        }


# API request models

class ActionSubmitRequest(BaseModel):
    """A standalone action proposal."""
    thread_id: str = Field(..., min_length=1)
    type: ActionType
    title: str = Field(..., min_length=1)
    description: str = ""
    details: dict[str, Any]
    risk: SkillRisk | None = None


class ConfirmActionRequest(BaseModel):
    decision: ConfirmationDecision
    edited_details: dict[str, Any] | None = None
    note: str | None = None


class ModeRequest(BaseModel):
    mode: ExecutionMode
