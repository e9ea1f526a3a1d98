"""Plan models and schemas."""

from __future__ import annotations

import uuid
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from opensesh.details import StepDetails, parse_step_details


class PlanStatus(str, Enum):
    """Status of the overall plan."""
    generating = "generating"  # AI is generating the plan
    pending = "pending"        # Generated, waiting for approval
    approved = "approved"      # Approved in bulk or step by step
    executing = "executing"
    completed = "completed"    # Every non-skipped step completed
    partial = "partial"        # Finished with failed/rejected/skipped steps
    cancelled = "cancelled"
    error = "error"            # Execution context lost

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_PLAN_STATUSES


TERMINAL_PLAN_STATUSES = frozenset({
    PlanStatus.completed,
    PlanStatus.partial,
    PlanStatus.cancelled,
    PlanStatus.error,
})


class PlanStepStatus(str, Enum):
    """Status of a plan step."""
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    in_progress = "in_progress"
    completed = "completed"
    error = "error"
    skipped = "skipped"


TERMINAL_STEP_STATUSES = frozenset({
    PlanStepStatus.rejected,
    PlanStepStatus.completed,
    PlanStepStatus.error,
    PlanStepStatus.skipped,
})


class PlanStepType(str, Enum):
    file_edit = "file_edit"
    file_create = "file_create"
    file_delete = "file_delete"
    terminal_command = "terminal_command"
    git_operation = "git_operation"
    information = "information"


class SkipReason(str, Enum):
    """Terminal cause propagated to a skipped step."""
    rejected = "rejected"            # An upstream step was rejected
    error = "error"                  # An upstream step failed
    cancelled = "cancelled"          # The plan was cancelled
    stop_on_error = "stop_on_error"  # Another step in the batch failed
    context_lost = "context_lost"    # The execution context disappeared


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PlanStep:
    """A single step in a plan."""
    id: str
    plan_id: str
    step_number: int
    type: PlanStepType
    title: str
    details: StepDetails
    description: str = ""
    status: PlanStepStatus = PlanStepStatus.pending
    depends_on: tuple[str, ...] = ()
    user_note: str | None = None
    approved_by: str | None = None
    execution_result: str | None = None
    error: str | None = None
    skip_reason: SkipReason | None = None
    executed_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "plan_id": self.plan_id,
            "step_number": self.step_number,
            "type": self.type.value,
            "title": self.title,
            "description": self.description,
            "details": self.details.model_dump(),
            "status": self.status.value,
            "depends_on": list(self.depends_on),
            "user_note": self.user_note,
            "approved_by": self.approved_by,
            "execution_result": self.execution_result,
            "error": self.error,
            "skip_reason": self.skip_reason.value if self.skip_reason else None,
            "executed_at": self.executed_at.isoformat() if self.executed_at else None,
        }


@dataclass
class Plan:
    """An ordered, AI-proposed sequence of steps.

    Aggregate counters are derived from step statuses, so they always sum to
    ``total_steps``.
    """
    id: str
    thread_id: str
    message_id: str
    title: str = ""
    summary: str = ""
    user_request: str = ""
    steps: list[PlanStep] = field(default_factory=list)
    status: PlanStatus = PlanStatus.generating
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error: str | None = None

    def _counts(self) -> Counter:
        return Counter(step.status for step in self.steps)

    @property
    def total_steps(self) -> int:
        return len(self.steps)

    @property
    def completed_steps(self) -> int:
        return self._counts()[PlanStepStatus.completed]

    @property
    def failed_steps(self) -> int:
        return self._counts()[PlanStepStatus.error]

    @property
    def rejected_steps(self) -> int:
        return self._counts()[PlanStepStatus.rejected]

    @property
    def skipped_steps(self) -> int:
        return self._counts()[PlanStepStatus.skipped]

    @property
    def pending_steps(self) -> int:
        """Steps not yet terminal (pending, approved or in progress)."""
        counts = self._counts()
        return (
            counts[PlanStepStatus.pending]
            + counts[PlanStepStatus.approved]
            + counts[PlanStepStatus.in_progress]
        )

    def skipped_by_cause(self) -> dict[str, int]:
        causes = Counter(
            step.skip_reason.value
            for step in self.steps
            if step.status == PlanStepStatus.skipped and step.skip_reason
        )
        return dict(causes)

    def get_step(self, step_id: str) -> PlanStep | None:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def touch(self) -> None:
        self.updated_at = utcnow()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API response."""
        return {
            "id": self.id,
            "thread_id": self.thread_id,
            "message_id": self.message_id,
            "title": self.title,
            "summary": self.summary,
            "user_request": self.user_request,
            "status": self.status.value,
            "steps": [step.to_dict() for step in self.steps],
            "total_steps": self.total_steps,
            "completed_steps": self.completed_steps,
            "failed_steps": self.failed_steps,
            "rejected_steps": self.rejected_steps,
            "skipped_steps": self.skipped_steps,
            "pending_steps": self.pending_steps,
            "skipped_by_cause": self.skipped_by_cause(),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "error": self.error,
        }


class PlanStepSchema(BaseModel):
    """Schema for validating plan steps supplied by the plan generator."""

    model_config = ConfigDict(extra="forbid")

    id: str | None = None
    step_number: int = Field(..., ge=1)
    type: PlanStepType
    title: str = Field(..., min_length=1)
    description: str = ""
    details: dict[str, Any]
    depends_on: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_details_tag(self) -> "PlanStepSchema":
        details = dict(self.details)
        details.setdefault("type", self.type.value)
        if details["type"] != self.type.value:
            raise ValueError(f"Step {self.step_number}: details type does not match step type")
        parse_step_details(details)
        self.details = details
        return self


class PlanSchema(BaseModel):
    """Schema for validating fully materialized plans."""

    model_config = ConfigDict(extra="forbid")

    id: str | None = None
    thread_id: str = Field(..., min_length=1)
    message_id: str = Field(..., min_length=1)
    title: str = ""
    summary: str = Field(default="", max_length=4000)
    user_request: str = ""
    steps: list[PlanStepSchema] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_step_graph(self) -> "PlanSchema":
        numbers = [step.step_number for step in self.steps]
        if len(numbers) != len(set(numbers)):
            raise ValueError("Step numbers must be unique")
        ids = [step.id for step in self.steps if step.id]
        if len(ids) != len(set(ids)):
            raise ValueError("Step ids must be unique")
        known = set(ids)
        for step in self.steps:
            for dep in step.depends_on:
                if dep not in known:
                    raise ValueError(f"Step {step.step_number} depends on unknown step {dep}")
                if dep == step.id:
                    raise ValueError(f"Step {step.step_number} depends on itself")
        return self


def plan_from_payload(payload: dict[str, Any] | PlanSchema) -> Plan:
    """Build a pending Plan from a validated generator payload."""
    validated = payload if isinstance(payload, PlanSchema) else PlanSchema.model_validate(payload)
    plan_id = validated.id or str(uuid.uuid4())
    steps = [
        PlanStep(
            id=step.id or str(uuid.uuid4()),
            plan_id=plan_id,
            step_number=step.step_number,
            type=step.type,
            title=step.title,
            description=step.description,
            details=parse_step_details(step.details),
            depends_on=tuple(step.depends_on),
        )
        for step in sorted(validated.steps, key=lambda s: s.step_number)
    ]
    return Plan(
        id=plan_id,
        thread_id=validated.thread_id,
        message_id=validated.message_id,
        title=validated.title,
        summary=validated.summary,
        user_request=validated.user_request,
        steps=steps,
        status=PlanStatus.pending,
    )
