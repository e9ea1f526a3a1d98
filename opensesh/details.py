"""Type-specific payloads for plan steps and execution actions.

Each payload is a frozen pydantic model tagged by a ``type`` literal, so a
raw dict validates into exactly one shape. Plan steps and actions share the
file/terminal/git payloads; ``information`` steps become ``skill_execution``
actions.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class _Details(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    description: str = ""


class FileEditDetails(_Details):
    type: Literal["file_edit"] = "file_edit"
    file_path: str = Field(..., min_length=1)
    original_content: str | None = None
    proposed_content: str | None = None
    diff: str | None = None


class FileCreateDetails(_Details):
    type: Literal["file_create"] = "file_create"
    file_path: str = Field(..., min_length=1)
    proposed_content: str = ""


class FileDeleteDetails(_Details):
    type: Literal["file_delete"] = "file_delete"
    file_path: str = Field(..., min_length=1)


class TerminalCommandDetails(_Details):
    type: Literal["terminal_command"] = "terminal_command"
    command: str = Field(..., min_length=1)
    working_directory: str | None = None
    expected_output: str | None = None


GitOperation = Literal["commit", "push", "pull", "branch", "merge", "checkout", "stash", "reset", "other"]


class GitOperationDetails(_Details):
    type: Literal["git_operation"] = "git_operation"
    operation: GitOperation
    command: str | None = None
    commit_message: str | None = None
    branch_name: str | None = None


class InformationDetails(_Details):
    type: Literal["information"] = "information"
    note: str | None = None


class SkillExecutionDetails(_Details):
    type: Literal["skill_execution"] = "skill_execution"
    skill_id: str
    skill_name: str = ""
    tool_name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


StepDetails = Annotated[
    Union[
        FileEditDetails,
        FileCreateDetails,
        FileDeleteDetails,
        TerminalCommandDetails,
        GitOperationDetails,
        InformationDetails,
    ],
    Field(discriminator="type"),
]

ActionDetails = Annotated[
    Union[
        FileEditDetails,
        FileCreateDetails,
        FileDeleteDetails,
        TerminalCommandDetails,
        GitOperationDetails,
        SkillExecutionDetails,
    ],
    Field(discriminator="type"),
]

_step_details_adapter: TypeAdapter = TypeAdapter(StepDetails)
_action_details_adapter: TypeAdapter = TypeAdapter(ActionDetails)


def parse_step_details(payload: dict[str, Any] | BaseModel) -> StepDetails:
    if isinstance(payload, BaseModel):
        payload = payload.model_dump()
    return _step_details_adapter.validate_python(payload)


def parse_action_details(payload: dict[str, Any] | BaseModel) -> ActionDetails:
    if isinstance(payload, BaseModel):
        payload = payload.model_dump()
    return _action_details_adapter.validate_python(payload)


def details_summary(details: StepDetails | ActionDetails) -> str:
    """One-line human summary, used by confirmation prompts and the audit trail."""
    if isinstance(details, FileEditDetails):
        return f"Edit {details.file_path}"
    if isinstance(details, FileCreateDetails):
        return f"Create {details.file_path}"
    if isinstance(details, FileDeleteDetails):
        return f"Delete {details.file_path}"
    if isinstance(details, TerminalCommandDetails):
        where = f" (in {details.working_directory})" if details.working_directory else ""
        return f"Run `{details.command}`{where}"
    if isinstance(details, GitOperationDetails):
        return f"git {details.command or details.operation}"
    if isinstance(details, InformationDetails):
        return details.note or details.description or "Information"
    if isinstance(details, SkillExecutionDetails):
        return f"{details.skill_id}.{details.tool_name}"
    raise TypeError(f"Unhandled details type: {type(details).__name__}")


def details_diff(original: ActionDetails, modified: ActionDetails) -> dict[str, dict[str, Any]]:
    """Field-level changes between an original payload and a user edit."""
    before = original.model_dump()
    after = modified.model_dump()
    return {
        key: {"before": before.get(key), "after": after.get(key)}
        for key in sorted(set(before) | set(after))
        if before.get(key) != after.get(key)
    }
