"""Execution Module - confirmation-gated action queues.

Execution modes:
- assisted: every action requires approval before it runs
- autonomous: actions run automatically unless an always-confirm override fires
"""

from .models import (
    ActionStatus,
    ActionType,
    ConfirmationDecision,
    ConfirmationRequest,
    ExecutionAction,
    ExecutionAuditEntry,
    ExecutionContext,
    ExecutionMode,
    ExecutionProgress,
    ExecutionSettings,
)
from .policy import confirmation_reasons, requires_confirmation, warning_message
from .mapping import plan_step_to_action
from .executor import FunctionHandler, RoutingToolExecutor, ToolExecutor, ToolHandler
from .mock import MockResponse, MockToolExecutor
from .queue import ActionQueue

__all__ = [
    "ActionStatus",
    "ActionType",
    "ConfirmationDecision",
    "ConfirmationRequest",
    "ExecutionAction",
    "ExecutionAuditEntry",
    "ExecutionContext",
    "ExecutionMode",
    "ExecutionProgress",
    "ExecutionSettings",
    "confirmation_reasons",
    "requires_confirmation",
    "warning_message",
    "plan_step_to_action",
    "FunctionHandler",
    "RoutingToolExecutor",
    "ToolExecutor",
    "ToolHandler",
    "MockResponse",
    "MockToolExecutor",
    "ActionQueue",
]
