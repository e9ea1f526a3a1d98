"""Mock tool executor - canned responses, forced failures and hooks.

Used by tests and demos in place of the real file/terminal/git
collaborators. Responses are keyed by action type, and can be overridden per
action id.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from opensesh.errors import ExecutionFailedError, FatalContextLostError

from .executor import ToolExecutor
from .models import ActionType, ExecutionAction, ExecutionContext

logger = logging.getLogger(__name__)


@dataclass
class MockResponse:
    """A canned response for a mock execution."""
    success: bool
    output: str = ""
    delay_seconds: float = 0.0  # Simulated latency
    error_message: str | None = None
    fatal: bool = False  # Simulate the execution context disappearing


DEFAULT_MOCK_RESPONSES: dict[ActionType, MockResponse] = {
    ActionType.file_edit: MockResponse(success=True, output="File updated"),
    ActionType.file_create: MockResponse(success=True, output="File created"),
    ActionType.file_delete: MockResponse(success=True, output="File deleted"),
    ActionType.terminal_command: MockResponse(success=True, output="exit code 0"),
    ActionType.git_operation: MockResponse(success=True, output="git: ok"),
    ActionType.skill_execution: MockResponse(success=True, output="Skill executed"),
}


class MockToolExecutor(ToolExecutor):
    """Executes nothing and records every call."""

    def __init__(self) -> None:
        self._custom_responses: dict[str, MockResponse] = {}
        self._force_failures: dict[str, str] = {}
        self._hooks: list[Callable[[ExecutionAction, ExecutionContext], Awaitable[None]]] = []
        self.calls: list[ExecutionAction] = []

    def register_response(self, key: str, response: MockResponse) -> None:
        """Register a response for an action id or an action type value."""
        self._custom_responses[key] = response

    def force_failure(self, key: str, message: str | None = None) -> None:
        """Force actions matching an id or type value to fail."""
        self._force_failures[key] = message or f"Forced failure for {key}"

    def force_context_lost(self, key: str, message: str = "Working directory no longer exists") -> None:
        self._custom_responses[key] = MockResponse(success=False, error_message=message, fatal=True)

    def add_hook(self, hook: Callable[[ExecutionAction, ExecutionContext], Awaitable[None]]) -> None:
        """Add a hook awaited on every execution attempt, before the response."""
        self._hooks.append(hook)

    def clear(self) -> None:
        self._custom_responses.clear()
        self._force_failures.clear()
        self._hooks.clear()
        self.calls.clear()

    def get_response(self, action: ExecutionAction) -> MockResponse:
        for key in (action.id, action.type.value):
            if key in self._force_failures:
                return MockResponse(success=False, error_message=self._force_failures[key])
        for key in (action.id, action.type.value):
            if key in self._custom_responses:
                return self._custom_responses[key]
        return DEFAULT_MOCK_RESPONSES[action.type]

    async def execute(self, action: ExecutionAction, context: ExecutionContext) -> str:
        self.calls.append(action)
        for hook in self._hooks:
            await hook(action, context)

        response = self.get_response(action)
        if response.delay_seconds:
            await asyncio.sleep(response.delay_seconds)

        if response.fatal:
            raise FatalContextLostError(response.error_message or "Execution context lost")
        if not response.success:
            raise ExecutionFailedError(response.error_message or "Mock failure")
        logger.debug(f"[MockToolExecutor] {action.id}: {response.output}")
        return response.output

    def get_status(self) -> dict[str, Any]:
        return {
            "custom_responses": len(self._custom_responses),
            "forced_failures": sorted(self._force_failures),
            "hooks_registered": len(self._hooks),
            "calls": len(self.calls),
        }
