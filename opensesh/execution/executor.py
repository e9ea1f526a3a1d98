"""Tool executor contract and routing.

The engine never performs side effects itself. It hands each approved action
to a ``ToolExecutor``, which returns a textual result or raises:

- ``ExecutionFailedError`` for an ordinary failure (recorded, never retried)
- ``FatalContextLostError`` when the working tree or thread is gone

Any other exception is treated as an execution failure.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Iterable

from opensesh.errors import (
    ExecutionFailedError,
    ExecutorRegistrationError,
    HandlerNotFoundError,
)

from .models import ActionType, ExecutionAction, ExecutionContext

logger = logging.getLogger(__name__)


class ToolExecutor(ABC):
    """Performs the actual file/terminal/git/skill operation for an action."""

    @abstractmethod
    async def execute(self, action: ExecutionAction, context: ExecutionContext) -> str:
        """Execute ``action`` at most once and return its textual result."""


class ToolHandler(ABC):
    """A collaborator that handles one or more action types."""

    @property
    @abstractmethod
    def handler_id(self) -> str:
        """Stable unique handler identifier."""

    @property
    @abstractmethod
    def supported_types(self) -> frozenset[ActionType]:
        """Action types this handler can execute."""

    @abstractmethod
    async def execute(self, action: ExecutionAction, context: ExecutionContext) -> str:
        """Execute an action and return its output."""


class FunctionHandler(ToolHandler):
    """Adapts a plain async callable into a handler."""

    def __init__(
        self,
        handler_id: str,
        supported_types: Iterable[ActionType],
        fn: Callable[[ExecutionAction, ExecutionContext], Awaitable[str]],
    ) -> None:
        self._handler_id = handler_id
        self._supported_types = frozenset(supported_types)
        self._fn = fn

    @property
    def handler_id(self) -> str:
        return self._handler_id

    @property
    def supported_types(self) -> frozenset[ActionType]:
        return self._supported_types

    async def execute(self, action: ExecutionAction, context: ExecutionContext) -> str:
        return await self._fn(action, context)


class RoutingToolExecutor(ToolExecutor):
    """Dispatches each action to the handler registered for its type."""

    def __init__(self, handlers: Iterable[ToolHandler] = ()) -> None:
        self._handlers: dict[str, ToolHandler] = {}
        self.register_many(handlers)

    def register(self, handler: ToolHandler) -> None:
        """Register a handler by its ``handler_id``.

        Raises:
            ExecutorRegistrationError: If the id is empty or already taken.
        """
        handler_id = handler.handler_id.strip()
        if not handler_id:
            raise ExecutorRegistrationError("Handler ID cannot be empty")
        if handler_id in self._handlers:
            raise ExecutorRegistrationError(f"Handler already registered: {handler_id}")
        self._handlers[handler_id] = handler

    def register_many(self, handlers: Iterable[ToolHandler]) -> None:
        for handler in handlers:
            self.register(handler)

    def get_for_type(self, action_type: ActionType) -> ToolHandler:
        """Resolve the first registered handler supporting ``action_type``.

        Raises:
            HandlerNotFoundError: If nothing supports it.
        """
        for handler in self._handlers.values():
            if action_type in handler.supported_types:
                return handler
        raise HandlerNotFoundError(f"No handler supports action type: {action_type.value}")

    def list_ids(self) -> list[str]:
        return sorted(self._handlers.keys())

    def clear(self) -> None:
        """Clear all registered handlers (test utility)."""
        self._handlers.clear()

    async def execute(self, action: ExecutionAction, context: ExecutionContext) -> str:
        try:
            handler = self.get_for_type(action.type)
        except HandlerNotFoundError as exc:
            raise ExecutionFailedError(str(exc)) from exc
        logger.debug(f"[RoutingToolExecutor] {action.id} ({action.type.value}) -> {handler.handler_id}")
        return await handler.execute(action, context)
