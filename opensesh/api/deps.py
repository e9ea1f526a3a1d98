"""Shared API dependencies."""

from fastapi import HTTPException, Request

from opensesh.engine import ExecutionEngine
from opensesh.errors import (
    ActionNotFoundError,
    BatchLimitExceededError,
    CyclicDependencyError,
    InvalidTransitionError,
    OrchestrationError,
    PlanNotFoundError,
    UnknownSkillError,
)


def get_engine(request: Request) -> ExecutionEngine:
    """The engine built at startup and stored on app state."""
    return request.app.state.engine


def http_error(e: Exception) -> HTTPException:
    """Map an engine error onto an HTTP error response."""
    if isinstance(e, (PlanNotFoundError, ActionNotFoundError)):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, InvalidTransitionError):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, (UnknownSkillError, BatchLimitExceededError, CyclicDependencyError, ValueError)):
        return HTTPException(status_code=422, detail=str(e))
    if isinstance(e, OrchestrationError):
        return HTTPException(status_code=400, detail=str(e))
    return HTTPException(status_code=500, detail=str(e))
