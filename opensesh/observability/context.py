"""Execution-scoped context utilities."""

from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator

_thread_id: ContextVar[str | None] = ContextVar("thread_id", default=None)
_plan_id: ContextVar[str | None] = ContextVar("plan_id", default=None)


def get_thread_id() -> str | None:
    """Return the conversation thread currently being executed, if any."""
    return _thread_id.get()


def get_plan_id() -> str | None:
    """Return the plan currently being executed, if any."""
    return _plan_id.get()


@contextmanager
def execution_context(thread_id: str | None, plan_id: str | None = None) -> Iterator[None]:
    """Bind thread and plan ids for log records emitted inside the block."""
    thread_token = _thread_id.set(thread_id)
    plan_token = _plan_id.set(plan_id)
    try:
        yield
    finally:
        _plan_id.reset(plan_token)
        _thread_id.reset(thread_token)
